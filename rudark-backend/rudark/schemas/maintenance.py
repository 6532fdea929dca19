from pydantic import BaseModel, Field


class CleanupOut(BaseModel):
    processed: int
    released_items: int


class ExpiredCountOut(BaseModel):
    minutes: int
    expired_orders: int


class BatchOut(BaseModel):
    checked: int
    updated: int
    failed: int
    errors: list[str] = Field(default_factory=list)


class PosSyncOut(BaseModel):
    updated: int
    skipped: int
    total: int


class PosPushOut(BaseModel):
    product_id: str
    levels_sent: int
