from pydantic import BaseModel, ConfigDict


class PaginationMeta(BaseModel):
    total: int
    limit: int
    offset: int
    count: int
    has_next: bool

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "total": 128,
                "limit": 50,
                "offset": 0,
                "count": 50,
                "has_next": True,
            }
        }
    )

    @classmethod
    def page(cls, *, total: int, limit: int, offset: int, count: int) -> "PaginationMeta":
        return cls(total=total, limit=limit, offset=offset, count=count, has_next=offset + count < total)


class ValidationIssueOut(BaseModel):
    field: str
    message: str
    type: str | None = None


class ErrorDetailOut(BaseModel):
    code: str
    message: str
    request_id: str
    path: str
    details: list[ValidationIssueOut] | None = None


class ErrorOut(BaseModel):
    """Envelope shared by every non-2xx response."""

    error: ErrorDetailOut

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": {
                    "code": "bad_request",
                    "message": "Product Rudark Sling Bag: Only 1 available (you requested 2)",
                    "request_id": "5f0c3a7e-2b41-4d8e-9a61-0c2f4e7b9d13",
                    "path": "/checkout",
                    "details": None,
                }
            }
        }
    )
