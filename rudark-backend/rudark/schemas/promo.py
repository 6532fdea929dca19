from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PromoType = Literal["PERCENTAGE", "FIXED"]


def _normalize_code(value: str) -> str:
    cleaned = value.strip().upper()
    if not cleaned:
        raise ValueError("code is required")
    return cleaned


class PromoCreate(BaseModel):
    code: str = Field(min_length=1, max_length=40)
    promo_type: PromoType
    value: Decimal = Field(gt=0)
    min_spend: Decimal = Field(default=Decimal("0"), ge=0)
    usage_limit: Optional[int] = Field(default=None, ge=1)
    active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return _normalize_code(value)

    @model_validator(mode="after")
    def validate_percentage(self) -> "PromoCreate":
        if self.promo_type == "PERCENTAGE" and self.value > 100:
            raise ValueError("Percentage promos cannot exceed 100")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "code": "RAYA10",
                "promo_type": "PERCENTAGE",
                "value": 10,
                "min_spend": 50,
                "usage_limit": 100,
            }
        }
    )


class PromoUpdate(BaseModel):
    code: Optional[str] = Field(default=None, min_length=1, max_length=40)
    promo_type: Optional[PromoType] = None
    value: Optional[Decimal] = Field(default=None, gt=0)
    min_spend: Optional[Decimal] = Field(default=None, ge=0)
    usage_limit: Optional[int] = Field(default=None, ge=1)
    clear_usage_limit: bool = False
    active: Optional[bool] = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_code(value) if value is not None else None


class PromoOut(BaseModel):
    id: str
    code: str
    promo_type: str
    value: float
    min_spend: float
    usage_limit: Optional[int] = None
    usage_count: int
    active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PromoValidateIn(BaseModel):
    code: str = Field(min_length=1, max_length=40)
    cart_total: Decimal = Field(ge=0)


class PromoValidateOut(BaseModel):
    valid: bool
    code: str
    promo_type: str
    discount: float
    message: str
