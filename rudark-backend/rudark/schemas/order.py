from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from rudark.schemas.common import PaginationMeta


class OrderItemOut(BaseModel):
    id: str
    product_id: str
    variant_id: Optional[str] = None
    name: str
    sku: str
    variant_sku: Optional[str] = None
    selected_options: Optional[dict[str, Any]] = None
    quantity: int
    unit_price: float
    line_total: float


class OrderOut(BaseModel):
    id: str
    status: str
    customer_name: str
    customer_email: str
    customer_phone: str
    address: Optional[str] = None
    postcode: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    delivery_method: str
    shipping_provider: Optional[str] = None
    shipping_service: Optional[str] = None
    collection_point_id: Optional[str] = None
    collection_point_name: Optional[str] = None
    subtotal: float
    shipping_cost: float
    collection_fee: float
    discount_amount: float
    total_amount: float
    refunded_amount: float
    promo_code: Optional[str] = None
    free_shipping: bool
    payment_gateway: Optional[str] = None
    payment_status: Optional[str] = None
    payment_reference: Optional[str] = None
    requires_approval: bool
    payment_rejection_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    stock_reserved: bool
    stock_deducted: bool
    stock_deducted_error: Optional[str] = None
    loyverse_status: Optional[str] = None
    loyverse_error: Optional[str] = None
    loyverse_receipt_number: Optional[str] = None
    shipping_status: Optional[str] = None
    tracking_no: Optional[str] = None
    tracking_synced: bool
    shipping_error: Optional[str] = None
    note: Optional[str] = None
    status_reason: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    collected_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: list[OrderItemOut]


class OrderListOut(BaseModel):
    items: list[OrderOut]
    pagination: PaginationMeta


class OrderStatsOut(BaseModel):
    total: int
    pending: int
    paid: int
    shipped: int
    completed: int
    cancelled: int
    revenue: float


class CollectionStatsOut(BaseModel):
    total: int
    ready: int
    collected: int
    revenue: float


class ShipOrderIn(BaseModel):
    tracking_no: Optional[str] = Field(default=None, max_length=64)


class CancelOrderIn(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class ReturnOrderIn(BaseModel):
    restock: bool = True
    reason: Optional[str] = Field(default=None, max_length=255)


class TrackingUpdateIn(BaseModel):
    tracking_no: str = Field(min_length=1, max_length=64)


class RejectPaymentIn(BaseModel):
    reason: str = Field(min_length=1, max_length=255)


class RefundLineIn(BaseModel):
    order_item_id: str
    quantity: int = Field(gt=0)
    return_to_stock: bool = False


class RefundCreateIn(BaseModel):
    refund_type: Literal["FULL", "PARTIAL"]
    amount: Optional[Decimal] = Field(default=None, gt=0)
    reason: Optional[str] = Field(default=None, max_length=255)
    items: list[RefundLineIn] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_amount(self) -> "RefundCreateIn":
        if self.refund_type == "PARTIAL" and self.amount is None:
            raise ValueError("amount is required for a partial refund")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "refund_type": "PARTIAL",
                "amount": 25.0,
                "reason": "Damaged item",
                "items": [{"order_item_id": "order-item-id", "quantity": 1, "return_to_stock": False}],
            }
        }
    )


class RefundOut(BaseModel):
    id: str
    order_id: str
    refund_type: str
    amount: float
    reason: Optional[str] = None
    items: list[dict[str, Any]]
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    order_status: str
    refunded_amount: float


class RefundableItemOut(BaseModel):
    order_item_id: str
    name: str
    variant_sku: Optional[str] = None
    quantity: int
    refunded_quantity: int
    refundable_quantity: int
    unit_price: float


class RefundableItemsOut(BaseModel):
    order_id: str
    remaining_amount: float
    items: list[RefundableItemOut]


class ReturnOrderOut(BaseModel):
    order: OrderOut
    restocked_quantity: int


class ChipVerifyOut(BaseModel):
    purchase_id: str
    status: str
    paid: bool
    order_status: str


class PublicOrderItemOut(BaseModel):
    name: str
    variant_sku: Optional[str] = None
    quantity: int
    unit_price: float
    line_total: float


class PublicOrderOut(BaseModel):
    id: str
    status: str
    customer_name: str
    delivery_method: str
    collection_point_name: Optional[str] = None
    collection_point_address: Optional[str] = None
    subtotal: float
    shipping_cost: float
    collection_fee: float
    discount_amount: float
    total_amount: float
    payment_gateway: Optional[str] = None
    payment_instructions: Optional[str] = None
    shipping_status: Optional[str] = None
    shipping_provider: Optional[str] = None
    tracking_no: Optional[str] = None
    paid_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    items: list[PublicOrderItemOut]


class TrackingEventOut(BaseModel):
    status: Optional[str] = None
    location: Optional[str] = None
    time: Optional[str] = None


class TrackingOut(BaseModel):
    tracking_no: str
    status: Optional[str] = None
    is_delivered: bool
    delivered_at: Optional[str] = None
    events: list[TrackingEventOut]


class OrderSearchOut(BaseModel):
    found: bool
    source: Optional[Literal["ORDER", "EXTERNAL"]] = None
    order: Optional[PublicOrderOut] = None
    tracking: Optional[TrackingOut] = None
