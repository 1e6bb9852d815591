from decimal import Decimal
from typing import List, Optional
from datetime import datetime

from pydantic import BaseModel, Field

from app.models.order import OrderStatus, PaymentMethod


class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    color: Optional[str]
    size: Optional[str]
    quantity: int
    price: Decimal

    class Config:
        from_attributes = True


class OrderSummaryResponse(BaseModel):
    id: int
    user_id: int
    status: OrderStatus
    payment_method: PaymentMethod
    subtotal: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    promotion_code: Optional[str]
    shipping_address: str
    phone: str
    notes: Optional[str]
    item_count: int
    created_at: datetime


class OrderStatusHistoryResponse(BaseModel):
    old_status: Optional[str]
    new_status: str
    changed_by: Optional[int]
    notes: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class OrderDetailResponse(BaseModel):
    id: int
    user_id: int
    status: OrderStatus
    payment_method: PaymentMethod
    subtotal: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    promotion_code: Optional[str]
    shipping_address: str
    phone: str
    notes: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime]
    items: List[OrderItemResponse]
    status_history: List[OrderStatusHistoryResponse]

    class Config:
        from_attributes = True


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = Field(default=None, max_length=500)
