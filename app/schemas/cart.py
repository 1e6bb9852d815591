from decimal import Decimal
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
import re

import bleach

from app.models.order import PaymentMethod

PHONE_PATTERN = re.compile(r"^[0-9]{10,11}$")


class CartItemCreate(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = 1
    color: Optional[str] = Field(default=None, max_length=50)
    size: Optional[str] = Field(default=None, max_length=20)


class CartItemUpdate(BaseModel):
    quantity: int


class CartItemRemove(BaseModel):
    product_id: int = Field(..., gt=0)
    color: Optional[str] = Field(default=None, max_length=50)
    size: Optional[str] = Field(default=None, max_length=20)


class CartLineUpdate(CartItemRemove):
    quantity: int


class CartSyncItem(BaseModel):
    product_id: int
    quantity: int = 1
    color: Optional[str] = Field(default=None, max_length=50)
    size: Optional[str] = Field(default=None, max_length=20)


class CartSyncRequest(BaseModel):
    items: List[CartSyncItem]


class CartItemResponse(BaseModel):
    cart_id: int
    product_id: int
    name: str
    brand: Optional[str] = None
    image_url: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    quantity: int
    stock: int
    price: Decimal
    discount_percent: int
    unit_price: Decimal
    line_total: Decimal


class CartResponse(BaseModel):
    items: List[CartItemResponse]
    subtotal: Decimal
    total_items: int


class CartSyncResponse(CartResponse):
    synced_items: int
    error_items: int


class CheckoutRequest(BaseModel):
    shipping_address: str = Field(..., min_length=10, max_length=255)
    phone: str
    notes: Optional[str] = None
    promotion_code: Optional[str] = Field(default=None, max_length=50)
    payment_method: PaymentMethod = PaymentMethod.COD

    @field_validator("shipping_address")
    @classmethod
    def strip_address(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 10:
            raise ValueError("Shipping address must be 10-255 characters")
        return value

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: str) -> str:
        value = value.strip()
        if not PHONE_PATTERN.match(value):
            raise ValueError("Invalid phone number")
        return value

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        sanitized = bleach.clean(value, tags=[], attributes={}, strip=True).strip()
        if len(sanitized) > 1000:
            raise ValueError("Notes too long (max 1000 chars)")
        return sanitized or None

    @field_validator("promotion_code")
    @classmethod
    def normalize_promotion_code(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return value.strip() or None


class CheckoutResponse(BaseModel):
    order_id: int
    subtotal: Decimal
    promotion_discount: Decimal
    total_amount: Decimal
    items_count: int
