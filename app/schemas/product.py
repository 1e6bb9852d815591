from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    brand: Optional[str] = Field(None, max_length=100)
    image_url: Optional[str] = Field(None, max_length=500)
    category_id: Optional[int] = Field(None, gt=0)
    price: Decimal = Field(..., gt=0)
    discount_percent: int = Field(default=0, ge=0, le=100)
    stock: int = Field(default=0, ge=0)
    is_featured: bool = False


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    brand: Optional[str] = Field(None, max_length=100)
    image_url: Optional[str] = Field(None, max_length=500)
    category_id: Optional[int] = Field(None, gt=0)
    price: Optional[Decimal] = Field(None, gt=0)
    discount_percent: Optional[int] = Field(None, ge=0, le=100)
    stock: Optional[int] = Field(None, ge=0)
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None


class ProductResponse(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str]
    brand: Optional[str]
    image_url: Optional[str]
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    price: Decimal
    discount_percent: int
    final_price: Decimal
    stock: int
    is_active: bool
    is_featured: bool
    created_at: datetime

    class Config:
        from_attributes = True
