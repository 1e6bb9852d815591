from decimal import Decimal
from pydantic import BaseModel, Field, model_validator
from typing import Optional
from datetime import datetime
from app.models.promotion import DiscountType

PROMOTION_CODE_PATTERN = r"^[A-Za-z0-9_-]+$"


class PromotionCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=50, pattern=PROMOTION_CODE_PATTERN)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal = Field(..., gt=0)
    min_order_amount: Decimal = Field(default=Decimal("0"), ge=0)
    usage_limit: Optional[int] = Field(None, gt=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = True

    @model_validator(mode="after")
    def check_date_window(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be before end_date")
        return self


class PromotionUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=3, max_length=50, pattern=PROMOTION_CODE_PATTERN)
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, gt=0)
    min_order_amount: Optional[Decimal] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, gt=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None


class PromotionResponse(BaseModel):
    id: int
    code: str
    description: Optional[str]
    discount_type: DiscountType
    discount_value: Decimal
    min_order_amount: Decimal
    usage_limit: Optional[int]
    used_count: int
    is_active: bool
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class PromotionValidateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    order_amount: Decimal = Field(..., ge=0)


class PromotionVerdict(BaseModel):
    valid: bool
    discount_amount: Decimal = Decimal("0")
    reason: Optional[str] = None
    message: str
