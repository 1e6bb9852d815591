from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, Enum, Text, CheckConstraint
from datetime import datetime
import enum
from app.db.base_class import Base


class DiscountType(str, enum.Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class Promotion(Base):
    __tablename__ = "promotions"
    __table_args__ = (
        CheckConstraint("used_count >= 0", name="ck_promotions_used_count_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)

    discount_type = Column(Enum(DiscountType), nullable=False)
    discount_value = Column(Numeric(18, 2), nullable=False)  # Percentage (0-100) or fixed amount

    min_order_amount = Column(Numeric(18, 2), default=0, nullable=False)

    usage_limit = Column(Integer, nullable=True)  # Global usage limit, NULL = unlimited
    used_count = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
