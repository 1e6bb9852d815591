from datetime import datetime
from decimal import Decimal, ROUND_FLOOR
from typing import List, Optional, Tuple

from sqlalchemy import or_, update
from sqlalchemy.orm import Session
import structlog

from app.core.exceptions import DuplicateResource, InvalidPromotion, PromotionNotFound, ValidationError
from app.models.promotion import DiscountType, Promotion
from app.schemas.promotion import PromotionCreate, PromotionResponse, PromotionUpdate, PromotionVerdict

logger = structlog.get_logger()

# Rejection reasons, in the order they are checked
NOT_FOUND = "NOT_FOUND"
EXPIRED = "EXPIRED"
EXHAUSTED = "EXHAUSTED"
BELOW_MINIMUM = "BELOW_MINIMUM"

REASON_MESSAGES = {
    NOT_FOUND: "Invalid or inactive promotion code",
    EXPIRED: "Promotion code is not valid at this time",
    EXHAUSTED: "Promotion usage limit reached",
    BELOW_MINIMUM: "Order amount is below the promotion minimum",
}


def normalize_code(code: Optional[str]) -> str:
    """Codes are case-sensitive; only surrounding whitespace is dropped."""
    return (code or "").strip()


def compute_discount(promotion: Promotion, order_amount: Decimal) -> Decimal:
    amount = Decimal(order_amount)
    value = Decimal(promotion.discount_value)
    if promotion.discount_type == DiscountType.PERCENT:
        return (amount * value / Decimal(100)).to_integral_value(rounding=ROUND_FLOOR)
    return min(value, amount)


def _rejected(reason: str) -> PromotionVerdict:
    return PromotionVerdict(valid=False, reason=reason, message=REASON_MESSAGES[reason])


class PromotionService:

    @staticmethod
    def evaluate(
        promotion: Optional[Promotion],
        order_amount: Decimal,
        now: Optional[datetime] = None,
    ) -> PromotionVerdict:
        """Decide whether ``promotion`` applies to ``order_amount`` at ``now``.

        The first failing rule wins: existence, date window, usage limit,
        minimum order amount. Reads the row only.
        """
        now = now or datetime.utcnow()

        if promotion is None or not promotion.is_active:
            return _rejected(NOT_FOUND)
        if promotion.start_date and now < promotion.start_date:
            return _rejected(EXPIRED)
        if promotion.end_date and now > promotion.end_date:
            return _rejected(EXPIRED)
        if promotion.usage_limit is not None and promotion.used_count >= promotion.usage_limit:
            return _rejected(EXHAUSTED)
        if Decimal(order_amount) < Decimal(promotion.min_order_amount or 0):
            return _rejected(BELOW_MINIMUM)

        return PromotionVerdict(
            valid=True,
            discount_amount=compute_discount(promotion, order_amount),
            message="Promotion applied successfully",
        )

    @staticmethod
    def find_by_code(db: Session, code: str, for_update: bool = False) -> Optional[Promotion]:
        query = db.query(Promotion).filter(Promotion.code == normalize_code(code))
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    @staticmethod
    def validate(
        db: Session,
        code: str,
        order_amount: Decimal,
        now: Optional[datetime] = None,
    ) -> PromotionVerdict:
        """Check a code against an order amount without touching usage counters."""
        promotion = PromotionService.find_by_code(db, code)
        verdict = PromotionService.evaluate(promotion, order_amount, now)
        logger.info(
            "promotion_validated",
            code=normalize_code(code),
            valid=verdict.valid,
            reason=verdict.reason,
        )
        return verdict

    @staticmethod
    def redeem(db: Session, promotion: Promotion) -> None:
        """Count one use of ``promotion``. Runs inside the caller's transaction."""
        result = db.execute(
            update(Promotion)
            .where(
                Promotion.id == promotion.id,
                or_(Promotion.usage_limit.is_(None), Promotion.used_count < Promotion.usage_limit),
            )
            .values(used_count=Promotion.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidPromotion(EXHAUSTED, REASON_MESSAGES[EXHAUSTED])
        logger.info("promotion_redeemed", promotion_id=promotion.id, code=promotion.code)

    # ---- admin ----

    @staticmethod
    def _get(db: Session, promotion_id: int) -> Promotion:
        promotion = db.query(Promotion).filter(Promotion.id == promotion_id).first()
        if not promotion:
            raise PromotionNotFound()
        return promotion

    @staticmethod
    def _check_value(promotion: Promotion) -> None:
        if promotion.discount_type == DiscountType.PERCENT and Decimal(promotion.discount_value) > 100:
            raise ValidationError("Percentage discount cannot exceed 100%")
        if promotion.start_date and promotion.end_date and promotion.start_date > promotion.end_date:
            raise ValidationError("start_date must be before end_date")

    @staticmethod
    def create(db: Session, promotion_data: PromotionCreate) -> PromotionResponse:
        """Create a new promotion (admin only)."""
        code = normalize_code(promotion_data.code)
        if PromotionService.find_by_code(db, code):
            raise DuplicateResource("Promotion code already exists")

        promotion = Promotion(**promotion_data.model_dump(exclude={"code"}), code=code, used_count=0)
        PromotionService._check_value(promotion)

        db.add(promotion)
        db.commit()
        db.refresh(promotion)
        logger.info("promotion_created", promotion_id=promotion.id, code=promotion.code)
        return PromotionResponse.model_validate(promotion)

    @staticmethod
    def update(db: Session, promotion_id: int, promotion_data: PromotionUpdate) -> PromotionResponse:
        """Update a promotion (admin only)."""
        promotion = PromotionService._get(db, promotion_id)

        update_data = promotion_data.model_dump(exclude_unset=True)
        if "code" in update_data:
            update_data["code"] = normalize_code(update_data["code"])
            clash = PromotionService.find_by_code(db, update_data["code"])
            if clash and clash.id != promotion.id:
                raise DuplicateResource("Promotion code already exists")

        for key, value in update_data.items():
            setattr(promotion, key, value)

        try:
            PromotionService._check_value(promotion)
        except ValidationError:
            db.rollback()
            raise

        db.commit()
        db.refresh(promotion)
        logger.info("promotion_updated", promotion_id=promotion.id, fields=sorted(update_data))
        return PromotionResponse.model_validate(promotion)

    @staticmethod
    def delete(db: Session, promotion_id: int) -> None:
        """Delete a promotion (admin only). Orders keep the code as text."""
        promotion = PromotionService._get(db, promotion_id)
        db.delete(promotion)
        db.commit()
        logger.info("promotion_deleted", promotion_id=promotion_id)

    @staticmethod
    def get(db: Session, promotion_id: int) -> PromotionResponse:
        return PromotionResponse.model_validate(PromotionService._get(db, promotion_id))

    @staticmethod
    def list_all(db: Session, page: int = 1, limit: int = 20) -> Tuple[List[PromotionResponse], int]:
        query = db.query(Promotion)
        total = query.count()
        promotions = (
            query.order_by(Promotion.created_at.desc(), Promotion.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return [PromotionResponse.model_validate(p) for p in promotions], total

    @staticmethod
    def list_active(db: Session, now: Optional[datetime] = None) -> List[PromotionResponse]:
        """Promotions a customer could use right now."""
        now = now or datetime.utcnow()
        promotions = (
            db.query(Promotion)
            .filter(
                Promotion.is_active == True,
                or_(Promotion.start_date.is_(None), Promotion.start_date <= now),
                or_(Promotion.end_date.is_(None), Promotion.end_date >= now),
                or_(Promotion.usage_limit.is_(None), Promotion.used_count < Promotion.usage_limit),
            )
            .order_by(Promotion.created_at.desc())
            .all()
        )
        return [PromotionResponse.model_validate(p) for p in promotions]
