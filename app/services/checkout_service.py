from collections import defaultdict
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from app.core.exceptions import APIError, EmptyCart, InvalidPromotion, TransientError, UnavailableItems
from app.models.order import Order, OrderItem, OrderStatus, PaymentMethod
from app.models.order_status_history import OrderStatusHistory
from app.schemas.cart import CheckoutResponse
from app.services.cart_service import CartService
from app.services.catalog_service import decrement_stock, final_price, lock_products
from app.services.promotion_service import PromotionService, normalize_code

logger = structlog.get_logger()


class CheckoutState(str, Enum):
    VALIDATING = "VALIDATING"
    PRICING_PROMOTION = "PRICING_PROMOTION"
    PERSISTING = "PERSISTING"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"


class CheckoutService:

    @staticmethod
    def _enter(state: CheckoutState, user_id: int, **extra) -> CheckoutState:
        logger.info("checkout_state", state=state.value, user_id=user_id, **extra)
        return state

    @staticmethod
    def checkout(
        db: Session,
        user_id: int,
        shipping_address: str,
        phone: str,
        notes: Optional[str] = None,
        promotion_code: Optional[str] = None,
        payment_method: PaymentMethod = PaymentMethod.COD,
    ) -> CheckoutResponse:
        """Turn the user's cart into a pending order in one transaction.

        Product rows are locked in ascending id order before stock is read,
        and every decrement is conditional on enough stock remaining, so two
        buyers racing for the last unit cannot both succeed. Any failure
        rolls back the order, the stock changes, the promotion usage and the
        cart deletion together.
        """
        state = CheckoutService._enter(CheckoutState.VALIDATING, user_id)
        try:
            lines = CartService.load_lines(db, user_id)
            if not lines:
                raise EmptyCart()

            products = lock_products(db, [line.product_id for line, _ in lines])

            requested: Dict[int, int] = defaultdict(int)
            for line, _ in lines:
                requested[line.product_id] += line.quantity

            unavailable: List[dict] = []
            for line, _ in lines:
                product = products[line.product_id]
                if product.stock < requested[line.product_id]:
                    unavailable.append({
                        "cart_id": line.id,
                        "product_id": product.id,
                        "name": product.name,
                        "requested": line.quantity,
                        "available": product.stock,
                    })
            if unavailable:
                raise UnavailableItems(unavailable)

            unit_prices = {
                product_id: final_price(product.price, product.discount_percent)
                for product_id, product in products.items()
            }
            subtotal = sum(
                (unit_prices[line.product_id] * line.quantity for line, _ in lines),
                Decimal("0"),
            )

            promotion = None
            discount = Decimal("0")
            code = normalize_code(promotion_code)
            if code:
                state = CheckoutService._enter(CheckoutState.PRICING_PROMOTION, user_id, code=code)
                promotion = PromotionService.find_by_code(db, code, for_update=True)
                verdict = PromotionService.evaluate(promotion, subtotal)
                if not verdict.valid:
                    raise InvalidPromotion(verdict.reason, verdict.message)
                discount = verdict.discount_amount
            total = max(Decimal("0"), subtotal - discount)

            state = CheckoutService._enter(CheckoutState.PERSISTING, user_id, subtotal=str(subtotal))
            order = Order(
                user_id=user_id,
                subtotal=subtotal,
                discount_amount=discount,
                promotion_code=promotion.code if promotion else None,
                total_amount=total,
                status=OrderStatus.PENDING,
                payment_method=PaymentMethod(payment_method),
                shipping_address=shipping_address,
                phone=phone,
                notes=notes,
            )
            db.add(order)
            db.flush()
            order_id = order.id

            for line, _ in lines:
                product = products[line.product_id]
                db.add(OrderItem(
                    order_id=order_id,
                    product_id=product.id,
                    product_name=product.name,
                    color=line.color,
                    size=line.size,
                    quantity=line.quantity,
                    price=unit_prices[line.product_id],
                ))

            for product_id in sorted(requested):
                decrement_stock(db, product_id, requested[product_id])

            if promotion is not None:
                PromotionService.redeem(db, promotion)

            db.add(OrderStatusHistory(
                order_id=order_id,
                old_status=None,
                new_status=OrderStatus.PENDING.value,
                changed_by=user_id,
                notes="Order placed",
            ))
            CartService.delete_lines(db, user_id, [line.id for line, _ in lines])

            db.commit()
        except APIError as exc:
            db.rollback()
            CheckoutService._enter(
                CheckoutState.ROLLED_BACK, user_id, failed_in=state.value, error=exc.code
            )
            raise
        except SQLAlchemyError:
            db.rollback()
            logger.exception("checkout_database_error", user_id=user_id, failed_in=state.value)
            CheckoutService._enter(CheckoutState.ROLLED_BACK, user_id, failed_in=state.value, error="DATABASE")
            raise TransientError()

        items_count = sum(requested.values())
        CheckoutService._enter(
            CheckoutState.COMMITTED,
            user_id,
            order_id=order_id,
            total_amount=str(total),
            items_count=items_count,
        )
        return CheckoutResponse(
            order_id=order_id,
            subtotal=subtotal,
            promotion_discount=discount,
            total_amount=total,
            items_count=items_count,
        )
