from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import extract, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
import structlog

from app.core.exceptions import APIError, InvalidState, OrderNotFound, TransientError
from app.models.order import Order, OrderItem, OrderStatus
from app.models.order_status_history import OrderStatusHistory
from app.schemas.order import OrderDetailResponse, OrderSummaryResponse
from app.services.catalog_service import lock_products, restore_stock

logger = structlog.get_logger()


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


def to_summary(order: Order) -> OrderSummaryResponse:
    return OrderSummaryResponse(
        id=order.id,
        user_id=order.user_id,
        status=order.status,
        payment_method=order.payment_method,
        subtotal=order.subtotal,
        discount_amount=order.discount_amount,
        total_amount=order.total_amount,
        promotion_code=order.promotion_code,
        shipping_address=order.shipping_address,
        phone=order.phone,
        notes=order.notes,
        item_count=sum(item.quantity for item in order.items),
        created_at=order.created_at,
    )


def _restock(db: Session, order: Order) -> None:
    """Put every line's quantity back on its product."""
    quantities: Dict[int, int] = defaultdict(int)
    for item in order.items:
        quantities[item.product_id] += item.quantity

    lock_products(db, quantities)
    for product_id in sorted(quantities):
        restore_stock(db, product_id, quantities[product_id])


def _record_status(
    db: Session,
    order: Order,
    new_status: OrderStatus,
    changed_by: Optional[int],
    notes: Optional[str] = None,
) -> None:
    db.add(OrderStatusHistory(
        order_id=order.id,
        old_status=order.status.value,
        new_status=new_status.value,
        changed_by=changed_by,
        notes=notes,
    ))
    order.status = new_status


class OrderService:

    @staticmethod
    def _lock_order(db: Session, order_id: int) -> Optional[Order]:
        return (
            db.query(Order)
            .filter(Order.id == order_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    @staticmethod
    def cancel_order(db: Session, order_id: int, user_id: int) -> OrderDetailResponse:
        """Cancel one of the user's pending orders and give its stock back."""
        try:
            order = OrderService._lock_order(db, order_id)
            if not order or order.user_id != user_id:
                raise OrderNotFound()
            if order.status != OrderStatus.PENDING:
                raise InvalidState(f"Cannot cancel order with status: {order.status.value}")

            _restock(db, order)
            _record_status(db, order, OrderStatus.CANCELLED, user_id, "Cancelled by customer")
            db.commit()
        except APIError:
            db.rollback()
            raise
        except SQLAlchemyError:
            db.rollback()
            logger.exception("order_cancel_failed", order_id=order_id, user_id=user_id)
            raise TransientError()

        logger.info("order_cancelled", order_id=order_id, user_id=user_id)
        db.refresh(order)
        return OrderDetailResponse.model_validate(order)

    @staticmethod
    def list_user_orders(
        db: Session,
        user_id: int,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[OrderSummaryResponse], int]:
        query = db.query(Order).filter(Order.user_id == user_id)
        total = query.count()
        orders = (
            query.options(selectinload(Order.items))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return [to_summary(order) for order in orders], total

    @staticmethod
    def get_order(db: Session, order_id: int, user_id: int, is_admin: bool = False) -> OrderDetailResponse:
        """Customers only see their own orders; another user's order reads as missing."""
        order = (
            db.query(Order)
            .options(selectinload(Order.items), selectinload(Order.status_history))
            .filter(Order.id == order_id)
            .first()
        )
        if not order or (not is_admin and order.user_id != user_id):
            raise OrderNotFound()
        return OrderDetailResponse.model_validate(order)

    # ---- admin ----

    @staticmethod
    def list_all_orders(
        db: Session,
        page: int = 1,
        limit: int = 20,
        status: Optional[OrderStatus] = None,
        user_id: Optional[int] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> Tuple[List[OrderSummaryResponse], int]:
        query = db.query(Order)
        if status:
            query = query.filter(Order.status == status)
        if user_id:
            query = query.filter(Order.user_id == user_id)
        if from_date:
            query = query.filter(Order.created_at >= from_date)
        if to_date:
            query = query.filter(Order.created_at <= to_date)

        total = query.count()
        orders = (
            query.options(selectinload(Order.items))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return [to_summary(order) for order in orders], total

    @staticmethod
    def update_status(
        db: Session,
        order_id: int,
        new_status: OrderStatus,
        changed_by: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> OrderDetailResponse:
        """Move an order to ``new_status``. Admin only.

        Cancelled is terminal. Moving into it restores stock, which can only
        happen once because the order can never leave it again. Setting the
        current status again is a no-op.
        """
        try:
            order = OrderService._lock_order(db, order_id)
            if not order:
                raise OrderNotFound()

            old_status = order.status
            if old_status == new_status:
                db.rollback()
                return OrderService.get_order(db, order_id, changed_by, is_admin=True)
            if old_status == OrderStatus.CANCELLED:
                raise InvalidState("Cancelled orders cannot change status")

            if new_status == OrderStatus.CANCELLED:
                _restock(db, order)
            _record_status(db, order, new_status, changed_by, notes)
            db.commit()
        except APIError:
            db.rollback()
            raise
        except SQLAlchemyError:
            db.rollback()
            logger.exception("order_status_update_failed", order_id=order_id)
            raise TransientError()

        logger.info(
            "order_status_updated",
            order_id=order_id,
            old_status=old_status.value,
            new_status=new_status.value,
            changed_by=changed_by,
        )
        db.refresh(order)
        return OrderDetailResponse.model_validate(order)

    @staticmethod
    def get_stats(db: Session, now: Optional[datetime] = None) -> dict:
        """Dashboard numbers. Revenue counts delivered orders only."""
        now = now or datetime.utcnow()

        counts = dict(
            db.query(Order.status, func.count(Order.id)).group_by(Order.status).all()
        )
        orders_by_status = {status.value: counts.get(status, 0) for status in OrderStatus}

        total_revenue = (
            db.query(func.sum(Order.total_amount))
            .filter(Order.status == OrderStatus.DELIVERED)
            .scalar()
        )

        year = extract("year", Order.created_at)
        month = extract("month", Order.created_at)
        monthly = (
            db.query(year.label("year"), month.label("month"), func.sum(Order.total_amount))
            .filter(
                Order.status == OrderStatus.DELIVERED,
                Order.created_at >= now - timedelta(days=365),
            )
            .group_by(year, month)
            .order_by(year, month)
            .all()
        )

        total_sold = func.sum(OrderItem.quantity)
        top_products = (
            db.query(OrderItem.product_id, OrderItem.product_name, total_sold.label("sold"))
            .join(Order, OrderItem.order_id == Order.id)
            .filter(Order.status == OrderStatus.DELIVERED)
            .group_by(OrderItem.product_id, OrderItem.product_name)
            .order_by(total_sold.desc())
            .limit(10)
            .all()
        )

        return {
            "total_orders": sum(orders_by_status.values()),
            "orders_by_status": orders_by_status,
            "total_revenue": _money(total_revenue),
            "monthly_revenue": [
                {"year": int(row[0]), "month": int(row[1]), "revenue": _money(row[2])}
                for row in monthly
            ],
            "top_products": [
                {"product_id": row[0], "name": row[1], "sold": int(row[2])}
                for row in top_products
            ],
        }
