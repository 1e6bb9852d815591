from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.api.deps import Pagination, get_current_user, require_admin
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.order import OrderStatus
from app.models.user import User, UserRole
from app.schemas.order import OrderStatusUpdate
from app.services.order_service import OrderService
from app.utils.response import paginated_response, success

router = APIRouter()


@router.get("/my-orders", response_model=dict)
def get_my_orders(
    pagination: Pagination = Depends(),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get user's orders, newest first"""
    orders, total = OrderService.list_user_orders(
        db, current_user.id, page=pagination.page, limit=pagination.limit
    )
    return paginated_response(
        [order.model_dump() for order in orders],
        total=total,
        page=pagination.page,
        limit=pagination.limit,
        message="Orders retrieved successfully",
    )


# ============= ADMIN =============

@router.get("/admin/all", response_model=dict)
@limiter.limit("60/minute")
def get_all_orders(
    request: Request,
    pagination: Pagination = Depends(),
    status: Optional[OrderStatus] = None,
    user_id: Optional[int] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Get all orders"""
    orders, total = OrderService.list_all_orders(
        db,
        page=pagination.page,
        limit=pagination.limit,
        status=status,
        user_id=user_id,
        from_date=from_date,
        to_date=to_date,
    )
    return paginated_response(
        [order.model_dump() for order in orders],
        total=total,
        page=pagination.page,
        limit=pagination.limit,
        message="Orders retrieved successfully",
    )


@router.get("/admin/stats", response_model=dict)
@limiter.limit("60/minute")
def get_order_stats(
    request: Request,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Order counts, revenue and best sellers"""
    return success(data=OrderService.get_stats(db), message="Order statistics retrieved successfully")


@router.put("/{order_id}/status", response_model=dict)
@limiter.limit("30/minute")
def update_order_status(
    request: Request,
    order_id: int,
    payload: OrderStatusUpdate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Update order status"""
    order = OrderService.update_status(
        db, order_id, payload.status, changed_by=current_admin.id, notes=payload.notes
    )
    return success(data=order.model_dump(), message="Order status updated successfully")


# ============= CUSTOMER =============

@router.get("/{order_id}", response_model=dict)
def get_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get order details"""
    order = OrderService.get_order(
        db, order_id, current_user.id, is_admin=current_user.role == UserRole.ADMIN
    )
    return success(data=order.model_dump(), message="Order retrieved successfully")


@router.put("/{order_id}/cancel", response_model=dict)
@limiter.limit("10/minute")
def cancel_order(
    request: Request,
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Cancel a pending order and restore its stock"""
    order = OrderService.cancel_order(db, order_id, current_user.id)
    return success(data=order.model_dump(), message="Order cancelled successfully")
