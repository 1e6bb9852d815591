from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.core.config import settings
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.user import User
from app.schemas.cart import (
    CartItemCreate,
    CartItemRemove,
    CartItemUpdate,
    CartLineUpdate,
    CartSyncRequest,
    CheckoutRequest,
)
from app.services.cart_service import CartService
from app.services.checkout_service import CheckoutService
from app.utils.response import success

router = APIRouter()


def _cart_payload(db: Session, user_id: int) -> dict:
    return CartService.snapshot(db, user_id).model_dump()


@router.get("", response_model=dict)
@router.get("/", response_model=dict, include_in_schema=False)
def get_cart(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get user's cart with current prices"""
    return success(data=_cart_payload(db, current_user.id), message="Cart retrieved successfully")


@router.get("/count", response_model=dict)
def get_cart_count(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return success(data={"count": CartService.count(db, current_user.id)}, message="Cart count retrieved")


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED, include_in_schema=False)
@limiter.limit(settings.CART_RATE_LIMIT)
def add_to_cart(
    request: Request,
    cart_item: CartItemCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Add item to cart, merging with an existing line of the same color and size"""
    line = CartService.add_line(
        db,
        current_user.id,
        cart_item.product_id,
        cart_item.quantity,
        cart_item.color,
        cart_item.size,
    )
    return success(
        data={"cart_id": line.id, "quantity": line.quantity},
        message="Item added to cart",
    )


@router.put("", response_model=dict)
@router.put("/", response_model=dict, include_in_schema=False)
@limiter.limit(settings.CART_RATE_LIMIT)
def update_cart_line(
    request: Request,
    payload: CartLineUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Set quantity of the line matching product, color and size (0 removes it)"""
    line = CartService.update_line(
        db, current_user.id, payload.product_id, payload.quantity, payload.color, payload.size
    )
    if line is None:
        return success(message="Item removed from cart")
    return success(data={"cart_id": line.id, "quantity": line.quantity}, message="Cart updated")


@router.put("/{cart_id}", response_model=dict)
@limiter.limit(settings.CART_RATE_LIMIT)
def update_cart_item(
    request: Request,
    cart_id: int,
    payload: CartItemUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Set quantity of a cart line (0 removes it)"""
    line = CartService.update_line_by_id(db, current_user.id, cart_id, payload.quantity)
    if line is None:
        return success(message="Item removed from cart")
    return success(data={"cart_id": line.id, "quantity": line.quantity}, message="Cart updated")


@router.delete("/{cart_id}", response_model=dict)
@limiter.limit(settings.CART_RATE_LIMIT)
def remove_cart_item(
    request: Request,
    cart_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    CartService.remove_line_by_id(db, current_user.id, cart_id)
    return success(message="Item removed from cart")


@router.delete("", response_model=dict)
@router.delete("/", response_model=dict, include_in_schema=False)
@limiter.limit(settings.CART_RATE_LIMIT)
def remove_cart_line(
    request: Request,
    payload: CartItemRemove,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Remove the line matching product, color and size"""
    CartService.remove_line(db, current_user.id, payload.product_id, payload.color, payload.size)
    return success(message="Item removed from cart")


@router.post("/clear", response_model=dict)
@limiter.limit(settings.CART_RATE_LIMIT)
def clear_cart(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    removed = CartService.clear(db, current_user.id)
    return success(data={"items_removed": removed}, message="Cart cleared")


@router.post("/sync", response_model=dict)
@limiter.limit(settings.CART_RATE_LIMIT)
def sync_cart(
    request: Request,
    payload: CartSyncRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Merge a guest cart into the user's cart after login"""
    result = CartService.sync(db, current_user.id, payload.items)
    return success(data=result.model_dump(), message="Cart synced")


@router.post(
    "/checkout",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Place order from cart",
    description="""
Turns the cart into a pending order in a single transaction.

Behavior:
1. Locks the products in the cart and re-checks stock
2. Prices lines with the current product discount
3. Applies the promotion code, if any
4. Creates the order, decrements stock, counts the promotion use and empties the cart
""",
    responses={
        201: {"description": "Order placed"},
        400: {"description": "Cart is empty"},
        409: {"description": "Items unavailable, promotion rejected or stock changed"},
        503: {"description": "Temporary database failure"},
    },
    tags=["Cart"],
)
@limiter.limit(settings.CHECKOUT_RATE_LIMIT)
def checkout(
    request: Request,
    payload: CheckoutRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = CheckoutService.checkout(
        db,
        current_user.id,
        shipping_address=payload.shipping_address,
        phone=payload.phone,
        notes=payload.notes,
        promotion_code=payload.promotion_code,
        payment_method=payload.payment_method,
    )
    return success(data=result.model_dump(), message="Order placed successfully")
