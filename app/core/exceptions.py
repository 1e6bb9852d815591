from fastapi import status
from typing import Any, List, Optional


class APIError(Exception):
    """Base for every error a service raises towards the HTTP boundary.

    Subclasses pin ``status_code`` and ``code``; ``errors`` carries the
    item-level detail (offending cart lines, rejection reasons, ...).
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        errors: Optional[List[Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message or self.default_message
        self.errors = errors or []
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


# --------------------------------------------------
# TAXONOMY
# --------------------------------------------------
class ValidationError(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    default_message = "Invalid request data"


class AuthError(APIError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTH_ERROR"
    default_message = "Not authenticated"


class PermissionDenied(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "PERMISSION_DENIED"
    default_message = "Admin access required"


class NotFoundError(APIError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    default_message = "Resource not found"


class ConflictError(APIError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    default_message = "Request conflicts with current state"


class TransientError(APIError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "TRANSIENT_ERROR"
    default_message = "Temporary database failure, please retry"


# --------------------------------------------------
# VALIDATION
# --------------------------------------------------
class InvalidQuantity(ValidationError):
    code = "INVALID_QUANTITY"

    def __init__(self, quantity: Any, maximum: int):
        super().__init__(
            message=f"Quantity must be between 1 and {maximum}",
            errors=[{"quantity": quantity, "max_quantity": maximum}],
        )


class EmptyCart(ValidationError):
    code = "EMPTY_CART"
    default_message = "Cart is empty"


# --------------------------------------------------
# NOT FOUND
# --------------------------------------------------
class ProductNotFound(NotFoundError):
    code = "PRODUCT_NOT_FOUND"
    default_message = "Product not found"


class LineNotFound(NotFoundError):
    code = "CART_ITEM_NOT_FOUND"
    default_message = "Cart item not found"


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"
    default_message = "Order not found"


class PromotionNotFound(NotFoundError):
    code = "PROMOTION_NOT_FOUND"
    default_message = "Promotion not found"


class CategoryNotFound(NotFoundError):
    code = "CATEGORY_NOT_FOUND"
    default_message = "Category not found"


class UserNotFound(NotFoundError):
    code = "USER_NOT_FOUND"
    default_message = "User not found"


# --------------------------------------------------
# CONFLICTS
# --------------------------------------------------
class InsufficientStock(ConflictError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, available: int, requested: Optional[int] = None):
        self.available = available
        super().__init__(
            message=f"Insufficient stock. Only {available} items available",
            errors=[{"available_stock": available, "requested": requested}],
        )


class UnavailableItems(ConflictError):
    code = "UNAVAILABLE_ITEMS"
    default_message = "Some items in your cart are not available"

    def __init__(self, items: List[dict]):
        self.items = items
        super().__init__(errors=items)


class StockRace(ConflictError):
    code = "STOCK_RACE"

    def __init__(self, product_id: int, requested: int):
        self.product_id = product_id
        super().__init__(
            message="Stock changed while placing the order, please review your cart",
            errors=[{"product_id": product_id, "requested": requested}],
        )


class InvalidPromotion(ConflictError):
    code = "INVALID_PROMOTION"

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(
            message=message or "Promotion code cannot be applied",
            errors=[{"reason": reason}],
        )


class InvalidState(ConflictError):
    code = "INVALID_STATE"
    default_message = "Order cannot be changed in its current state"


class DuplicateResource(ConflictError):
    code = "DUPLICATE"
    default_message = "Resource already exists"
