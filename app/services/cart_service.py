from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import structlog

from app.core.config import settings
from app.core.exceptions import ConflictError, InsufficientStock, InvalidQuantity, LineNotFound, ProductNotFound
from app.models.cart import CartItem
from app.models.product import Product
from app.schemas.cart import CartItemResponse, CartResponse, CartSyncItem, CartSyncResponse
from app.services.catalog_service import CatalogService, final_price

logger = structlog.get_logger()

T = TypeVar("T")


def normalize_variant(value) -> Optional[str]:
    """Blank strings and the literal ``"null"`` mean no variant was chosen."""
    if value is None:
        return None
    value = str(value).strip()
    if not value or value.lower() == "null":
        return None
    return value


def _variant_filter(column, value: Optional[str]):
    return column.is_(None) if value is None else column == value


def _check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantity(quantity, settings.CART_MAX_QUANTITY)
    if quantity < 1 or quantity > settings.CART_MAX_QUANTITY:
        raise InvalidQuantity(quantity, settings.CART_MAX_QUANTITY)
    return quantity


def _check_stock(product: Product, quantity: int) -> None:
    if quantity > product.stock:
        raise InsufficientStock(available=product.stock, requested=quantity)


class CartService:
    """Owns the cart lines of each user.

    Every write goes through one merge rule: a line is keyed by
    ``(user, product, color, size)``; adding an existing key sums quantities,
    and the resulting quantity is checked against the configured maximum and
    the product's current stock.
    """

    # ---- internal helpers ----

    @staticmethod
    def _find_line(
        db: Session,
        user_id: int,
        product_id: int,
        color: Optional[str],
        size: Optional[str],
    ) -> Optional[CartItem]:
        return (
            db.query(CartItem)
            .filter(
                CartItem.user_id == user_id,
                CartItem.product_id == product_id,
                _variant_filter(CartItem.color, color),
                _variant_filter(CartItem.size, size),
            )
            .first()
        )

    @staticmethod
    def _get_line_by_id(db: Session, user_id: int, cart_id: int) -> CartItem:
        line = (
            db.query(CartItem)
            .filter(CartItem.id == cart_id, CartItem.user_id == user_id)
            .first()
        )
        if not line:
            raise LineNotFound()
        return line

    @staticmethod
    def _merge_line(
        db: Session,
        user_id: int,
        product: Product,
        quantity: int,
        color: Optional[str],
        size: Optional[str],
    ) -> CartItem:
        """Upsert a line by key. Caller validates ``quantity`` and commits."""
        existing = CartService._find_line(db, user_id, product.id, color, size)
        if existing:
            merged = existing.quantity + quantity
            _check_quantity(merged)
            _check_stock(product, merged)
            existing.quantity = merged
            return existing

        _check_stock(product, quantity)
        line = CartItem(
            user_id=user_id,
            product_id=product.id,
            color=color,
            size=size,
            quantity=quantity,
        )
        db.add(line)
        return line

    @staticmethod
    def _commit_merge(db: Session, user_id: int, work: Callable[[], T]) -> T:
        """Run ``work`` and commit it.

        Two requests merging the same key can both miss the existing line and
        insert; the unique line key rejects the second insert. The loser rolls
        back and runs ``work`` once more, which now finds the winner's line.
        """
        for attempt in (1, 2):
            try:
                result = work()
                db.commit()
                return result
            except IntegrityError:
                db.rollback()
                if attempt == 2:
                    raise ConflictError("Cart changed while it was being updated, please retry")
                logger.info("cart_merge_retried", user_id=user_id)
            except Exception:
                db.rollback()
                raise

    @staticmethod
    def _set_quantity(db: Session, line: CartItem, new_quantity: int) -> Optional[CartItem]:
        if isinstance(new_quantity, int) and not isinstance(new_quantity, bool) and new_quantity <= 0:
            db.delete(line)
            db.commit()
            logger.info("cart_line_removed", user_id=line.user_id, cart_id=line.id)
            return None

        _check_quantity(new_quantity)
        _check_stock(line.product, new_quantity)
        line.quantity = new_quantity
        db.commit()
        db.refresh(line)
        return line

    # ---- public operations ----

    @staticmethod
    def add_line(
        db: Session,
        user_id: int,
        product_id: int,
        quantity: int = 1,
        color: Optional[str] = None,
        size: Optional[str] = None,
    ) -> CartItem:
        """Add a product to the cart, merging with an existing line for the same variant."""
        _check_quantity(quantity)
        product = CatalogService.get_product(db, product_id, active_only=True)
        color = normalize_variant(color)
        size = normalize_variant(size)

        def merge() -> CartItem:
            line = CartService._merge_line(db, user_id, product, quantity, color, size)
            db.flush()
            return line

        line = CartService._commit_merge(db, user_id, merge)
        db.refresh(line)
        logger.info(
            "cart_line_added",
            user_id=user_id,
            product_id=product_id,
            cart_id=line.id,
            quantity=line.quantity,
        )
        return line

    @staticmethod
    def update_line(
        db: Session,
        user_id: int,
        product_id: int,
        new_quantity: int,
        color: Optional[str] = None,
        size: Optional[str] = None,
    ) -> Optional[CartItem]:
        """Set a line's quantity; zero or less removes it. Returns None when removed."""
        line = CartService._find_line(
            db, user_id, product_id, normalize_variant(color), normalize_variant(size)
        )
        if not line:
            raise LineNotFound()
        return CartService._set_quantity(db, line, new_quantity)

    @staticmethod
    def update_line_by_id(db: Session, user_id: int, cart_id: int, new_quantity: int) -> Optional[CartItem]:
        line = CartService._get_line_by_id(db, user_id, cart_id)
        return CartService._set_quantity(db, line, new_quantity)

    @staticmethod
    def remove_line(
        db: Session,
        user_id: int,
        product_id: int,
        color: Optional[str] = None,
        size: Optional[str] = None,
    ) -> None:
        line = CartService._find_line(
            db, user_id, product_id, normalize_variant(color), normalize_variant(size)
        )
        if not line:
            raise LineNotFound()
        db.delete(line)
        db.commit()
        logger.info("cart_line_removed", user_id=user_id, product_id=product_id)

    @staticmethod
    def remove_line_by_id(db: Session, user_id: int, cart_id: int) -> None:
        line = CartService._get_line_by_id(db, user_id, cart_id)
        db.delete(line)
        db.commit()
        logger.info("cart_line_removed", user_id=user_id, cart_id=cart_id)

    @staticmethod
    def delete_lines(db: Session, user_id: int, line_ids: Iterable[int]) -> int:
        """Delete the given lines of the user without committing."""
        ids = list(line_ids)
        if not ids:
            return 0
        return (
            db.query(CartItem)
            .filter(CartItem.user_id == user_id, CartItem.id.in_(ids))
            .delete(synchronize_session=False)
        )

    @staticmethod
    def delete_all_lines(db: Session, user_id: int) -> int:
        """Delete every line of the user without committing."""
        return (
            db.query(CartItem)
            .filter(CartItem.user_id == user_id)
            .delete(synchronize_session=False)
        )

    @staticmethod
    def clear(db: Session, user_id: int) -> int:
        """Empty the cart. Returns how many lines were removed; 0 when already empty."""
        removed = CartService.delete_all_lines(db, user_id)
        db.commit()
        if removed:
            logger.info("cart_cleared", user_id=user_id, items_removed=removed)
        return removed

    @staticmethod
    def count(db: Session, user_id: int) -> int:
        total = (
            db.query(func.coalesce(func.sum(CartItem.quantity), 0))
            .filter(CartItem.user_id == user_id)
            .scalar()
        )
        return int(total or 0)

    @staticmethod
    def load_lines(db: Session, user_id: int) -> List[Tuple[CartItem, Product]]:
        return (
            db.query(CartItem, Product)
            .join(Product, CartItem.product_id == Product.id)
            .filter(CartItem.user_id == user_id)
            .order_by(CartItem.created_at.desc(), CartItem.id.desc())
            .all()
        )

    @staticmethod
    def snapshot(db: Session, user_id: int) -> CartResponse:
        """Current lines with prices taken from the catalog right now."""
        items: List[CartItemResponse] = []
        subtotal = Decimal("0")
        total_items = 0

        for line, product in CartService.load_lines(db, user_id):
            unit_price = final_price(product.price, product.discount_percent)
            line_total = unit_price * line.quantity
            subtotal += line_total
            total_items += line.quantity

            items.append(
                CartItemResponse(
                    cart_id=line.id,
                    product_id=product.id,
                    name=product.name,
                    brand=product.brand,
                    image_url=product.image_url,
                    color=line.color,
                    size=line.size,
                    quantity=line.quantity,
                    stock=product.stock,
                    price=product.price,
                    discount_percent=product.discount_percent or 0,
                    unit_price=unit_price,
                    line_total=line_total,
                )
            )

        return CartResponse(items=items, subtotal=subtotal, total_items=total_items)

    @staticmethod
    def sync(db: Session, user_id: int, items: Iterable[CartSyncItem]) -> CartSyncResponse:
        """Merge a guest cart after login.

        Unlike ``add_line`` this clamps instead of failing: quantities are
        clamped to ``[1, max]`` and to available stock, and products that are
        unknown or out of stock are counted as errors. All merges commit
        together.
        """
        items = list(items)

        def merge_all() -> Tuple[int, int]:
            synced = errors = 0
            for item in items:
                try:
                    product = CatalogService.get_product(db, item.product_id, active_only=True)
                except ProductNotFound:
                    errors += 1
                    continue

                color = normalize_variant(item.color)
                size = normalize_variant(item.size)
                existing = CartService._find_line(db, user_id, product.id, color, size)
                already = existing.quantity if existing else 0

                wanted = min(max(item.quantity, 1), settings.CART_MAX_QUANTITY)
                room = min(product.stock, settings.CART_MAX_QUANTITY) - already
                quantity = min(wanted, room)
                if quantity <= 0:
                    errors += 1
                    continue

                CartService._merge_line(db, user_id, product, quantity, color, size)
                db.flush()
                synced += 1
            return synced, errors

        synced_count, error_count = CartService._commit_merge(db, user_id, merge_all)

        logger.info("cart_synced", user_id=user_id, synced_items=synced_count, error_items=error_count)
        cart = CartService.snapshot(db, user_id)
        return CartSyncResponse(
            **cart.model_dump(),
            synced_items=synced_count,
            error_items=error_count,
        )
