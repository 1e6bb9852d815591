from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Tuple

from slugify import slugify
from sqlalchemy import update
from sqlalchemy.orm import Session, joinedload
import structlog

from app.core.exceptions import DuplicateResource, ProductNotFound, StockRace, ValidationError
from app.models.product import Product
from app.schemas.product import ProductCreate, ProductResponse, ProductUpdate
from app.services.category_service import CategoryService

logger = structlog.get_logger()

CENT = Decimal("0.01")
SHOWCASE_LIMIT = 8
SORT_OPTIONS = {
    "newest": Product.created_at.desc(),
    "price_asc": Product.price.asc(),
    "price_desc": Product.price.desc(),
    "name": Product.name.asc(),
}


def final_price(price, discount_percent) -> Decimal:
    """Unit price after the product's own discount, rounded to the cent."""
    price = Decimal(price)
    discount = Decimal(discount_percent or 0)
    return (price * (Decimal(100) - discount) / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_response(product: Product) -> ProductResponse:
    return ProductResponse(
        id=product.id,
        name=product.name,
        slug=product.slug,
        description=product.description,
        brand=product.brand,
        image_url=product.image_url,
        category_id=product.category_id,
        category_name=product.category.name if product.category else None,
        price=product.price,
        discount_percent=product.discount_percent,
        final_price=final_price(product.price, product.discount_percent),
        stock=product.stock,
        is_active=product.is_active,
        is_featured=product.is_featured,
        created_at=product.created_at,
    )


# --------------------------------------------------
# STOCK PRIMITIVES (run inside the caller's transaction)
# --------------------------------------------------
def lock_products(db: Session, product_ids: Iterable[int]) -> Dict[int, Product]:
    """Lock product rows in ascending id order and return them by id."""
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    locked = (
        db.query(Product)
        .filter(Product.id.in_(ids))
        .order_by(Product.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    return {product.id: product for product in locked}


def decrement_stock(db: Session, product_id: int, quantity: int) -> None:
    """Take ``quantity`` units off a product, refusing to go below zero."""
    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("stock_race_detected", product_id=product_id, requested=quantity)
        raise StockRace(product_id=product_id, requested=quantity)


def restore_stock(db: Session, product_id: int, quantity: int) -> None:
    db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity)
        .execution_options(synchronize_session=False)
    )


class CatalogService:

    @staticmethod
    def get_product(db: Session, product_id: int, active_only: bool = False) -> Product:
        query = db.query(Product).filter(Product.id == product_id)
        if active_only:
            query = query.filter(Product.is_active == True)
        product = query.first()
        if not product:
            raise ProductNotFound()
        return product

    @staticmethod
    def list_products(
        db: Session,
        page: int = 1,
        limit: int = 12,
        search: Optional[str] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        sort: str = "newest",
        category_id: Optional[int] = None,
    ) -> Tuple[List[ProductResponse], int]:
        """Active, in-stock products for the storefront listing."""
        if sort not in SORT_OPTIONS:
            raise ValidationError(f"Unknown sort option: {sort}")

        query = (
            db.query(Product)
            .options(joinedload(Product.category))
            .filter(Product.is_active == True, Product.stock > 0)
        )
        if category_id is not None:
            query = query.filter(Product.category_id == category_id)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(Product.name.ilike(pattern) | Product.brand.ilike(pattern))
        if min_price is not None:
            query = query.filter(Product.price >= min_price)
        if max_price is not None:
            query = query.filter(Product.price <= max_price)

        total = query.count()
        products = (
            query.order_by(SORT_OPTIONS[sort], Product.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return [to_response(product) for product in products], total

    @staticmethod
    def _showcase_query(db: Session):
        return (
            db.query(Product)
            .options(joinedload(Product.category))
            .filter(Product.is_active == True, Product.stock > 0)
        )

    @staticmethod
    def list_featured(db: Session, limit: int = SHOWCASE_LIMIT) -> List[ProductResponse]:
        """Products flagged for the home page, newest first."""
        products = (
            CatalogService._showcase_query(db)
            .filter(Product.is_featured == True)
            .order_by(Product.created_at.desc(), Product.id.desc())
            .limit(limit)
            .all()
        )
        return [to_response(product) for product in products]

    @staticmethod
    def list_new(db: Session, limit: int = SHOWCASE_LIMIT) -> List[ProductResponse]:
        products = (
            CatalogService._showcase_query(db)
            .order_by(Product.created_at.desc(), Product.id.desc())
            .limit(limit)
            .all()
        )
        return [to_response(product) for product in products]

    @staticmethod
    def _unique_slug(db: Session, name: str, exclude_id: Optional[int] = None) -> str:
        base = slugify(name)
        if not base:
            raise ValidationError("Product name must contain letters or digits")

        candidate = base
        suffix = 2
        while True:
            query = db.query(Product.id).filter(Product.slug == candidate)
            if exclude_id is not None:
                query = query.filter(Product.id != exclude_id)
            if query.first() is None:
                return candidate
            candidate = f"{base}-{suffix}"
            suffix += 1

    @staticmethod
    def create_product(db: Session, product_data: ProductCreate) -> ProductResponse:
        """Create a product (admin only)."""
        CategoryService.require(db, product_data.category_id)
        product = Product(
            slug=CatalogService._unique_slug(db, product_data.name),
            **product_data.model_dump(),
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        logger.info("product_created", product_id=product.id, slug=product.slug)
        return to_response(product)

    @staticmethod
    def update_product(db: Session, product_id: int, product_data: ProductUpdate) -> ProductResponse:
        """Update a product (admin only)."""
        product = CatalogService.get_product(db, product_id)

        update_data = product_data.model_dump(exclude_unset=True)
        if "category_id" in update_data:
            CategoryService.require(db, update_data["category_id"])
        if "name" in update_data and update_data["name"] != product.name:
            product.slug = CatalogService._unique_slug(db, update_data["name"], exclude_id=product.id)
        for key, value in update_data.items():
            setattr(product, key, value)

        db.commit()
        db.refresh(product)
        logger.info("product_updated", product_id=product.id, fields=sorted(update_data))
        return to_response(product)

    @staticmethod
    def deactivate_product(db: Session, product_id: int) -> None:
        """Soft-delete: order lines keep referencing the row."""
        product = CatalogService.get_product(db, product_id)
        if not product.is_active:
            raise DuplicateResource("Product is already inactive")
        product.is_active = False
        db.commit()
        logger.info("product_deactivated", product_id=product.id)
