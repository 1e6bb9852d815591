from typing import Dict, List, Optional

from slugify import slugify
from sqlalchemy import func
from sqlalchemy.orm import Session
import structlog

from app.core.exceptions import CategoryNotFound, ConflictError, DuplicateResource, ValidationError
from app.models.category import Category
from app.models.product import Product
from app.schemas.category import CategoryCreate, CategoryResponse, CategoryUpdate

logger = structlog.get_logger()


def _to_response(category: Category, product_count: int = 0) -> CategoryResponse:
    return CategoryResponse(
        id=category.id,
        name=category.name,
        slug=category.slug,
        description=category.description,
        is_active=category.is_active,
        display_order=category.display_order,
        product_count=product_count,
        created_at=category.created_at,
    )


class CategoryService:

    @staticmethod
    def _get(db: Session, category_id: int) -> Category:
        category = db.query(Category).filter(Category.id == category_id).first()
        if not category:
            raise CategoryNotFound()
        return category

    @staticmethod
    def _product_counts(db: Session, category_ids: Optional[List[int]] = None) -> Dict[int, int]:
        """Buyable products per category: active and in stock."""
        query = (
            db.query(Product.category_id, func.count(Product.id))
            .filter(
                Product.category_id.isnot(None),
                Product.is_active == True,
                Product.stock > 0,
            )
        )
        if category_ids is not None:
            query = query.filter(Product.category_id.in_(category_ids))
        return dict(query.group_by(Product.category_id).all())

    @staticmethod
    def _check_unique(db: Session, name: str, slug: str, exclude_id: Optional[int] = None) -> None:
        query = db.query(Category).filter((Category.name == name) | (Category.slug == slug))
        if exclude_id is not None:
            query = query.filter(Category.id != exclude_id)
        if query.first():
            raise DuplicateResource("Category already exists")

    @staticmethod
    def require(db: Session, category_id: Optional[int]) -> None:
        """Reject product writes that point at a missing category."""
        if category_id is None:
            return
        if not db.query(Category.id).filter(Category.id == category_id).first():
            raise ValidationError(f"Invalid category_id: {category_id}")

    @staticmethod
    def list_categories(db: Session, active_only: bool = True) -> List[CategoryResponse]:
        query = db.query(Category)
        if active_only:
            query = query.filter(Category.is_active == True)
        categories = query.order_by(Category.display_order.asc(), Category.name.asc()).all()

        counts = CategoryService._product_counts(db)
        return [_to_response(category, counts.get(category.id, 0)) for category in categories]

    @staticmethod
    def get_category(db: Session, category_id: int, active_only: bool = True) -> CategoryResponse:
        category = CategoryService._get(db, category_id)
        if active_only and not category.is_active:
            raise CategoryNotFound()
        counts = CategoryService._product_counts(db, [category.id])
        return _to_response(category, counts.get(category.id, 0))

    @staticmethod
    def create_category(db: Session, category_data: CategoryCreate) -> CategoryResponse:
        """Admin: create a category; the slug is derived from the name."""
        slug = slugify(category_data.name)
        if not slug:
            raise ValidationError("Category name must contain letters or digits")
        CategoryService._check_unique(db, category_data.name, slug)

        category = Category(
            name=category_data.name,
            slug=slug,
            description=category_data.description,
            display_order=category_data.display_order,
        )
        db.add(category)
        db.commit()
        db.refresh(category)
        logger.info("category_created", category_id=category.id, slug=category.slug)
        return _to_response(category)

    @staticmethod
    def update_category(db: Session, category_id: int, category_data: CategoryUpdate) -> CategoryResponse:
        category = CategoryService._get(db, category_id)

        update_data = category_data.model_dump(exclude_unset=True)
        if update_data.get("name") is not None:
            slug = slugify(update_data["name"])
            if not slug:
                raise ValidationError("Category name must contain letters or digits")
            CategoryService._check_unique(db, update_data["name"], slug, exclude_id=category.id)
            category.slug = slug
        for key, value in update_data.items():
            if value is not None:
                setattr(category, key, value)

        db.commit()
        db.refresh(category)
        logger.info("category_updated", category_id=category.id, fields=sorted(update_data))
        counts = CategoryService._product_counts(db, [category.id])
        return _to_response(category, counts.get(category.id, 0))

    @staticmethod
    def delete_category(db: Session, category_id: int) -> None:
        """Admin: delete a category that no product points at."""
        category = CategoryService._get(db, category_id)

        assigned = db.query(Product.id).filter(Product.category_id == category.id).first()
        if assigned:
            raise ConflictError("Cannot delete category while products are assigned")

        db.delete(category)
        db.commit()
        logger.info("category_deleted", category_id=category_id)
