from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.api.deps import require_admin
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.user import User
from app.schemas.category import CategoryCreate, CategoryUpdate
from app.services.category_service import CategoryService
from app.utils.response import success

router = APIRouter()


@router.get("", response_model=dict)
@router.get("/", response_model=dict, include_in_schema=False)
@limiter.limit("100/minute")
def get_public_categories(request: Request, db: Session = Depends(get_db)):
    """Public: active categories with their buyable product counts."""
    categories = CategoryService.list_categories(db, active_only=True)
    return success(
        data=[category.model_dump() for category in categories],
        message="Categories retrieved",
    )


# ============= ADMIN =============

@router.get("/admin/all", response_model=dict)
@limiter.limit("60/minute")
def list_categories(
    request: Request,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: List categories (active and inactive)."""
    categories = CategoryService.list_categories(db, active_only=False)
    return success(
        data=[category.model_dump() for category in categories],
        message="Categories retrieved",
    )


@router.get("/{category_id}", response_model=dict)
@limiter.limit("100/minute")
def get_category(request: Request, category_id: int, db: Session = Depends(get_db)):
    category = CategoryService.get_category(db, category_id)
    return success(data=category.model_dump(), message="Category retrieved")


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED, include_in_schema=False)
@limiter.limit("30/minute")
def create_category(
    request: Request,
    category_in: CategoryCreate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Create category"""
    category = CategoryService.create_category(db, category_in)
    return success(data=category.model_dump(), message="Category created")


@router.put("/{category_id}", response_model=dict)
@limiter.limit("30/minute")
def update_category(
    request: Request,
    category_id: int,
    category_in: CategoryUpdate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Update category fields and keep name and slug unique."""
    category = CategoryService.update_category(db, category_id, category_in)
    return success(data=category.model_dump(), message="Category updated")


@router.delete("/{category_id}", response_model=dict)
@limiter.limit("20/minute")
def delete_category(
    request: Request,
    category_id: int,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Delete a category if no products are linked."""
    CategoryService.delete_category(db, category_id)
    return success(message="Category deleted")
