from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.api.deps import Pagination, require_admin
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.user import User
from app.schemas.product import ProductCreate, ProductUpdate
from app.services.catalog_service import SHOWCASE_LIMIT, CatalogService, to_response
from app.utils.response import paginated_response, success

router = APIRouter()


@router.get("", response_model=dict)
@router.get("/", response_model=dict, include_in_schema=False)
@limiter.limit("100/minute")
def get_products(
    request: Request,
    pagination: Pagination = Depends(),
    search: Optional[str] = Query(None, max_length=100),
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    sort: str = Query("newest", pattern="^(newest|price_asc|price_desc|name)$"),
    category_id: Optional[int] = Query(None, gt=0),
    db: Session = Depends(get_db),
):
    """
    Get active, in-stock products with filtering and pagination
    """
    products, total = CatalogService.list_products(
        db,
        page=pagination.page,
        limit=pagination.limit,
        search=search,
        min_price=min_price,
        max_price=max_price,
        sort=sort,
        category_id=category_id,
    )
    return paginated_response(
        [product.model_dump() for product in products],
        total=total,
        page=pagination.page,
        limit=pagination.limit,
        message="Products retrieved successfully",
    )


@router.get("/featured", response_model=dict)
@limiter.limit("100/minute")
def get_featured_products(
    request: Request,
    limit: int = Query(SHOWCASE_LIMIT, ge=1, le=50),
    db: Session = Depends(get_db),
):
    products = CatalogService.list_featured(db, limit=limit)
    return success(
        data=[product.model_dump() for product in products],
        message="Featured products retrieved successfully",
    )


@router.get("/new", response_model=dict)
@limiter.limit("100/minute")
def get_new_products(
    request: Request,
    limit: int = Query(SHOWCASE_LIMIT, ge=1, le=50),
    db: Session = Depends(get_db),
):
    products = CatalogService.list_new(db, limit=limit)
    return success(
        data=[product.model_dump() for product in products],
        message="New products retrieved successfully",
    )


@router.get("/{product_id}", response_model=dict)
@limiter.limit("100/minute")
def get_product(request: Request, product_id: int, db: Session = Depends(get_db)):
    product = CatalogService.get_product(db, product_id, active_only=True)
    return success(data=to_response(product).model_dump(), message="Product retrieved successfully")


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED, include_in_schema=False)
@limiter.limit("30/minute")
def create_product(
    request: Request,
    product_in: ProductCreate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Create product"""
    product = CatalogService.create_product(db, product_in)
    return success(data=product.model_dump(), message="Product created successfully")


@router.put("/{product_id}", response_model=dict)
@limiter.limit("30/minute")
def update_product(
    request: Request,
    product_id: int,
    product_in: ProductUpdate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Update product"""
    product = CatalogService.update_product(db, product_id, product_in)
    return success(data=product.model_dump(), message="Product updated successfully")


@router.delete("/{product_id}", response_model=dict)
@limiter.limit("30/minute")
def delete_product(
    request: Request,
    product_id: int,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Deactivate product (order history keeps referencing it)"""
    CatalogService.deactivate_product(db, product_id)
    return success(message="Product deactivated successfully")
