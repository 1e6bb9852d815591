from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.api.deps import Pagination, require_admin
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.user import User
from app.schemas.promotion import PromotionCreate, PromotionUpdate, PromotionValidateRequest
from app.services.promotion_service import PromotionService
from app.utils.response import paginated_response, success

router = APIRouter()


@router.get("", response_model=dict)
@router.get("/", response_model=dict, include_in_schema=False)
@limiter.limit("100/minute")
def list_active_promotions(request: Request, db: Session = Depends(get_db)):
    """Promotions currently open to customers"""
    promotions = PromotionService.list_active(db)
    return success(
        data=[promotion.model_dump() for promotion in promotions],
        message="Promotions retrieved successfully",
    )


@router.post("/validate", response_model=dict)
@limiter.limit("30/minute")
def validate_promotion(
    request: Request,
    payload: PromotionValidateRequest,
    db: Session = Depends(get_db),
):
    """Check a code against an order amount. Does not count a use."""
    verdict = PromotionService.validate(db, payload.code, payload.order_amount)
    return success(data=verdict.model_dump(), message=verdict.message)


# ============= ADMIN =============

@router.get("/admin/all", response_model=dict)
def list_all_promotions(
    pagination: Pagination = Depends(),
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Get all promotions"""
    promotions, total = PromotionService.list_all(db, page=pagination.page, limit=pagination.limit)
    return paginated_response(
        [promotion.model_dump() for promotion in promotions],
        total=total,
        page=pagination.page,
        limit=pagination.limit,
        message="Promotions retrieved successfully",
    )


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED, include_in_schema=False)
def create_promotion(
    payload: PromotionCreate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Create promotion"""
    promotion = PromotionService.create(db, payload)
    return success(data=promotion.model_dump(), message="Promotion created successfully")


@router.put("/{promotion_id}", response_model=dict)
def update_promotion(
    promotion_id: int,
    payload: PromotionUpdate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Update promotion"""
    promotion = PromotionService.update(db, promotion_id, payload)
    return success(data=promotion.model_dump(), message="Promotion updated successfully")


@router.delete("/{promotion_id}", response_model=dict)
def delete_promotion(
    promotion_id: int,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Delete promotion"""
    PromotionService.delete(db, promotion_id)
    return success(message="Promotion deleted successfully")
