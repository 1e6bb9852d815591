from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
import structlog

from app.api.deps import Pagination, get_current_user, require_admin
from app.core.exceptions import DuplicateResource, UserNotFound, ValidationError
from app.core.rate_limiter import limiter
from app.core.security import hash_password, verify_password
from app.db.session import get_db
from app.models.user import User, UserRole
from app.schemas.user import PasswordChange, RoleUpdate, UserResponse, UserUpdate
from app.utils.response import paginated_response, success

router = APIRouter()
logger = structlog.get_logger()


@router.get("/me", response_model=dict)
def get_current_user_profile(current_user: User = Depends(get_current_user)):
    """Get current user profile"""
    return success(
        data=UserResponse.model_validate(current_user).model_dump(),
        message="User profile retrieved",
    )


@router.put("/me", response_model=dict)
def update_user_profile(
    user_update: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update user profile"""
    if user_update.full_name:
        current_user.full_name = user_update.full_name.strip()

    if user_update.phone:
        existing_phone = db.query(User).filter(
            User.phone == user_update.phone,
            User.id != current_user.id,
        ).first()
        if existing_phone:
            raise DuplicateResource("Phone number already in use")
        current_user.phone = user_update.phone

    db.commit()
    db.refresh(current_user)
    logger.info("profile_updated", user_id=current_user.id)

    return success(
        data=UserResponse.model_validate(current_user).model_dump(),
        message="User profile updated",
    )


@router.put("/me/password", response_model=dict)
@limiter.limit("5/minute")
def change_password(
    request: Request,
    payload: PasswordChange,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Replace the password after checking the current one."""
    if not verify_password(payload.current_password, current_user.password_hash):
        logger.warning("password_change_rejected", user_id=current_user.id)
        raise ValidationError("Current password is incorrect")
    if payload.new_password == payload.current_password:
        raise ValidationError("New password must differ from the current password")

    current_user.password_hash = hash_password(payload.new_password)
    db.commit()
    logger.info("password_changed", user_id=current_user.id)

    return success(message="Password changed successfully")


# ============= ADMIN =============

@router.get("", response_model=dict)
@router.get("/", response_model=dict, include_in_schema=False)
def list_users(
    pagination: Pagination = Depends(),
    role: Optional[UserRole] = Query(None),
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Get all users, newest first"""
    query = db.query(User)
    if role is not None:
        query = query.filter(User.role == role)

    total = query.count()
    users = (
        query.order_by(User.created_at.desc(), User.id.desc())
        .offset((pagination.page - 1) * pagination.limit)
        .limit(pagination.limit)
        .all()
    )
    return paginated_response(
        [UserResponse.model_validate(user).model_dump() for user in users],
        total=total,
        page=pagination.page,
        limit=pagination.limit,
        message="Users retrieved successfully",
    )


@router.put("/{user_id}/role", response_model=dict)
def update_user_role(
    user_id: int,
    payload: RoleUpdate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Promote or demote a user"""
    if user_id == current_admin.id:
        raise ValidationError("Admins cannot change their own role")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise UserNotFound()

    old_role = user.role
    user.role = payload.role
    db.commit()
    db.refresh(user)
    logger.info(
        "user_role_updated",
        user_id=user.id,
        old_role=old_role.value,
        new_role=user.role.value,
        admin_user_id=current_admin.id,
    )

    return success(
        data=UserResponse.model_validate(user).model_dump(),
        message="User role updated",
    )
