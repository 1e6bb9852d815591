from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import or_
from sqlalchemy.orm import Session
import structlog

from app.api.deps import get_current_user
from app.core.config import settings
from app.core.exceptions import AuthError, DuplicateResource, PermissionDenied
from app.core.rate_limiter import limiter
from app.core.security import create_access_token, hash_password, verify_password
from app.db.session import get_db
from app.models.user import User
from app.schemas.user import TokenResponse, UserLogin, UserRegister, UserResponse
from app.utils.response import success

router = APIRouter()
logger = structlog.get_logger()


@router.post(
    "/register",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Register user account",
    responses={
        201: {"description": "Registration successful"},
        409: {"description": "Email or username already registered"},
        422: {"description": "Validation error"},
    },
    tags=["Authentication"],
)
@limiter.limit("5/minute")
def register(request: Request, user_in: UserRegister, db: Session = Depends(get_db)):
    existing_user = (
        db.query(User)
        .filter(or_(User.email == user_in.email, User.username == user_in.username))
        .first()
    )
    if existing_user:
        raise DuplicateResource("Email or username already registered")

    user = User(
        username=user_in.username,
        email=user_in.email,
        password_hash=hash_password(user_in.password),
        full_name=user_in.full_name,
        phone=user_in.phone,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("user_registered", user_id=user.id)

    return success(
        data=UserResponse.model_validate(user).model_dump(),
        message="Registration successful",
    )


@router.post(
    "/login",
    response_model=dict,
    summary="Login user",
    responses={
        200: {"description": "Login successful"},
        401: {"description": "Invalid credentials"},
        403: {"description": "Account inactive"},
    },
    tags=["Authentication"],
)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
def login(request: Request, credentials: UserLogin, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == credentials.email).first()

    if not user or not verify_password(credentials.password, user.password_hash):
        logger.warning("login_failed", email=credentials.email)
        raise AuthError("Incorrect email or password")

    if not user.is_active:
        raise PermissionDenied("Account is inactive")

    access_token = create_access_token(
        data={"sub": str(user.id), "role": user.role.value}
    )
    logger.info("user_logged_in", user_id=user.id)

    return success(
        data={
            "user": UserResponse.model_validate(user).model_dump(),
            **TokenResponse(access_token=access_token).model_dump(),
        },
        message="Login successful",
    )


@router.get("/me", response_model=dict, tags=["Authentication"])
def read_me(current_user: User = Depends(get_current_user)):
    return success(
        data=UserResponse.model_validate(current_user).model_dump(),
        message="User retrieved successfully",
    )
