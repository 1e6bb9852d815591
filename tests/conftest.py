import os
import tempfile
from collections.abc import Generator
from decimal import Decimal
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "development"
os.environ.setdefault("DATABASE_URL", "sqlite:///./storefront_test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-storefront-suite-0123456789")

import app.models  # noqa: F401
from app.core.security import create_access_token, hash_password
from app.db.base_class import Base
from app.db.session import Database, get_db
from app.main import app
from app.models.cart import CartItem
from app.models.category import Category
from app.models.product import Product
from app.models.promotion import DiscountType, Promotion
from app.models.user import User, UserRole


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(engine: Engine, db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    database = Database(engine.url.render_as_string(hide_password=False)).connect()
    app.state.database = database
    app.dependency_overrides[get_db] = override_get_db
    app.state.limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    database.dispose()
    app.state.database = None


# --------------------------------------------------
# FACTORIES
# --------------------------------------------------
@pytest.fixture()
def make_user(db_session: Session):
    counter = {"n": 0}

    def _make_user(role: UserRole = UserRole.CUSTOMER, is_active: bool = True) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            username=f"{role.value}{n}",
            email=f"{role.value}{n}@example.com",
            full_name=f"Test {role.value.title()} {n}",
            phone=f"09000000{n:02d}",
            password_hash=hash_password("StrongPass1"),
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def make_product(db_session: Session):
    counter = {"n": 0}

    def _make_product(
        price="100000",
        discount_percent: int = 0,
        stock: int = 10,
        is_active: bool = True,
        name: Optional[str] = None,
        category_id: Optional[int] = None,
        is_featured: bool = False,
    ) -> Product:
        counter["n"] += 1
        n = counter["n"]
        product = Product(
            name=name or f"Product {n}",
            slug=f"product-{n}",
            brand="Acme",
            price=Decimal(str(price)),
            discount_percent=discount_percent,
            stock=stock,
            is_active=is_active,
            is_featured=is_featured,
            category_id=category_id,
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return _make_product


@pytest.fixture()
def make_category(db_session: Session):
    def _make_category(name: str = "Shirts", is_active: bool = True, display_order: int = 0) -> Category:
        category = Category(
            name=name,
            slug=name.lower().replace(" ", "-"),
            is_active=is_active,
            display_order=display_order,
        )
        db_session.add(category)
        db_session.commit()
        db_session.refresh(category)
        return category

    return _make_category


@pytest.fixture()
def make_promotion(db_session: Session):
    def _make_promotion(
        code: str = "SALE10",
        discount_type: DiscountType = DiscountType.PERCENT,
        discount_value="10",
        min_order_amount="0",
        usage_limit: Optional[int] = None,
        used_count: int = 0,
        start_date=None,
        end_date=None,
        is_active: bool = True,
    ) -> Promotion:
        promotion = Promotion(
            code=code,
            discount_type=discount_type,
            discount_value=Decimal(str(discount_value)),
            min_order_amount=Decimal(str(min_order_amount)),
            usage_limit=usage_limit,
            used_count=used_count,
            start_date=start_date,
            end_date=end_date,
            is_active=is_active,
        )
        db_session.add(promotion)
        db_session.commit()
        db_session.refresh(promotion)
        return promotion

    return _make_promotion


@pytest.fixture()
def put_in_cart(db_session: Session):
    def _put_in_cart(user: User, product: Product, quantity: int = 1, color=None, size=None) -> CartItem:
        line = CartItem(
            user_id=user.id,
            product_id=product.id,
            quantity=quantity,
            color=color,
            size=size,
        )
        db_session.add(line)
        db_session.commit()
        db_session.refresh(line)
        return line

    return _put_in_cart


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.id), "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def headers_for():
    return auth_headers
