import threading
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from app.core.exceptions import (
    ConflictError,
    EmptyCart,
    InvalidPromotion,
    StockRace,
    UnavailableItems,
)
from app.models.cart import CartItem
from app.models.order import Order, OrderStatus
from app.models.product import Product
from app.services import checkout_service
from app.services.cart_service import CartService
from app.services.catalog_service import decrement_stock
from app.services.checkout_service import CheckoutService

ADDRESS = "221B Baker Street, London"
PHONE = "0912345678"


def _checkout(db: Session, user_id: int, **kwargs):
    return CheckoutService.checkout(db, user_id, shipping_address=ADDRESS, phone=PHONE, **kwargs)


def test_checkout_with_promotion(db_session: Session, make_user, make_product, make_promotion, put_in_cart):
    user = make_user()
    product = make_product(price="100000", discount_percent=10, stock=5)
    promotion = make_promotion(code="SALE10", discount_value="10")
    put_in_cart(user, product, 2)

    result = _checkout(db_session, user.id, promotion_code="SALE10")

    assert result.subtotal == Decimal("180000")
    assert result.promotion_discount == Decimal("18000")
    assert result.total_amount == Decimal("162000")
    assert result.items_count == 2

    db_session.refresh(product)
    db_session.refresh(promotion)
    assert product.stock == 3
    assert promotion.used_count == 1
    assert db_session.query(CartItem).filter(CartItem.user_id == user.id).count() == 0

    order = db_session.query(Order).one()
    assert order.id == result.order_id
    assert order.status == OrderStatus.PENDING
    assert order.promotion_code == "SALE10"
    assert [(item.quantity, item.price) for item in order.items] == [(2, Decimal("90000.00"))]
    assert [entry.new_status for entry in order.status_history] == ["pending"]


def test_checkout_total_is_sum_of_line_totals(db_session: Session, make_user, make_product, put_in_cart):
    user = make_user()
    shirt = make_product(price="19.99", stock=10)
    hat = make_product(price="5.00", discount_percent=50, stock=10)
    put_in_cart(user, shirt, 3, size="M")
    put_in_cart(user, shirt, 1, size="L")
    put_in_cart(user, hat, 2)

    result = _checkout(db_session, user.id)

    assert result.subtotal == Decimal("84.96")
    assert result.total_amount == result.subtotal
    assert result.promotion_discount == 0
    assert result.items_count == 6
    db_session.refresh(shirt)
    assert shirt.stock == 6
    assert len(db_session.query(Order).one().items) == 3


def test_empty_cart(db_session: Session, make_user):
    user = make_user()

    with pytest.raises(EmptyCart):
        _checkout(db_session, user.id)
    assert db_session.query(Order).count() == 0


def test_unavailable_items_roll_back_everything(db_session: Session, make_user, make_product, put_in_cart):
    user = make_user()
    in_stock = make_product(stock=10)
    scarce = make_product(stock=3, name="Scarce")
    put_in_cart(user, in_stock, 1)
    scarce_red = put_in_cart(user, scarce, 2, color="Red")
    scarce_blue = put_in_cart(user, scarce, 2, color="Blue")

    with pytest.raises(UnavailableItems) as exc_info:
        _checkout(db_session, user.id)

    reported = sorted(exc_info.value.items, key=lambda item: item["cart_id"])
    assert reported == [
        {"cart_id": scarce_red.id, "product_id": scarce.id, "name": "Scarce", "requested": 2, "available": 3},
        {"cart_id": scarce_blue.id, "product_id": scarce.id, "name": "Scarce", "requested": 2, "available": 3},
    ]
    db_session.refresh(in_stock)
    db_session.refresh(scarce)
    assert (in_stock.stock, scarce.stock) == (10, 3)
    assert db_session.query(Order).count() == 0
    assert db_session.query(CartItem).filter(CartItem.user_id == user.id).count() == 3


def test_invalid_promotion_rolls_back(db_session: Session, make_user, make_product, make_promotion, put_in_cart):
    user = make_user()
    product = make_product(stock=5)
    make_promotion(code="EXPIRED5", discount_value="5", end_date=datetime.utcnow() - timedelta(days=1))
    put_in_cart(user, product, 1)

    with pytest.raises(InvalidPromotion) as exc_info:
        _checkout(db_session, user.id, promotion_code="EXPIRED5")

    assert exc_info.value.reason == "EXPIRED"
    db_session.refresh(product)
    assert product.stock == 5
    assert db_session.query(Order).count() == 0


def test_exhausted_promotion_is_rejected(db_session: Session, make_user, make_product, make_promotion, put_in_cart):
    user = make_user()
    product = make_product(stock=5)
    promotion = make_promotion(code="ONCE", usage_limit=1, used_count=1)
    put_in_cart(user, product, 1)

    with pytest.raises(InvalidPromotion) as exc_info:
        _checkout(db_session, user.id, promotion_code="ONCE")

    assert exc_info.value.reason == "EXHAUSTED"
    db_session.refresh(promotion)
    assert promotion.used_count == 1


def test_decrement_stock_refuses_to_go_negative(db_session: Session, make_product):
    product = make_product(stock=1)

    with pytest.raises(StockRace):
        decrement_stock(db_session, product.id, 2)
    db_session.rollback()

    db_session.refresh(product)
    assert product.stock == 1


def test_stock_taken_after_validation_rolls_back(
    db_session: Session, make_user, make_product, put_in_cart, monkeypatch
):
    user = make_user()
    product = make_product(stock=2)
    put_in_cart(user, product, 2)
    real_lock = checkout_service.lock_products

    def lock_then_sell_out(db, product_ids):
        locked = real_lock(db, product_ids)
        db.execute(
            update(Product)
            .where(Product.id == product.id)
            .values(stock=1)
            .execution_options(synchronize_session=False)
        )
        return locked

    monkeypatch.setattr(checkout_service, "lock_products", lock_then_sell_out)

    with pytest.raises(StockRace):
        _checkout(db_session, user.id)

    db_session.refresh(product)
    assert product.stock == 2
    assert db_session.query(Order).count() == 0
    assert db_session.query(CartItem).filter(CartItem.user_id == user.id).count() == 1


def test_line_added_after_loading_stays_in_cart(
    db_session: Session, make_user, make_product, put_in_cart, monkeypatch
):
    user = make_user()
    bought = make_product(stock=5)
    late = make_product(stock=5)
    put_in_cart(user, bought, 1)
    real_load = CartService.load_lines

    def load_then_add(db, user_id):
        lines = real_load(db, user_id)
        db.add(CartItem(user_id=user_id, product_id=late.id, quantity=2))
        db.flush()
        return lines

    monkeypatch.setattr(CartService, "load_lines", load_then_add)

    result = _checkout(db_session, user.id)

    assert result.items_count == 1
    remaining = db_session.query(CartItem).filter(CartItem.user_id == user.id).all()
    assert [(line.product_id, line.quantity) for line in remaining] == [(late.id, 2)]
    db_session.refresh(late)
    assert late.stock == 5

def test_concurrent_checkouts_for_last_unit(
    session_factory: sessionmaker, db_session: Session, make_user, make_product, put_in_cart
):
    first_buyer = make_user()
    second_buyer = make_user()
    product = make_product(stock=1)
    put_in_cart(first_buyer, product, 1)
    put_in_cart(second_buyer, product, 1)
    buyer_ids = [first_buyer.id, second_buyer.id]
    product_id = product.id
    db_session.close()

    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def buy(user_id: int):
        session = session_factory()
        try:
            barrier.wait()
            _checkout(session, user_id)
            outcome = "ok"
        except ConflictError:
            outcome = "conflict"
        finally:
            session.close()
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=buy, args=(user_id,)) for user_id in buyer_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes) == ["conflict", "ok"]

    check = session_factory()
    try:
        assert check.query(Product).filter(Product.id == product_id).one().stock == 0
        assert check.query(Order).count() == 1
    finally:
        check.close()


# --------------------------------------------------
# HTTP
# --------------------------------------------------
def test_checkout_endpoint(client: TestClient, make_user, make_product, make_promotion, put_in_cart, headers_for):
    user = make_user()
    product = make_product(price="100000", discount_percent=10, stock=5)
    make_promotion(code="SALE10", discount_value="10")
    put_in_cart(user, product, 2)

    response = client.post(
        "/api/v1/cart/checkout",
        json={
            "shipping_address": ADDRESS,
            "phone": PHONE,
            "notes": "<b>Leave at door</b>",
            "promotion_code": "SALE10",
        },
        headers=headers_for(user),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["subtotal"] == 180000
    assert body["data"]["promotion_discount"] == 18000
    assert body["data"]["total_amount"] == 162000
    assert body["data"]["items_count"] == 2


def test_checkout_endpoint_reports_unavailable_lines(
    client: TestClient, make_user, make_product, put_in_cart, headers_for
):
    user = make_user()
    product = make_product(stock=1)
    line = put_in_cart(user, product, 3)

    response = client.post(
        "/api/v1/cart/checkout",
        json={"shipping_address": ADDRESS, "phone": PHONE},
        headers=headers_for(user),
    )

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "UNAVAILABLE_ITEMS"
    assert body["errors"] == [
        {"cart_id": line.id, "product_id": product.id, "name": product.name, "requested": 3, "available": 1}
    ]


def test_checkout_endpoint_empty_cart(client: TestClient, make_user, headers_for):
    user = make_user()

    response = client.post(
        "/api/v1/cart/checkout",
        json={"shipping_address": ADDRESS, "phone": PHONE},
        headers=headers_for(user),
    )

    assert response.status_code == 400
    assert response.json()["code"] == "EMPTY_CART"


@pytest.mark.parametrize("payload", [
    {"shipping_address": "short", "phone": PHONE},
    {"shipping_address": ADDRESS, "phone": "12-34"},
    {"shipping_address": ADDRESS, "phone": PHONE, "payment_method": "BARTER"},
])
def test_checkout_endpoint_validates_input(client: TestClient, make_user, headers_for, payload):
    user = make_user()

    response = client.post("/api/v1/cart/checkout", json=payload, headers=headers_for(user))

    assert response.status_code == 422
    assert response.json()["success"] is False
