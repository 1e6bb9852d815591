import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.core.exceptions import CategoryNotFound, ConflictError, DuplicateResource
from app.models.category import Category
from app.models.user import UserRole
from app.schemas.category import CategoryCreate, CategoryUpdate
from app.services.category_service import CategoryService


def test_list_categories_orders_and_counts(db_session: Session, make_category, make_product):
    shoes = make_category("Shoes", display_order=2)
    shirts = make_category("Shirts", display_order=1)
    make_category("Archive", is_active=False)
    make_product(category_id=shirts.id)
    make_product(category_id=shirts.id)
    make_product(category_id=shirts.id, stock=0)
    make_product(category_id=shoes.id, is_active=False)

    categories = CategoryService.list_categories(db_session)

    assert [(category.name, category.product_count) for category in categories] == [
        ("Shirts", 2),
        ("Shoes", 0),
    ]
    assert len(CategoryService.list_categories(db_session, active_only=False)) == 3


def test_create_category_derives_slug(db_session: Session):
    created = CategoryService.create_category(
        db_session, CategoryCreate(name="  Summer Dresses ", description="Light fabrics")
    )

    assert created.name == "Summer Dresses"
    assert created.slug == "summer-dresses"
    assert created.is_active is True

    with pytest.raises(DuplicateResource):
        CategoryService.create_category(db_session, CategoryCreate(name="Summer Dresses"))


def test_update_category(db_session: Session, make_category):
    shirts = make_category("Shirts")
    make_category("Shoes")

    updated = CategoryService.update_category(
        db_session, shirts.id, CategoryUpdate(name="Tops", is_active=False)
    )
    assert (updated.name, updated.slug, updated.is_active) == ("Tops", "tops", False)

    with pytest.raises(DuplicateResource):
        CategoryService.update_category(db_session, shirts.id, CategoryUpdate(name="Shoes"))


def test_inactive_category_is_hidden_from_the_public(db_session: Session, make_category):
    archive = make_category("Archive", is_active=False)

    with pytest.raises(CategoryNotFound):
        CategoryService.get_category(db_session, archive.id)
    assert CategoryService.get_category(db_session, archive.id, active_only=False).name == "Archive"


def test_delete_category_refuses_while_products_are_assigned(db_session: Session, make_category, make_product):
    shirts = make_category("Shirts")
    product = make_product(category_id=shirts.id, is_active=False)

    with pytest.raises(ConflictError):
        CategoryService.delete_category(db_session, shirts.id)

    product.category_id = None
    db_session.commit()
    CategoryService.delete_category(db_session, shirts.id)
    assert db_session.query(Category).count() == 0


def test_public_category_endpoints(client: TestClient, make_category, make_product):
    shirts = make_category("Shirts")
    make_product(category_id=shirts.id)

    listing = client.get("/api/v1/categories")
    assert listing.status_code == 200
    assert listing.json()["data"][0]["product_count"] == 1

    detail = client.get(f"/api/v1/categories/{shirts.id}")
    assert detail.json()["data"]["slug"] == "shirts"

    missing = client.get("/api/v1/categories/999")
    assert missing.status_code == 404
    assert missing.json()["code"] == "CATEGORY_NOT_FOUND"


def test_admin_category_management(client: TestClient, make_user, make_product, headers_for):
    admin = make_user(role=UserRole.ADMIN)
    headers = headers_for(admin)

    created = client.post("/api/v1/categories", json={"name": "Bags"}, headers=headers)
    assert created.status_code == 201
    category_id = created.json()["data"]["id"]

    duplicate = client.post("/api/v1/categories", json={"name": "Bags"}, headers=headers)
    assert duplicate.status_code == 409

    hidden = client.put(f"/api/v1/categories/{category_id}", json={"is_active": False}, headers=headers)
    assert hidden.json()["data"]["is_active"] is False
    assert client.get("/api/v1/categories").json()["data"] == []
    assert len(client.get("/api/v1/categories/admin/all", headers=headers).json()["data"]) == 1

    make_product(category_id=category_id)
    blocked = client.delete(f"/api/v1/categories/{category_id}", headers=headers)
    assert blocked.status_code == 409
    assert blocked.json()["code"] == "CONFLICT"


def test_customer_cannot_manage_categories(client: TestClient, make_user, make_category, headers_for):
    customer = make_user()
    shirts = make_category("Shirts")
    headers = headers_for(customer)

    assert client.post("/api/v1/categories", json={"name": "Bags"}, headers=headers).status_code == 403
    assert client.get("/api/v1/categories/admin/all", headers=headers).status_code == 403
    assert client.delete(f"/api/v1/categories/{shirts.id}", headers=headers).status_code == 403
