from datetime import datetime, timedelta

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from storefront.models.offer import Offer
from storefront.models.review import Review
from tests.helpers import create_category, create_product, create_user


def test_list_products_paginates_newest_first(client: TestClient, db_session: Session):
    now = datetime.utcnow()
    for index in range(3):
        create_product(db_session, name=f"Shirt {index}", created_at=now - timedelta(days=index))

    response = client.get("/api/products/get", params={"page": 1, "limit": 2})

    assert response.status_code == 200
    payload = response.json()
    assert [p["name"] for p in payload["data"]] == ["Shirt 0", "Shirt 1"]
    assert payload["meta"] == {"total": 3, "page": 1, "limit": 2, "total_pages": 2}


def test_list_products_excludes_deleted(client: TestClient, db_session: Session):
    create_product(db_session, name="Visible")
    hidden = create_product(db_session, name="Hidden")
    hidden.is_deleted = True
    db_session.commit()

    response = client.get("/api/products/get")

    names = [p["name"] for p in response.json()["data"]]
    assert names == ["Visible"]


def test_list_products_filters(client: TestClient, db_session: Session):
    create_product(db_session, name="Red Tee", color="Red", size="S")
    create_product(db_session, name="Blue Tee", color="Blue", size="L")
    create_product(db_session, name="Green Tee", color="Green", size="L")

    response = client.get("/api/products/get", params={"colors": "Red,Blue"})
    assert {p["name"] for p in response.json()["data"]} == {"Red Tee", "Blue Tee"}

    response = client.get("/api/products/get", params=[("sizes", "L"), ("colors", "Green")])
    assert [p["name"] for p in response.json()["data"]] == ["Green Tee"]

    response = client.get("/api/products/get", params={"search": "green"})
    assert [p["name"] for p in response.json()["data"]] == ["Green Tee"]


def test_search_escapes_wildcards(client: TestClient, db_session: Session):
    create_product(db_session, name="Plain Shirt")

    response = client.get("/api/products/get", params={"search": "%"})

    assert response.json()["data"] == []


def test_product_availability_and_ratings(client: TestClient, db_session: Session):
    product = create_product(db_session, stock=0)
    reviewer = create_user(db_session, username="reviewer")
    db_session.add(Review(user_id=reviewer.id, variant_id=product.variants[0].id, rating=4))
    db_session.commit()

    response = client.get(f"/api/products/{product.id}")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["availability"] == "Out of Stock"
    variant = data["variants"][0]
    assert variant["review_count"] == 1
    assert variant["average_rating"] == 4.0
    assert variant["reviews"][0]["user_name"] == "reviewer"


def test_product_detail_not_found(client: TestClient, db_session: Session):
    response = client.get("/api/products/999")

    assert response.status_code == 404
    assert response.json()["message"] == "Product not found"


def test_product_offer_pricing(client: TestClient, db_session: Session):
    product = create_product(db_session, price=1000.0, discount_price=950.0)
    db_session.add(
        Offer(
            offer_name="Summer Sale",
            discount_percentage=20,
            product_id=product.id,
            start_date=datetime.utcnow() - timedelta(days=1),
            end_date=datetime.utcnow() + timedelta(days=1),
        )
    )
    db_session.commit()

    data = client.get(f"/api/products/{product.id}").json()["data"]

    assert data["active_offer"]["offer_name"] == "Summer Sale"
    assert data["active_offer"]["discount_percentage"] == 20
    assert data["variants"][0]["sizes"][0]["final_price"] == 800.0


def test_category_offer_applies_unless_discount_is_better(client: TestClient, db_session: Session):
    product = create_product(db_session, price=1000.0, discount_price=500.0)
    db_session.add(
        Offer(
            offer_name="Category Week",
            discount_percentage=10,
            category_id=product.category_id,
            start_date=datetime.utcnow() - timedelta(days=1),
            end_date=datetime.utcnow() + timedelta(days=1),
        )
    )
    db_session.commit()

    data = client.get(f"/api/products/{product.id}").json()["data"]

    assert data["active_offer"]["offer_name"] == "Category Week"
    assert data["variants"][0]["sizes"][0]["final_price"] == 500.0


def test_expired_offer_is_ignored(client: TestClient, db_session: Session):
    product = create_product(db_session, price=1000.0)
    db_session.add(
        Offer(
            offer_name="Old",
            discount_percentage=30,
            product_id=product.id,
            start_date=datetime.utcnow() - timedelta(days=10),
            end_date=datetime.utcnow() - timedelta(days=1),
        )
    )
    db_session.commit()

    data = client.get(f"/api/products/{product.id}").json()["data"]

    assert data["active_offer"] is None
    assert data["variants"][0]["sizes"][0]["final_price"] == 1000.0


def test_search_requires_query(client: TestClient):
    response = client.get("/api/products/search")

    assert response.status_code == 400
    assert response.json()["message"] == "Search query is required"


def test_search_matches_attributes(client: TestClient, db_session: Session):
    create_product(db_session, name="Linen Kurta")
    create_product(db_session, name="Denim Jacket")

    response = client.get("/api/products/search", params={"query": "kurta"})

    assert [p["name"] for p in response.json()["data"]] == ["Linen Kurta"]


def test_search_related(client: TestClient, db_session: Session):
    create_product(db_session, name="Linen Kurta")
    create_product(db_session, name="Cotton Kurta Set")
    create_product(db_session, name="Silk Scarf")

    response = client.get("/api/products/search-related", params={"query": "Linen"})
    assert response.status_code == 200
    first = response.json()["data"][0]
    assert first["product"]["name"] == "Linen Kurta"
    assert len(first["related_products"]) == 2

    response = client.get("/api/products/search-related", params={"query": "tuxedo"})
    assert response.status_code == 404


def test_related_products(client: TestClient, db_session: Session):
    shirts = create_category(db_session, "Shirts")
    shoes = create_category(db_session, "Shoes")
    product = create_product(db_session, name="Main", category=shirts)
    for index in range(3):
        create_product(db_session, name=f"Sibling {index}", category=shirts)
    create_product(db_session, name="Sneaker", category=shoes)

    response = client.get(f"/api/products/related/{product.id}")

    assert response.status_code == 200
    names = [p["name"] for p in response.json()["data"]]
    assert len(names) == 2
    assert all(name.startswith("Sibling") for name in names)

    assert client.get("/api/products/related/999").status_code == 404


def test_products_by_gender_is_exact(client: TestClient, db_session: Session):
    create_product(db_session, name="For Men", gender="Men")
    create_product(db_session, name="For Women", gender="Women")

    response = client.get("/api/products/gender/men")

    assert [p["name"] for p in response.json()["data"]] == ["For Men"]


def test_products_by_brand_empty_list(client: TestClient):
    response = client.get("/api/products/brand/42")

    assert response.status_code == 200
    assert response.json()["data"] == []


def test_products_by_category_paginates(client: TestClient, db_session: Session):
    category = create_category(db_session, "Jeans")
    for index in range(10):
        create_product(db_session, name=f"Jean {index}", category=category)

    response = client.get(f"/api/products/category/{category.id}")

    payload = response.json()
    assert len(payload["data"]) == 8
    assert payload["meta"]["total"] == 10


def test_filter_options(client: TestClient, db_session: Session):
    create_product(db_session, name="A", color="Red", size="S")
    create_product(db_session, name="B", color="Blue", size="M")

    data = client.get("/api/products/filters").json()["data"]

    assert data["colors"] == ["Blue", "Red"]
    assert data["sizes"] == ["M", "S"]
