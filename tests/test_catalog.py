from datetime import datetime, timezone

from bson import ObjectId

from backend.catalog import review_stats, slugify
from database import create_document
from tests.helpers import add_gold_rate, add_product

FEB = datetime(2026, 2, 1, tzinfo=timezone.utc)
OLD = datetime(2020, 1, 1, tzinfo=timezone.utc)

GOLD_RING = {
    "name": "Gold Ring",
    "makingCost": 500,
    "otherCharges": {"currency": "INR", "amount": 100},
    "material": "Gold",
    "materialType": "22",
    "attributes": {"weightGrams": 5, "priceInr": 1},
}


def test_slugify():
    assert slugify("  Rose Gold  Ring!") == "rose-gold-ring"
    assert slugify("***") == ""


def test_review_stats():
    assert review_stats([{"rating": 4}, {"rating": 5}, {"rating": 5}]) == (4.7, 3)
    assert review_stats([]) == (0.0, 0)
    assert review_stats(None) == (0.0, 0)


def test_create_priced_product(client, db, admin_headers):
    add_gold_rate(db, 22, 60000, purity=91.6, date=FEB)

    res = client.post("/api/products", json=GOLD_RING, headers=admin_headers)

    assert res.status_code == 201
    product = res.json()["data"]
    assert product["slug"] == "gold-ring"
    assert product["material"] == "gold"
    assert product["material_type"] == 22
    assert product["making_cost"] == {"currency": "INR", "amount": 500}
    assert product["attributes"]["purity"] == "91.6"
    assert product["price_inr"] == 30600

    stored = db["product"].find_one({"_id": ObjectId(product["_id"])})
    assert "priceInr" not in stored["attributes"]
    assert "price_inr" not in stored


def test_create_product_validation(client, db, admin_headers):
    add_gold_rate(db, 22, 60000, date=FEB)

    def post(**changes):
        return client.post("/api/products", json=dict(GOLD_RING, **changes), headers=admin_headers)

    assert post(name=" ").json()["message"] == "Missing name"
    assert post(material="platinum").json()["message"] == "Invalid material"
    assert post(materialType="18").json()["message"] == "Invalid gold type"
    assert post(materialType="heavy").json()["message"] == "Invalid materialType"
    assert post(makingCost=-1).json()["message"] == "Invalid makingCost"
    assert db["product"].count_documents({}) == 0

    assert post().status_code == 201
    assert post().status_code == 409


def test_product_routes_need_admin(client, user_headers):
    assert client.post("/api/products", json=GOLD_RING).status_code == 401
    assert client.post("/api/products", json=GOLD_RING, headers=user_headers).status_code == 401


def test_update_material(client, db, admin_headers):
    add_gold_rate(db, 22, 60000, purity=91.6, date=FEB)
    db["silverrate"].insert_one({"purity_mark": 925, "purity_percent": 92.5, "rate_per_kg": 90000, "date": FEB})
    product = client.post("/api/products", json=GOLD_RING, headers=admin_headers).json()["data"]
    url = f"/api/products/{product['_id']}"

    missing = client.put(url, json={"material": "silver"}, headers=admin_headers)
    assert missing.json()["message"] == "Missing materialType"

    res = client.put(url, json={"material": "silver", "materialType": 925}, headers=admin_headers)
    assert res.status_code == 200
    updated = res.json()["data"]
    assert updated["attributes"]["purity"] == "92.5"
    assert updated["price_inr"] == 1050

    cleared = client.put(url, json={"material": None}, headers=admin_headers).json()["data"]
    assert cleared["material"] is None
    assert "purity" not in cleared["attributes"]
    assert cleared["price_inr"] == 600


def test_list_products_is_priced_and_capped(client, db):
    add_gold_rate(db, 22, 60000, date=FEB)
    add_product(db, name="Gold Chain", material="gold", material_type=22, attributes={"weightGrams": 10})
    add_product(db, name="Hidden", is_active=False)

    res = client.get("/api/products", params={"limit": 100, "isActive": True})
    body = res.json()

    assert body["limit"] == 30
    assert body["total"] == 1
    assert body["data"][0]["price_inr"] == 60600

    assert client.get("/api/products", params={"q": "chain"}).json()["total"] == 1
    assert client.get("/api/products", params={"q": "(("}).json()["total"] == 0


def test_get_product_errors(client):
    assert client.get("/api/products/not-an-id").status_code == 400
    assert client.get(f"/api/products/{ObjectId()}").status_code == 404


def test_cart(client, db, user_headers):
    product_id = add_product(db, name="Pearl Drop")

    first = client.post("/api/cart", json={"productId": product_id}, headers=user_headers)
    assert first.status_code == 201
    assert first.json()["data"]["product"]["price_inr"] == 600

    again = client.post("/api/cart", json={"productId": product_id}, headers=user_headers)
    assert again.status_code == 200
    assert again.json()["data"]["_id"] == first.json()["data"]["_id"]

    items = client.get("/api/cart", headers=user_headers).json()["data"]
    assert len(items) == 1
    assert items[0]["product"]["name"] == "Pearl Drop"

    assert client.delete(f"/api/cart/{product_id}", headers=user_headers).status_code == 200
    assert client.get("/api/cart", headers=user_headers).json()["data"] == []


def test_deleting_product_clears_cart_lines(client, db, user_headers, admin_headers):
    product_id = add_product(db)
    client.post("/api/cart", json={"productId": product_id}, headers=user_headers)

    assert client.delete(f"/api/products/{product_id}", headers=admin_headers).status_code == 200
    assert db["cartitem"].count_documents({}) == 0
    assert client.delete(f"/api/products/{product_id}", headers=admin_headers).status_code == 404


def test_reviews(client, db, user, user_headers, admin_headers):
    product_id = add_product(db, name="Pearl Drop")
    url = f"/api/products/{product_id}/reviews"

    first = client.post(url, json={"rating": 4, "comment": "  Lovely  "}, headers=user_headers)
    assert first.status_code == 201
    assert first.json()["data"] == {"rating": 4, "reviewsCount": 1}

    again = client.post(url, json={"rating": "5"}, headers=user_headers)
    assert again.status_code == 200
    assert again.json()["data"] == {"rating": 5, "reviewsCount": 1}

    other = create_document("user", {"email": "ravi@example.com", "full_name": "Ravi"}, database=db)
    db["product"].update_one(
        {"_id": ObjectId(product_id)},
        {"$push": {"reviews": {"_id": ObjectId(), "user_id": other, "name": "Ravi", "rating": 2, "comment": "",
                               "created_at": OLD, "updated_at": OLD}}},
    )
    stats = client.post(url, json={"rating": 5, "comment": "Still lovely"}, headers=user_headers).json()["data"]
    assert stats == {"rating": 3.5, "reviewsCount": 2}

    reviews = client.get(url).json()["data"]
    assert [r["name"] for r in reviews] == ["Asha Rao", "Ravi"]
    assert reviews[0]["comment"] == "Still lovely"
    assert "user_id" not in reviews[0]

    product = client.get(f"/api/products/{product_id}").json()["data"]
    assert "reviews" not in product
    assert product["attributes"]["rating"] == 3.5
    assert product["attributes"]["reviewsCount"] == 2

    edited = client.put(
        f"/api/products/{product_id}", json={"attributes": {"weightGrams": 3}}, headers=admin_headers
    ).json()["data"]
    assert edited["attributes"]["rating"] == 3.5
    assert edited["attributes"]["weightGrams"] == 3


def test_review_validation(client, db, user_headers):
    product_id = add_product(db)
    url = f"/api/products/{product_id}/reviews"

    assert client.post(url, json={"rating": 4}).status_code == 401
    for rating in (0, 6, "great", None):
        res = client.post(url, json={"rating": rating}, headers=user_headers)
        assert res.status_code == 400
        assert res.json()["message"] == "Invalid rating"
    assert client.post(f"/api/products/{ObjectId()}/reviews", json={"rating": 4}, headers=user_headers).status_code == 404
    assert client.get(f"/api/products/{ObjectId()}/reviews").status_code == 404
