from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId

from backend import deps
from backend.main import app
from backend.orders import order_totals, parse_timestamp
from database import create_document
from tests.helpers import add_product


def make_promo(db, **fields):
    doc = {"code": "FLAT300", "discount_type": "fixed", "amount": 300, "min_order_value": 1000,
           "used_count": 0, "is_active": True}
    doc.update(fields)
    return create_document("promocode", doc, database=db)


def order_body(product_id, **extra):
    body = {
        "items": [{"product": product_id, "quantity": 2, "price": 1000, "name": "Gold Stud"}],
        "customerEmail": "asha@example.com",
        "shippingAddress": {"name": "Asha Rao", "line1": "12 MG Road", "city": "Pune", "postalCode": "411001"},
    }
    body.update(extra)
    return body


def test_order_totals_apply_gst_after_discount():
    assert order_totals(2000, 300) == (300, 51.0, 1751)
    assert order_totals(1000, 1500) == (1000, 0.0, 0)
    assert order_totals(500, -20) == (0, 15.0, 515)


def test_create_order_with_promo(client, db, user_headers, mailer, user):
    product_id = add_product(db, name="Gold Stud")
    promo_id = make_promo(db)

    res = client.post("/api/orders", json=order_body(product_id, promocodeId=promo_id), headers=user_headers)

    assert res.status_code == 201
    order = res.json()["data"]
    assert order["subtotal"] == 2000
    assert order["discount"] == 300
    assert order["tax"] == 51
    assert order["total"] == 1751
    assert order["status"] == "pending"
    assert order["user_id"] == str(user["_id"])
    assert order["shipping_address"]["postal_code"] == "411001"
    assert db["promocode"].find_one({"_id": ObjectId(promo_id)})["used_count"] == 1

    recipients = sorted(m["to"] for m in mailer.sent)
    assert recipients == ["asha@example.com", "orders@store.test"]
    assert any("₹1,751" in m["text"] for m in mailer.sent)


def test_client_totals_are_ignored(client, db, user_headers):
    product_id = add_product(db)
    body = order_body(product_id, subtotal=1, discount=9999, total=1)

    order = client.post("/api/orders", json=body, headers=user_headers).json()["data"]

    assert order["subtotal"] == 2000
    assert order["discount"] == 0
    assert order["total"] == 2060


def test_minimum_order_value_rejects_order(client, db, user_headers, mailer):
    product_id = add_product(db)
    promo_id = make_promo(db, code="BIG", min_order_value=5000)

    res = client.post("/api/orders", json=order_body(product_id, promocodeId=promo_id), headers=user_headers)

    assert res.status_code == 400
    assert res.json()["message"] == "Minimum order value is 5000"
    assert db["order"].count_documents({}) == 0
    assert db["promocode"].find_one({"_id": ObjectId(promo_id)})["used_count"] == 0
    assert mailer.sent == []


@pytest.mark.parametrize(
    "item, status",
    [
        ({"product": "not-an-id", "quantity": 1, "price": 10}, 400),
        ({"product": str(ObjectId()), "quantity": 1, "price": 10}, 404),
        ({"product": None, "quantity": 0, "price": 10}, 400),
    ],
)
def test_invalid_items(client, db, user_headers, item, status):
    if item["product"] is None:
        item["product"] = add_product(db)
    res = client.post("/api/orders", json={"items": [item]}, headers=user_headers)
    assert res.status_code == status
    assert db["order"].count_documents({}) == 0


def test_empty_items(client, user_headers):
    res = client.post("/api/orders", json={"items": []}, headers=user_headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Missing items"


def test_orders_are_private(client, db, user_headers, settings):
    product_id = add_product(db)
    order = client.post("/api/orders", json=order_body(product_id), headers=user_headers).json()["data"]

    assert client.get(f"/api/orders/{order['_id']}", headers=user_headers).status_code == 200
    listed = client.get("/api/orders", headers=user_headers).json()
    assert listed["total"] == 1

    other = create_document("order", {"user_id": str(ObjectId()), "items": [], "subtotal": 0, "total": 0}, database=db)
    assert client.get(f"/api/orders/{other}", headers=user_headers).status_code == 404


def test_status_change_notifies_customer_once(client, db, user_headers, admin_headers, mailer):
    product_id = add_product(db)
    order = client.post("/api/orders", json=order_body(product_id), headers=user_headers).json()["data"]
    mailer.sent.clear()

    res = client.patch(f"/api/orders/{order['_id']}/status", json={"status": "shipped"}, headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "shipped"
    assert len(mailer.sent) == 1
    assert mailer.sent[0]["to"] == "asha@example.com"
    assert "Pending" in mailer.sent[0]["text"] and "Shipped" in mailer.sent[0]["text"]

    client.patch(f"/api/orders/{order['_id']}/status", json={"status": "shipped"}, headers=admin_headers)
    assert len(mailer.sent) == 1


def test_status_must_be_known(client, db, user_headers, admin_headers):
    product_id = add_product(db)
    order = client.post("/api/orders", json=order_body(product_id), headers=user_headers).json()["data"]

    res = client.patch(f"/api/orders/{order['_id']}/status", json={"status": "lost"}, headers=admin_headers)
    assert res.status_code == 400


def test_delivery_fields_merge(client, db, user_headers, admin_headers):
    product_id = add_product(db)
    order = client.post("/api/orders", json=order_body(product_id), headers=user_headers).json()["data"]
    url = f"/api/orders/{order['_id']}/delivery"

    first = client.patch(url, json={"provider": "BlueDart", "trackingId": "BD123"}, headers=admin_headers)
    assert first.status_code == 200
    assert first.json()["data"]["delivery"]["status"] == "pending"

    second = client.patch(
        url, json={"status": "shipped", "shippedAt": "2026-03-02T10:00:00Z", "deliveredAt": "someday"}, headers=admin_headers
    )
    delivery = second.json()["data"]["delivery"]
    assert delivery["provider"] == "BlueDart"
    assert delivery["tracking_id"] == "BD123"
    assert delivery["status"] == "shipped"
    assert delivery["shipped_at"].startswith("2026-03-02T10:00:00")
    assert "delivered_at" not in delivery

    bad = client.patch(url, json={"status": "teleported"}, headers=admin_headers)
    assert bad.status_code == 400
    assert bad.json()["message"] == "Invalid delivery status"


def test_admin_order_listing(client, db, user_headers, admin_headers):
    product_id = add_product(db)
    client.post("/api/orders", json=order_body(product_id), headers=user_headers)

    assert client.get("/api/orders/admin", headers=admin_headers).json()["total"] == 1
    assert client.get("/api/orders/admin", params={"status": "delivered"}, headers=admin_headers).json()["total"] == 0
    assert client.get("/api/orders/admin", headers=user_headers).status_code == 401


def test_parse_timestamp():
    assert parse_timestamp("2026-03-02T10:00:00Z") == datetime(2026, 3, 2, 10, tzinfo=timezone.utc)
    assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert parse_timestamp("2026-03-02T10:00:00+05:30").utcoffset() == timedelta(hours=5, minutes=30)
    assert parse_timestamp("nope") is None
    assert parse_timestamp(True) is None
    assert parse_timestamp("") is None


class BrokenMailer:
    configured = True

    def send_mail(self, to, subject, text, html=None):
        raise RuntimeError("mail provider down")


def test_order_succeeds_when_mail_fails(client, db, user_headers):
    app.dependency_overrides[deps.get_mailer] = BrokenMailer
    product_id = add_product(db)

    res = client.post("/api/orders", json=order_body(product_id), headers=user_headers)

    assert res.status_code == 201
    stored = db["order"].find_one({"_id": ObjectId(res.json()["data"]["_id"])})
    assert stored["status"] == "pending"
