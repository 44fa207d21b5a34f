from datetime import datetime, timezone

from database import create_document


class FakeMailer:
    configured = True

    def __init__(self):
        self.sent = []

    def send_mail(self, to, subject, text, html=None):
        self.sent.append({"to": to, "subject": subject, "text": text})
        return {"message_id": f"msg-{len(self.sent)}"}


class FakeGateway:
    key_id = "rzp_test_key"
    key_secret = "rzp_test_secret"

    def __init__(self):
        self.orders = []
        self.payments = {}

    def create_order(self, amount, currency, receipt, notes=None):
        order = {
            "id": f"order_rp{len(self.orders) + 1}",
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
            "status": "created",
        }
        self.orders.append(order)
        return order

    def fetch_payment(self, payment_id):
        return self.payments[payment_id]


def add_gold_rate(db, carat, rate, purity=91.6, date=None):
    return create_document(
        "goldrate",
        {"carat": carat, "purity": purity, "rate_per_10_gram": rate, "date": date or datetime.now(timezone.utc)},
        database=db,
    )


def add_product(db, **fields):
    doc = {
        "name": fields.pop("name", "Plain Band"),
        "slug": fields.pop("slug", None),
        "making_cost": {"currency": "INR", "amount": fields.pop("making_cost", 500)},
        "other_charges": {"currency": "INR", "amount": fields.pop("other_charges", 100)},
        "stock": 5,
        "is_active": True,
        "attributes": fields.pop("attributes", {}),
    }
    doc["slug"] = doc["slug"] or doc["name"].lower().replace(" ", "-")
    doc.update(fields)
    return create_document("product", doc, database=db)
