"""Order pipeline: checkout, status changes and delivery tracking."""
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from bson import ObjectId
from fastapi import HTTPException
from pymongo import ReturnDocument
from pymongo.database import Database

from database import NEWEST_FIRST, create_document, get_documents, to_object_id
from schemas import (
    DELIVERY_STATUSES,
    CreateOrderItem,
    CreateOrderPayload,
    DeliveryPayload,
    Order as OrderSchema,
    OrderItem as OrderItemSchema,
)
from . import notifications
from .config import Settings
from .notifications import NotificationOutbox
from .pricing import round_inr, to_number
from .promo import evaluate, redeem, release

logger = logging.getLogger(__name__)

GST_RATE = 0.03


def order_totals(subtotal: float, discount: float) -> Tuple[float, float, float]:
    """Return (discount, tax, total) for a subtotal; GST applies after the discount."""
    discount = round(min(max(discount, 0.0), subtotal), 2)
    discounted = subtotal - discount
    tax = round_inr(discounted * GST_RATE)
    return discount, float(tax), round(discounted + tax, 2)


def _snapshot_items(db: Database, items: List[CreateOrderItem]) -> List[OrderItemSchema]:
    for item in items:
        price = to_number(item.price)
        if not ObjectId.is_valid(item.product) or item.quantity < 1 or price is None or price < 0:
            raise HTTPException(status_code=400, detail="Invalid items")

    ids = list({ObjectId(item.product) for item in items})
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}}, {"name": 1})}

    snapshot = []
    for item in items:
        product = products.get(str(ObjectId(item.product)))
        if not product:
            raise HTTPException(status_code=404, detail=f"Product not found: {item.product}")
        name = (item.name or "").strip() or str(product.get("name") or "").strip() or "Product"
        snapshot.append(
            OrderItemSchema(
                product=str(product["_id"]),
                name=name,
                price=float(item.price),
                quantity=item.quantity,
                image=item.image.strip() if item.image else None,
            )
        )
    return snapshot


def _customer_email(db: Database, order: dict) -> str:
    if order.get("customer_email"):
        return order["customer_email"]
    user_id = order.get("user_id")
    if user_id and ObjectId.is_valid(user_id):
        user = db["user"].find_one({"_id": ObjectId(user_id)}, {"email": 1})
        if user:
            return user.get("email", "")
    return ""


def create_order(
    db: Database,
    user_id: str,
    payload: CreateOrderPayload,
    outbox: NotificationOutbox,
    settings: Settings,
) -> dict:
    """Validate the cart lines, price the order server-side and persist it as pending.

    Line prices are the ones captured in the cart; subtotal, discount, tax and
    total are always recomputed here. The promo code is re-evaluated against
    the computed subtotal even if the client validated it before.
    """
    if not payload.items:
        raise HTTPException(status_code=400, detail="Missing items")

    items = _snapshot_items(db, payload.items)
    subtotal = round(sum(it.price * it.quantity for it in items), 2)

    promo = None
    discount = 0.0
    if payload.promocode_id:
        promo_oid = to_object_id(payload.promocode_id, "promocodeId")
        promo = db["promocode"].find_one({"_id": promo_oid})
        if not promo:
            raise HTTPException(status_code=404, detail="Promo code not found")
        result = evaluate(promo, subtotal)
        if result is None or not result.ok:
            raise HTTPException(status_code=400, detail=result.reason if result else "Invalid orderTotal")
        discount = result.discount

    discount, tax, total = order_totals(subtotal, discount)
    order_doc = OrderSchema(
        user_id=user_id,
        items=items,
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        total=total,
        status="pending",
        promocode_id=str(promo["_id"]) if promo else None,
        customer_email=str(payload.customer_email) if payload.customer_email else None,
        customer_phone=payload.customer_phone.strip() if payload.customer_phone else None,
        shipping_address=payload.shipping_address,
        notes=payload.notes,
    )

    if promo:
        redeem(db, promo)
    try:
        order_id = create_document("order", order_doc, database=db)
    except Exception:
        if promo:
            release(db, promo["_id"])
        raise

    order = db["order"].find_one({"_id": ObjectId(order_id)})
    logger.info(
        "order created id=%s user=%s items=%d subtotal=%.2f discount=%.2f total=%.2f",
        order_id, user_id, len(items), subtotal, discount, total,
    )

    outbox.emit(notifications.admin_new_order(order, settings.store_name, settings.notify_address))
    outbox.emit(notifications.customer_order_placed(order, settings.store_name, _customer_email(db, order)))
    return order


def set_status(db: Database, order_id: str, status: str, outbox: NotificationOutbox, settings: Settings) -> dict:
    now = datetime.now(timezone.utc)
    before = db["order"].find_one_and_update(
        {"_id": to_object_id(order_id)},
        {"$set": {"status": status, "updated_at": now}},
        return_document=ReturnDocument.BEFORE,
    )
    if not before:
        raise HTTPException(status_code=404, detail="Order not found")

    order = dict(before, status=status, updated_at=now)
    old_status = before.get("status")
    if old_status != status:
        logger.info("order status changed id=%s %s -> %s", order_id, old_status, status)
        outbox.emit(
            notifications.customer_status_update(
                order, old_status, status, settings.store_name, _customer_email(db, order)
            )
        )
    return order


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO string or epoch milliseconds; ``None`` when it is not a valid date."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def set_delivery(db: Database, order_id: str, payload: DeliveryPayload) -> dict:
    """Merge the fields present in ``payload`` into the order's delivery record."""
    oid = to_object_id(order_id)
    order = db["order"].find_one({"_id": oid})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    data = payload.model_dump(exclude_unset=True)
    delivery = dict(order.get("delivery") or {})

    for key in ("provider", "tracking_id", "tracking_url"):
        if key not in data:
            continue
        value = str(data[key]).strip() if data[key] is not None else ""
        if value:
            delivery[key] = value
        else:
            delivery.pop(key, None)

    if data.get("status") is not None:
        status = str(data["status"]).strip().lower()
        if status not in DELIVERY_STATUSES:
            raise HTTPException(status_code=400, detail="Invalid delivery status")
        delivery["status"] = status

    for key in ("shipped_at", "delivered_at"):
        if key in data:
            parsed = parse_timestamp(data[key])
            if parsed is not None:
                delivery[key] = parsed

    delivery.setdefault("status", "pending")
    return db["order"].find_one_and_update(
        {"_id": oid},
        {"$set": {"delivery": delivery, "updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )


def list_for_user(db: Database, user_id: str, page: int, limit: int) -> Tuple[List[dict], int]:
    filter_q = {"user_id": user_id}
    docs = get_documents("order", filter_q, limit, (page - 1) * limit, NEWEST_FIRST, database=db)
    return docs, db["order"].count_documents(filter_q)


def get_for_user(db: Database, user_id: str, order_id: str) -> dict:
    doc = db["order"].find_one({"_id": to_object_id(order_id), "user_id": user_id})
    if not doc:
        raise HTTPException(status_code=404, detail="Order not found")
    return doc


def list_all(db: Database, status: Optional[str], page: int, limit: int) -> Tuple[List[dict], int]:
    filter_q = {"status": status} if status else {}
    docs = get_documents("order", filter_q, limit, (page - 1) * limit, NEWEST_FIRST, database=db)
    return docs, db["order"].count_documents(filter_q)
