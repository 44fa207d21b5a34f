"""Admin back-office: customer accounts and the dashboard numbers."""
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from fastapi import HTTPException
from pymongo import ReturnDocument
from pymongo.database import Database

from database import NEWEST_FIRST, get_documents, to_object_id

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = 3
USER_FIELDS = {"password": 0}


# Customers
def list_users(db: Database, q: Optional[str], page: int, limit: int) -> Tuple[List[dict], int]:
    filter_q = {}
    if q:
        pattern = re.escape(q.strip())
        filter_q["$or"] = [
            {"email": {"$regex": pattern, "$options": "i"}},
            {"full_name": {"$regex": pattern, "$options": "i"}},
        ]
    skip = (page - 1) * limit
    docs = get_documents("user", filter_q, limit, skip, NEWEST_FIRST, database=db)
    for doc in docs:
        doc.pop("password", None)
    return docs, db["user"].count_documents(filter_q)


def set_user_blocked(db: Database, user_id: str, is_blocked: bool) -> dict:
    doc = db["user"].find_one_and_update(
        {"_id": to_object_id(user_id)},
        {"$set": {"is_blocked": is_blocked, "updated_at": datetime.now(timezone.utc)}},
        projection=USER_FIELDS,
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("user %s id=%s", "blocked" if is_blocked else "unblocked", user_id)
    return doc


def delete_user(db: Database, user_id: str) -> None:
    """Remove the account and its cart; orders and payments stay for the books."""
    oid = to_object_id(user_id)
    res = db["user"].delete_one({"_id": oid})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    db["cartitem"].delete_many({"user_id": str(oid)})
    logger.info("user deleted id=%s", user_id)


# Dashboard
def _day_key(value: datetime) -> str:
    return value.strftime("%Y-%m-%d")


def analytics(db: Database, now: Optional[datetime] = None) -> dict:
    """Counts, revenue and recent activity for the admin dashboard.

    Revenue leaves out cancelled orders. ``by_day`` always lists the last
    seven UTC days, oldest first, with zeroes for quiet days.
    """
    now = now or datetime.now(timezone.utc)
    from7 = now - timedelta(days=7)
    from30 = now - timedelta(days=30)
    orders = db["order"]

    revenue = list(orders.aggregate([
        {"$match": {"created_at": {"$gte": from30}, "status": {"$ne": "cancelled"}}},
        {"$group": {"_id": None, "total": {"$sum": "$total"}, "discount": {"$sum": "$discount"}}},
    ]))
    by_status = {
        row["_id"]: row["count"]
        for row in orders.aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}])
        if row.get("_id")
    }
    per_day = {
        row["_id"]: row
        for row in orders.aggregate([
            {"$match": {"created_at": {"$gte": from7}}},
            {"$group": {
                "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": "$created_at"}},
                "count": {"$sum": 1},
                "revenue": {"$sum": "$total"},
            }},
        ])
    }
    by_day = []
    for offset in range(6, -1, -1):
        key = _day_key(now - timedelta(days=offset))
        row = per_day.get(key) or {}
        by_day.append({"day": key, "orders": row.get("count", 0), "revenue": float(row.get("revenue", 0))})

    top_products = list(orders.aggregate([
        {"$unwind": "$items"},
        {"$group": {
            "_id": "$items.product",
            "name": {"$first": "$items.name"},
            "qty": {"$sum": "$items.quantity"},
            "revenue": {"$sum": {"$multiply": ["$items.price", "$items.quantity"]}},
        }},
        {"$sort": {"qty": -1}},
        {"$limit": 6},
    ]))

    recent_orders = []
    for doc in orders.find({}).sort(NEWEST_FIRST).limit(8):
        address = doc.get("shipping_address") or {}
        recent_orders.append({
            "_id": doc["_id"],
            "total": doc.get("total"),
            "status": doc.get("status"),
            "created_at": doc.get("created_at"),
            "customer_email": doc.get("customer_email"),
            "customer_phone": doc.get("customer_phone"),
            "customer_name": address.get("name"),
            "items_count": sum(int(it.get("quantity") or 0) for it in doc.get("items") or []),
        })

    low_stock = list(
        db["product"]
        .find({"stock": {"$lte": LOW_STOCK_THRESHOLD}}, {"name": 1, "slug": 1, "stock": 1, "is_active": 1})
        .sort("stock", 1)
        .limit(8)
    )

    return {
        "totals": {
            "products": db["product"].count_documents({}),
            "orders": orders.count_documents({}),
            "users": db["user"].count_documents({}),
            "promocodes": db["promocode"].count_documents({}),
        },
        "orders": {
            "last_7_days": orders.count_documents({"created_at": {"$gte": from7}}),
            "last_30_days": orders.count_documents({"created_at": {"$gte": from30}}),
            "by_status": by_status,
            "by_day": by_day,
        },
        "revenue": {
            "last_30_days": float(revenue[0]["total"]) if revenue else 0.0,
            "discount_last_30_days": float(revenue[0]["discount"]) if revenue else 0.0,
        },
        "top_products": top_products,
        "recent_orders": recent_orders,
        "low_stock": low_stock,
    }
