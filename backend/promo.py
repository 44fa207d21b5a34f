"""Promo code evaluation and redemption."""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from bson import ObjectId
from fastapi import HTTPException
from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.database import Database

from database import NEWEST_FIRST, create_document, get_documents, to_object_id
from schemas import PromoCode as PromoCodeSchema, PromoCodePayload
from .pricing import to_number

logger = logging.getLogger(__name__)


@dataclass
class PromoResult:
    ok: bool
    discount: float = 0.0
    total_after: float = 0.0
    reason: Optional[str] = None


def normalize_code(code: Any) -> str:
    return str(code or "").strip().upper()


def _aware(value: Any) -> Optional[datetime]:
    # pymongo hands back naive UTC datetimes
    if not isinstance(value, datetime):
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def evaluate(promo: dict, order_subtotal: Any, now: Optional[datetime] = None) -> Optional[PromoResult]:
    """Check ``promo`` against an order subtotal and compute the discount.

    Returns ``None`` when the subtotal itself is not a non-negative number.
    The first failing check wins:
    inactive, not started, expired, usage limit reached, minimum order value.
    The discount is floored at 0, capped at ``max_discount`` and then at the
    subtotal, so it never exceeds what is being paid for.
    """
    subtotal = to_number(order_subtotal)
    if subtotal is None or subtotal < 0:
        return None
    now = now or datetime.now(timezone.utc)

    if not promo.get("is_active"):
        return PromoResult(ok=False, reason="Promo code inactive")
    starts_at = _aware(promo.get("starts_at"))
    if starts_at and now < starts_at:
        return PromoResult(ok=False, reason="Promo code not started")
    ends_at = _aware(promo.get("ends_at"))
    if ends_at and now > ends_at:
        return PromoResult(ok=False, reason="Promo code expired")
    usage_limit = promo.get("usage_limit")
    if usage_limit is not None and (promo.get("used_count") or 0) >= usage_limit:
        return PromoResult(ok=False, reason="Promo code usage limit reached")
    min_order_value = promo.get("min_order_value")
    if min_order_value is not None and subtotal < min_order_value:
        return PromoResult(ok=False, reason=f"Minimum order value is {_plain(min_order_value)}")

    amount = to_number(promo.get("amount")) or 0.0
    discount_type = promo.get("discount_type")
    if discount_type == "percent":
        discount = subtotal * amount / 100
    elif discount_type == "fixed":
        discount = amount
    else:
        return PromoResult(ok=False, reason="Invalid discount type")

    discount = max(discount, 0.0)
    if promo.get("max_discount") is not None:
        discount = min(discount, to_number(promo.get("max_discount")) or 0.0)
    discount = min(discount, subtotal)
    return PromoResult(ok=True, discount=discount, total_after=subtotal - discount)


def _plain(value: Any) -> str:
    n = to_number(value)
    if n is not None and n.is_integer():
        return str(int(n))
    return str(value)


def redeem(db: Database, promo: dict) -> dict:
    """Take one usage slot, guarded on the ``used_count`` the evaluation saw."""
    seen = promo.get("used_count") or 0
    updated = db["promocode"].find_one_and_update(
        {"_id": promo["_id"], "used_count": seen},
        {"$inc": {"used_count": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        logger.warning("promo redemption lost race code=%s used_count=%s", promo.get("code"), seen)
        raise HTTPException(status_code=409, detail="Promo code was just redeemed by another order, please retry")
    return updated


def release(db: Database, promo_id: ObjectId) -> None:
    db["promocode"].update_one({"_id": promo_id, "used_count": {"$gt": 0}}, {"$inc": {"used_count": -1}})


def find_by_code(db: Database, code: Any) -> dict:
    normalized = normalize_code(code)
    if not normalized:
        raise HTTPException(status_code=400, detail="Missing code")
    promo = db["promocode"].find_one({"code": normalized})
    if not promo:
        raise HTTPException(status_code=404, detail="Promo code not found")
    return promo


def get_promo(db: Database, promo_id: str) -> dict:
    promo = db["promocode"].find_one({"_id": to_object_id(promo_id)})
    if not promo:
        raise HTTPException(status_code=404, detail="Promo code not found")
    return promo


def create_promo(db: Database, payload: PromoCodePayload) -> dict:
    code = normalize_code(payload.code)
    if not code:
        raise HTTPException(status_code=400, detail="Missing code")
    if not payload.discount_type:
        raise HTTPException(status_code=400, detail="Missing discountType")
    if payload.amount is None:
        raise HTTPException(status_code=400, detail="Missing amount")
    data = payload.model_dump(exclude_none=True)
    data["code"] = code
    new_id = create_document("promocode", _validated(data), database=db)
    return db["promocode"].find_one({"_id": ObjectId(new_id)})


def _validated(data: dict) -> PromoCodeSchema:
    try:
        return PromoCodeSchema(**data)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise HTTPException(status_code=400, detail=f"Invalid {field}: {first.get('msg')}")


def update_promo(db: Database, promo_id: str, payload: PromoCodePayload) -> dict:
    """Apply a partial update; the merged document must still be a valid promo code."""
    oid = to_object_id(promo_id)
    current = db["promocode"].find_one({"_id": oid})
    if not current:
        raise HTTPException(status_code=404, detail="Promo code not found")

    changes = payload.model_dump(exclude_unset=True)
    if "code" in changes:
        changes["code"] = normalize_code(changes["code"])
        if not changes["code"]:
            raise HTTPException(status_code=400, detail="Missing code")
    merged = _validated({**current, **changes}).model_dump()
    changes = {key: merged[key] for key in changes}
    changes["updated_at"] = datetime.now(timezone.utc)
    doc = db["promocode"].find_one_and_update(
        {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if not doc:
        raise HTTPException(status_code=404, detail="Promo code not found")
    return doc


def delete_promo(db: Database, promo_id: str) -> None:
    res = db["promocode"].delete_one({"_id": to_object_id(promo_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Promo code not found")


def list_promos(db: Database, q: Optional[str], page: int, limit: int) -> Tuple[List[dict], int]:
    filter_q = {}
    if q:
        filter_q["code"] = {"$regex": re.escape(normalize_code(q)), "$options": "i"}
    docs = get_documents("promocode", filter_q, limit, (page - 1) * limit, NEWEST_FIRST, database=db)
    return docs, db["promocode"].count_documents(filter_q)
