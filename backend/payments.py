"""Razorpay payment intents and callback reconciliation.

The checkout widget posts back ``razorpay_order_id``, ``razorpay_payment_id``
and ``razorpay_signature``. A payment is only accepted when the signature
matches, the gateway reports the same Razorpay order and the amount equals
the order total in paise. Every rejection is written into the payment's
``meta`` before the error is returned, so failed attempts stay auditable.
"""
import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import HTTPException
from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, to_object_id
from schemas import Payment as PaymentSchema, RazorpayVerifyPayload
from .gateway import RazorpayGateway
from .pricing import to_number

logger = logging.getLogger(__name__)

PROVIDER = "razorpay"
CURRENCY = "INR"

FAILURE_MESSAGES = {
    "invalid_signature": "Invalid Razorpay signature",
    "order_id_mismatch": "Payment order mismatch",
    "amount_mismatch": "Payment amount mismatch",
}


def amount_in_paise(total: Any) -> int:
    try:
        value = float(total or 0)
    except (TypeError, ValueError):
        value = 0.0
    return max(0, int(round(value * 100)))


def sign(secret: str, razorpay_order_id: str, razorpay_payment_id: str) -> str:
    message = f"{razorpay_order_id}|{razorpay_payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def _find_order(db: Database, user_id: str, order_id: str) -> dict:
    order = db["order"].find_one({"_id": to_object_id(order_id, "orderId"), "user_id": user_id})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def create_razorpay_order(db: Database, gateway: RazorpayGateway, user_id: str, order_id: str, method: Optional[str] = None) -> Dict[str, Any]:
    """Open a Razorpay order for ``order_id``; reuses the existing one if present."""
    order = _find_order(db, user_id, order_id)

    if order.get("payment_id") and ObjectId.is_valid(order["payment_id"]):
        existing = db["payment"].find_one(
            {"_id": ObjectId(order["payment_id"]), "user_id": user_id, "order_id": str(order["_id"])}
        )
        existing_rp_order = ((existing or {}).get("meta") or {}).get("razorpay_order") or {}
        if existing and existing.get("provider") == PROVIDER and existing_rp_order.get("id"):
            return {
                "created": False,
                "key_id": gateway.key_id,
                "razorpay_order": existing_rp_order,
                "payment_id": str(existing["_id"]),
            }

    receipt = str(order["_id"])
    razorpay_order = gateway.create_order(
        amount=amount_in_paise(order.get("total")),
        currency=CURRENCY,
        receipt=receipt,
        notes={"orderId": receipt, "userId": user_id},
    )

    payment = PaymentSchema(
        user_id=user_id,
        order_id=receipt,
        provider=PROVIDER,
        method=(method or "card").strip().lower(),
        amount=float(order.get("total") or 0),
        currency=CURRENCY,
        status="created",
        transaction_id="",
        meta={"razorpay_order_id": razorpay_order.get("id"), "razorpay_order": razorpay_order},
    )
    payment_id = create_document("payment", payment, database=db)
    db["order"].update_one(
        {"_id": order["_id"]},
        {"$set": {"payment_id": payment_id, "updated_at": datetime.now(timezone.utc)}},
    )
    logger.info("razorpay order created order=%s payment=%s rp_order=%s", receipt, payment_id, razorpay_order.get("id"))
    return {"created": True, "key_id": gateway.key_id, "razorpay_order": razorpay_order, "payment_id": payment_id}


def _reject(db: Database, payment: dict, callback: dict, reason: str) -> None:
    meta = dict(payment.get("meta") or {})
    meta.update(callback)
    meta["reason"] = reason
    db["payment"].update_one(
        {"_id": payment["_id"]},
        {"$set": {"status": "failed", "meta": meta, "updated_at": datetime.now(timezone.utc)}},
    )
    logger.warning("razorpay verification failed payment=%s reason=%s", payment["_id"], reason)
    raise HTTPException(status_code=400, detail={"message": FAILURE_MESSAGES[reason], "reason": reason})


def verify_razorpay_payment(db: Database, gateway: RazorpayGateway, user_id: str, payload: RazorpayVerifyPayload) -> dict:
    """Check the checkout callback and mark the payment captured or authorized."""
    if not (payload.razorpay_order_id and payload.razorpay_payment_id and payload.razorpay_signature):
        raise HTTPException(status_code=400, detail="Missing Razorpay verification fields")
    order = _find_order(db, user_id, payload.order_id)

    payment_ref = order.get("payment_id")
    if not payment_ref or not ObjectId.is_valid(payment_ref):
        raise HTTPException(status_code=400, detail="Payment not created for order")
    payment = db["payment"].find_one({"_id": ObjectId(payment_ref), "user_id": user_id, "order_id": str(order["_id"])})
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    if payment.get("provider") != PROVIDER:
        raise HTTPException(status_code=400, detail="Payment provider mismatch")

    callback = {
        "razorpay_order_id": payload.razorpay_order_id,
        "razorpay_payment_id": payload.razorpay_payment_id,
        "razorpay_signature": payload.razorpay_signature,
    }
    expected = sign(gateway.key_secret, payload.razorpay_order_id, payload.razorpay_payment_id)
    if not hmac.compare_digest(expected.encode(), payload.razorpay_signature.encode()):
        _reject(db, payment, callback, "invalid_signature")

    stored_rp_order = (payment.get("meta") or {}).get("razorpay_order_id")
    if stored_rp_order and stored_rp_order != payload.razorpay_order_id:
        _reject(db, payment, callback, "order_id_mismatch")

    rp_payment = gateway.fetch_payment(payload.razorpay_payment_id)
    if rp_payment.get("order_id") and str(rp_payment["order_id"]) != payload.razorpay_order_id:
        _reject(db, payment, callback, "order_id_mismatch")
    reported_amount = rp_payment.get("amount")
    if reported_amount is not None and to_number(reported_amount) != amount_in_paise(order.get("total")):
        _reject(db, payment, callback, "amount_mismatch")

    rp_status = str(rp_payment.get("status") or "").lower()
    status = "authorized" if rp_status == "authorized" else "captured"
    meta = dict(payment.get("meta") or {})
    meta.update(callback)
    meta["razorpay_payment"] = rp_payment
    meta.pop("reason", None)

    saved = db["payment"].find_one_and_update(
        {"_id": payment["_id"]},
        {
            "$set": {
                "status": status,
                "transaction_id": payload.razorpay_payment_id,
                "meta": meta,
                "updated_at": datetime.now(timezone.utc),
            }
        },
        return_document=ReturnDocument.AFTER,
    )
    db["order"].update_one(
        {"_id": order["_id"], "status": "pending"},
        {"$set": {"status": "confirmed", "updated_at": datetime.now(timezone.utc)}},
    )
    logger.info("razorpay payment verified order=%s payment=%s status=%s", order["_id"], payment["_id"], status)
    return saved


def get_payment(db: Database, user_id: str, payment_id: str) -> dict:
    doc = db["payment"].find_one({"_id": to_object_id(payment_id), "user_id": user_id})
    if not doc:
        raise HTTPException(status_code=404, detail="Payment not found")
    return doc
