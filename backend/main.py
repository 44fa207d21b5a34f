import logging
import os
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from database import serialize
from schemas import (
    CartAddPayload,
    CreateOrderPayload,
    CredentialsPayload,
    DeliveryPayload,
    DiamondPricePayload,
    DiamondTypePayload,
    GoldRatePayload,
    OrderStatusPayload,
    OtpVerifyPayload,
    PasswordChangePayload,
    ProductPayload,
    PromoCodePayload,
    PromoValidatePayload,
    RazorpayOrderPayload,
    RazorpayVerifyPayload,
    ReviewPayload,
    SignupPayload,
    SilverRatePayload,
    UserBlockPayload,
)
from . import admin, auth, catalog, orders, payments, promo, rates
from .auth import require_admin, require_user
from .config import Settings, get_settings
from .deps import get_db, get_gateway, get_mailer, get_otp_service, get_outbox
from .gateway import RazorpayGateway
from .mailer import Mailer
from .notifications import NotificationOutbox
from .otp import OtpService

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        try:
            database.ensure_indexes(database.db)
        except PyMongoError as exc:
            logger.warning("could not ensure indexes: %s", exc)
    yield


app = FastAPI(title="Jewellery Storefront API", lifespan=lifespan)

_origins = [o.strip() for o in get_settings().cors_origin.split(",") if o.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Helpers
def ok(data: Any = None, **extra) -> dict:
    body = {"ok": True}
    if data is not None:
        body["data"] = serialize(data)
    body.update(serialize(extra))
    return body


def page_of(items: List[dict], page: int, limit: int, total: int) -> dict:
    return ok(items, page=page, limit=limit, total=total)


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "message": message, **extra})


# Error handlers
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        detail = dict(exc.detail)
        message = str(detail.pop("message", "Error"))
        response = _error(exc.status_code, message, **detail)
    else:
        response = _error(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return _error(400, "Invalid request")
    first = errors[0]
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
    message = f"Invalid {field}: {first.get('msg')}" if field else str(first.get("msg"))
    return _error(400, message)


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_error(request: Request, exc: DuplicateKeyError):
    key_value = (exc.details or {}).get("keyValue") or {}
    fields = ", ".join(key_value) or "key"
    return _error(409, f"Duplicate {fields}")


@app.exception_handler(ConnectionFailure)
async def database_unavailable(request: Request, exc: ConnectionFailure):
    logger.error("database unavailable: %s", exc)
    return _error(503, "Database not connected")


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal Server Error")


# Health and test
@app.get("/")
def read_root():
    return {"message": "Jewellery Storefront Backend Running"}


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if database.is_connected():
        response["database"] = "✅ Connected"
        response["connection_status"] = "Connected"
        try:
            response["collections"] = database.db.list_collection_names()
        except PyMongoError as exc:
            response["database"] = f"❌ Error: {str(exc)[:80]}"
    return response


# Admin auth
@app.post("/api/admin/login/init")
def admin_login_init(
    payload: CredentialsPayload,
    settings: Settings = Depends(get_settings),
    otp: OtpService = Depends(get_otp_service),
    mailer: Mailer = Depends(get_mailer),
):
    return {"ok": True, **auth.admin_login_init(payload, settings, otp, mailer)}


@app.post("/api/admin/login/verify")
def admin_login_verify(
    payload: OtpVerifyPayload,
    settings: Settings = Depends(get_settings),
    otp: OtpService = Depends(get_otp_service),
):
    return {"ok": True, "token": auth.admin_login_verify(payload, settings, otp)}


@app.get("/api/admin/me")
def admin_me(claims: dict = Depends(require_admin)):
    return ok({"email": claims["email"]})


@app.get("/api/admin/analytics", dependencies=[Depends(require_admin)])
def admin_analytics(db: Database = Depends(get_db)):
    return ok(admin.analytics(db))


# Admin customers
@app.get("/api/admin/users", dependencies=[Depends(require_admin)])
def admin_list_users(
    q: Optional[str] = Query(default=None, description="Search by email or name"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Database = Depends(get_db),
):
    items, total = admin.list_users(db, q, page, limit)
    return page_of(items, page, limit, total)


@app.patch("/api/admin/users/{user_id}/block", dependencies=[Depends(require_admin)])
def admin_block_user(user_id: str, payload: UserBlockPayload, db: Database = Depends(get_db)):
    return ok(admin.set_user_blocked(db, user_id, payload.is_blocked))


@app.delete("/api/admin/users/{user_id}", dependencies=[Depends(require_admin)])
def admin_delete_user(user_id: str, db: Database = Depends(get_db)):
    admin.delete_user(db, user_id)
    return {"ok": True}


# Customer auth
@app.post("/api/users/signup/init")
def signup_init(
    payload: SignupPayload,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    otp: OtpService = Depends(get_otp_service),
    mailer: Mailer = Depends(get_mailer),
):
    auth.signup_init(db, payload, settings, otp, mailer)
    return {"ok": True, "message": "OTP sent"}


@app.post("/api/users/signup/verify", status_code=201)
def signup_verify(
    payload: OtpVerifyPayload,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    otp: OtpService = Depends(get_otp_service),
):
    result = auth.signup_verify(db, payload, settings, otp)
    return ok(result["user"], token=result["token"])


@app.post("/api/users/login/init")
def login_init(
    payload: CredentialsPayload,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    otp: OtpService = Depends(get_otp_service),
    mailer: Mailer = Depends(get_mailer),
):
    auth.login_init(db, payload, settings, otp, mailer)
    return {"ok": True, "message": "OTP sent"}


@app.post("/api/users/login/verify")
def login_verify(
    payload: OtpVerifyPayload,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    otp: OtpService = Depends(get_otp_service),
):
    result = auth.login_verify(db, payload, settings, otp)
    return ok(result["user"], token=result["token"])


@app.get("/api/users/me")
def users_me(user: dict = Depends(require_user)):
    return ok(auth.public_user(user))


@app.patch("/api/users/password")
def change_password(payload: PasswordChangePayload, user: dict = Depends(require_user), db: Database = Depends(get_db)):
    auth.change_password(db, user, payload)
    return {"ok": True}


@app.post("/api/users/logout", dependencies=[Depends(require_user)])
def logout():
    # tokens are stateless; the client drops its copy
    return {"ok": True}


# Products
@app.get("/api/products/meta/material-types")
def material_types(db: Database = Depends(get_db)):
    return ok(rates.material_types(db))


@app.get("/api/products")
def list_products(
    q: Optional[str] = Query(default=None, description="Search by name or slug"),
    is_active: Optional[bool] = Query(default=None, alias="isActive"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1),
    db: Database = Depends(get_db),
):
    limit = min(limit, catalog.PRODUCT_LIST_MAX)
    items, total = catalog.list_products(db, q, is_active, page, limit)
    return page_of(items, page, limit, total)


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return ok(catalog.get_product(db, product_id))


@app.post("/api/products", status_code=201, dependencies=[Depends(require_admin)])
def create_product(payload: ProductPayload, db: Database = Depends(get_db)):
    return ok(catalog.create_product(db, payload))


@app.put("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def update_product(product_id: str, payload: ProductPayload, db: Database = Depends(get_db)):
    return ok(catalog.update_product(db, product_id, payload))


@app.delete("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str, db: Database = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"ok": True}


@app.get("/api/products/{product_id}/reviews")
def list_reviews(product_id: str, db: Database = Depends(get_db)):
    return ok(catalog.list_reviews(db, product_id))


@app.post("/api/products/{product_id}/reviews")
def add_review(
    product_id: str,
    payload: ReviewPayload,
    response: Response,
    user: dict = Depends(require_user),
    db: Database = Depends(get_db),
):
    stats, created = catalog.upsert_review(db, user, product_id, payload)
    response.status_code = 201 if created else 200
    return ok(stats)


# Commodity rates
@app.get("/api/gold-rates", dependencies=[Depends(require_admin)])
def list_gold_rates(
    carat: Optional[int] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Database = Depends(get_db),
):
    items, total = rates.list_rates(db, "goldrate", {"carat": carat} if carat is not None else {}, page, limit)
    return page_of(items, page, limit, total)


@app.post("/api/gold-rates", status_code=201, dependencies=[Depends(require_admin)])
def create_gold_rate(payload: GoldRatePayload, db: Database = Depends(get_db)):
    return ok(rates.create_gold_rate(db, payload))


@app.delete("/api/gold-rates/{rate_id}", dependencies=[Depends(require_admin)])
def delete_gold_rate(rate_id: str, db: Database = Depends(get_db)):
    rates.delete_rate(db, "goldrate", rate_id, "Gold rate")
    return {"ok": True}


@app.get("/api/silver-rates", dependencies=[Depends(require_admin)])
def list_silver_rates(
    purity_mark: Optional[int] = Query(default=None, alias="purityMark"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Database = Depends(get_db),
):
    filter_q = {"purity_mark": purity_mark} if purity_mark is not None else {}
    items, total = rates.list_rates(db, "silverrate", filter_q, page, limit)
    return page_of(items, page, limit, total)


@app.post("/api/silver-rates", status_code=201, dependencies=[Depends(require_admin)])
def create_silver_rate(payload: SilverRatePayload, db: Database = Depends(get_db)):
    return ok(rates.create_silver_rate(db, payload))


@app.delete("/api/silver-rates/{rate_id}", dependencies=[Depends(require_admin)])
def delete_silver_rate(rate_id: str, db: Database = Depends(get_db)):
    rates.delete_rate(db, "silverrate", rate_id, "Silver rate")
    return {"ok": True}


@app.get("/api/diamond-prices", dependencies=[Depends(require_admin)])
def list_diamond_prices(
    diamond_type_id: Optional[str] = Query(default=None, alias="diamondTypeId"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Database = Depends(get_db),
):
    filter_q = {"diamond_type": diamond_type_id} if diamond_type_id else {}
    items, total = rates.list_rates(db, "diamondprice", filter_q, page, limit)
    return page_of(items, page, limit, total)


@app.post("/api/diamond-prices", status_code=201, dependencies=[Depends(require_admin)])
def create_diamond_price(payload: DiamondPricePayload, db: Database = Depends(get_db)):
    return ok(rates.create_diamond_price(db, payload))


@app.delete("/api/diamond-prices/{price_id}", dependencies=[Depends(require_admin)])
def delete_diamond_price(price_id: str, db: Database = Depends(get_db)):
    rates.delete_rate(db, "diamondprice", price_id, "Diamond price")
    return {"ok": True}


@app.get("/api/diamond-types", dependencies=[Depends(require_admin)])
def list_diamond_types(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: Database = Depends(get_db),
):
    items, total = rates.list_rates(db, "diamondtype", {}, page, limit)
    return page_of(items, page, limit, total)


@app.post("/api/diamond-types", status_code=201, dependencies=[Depends(require_admin)])
def create_diamond_type(payload: DiamondTypePayload, db: Database = Depends(get_db)):
    return ok(rates.create_diamond_type(db, payload))


@app.delete("/api/diamond-types/{type_id}", dependencies=[Depends(require_admin)])
def delete_diamond_type(type_id: str, db: Database = Depends(get_db)):
    rates.delete_rate(db, "diamondtype", type_id, "Diamond type")
    return {"ok": True}


# Promo codes
@app.post("/api/promocodes/validate")
def validate_promocode(payload: PromoValidatePayload, db: Database = Depends(get_db)):
    promo_doc = promo.find_by_code(db, payload.code)
    result = promo.evaluate(promo_doc, payload.order_total)
    if result is None:
        raise HTTPException(status_code=400, detail="Invalid orderTotal")
    if not result.ok:
        raise HTTPException(status_code=400, detail=result.reason)
    return ok({"promo": promo_doc, "discount": result.discount, "totalAfter": result.total_after})


@app.get("/api/promocodes", dependencies=[Depends(require_admin)])
def list_promocodes(
    q: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Database = Depends(get_db),
):
    items, total = promo.list_promos(db, q, page, limit)
    return page_of(items, page, limit, total)


@app.get("/api/promocodes/{promo_id}", dependencies=[Depends(require_admin)])
def get_promocode(promo_id: str, db: Database = Depends(get_db)):
    return ok(promo.get_promo(db, promo_id))


@app.post("/api/promocodes", status_code=201, dependencies=[Depends(require_admin)])
def create_promocode(payload: PromoCodePayload, db: Database = Depends(get_db)):
    return ok(promo.create_promo(db, payload))


@app.put("/api/promocodes/{promo_id}", dependencies=[Depends(require_admin)])
def update_promocode(promo_id: str, payload: PromoCodePayload, db: Database = Depends(get_db)):
    return ok(promo.update_promo(db, promo_id, payload))


@app.delete("/api/promocodes/{promo_id}", dependencies=[Depends(require_admin)])
def delete_promocode(promo_id: str, db: Database = Depends(get_db)):
    promo.delete_promo(db, promo_id)
    return {"ok": True}


# Cart
@app.get("/api/cart")
def get_cart(user: dict = Depends(require_user), db: Database = Depends(get_db)):
    return ok(catalog.cart_list(db, str(user["_id"])))


@app.post("/api/cart")
def add_to_cart(
    payload: CartAddPayload,
    response: Response,
    user: dict = Depends(require_user),
    db: Database = Depends(get_db),
):
    item, created = catalog.cart_add(db, str(user["_id"]), payload.product_id)
    response.status_code = 201 if created else 200
    return ok(item)


@app.delete("/api/cart/{product_id}")
def remove_from_cart(product_id: str, user: dict = Depends(require_user), db: Database = Depends(get_db)):
    catalog.cart_remove(db, str(user["_id"]), product_id)
    return {"ok": True}


# Orders
@app.post("/api/orders", status_code=201)
def create_order(
    payload: CreateOrderPayload,
    background_tasks: BackgroundTasks,
    user: dict = Depends(require_user),
    db: Database = Depends(get_db),
    outbox: NotificationOutbox = Depends(get_outbox),
    settings: Settings = Depends(get_settings),
):
    order = orders.create_order(db, str(user["_id"]), payload, outbox, settings)
    background_tasks.add_task(outbox.drain)
    return ok(order)


@app.get("/api/orders")
def list_my_orders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user: dict = Depends(require_user),
    db: Database = Depends(get_db),
):
    items, total = orders.list_for_user(db, str(user["_id"]), page, limit)
    return page_of(items, page, limit, total)


@app.get("/api/orders/admin", dependencies=[Depends(require_admin)])
def list_all_orders(
    status: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Database = Depends(get_db),
):
    items, total = orders.list_all(db, status, page, limit)
    return page_of(items, page, limit, total)


@app.get("/api/orders/{order_id}")
def get_my_order(order_id: str, user: dict = Depends(require_user), db: Database = Depends(get_db)):
    return ok(orders.get_for_user(db, str(user["_id"]), order_id))


@app.patch("/api/orders/{order_id}/status", dependencies=[Depends(require_admin)])
def set_order_status(
    order_id: str,
    payload: OrderStatusPayload,
    background_tasks: BackgroundTasks,
    db: Database = Depends(get_db),
    outbox: NotificationOutbox = Depends(get_outbox),
    settings: Settings = Depends(get_settings),
):
    order = orders.set_status(db, order_id, payload.status, outbox, settings)
    background_tasks.add_task(outbox.drain)
    return ok(order)


@app.patch("/api/orders/{order_id}/delivery", dependencies=[Depends(require_admin)])
def set_order_delivery(order_id: str, payload: DeliveryPayload, db: Database = Depends(get_db)):
    return ok(orders.set_delivery(db, order_id, payload))


# Payments
@app.post("/api/payments/razorpay/order")
def create_razorpay_order(
    payload: RazorpayOrderPayload,
    response: Response,
    user: dict = Depends(require_user),
    db: Database = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_gateway),
):
    result = payments.create_razorpay_order(db, gateway, str(user["_id"]), payload.order_id, payload.method)
    response.status_code = 201 if result.pop("created") else 200
    return ok(result)


@app.post("/api/payments/razorpay/verify")
def verify_razorpay_payment(
    payload: RazorpayVerifyPayload,
    user: dict = Depends(require_user),
    db: Database = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_gateway),
):
    return ok(payments.verify_razorpay_payment(db, gateway, str(user["_id"]), payload))


@app.get("/api/payments/{payment_id}")
def get_payment(payment_id: str, user: dict = Depends(require_user), db: Database = Depends(get_db)):
    return ok(payments.get_payment(db, str(user["_id"]), payment_id))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("backend.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
