import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from backend import deps
from backend.auth import ADMIN_TOKEN_TTL, USER_TOKEN_TTL, create_access_token, hash_password
from backend.config import Settings, get_settings
from backend.main import app
from backend.otp import InMemoryOtpStore, OtpService
from database import create_document, ensure_indexes
from schemas import User
from tests.helpers import FakeGateway, FakeMailer


@pytest.fixture
def db():
    database = mongomock.MongoClient().get_database("jewellery_test")
    ensure_indexes(database)
    return database


@pytest.fixture
def settings():
    return Settings(
        app_env="test",
        log_level="INFO",
        cors_origin="*",
        database_url="",
        database_name="jewellery_test",
        jwt_secret="test-secret",
        admin_email="admin@store.test",
        admin_password="admin-pass",
        razorpay_key_id=FakeGateway.key_id,
        razorpay_key_secret=FakeGateway.key_secret,
        razorpay_api_url="https://razorpay.invalid/v1",
        resend_api_key="",
        mail_from="store@store.test",
        mail_to="orders@store.test",
        store_name="Test Jewels",
    )


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def otp_service():
    return OtpService(InMemoryOtpStore(), ttl_seconds=600, max_attempts=5)


@pytest.fixture
def client(db, settings, mailer, gateway, otp_service):
    app.dependency_overrides[deps.get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[deps.get_mailer] = lambda: mailer
    app.dependency_overrides[deps.get_gateway] = lambda: gateway
    app.dependency_overrides[deps.get_otp_service] = lambda: otp_service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(settings):
    token = create_access_token({"sub": settings.admin_email, "role": "admin"}, settings, ADMIN_TOKEN_TTL)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user(db):
    user_id = create_document(
        "user",
        User(email="asha@example.com", password=hash_password("secret123"), full_name="Asha Rao"),
        database=db,
    )
    return db["user"].find_one({"_id": ObjectId(user_id)})


@pytest.fixture
def user_headers(user, settings):
    token = create_access_token({"sub": str(user["_id"]), "role": "user"}, settings, USER_TOKEN_TTL)
    return {"Authorization": f"Bearer {token}"}
