"""Admin and customer authentication.

Both roles sign in with a password followed by an emailed one-time code.
The admin account is a single configured email/password pair; customers
live in the ``user`` collection.
"""
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError
from pymongo.database import Database

from database import create_document
from schemas import (
    CredentialsPayload,
    OtpVerifyPayload,
    PasswordChangePayload,
    SignupPayload,
    User as UserSchema,
)
from . import notifications
from .config import Settings, get_settings
from .deps import get_db
from .mailer import Mailer
from .otp import OtpService

logger = logging.getLogger(__name__)

JWT_ALG = "HS256"
ADMIN_TOKEN_TTL = timedelta(days=1)
USER_TOKEN_TTL = timedelta(days=7)
MIN_PASSWORD_LENGTH = 6

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
auth_scheme = HTTPBearer(auto_error=False)


# Tokens and hashing
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed or "")
    except (UnknownHashError, ValueError):
        return False


def _secret(settings: Settings) -> str:
    if not settings.jwt_secret:
        raise HTTPException(status_code=500, detail="JWT secret not configured")
    return settings.jwt_secret


def create_access_token(data: dict, settings: Settings, expires: timedelta) -> str:
    to_encode = data.copy()
    to_encode["exp"] = datetime.now(timezone.utc) + expires
    return jwt.encode(to_encode, _secret(settings), algorithm=JWT_ALG)


def decode_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, _secret(settings), algorithms=[JWT_ALG])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def _claims(credentials: Optional[HTTPAuthorizationCredentials], settings: Settings, role: str) -> dict:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    claims = decode_token(credentials.credentials, settings)
    if claims.get("role") != role or not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return claims


def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    settings: Settings = Depends(get_settings),
) -> dict:
    claims = _claims(credentials, settings, "admin")
    return {"email": claims["sub"], "role": "admin"}


def require_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    settings: Settings = Depends(get_settings),
    db: Database = Depends(get_db),
) -> dict:
    claims = _claims(credentials, settings, "user")
    user_id = claims["sub"]
    if not ObjectId.is_valid(user_id):
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if user.get("is_blocked"):
        raise HTTPException(status_code=403, detail="Account blocked")
    return user


def public_user(user: dict) -> dict:
    return {
        "_id": str(user["_id"]),
        "email": user.get("email"),
        "full_name": user.get("full_name"),
        "created_at": user.get("created_at"),
    }


def normalize_email(email: str) -> str:
    return str(email or "").strip().lower()


def _send_otp(mailer: Mailer, settings: Settings, heading: str, code: str, to: str) -> None:
    event = notifications.otp_message(heading, code, settings.otp_ttl_seconds, settings.store_name, to)
    mailer.send_mail(event.to, event.subject, event.text)


# Admin
def admin_login_init(payload: CredentialsPayload, settings: Settings, otp: OtpService, mailer: Mailer) -> dict:
    if not settings.admin_email or not settings.admin_password:
        raise HTTPException(status_code=500, detail="Admin credentials not configured")
    email = normalize_email(payload.email)
    password_ok = hmac.compare_digest(payload.password.strip().encode(), settings.admin_password.encode())
    if email != settings.admin_email or not password_ok:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    code = otp.issue(email, "admin_login")
    _send_otp(mailer, settings, "Admin Login OTP", code, email)
    result = {"message": "OTP sent"}
    if not settings.is_production:
        result["otp"] = code
    return result


def admin_login_verify(payload: OtpVerifyPayload, settings: Settings, otp: OtpService) -> str:
    email = normalize_email(payload.email)
    otp.verify(email, payload.otp, "admin_login")
    logger.info("admin signed in email=%s", email)
    return create_access_token({"sub": email, "role": "admin"}, settings, ADMIN_TOKEN_TTL)


# Customers
def signup_init(db: Database, payload: SignupPayload, settings: Settings, otp: OtpService, mailer: Mailer) -> None:
    email = normalize_email(payload.email)
    full_name = payload.full_name.strip()
    if "@" not in email:
        raise HTTPException(status_code=400, detail="Invalid email")
    if len(payload.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not full_name:
        raise HTTPException(status_code=400, detail="Invalid fullName")
    if db["user"].find_one({"email": email}, {"_id": 1}):
        raise HTTPException(status_code=409, detail="Email already registered")

    code = otp.issue(email, "signup", {"full_name": full_name, "password_hash": hash_password(payload.password)})
    _send_otp(mailer, settings, "Signup OTP", code, email)


def signup_verify(db: Database, payload: OtpVerifyPayload, settings: Settings, otp: OtpService) -> dict:
    email = normalize_email(payload.email)
    pending = otp.verify(email, payload.otp, "signup")
    if db["user"].find_one({"email": email}, {"_id": 1}):
        raise HTTPException(status_code=409, detail="Email already registered")

    user = UserSchema(email=email, password=pending["password_hash"], full_name=pending["full_name"])
    user_id = create_document("user", user, database=db)
    doc = db["user"].find_one({"_id": ObjectId(user_id)})
    logger.info("user registered id=%s", user_id)
    token = create_access_token({"sub": user_id, "role": "user"}, settings, USER_TOKEN_TTL)
    return {"token": token, "user": public_user(doc)}


def login_init(db: Database, payload: CredentialsPayload, settings: Settings, otp: OtpService, mailer: Mailer) -> None:
    email = normalize_email(payload.email)
    if "@" not in email:
        raise HTTPException(status_code=400, detail="Invalid email")
    user = db["user"].find_one({"email": email})
    if not user or not verify_password(payload.password, user.get("password", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user.get("is_blocked"):
        raise HTTPException(status_code=403, detail="Account blocked")

    code = otp.issue(email, "login", {"user_id": str(user["_id"])})
    _send_otp(mailer, settings, "Login OTP", code, email)


def login_verify(db: Database, payload: OtpVerifyPayload, settings: Settings, otp: OtpService) -> dict:
    email = normalize_email(payload.email)
    pending = otp.verify(email, payload.otp, "login")
    user_id = pending.get("user_id")
    if not user_id or not ObjectId.is_valid(user_id):
        raise HTTPException(status_code=400, detail="Invalid session")
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if user.get("is_blocked"):
        raise HTTPException(status_code=403, detail="Account blocked")
    token = create_access_token({"sub": user_id, "role": "user"}, settings, USER_TOKEN_TTL)
    return {"token": token, "user": public_user(user)}


def change_password(db: Database, user: dict, payload: PasswordChangePayload) -> None:
    if len(payload.new_password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not verify_password(payload.old_password, user.get("password", "")):
        raise HTTPException(status_code=400, detail="Old password is incorrect")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password": hash_password(payload.new_password), "updated_at": datetime.now(timezone.utc)}},
    )
