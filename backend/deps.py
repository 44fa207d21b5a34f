"""FastAPI dependency providers. Tests swap these out with ``app.dependency_overrides``."""
from functools import lru_cache

from fastapi import Depends, HTTPException
from pymongo.database import Database

import database
from .config import Settings, get_settings
from .gateway import RazorpayGateway
from .mailer import Mailer
from .notifications import NotificationOutbox
from .otp import InMemoryOtpStore, OtpService


def get_db() -> Database:
    if not database.is_connected(database.db):
        raise HTTPException(status_code=503, detail="Database not connected")
    return database.db


def get_mailer(settings: Settings = Depends(get_settings)) -> Mailer:
    return Mailer(settings.resend_api_key, settings.mail_from)


def get_outbox(mailer: Mailer = Depends(get_mailer)) -> NotificationOutbox:
    # One outbox per request, drained by a background task
    return NotificationOutbox(mailer)


def get_gateway(settings: Settings = Depends(get_settings)) -> RazorpayGateway:
    if not settings.razorpay_configured:
        raise HTTPException(status_code=503, detail="Payment gateway not configured")
    return RazorpayGateway(settings.razorpay_key_id, settings.razorpay_key_secret, settings.razorpay_api_url)


@lru_cache
def _otp_service(ttl_seconds: int, max_attempts: int) -> OtpService:
    return OtpService(InMemoryOtpStore(), ttl_seconds=ttl_seconds, max_attempts=max_attempts)


def get_otp_service(settings: Settings = Depends(get_settings)) -> OtpService:
    return _otp_service(settings.otp_ttl_seconds, settings.otp_max_attempts)
