import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass
class Settings:
    app_env: str
    log_level: str
    cors_origin: str
    database_url: str
    database_name: str
    jwt_secret: str
    admin_email: str
    admin_password: str
    razorpay_key_id: str
    razorpay_key_secret: str
    razorpay_api_url: str
    resend_api_key: str
    mail_from: str
    mail_to: str
    store_name: str
    otp_ttl_seconds: int = 600
    otp_max_attempts: int = 5

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def razorpay_configured(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)

    @property
    def notify_address(self) -> str:
        # Store inbox for new-order mails
        return (self.mail_to or self.admin_email or self.mail_from).strip()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer") from None
    if value <= 0:
        raise ValueError(f"{name} must be > 0")
    return value


def load_settings() -> Settings:
    return Settings(
        app_env=os.getenv("APP_ENV", "development").strip().lower(),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origin=os.getenv("CORS_ORIGIN", "*"),
        database_url=os.getenv("DATABASE_URL", ""),
        database_name=os.getenv("DATABASE_NAME", "jewellery_store"),
        jwt_secret=os.getenv("JWT_SECRET", ""),
        admin_email=os.getenv("ADMIN_EMAIL", "").strip().lower(),
        admin_password=os.getenv("ADMIN_PASSWORD", "").strip(),
        razorpay_key_id=os.getenv("RAZORPAY_KEY_ID", ""),
        razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET", ""),
        razorpay_api_url=os.getenv("RAZORPAY_API_URL", "https://api.razorpay.com/v1").rstrip("/"),
        resend_api_key=os.getenv("RESEND_API_KEY", "").strip(),
        mail_from=os.getenv("MAIL_FROM", "no-reply@example.com"),
        mail_to=os.getenv("MAIL_TO", ""),
        store_name=os.getenv("STORE_NAME", "Om Abhusan Jewellery"),
        otp_ttl_seconds=_int_env("OTP_TTL_SECONDS", 600),
        otp_max_attempts=_int_env("OTP_MAX_ATTEMPTS", 5),
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()
