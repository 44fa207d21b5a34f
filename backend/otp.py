"""One-time passcodes for email sign-in and sign-up.

The store is injected so a shared backend (for example Redis) can replace the
in-process default when the API runs with more than one worker.
"""
import logging
import secrets
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import HTTPException

logger = logging.getLogger(__name__)


class OtpStore:
    """Key/value store with per-entry expiry."""

    def get(self, key: str) -> Optional[dict]:
        raise NotImplementedError

    def set(self, key: str, value: dict, ttl_seconds: int) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class InMemoryOtpStore(OtpStore):
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, dict]] = {}

    def get(self, key: str) -> Optional[dict]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return dict(value)

    def set(self, key: str, value: dict, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, dict(value))

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)


def generate_code() -> str:
    # never starts with 0, so a code sent as a JSON number survives
    return str(100_000 + secrets.randbelow(900_000))


def normalize_code(code: Any) -> str:
    if isinstance(code, int) and not isinstance(code, bool):
        return f"{code:06d}"
    return str(code).strip()


class OtpService:
    def __init__(self, store: OtpStore, ttl_seconds: int = 600, max_attempts: int = 5, clock: Callable[[], float] = time.time):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self._clock = clock

    @staticmethod
    def _key(email: str, purpose: str) -> str:
        return f"{purpose}:{email.strip().lower()}"

    def issue(self, email: str, purpose: str, payload: Optional[dict] = None) -> str:
        """Create a fresh code for ``email``, replacing any earlier one for the same purpose."""
        code = generate_code()
        entry = {
            "code": code,
            "attempts": 0,
            "expires_at": self._clock() + self.ttl_seconds,
            "payload": payload or {},
        }
        self.store.set(self._key(email, purpose), entry, self.ttl_seconds)
        logger.info("otp issued purpose=%s email=%s", purpose, email)
        return code

    def verify(self, email: str, code: Any, purpose: str) -> dict:
        """Check ``code`` and consume the entry; returns the payload stored at issue time."""
        key = self._key(email, purpose)
        entry = self.store.get(key)
        if not entry:
            raise HTTPException(status_code=400, detail="OTP not requested")
        if entry["attempts"] >= self.max_attempts:
            self.store.delete(key)
            raise HTTPException(status_code=429, detail="Too many attempts")
        if self._clock() >= entry["expires_at"]:
            self.store.delete(key)
            raise HTTPException(status_code=400, detail="OTP expired")

        if not secrets.compare_digest(normalize_code(code), entry["code"]):
            entry["attempts"] += 1
            remaining = max(int(entry["expires_at"] - self._clock()), 1)
            self.store.set(key, entry, remaining)
            logger.info("otp mismatch purpose=%s email=%s attempts=%d", purpose, email, entry["attempts"])
            raise HTTPException(status_code=400, detail="Invalid OTP")

        self.store.delete(key)
        return entry["payload"]
