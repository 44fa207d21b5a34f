import logging
from typing import Any, Dict, Optional

import requests
from fastapi import HTTPException

logger = logging.getLogger(__name__)


class RazorpayGateway:
    """Thin client for the Razorpay Orders and Payments REST API."""

    def __init__(self, key_id: str, key_secret: str, base_url: str = "https://api.razorpay.com/v1", timeout: float = 15.0):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.auth = (key_id, key_secret)

    def _request(self, method: str, path: str, json: Optional[dict] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, json=json, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error("razorpay request failed %s %s: %s", method, path, exc)
            raise HTTPException(status_code=502, detail="Payment gateway unreachable")
        if response.status_code >= 400:
            logger.error("razorpay %s %s answered %s: %s", method, path, response.status_code, response.text[:500])
            raise HTTPException(status_code=502, detail="Payment gateway error")
        try:
            return response.json()
        except ValueError:
            raise HTTPException(status_code=502, detail="Payment gateway sent an invalid response")

    def create_order(self, amount: int, currency: str, receipt: str, notes: Optional[dict] = None) -> Dict[str, Any]:
        body = {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes or {}}
        return self._request("POST", "/orders", json=body)

    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/payments/{payment_id}")
