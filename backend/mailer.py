import logging
from typing import Dict, Optional

import resend

logger = logging.getLogger(__name__)


class Mailer:
    """Outbound email through Resend."""

    def __init__(self, api_key: str, sender: str):
        self._api_key = (api_key or "").strip()
        self._sender = sender

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def send_mail(self, to: str, subject: str, text: str, html: Optional[str] = None) -> Dict[str, Optional[str]]:
        if not to:
            raise ValueError("Missing recipient")
        if not self.configured:
            logger.warning("mail not configured, skipping to=%s subject=%r", to, subject)
            return {"message_id": None}

        payload = {"from": self._sender, "to": [to], "subject": subject, "text": text}
        if html:
            payload["html"] = html
        resend.api_key = self._api_key
        response = resend.Emails.send(payload)
        message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        logger.info("mail sent to=%s subject=%r id=%s", to, subject, message_id)
        return {"message_id": message_id}
