import logging
import threading
from typing import Dict, Optional

import resend

import config

logger = logging.getLogger(__name__)

# resend reads its key from a module global; sends from the request
# threadpool must not see another sender's key swapped in or out.
_resend_lock = threading.Lock()


class NotificationError(Exception):
    pass


class Notifier:
    """Sends plain-text e-mail through the Resend API."""

    def __init__(self, api_key: Optional[str] = None, sender: Optional[str] = None):
        self.api_key = (api_key if api_key is not None else config.RESEND_API_KEY).strip()
        self.sender = sender or config.MAIL_FROM

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def send(self, to: str, subject: str, text: str) -> str:
        if not self.configured:
            raise NotificationError("Resend API key is not configured.")

        payload: Dict[str, object] = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "text": text,
        }

        with _resend_lock:
            previous_api_key = getattr(resend, "api_key", None)
            resend.api_key = self.api_key
            try:
                response = resend.Emails.send(payload)
            except Exception as exc:
                raise NotificationError(str(exc)) from exc
            finally:
                resend.api_key = previous_api_key

        if not isinstance(response, dict) or not response.get("id"):
            raise NotificationError(f"Unexpected Resend response: {response!r}")

        logger.info("Sent '%s' to %s", subject, to)
        return response["id"]
