"""
Transactional mail API client (Brevo compatible)
"""
import re
from typing import Iterable, Optional, Union

import httpx

from core.config import MailSettings, settings
from core.logging_config import get_logger
from .base import APIError, BaseAPIClient


logger = get_logger(__name__)

_EMAIL_RE = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")


def is_valid_email(address: Optional[str]) -> bool:
    return bool(address) and _EMAIL_RE.fullmatch(address) is not None


class MailApiClient(BaseAPIClient):
    """Sends html mail through a single POST endpoint authenticated by an api-key header."""

    def __init__(
        self,
        mail_settings: Optional[MailSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.mail_settings = mail_settings or settings.mail
        headers = {}
        if self.mail_settings.api_key:
            headers["api-key"] = self.mail_settings.api_key
        super().__init__(
            base_url=self.mail_settings.api_url,
            timeout=self.mail_settings.timeout,
            max_retries=self.mail_settings.max_retries,
            headers=headers,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.mail_settings.api_key)

    async def send_email(
        self,
        to: Union[str, Iterable[str]],
        subject: str,
        html: str,
    ) -> Optional[str]:
        """
        Send one message

        Returns the provider message id, or None when no recipient address is valid.

        Raises:
            APIError: the provider rejected the message or stayed unreachable
        """
        recipients = [to] if isinstance(to, str) else list(to)
        valid = [addr for addr in recipients if is_valid_email(addr)]
        if not valid:
            logger.warning("email_no_valid_recipient", to=recipients, subject=subject)
            return None

        payload = {
            "sender": {
                "email": self.mail_settings.sender_email,
                "name": self.mail_settings.sender_name,
            },
            "to": [{"email": addr} for addr in valid],
            "subject": subject,
            "htmlContent": html,
        }
        response = await self.post("", json_data=payload)
        message_id = None
        if isinstance(response.data, dict):
            message_id = response.data.get("messageId")
        logger.info("email_sent", to=valid, subject=subject, message_id=message_id)
        return message_id


__all__ = ["MailApiClient", "APIError", "is_valid_email"]
