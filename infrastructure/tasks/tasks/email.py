"""Email related Celery tasks"""
from __future__ import annotations

import asyncio

from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger
from infrastructure.external.api_clients.mail_client import MailApiClient

logger = get_logger(__name__)


async def _deliver(to_address: str, subject: str, html_body: str):
    async with MailApiClient() as client:
        if not client.is_configured:
            logger.info("email_delivery_skipped", to=to_address, subject=subject, reason="mail api key not configured")
            return None
        return await client.send_email(to_address, subject, html_body)


@shared_task(
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def send_email(self, to_address: str, subject: str, html_body: str):
    """Deliver one html message through the mail API.

    The HTTP client retries transient failures itself; anything left is
    retried by Celery with backoff.
    """
    message_id = asyncio.run(_deliver(to_address, subject, html_body))
    return {"message_id": message_id}
