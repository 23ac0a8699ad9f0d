"""Schedules tasks by name so callers never import task modules."""
from __future__ import annotations

from typing import Optional

from celery import Celery

from core.logging_config import get_logger
from ..config.celery import MAIL_QUEUE, celery_app


logger = get_logger(__name__)

SEND_EMAIL_TASK = "infrastructure.tasks.tasks.email.send_email"


class TaskDispatcher:

    def __init__(self, app: Optional[Celery] = None):
        self._app = app or celery_app

    def send_email(self, to_address: str, subject: str, html_body: str) -> str:
        """Queue one customer email, returning the task id.

        Broker errors propagate to the caller.
        """
        result = self._app.send_task(
            SEND_EMAIL_TASK,
            kwargs={"to_address": to_address, "subject": subject, "html_body": html_body},
            queue=MAIL_QUEUE,
        )
        logger.debug("email_enqueued", task_id=result.id, to=to_address, subject=subject)
        return result.id
