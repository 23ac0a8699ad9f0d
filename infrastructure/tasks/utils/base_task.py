"""Base task shared by the notification jobs"""
from __future__ import annotations

from typing import Any

from celery import Task

from core.logging_config import get_logger

logger = get_logger(__name__)

# rendered html bodies are large and carry customer data
_OMITTED_KWARGS = frozenset({"html_body"})


def _loggable(kwargs: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in (kwargs or {}).items() if k not in _OMITTED_KWARGS}


class BaseTask(Task):
    """Structured logging for retries and final outcomes."""

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "celery_task_retry",
            task_id=task_id,
            task_name=self.name,
            retries=self.request.retries,
            error=str(exc),
            **_loggable(kwargs),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            error=str(exc),
            **_loggable(kwargs),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info("celery_task_success", task_id=task_id, task_name=self.name, result=retval)
        super().on_success(retval, task_id, args, kwargs)
