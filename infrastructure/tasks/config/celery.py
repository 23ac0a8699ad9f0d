"""Celery application for the notification queue"""
from __future__ import annotations

import os

from celery import Celery
from celery.signals import setup_logging
from kombu import Queue

from core.config import settings
from core.logging_config import configure_logging, get_logger


# modules holding @shared_task definitions
TASK_MODULES = (
    "infrastructure.tasks.tasks",
)

MAIL_QUEUE = "mail"


celery_app = Celery("order_cancellation")

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # ack after delivery so a lost worker re-sends the mail
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_queues=(
        Queue("default"),
        Queue(MAIL_QUEUE),
    ),
    task_routes={
        "infrastructure.tasks.tasks.email.*": {"queue": MAIL_QUEUE},
    },
)

celery_app.conf.imports = TASK_MODULES

celery_app.autodiscover_tasks(packages=TASK_MODULES)


logger = get_logger(__name__)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    # connected receiver stops celery from installing its own root handler
    configure_logging()


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info("celery_configured", broker=sender.conf.broker_url, queues=[q.name for q in sender.conf.task_queues])
