from .celery import MAIL_QUEUE, celery_app

__all__ = ["MAIL_QUEUE", "celery_app"]
