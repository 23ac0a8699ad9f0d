"""Infrastructure adapter that implements the application Notifier port
by rendering an html template and handing it to the Celery email task.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from application.ports.notifier import NotificationError, Notifier
from infrastructure.tasks.utils.dispatcher import TaskDispatcher


TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


def render_email(template: str, context: Mapping[str, Any]) -> str:
    return _env.get_template(f"{template}.html").render(**context)


class CeleryEmailNotifier(Notifier):
    def __init__(self, dispatcher: Optional[TaskDispatcher] = None):
        self.dispatcher = dispatcher or TaskDispatcher()

    def send(self, to_address: str, subject: str, template: str, context: Mapping[str, Any]) -> None:
        try:
            html = render_email(template, context)
        except TemplateError as exc:
            raise NotificationError(f"Cannot render template {template}: {exc}") from exc
        try:
            self.dispatcher.send_email(to_address, subject, html)
        except Exception as exc:
            # broker errors surface as kombu/redis exceptions
            raise NotificationError(f"Cannot enqueue email to {to_address}: {exc}") from exc
