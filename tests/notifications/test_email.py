import json
from types import SimpleNamespace

import httpx
import pytest

from application.ports.notifier import NotificationError
from application.services.notification_service import NotificationService
from core.config import MailSettings
from core.logging_config import mask_customer_emails
from domain.user.entity import User
from infrastructure.adapters.email_notifier import CeleryEmailNotifier, render_email
from infrastructure.external.api_clients.mail_client import APIError, MailApiClient, is_valid_email
from infrastructure.tasks.tasks.email import _deliver


MAIL_URL = "https://mail.test/v3/smtp/email"


def _mail_settings(**overrides) -> MailSettings:
    values = {
        "api_url": MAIL_URL,
        "api_key": "test-key",
        "sender_email": "support@shop.test",
        "sender_name": "Shop Support",
        "max_retries": 0,
    }
    values.update(overrides)
    return MailSettings(**values)


class StubNotifier:
    def __init__(self):
        self.messages = []

    def send(self, to_address, subject, template, context):
        self.messages.append({"to": to_address, "subject": subject, "template": template, "context": dict(context)})


class StubDispatcher:
    def __init__(self, error: Exception | None = None):
        self.calls = []
        self.error = error

    def send_email(self, to_address: str, subject: str, html_body: str) -> None:
        if self.error is not None:
            raise self.error
        self.calls.append((to_address, subject, html_body))


def _order():
    return SimpleNamespace(order_code="ORD-9", order_status=SimpleNamespace(value="ORDER_PLACED"))


def _rejected_request():
    return SimpleNamespace(cancellation_code="CAN-9", admin_response=None)


@pytest.mark.asyncio
async def test_mail_client_posts_payload_with_api_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["api_key"] = request.headers.get("api-key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"messageId": "<msg-1@mail.test>"})

    async with MailApiClient(_mail_settings(), transport=httpx.MockTransport(handler)) as client:
        message_id = await client.send_email(["bob@example.com", "not-an-email"], "Hello", "<p>hi</p>")

    assert message_id == "<msg-1@mail.test>"
    assert seen["url"] == MAIL_URL
    assert seen["api_key"] == "test-key"
    assert seen["body"] == {
        "sender": {"email": "support@shop.test", "name": "Shop Support"},
        "to": [{"email": "bob@example.com"}],
        "subject": "Hello",
        "htmlContent": "<p>hi</p>",
    }


@pytest.mark.asyncio
async def test_mail_client_skips_when_no_valid_recipient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    async with MailApiClient(_mail_settings(), transport=httpx.MockTransport(handler)) as client:
        assert await client.send_email("nobody", "Hello", "<p>hi</p>") is None


@pytest.mark.asyncio
async def test_mail_client_raises_on_rejected_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"message": "invalid sender"})

    async with MailApiClient(_mail_settings(), transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(APIError) as excinfo:
            await client.send_email("bob@example.com", "Hello", "<p>hi</p>")
    assert excinfo.value.status_code == 400


def test_email_address_validation():
    assert is_valid_email("a.b@shop.example")
    assert not is_valid_email("missing-at.example")
    assert not is_valid_email(None)


@pytest.mark.asyncio
async def test_delivery_is_skipped_without_api_key():
    # the test environment configures no mail api key
    assert await _deliver("bob@example.com", "Hello", "<p>hi</p>") is None


def test_render_refund_invoice_escapes_context():
    html = render_email(
        "refund_invoice",
        {
            "customer_name": "<Bob>",
            "order_code": "ORD-1001",
            "cancellation_code": "CAN-1",
            "refund_id": "REF-1",
            "refund_date": "2026-03-10T12:00:00+00:00",
            "refund_amount": "990.00",
            "original_total": "1100.00",
            "retained_amount": "110.00",
        },
    )
    assert "ORD-1001" in html
    assert "REF-1" in html
    assert "&lt;Bob&gt;" in html


@pytest.mark.parametrize(
    "template",
    ["cancellation_requested", "cancellation_approved", "cancellation_rejected", "refund_invoice"],
)
def test_every_template_renders(template):
    html = render_email(template, {"customer_name": "Bob", "order_code": "ORD-1001", "items": [], "item_refunds": {}})
    assert "ORD-1001" in html


def test_celery_notifier_hands_rendered_html_to_dispatcher():
    dispatcher = StubDispatcher()
    notifier = CeleryEmailNotifier(dispatcher)
    notifier.send("bob@example.com", "Rejected", "cancellation_rejected", {"customer_name": "Bob", "order_code": "ORD-7"})

    [(to_address, subject, html)] = dispatcher.calls
    assert to_address == "bob@example.com"
    assert subject == "Rejected"
    assert "ORD-7" in html


def test_celery_notifier_wraps_broker_errors():
    notifier = CeleryEmailNotifier(StubDispatcher(error=ConnectionError("redis down")))
    with pytest.raises(NotificationError):
        notifier.send("bob@example.com", "Rejected", "cancellation_rejected", {"order_code": "ORD-7"})


def test_celery_notifier_reports_missing_template():
    notifier = CeleryEmailNotifier(StubDispatcher())
    with pytest.raises(NotificationError):
        notifier.send("bob@example.com", "Hello", "no_such_template", {})


def test_notification_service_swallows_notifier_failure():
    class Broken:
        def send(self, *args, **kwargs):
            raise NotificationError("queue unavailable")

    user = User(id=1, email="bob@example.com", full_name="Bob")
    service = NotificationService(Broken())
    assert service.cancellation_rejected(user, _order(), _rejected_request()) is False


def test_notification_service_skips_without_user_or_notifier():
    user = User(id=1, email="bob@example.com", full_name="Bob")
    assert NotificationService(None).cancellation_rejected(user, _order(), _rejected_request()) is False
    assert NotificationService(StubNotifier()).cancellation_rejected(None, _order(), _rejected_request()) is False


def test_notification_service_adds_customer_name():
    notifier = StubNotifier()
    user = User(id=1, email="bob@example.com", full_name="Bob Smith")
    assert NotificationService(notifier).cancellation_rejected(user, _order(), _rejected_request()) is True
    [message] = notifier.messages
    assert message["to"] == "bob@example.com"
    assert message["context"]["customer_name"] == "Bob Smith"
    assert message["context"]["order_status"] == "ORDER_PLACED"



def test_log_processor_masks_customer_addresses():
    event = mask_customer_emails(None, "info", {"event": "email_sent", "to": ["alice@example.com"], "subject": "Hi"})
    assert event["to"] == ["al***@example.com"]
    assert event["subject"] == "Hi"
