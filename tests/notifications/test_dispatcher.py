from types import SimpleNamespace

from infrastructure.tasks.config import MAIL_QUEUE
from infrastructure.tasks.utils import SEND_EMAIL_TASK, TaskDispatcher


class FakeCelery:
    def __init__(self):
        self.sent = []

    def send_task(self, name, args=None, kwargs=None, **options):
        self.sent.append({"name": name, "kwargs": kwargs, **options})
        return SimpleNamespace(id="task-1")


def test_send_email_routes_to_mail_queue():
    app = FakeCelery()
    task_id = TaskDispatcher(app).send_email("bob@example.com", "Refund completed", "<p>done</p>")

    assert task_id == "task-1"
    [sent] = app.sent
    assert sent["name"] == SEND_EMAIL_TASK
    assert sent["queue"] == MAIL_QUEUE
    assert sent["kwargs"] == {"to_address": "bob@example.com", "subject": "Refund completed", "html_body": "<p>done</p>"}
