from .base_task import BaseTask
from .dispatcher import SEND_EMAIL_TASK, TaskDispatcher

__all__ = ["BaseTask", "SEND_EMAIL_TASK", "TaskDispatcher"]
