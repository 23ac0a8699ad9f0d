# importing the modules registers their tasks with the app
from . import email  # noqa: F401

__all__ = ["email"]
