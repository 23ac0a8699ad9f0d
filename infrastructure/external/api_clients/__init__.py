"""
Outbound REST API clients
"""
from .base import BaseAPIClient, APIResponse, APIError
from .mail_client import MailApiClient

__all__ = [
    "BaseAPIClient",
    "APIResponse",
    "APIError",
    "MailApiClient",
]
