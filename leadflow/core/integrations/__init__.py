"""
Integration clients for external services.

This module provides clients for:
- Hosted functions: call placement, SMS, AI SMS (FunctionsClient)
- Webhooks configured on workflow steps (WebhookSender)
"""

from .functions_client import FunctionsClient
from .webhooks import WebhookSender

__all__ = ["FunctionsClient", "WebhookSender"]
