"""
Webhook Sender

Delivers workflow webhook payloads to the URLs configured on webhook steps.
One attempt per step; a non-2xx status is a failure.
"""

import logging
from typing import Any, Dict, Optional

import requests

from ..exceptions import CollaboratorError

logger = logging.getLogger(__name__)


class WebhookSender:
    """Sends JSON payloads to arbitrary webhook URLs"""

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def send(
        self,
        url: str,
        payload: Dict[str, Any],
        method: str = "POST",
        headers: Optional[Dict[str, str]] = None,
        timeout: int = 10
    ) -> int:
        """
        Send payload to url.

        Configured headers override the default JSON content type.

        Returns:
            HTTP status code of the response

        Raises:
            CollaboratorError: On transport errors or non-2xx responses
        """
        request_headers = {"Content-Type": "application/json", **(headers or {})}

        try:
            response = self.session.request(
                method,
                url,
                json=payload,
                headers=request_headers,
                timeout=timeout
            )
        except requests.exceptions.Timeout:
            logger.error(f"Webhook {url} timeout after {timeout}s")
            raise CollaboratorError(f"Webhook timed out after {timeout}s", service="webhook")
        except requests.exceptions.RequestException as e:
            logger.error(f"Webhook {url} request failed: {e}")
            raise CollaboratorError(f"Webhook request failed: {e}", service="webhook")

        if not 200 <= response.status_code < 300:
            raise CollaboratorError(
                f"Webhook returned {response.status_code}",
                service="webhook",
                status_code=response.status_code
            )

        return response.status_code
