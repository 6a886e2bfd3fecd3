"""
Functions Client for LeadFlow

HTTP client for the hosted functions the engine delegates side effects to:
- outbound-calling: places the AI call
- sms-messaging: sends a plain SMS
- ai-sms-processor: writes and sends an AI SMS

Every function is invoked with POST {FUNCTIONS_BASE_URL}/{name}, a bearer
SERVICE_ROLE_KEY and a JSON body. Failures are not retried here; each
function sits behind its own circuit breaker.

Usage:
    client = FunctionsClient()
    data = client.place_call(lead_id=12, campaign_id=3, user_id="u-1", workflow_step_id=40)
"""

import logging
import os
from typing import Any, Dict, Optional

import requests

from ..circuit_breaker import get_circuit_breaker
from ..exceptions import (
    CollaboratorError,
    ConfigurationError,
)

logger = logging.getLogger(__name__)


class FunctionsClient:
    """
    Client for the hosted collaborator functions.

    Environment Variables:
        FUNCTIONS_BASE_URL: Base URL of the functions host (required)
        SERVICE_ROLE_KEY: Bearer token sent with every call
        FUNCTIONS_TIMEOUT_SECONDS: Request timeout (default: 30)
        CALL_FUNCTION_NAME / SMS_FUNCTION_NAME / AI_SMS_FUNCTION_NAME: Function names
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        service_key: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize functions client.

        Args:
            base_url: Functions host (default: from FUNCTIONS_BASE_URL env var)
            service_key: Bearer token (default: from SERVICE_ROLE_KEY env var)
            timeout: Request timeout in seconds (default: FUNCTIONS_TIMEOUT_SECONDS or 30)
            session: Optional requests session (tests inject a mock)
        """
        self.base_url = (base_url or os.getenv("FUNCTIONS_BASE_URL") or "").rstrip("/")
        self.service_key = service_key if service_key is not None else os.getenv("SERVICE_ROLE_KEY", "")
        self.timeout = timeout or int(os.getenv("FUNCTIONS_TIMEOUT_SECONDS", "30"))

        self.call_function = os.getenv("CALL_FUNCTION_NAME", "outbound-calling")
        self.sms_function = os.getenv("SMS_FUNCTION_NAME", "sms-messaging")
        self.ai_sms_function = os.getenv("AI_SMS_FUNCTION_NAME", "ai-sms-processor")

        self.session = session or requests.Session()

        logger.info(f"FunctionsClient initialized with base_url: {self.base_url or '<unset>'}")

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    def invoke(self, name: str, body: Dict[str, Any]) -> Any:
        """
        Invoke a hosted function by name.

        Args:
            name: Function name (e.g. "sms-messaging")
            body: JSON body

        Returns:
            Decoded JSON response (None for an empty body)

        Raises:
            ConfigurationError: If FUNCTIONS_BASE_URL is not set
            CollaboratorUnavailableError: If the function's circuit breaker is open
            CollaboratorError: On transport errors or non-2xx responses
        """
        if not self.base_url:
            raise ConfigurationError(
                "FUNCTIONS_BASE_URL environment variable not set",
                setting="FUNCTIONS_BASE_URL"
            )

        headers = {"Content-Type": "application/json"}
        if self.service_key:
            headers["Authorization"] = f"Bearer {self.service_key}"

        with get_circuit_breaker(name).guard():
            try:
                response = self.session.post(
                    f"{self.base_url}/{name}",
                    json=body,
                    headers=headers,
                    timeout=self.timeout
                )
            except requests.exceptions.Timeout:
                logger.error(f"Function {name} timeout after {self.timeout}s")
                raise CollaboratorError(f"{name} timed out after {self.timeout}s", service=name)
            except requests.exceptions.RequestException as e:
                logger.error(f"Function {name} request failed: {e}")
                raise CollaboratorError(f"{name} request failed: {e}", service=name)

            if not 200 <= response.status_code < 300:
                message = _error_message(response) or f"{name} returned {response.status_code}"
                logger.error(f"Function {name} failed with HTTP {response.status_code}: {message}")
                raise CollaboratorError(message, service=name, status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def place_call(
        self,
        lead_id: int,
        campaign_id: Optional[int],
        user_id: Optional[str],
        workflow_step_id: Optional[int],
        agent_id: Optional[str] = None
    ) -> Any:
        """Ask the calling service to dial a lead"""
        body = {
            "leadId": lead_id,
            "campaignId": campaign_id,
            "userId": user_id,
            "workflowStepId": workflow_step_id,
        }
        if agent_id:
            body["agentId"] = agent_id
        return self.invoke(self.call_function, body)

    def send_sms(
        self,
        to: str,
        from_number: str,
        body: str,
        lead_id: int,
        workflow_step_id: Optional[int]
    ) -> Any:
        """Send a plain SMS"""
        return self.invoke(self.sms_function, {
            "action": "send_sms",
            "to": to,
            "from": from_number,
            "body": body,
            "lead_id": lead_id,
            "workflow_step_id": workflow_step_id,
        })

    def generate_and_send_ai_sms(
        self,
        lead_id: int,
        user_id: Optional[str],
        from_number: str,
        to_number: str,
        prompt: str,
        context: Dict[str, Any]
    ) -> Any:
        """Let the AI SMS processor write and send a message"""
        return self.invoke(self.ai_sms_function, {
            "action": "generate_and_send",
            "leadId": lead_id,
            "userId": user_id,
            "fromNumber": from_number,
            "toNumber": to_number,
            "prompt": prompt,
            "context": context,
        })


def _error_message(response: requests.Response) -> Optional[str]:
    # Functions report failures as {"error": "..."} or {"message": "..."}
    try:
        data = response.json()
    except ValueError:
        return response.text or None
    if isinstance(data, dict):
        error = data.get("error") or data.get("message")
        if isinstance(error, dict):
            error = error.get("message")
        if error:
            return str(error)
    return None
