"""
Step Catalog for LeadFlow Workflows

This module defines the typed configuration of every workflow step type:
- CallStepConfig: Place an AI call to the lead
- SmsStepConfig: Send a templated SMS
- AiSmsStepConfig: Ask the AI SMS processor to write and send a message
- WaitStepConfig: Delay the next step
- WebhookStepConfig: POST lead data to an external URL
- TagStepConfig: Update the lead's status and tags
- ConditionStepConfig / EndStepConfig: No configuration

Configs are immutable (frozen) Pydantic models. Extra keys in the stored
step_config blob are kept, so definitions written by other tools survive a
round trip.
"""

import re
from pydantic import BaseModel, Field, ValidationError, field_validator
from typing import Any, ClassVar, Dict, List, Literal, Optional

from .exceptions import StepConfigError


TIME_OF_DAY_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

DEFAULT_AI_PROMPT = "Send a friendly follow-up message"

# Alternate names accepted in stored step_type values
STEP_TYPE_ALIASES = {
    "ai_auto_reply": "ai_sms",
    "update_status": "tag",
    "branch": "condition",
    "stop": "end",
}


def _blank_to_none(value: Any) -> Any:
    # Workflow builders store cleared inputs as empty strings
    if isinstance(value, str) and not value.strip():
        return None
    return value


class StepConfig(BaseModel):
    """
    Base class for all step configurations.

    Subclasses set step_type to the canonical type name they configure.
    """

    step_type: ClassVar[str] = ""

    class Config:
        frozen = True  # Immutable
        extra = "allow"  # Preserve unknown keys


class CallStepConfig(StepConfig):
    """
    Places an outbound AI call.

    Example:
        {"agent_id": "agent_123", "skip_if_contacted": true}
    """

    step_type: ClassVar[str] = "call"

    agent_id: Optional[str] = Field(None, description="AI agent; falls back to the campaign agent")
    skip_if_contacted: bool = Field(False, description="Skip when a recent call already reached the lead")
    max_attempts: int = Field(1, ge=1, description="Attempts the dialer may make")

    @field_validator("agent_id", mode="before")
    @classmethod
    def normalize_agent_id(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        if isinstance(v, int):
            return str(v)
        return v


class SmsStepConfig(StepConfig):
    """
    Sends a templated SMS.

    The message may be stored under sms_content, content or message
    (checked in that order).

    Example:
        {"sms_content": "Hi {{first_name}}, are you still interested?"}
    """

    step_type: ClassVar[str] = "sms"

    sms_content: Optional[str] = None
    content: Optional[str] = None
    message: Optional[str] = None
    from_number: Optional[str] = Field(None, description="Sender; falls back to campaign pool, then user numbers")

    @field_validator("sms_content", "content", "message", "from_number", mode="before")
    @classmethod
    def blank_is_missing(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @property
    def body(self) -> Optional[str]:
        """Message template, or None when no content is configured"""
        return self.sms_content or self.content or self.message


class AiSmsStepConfig(StepConfig):
    """
    Generates and sends an SMS through the AI SMS processor.
    """

    step_type: ClassVar[str] = "ai_sms"

    ai_prompt: Optional[str] = None
    from_number: Optional[str] = None

    @field_validator("ai_prompt", "from_number", mode="before")
    @classmethod
    def blank_is_missing(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @property
    def prompt(self) -> str:
        return self.ai_prompt or DEFAULT_AI_PROMPT


class WaitStepConfig(StepConfig):
    """
    Delays the next step.

    Delays add up; time_of_day snaps the wake time to a wall-clock time (UTC).

    Example:
        {"delay_days": 1, "time_of_day": "09:00"}
    """

    step_type: ClassVar[str] = "wait"

    delay_minutes: Optional[float] = Field(None, ge=0)
    delay_hours: Optional[float] = Field(None, ge=0)
    delay_days: Optional[float] = Field(None, ge=0)
    time_of_day: Optional[str] = Field(None, description="HH:MM, 00:00-23:59")

    @field_validator("delay_minutes", "delay_hours", "delay_days", mode="before")
    @classmethod
    def blank_delay_is_missing(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("time_of_day", mode="before")
    @classmethod
    def validate_time_of_day(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        if v is None:
            return None
        if not isinstance(v, str) or not TIME_OF_DAY_PATTERN.match(v.strip()):
            raise ValueError(f"time_of_day must be HH:MM (00:00-23:59), got {v!r}")
        return v.strip()

    @property
    def has_delay(self) -> bool:
        """True when any delay or a time_of_day is configured (zero counts)"""
        return any(
            value is not None
            for value in (self.delay_minutes, self.delay_hours, self.delay_days, self.time_of_day)
        )

    @property
    def total_minutes(self) -> float:
        return (
            (self.delay_minutes or 0)
            + (self.delay_hours or 0) * 60
            + (self.delay_days or 0) * 24 * 60
        )

    @property
    def time_of_day_parts(self) -> Optional[tuple]:
        """(hour, minute) of time_of_day, or None"""
        if not self.time_of_day:
            return None
        hours, minutes = self.time_of_day.split(":")
        return int(hours), int(minutes)


class WebhookStepConfig(StepConfig):
    """
    Sends lead data to an external URL.

    Example:
        {"webhook_url": "https://hooks.example.com/lead", "method": "POST",
         "headers": {"X-Token": "abc"}, "custom_data": {"source": "workflow"}}
    """

    step_type: ClassVar[str] = "webhook"

    webhook_url: Optional[str] = None
    url: Optional[str] = None
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    custom_data: Dict[str, Any] = Field(default_factory=dict)
    timeout_seconds: int = Field(10, ge=1, le=120)

    @field_validator("webhook_url", "url", mode="before")
    @classmethod
    def blank_is_missing(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v: Any) -> Any:
        if v is None:
            return "POST"
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("headers", "custom_data", mode="before")
    @classmethod
    def null_is_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def target_url(self) -> Optional[str]:
        return self.webhook_url or self.url


class TagStepConfig(StepConfig):
    """
    Sets the lead status and/or merges tags into the lead.

    Example:
        {"new_status": "nurturing", "tags": ["workflow-touched"]}
    """

    step_type: ClassVar[str] = "tag"

    new_status: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("new_status", mode="before")
    @classmethod
    def blank_is_missing(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("tags", mode="before")
    @classmethod
    def null_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class ConditionStepConfig(StepConfig):
    """Placeholder branch step; evaluation is a no-op"""

    step_type: ClassVar[str] = "condition"


class EndStepConfig(StepConfig):
    """Completes the enrollment wherever it appears"""

    step_type: ClassVar[str] = "end"


# Mapping: canonical type string → config class
STEP_CONFIG_CLASSES = {
    cls.step_type: cls
    for cls in (
        CallStepConfig,
        SmsStepConfig,
        AiSmsStepConfig,
        WaitStepConfig,
        WebhookStepConfig,
        TagStepConfig,
        ConditionStepConfig,
        EndStepConfig,
    )
}


def canonical_step_type(step_type: Optional[str]) -> Optional[str]:
    """
    Resolve a stored step_type to its canonical name.

    Returns None for unknown types.

    Example:
        >>> canonical_step_type("stop")
        'end'
        >>> canonical_step_type("email") is None
        True
    """
    if not step_type:
        return None
    step_type = STEP_TYPE_ALIASES.get(step_type, step_type)
    return step_type if step_type in STEP_CONFIG_CLASSES else None


def parse_step_config(step_type: Optional[str], config: Optional[Dict[str, Any]]) -> StepConfig:
    """
    Factory function: Creates the typed config for a step.

    Used when definitions are created through the API and again by the
    engine right before a step runs.

    Args:
        step_type: Stored step type (aliases accepted)
        config: step_config blob (None is treated as {})

    Returns:
        Config instance of the appropriate type

    Raises:
        StepConfigError: If the step type is unknown or validation fails

    Example:
        >>> cfg = parse_step_config("wait", {"delay_minutes": 30})
        >>> isinstance(cfg, WaitStepConfig)
        True
    """
    canonical = canonical_step_type(step_type)
    if canonical is None:
        raise StepConfigError(
            f"Unknown step type: '{step_type}'. "
            f"Valid types: {sorted(STEP_CONFIG_CLASSES) + sorted(STEP_TYPE_ALIASES)}",
            step_type=step_type
        )

    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise StepConfigError(
            f"Invalid configuration for {canonical} step: expected an object",
            step_type=canonical
        )

    config_class = STEP_CONFIG_CLASSES[canonical]
    data = {key: value for key, value in config.items() if key != "step_type"}
    try:
        return config_class.model_validate(data)
    except ValidationError as e:
        raise StepConfigError(f"Invalid configuration for {canonical} step: {e}", step_type=canonical)
