"""
Scheduling helpers: clock, wake-time calculation, phone normalization.

All datetimes are naive UTC.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

from .exceptions import StepConfigError
from .steps import StepConfig, WaitStepConfig, canonical_step_type, parse_step_config

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


def utcnow() -> datetime:
    """Current time as a naive UTC datetime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_phone(phone: Optional[str]) -> str:
    """
    Digits only, last 10 digits.

    Example:
        >>> normalize_phone("+1 (555) 123-4567")
        '5551234567'
    """
    if not phone:
        return ""
    return _NON_DIGITS.sub("", phone)[-10:]


def calculate_next_action_time(
    step_type: Optional[str],
    config: Union[StepConfig, Dict[str, Any], None],
    now: Optional[datetime] = None
) -> datetime:
    """
    When a step should fire, measured from now.

    wait steps: now + delay_minutes + delay_hours + delay_days. With a
    time_of_day, the result snaps to that time on the delay-based date and
    moves one day later if the snapped time falls before the delay-based
    time or is not after now.

    Every other step type fires immediately (returns now).

    Args:
        step_type: Stored step type (aliases accepted)
        config: Typed config or raw step_config blob
        now: Reference time (defaults to utcnow())
    """
    now = now or utcnow()

    if canonical_step_type(step_type) != "wait":
        return now

    if isinstance(config, WaitStepConfig):
        wait_config = config
    else:
        try:
            wait_config = parse_step_config("wait", config if isinstance(config, dict) else None)
        except StepConfigError as e:
            logger.warning(f"Invalid wait configuration, firing immediately: {e.message}")
            return now

    delay_based = now + timedelta(minutes=wait_config.total_minutes)

    time_of_day = wait_config.time_of_day_parts
    if time_of_day is None:
        return delay_based

    hour, minute = time_of_day
    next_time = delay_based.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if next_time < delay_based or next_time <= now:
        next_time += timedelta(days=1)

    return next_time
