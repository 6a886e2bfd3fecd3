"""
Template Rendering for outbound messages

Replaces {{field}} placeholders with lead values. Placeholder names are
case-insensitive and may be padded with spaces ({{ First_Name }}).

Known placeholders:
    first_name, last_name, full_name, phone, email, company, city, state

A placeholder outside that list is a TemplateError instead of being sent
to the lead verbatim.
"""

import re
from typing import Any, Dict, List

from .exceptions import TemplateError

# Any text between double braces; names outside KNOWN_PLACEHOLDERS are errors
PLACEHOLDER_PATTERN = re.compile(r"\{\{(.*?)\}\}")

KNOWN_PLACEHOLDERS = (
    "first_name",
    "last_name",
    "full_name",
    "phone",
    "email",
    "company",
    "city",
    "state",
)


def _lead_values(lead: Any) -> Dict[str, str]:
    first_name = getattr(lead, "first_name", None) or ""
    last_name = getattr(lead, "last_name", None) or ""

    return {
        "first_name": first_name,
        "last_name": last_name,
        "full_name": f"{first_name} {last_name}".strip() or "there",
        "phone": getattr(lead, "phone_number", None) or "",
        "email": getattr(lead, "email", None) or "",
        "company": getattr(lead, "company", None) or "",
        "city": getattr(lead, "city", None) or "",
        "state": getattr(lead, "state", None) or "",
    }


def find_unknown_placeholders(template: str) -> List[str]:
    """
    List placeholders in template that are not lead fields.

    Returns the names as written (deduplicated, in order of appearance).

    Example:
        >>> find_unknown_placeholders("Hi {{first_name}}, code {{promo}}")
        ['promo']
    """
    if not template:
        return []

    unknown: List[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(template):
        name = match.group(1).strip()
        if name.lower() not in KNOWN_PLACEHOLDERS and name not in unknown:
            unknown.append(name)
    return unknown


def render_template(template: str, lead: Any) -> str:
    """
    Render a message template for a lead.

    Args:
        template: Text with {{field}} placeholders
        lead: Object exposing first_name, last_name, phone_number, email,
            company, city and state (missing values render as "")

    Returns:
        Rendered text

    Raises:
        TemplateError: If the template contains unknown placeholders
    """
    if not template:
        return ""

    unknown = find_unknown_placeholders(template)
    if unknown:
        names = ", ".join("{{" + name + "}}" for name in unknown)
        raise TemplateError(f"Unknown template variable(s): {names}", placeholders=unknown)

    values = _lead_values(lead)
    return PLACEHOLDER_PATTERN.sub(lambda match: values[match.group(1).strip().lower()], template)
