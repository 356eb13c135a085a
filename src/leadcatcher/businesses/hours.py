"""
Operating-hours evaluation and acknowledgment templates.

``is_business_hours`` takes the evaluation instant as an argument so it stays
pure; every failure branch answers "open".
"""

import re
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from leadcatcher.businesses.models import BusinessProfile
from leadcatcher.shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_OPEN_TEMPLATE = (
    "Hi! We missed your call — we were helping another customer. "
    "How can we help you? Would you like us to give you a call back in a few?"
)
DEFAULT_CLOSED_TEMPLATE = (
    "Hi! Our store is currently closed. How can we help you? "
    "Would you like us to schedule an appointment for when we open?"
)
FALLBACK_BUSINESS_NAME = "our business"

_PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")


def is_business_hours(hours: dict[str, Any] | None, timezone_name: str, at: datetime) -> bool:
    """Decide whether the business is open at ``at``.

    Args:
        hours: Weekly schedule keyed by lowercase weekday name, each entry
            ``{"open": "HH:MM", "close": "HH:MM", "isOpen": bool}``.
        timezone_name: IANA timezone of the business.
        at: Timezone-aware evaluation instant.

    Returns:
        True when open, or when the schedule cannot be evaluated.
    """
    if not hours:
        return True

    try:
        local = at.astimezone(ZoneInfo(timezone_name))
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        logger.warning("Unknown business timezone; treating as open", extra={"timezone": timezone_name})
        return True

    day = hours.get(local.strftime("%A").lower())
    if not isinstance(day, dict) or not day.get("isOpen"):
        return False

    opens, closes = day.get("open"), day.get("close")
    if not isinstance(opens, str) or not isinstance(closes, str):
        logger.warning("Malformed business hours; treating as open", extra={"day": local.strftime("%A")})
        return True

    current = local.strftime("%H:%M")
    return opens <= current <= closes


def render_template(template: str, variables: dict[str, str]) -> str:
    """Substitute ``{{name}}`` placeholders; unknown names render empty."""
    return _PLACEHOLDER_RE.sub(lambda m: variables.get(m.group(1)) or "", template)


def build_acknowledgment(business: BusinessProfile, is_open: bool) -> str:
    """Pick the open or closed template for ``business`` and fill it in."""
    if is_open:
        template = business.sms_template or DEFAULT_OPEN_TEMPLATE
    else:
        template = business.sms_template_closed or DEFAULT_CLOSED_TEMPLATE
    return render_template(template, {"business_name": business.name or FALLBACK_BUSINESS_NAME})
