"""
Stripe webhook payload verification and parsing.
"""

import hashlib
import hmac
import json
import time
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from leadcatcher.shared.exceptions import ValidationError


class StripeEventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: dict[str, Any] = Field(default_factory=dict)


class StripeEvent(BaseModel):
    """The subset of a Stripe event envelope the service reads."""

    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    created: int
    data: StripeEventData = Field(default_factory=StripeEventData)

    @property
    def created_at(self) -> datetime:
        return datetime.fromtimestamp(self.created, tz=timezone.utc)

    @property
    def obj(self) -> dict[str, Any]:
        return self.data.object


class StripeSignatureError(ValidationError):
    """Stripe-Signature header missing, malformed, stale or wrong."""


def _parse_header(header: str) -> tuple[int, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as e:
                raise StripeSignatureError("Malformed signature timestamp") from e
        elif key == "v1" and value:
            signatures.append(value)
    if timestamp is None or not signatures:
        raise StripeSignatureError("Malformed Stripe-Signature header")
    return timestamp, signatures


def compute_stripe_signature(secret: str, timestamp: int, payload: bytes) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def construct_event(
    payload: bytes,
    header: str,
    secret: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> StripeEvent:
    """Verify ``payload`` against its ``Stripe-Signature`` header and parse it.

    Raises:
        StripeSignatureError: On any verification failure.
    """
    timestamp, signatures = _parse_header(header)
    expected = compute_stripe_signature(secret, timestamp, payload)
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise StripeSignatureError("No signatures found matching the expected signature for payload")

    current = time.time() if now is None else now
    if tolerance_seconds and abs(current - timestamp) > tolerance_seconds:
        raise StripeSignatureError("Timestamp outside the tolerance zone")

    try:
        return StripeEvent.model_validate(json.loads(payload))
    except ValueError as e:
        raise StripeSignatureError("Invalid event payload") from e
