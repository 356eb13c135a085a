"""
Messaging provider factory.

Configuration comes only from TelephonyConfig (OS env + .env).
"""

from functools import lru_cache

from leadcatcher.shared.logging import get_logger
from leadcatcher.telephony.config import ProviderType, get_telephony_config
from leadcatcher.telephony.interface import MessagingProvider
from leadcatcher.telephony.mock_adapter import MockMessagingProvider
from leadcatcher.telephony.twilio_adapter import TwilioAdapter

logger = get_logger(__name__)


def _mask(s: str, keep: int = 6) -> str:
    if not s:
        return ""
    if len(s) <= keep:
        return "*" * len(s)
    return f"{s[:keep]}***"


@lru_cache(maxsize=1)
def get_messaging_provider() -> MessagingProvider:
    """Create and cache the messaging provider."""
    cfg = get_telephony_config()

    logger.info(
        "Messaging provider resolved",
        extra={
            "provider_type": cfg.provider_type.value,
            "twilio_account_sid": _mask(cfg.twilio_account_sid),
            "validate_signatures": cfg.validate_signatures,
        },
    )

    if cfg.provider_type == ProviderType.TWILIO:
        return TwilioAdapter(cfg)
    if cfg.provider_type == ProviderType.MOCK:
        return MockMessagingProvider()

    raise ValueError(f"Unsupported messaging provider_type: {cfg.provider_type}")
