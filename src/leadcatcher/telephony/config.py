"""
Messaging provider configuration.
"""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderType(str, Enum):
    """Supported messaging provider types."""

    TWILIO = "twilio"
    MOCK = "mock"


class TelephonyConfig(BaseSettings):
    """Messaging provider configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="TELEPHONY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider_type: ProviderType = Field(default=ProviderType.TWILIO)

    twilio_account_sid: str = Field(default="")
    twilio_auth_token: str = Field(default="")

    validate_signatures: bool = Field(default=True)
    # Base URL Twilio signed the callback against, when it differs from the
    # URL the request reached us on (TLS offload, tunnels).
    webhook_base_url: str = Field(default="")

    request_timeout_seconds: float = Field(default=15.0, gt=0)

    def get_webhook_url(self, path: str) -> str:
        base = self.webhook_base_url.rstrip("/")
        return f"{base}{path}"


def get_telephony_config() -> TelephonyConfig:
    return TelephonyConfig()
