"""
Messaging provider interface definition.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class OutboundMessage:
    """An SMS to send."""

    to: str
    from_number: str
    body: str


@dataclass(frozen=True)
class SentMessage:
    """Provider acknowledgment of an accepted SMS."""

    provider_message_id: str
    status: str
    raw_response: dict[str, Any] = field(default_factory=dict)


class MessagingProvider(ABC):
    """Abstract SMS provider."""

    @abstractmethod
    async def send_message(self, message: OutboundMessage) -> SentMessage:
        """Send an SMS.

        Raises:
            MessageSendError: If the provider rejected the message.
        """

    @abstractmethod
    def validate_webhook_signature(
        self,
        url: str,
        params: Mapping[str, str],
        signature: str,
    ) -> bool:
        """Check a callback's signature against its full URL and form params."""


class MessagingProviderError(Exception):
    """Base exception for messaging provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.provider_response = provider_response or {}


class MessageSendError(MessagingProviderError):
    """The provider did not accept an outbound SMS."""
