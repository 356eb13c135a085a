"""
In-memory messaging provider for local runs and tests.
"""

from collections.abc import Mapping

from leadcatcher.telephony.interface import (
    MessageSendError,
    MessagingProvider,
    OutboundMessage,
    SentMessage,
)


class MockMessagingProvider(MessagingProvider):
    """Records sends instead of delivering them."""

    def __init__(self, accept_signatures: bool = True) -> None:
        self.sent: list[OutboundMessage] = []
        self._accept_signatures = accept_signatures
        self._fail_for: set[str] | None = None
        self._counter = 0

    def configure_failure(self, recipients: set[str] | None = None) -> None:
        """Fail every send, or only sends to ``recipients``."""
        self._fail_for = recipients if recipients is not None else {"*"}

    def reset(self) -> None:
        self.sent.clear()
        self._fail_for = None

    async def send_message(self, message: OutboundMessage) -> SentMessage:
        if self._fail_for is not None and ("*" in self._fail_for or message.to in self._fail_for):
            raise MessageSendError("Mock send failure", error_code="MOCK_FAILURE")
        self._counter += 1
        self.sent.append(message)
        return SentMessage(provider_message_id=f"SM_mock_{self._counter:06d}", status="queued")

    def sent_to(self, number: str) -> list[OutboundMessage]:
        return [m for m in self.sent if m.to == number]

    def validate_webhook_signature(
        self,
        url: str,
        params: Mapping[str, str],
        signature: str,
    ) -> bool:
        return self._accept_signatures
