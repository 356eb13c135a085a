"""
Outbound SMS helper shared by the webhook handlers and the grace poll.

Send failures are logged and reported as ``False``; they never abort the
surrounding handler.
"""

from leadcatcher.shared.logging import get_logger
from leadcatcher.shared.phone import mask_phone
from leadcatcher.telephony.interface import MessagingProvider, MessagingProviderError, OutboundMessage

logger = get_logger(__name__)


async def send_sms(
    provider: MessagingProvider,
    to: str,
    from_number: str,
    body: str,
    purpose: str,
) -> bool:
    """Send one SMS.

    Args:
        provider: Messaging provider.
        to: Recipient, E.164.
        from_number: Business number the SMS is sent from.
        body: Message text.
        purpose: Short label for logs ("acknowledgment", "owner_relay", ...).

    Returns:
        True if the provider accepted the message.
    """
    try:
        sent = await provider.send_message(OutboundMessage(to=to, from_number=from_number, body=body))
    except MessagingProviderError as exc:
        logger.error(
            "SMS send failed",
            extra={
                "purpose": purpose,
                "to": mask_phone(to),
                "error_code": exc.error_code,
                "error": exc.message,
            },
        )
        return False

    logger.info(
        "SMS sent",
        extra={"purpose": purpose, "to": mask_phone(to), "provider_message_id": sent.provider_message_id},
    )
    return True
