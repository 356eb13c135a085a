"""
Twilio callback signature verification dependency.
"""

from typing import Annotated

from fastapi import Depends, Request

from leadcatcher.config import Settings, get_settings
from leadcatcher.shared.exceptions import SignatureVerificationError
from leadcatcher.shared.logging import get_logger
from leadcatcher.telephony.config import TelephonyConfig, get_telephony_config
from leadcatcher.telephony.factory import get_messaging_provider
from leadcatcher.telephony.interface import MessagingProvider

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Twilio-Signature"


def signed_url(request: Request, telephony: TelephonyConfig, settings: Settings) -> str:
    """The URL Twilio computed its signature over.

    Behind a proxy the request URL differs from the public one, so a
    configured public base takes precedence.
    """
    base = (telephony.webhook_base_url or settings.public_base_url).rstrip("/")
    if not base:
        return str(request.url)
    query = request.url.query
    return f"{base}{request.url.path}" + (f"?{query}" if query else "")


async def verified_twilio_form(
    request: Request,
    provider: Annotated[MessagingProvider, Depends(get_messaging_provider)],
    telephony: Annotated[TelephonyConfig, Depends(get_telephony_config)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> dict[str, str]:
    """Parse the callback form and reject it unless the signature matches.

    Raises:
        SignatureVerificationError: Missing or invalid ``X-Twilio-Signature``.
    """
    form = await request.form()
    params = {key: str(value) for key, value in form.items()}

    if not telephony.validate_signatures:
        return params

    signature = request.headers.get(SIGNATURE_HEADER, "")
    if not provider.validate_webhook_signature(signed_url(request, telephony, settings), params, signature):
        logger.warning("Invalid Twilio signature", extra={"path": request.url.path})
        raise SignatureVerificationError()
    return params
