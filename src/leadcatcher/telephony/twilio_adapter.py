"""
Twilio messaging provider adapter.

Talks to the Twilio REST API directly over httpx; the async entrypoint runs
the blocking client in a worker thread.
"""

import hashlib
import hmac
from base64 import b64encode
from collections.abc import Mapping
from typing import Any

import anyio
import httpx

from leadcatcher.shared.logging import get_logger
from leadcatcher.telephony.config import TelephonyConfig, get_telephony_config
from leadcatcher.telephony.interface import (
    MessageSendError,
    MessagingProvider,
    OutboundMessage,
    SentMessage,
)

logger = get_logger(__name__)


def compute_twilio_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    """Twilio request signature: base64(HMAC-SHA1(token, url + sorted key/values))."""
    data = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), data.encode("utf-8"), hashlib.sha1).digest()
    return b64encode(digest).decode("utf-8")


def _json_body(response: httpx.Response) -> dict[str, Any] | None:
    """Decoded JSON object, or None for an empty or non-JSON body."""
    if not response.content:
        return None
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class TwilioAdapter(MessagingProvider):
    """Twilio SMS adapter."""

    def __init__(
        self,
        config: TelephonyConfig | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._config = config or get_telephony_config()
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(
                timeout=httpx.Timeout(self._config.request_timeout_seconds)
            )
        return self._http_client

    def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def _get_auth(self) -> tuple[str, str]:
        return (self._config.twilio_account_sid, self._config.twilio_auth_token)

    def _get_api_url(self, endpoint: str) -> str:
        account_sid = self._config.twilio_account_sid
        return f"https://api.twilio.com/2010-04-01/Accounts/{account_sid}{endpoint}"

    async def send_message(self, message: OutboundMessage) -> SentMessage:
        return await anyio.to_thread.run_sync(self.send_message_sync, message)

    def send_message_sync(self, message: OutboundMessage) -> SentMessage:
        """Send an SMS via Twilio (sync)."""
        client = self._get_client()
        payload = {"To": message.to, "From": message.from_number, "Body": message.body}

        try:
            response = client.post(
                self._get_api_url("/Messages.json"),
                data=payload,
                auth=self._get_auth(),
            )
        except httpx.HTTPError as e:
            logger.exception("HTTP error during Twilio send", extra={"to": message.to})
            raise MessageSendError(
                message=f"HTTP error: {e!s}",
                error_code="HTTP_ERROR",
            ) from e

        if response.status_code >= 400:
            error_data = _json_body(response) or {}
            logger.error(
                "Twilio send failed",
                extra={
                    "status_code": response.status_code,
                    "error": error_data,
                    "to": message.to,
                },
            )
            raise MessageSendError(
                message=error_data.get("message", "Message send failed"),
                error_code=str(error_data.get("code", response.status_code)),
                provider_response=error_data,
            )

        data = _json_body(response)
        if not data or not data.get("sid"):
            logger.error(
                "Twilio response missing message sid",
                extra={"status_code": response.status_code, "to": message.to},
            )
            raise MessageSendError(
                message="Unexpected response from Twilio",
                error_code="INVALID_RESPONSE",
                provider_response=data or {},
            )

        logger.info("Twilio message accepted", extra={"to": message.to, "sid": data["sid"]})
        return SentMessage(
            provider_message_id=data["sid"],
            status=data.get("status", "queued"),
            raw_response=data,
        )

    def validate_webhook_signature(
        self,
        url: str,
        params: Mapping[str, str],
        signature: str,
    ) -> bool:
        if not self._config.twilio_auth_token:
            logger.error("No Twilio auth token configured; rejecting signed callback")
            return False
        if not signature:
            return False

        expected = compute_twilio_signature(self._config.twilio_auth_token, url, params)
        return hmac.compare_digest(expected, signature)
