"""
Minimal Stripe REST client over httpx.
"""

from typing import Any

import httpx

from leadcatcher.shared.logging import get_logger

logger = get_logger(__name__)

STRIPE_API_BASE = "https://api.stripe.com/v1"


class BillingProviderError(Exception):
    """Stripe API call failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StripeClient:
    def __init__(
        self,
        secret_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._secret_key = secret_key
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        url = f"{STRIPE_API_BASE}/subscriptions/{subscription_id}"
        headers = {"Authorization": f"Bearer {self._secret_key}"}
        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                    response = await client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise BillingProviderError(f"Stripe request failed: {e!s}") from e

        if response.status_code >= 400:
            logger.error(
                "Stripe subscription lookup failed",
                extra={"subscription_id": subscription_id, "status_code": response.status_code},
            )
            raise BillingProviderError(
                f"Stripe error {response.status_code}", status_code=response.status_code
            )
        return response.json()
