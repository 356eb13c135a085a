"""
RepairDesk API client.

Base URL: https://{subdomain}.repairdesk.co/api/web/v1, API key passed as the
``api_key`` query parameter.
"""

import re
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from leadcatcher.repairdesk.models import CallLogPage, RepairDeskError
from leadcatcher.shared.logging import get_logger

logger = get_logger(__name__)

SUBDOMAIN_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9.-]*[a-zA-Z0-9]$")
DEFAULT_SUBDOMAIN = "api"


def _iso(value: datetime) -> str:
    return value.isoformat()


class RepairDeskClient:
    """Async client for the RepairDesk call-log endpoints."""

    def __init__(
        self,
        api_key: str,
        subdomain: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        clean = (subdomain or DEFAULT_SUBDOMAIN).strip()
        if not SUBDOMAIN_PATTERN.match(clean):
            raise ValueError(
                f'Invalid RepairDesk subdomain "{clean}". Use only letters, numbers, dots and hyphens.'
            )
        self._api_key = api_key
        self.base_url = f"https://{clean}.repairdesk.co/api/web/v1"
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds

    async def _request(self, endpoint: str, params: dict[str, Any]) -> Any:
        query = {**params, "api_key": self._api_key}
        url = f"{self.base_url}{endpoint}"
        logger.info("RepairDesk API request", extra={"endpoint": endpoint})

        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, params=query)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                    response = await client.get(url, params=query)
        except httpx.HTTPError as e:
            raise RepairDeskError(f"RepairDesk request failed: {e!s}") from e

        if response.status_code >= 400:
            logger.error(
                "RepairDesk API error",
                extra={"endpoint": endpoint, "status_code": response.status_code},
            )
            raise RepairDeskError(
                f"RepairDesk API error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            logger.error("RepairDesk returned a non-JSON body", extra={"endpoint": endpoint})
            raise RepairDeskError("RepairDesk returned a non-JSON response") from e

    async def _call_logs(self, params: dict[str, Any]) -> CallLogPage:
        data = await self._request("/call-logs", params)
        try:
            return CallLogPage.model_validate(data)
        except PydanticValidationError as e:
            raise RepairDeskError("Malformed call-log response") from e

    async def get_missed_calls(self, since: datetime | None = None, page: int = 1) -> CallLogPage:
        """Inbound missed calls, optionally only those after ``since``."""
        params: dict[str, Any] = {"page": page, "status": "missed", "direction": "inbound"}
        if since is not None:
            params["since"] = _iso(since)
        return await self._call_logs(params)

    async def get_outbound_calls_to(self, phone: str, since: datetime) -> CallLogPage:
        """Outbound calls the store placed to ``phone`` after ``since``."""
        return await self._call_logs(
            {"direction": "outbound", "phone": phone, "since": _iso(since)}
        )
