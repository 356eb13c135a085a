"""
Periodic trigger for the grace-period poll.
"""

import hmac
from dataclasses import asdict
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from leadcatcher.config import Settings, get_settings
from leadcatcher.polling.service import GracePeriodPoller, PollConfig
from leadcatcher.shared.database import get_db_session
from leadcatcher.shared.exceptions import AuthenticationError
from leadcatcher.shared.logging import get_logger
from leadcatcher.telephony.factory import get_messaging_provider
from leadcatcher.telephony.interface import MessagingProvider

logger = get_logger(__name__)

router = APIRouter(prefix="/api/cron", tags=["polling"])


def require_cron_secret(
    settings: Annotated[Settings, Depends(get_settings)],
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    if not settings.cron_secret:
        logger.error("CRON_SECRET not configured; rejecting poll trigger")
        raise AuthenticationError("Unauthorized")
    expected = f"Bearer {settings.cron_secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        logger.warning("Poll trigger rejected: bad bearer token")
        raise AuthenticationError("Unauthorized")


@router.get("/repairdesk-poll", dependencies=[Depends(require_cron_secret)])
async def repairdesk_poll(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[MessagingProvider, Depends(get_messaging_provider)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> dict[str, Any]:
    poller = GracePeriodPoller(session, provider, PollConfig.from_settings(settings))
    results = await poller.run_once()
    return {
        "success": True,
        "results": [{**asdict(r), "business_id": str(r.business_id)} for r in results],
    }
