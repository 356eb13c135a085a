"""
RepairDesk API response models.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CallLog(BaseModel):
    """One entry of the RepairDesk call log."""

    model_config = ConfigDict(extra="ignore")

    id: int
    customer_id: int | None = None
    customer_name: str | None = None
    phone: str | None = None
    direction: str | None = None
    status: str | None = None
    created_at: datetime | None = None


class CallLogPage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: list[CallLog] = Field(default_factory=list)
    meta: dict[str, int] | None = None


class RepairDeskError(Exception):
    """RepairDesk API call failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
