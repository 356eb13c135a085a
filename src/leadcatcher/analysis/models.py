"""
Data models for intent classification.
"""

from abc import ABC, abstractmethod
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Intent(str, Enum):
    BOOKING_REQUEST = "booking_request"
    PRICE_INQUIRY = "price_inquiry"
    GENERAL_INQUIRY = "general_inquiry"
    SPAM = "spam"
    OTHER = "other"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AnalysisContext(str, Enum):
    """Where the analyzed text came from."""

    VOICEMAIL = "voicemail"
    SMS = "sms"


class IntentAnalysis(BaseModel):
    """Classifier output for one caller message."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    intent: Intent = Intent.OTHER
    priority: Priority = Priority.LOW
    summary: str = ""
    suggested_reply: str | None = Field(default=None, alias="suggestedReply")

    @field_validator("intent", mode="before")
    @classmethod
    def _coerce_intent(cls, value: object) -> object:
        if isinstance(value, str) and value in Intent._value2member_map_:
            return value
        return Intent.OTHER

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value: object) -> object:
        if isinstance(value, str) and value in Priority._value2member_map_:
            return value
        return Priority.LOW

    @field_validator("suggested_reply", mode="before")
    @classmethod
    def _blank_reply(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def unavailable(cls, summary: str = "AI analysis unavailable") -> "IntentAnalysis":
        return cls(intent=Intent.OTHER, priority=Priority.LOW, summary=summary)


class IntentClassificationError(Exception):
    """The classification service failed or returned unusable output."""


class IntentClassifier(ABC):
    """text + context -> IntentAnalysis."""

    @abstractmethod
    async def classify(self, text: str, context: AnalysisContext) -> IntentAnalysis:
        """Classify ``text``.

        Raises:
            IntentClassificationError: If the service failed.
        """
