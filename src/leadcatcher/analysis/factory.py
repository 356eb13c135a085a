"""
Factory for the intent classifier.
"""

from leadcatcher.analysis.models import IntentClassifier
from leadcatcher.analysis.openai_adapter import OpenAIIntentClassifier
from leadcatcher.config import get_settings


def get_intent_classifier() -> IntentClassifier:
    settings = get_settings()
    return OpenAIIntentClassifier(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout_seconds=settings.openai_timeout_seconds,
    )
