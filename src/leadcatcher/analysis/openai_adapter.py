"""
OpenAI chat-completions intent classifier over httpx.
"""

import json

import httpx

from leadcatcher.analysis.models import (
    AnalysisContext,
    IntentAnalysis,
    IntentClassificationError,
    IntentClassifier,
)
from leadcatcher.analysis.prompts import INTENT_ANALYSIS_SYSTEM_PROMPT, build_user_prompt
from leadcatcher.shared.logging import get_logger

logger = get_logger(__name__)


class OpenAIIntentClassifier(IntentClassifier):
    """Classifies caller text with a JSON-mode chat completion."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout_seconds: float = 20.0,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = "https://api.openai.com/v1",
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client
        self._chat_endpoint = f"{base_url.rstrip('/')}/chat/completions"

    async def classify(self, text: str, context: AnalysisContext) -> IntentAnalysis:
        if not self._api_key:
            logger.warning("OPENAI_API_KEY not set; skipping intent analysis")
            return IntentAnalysis.unavailable()

        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": INTENT_ANALYSIS_SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(text, context.value)},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.2,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        try:
            if self._http_client is not None:
                r = await self._http_client.post(self._chat_endpoint, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                    r = await client.post(self._chat_endpoint, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise IntentClassificationError(f"OpenAI request failed: {e!s}") from e

        if r.status_code != 200:
            raise IntentClassificationError(f"OpenAI error {r.status_code}")

        try:
            content = r.json()["choices"][0]["message"]["content"]
            analysis = IntentAnalysis.model_validate(json.loads(content or "{}"))
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise IntentClassificationError("Unparseable classification response") from e

        logger.info(
            "Intent classified",
            extra={"context": context.value, "intent": analysis.intent.value, "priority": analysis.priority.value},
        )
        return analysis
