from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any, Protocol

from openai import APITimeoutError, OpenAIError
from pydantic import ValidationError

from msme_insights.config import Settings, get_settings
from msme_insights.core.languages import detect_conversation_languages
from msme_insights.core.normalization import INDUSTRY_CATEGORIES
from msme_insights.errors import ExtractionError
from msme_insights.llm.prompts import build_extraction_prompt
from msme_insights.llm.providers import ProviderPool, parse_json
from msme_insights.types import ExtractionResult, ModelResponse

logger = logging.getLogger(__name__)


class CompletionProvider(Protocol):
    async def complete_text(
        self,
        *,
        model: str,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> ModelResponse: ...


class AIExtractor:
    """Turns a conversation transcript into a validated ExtractionResult.

    A single completion call is made per extraction. Failures surface as
    ExtractionError with one of three reasons; retrying is left to the caller.
    """

    def __init__(self, settings: Settings | None = None, provider: CompletionProvider | None = None):
        self.settings = settings or get_settings()
        self._provider = provider
        self.pool = ProviderPool(self.settings)

    def provider(self) -> CompletionProvider | None:
        if self._provider is not None:
            return self._provider
        return self.pool.openai()

    async def extract(self, history: Sequence[Any]) -> ExtractionResult:
        provider = self.provider()
        if provider is None:
            raise ExtractionError("llm_unavailable", "No completion provider configured")

        prompt = build_extraction_prompt(history, INDUSTRY_CATEGORIES)
        response = await self._complete(provider, prompt)

        data = parse_json(response.content)
        if not data:
            raise ExtractionError("malformed_response", "Model reply is not a JSON object")

        try:
            result = ExtractionResult.model_validate(data)
        except ValidationError as exc:
            logger.warning("Extraction payload failed validation: %s", exc.errors()[:3])
            message = f"Invalid extraction payload: {exc.error_count()} errors"
            raise ExtractionError("malformed_response", message) from exc

        if not result.detected_languages:
            result.detected_languages = detect_conversation_languages(history)
        return result

    async def _complete(self, provider: CompletionProvider, prompt: str) -> ModelResponse:
        try:
            return await asyncio.wait_for(
                provider.complete_text(
                    model=self.settings.openai_model_extractor,
                    prompt=prompt,
                    temperature=self.settings.extraction_temperature,
                    max_tokens=self.settings.extraction_max_tokens,
                    json_mode=True,
                ),
                timeout=self.settings.extraction_timeout_sec,
            )
        except (TimeoutError, APITimeoutError) as exc:
            logger.warning("Extraction call timed out after %ss", self.settings.extraction_timeout_sec)
            raise ExtractionError("timeout", "Completion service timed out") from exc
        except OpenAIError as exc:
            logger.warning("Extraction call failed: %s", exc)
            raise ExtractionError("llm_unavailable", str(exc)) from exc
