from __future__ import annotations

import pytest
from openai import APIConnectionError

from msme_insights.config import Settings
from msme_insights.errors import ExtractionError
from msme_insights.llm.extractor import AIExtractor
from msme_insights.types import ChatMessage

from conftest import FakeCompletionProvider

HISTORY = [
    ChatMessage(role="user", content="Mera business Mumbai me hai"),
    ChatMessage(role="assistant", content="Aap kya kaam karte hain?"),
    ChatMessage(role="user", content="kapde ka kaam, Mudra loan chahiye"),
]


def _extractor(provider=None, **overrides) -> AIExtractor:
    settings = Settings(openai_api_key="", **overrides)
    return AIExtractor(settings=settings, provider=provider)


async def test_extract_without_provider_is_llm_unavailable() -> None:
    with pytest.raises(ExtractionError) as excinfo:
        await _extractor().extract(HISTORY)
    assert excinfo.value.reason == "llm_unavailable"


async def test_extract_validates_and_fills_languages() -> None:
    provider = FakeCompletionProvider(
        [
            {
                "location": "Mumbai",
                "industry": "Manufacturing - Textiles",
                "businessSize": None,
                "annualTurnover": "50 lakh",
                "employeeCount": "5 log",
                "schemeInterests": [{"schemeName": "Mudra", "interestLevel": "Inquired"}],
                "confidence": 0.85,
                "extractionNotes": "Explicit city and trade.",
                "detectedLanguages": [],
            }
        ]
    )

    result = await _extractor(provider).extract(HISTORY)

    assert result.location == "Mumbai"
    assert result.annual_turnover == 5_000_000
    assert result.employee_count == 5
    assert result.scheme_interests[0].scheme_name == "Mudra"
    assert result.scheme_interests[0].interest_level == "inquired"
    assert result.detected_languages == ["hinglish"]
    assert provider.calls[0]["json_mode"] is True
    assert "[Message 3] User: kapde ka kaam, Mudra loan chahiye" in provider.prompts[0]


async def test_extract_keeps_model_languages_lowercased() -> None:
    provider = FakeCompletionProvider([{"confidence": 0.7, "detectedLanguages": ["Hindi", "hindi", "English"]}])
    result = await _extractor(provider).extract(HISTORY)
    assert result.detected_languages == ["hindi", "english"]


@pytest.mark.parametrize(
    "reply",
    [
        "I could not find anything useful.",
        {"location": "Pune"},
        {"confidence": 1.4},
        {"confidence": "very high"},
        {"confidence": 0.8, "schemeInterests": [{"schemeName": "Mudra", "interestLevel": "obsessed"}]},
    ],
)
async def test_extract_rejects_malformed_replies(reply) -> None:
    with pytest.raises(ExtractionError) as excinfo:
        await _extractor(FakeCompletionProvider([reply])).extract(HISTORY)
    assert excinfo.value.reason == "malformed_response"


async def test_extract_times_out() -> None:
    provider = FakeCompletionProvider([{"confidence": 0.9}], delay=0.5)
    with pytest.raises(ExtractionError) as excinfo:
        await _extractor(provider, extraction_timeout_sec=0.05).extract(HISTORY)
    assert excinfo.value.reason == "timeout"


async def test_provider_error_is_llm_unavailable() -> None:
    provider = FakeCompletionProvider(error=APIConnectionError(request=None))
    with pytest.raises(ExtractionError) as excinfo:
        await _extractor(provider).extract(HISTORY)
    assert excinfo.value.reason == "llm_unavailable"
