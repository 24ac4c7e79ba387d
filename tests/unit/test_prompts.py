from __future__ import annotations

from msme_insights.core.normalization import INDUSTRY_CATEGORIES
from msme_insights.llm.prompts import build_extraction_prompt, format_transcript
from msme_insights.types import ChatMessage


def test_transcript_numbers_messages_with_role_labels() -> None:
    history = [
        ChatMessage(role="user", content="Namaste"),
        {"role": "assistant", "content": "How can I help?"},
        ChatMessage(role="user", content="Mudra loan ke baare me batao"),
    ]
    assert format_transcript(history) == (
        "[Message 1] User: Namaste\n\n"
        "[Message 2] Assistant: How can I help?\n\n"
        "[Message 3] User: Mudra loan ke baare me batao"
    )


def test_prompt_is_deterministic_and_lists_categories() -> None:
    history = [ChatMessage(role="user", content="मेरी दुकान दिल्ली में है")]

    first = build_extraction_prompt(history, INDUSTRY_CATEGORIES)
    second = build_extraction_prompt(history, INDUSTRY_CATEGORIES)

    assert first == second
    for category in INDUSTRY_CATEGORIES:
        assert f"- {category}" in first
    assert "[Message 1] User: मेरी दुकान दिल्ली में है" in first
    assert '"confidence": number between 0 and 1' in first
    assert first.rstrip().endswith("return ONLY the JSON object specified above.")


def test_prompt_without_categories_falls_back_to_other() -> None:
    prompt = build_extraction_prompt([ChatMessage(content="hi")])
    assert "- Other" in prompt
