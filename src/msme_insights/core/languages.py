from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class ScriptRange:
    tag: str
    start: int
    end: int

    def contains(self, char: str) -> bool:
        return self.start <= ord(char) <= self.end


INDIC_SCRIPTS: tuple[ScriptRange, ...] = (
    ScriptRange("hindi", 0x0900, 0x097F),
    ScriptRange("bengali", 0x0980, 0x09FF),
    ScriptRange("punjabi", 0x0A00, 0x0A7F),
    ScriptRange("gujarati", 0x0A80, 0x0AFF),
    ScriptRange("oriya", 0x0B00, 0x0B7F),
    ScriptRange("tamil", 0x0B80, 0x0BFF),
    ScriptRange("telugu", 0x0C00, 0x0C7F),
    ScriptRange("kannada", 0x0C80, 0x0CFF),
    ScriptRange("malayalam", 0x0D00, 0x0D7F),
)

ROMANIZED_HINDI_CUES: frozenset[str] = frozenset(
    {
        "aap", "abhi", "accha", "acha", "apna", "apni", "aur", "bahut", "banata", "banate",
        "batao", "bataiye", "bechta", "bechte", "bhai", "bhi", "chahiye", "chahta", "chahte",
        "chota", "chhota", "dukaan", "dukan", "haan", "hai", "hain", "hamara", "hoon", "hu",
        "humara", "jaankari", "ka", "kaafi", "kaam", "kaise", "kapde", "karobar", "karta",
        "karte", "karti", "ke", "ki", "kitna", "ko", "kuch", "kya", "kyunki", "lekin", "liye",
        "matlab", "mein", "mera", "mere", "meri", "milega", "mujhe", "nahi", "nahin", "paisa",
        "paise", "saal", "sakta", "sakte", "se", "tha", "theek", "thi", "thoda", "wala", "wale",
        "yojana",
    }
)

_LATIN_WORD = re.compile(r"[a-zA-Z]+")


@dataclass(slots=True)
class LanguageDetector:
    """Heuristic per-message language tagger.

    Scripts are classified by code point range; romanized Hindi is recognised
    through a cue-word lexicon. Both are plain data, so another script or
    dialect lexicon can be plugged in without touching the detection flow.
    """

    scripts: tuple[ScriptRange, ...] = INDIC_SCRIPTS
    cue_words: frozenset[str] = ROMANIZED_HINDI_CUES
    mixed_tag: str = "hinglish"
    latin_tag: str = "english"
    mixed_script: str = "hindi"
    _cache: dict[str, ScriptRange | None] = field(default_factory=dict, repr=False)

    def _script_for(self, char: str) -> ScriptRange | None:
        if char not in self._cache:
            self._cache[char] = next((script for script in self.scripts if script.contains(char)), None)
        return self._cache[char]

    def detect(self, text: str) -> list[str]:
        if not text:
            return []

        tags: list[str] = []
        for char in text:
            if char.isascii():
                continue
            script = self._script_for(char)
            if script is not None and script.tag not in tags:
                tags.append(script.tag)

        words = [word.lower() for word in _LATIN_WORD.findall(text)]
        if not words:
            return tags

        if self.mixed_script in tags:
            tags.append(self.mixed_tag)
        elif self._code_switched(words):
            tags.append(self.mixed_tag)
        elif not tags:
            tags.append(self.latin_tag)
        return tags

    def _code_switched(self, words: list[str]) -> bool:
        # Cue words only count next to at least one word outside the lexicon.
        cues = sum(1 for word in words if word in self.cue_words)
        return 0 < cues < len(words)

    def detect_conversation(self, messages: Iterable[Any]) -> list[str]:
        seen: list[str] = []
        for message in messages:
            for tag in self.detect(_message_text(message)):
                if tag not in seen:
                    seen.append(tag)
        return seen


def _message_text(message: Any) -> str:
    if isinstance(message, str):
        return message
    if isinstance(message, Mapping):
        return str(message.get("content") or "")
    return str(getattr(message, "content", "") or "")


DEFAULT_DETECTOR = LanguageDetector()


def detect_languages(text: str) -> list[str]:
    return DEFAULT_DETECTOR.detect(text)


def detect_conversation_languages(messages: Iterable[Any]) -> list[str]:
    return DEFAULT_DETECTOR.detect_conversation(messages)
