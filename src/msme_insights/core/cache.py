from __future__ import annotations

import fnmatch
import time
from dataclasses import dataclass
from typing import Any

from msme_insights.config import get_settings


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """In-process cache for derived analytics views, keyed by string."""

    def __init__(self, default_ttl_sec: float = 300.0):
        self.default_ttl_sec = default_ttl_sec
        self._entries: dict[str, _Entry] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if time.monotonic() > entry.expires_at:
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_sec: float | None = None) -> None:
        ttl = self.default_ttl_sec if ttl_sec is None else ttl_sec
        self._entries[key] = _Entry(value=value, expires_at=time.monotonic() + ttl)

    def delete_pattern(self, pattern: str) -> int:
        doomed = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict[str, Any]:
        return {"size": len(self._entries), "keys": sorted(self._entries)}


_CACHE: TTLCache | None = None


def get_analytics_cache() -> TTLCache:
    global _CACHE
    if _CACHE is None:
        _CACHE = TTLCache(default_ttl_sec=get_settings().analytics_cache_ttl_sec)
    return _CACHE
