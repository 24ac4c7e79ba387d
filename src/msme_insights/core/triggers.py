from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from msme_insights.core.normalization import contains_trigger

SCHEME_KEYWORDS: tuple[str, ...] = (
    "scheme",
    "yojana",
    "योजना",
    "mudra",
    "मुद्रा",
    "pmegp",
    "startup india",
    "stand-up india",
    "cgtmse",
    "credit",
    "loan",
    "subsidy",
    "grant",
    "funding",
    "financial assistance",
    "सरकारी योजना",
    "apply",
    "eligible",
    "eligibility",
)

BUSINESS_KEYWORDS: tuple[str, ...] = (
    "business",
    "व्यवसाय",
    "karobar",
    "कारोबार",
    "dukaan",
    "दुकान",
    "shop",
    "company",
    "firm",
    "enterprise",
    "industry",
    "उद्योग",
    "manufacturing",
    "retail",
    "service",
    "location",
    "city",
    "employees",
    "turnover",
    "revenue",
    "sales",
    "small",
    "micro",
    "medium",
    "chota",
    "छोटा",
    "bada",
    "बड़ा",
)


@dataclass(frozen=True, slots=True)
class TriggerPolicy:
    message_threshold: int = 3
    recent_window: int = 5
    check_scheme_keywords: bool = True
    check_business_keywords: bool = True

    def should_trigger(self, *, messages_since_last: int, recent_user_texts: Sequence[str]) -> bool:
        if messages_since_last <= 0:
            return False
        if messages_since_last >= self.message_threshold:
            return True

        combined = " ".join(recent_user_texts).lower()
        if not combined:
            return False
        if self.check_scheme_keywords and any(contains_trigger(combined, word) for word in SCHEME_KEYWORDS):
            return True
        if self.check_business_keywords and any(contains_trigger(combined, word) for word in BUSINESS_KEYWORDS):
            return True
        return False
