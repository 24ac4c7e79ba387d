from __future__ import annotations

from datetime import UTC, date, datetime, time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from msme_insights.core.normalization import normalize_currency, normalize_employee_count

BusinessSize = Literal["Micro", "Small", "Medium"]
InterestLevel = Literal["mentioned", "inquired", "detailed"]
JobStatus = Literal["pending", "processing", "completed", "failed"]
JobPriority = Literal["normal", "high"]
MessageRole = Literal["user", "assistant", "system"]
ExportFormat = Literal["csv", "json"]

BUSINESS_SIZES: tuple[str, ...] = ("Micro", "Small", "Medium")
INTEREST_LEVELS: tuple[str, ...] = ("mentioned", "inquired", "detailed")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatMessage(BaseModel):
    role: MessageRole = "user"
    content: str = ""
    created_at: datetime | None = None


class ModelResponse(BaseModel):
    content: str
    raw: dict[str, Any] = Field(default_factory=dict)


class SchemeMention(CamelModel):
    scheme_name: str
    interest_level: InterestLevel = "mentioned"

    @field_validator("interest_level", mode="before")
    @classmethod
    def lower_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class ExtractionResult(CamelModel):
    """Raw attributes as returned by the completion service, before normalization."""

    location: str | None = None
    industry: str | None = None
    business_size: str | None = None
    annual_turnover: int | None = None
    employee_count: int | None = None
    scheme_interests: list[SchemeMention] = Field(default_factory=list)
    confidence: float
    detected_languages: list[str] = Field(default_factory=list)
    extraction_notes: str = ""

    @field_validator("location", "industry", "business_size", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("annual_turnover", mode="before")
    @classmethod
    def parse_turnover(cls, value: Any) -> int | None:
        return normalize_currency(value)

    @field_validator("employee_count", mode="before")
    @classmethod
    def parse_employee_count(cls, value: Any) -> int | None:
        return normalize_employee_count(value)

    @field_validator("scheme_interests", mode="before")
    @classmethod
    def none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("detected_languages", mode="before")
    @classmethod
    def lower_languages(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, list):
            return list(dict.fromkeys(str(item).strip().lower() for item in value if str(item).strip()))
        return value

    @field_validator("extraction_notes", mode="before")
    @classmethod
    def none_to_text(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, value: float) -> float:
        if value < 0 or value > 1:
            raise ValueError("confidence must be between 0 and 1")
        return value


class NormalizedAttributes(CamelModel):
    location: str | None = None
    industry: str | None = None
    business_size: BusinessSize | None = None
    annual_turnover: int | None = None
    employee_count: int | None = None

    def present_fields(self) -> dict[str, Any]:
        return {key: value for key, value in self.model_dump().items() if value is not None}


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _lenient_datetime(value: Any, *, end_of_day: bool = False) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.max if end_of_day else time.min)
    if isinstance(value, str):
        candidate = value.strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError:
            return None
        if len(candidate) == 10 and end_of_day:
            return datetime.combine(parsed.date(), time.max)
        return _naive_utc(parsed)
    return None


class DateRange(CamelModel):
    start_date: datetime | None = None
    end_date: datetime | None = None

    @field_validator("start_date", mode="before")
    @classmethod
    def parse_start(cls, value: Any) -> datetime | None:
        return _lenient_datetime(value)

    @field_validator("end_date", mode="before")
    @classmethod
    def parse_end(cls, value: Any) -> datetime | None:
        return _lenient_datetime(value, end_of_day=True)

    @property
    def is_complete(self) -> bool:
        return self.start_date is not None and self.end_date is not None


class AnalyticsFilters(CamelModel):
    """Intersection filter over persisted analytics rows.

    Malformed values (unknown business size, half-open date range, blank
    strings) are dropped instead of rejected, so a bad filter widens the
    result rather than failing the request.
    """

    date_range: DateRange | None = None
    location: str | None = None
    industry: str | None = None
    scheme_id: int | None = None
    business_size: BusinessSize | None = None
    languages: list[str] = Field(default_factory=list)

    @field_validator("location", "industry", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("scheme_id", mode="before")
    @classmethod
    def parse_scheme_id(cls, value: Any) -> int | None:
        try:
            return int(value) if value not in (None, "") else None
        except (TypeError, ValueError):
            return None

    @field_validator("business_size", mode="before")
    @classmethod
    def known_size_only(cls, value: Any) -> str | None:
        if isinstance(value, str) and value.strip().title() in BUSINESS_SIZES:
            return value.strip().title()
        return None

    @field_validator("languages", mode="before")
    @classmethod
    def split_languages(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [str(item).strip().lower() for item in value if str(item).strip()]

    @property
    def active_date_range(self) -> DateRange | None:
        if self.date_range is not None and self.date_range.is_complete:
            return self.date_range
        return None

    @property
    def filters_users(self) -> bool:
        return bool(self.location or self.industry or self.business_size or self.languages)

    def cache_key(self) -> str:
        return self.model_dump_json(exclude_defaults=True)


class Pagination(CamelModel):
    page: int = 1
    page_size: int = 20

    @field_validator("page", mode="before")
    @classmethod
    def clamp_page(cls, value: Any) -> int:
        try:
            return max(1, int(value))
        except (TypeError, ValueError):
            return 1

    @field_validator("page_size", mode="before")
    @classmethod
    def clamp_page_size(cls, value: Any) -> int:
        try:
            return max(1, int(value))
        except (TypeError, ValueError):
            return 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class SortSpec(CamelModel):
    field: str = "last_mentioned_at"
    direction: Literal["asc", "desc"] = "desc"

    @field_validator("field", mode="before")
    @classmethod
    def snake_field(cls, value: Any) -> str:
        text = str(value or "").strip()
        return "".join(f"_{char.lower()}" if char.isupper() else char for char in text)

    @field_validator("direction", mode="before")
    @classmethod
    def known_direction(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip().lower() == "asc":
            return "asc"
        return "desc"


class PageInfo(CamelModel):
    page: int
    page_size: int
    total: int
    total_pages: int


class Page(CamelModel):
    data: list[dict[str, Any]] = Field(default_factory=list)
    pagination: PageInfo


class IndustryShare(CamelModel):
    industry: str
    user_count: int
    percentage: float


class LocationShare(CamelModel):
    location: str
    user_count: int
    percentage: float


class BusinessSizeShare(CamelModel):
    business_size: str
    user_count: int
    percentage: float


class LanguageShare(CamelModel):
    language: str
    user_count: int
    percentage: float


class SchemePopularity(CamelModel):
    scheme_id: int
    scheme_name: str
    interest_count: int
    mentioned_count: int = 0
    inquired_count: int = 0
    detailed_count: int = 0
    percentage: float = 0.0


class TrendPoint(CamelModel):
    date: str
    count: int


class AnalyticsSummary(CamelModel):
    total_users: int = 0
    total_conversations: int = 0
    unique_locations: int = 0
    unique_industries: int = 0
    industry_distribution: list[IndustryShare] = Field(default_factory=list)
    location_distribution: list[LocationShare] = Field(default_factory=list)
    business_size_distribution: list[BusinessSizeShare] = Field(default_factory=list)
    language_distribution: list[LanguageShare] = Field(default_factory=list)
    scheme_popularity: list[SchemePopularity] = Field(default_factory=list)
    conversation_trend: list[TrendPoint] = Field(default_factory=list)


class FilterOptions(CamelModel):
    locations: list[str] = Field(default_factory=list)
    industries: list[str] = Field(default_factory=list)
    schemes: list[dict[str, Any]] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)


class ExportOptions(CamelModel):
    format: ExportFormat = "csv"
    filters: AnalyticsFilters = Field(default_factory=AnalyticsFilters)
    anonymize: bool = False


class ExportPayload(BaseModel):
    filename: str
    media_type: str
    content: bytes
    row_count: int = 0


class JobOutcome(CamelModel):
    job_id: int
    conversation_id: int
    status: JobStatus
    priority: JobPriority = "normal"
    reused: bool = False
    confidence: float | None = None
    persisted_fields: list[str] = Field(default_factory=list)
    scheme_interests: int = 0
    notes: str = ""
    failure: dict[str, str] | None = None


class QueueResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


class QueueStats(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0
