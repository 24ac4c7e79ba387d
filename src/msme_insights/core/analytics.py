from __future__ import annotations

import hashlib
import logging
import math
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable, Sequence
from datetime import date, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from msme_insights.config import Settings, get_settings
from msme_insights.core.cache import TTLCache, get_analytics_cache
from msme_insights.core.exporter import build_export_rows, render_export
from msme_insights.db.base import utcnow
from msme_insights.db.models import Conversation, Scheme, SchemeInterest, UserAttribute
from msme_insights.db.repositories import INTEREST_RANK, Repository
from msme_insights.db.session import SessionLocal
from msme_insights.types import (
    AnalyticsFilters,
    AnalyticsSummary,
    BusinessSizeShare,
    ExportOptions,
    ExportPayload,
    FilterOptions,
    IndustryShare,
    LanguageShare,
    LocationShare,
    Page,
    PageInfo,
    Pagination,
    SchemePopularity,
    SortSpec,
    TrendPoint,
)

logger = logging.getLogger(__name__)

SUMMARY_CACHE_PREFIX = "analytics:summary:"
FILTER_OPTIONS_CACHE_KEY = "analytics:filter-options"

SCHEME_INTEREST_SORTS: dict[str, Callable[[SchemeInterest], Any]] = {
    "last_mentioned_at": lambda row: row.last_mentioned_at,
    "first_mentioned_at": lambda row: row.first_mentioned_at,
    "interest_level": lambda row: INTEREST_RANK.get(row.interest_level, 0),
    "mention_count": lambda row: row.mention_count,
    "scheme_name": lambda row: row.scheme_name.lower(),
    "scheme_id": lambda row: row.scheme_id,
    "user_id": lambda row: row.user_id,
}

USER_ATTRIBUTE_SORTS: dict[str, Callable[[UserAttribute], Any]] = {
    "user_id": lambda row: row.user_id,
    "updated_at": lambda row: row.updated_at,
    "created_at": lambda row: row.created_at,
    "location": lambda row: row.location,
    "industry": lambda row: row.industry,
    "business_size": lambda row: row.business_size,
    "annual_turnover": lambda row: row.annual_turnover,
    "employee_count": lambda row: row.employee_count,
    "extraction_confidence": lambda row: row.extraction_confidence,
}


def percentage_shares(counts: Counter[str]) -> list[tuple[str, int, float]]:
    """Counts sorted by size (then label) with unrounded percentages of their total."""
    total = sum(counts.values())
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [(label, count, count / total * 100 if total else 0.0) for label, count in ordered]


def _nulls_first(getter: Callable[[Any], Any]) -> Callable[[Any], tuple[bool, Any]]:
    def key(row: Any) -> tuple[bool, Any]:
        value = getter(row)
        return (value is not None, value)

    return key


def sort_rows(
    rows: Sequence[Any],
    sort: SortSpec,
    keys: dict[str, Callable[[Any], Any]],
    *,
    default_field: str,
    tie_breaker: Callable[[Any], Any],
) -> list[Any]:
    getter = keys.get(sort.field) or keys[default_field]
    ordered = sorted(rows, key=tie_breaker)
    # sorted() is stable even when reversed, so ties keep the tie-breaker order.
    return sorted(ordered, key=_nulls_first(getter), reverse=sort.direction == "desc")


def paginate(rows: Sequence[Any], pagination: Pagination, serialize: Callable[[Any], dict[str, Any]]) -> Page:
    total = len(rows)
    window = rows[pagination.offset : pagination.offset + pagination.page_size]
    return Page(
        data=[serialize(row) for row in window],
        pagination=PageInfo(
            page=pagination.page,
            page_size=pagination.page_size,
            total=total,
            total_pages=math.ceil(total / pagination.page_size) if total else 0,
        ),
    )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def serialize_scheme_interest(row: SchemeInterest, scheme: Scheme | None = None) -> dict[str, Any]:
    return {
        "id": row.id,
        "userId": row.user_id,
        "schemeId": row.scheme_id,
        "schemeName": row.scheme_name,
        "ministry": scheme.ministry if scheme else None,
        "category": scheme.category if scheme else None,
        "interestLevel": row.interest_level,
        "mentionCount": row.mention_count,
        "mentionedInLanguages": list(row.mentioned_in_languages or []),
        "conversationId": row.conversation_id,
        "firstMentionedAt": _iso(row.first_mentioned_at),
        "lastMentionedAt": _iso(row.last_mentioned_at),
    }


def serialize_user_attribute(row: UserAttribute) -> dict[str, Any]:
    return {
        "id": row.id,
        "userId": row.user_id,
        "location": row.location,
        "industry": row.industry,
        "businessSize": row.business_size,
        "annualTurnover": row.annual_turnover,
        "employeeCount": row.employee_count,
        "detectedLanguages": list(row.detected_languages or []),
        "originalLanguageData": dict(row.original_language_data or {}),
        "extractionConfidence": row.extraction_confidence,
        "extractionNotes": row.extraction_notes,
        "conversationId": row.conversation_id,
        "isAnonymized": row.is_anonymized,
        "createdAt": _iso(row.created_at),
        "updatedAt": _iso(row.updated_at),
    }


class AnalyticsAggregator:
    """Read-side views over persisted attributes, scheme interests and conversations.

    All filters combine with AND. Attribute rows are filtered by their update
    time, scheme interests by their last mention and conversations by their
    creation time; the date range only applies when both bounds are present.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        cache: TTLCache | None = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory or SessionLocal
        self.cache = cache or get_analytics_cache()

    # filtering

    @staticmethod
    def _bounds(filters: AnalyticsFilters) -> tuple[datetime, datetime] | None:
        date_range = filters.active_date_range
        if date_range is None:
            return None
        return date_range.start_date, date_range.end_date

    @staticmethod
    def _speaks_any(attribute: UserAttribute, languages: Iterable[str]) -> bool:
        wanted = set(languages)
        if not wanted:
            return True
        return any(str(tag).lower() in wanted for tag in attribute.detected_languages or [])

    async def _filtered_users(
        self,
        repo: Repository,
        filters: AnalyticsFilters,
        *,
        use_dates: bool = True,
    ) -> list[UserAttribute]:
        users = await repo.list_user_attributes(
            location=filters.location,
            industry=filters.industry,
            business_size=filters.business_size,
            updated_between=self._bounds(filters) if use_dates else None,
        )
        users = [user for user in users if self._speaks_any(user, filters.languages)]
        if filters.scheme_id is not None:
            interested = {row.user_id for row in await repo.list_scheme_interests(scheme_id=filters.scheme_id)}
            users = [user for user in users if user.user_id in interested]
        return users

    async def _filtered_interests(self, repo: Repository, filters: AnalyticsFilters) -> list[SchemeInterest]:
        interests = await repo.list_scheme_interests(
            scheme_id=filters.scheme_id,
            mentioned_between=self._bounds(filters),
        )
        if filters.filters_users:
            allowed = {user.user_id for user in await self._filtered_users(repo, filters, use_dates=False)}
            interests = [row for row in interests if row.user_id in allowed]
        return interests

    async def _filtered_conversations(
        self,
        repo: Repository,
        filters: AnalyticsFilters,
        users: Sequence[UserAttribute],
    ) -> list[Conversation]:
        conversations = await repo.list_conversations(created_between=self._bounds(filters))
        if filters.filters_users or filters.scheme_id is not None:
            allowed = {user.user_id for user in users}
            conversations = [row for row in conversations if row.user_id in allowed]
        return conversations

    # views

    async def get_summary(self, filters: AnalyticsFilters | None = None) -> AnalyticsSummary:
        filters = filters or AnalyticsFilters()
        cache_key = SUMMARY_CACHE_PREFIX + hashlib.sha256(filters.cache_key().encode("utf-8")).hexdigest()[:16]
        if self.settings.analytics_cache_enabled:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug("Returning cached analytics summary key=%s", cache_key)
                return cached.model_copy(deep=True)

        async with self.session_factory() as session:
            repo = Repository(session)
            users = await self._filtered_users(repo, filters)
            interests = await self._filtered_interests(repo, filters)
            conversations = await self._filtered_conversations(repo, filters, users)

        summary = self._summarize(users, interests, conversations)
        if self.settings.analytics_cache_enabled:
            self.cache.set(cache_key, summary.model_copy(deep=True), ttl_sec=self.settings.analytics_cache_ttl_sec)
        return summary

    @staticmethod
    def _summarize(
        users: Sequence[UserAttribute],
        interests: Sequence[SchemeInterest],
        conversations: Sequence[Conversation],
    ) -> AnalyticsSummary:
        locations = Counter(user.location for user in users if user.location)
        industries = Counter(user.industry for user in users if user.industry)
        sizes = Counter(user.business_size for user in users if user.business_size)
        languages = Counter(
            tag for user in users for tag in dict.fromkeys(str(raw).lower() for raw in user.detected_languages or [])
        )

        per_scheme: dict[int, SchemePopularity] = {}
        for row in interests:
            entry = per_scheme.setdefault(
                row.scheme_id,
                SchemePopularity(scheme_id=row.scheme_id, scheme_name=row.scheme_name, interest_count=0),
            )
            entry.interest_count += 1
            if row.interest_level == "mentioned":
                entry.mentioned_count += 1
            elif row.interest_level == "inquired":
                entry.inquired_count += 1
            elif row.interest_level == "detailed":
                entry.detailed_count += 1
        popularity = sorted(per_scheme.values(), key=lambda item: (-item.interest_count, item.scheme_id))
        total_interests = sum(item.interest_count for item in popularity)
        for item in popularity:
            item.percentage = item.interest_count / total_interests * 100 if total_interests else 0.0

        trend = Counter(conversation.created_at.date().isoformat() for conversation in conversations)

        return AnalyticsSummary(
            total_users=len(users),
            total_conversations=len(conversations),
            unique_locations=len(locations),
            unique_industries=len(industries),
            industry_distribution=[
                IndustryShare(industry=label, user_count=count, percentage=share)
                for label, count, share in percentage_shares(industries)
            ],
            location_distribution=[
                LocationShare(location=label, user_count=count, percentage=share)
                for label, count, share in percentage_shares(locations)
            ],
            business_size_distribution=[
                BusinessSizeShare(business_size=label, user_count=count, percentage=share)
                for label, count, share in percentage_shares(sizes)
            ],
            language_distribution=[
                LanguageShare(language=label, user_count=count, percentage=share)
                for label, count, share in percentage_shares(languages)
            ],
            scheme_popularity=popularity,
            conversation_trend=[TrendPoint(date=day, count=trend[day]) for day in sorted(trend)],
        )

    def _page(self, pagination: Pagination | None) -> Pagination:
        pagination = pagination or Pagination(page_size=self.settings.default_page_size)
        if pagination.page_size > self.settings.max_page_size:
            pagination = pagination.model_copy(update={"page_size": self.settings.max_page_size})
        return pagination

    async def get_scheme_interests(
        self,
        filters: AnalyticsFilters | None = None,
        pagination: Pagination | None = None,
        sort: SortSpec | None = None,
    ) -> Page:
        filters = filters or AnalyticsFilters()
        async with self.session_factory() as session:
            repo = Repository(session)
            interests = await self._filtered_interests(repo, filters)
            schemes = {scheme.id: scheme for scheme in await repo.list_schemes(active_only=False)}

        ordered = sort_rows(
            interests,
            sort or SortSpec(),
            SCHEME_INTEREST_SORTS,
            default_field="last_mentioned_at",
            tie_breaker=lambda row: (row.scheme_id, row.id),
        )
        return paginate(
            ordered,
            self._page(pagination),
            lambda row: serialize_scheme_interest(row, schemes.get(row.scheme_id)),
        )

    async def get_user_attributes(
        self,
        filters: AnalyticsFilters | None = None,
        pagination: Pagination | None = None,
        sort: SortSpec | None = None,
    ) -> Page:
        filters = filters or AnalyticsFilters()
        async with self.session_factory() as session:
            users = await self._filtered_users(Repository(session), filters)

        ordered = sort_rows(
            users,
            sort or SortSpec(field="updated_at"),
            USER_ATTRIBUTE_SORTS,
            default_field="updated_at",
            tie_breaker=lambda row: row.id,
        )
        return paginate(ordered, self._page(pagination), serialize_user_attribute)

    async def get_filter_options(self) -> FilterOptions:
        if self.settings.analytics_cache_enabled:
            cached = self.cache.get(FILTER_OPTIONS_CACHE_KEY)
            if cached is not None:
                return cached.model_copy(deep=True)

        async with self.session_factory() as session:
            repo = Repository(session)
            users = await repo.list_user_attributes()
            schemes = await repo.list_schemes(active_only=True)

        options = FilterOptions(
            locations=sorted({user.location for user in users if user.location}),
            industries=sorted({user.industry for user in users if user.industry}),
            schemes=[
                {"id": scheme.id, "name": scheme.scheme_name}
                for scheme in sorted(schemes, key=lambda item: item.scheme_name.lower())
            ],
            languages=sorted({str(tag).lower() for user in users for tag in user.detected_languages or []}),
        )
        if self.settings.analytics_cache_enabled:
            self.cache.set(FILTER_OPTIONS_CACHE_KEY, options.model_copy(deep=True))
        return options

    async def export_data(self, options: ExportOptions, *, today: date | None = None) -> ExportPayload:
        filters = options.filters
        async with self.session_factory() as session:
            repo = Repository(session)
            users = await self._filtered_users(repo, filters)
            interests = await self._filtered_interests(repo, filters)
            schemes = {scheme.id: scheme for scheme in await repo.list_schemes(active_only=False)}

        by_user: dict[str, list[SchemeInterest]] = defaultdict(list)
        for row in interests:
            by_user[row.user_id].append(row)

        rows = build_export_rows(
            users,
            by_user,
            schemes,
            anonymize=options.anonymize,
            salt=self.settings.anonymization_salt,
            max_rows=self.settings.export_max_rows,
        )
        payload = render_export(rows, options.format, anonymize=options.anonymize, today=today or utcnow().date())
        logger.info(
            "Analytics export format=%s anonymize=%s rows=%s",
            options.format,
            options.anonymize,
            payload.row_count,
        )
        return payload

    async def anonymize_user(self, user_id: str) -> bool:
        async with self.session_factory() as session:
            updated = await Repository(session).mark_user_anonymized(user_id)
        if updated:
            self.cache.delete_pattern("analytics:*")
        return updated
