from __future__ import annotations

import csv
import io
import json
from datetime import date, datetime

import pytest
from sqlalchemy import update

from msme_insights.core.analytics import AnalyticsAggregator
from msme_insights.db.models import SchemeInterest
from msme_insights.db.repositories import Repository
from msme_insights.db.session import SessionLocal
from msme_insights.types import AnalyticsFilters, DateRange, ExportOptions, Pagination, SortSpec

OWNERS = {
    "owner-001": {
        "fields": {
            "location": "Mumbai",
            "industry": "Manufacturing - Textiles",
            "business_size": "Micro",
            "employee_count": 5,
        },
        "languages": ["hinglish", "hindi"],
        "interests": [("Pradhan Mantri Mudra Yojana", "mentioned"), ("Pradhan Mantri Mudra Yojana", "inquired"),
                      ("Prime Minister's Employment Generation Programme", "mentioned")],
    },
    "owner-002": {
        "fields": {"location": "Delhi", "industry": "Retail - Grocery", "business_size": "Micro"},
        "languages": ["hindi"],
        "interests": [("Pradhan Mantri Mudra Yojana", "detailed")],
    },
    "owner-003": {
        "fields": {"location": "Mumbai", "industry": "Information Technology", "business_size": "Small"},
        "languages": ["english"],
        "interests": [("Startup India", "mentioned")],
    },
    "owner-004": {
        "fields": {"location": "Pune", "industry": "Retail - Grocery", "business_size": "Medium"},
        "languages": ["english", "hinglish"],
        "interests": [],
    },
}


@pytest.fixture
async def seeded(create_conversation) -> dict[str, int]:
    conversations: dict[str, int] = {}
    for user_id, owner in OWNERS.items():
        conversation_id = await create_conversation(user_id, [("user", "namaste")])
        conversations[user_id] = conversation_id
        async with SessionLocal() as session:
            repo = Repository(session)
            await repo.upsert_user_attribute(
                user_id,
                fields=owner["fields"],
                confidence=0.9,
                detected_languages=owner["languages"],
                conversation_id=conversation_id,
            )
            schemes = {scheme.scheme_name: scheme for scheme in await repo.list_schemes()}
            for scheme_name, level in owner["interests"]:
                await repo.upsert_scheme_interest(
                    user_id,
                    schemes[scheme_name],
                    interest_level=level,
                    languages=owner["languages"],
                    conversation_id=conversation_id,
                )
    return conversations


def _total(shares) -> float:
    return sum(item.percentage for item in shares)


async def test_summary_distributions(seeded) -> None:
    summary = await AnalyticsAggregator().get_summary()

    assert summary.total_users == 4
    assert summary.total_conversations == 4
    assert summary.unique_locations == 3
    assert summary.unique_industries == 3
    assert [(row.location, row.user_count) for row in summary.location_distribution] == [
        ("Mumbai", 2),
        ("Delhi", 1),
        ("Pune", 1),
    ]
    assert summary.location_distribution[0].percentage == pytest.approx(50.0)
    assert [row.language for row in summary.language_distribution] == ["english", "hindi", "hinglish"]
    for shares in (
        summary.industry_distribution,
        summary.location_distribution,
        summary.business_size_distribution,
        summary.language_distribution,
        summary.scheme_popularity,
    ):
        assert _total(shares) == pytest.approx(100.0)

    mudra = summary.scheme_popularity[0]
    assert (mudra.scheme_name, mudra.interest_count, mudra.inquired_count, mudra.detailed_count) == (
        "Pradhan Mantri Mudra Yojana",
        2,
        1,
        1,
    )
    assert [row.scheme_id for row in summary.scheme_popularity] == sorted(
        row.scheme_id for row in summary.scheme_popularity
    )
    assert sum(point.count for point in summary.conversation_trend) == 4


async def test_summary_serializes_camel_case(seeded) -> None:
    payload = (await AnalyticsAggregator().get_summary()).model_dump(by_alias=True)
    assert {"totalUsers", "languageDistribution", "schemePopularity", "conversationTrend"} <= set(payload)
    assert "userCount" in payload["locationDistribution"][0]


async def test_summary_filters_intersect(seeded) -> None:
    aggregator = AnalyticsAggregator()

    by_city = await aggregator.get_summary(AnalyticsFilters(location="mumbai"))
    assert (by_city.total_users, by_city.total_conversations) == (2, 2)
    assert sum(row.interest_count for row in by_city.scheme_popularity) == 3

    by_scheme = await aggregator.get_summary(AnalyticsFilters(scheme_id=1))
    assert by_scheme.total_users == 2
    assert [row.scheme_id for row in by_scheme.scheme_popularity] == [1]

    combined = await aggregator.get_summary(AnalyticsFilters(location="Mumbai", scheme_id=1))
    assert combined.total_users == 1
    assert combined.location_distribution[0].location == "Mumbai"

    by_language = await aggregator.get_summary(AnalyticsFilters(languages=["hindi"]))
    assert by_language.total_users == 2

    by_size = await aggregator.get_summary(AnalyticsFilters(business_size="micro"))
    assert {row.industry for row in by_size.industry_distribution} == {"Manufacturing - Textiles", "Retail - Grocery"}


async def test_summary_date_range_applies_only_when_complete(seeded) -> None:
    aggregator = AnalyticsAggregator()

    past = AnalyticsFilters(date_range=DateRange(start_date="2000-01-01", end_date="2000-01-31"))
    empty = await aggregator.get_summary(past)
    assert (empty.total_users, empty.total_conversations, empty.scheme_popularity) == (0, 0, [])

    half_open = AnalyticsFilters(date_range=DateRange(start_date="2000-01-01"))
    assert (await aggregator.get_summary(half_open)).total_users == 4

    wide = AnalyticsFilters(date_range=DateRange(start_date="2000-01-01", end_date="2999-12-31"))
    assert (await aggregator.get_summary(wide)).total_users == 4


async def test_summary_is_cached_until_invalidated(seeded) -> None:
    aggregator = AnalyticsAggregator()
    assert (await aggregator.get_summary()).total_users == 4

    async with SessionLocal() as session:
        await Repository(session).upsert_user_attribute(
            "owner-005",
            fields={"location": "Surat"},
            confidence=0.8,
        )
    assert (await aggregator.get_summary()).total_users == 4

    assert await aggregator.anonymize_user("owner-005") is True
    assert (await aggregator.get_summary()).total_users == 5


async def test_cached_summary_is_not_shared_mutable_state(seeded) -> None:
    aggregator = AnalyticsAggregator()
    first = await aggregator.get_summary()
    first.location_distribution.clear()
    second = await aggregator.get_summary()
    assert len(second.location_distribution) == 3


async def test_scheme_interest_pages_break_ties_by_scheme(seeded) -> None:
    aggregator = AnalyticsAggregator()
    sort = SortSpec(field="mentionCount", direction="desc")

    first = await aggregator.get_scheme_interests(pagination=Pagination(page=1, page_size=2), sort=sort)
    second = await aggregator.get_scheme_interests(pagination=Pagination(page=2, page_size=2), sort=sort)

    assert first.pagination.total == 4
    assert first.pagination.total_pages == 2
    assert [(row["userId"], row["schemeId"], row["mentionCount"]) for row in first.data] == [
        ("owner-001", 1, 2),
        ("owner-002", 1, 1),
    ]
    assert [(row["userId"], row["schemeId"]) for row in second.data] == [("owner-001", 2), ("owner-003", 5)]
    assert first.data[0]["interestLevel"] == "inquired"
    assert first.data[0]["ministry"] == "Ministry of Finance"


async def test_scheme_interests_sorted_by_name_and_filtered(seeded) -> None:
    aggregator = AnalyticsAggregator()

    page = await aggregator.get_scheme_interests(sort=SortSpec(field="scheme_name", direction="asc"))
    assert [row["schemeId"] for row in page.data] == [1, 1, 2, 5]

    filtered = await aggregator.get_scheme_interests(AnalyticsFilters(languages=["english"]))
    assert [row["userId"] for row in filtered.data] == ["owner-003"]


async def test_user_attribute_pages_clamp_size_and_fall_back_on_unknown_sort(seeded, settings) -> None:
    aggregator = AnalyticsAggregator()

    page = await aggregator.get_user_attributes(
        pagination=Pagination(page=1, page_size=10_000),
        sort=SortSpec(field="favouriteColour", direction="asc"),
    )

    assert page.pagination.page_size == settings.max_page_size
    assert page.pagination.total == 4
    assert page.pagination.total_pages == 1
    assert [row["userId"] for row in page.data] == ["owner-001", "owner-002", "owner-003", "owner-004"]

    beyond = await aggregator.get_user_attributes(pagination=Pagination(page=9, page_size=2))
    assert beyond.data == []
    assert beyond.pagination.total == 4


async def test_user_attributes_sorted_by_employee_count(seeded) -> None:
    page = await AnalyticsAggregator().get_user_attributes(sort=SortSpec(field="employeeCount", direction="desc"))
    assert page.data[0]["userId"] == "owner-001"
    assert page.data[0]["employeeCount"] == 5


async def test_filter_options(seeded) -> None:
    options = await AnalyticsAggregator().get_filter_options()

    assert options.locations == ["Delhi", "Mumbai", "Pune"]
    assert options.industries == ["Information Technology", "Manufacturing - Textiles", "Retail - Grocery"]
    assert options.languages == ["english", "hindi", "hinglish"]
    names = [scheme["name"] for scheme in options.schemes]
    assert names == sorted(names, key=str.lower)
    assert "Pradhan Mantri Mudra Yojana" in names


async def test_csv_export_with_anonymization(seeded) -> None:
    payload = await AnalyticsAggregator().export_data(
        ExportOptions(format="csv", anonymize=True),
        today=date(2026, 10, 17),
    )

    assert payload.filename == "analytics_export_anonymized_2026-10-17.csv"
    text = payload.content.decode("utf-8")
    assert "owner-" not in text
    rows = list(csv.DictReader(io.StringIO(text)))
    assert payload.row_count == len(rows) == 5
    assert {row["location"] for row in rows} == {"West India", "North India"}
    assert all(row["user_id"].startswith("user_") for row in rows)


async def test_json_export_respects_filters(seeded) -> None:
    payload = await AnalyticsAggregator().export_data(
        ExportOptions(format="json", filters=AnalyticsFilters(scheme_id=5)),
        today=date(2026, 10, 17),
    )

    assert payload.filename == "analytics_export_2026-10-17.json"
    rows = json.loads(payload.content)
    assert len(rows) == 1
    assert rows[0]["user_id"] == "owner-003"
    assert rows[0]["location"] == "Mumbai"
    assert rows[0]["scheme_name"] == "Startup India"


async def test_anonymized_user_is_hidden_in_plain_export(seeded) -> None:
    aggregator = AnalyticsAggregator()
    assert await aggregator.anonymize_user("owner-002") is True
    assert await aggregator.anonymize_user("nobody") is False

    rows = json.loads((await aggregator.export_data(ExportOptions(format="json"))).content)
    user_ids = {row["user_id"] for row in rows}
    assert "owner-002" not in user_ids
    assert {"owner-001", "owner-003", "owner-004"} <= user_ids


async def test_scheme_interests_sort_by_scheme_and_user(seeded) -> None:
    aggregator = AnalyticsAggregator()

    by_scheme = await aggregator.get_scheme_interests(sort=SortSpec(field="schemeId", direction="desc"))
    assert [(row["schemeId"], row["userId"]) for row in by_scheme.data] == [
        (5, "owner-003"),
        (2, "owner-001"),
        (1, "owner-001"),
        (1, "owner-002"),
    ]

    by_user = await aggregator.get_scheme_interests(sort=SortSpec(field="userId", direction="asc"))
    assert [(row["userId"], row["schemeId"]) for row in by_user.data] == [
        ("owner-001", 1),
        ("owner-001", 2),
        ("owner-002", 1),
        ("owner-003", 5),
    ]


async def test_export_applies_date_range_to_interests(seeded) -> None:
    async with SessionLocal() as session:
        await session.execute(
            update(SchemeInterest)
            .where(SchemeInterest.user_id == "owner-002")
            .values(last_mentioned_at=datetime(2001, 1, 1))
        )
        await session.commit()
    filters = AnalyticsFilters(date_range=DateRange(start_date="2020-01-01", end_date="2999-12-31"))
    aggregator = AnalyticsAggregator()

    page = await aggregator.get_scheme_interests(filters)
    assert "owner-002" not in {row["userId"] for row in page.data}

    rows = json.loads((await aggregator.export_data(ExportOptions(format="json", filters=filters))).content)
    assert [row["scheme_name"] for row in rows if row["user_id"] == "owner-002"] == [None]
    assert {row["scheme_name"] for row in rows if row["scheme_name"]} == {row["schemeName"] for row in page.data}
