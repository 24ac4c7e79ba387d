from __future__ import annotations

from msme_insights.core.analytics import AnalyticsAggregator
from msme_insights.db.repositories import Repository
from msme_insights.db.session import SessionLocal
from msme_insights.types import AnalyticsFilters


async def test_textile_owner_in_mumbai(make_manager, create_conversation) -> None:
    conversation_id = await create_conversation(
        "msme-textile",
        [
            ("user", "I run a textile manufacturing business in Mumbai"),
            ("assistant", "That's great! How big is the business?"),
            ("user", "We have 15 employees and annual turnover of 2 crore rupees"),
            ("assistant", "Thanks. How can I help you today?"),
            ("user", "I want to know about Mudra loan scheme"),
        ],
    )
    manager, provider = make_manager(
        [
            {
                "location": "Mumbai",
                "industry": "Textile manufacturing",
                "businessSize": None,
                "annualTurnover": "2 crore",
                "employeeCount": 15,
                "schemeInterests": [{"schemeName": "Mudra Loan", "interestLevel": "mentioned"}],
                "confidence": 0.92,
                "extractionNotes": "All values stated explicitly in English.",
                "detectedLanguages": ["english"],
            }
        ]
    )

    assert await manager.should_trigger(conversation_id) is True
    outcome = await manager.trigger(conversation_id)
    assert outcome.status == "completed"
    assert "[Message 5] User: I want to know about Mudra loan scheme" in provider.prompts[0]

    async with SessionLocal() as session:
        repo = Repository(session)
        attribute = await repo.get_user_attribute("msme-textile")
        interests = await repo.list_scheme_interests(user_id="msme-textile")

    assert (
        attribute.location,
        attribute.industry,
        attribute.business_size,
        attribute.employee_count,
        attribute.annual_turnover,
    ) == ("Mumbai", "Manufacturing - Textiles", "Small", 15, 20_000_000)
    assert len(interests) == 1
    assert "Mudra" in interests[0].scheme_name
    assert interests[0].interest_level == "mentioned"

    summary = await AnalyticsAggregator().get_summary(AnalyticsFilters(industry="Manufacturing - Textiles"))
    assert summary.total_users == 1
    assert summary.scheme_popularity[0].mentioned_count == 1
    assert summary.business_size_distribution[0].business_size == "Small"


async def test_hindi_grocery_owner_in_delhi(make_manager, create_conversation) -> None:
    conversation_id = await create_conversation(
        "msme-kirana",
        [
            ("user", "मेरी दिल्ली में एक छोटी दुकान है"),
            ("user", "किराने का सामान बेचता हूं"),
            ("user", "3 लोग काम करते हैं"),
        ],
    )
    manager, _ = make_manager(
        [
            {
                "location": "दिल्ली",
                "industry": "किराने का सामान",
                "businessSize": "छोटी दुकान",
                "annualTurnover": None,
                "employeeCount": "3 लोग",
                "schemeInterests": None,
                "confidence": 0.8,
                "extractionNotes": "Hindi conversation; city, trade and headcount stated.",
            }
        ]
    )

    outcome = await manager.trigger_if_needed(conversation_id)
    assert outcome is not None and outcome.status == "pending"
    result = await manager.process_queue()
    assert result.succeeded == 1

    async with SessionLocal() as session:
        attribute = await Repository(session).get_user_attribute("msme-kirana")

    assert (attribute.location, attribute.industry, attribute.business_size, attribute.employee_count) == (
        "Delhi",
        "Retail - Grocery",
        "Micro",
        3,
    )
    assert "hindi" in attribute.detected_languages
    assert attribute.original_language_data["location"] == "दिल्ली"

    summary = await AnalyticsAggregator().get_summary(AnalyticsFilters(languages=["hindi"]))
    assert summary.total_users == 1
    assert summary.language_distribution[0].language == "hindi"
    assert summary.location_distribution[0].location == "Delhi"
