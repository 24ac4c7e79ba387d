from __future__ import annotations

import pytest

from msme_insights.core.normalization import (
    INDUSTRY_CATEGORIES,
    KeywordRule,
    match_rules,
    normalize_business_size,
    normalize_currency,
    normalize_employee_count,
    normalize_industry,
    normalize_location,
    region_for_location,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Bombay", "Mumbai"),
        ("mumbay", "Mumbai"),
        ("मुंबई", "Mumbai"),
        ("Bangalor", "Bangalore"),
        ("bengaluru", "Bangalore"),
        ("बेंगलुरु", "Bangalore"),
        ("Dilli", "Delhi"),
        ("दिल्ली", "Delhi"),
        ("Calcutta", "Kolkata"),
        ("Madras", "Chennai"),
        ("  poona  ", "Pune"),
    ],
)
def test_location_aliases_resolve_to_canonical_city(raw: str, expected: str) -> None:
    assert normalize_location(raw) == expected


def test_location_substring_prefers_longest_alias() -> None:
    assert normalize_location("shop near Navi Mumbai station") == "Navi Mumbai"
    assert normalize_location("Mera business Mumbai me hai") == "Mumbai"


def test_location_alias_is_word_bounded() -> None:
    # "agra" sits inside "nagrada" but must not match there
    assert normalize_location("nagrada") == "Nagrada"


def test_unknown_location_passes_through_title_cased() -> None:
    assert normalize_location("  small   TOWN  ") == "Small Town"


@pytest.mark.parametrize("raw", [None, "", "   ", "\n\t"])
def test_empty_location_is_none(raw) -> None:
    assert normalize_location(raw) is None


def test_region_generalization() -> None:
    assert region_for_location("Mumbai") == "West India"
    assert region_for_location("Bengaluru") == "South India"
    assert region_for_location("Small Town") == "Other"
    assert region_for_location(None) is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("kirana store", "Retail - Grocery"),
        ("grocery shop", "Retail - Grocery"),
        ("kapde ka kaam", "Manufacturing - Textiles"),
        ("Textile manufacturing unit", "Manufacturing - Textiles"),
        ("IT services", "Information Technology"),
        ("chota dhaba", "Food & Beverage"),
        ("fruit shop", "Retail"),
        ("small factory", "Manufacturing - Other"),
        ("Retail - Grocery", "Retail - Grocery"),
    ],
)
def test_industry_rules(raw: str, expected: str) -> None:
    assert normalize_industry(raw) == expected


def test_short_industry_trigger_needs_word_boundary() -> None:
    assert normalize_industry("kitchen") is None


def test_industry_without_match_is_none() -> None:
    assert normalize_industry("something unrelated") is None
    assert normalize_industry("") is None
    assert normalize_industry(None) is None


def test_every_industry_category_is_accepted_as_itself() -> None:
    for category in INDUSTRY_CATEGORIES:
        assert normalize_industry(category) == category


def test_match_rules_respects_priority_over_table_order() -> None:
    rules = (
        KeywordRule("Generic", ("shop",), priority=50),
        KeywordRule("Specific", ("tea shop",), priority=10),
    )
    assert match_rules("my tea shop", rules) == "Specific"
    assert match_rules("my shoe shop", rules) == "Generic"


@pytest.mark.parametrize(
    ("hint", "expected"),
    [
        ("chota", "Micro"),
        ("छोटा", "Micro"),
        ("small-medium", "Small"),
        ("madhyam", "Small"),
        ("bada", "Medium"),
        ("Medium", "Medium"),
        ("Small", "Small"),
        ("Micro", "Micro"),
    ],
)
def test_business_size_keywords(hint: str, expected: str) -> None:
    assert normalize_business_size(hint) == expected


@pytest.mark.parametrize(
    ("employees", "expected"),
    [(0, "Micro"), (9, "Micro"), (10, "Small"), (49, "Small"), (50, "Medium"), (500, "Medium")],
)
def test_business_size_employee_boundaries(employees: int, expected: str) -> None:
    assert normalize_business_size(None, employee_count=employees) == expected


@pytest.mark.parametrize(
    ("turnover", "expected"),
    [(9_999_999, "Micro"), (10_000_000, "Small"), (99_999_999, "Small"), (100_000_000, "Medium")],
)
def test_business_size_turnover_boundaries(turnover: int, expected: str) -> None:
    assert normalize_business_size(None, turnover=turnover) == expected


def test_business_size_keyword_beats_headcount() -> None:
    assert normalize_business_size("bada", employee_count=3) == "Medium"


def test_business_size_unknown_is_none() -> None:
    assert normalize_business_size(None) is None
    assert normalize_business_size("unclear") is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("50 lakh", 5_000_000),
        ("50L", 5_000_000),
        ("₹50 lakh", 5_000_000),
        ("2 crore", 20_000_000),
        ("5 cr", 50_000_000),
        ("1.5 crore", 15_000_000),
        ("Rs. 2,50,000", 250_000),
        ("10 लाख", 1_000_000),
        ("2 करोड़", 20_000_000),
        ("10k", 10_000),
        ("10 हजार", 10_000),
        ("INR 12 Lakhs", 1_200_000),
        (750000, 750_000),
        (1.5e6, 1_500_000),
    ],
)
def test_currency_idioms(raw, expected: int) -> None:
    assert normalize_currency(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "no idea", "lakh", True, -5])
def test_unparseable_currency_is_none(raw) -> None:
    assert normalize_currency(raw) is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (5, 5),
        ("5 log", 5),
        ("5 workers", 5),
        ("5 कर्मचारी", 5),
        ("alone", 1),
        ("अकेला", 1),
        ("10-15 log", 13),
        ("4-6 log", 5),
        ("10 to 20", 15),
        ("nobody knows", None),
        (None, None),
    ],
)
def test_employee_count_idioms(raw, expected) -> None:
    assert normalize_employee_count(raw) == expected
