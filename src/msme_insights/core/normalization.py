"""Deterministic normalization of extracted business attributes.

Every function here is total: unknown or malformed input degrades to ``None``
(or a cleaned passthrough for locations) instead of raising, so a single odd
value never fails an extraction job.

Keyword handling is table driven. Each table is an ordered tuple of
``KeywordRule`` entries consumed by ``match_rules``; extending coverage for a
new city, trade, or dialect means adding data, not branches.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any, Iterable

BUSINESS_SIZES = ("Micro", "Small", "Medium")

MICRO_EMPLOYEE_LIMIT = 10
SMALL_EMPLOYEE_LIMIT = 50
MICRO_TURNOVER_LIMIT = 10_000_000
SMALL_TURNOVER_LIMIT = 100_000_000

_DEVANAGARI_DIGITS = str.maketrans("०१२३४५६७८९", "0123456789")


@dataclass(frozen=True, slots=True)
class KeywordRule:
    result: str
    triggers: tuple[str, ...]
    priority: int = 100


@lru_cache(maxsize=1024)
def _trigger_pattern(trigger: str) -> re.Pattern[str]:
    escaped = re.escape(trigger)
    if not trigger.isascii():
        return re.compile(escaped)
    # Latin triggers must start on a word boundary; very short ones must end on one too.
    suffix = r"(?![a-z0-9])" if len(trigger) <= 3 else ""
    return re.compile(r"(?<![a-z0-9])" + escaped + suffix)


def contains_trigger(text: str, trigger: str) -> bool:
    return _trigger_pattern(trigger).search(text) is not None


def match_rules(text: str, rules: Iterable[KeywordRule]) -> str | None:
    """Return the result of the first rule, by priority, with a trigger in ``text``.

    ``text`` is expected to be lowercased already. Rules sharing a priority keep
    their table order.
    """
    for rule in sorted(rules, key=lambda item: item.priority):
        for trigger in rule.triggers:
            if contains_trigger(text, trigger):
                return rule.result
    return None


def _clean_text(raw: Any) -> str:
    if raw is None or isinstance(raw, bool):
        return ""
    text = raw if isinstance(raw, str) else str(raw)
    return " ".join(text.split())


def title_case(text: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in text.split())


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------

LOCATION_ALIASES: dict[str, tuple[str, ...]] = {
    "Mumbai": ("mumbai", "bombay", "mumbay", "bambai", "bombai", "मुंबई", "मुम्बई", "बंबई", "মুম্বাই"),
    "Navi Mumbai": ("navi mumbai", "new bombay", "नवी मुंबई"),
    "Delhi": ("delhi", "dilli", "new delhi", "delhi ncr", "dehli", "दिल्ली", "नई दिल्ली", "ਦਿੱਲੀ"),
    "Gurugram": ("gurugram", "gurgaon", "गुरुग्राम", "गुड़गांव"),
    "Noida": ("noida", "नोएडा"),
    "Bangalore": (
        "bangalore",
        "bengaluru",
        "bangalor",
        "bangaluru",
        "banglore",
        "bengalore",
        "बेंगलुरु",
        "बैंगलोर",
        "ಬೆಂಗಳೂರು",
    ),
    "Kolkata": ("kolkata", "calcutta", "kolkatta", "कोलकाता", "কলকাতা"),
    "Chennai": ("chennai", "madras", "chenai", "चेन्नई", "சென்னை"),
    "Hyderabad": ("hyderabad", "hydrabad", "hyderbad", "secunderabad", "हैदराबाद", "హైదరాబాద్"),
    "Pune": ("pune", "poona", "puna", "पुणे", "पूना"),
    "Ahmedabad": ("ahmedabad", "amdavad", "ahmadabad", "अहमदाबाद", "અમદાવાદ"),
    "Surat": ("surat", "सूरत", "સુરત"),
    "Jaipur": ("jaipur", "jaypur", "जयपुर"),
    "Lucknow": ("lucknow", "lakhnau", "लखनऊ"),
    "Kanpur": ("kanpur", "cawnpore", "कानपुर"),
    "Nagpur": ("nagpur", "नागपुर"),
    "Indore": ("indore", "इंदौर"),
    "Bhopal": ("bhopal", "भोपाल"),
    "Visakhapatnam": ("visakhapatnam", "vizag", "vishakhapatnam", "విశాఖపట్నం"),
    "Patna": ("patna", "पटना"),
    "Vadodara": ("vadodara", "baroda", "वडोदरा", "વડોદરા"),
    "Ghaziabad": ("ghaziabad", "गाजियाबाद", "ग़ाज़ियाबाद"),
    "Ludhiana": ("ludhiana", "लुधियाना", "ਲੁਧਿਆਣਾ"),
    "Agra": ("agra", "आगरा"),
    "Nashik": ("nashik", "nasik", "नाशिक"),
    "Faridabad": ("faridabad", "फरीदाबाद"),
    "Meerut": ("meerut", "मेरठ"),
    "Rajkot": ("rajkot", "राजकोट", "રાજકોટ"),
    "Varanasi": ("varanasi", "banaras", "benares", "kashi", "वाराणसी", "बनारस"),
    "Srinagar": ("srinagar", "श्रीनगर"),
    "Amritsar": ("amritsar", "अमृतसर", "ਅੰਮ੍ਰਿਤਸਰ"),
    "Chandigarh": ("chandigarh", "चंडीगढ़", "ਚੰਡੀਗੜ੍ਹ"),
    "Coimbatore": ("coimbatore", "kovai", "कोयंबटूर", "கோயம்புத்தூர்"),
    "Kochi": ("kochi", "cochin", "कोच्चि", "കൊച്ചി"),
    "Thiruvananthapuram": ("thiruvananthapuram", "trivandrum", "तिरुवनंतपुरम", "തിരുവനന്തപുരം"),
    "Mysore": ("mysore", "mysuru", "मैसूर", "ಮೈಸೂರು"),
    "Madurai": ("madurai", "मदुरै", "மதுரை"),
    "Bhubaneswar": ("bhubaneswar", "bhubaneshwar", "भुवनेश्वर", "ଭୁବନେଶ୍ୱର"),
    "Guwahati": ("guwahati", "gauhati", "गुवाहाटी", "গুৱাহাটী"),
    "Raipur": ("raipur", "रायपुर"),
    "Ranchi": ("ranchi", "रांची"),
    "Dehradun": ("dehradun", "देहरादून"),
}

LOCATION_REGIONS: dict[str, str] = {
    "Mumbai": "West India",
    "Navi Mumbai": "West India",
    "Pune": "West India",
    "Nagpur": "West India",
    "Nashik": "West India",
    "Ahmedabad": "West India",
    "Surat": "West India",
    "Vadodara": "West India",
    "Rajkot": "West India",
    "Delhi": "North India",
    "Gurugram": "North India",
    "Noida": "North India",
    "Ghaziabad": "North India",
    "Faridabad": "North India",
    "Meerut": "North India",
    "Agra": "North India",
    "Lucknow": "North India",
    "Kanpur": "North India",
    "Varanasi": "North India",
    "Jaipur": "North India",
    "Ludhiana": "North India",
    "Amritsar": "North India",
    "Chandigarh": "North India",
    "Srinagar": "North India",
    "Dehradun": "North India",
    "Bangalore": "South India",
    "Mysore": "South India",
    "Chennai": "South India",
    "Coimbatore": "South India",
    "Madurai": "South India",
    "Hyderabad": "South India",
    "Visakhapatnam": "South India",
    "Kochi": "South India",
    "Thiruvananthapuram": "South India",
    "Kolkata": "East India",
    "Patna": "East India",
    "Ranchi": "East India",
    "Bhubaneswar": "East India",
    "Guwahati": "North-East India",
    "Indore": "Central India",
    "Bhopal": "Central India",
    "Raipur": "Central India",
}


def _alias_index() -> tuple[dict[str, str], tuple[tuple[str, str], ...]]:
    exact: dict[str, str] = {}
    for canonical, aliases in LOCATION_ALIASES.items():
        exact[canonical.lower()] = canonical
        for alias in aliases:
            exact[alias.lower()] = canonical
    by_length = tuple(sorted(exact.items(), key=lambda item: (-len(item[0]), item[0])))
    return exact, by_length


_LOCATION_EXACT, _LOCATION_BY_LENGTH = _alias_index()


def normalize_location(raw: Any) -> str | None:
    text = _clean_text(raw)
    if not text:
        return None

    lowered = text.lower()
    canonical = _LOCATION_EXACT.get(lowered)
    if canonical:
        return canonical

    # Longest alias first so "navi mumbai" beats "mumbai" and "new delhi" beats "delhi".
    for alias, canonical in _LOCATION_BY_LENGTH:
        if alias.isascii():
            if re.search(r"(?<![a-z])" + re.escape(alias) + r"(?![a-z])", lowered):
                return canonical
        elif alias in lowered:
            return canonical

    return title_case(text)


def region_for_location(location: str | None) -> str | None:
    if not location:
        return None
    canonical = normalize_location(location)
    return LOCATION_REGIONS.get(canonical or "", "Other")


# ---------------------------------------------------------------------------
# Industries
# ---------------------------------------------------------------------------

INDUSTRY_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(
        "Retail - Grocery",
        ("grocery", "groceries", "kirana", "kiryana", "किराना", "किराने", "provision store", "general store", "ration shop"),
        priority=10,
    ),
    KeywordRule(
        "Retail - Clothing",
        (
            "clothing store",
            "clothing shop",
            "clothes shop",
            "clothes store",
            "garment shop",
            "garment store",
            "readymade",
            "boutique",
            "kapde ki dukan",
            "kapde ki dukaan",
            "कपड़े की दुकान",
        ),
        priority=12,
    ),
    KeywordRule(
        "Retail - Electronics",
        ("electronics shop", "electronics store", "mobile shop", "mobile store", "electrical shop"),
        priority=14,
    ),
    KeywordRule(
        "Food & Beverage",
        (
            "restaurant",
            "hotel",
            "dhaba",
            "ढाबा",
            "cafe",
            "bakery",
            "catering",
            "caterer",
            "sweet shop",
            "mithai",
            "मिठाई",
            "tiffin",
            "canteen",
            "रेस्टोरेंट",
            "भोजनालय",
        ),
        priority=16,
    ),
    KeywordRule(
        "Manufacturing - Textiles",
        ("textile", "garment", "fabric", "cloth", "kapde", "kapda", "कपड़", "कपडे", "weaving", "handloom", "powerloom", "बुनाई"),
        priority=20,
    ),
    KeywordRule(
        "Manufacturing - Food Processing",
        ("food processing", "food", "khana", "खाना", "खाद्य", "pickle", "achar", "अचार", "masala", "मसाला", "papad"),
        priority=22,
    ),
    KeywordRule(
        "Manufacturing - Electronics",
        ("electronic", "इलेक्ट्रॉनिक", "pcb"),
        priority=24,
    ),
    KeywordRule(
        "Manufacturing - Pharmaceuticals",
        ("pharmaceutical", "pharma", "medicine", "दवा", "दवाई", "ayurvedic"),
        priority=26,
    ),
    KeywordRule(
        "Manufacturing - Chemicals",
        ("chemical", "रसायन", "paint", "fertiliser", "fertilizer"),
        priority=27,
    ),
    KeywordRule(
        "Manufacturing - Furniture",
        ("furniture", "फर्नीचर", "carpentry", "carpenter", "woodwork"),
        priority=28,
    ),
    KeywordRule(
        "Manufacturing - Leather",
        ("leather", "चमड़ा", "चमड़े", "footwear", "chappal", "shoe"),
        priority=29,
    ),
    KeywordRule(
        "Manufacturing - Plastics",
        ("plastic", "प्लास्टिक", "polymer", "packaging"),
        priority=30,
    ),
    KeywordRule(
        "Manufacturing - Metal Products",
        ("metal", "धातु", "steel", "iron", "लोहा", "fabrication", "casting", "forging"),
        priority=31,
    ),
    KeywordRule(
        "Information Technology",
        ("it", "software", "tech", "technology", "सॉफ्टवेयर", "app development", "web development", "digital marketing"),
        priority=40,
    ),
    KeywordRule(
        "Professional Services",
        ("consulting", "consultant", "consultancy", "परामर्श", "accounting", "chartered accountant", "legal services"),
        priority=42,
    ),
    KeywordRule(
        "Education & Training",
        ("education", "training", "coaching", "tuition", "शिक्षा", "कोचिंग", "school", "institute"),
        priority=44,
    ),
    KeywordRule(
        "Healthcare",
        ("healthcare", "health", "clinic", "hospital", "diagnostic", "स्वास्थ्य", "अस्पताल"),
        priority=46,
    ),
    KeywordRule(
        "Personal Services",
        ("salon", "beauty", "parlor", "parlour", "spa", "tailor", "silai", "सिलाई", "laundry"),
        priority=48,
    ),
    KeywordRule(
        "Repair & Maintenance",
        ("repair", "maintenance", "मरम्मत", "mechanic", "garage", "servicing"),
        priority=50,
    ),
    KeywordRule(
        "Construction",
        ("construction", "निर्माण", "builder", "contractor", "real estate", "thekedar", "ठेकेदार"),
        priority=52,
    ),
    KeywordRule(
        "Agriculture",
        ("agriculture", "farming", "farm", "खेती", "कृषि", "agri", "kheti", "dairy", "डेयरी", "poultry", "fishery"),
        priority=54,
    ),
    KeywordRule(
        "Transportation & Logistics",
        ("transport", "logistics", "परिवहन", "delivery", "courier", "trucking", "tempo"),
        priority=56,
    ),
    KeywordRule(
        "Trading & Distribution",
        ("trading", "trader", "wholesale", "व्यापार", "थोक", "distributor", "distribution", "export", "import"),
        priority=58,
    ),
    KeywordRule(
        "Retail",
        ("retail", "shop", "dukaan", "dukan", "दुकान", "store", "showroom"),
        priority=60,
    ),
    KeywordRule(
        "Manufacturing - Other",
        ("manufacturing", "manufacturer", "factory", "फैक्ट्री", "कारखाना", "karkhana", "udyog", "उद्योग"),
        priority=70,
    ),
)

INDUSTRY_CATEGORIES: tuple[str, ...] = tuple(rule.result for rule in INDUSTRY_RULES)
_INDUSTRY_BY_NAME = {category.lower(): category for category in INDUSTRY_CATEGORIES}


def normalize_industry(raw: Any) -> str | None:
    text = _clean_text(raw).lower()
    if not text:
        return None
    if text in _INDUSTRY_BY_NAME:
        return _INDUSTRY_BY_NAME[text]
    return match_rules(text, INDUSTRY_RULES)


# ---------------------------------------------------------------------------
# Business size
# ---------------------------------------------------------------------------

BUSINESS_SIZE_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(
        "Small",
        ("small-medium", "small medium", "thoda bada", "थोड़ा बड़ा", "few employees", "growing", "developing", "madhyam", "मध्यम"),
        priority=10,
    ),
    KeywordRule(
        "Micro",
        (
            "very small",
            "bahut chota",
            "बहुत छोटा",
            "single person",
            "one man",
            "micro",
            "nano",
            "solo",
            "tiny",
            "chota",
            "chhota",
            "छोटा",
            "छोटी",
            "अकेला",
            "small",
        ),
        priority=20,
    ),
    KeywordRule(
        "Medium",
        ("kaafi bada", "काफी बड़ा", "well established", "medium", "bada", "बड़ा", "बड़ी", "large", "established", "big"),
        priority=30,
    ),
)


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            number = float(value.strip().replace(",", ""))
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def normalize_business_size(size_hint: Any, employee_count: Any = None, turnover: Any = None) -> str | None:
    """Resolve the MSME tier from a size keyword, then headcount, then turnover.

    A canonical tier name is taken as-is; otherwise the synonym table decides.
    Headcount thresholds: <10 Micro, 10-49 Small, >=50 Medium. Turnover
    thresholds in INR: <1 crore Micro, <10 crore Small, else Medium.
    """
    hint = _clean_text(size_hint).lower()
    if hint:
        for size in BUSINESS_SIZES:
            if hint == size.lower():
                return size
        matched = match_rules(hint, BUSINESS_SIZE_RULES)
        if matched:
            return matched

    employees = _as_number(employee_count)
    if employees is not None and employees >= 0:
        if employees < MICRO_EMPLOYEE_LIMIT:
            return "Micro"
        if employees < SMALL_EMPLOYEE_LIMIT:
            return "Small"
        return "Medium"

    amount = _as_number(turnover)
    if amount is not None and amount >= 0:
        if amount < MICRO_TURNOVER_LIMIT:
            return "Micro"
        if amount < SMALL_TURNOVER_LIMIT:
            return "Small"
        return "Medium"

    return None


# ---------------------------------------------------------------------------
# Currency and counts
# ---------------------------------------------------------------------------

CURRENCY_UNITS: dict[str, int] = {
    "crores": 10_000_000,
    "crore": 10_000_000,
    "cr": 10_000_000,
    "करोड़": 10_000_000,
    "करोड": 10_000_000,
    "lakhs": 100_000,
    "lakh": 100_000,
    "lacs": 100_000,
    "lac": 100_000,
    "l": 100_000,
    "लाख": 100_000,
    "thousand": 1_000,
    "k": 1_000,
    "हज़ार": 1_000,
    "हजार": 1_000,
}

_CURRENCY_NOISE = re.compile(r"₹|\binr\b|\brs\.?|\brupees?\b|रुपये|रुपए|रुपया|\bरु\.?")
_DIGIT_GROUPING = re.compile(r"(?<=\d),(?=\d)")
_UNIT_ALTERNATION = "|".join(re.escape(unit) for unit in sorted(CURRENCY_UNITS, key=len, reverse=True))
_AMOUNT_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*(" + _UNIT_ALTERNATION + r")?(?![a-z])")


def normalize_currency(text: Any) -> int | None:
    """Parse an Indian-idiom amount such as "₹50 lakh", "2 crore" or "50L" into rupees."""
    if text is None or isinstance(text, bool):
        return None
    if isinstance(text, int):
        return text if text >= 0 else None
    if isinstance(text, float):
        return int(round(text)) if math.isfinite(text) and text >= 0 else None
    if not isinstance(text, str):
        return None

    cleaned = text.translate(_DEVANAGARI_DIGITS).lower()
    cleaned = _CURRENCY_NOISE.sub(" ", cleaned)
    cleaned = _DIGIT_GROUPING.sub("", cleaned)

    match = _AMOUNT_PATTERN.search(cleaned)
    if not match:
        return None

    try:
        amount = Decimal(match.group(1))
    except InvalidOperation:
        return None

    unit = match.group(2)
    if unit:
        amount *= CURRENCY_UNITS[unit]
    return int(amount.to_integral_value())


_SOLO_MARKERS = re.compile(r"\balone\b|\bsolo\b|\bsingle\b|one man|\bakela\b|अकेला|अकेले|koi nahi|कोई नहीं")
_COUNT_RANGE = re.compile(r"(\d+)\s*(?:-|–|to|se)\s*(\d+)")
_COUNT = re.compile(r"\d+")


def normalize_employee_count(text: Any) -> int | None:
    if text is None or isinstance(text, bool):
        return None
    if isinstance(text, int):
        return text if text >= 0 else None
    if isinstance(text, float):
        return int(round(text)) if math.isfinite(text) and text >= 0 else None
    if not isinstance(text, str):
        return None

    lowered = text.translate(_DEVANAGARI_DIGITS).lower().strip()
    if not lowered:
        return None
    if _SOLO_MARKERS.search(lowered):
        return 1

    span = _COUNT_RANGE.search(lowered)
    if span:
        low, high = int(span.group(1)), int(span.group(2))
        # Mean rounded half up.
        return (low + high + 1) // 2

    number = _COUNT.search(lowered)
    if number:
        return int(number.group(0))
    return None
