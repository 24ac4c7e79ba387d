from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

EXTRACTION_INSTRUCTIONS = """
You are a multilingual data extraction assistant analysing conversations between
Indian MSME owners and an assistant that explains government schemes.

## LANGUAGES
Hindi (Devanagari), English, Hinglish (Hindi-English code-switching), regional
languages (Marathi, Tamil, Telugu, Bengali, Gujarati, Kannada, Malayalam,
Punjabi), informal speech and phonetic spellings. Users may switch language
mid-conversation.

## REAL-WORLD INPUT
Typos and spelling variants:
- "Bangalor", "Bangaluru", "Bengaluru" -> "Bangalore"
- "Mumbay", "Bombay" -> "Mumbai"
- "dukan", "dukaan" -> shop
Code-switching:
- "Mera business Mumbai me hai" -> location: "Mumbai"
- "I have chota dukaan in Delhi" -> location: "Delhi", businessSize: "Micro"
- "5 worker hai mere paas" -> employeeCount: 5
- "kapde ka kaam karta hu" -> industry: "Manufacturing - Textiles"
Phonetic words: "karobar" = business, "kaam"/"kam" = work, "paisa"/"paise" = money.

## EXAMPLES
1. (Hindi) "मेरा बिज़नेस मुंबई में है"
   -> location: "Mumbai"
2. (Hinglish) "I have small manufacturing unit in Pune, kapde banate hain"
   -> location: "Pune", industry: "Manufacturing - Textiles", businessSize: "Small"
3. (Informal) "chota sa dukaan hai bangalor me, grocery bechta hu"
   -> location: "Bangalore", industry: "Retail - Grocery", businessSize: "Micro"
4. (Numbers) "5 employees hai, turnover 50 lakh ka hai annually"
   -> employeeCount: 5, annualTurnover: 5000000, businessSize: "Micro"
5. (Marathi) "माझा व्यवसाय पुणे मध्ये आहे"
   -> location: "Pune"
6. (Mixed currency) "मेरी दुकान है Delhi में, 10 लाख का सालाना टर्नओवर है"
   -> location: "Delhi", annualTurnover: 1000000
7. (Informal description) "मैं कपड़े का काम करता हूं, छोटा सा setup है"
   -> industry: "Manufacturing - Textiles", businessSize: "Micro"

## TAXONOMY
Location: English city name ("Dilli"/"दिल्ली" -> "Delhi", "Calcutta" -> "Kolkata",
"Madras" -> "Chennai", "बेंगलुरु" -> "Bangalore").
Industry, one of:
{industry_categories}
Business size: "Micro", "Small" or "Medium".
- Micro: chota, छोटा, nano, solo, tiny, micro
- Small: madhyam, मध्यम, growing, few employees, small-medium
- Medium: bada, बड़ा, large, established, medium, big
Currency, always integer INR:
- "50 lakh", "50L", "₹50 lakh" -> 5000000
- "5 crore", "5 cr", "₹5 crore" -> 50000000
- "10 हजार", "10k" -> 10000
Employee count: "5 log", "5 workers", "5 कर्मचारी" -> 5; "alone", "अकेला" -> 1;
"10-15 log" -> 13.

## SCHEME INTEREST
Detect official names, colloquial names and acronyms (PMEGP, MUDRA, CGTMSE,
Stand-Up India). Interest level:
- mentioned: the scheme name appears
- inquired: the user asks about the scheme
- detailed: the user discusses eligibility, documents or the application

## CONFIDENCE
- 0.9-1.0: explicit mention in any language
- 0.7-0.9: clear inference from context
- 0.5-0.7: contextual inference or repeated indirect mentions
- 0.3-0.5: weak inference
- below 0.3: too uncertain, leave fields null
Only values with confidence >= 0.5 are stored.

## RULES
1. Output normalized English values.
2. Use the whole conversation, including the assistant's questions.
3. Set a field to null when unclear. Never invent values.
4. Never extract personal identifiers such as names or phone numbers.

## OUTPUT
Return ONLY a JSON object:
{{
  "location": string | null,
  "industry": string | null,
  "businessSize": "Micro" | "Small" | "Medium" | null,
  "annualTurnover": number | null,
  "employeeCount": number | null,
  "schemeInterests": [{{"schemeName": string, "interestLevel": "mentioned" | "inquired" | "detailed"}}],
  "confidence": number between 0 and 1,
  "extractionNotes": string (1-2 sentences on how values were inferred),
  "detectedLanguages": string[]
}}
""".strip()

EXTRACTION_PROMPT = """
{instructions}

---

{transcript}

---

Now extract the structured business information from this conversation and return ONLY the JSON object specified above.
""".strip()

ROLE_LABELS = {"user": "User", "assistant": "Assistant", "system": "System"}


def _role_and_content(message: Any) -> tuple[str, str]:
    if isinstance(message, Mapping):
        return str(message.get("role") or "user"), str(message.get("content") or "")
    return str(getattr(message, "role", "user") or "user"), str(getattr(message, "content", "") or "")


def format_transcript(history: Iterable[Any]) -> str:
    lines = []
    for index, message in enumerate(history, start=1):
        role, content = _role_and_content(message)
        lines.append(f"[Message {index}] {ROLE_LABELS.get(role, 'User')}: {content}")
    return "\n\n".join(lines)


def build_extraction_prompt(history: Iterable[Any], industry_categories: Iterable[str] = ()) -> str:
    from_table = "\n".join(f"- {category}" for category in industry_categories)
    instructions = EXTRACTION_INSTRUCTIONS.format(industry_categories=from_table or "- Other")
    return EXTRACTION_PROMPT.format(instructions=instructions, transcript=format_transcript(history))
