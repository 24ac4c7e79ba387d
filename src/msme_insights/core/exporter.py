from __future__ import annotations

import csv
import hashlib
import io
import json
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from typing import Any

from msme_insights.core.normalization import region_for_location
from msme_insights.db.models import Scheme, SchemeInterest, UserAttribute
from msme_insights.types import ExportFormat, ExportPayload

EXPORT_COLUMNS: tuple[str, ...] = (
    "user_id",
    "location",
    "industry",
    "business_size",
    "annual_turnover",
    "employee_count",
    "detected_languages",
    "extraction_confidence",
    "scheme_id",
    "scheme_name",
    "ministry",
    "interest_level",
    "mention_count",
    "first_mentioned_at",
    "last_mentioned_at",
)

MEDIA_TYPES: dict[str, str] = {
    "csv": "text/csv; charset=utf-8",
    "json": "application/json",
}


def anonymize_user_id(user_id: str, salt: str) -> str:
    digest = hashlib.sha256(f"{salt}:{user_id}".encode("utf-8")).hexdigest()
    return f"user_{digest[:12]}"


def export_filename(export_format: ExportFormat, *, anonymize: bool, today: date) -> str:
    suffix = "_anonymized" if anonymize else ""
    return f"analytics_export{suffix}_{today.isoformat()}.{export_format}"


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def build_export_rows(
    attributes: Iterable[UserAttribute],
    interests_by_user: Mapping[str, Sequence[SchemeInterest]],
    schemes: Mapping[int, Scheme],
    *,
    anonymize: bool,
    salt: str,
    max_rows: int | None = None,
) -> list[dict[str, Any]]:
    """Join each user attribute row with its scheme interests.

    Users without interests yield one row with empty scheme columns. When
    anonymizing, the user id becomes a salted token and the location is
    generalized to its region; every other column is left exact.
    """
    rows: list[dict[str, Any]] = []
    for attribute in attributes:
        hide = anonymize or attribute.is_anonymized
        base = {
            "user_id": anonymize_user_id(attribute.user_id, salt) if hide else attribute.user_id,
            "location": region_for_location(attribute.location) if hide else attribute.location,
            "industry": attribute.industry,
            "business_size": attribute.business_size,
            "annual_turnover": attribute.annual_turnover,
            "employee_count": attribute.employee_count,
            "detected_languages": list(attribute.detected_languages or []),
            "extraction_confidence": attribute.extraction_confidence,
        }

        interests = interests_by_user.get(attribute.user_id) or [None]
        for interest in interests:
            row = dict(base)
            scheme = schemes.get(interest.scheme_id) if interest is not None else None
            row.update(
                {
                    "scheme_id": interest.scheme_id if interest else None,
                    "scheme_name": interest.scheme_name if interest else None,
                    "ministry": scheme.ministry if scheme else None,
                    "interest_level": interest.interest_level if interest else None,
                    "mention_count": interest.mention_count if interest else None,
                    "first_mentioned_at": _timestamp(interest.first_mentioned_at) if interest else None,
                    "last_mentioned_at": _timestamp(interest.last_mentioned_at) if interest else None,
                }
            )
            rows.append(row)
            if max_rows is not None and len(rows) >= max_rows:
                return rows
    return rows


def render_csv(rows: Sequence[Mapping[str, Any]]) -> bytes:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        flat = {key: ("" if value is None else value) for key, value in row.items()}
        flat["detected_languages"] = "; ".join(row.get("detected_languages") or [])
        writer.writerow(flat)
    return buffer.getvalue().encode("utf-8")


def render_json(rows: Sequence[Mapping[str, Any]]) -> bytes:
    return json.dumps(list(rows), ensure_ascii=False, indent=2, default=str).encode("utf-8")


def render_export(
    rows: Sequence[Mapping[str, Any]],
    export_format: ExportFormat,
    *,
    anonymize: bool,
    today: date,
) -> ExportPayload:
    content = render_csv(rows) if export_format == "csv" else render_json(rows)
    return ExportPayload(
        filename=export_filename(export_format, anonymize=anonymize, today=today),
        media_type=MEDIA_TYPES[export_format],
        content=content,
        row_count=len(rows),
    )
