from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable
from pathlib import Path
from typing import Any, TypeVar

import typer

from msme_insights.config import get_settings
from msme_insights.core.analytics import AnalyticsAggregator
from msme_insights.core.jobs import ExtractionJobManager
from msme_insights.db.init import init_database
from msme_insights.db.repositories import Repository
from msme_insights.db.session import SessionLocal, engine
from msme_insights.errors import InsightsError
from msme_insights.logging_config import configure_logging
from msme_insights.types import AnalyticsFilters, DateRange, ExportOptions, Pagination, SortSpec

T = TypeVar("T")

app = typer.Typer(help="MSME Insights CLI")
conversation_app = typer.Typer(help="Load conversations")
queue_app = typer.Typer(help="Extraction job queue")
analytics_app = typer.Typer(help="Analytics views and exports")

app.add_typer(conversation_app, name="conversation")
app.add_typer(queue_app, name="queue")
app.add_typer(analytics_app, name="analytics")

_INITIALIZED = False


async def ensure_initialized() -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return
    await init_database()
    _INITIALIZED = True


async def _with_database(work: Awaitable[T]) -> T:
    try:
        await ensure_initialized()
        return await work
    finally:
        await engine.dispose()


def run(work: Awaitable[T]) -> T:
    configure_logging()
    try:
        return asyncio.run(_with_database(work))
    except InsightsError as exc:
        typer.echo(json.dumps({"ok": False, **exc.to_dict()}, indent=2), err=True)
        raise typer.Exit(code=1) from exc


def echo(payload: Any) -> None:
    if hasattr(payload, "model_dump"):
        payload = payload.model_dump(by_alias=True, mode="json")
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def build_filters(
    start_date: str | None,
    end_date: str | None,
    location: str | None,
    industry: str | None,
    scheme_id: int | None,
    business_size: str | None,
    languages: list[str] | None,
) -> AnalyticsFilters:
    return AnalyticsFilters(
        date_range=DateRange(start_date=start_date, end_date=end_date),
        location=location,
        industry=industry,
        scheme_id=scheme_id,
        business_size=business_size,
        languages=languages or [],
    )


@app.command("init")
def init_cmd() -> None:
    """Initialize database, directories, and the scheme catalog."""
    configure_logging()

    async def _init() -> dict[str, int]:
        try:
            return await init_database()
        finally:
            await engine.dispose()

    result = asyncio.run(_init())
    typer.echo(json.dumps({"ok": True, **result}, indent=2))


@conversation_app.command("import")
def conversation_import(file: Path = typer.Option(..., "--file", exists=True, readable=True)) -> None:
    """Load a conversation from JSON: {"user_id": ..., "messages": [{"role", "content"}]}."""
    payload = json.loads(file.read_text(encoding="utf-8"))

    async def _import() -> dict[str, Any]:
        async with SessionLocal() as session:
            repo = Repository(session)
            conversation = await repo.create_conversation(
                user_id=str(payload["user_id"]),
                title=str(payload.get("title", "")),
            )
            for message in payload.get("messages", []):
                await repo.append_message(conversation.id, message.get("role", "user"), message["content"])
            conversation = await repo.get_conversation(conversation.id)
            return {"id": conversation.id, "message_count": conversation.message_count}

    echo(run(_import()))


@app.command("extract")
def extract_cmd(
    conversation_id: int = typer.Option(..., "--conversation-id"),
    auto: bool = typer.Option(False, "--auto", help="Queue only when the trigger policy fires"),
) -> None:
    manager = ExtractionJobManager()
    if auto:
        outcome = run(manager.trigger_if_needed(conversation_id))
        echo(outcome if outcome is not None else {"triggered": False})
        return
    echo(run(manager.trigger(conversation_id, manual=True)))


@queue_app.command("process")
def queue_process(limit: int = typer.Option(0, "--limit", help="Batch size; 0 uses the configured default")) -> None:
    echo(run(ExtractionJobManager().process_queue(limit or None)))


@queue_app.command("stats")
def queue_stats() -> None:
    echo(run(ExtractionJobManager().queue_stats()))


@queue_app.command("clear")
def queue_clear(days: int = typer.Option(None, "--days", help="Retention in days")) -> None:
    deleted = run(ExtractionJobManager().clear_old_jobs(days))
    echo({"deleted": deleted})


@analytics_app.command("summary")
def analytics_summary(
    start_date: str = typer.Option(None, "--start-date"),
    end_date: str = typer.Option(None, "--end-date"),
    location: str = typer.Option(None, "--location"),
    industry: str = typer.Option(None, "--industry"),
    scheme_id: int = typer.Option(None, "--scheme-id"),
    business_size: str = typer.Option(None, "--business-size"),
    language: list[str] = typer.Option(None, "--language"),
) -> None:
    filters = build_filters(start_date, end_date, location, industry, scheme_id, business_size, language)
    echo(run(AnalyticsAggregator().get_summary(filters)))


@analytics_app.command("schemes")
def analytics_schemes(
    page: int = typer.Option(1, "--page"),
    page_size: int = typer.Option(20, "--page-size"),
    sort_field: str = typer.Option("last_mentioned_at", "--sort"),
    direction: str = typer.Option("desc", "--direction"),
    scheme_id: int = typer.Option(None, "--scheme-id"),
    location: str = typer.Option(None, "--location"),
    industry: str = typer.Option(None, "--industry"),
) -> None:
    filters = build_filters(None, None, location, industry, scheme_id, None, None)
    result = run(
        AnalyticsAggregator().get_scheme_interests(
            filters,
            Pagination(page=page, page_size=page_size),
            SortSpec(field=sort_field, direction=direction),
        )
    )
    echo(result)


@analytics_app.command("users")
def analytics_users(
    page: int = typer.Option(1, "--page"),
    page_size: int = typer.Option(20, "--page-size"),
    sort_field: str = typer.Option("updated_at", "--sort"),
    direction: str = typer.Option("desc", "--direction"),
    location: str = typer.Option(None, "--location"),
    industry: str = typer.Option(None, "--industry"),
    business_size: str = typer.Option(None, "--business-size"),
) -> None:
    filters = build_filters(None, None, location, industry, None, business_size, None)
    result = run(
        AnalyticsAggregator().get_user_attributes(
            filters,
            Pagination(page=page, page_size=page_size),
            SortSpec(field=sort_field, direction=direction),
        )
    )
    echo(result)


@analytics_app.command("options")
def analytics_options() -> None:
    echo(run(AnalyticsAggregator().get_filter_options()))


@analytics_app.command("export")
def analytics_export(
    format: str = typer.Option("csv", "--format"),
    anonymize: bool = typer.Option(False, "--anonymize"),
    out: Path = typer.Option(None, "--out", help="Target file or directory"),
    start_date: str = typer.Option(None, "--start-date"),
    end_date: str = typer.Option(None, "--end-date"),
    location: str = typer.Option(None, "--location"),
    industry: str = typer.Option(None, "--industry"),
    scheme_id: int = typer.Option(None, "--scheme-id"),
    business_size: str = typer.Option(None, "--business-size"),
    language: list[str] = typer.Option(None, "--language"),
) -> None:
    if format not in {"csv", "json"}:
        raise typer.BadParameter("format must be csv or json")

    filters = build_filters(start_date, end_date, location, industry, scheme_id, business_size, language)
    payload = run(AnalyticsAggregator().export_data(ExportOptions(format=format, filters=filters, anonymize=anonymize)))

    target = out or get_settings().export_dir
    if target.suffix == "":
        target.mkdir(parents=True, exist_ok=True)
        target = target / payload.filename
    else:
        target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(payload.content)
    echo({"path": str(target), "rows": payload.row_count, "media_type": payload.media_type})


@analytics_app.command("anonymize-user")
def analytics_anonymize_user(user_id: str = typer.Option(..., "--user-id")) -> None:
    updated = run(AnalyticsAggregator().anonymize_user(user_id))
    if not updated:
        raise typer.BadParameter(f"no attributes stored for user {user_id}")
    echo({"ok": True, "user_id": user_id})
