from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from msme_insights.config import get_settings
from msme_insights.db.base import Base, utcnow
from msme_insights.db.models import (
    ACTIVE_JOB_STATUSES,
    Conversation,
    ExtractionJob,
    Message,
    Scheme,
    SchemeInterest,
    UserAttribute,
)
from msme_insights.errors import PersistenceError
from msme_insights.types import INTEREST_LEVELS

logger = logging.getLogger(__name__)

T = TypeVar("T")

ATTRIBUTE_FIELDS = ("location", "industry", "business_size", "annual_turnover", "employee_count")
INTEREST_RANK = {level: rank for rank, level in enumerate(INTEREST_LEVELS)}
DIALECT_INSERTS = {"sqlite": sqlite_insert, "postgresql": postgresql_insert}


def guarded(action: str) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Bound a repository call by the datastore timeout and surface failures as PersistenceError."""

    def decorator(method: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(method)
        async def wrapper(self: Repository, *args: Any, **kwargs: Any) -> T:
            try:
                return await asyncio.wait_for(method(self, *args, **kwargs), timeout=self.timeout_sec)
            except TimeoutError as exc:
                await self.session.rollback()
                raise PersistenceError(f"{action} timed out after {self.timeout_sec}s") from exc
            except SQLAlchemyError as exc:
                logger.warning("Datastore call failed action=%s error=%s", action, exc)
                await self.session.rollback()
                raise PersistenceError(f"{action} failed: {exc.__class__.__name__}") from exc

        return wrapper

    return decorator


def upgrade_interest(current: str, incoming: str) -> str:
    if INTEREST_RANK.get(incoming, 0) > INTEREST_RANK.get(current, 0):
        return incoming
    return current


def merge_attribute_fields(
    current: dict[str, Any],
    current_confidence: dict[str, float],
    incoming: dict[str, Any],
    confidence: float,
) -> dict[str, Any]:
    """Pick the incoming fields allowed to land on a stored attribute row.

    Empty fields are always fillable; a field that already holds a value is
    only replaced by an extraction of equal or higher confidence.
    """
    accepted: dict[str, Any] = {}
    for name, value in incoming.items():
        if value is None:
            continue
        if current.get(name) is None or confidence >= current_confidence.get(name, 0.0):
            accepted[name] = value
    return accepted


def match_scheme(schemes: Iterable[Scheme], scheme_name: str) -> Scheme | None:
    """Case-insensitive containment in either direction; the longest catalog match wins."""
    needle = " ".join(scheme_name.lower().split())
    if not needle:
        return None

    best: tuple[int, Scheme] | None = None
    for scheme in schemes:
        for candidate in [scheme.scheme_name, *(scheme.aliases_json or [])]:
            label = " ".join(candidate.lower().split())
            if not label:
                continue
            if label == needle:
                return scheme
            if label in needle or needle in label:
                score = len(label)
                if best is None or score > best[0]:
                    best = (score, scheme)
    return best[1] if best else None


class Repository:
    def __init__(self, session: AsyncSession, timeout_sec: float | None = None):
        self.session = session
        self.timeout_sec = timeout_sec if timeout_sec is not None else get_settings().db_timeout_sec

    async def _insert_if_missing(self, model: type[Base], conflict_columns: Sequence[str], **values: Any) -> None:
        """INSERT ... ON CONFLICT DO NOTHING; the caller's following SELECT sees whichever row won."""
        dialect = self.session.get_bind().dialect.name
        insert = DIALECT_INSERTS.get(dialect)
        if insert is None:
            raise NotImplementedError(f"upsert is not supported on {dialect}")
        statement = insert(model).values(**values).on_conflict_do_nothing(index_elements=list(conflict_columns))
        await self.session.execute(statement)

    # conversations

    @guarded("create conversation")
    async def create_conversation(self, user_id: str, title: str = "") -> Conversation:
        conversation = Conversation(user_id=user_id, title=title)
        self.session.add(conversation)
        await self.session.commit()
        await self.session.refresh(conversation)
        return conversation

    @guarded("append message")
    async def append_message(self, conversation_id: int, role: str, content: str) -> Message:
        conversation = await self.session.get(Conversation, conversation_id)
        if conversation is None:
            raise ValueError(f"conversation {conversation_id} not found")

        now = utcnow()
        message = Message(conversation_id=conversation_id, role=role, content=content, created_at=now)
        self.session.add(message)
        conversation.message_count += 1
        conversation.last_active_at = now
        await self.session.commit()
        await self.session.refresh(message)
        return message

    @guarded("load conversation")
    async def get_conversation(self, conversation_id: int) -> Conversation | None:
        return await self.session.get(Conversation, conversation_id, populate_existing=True)

    @guarded("load messages")
    async def list_messages(self, conversation_id: int, limit: int | None = None) -> list[Message]:
        if limit is None:
            statement = select(Message).where(Message.conversation_id == conversation_id).order_by(Message.id)
            return list((await self.session.scalars(statement)).all())

        statement = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.id.desc())
            .limit(limit)
        )
        recent = list((await self.session.scalars(statement)).all())
        return list(reversed(recent))

    # schemes

    @guarded("create scheme")
    async def create_scheme(
        self,
        scheme_name: str,
        *,
        ministry: str = "",
        category: str = "",
        aliases: Sequence[str] = (),
        is_active: bool = True,
    ) -> Scheme:
        scheme = Scheme(
            scheme_name=scheme_name,
            ministry=ministry,
            category=category,
            aliases_json=list(aliases),
            is_active=is_active,
        )
        self.session.add(scheme)
        await self.session.commit()
        await self.session.refresh(scheme)
        return scheme

    @guarded("list schemes")
    async def list_schemes(self, active_only: bool = True) -> list[Scheme]:
        statement = select(Scheme).order_by(Scheme.id)
        if active_only:
            statement = statement.where(Scheme.is_active.is_(True))
        return list((await self.session.scalars(statement)).all())

    # extraction jobs

    @guarded("load job")
    async def get_job(self, job_id: int) -> ExtractionJob | None:
        return await self.session.get(ExtractionJob, job_id, populate_existing=True)

    @guarded("find active job")
    async def find_active_job(self, conversation_id: int, message_count: int) -> ExtractionJob | None:
        statement = (
            select(ExtractionJob)
            .where(
                ExtractionJob.conversation_id == conversation_id,
                ExtractionJob.message_count_at_extraction == message_count,
                ExtractionJob.status.in_(ACTIVE_JOB_STATUSES),
            )
            .order_by(ExtractionJob.id)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(statement)

    @guarded("load last job")
    async def last_job_for_conversation(self, conversation_id: int) -> ExtractionJob | None:
        statement = (
            select(ExtractionJob)
            .where(ExtractionJob.conversation_id == conversation_id)
            .order_by(ExtractionJob.created_at.desc(), ExtractionJob.id.desc())
            .limit(1)
        )
        return await self.session.scalar(statement)

    @guarded("create job")
    async def create_job(
        self,
        *,
        conversation_id: int,
        user_id: str,
        message_count: int,
        status: str = "pending",
        priority: str = "normal",
    ) -> ExtractionJob | None:
        """Insert a job unless an active one already holds the key; None means another writer won."""
        job = ExtractionJob(
            conversation_id=conversation_id,
            user_id=user_id,
            message_count_at_extraction=message_count,
            status=status,
            priority=priority,
            started_at=utcnow() if status == "processing" else None,
        )
        self.session.add(job)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            logger.info(
                "Active extraction job already exists conversation_id=%s message_count=%s",
                conversation_id,
                message_count,
            )
            return None
        await self.session.refresh(job)
        return job

    @guarded("claim job")
    async def claim_job(self, job_id: int, *, priority: str | None = None) -> bool:
        values: dict[str, Any] = {"status": "processing", "started_at": utcnow()}
        if priority is not None:
            values["priority"] = priority
        result = await self.session.execute(
            update(ExtractionJob)
            .where(ExtractionJob.id == job_id, ExtractionJob.status == "pending")
            .values(**values)
        )
        await self.session.commit()
        return result.rowcount == 1

    @guarded("update job")
    async def update_job(
        self,
        job_id: int,
        *,
        status: str | None = None,
        error_message: str | None = None,
        notes: str | None = None,
        completed: bool = False,
    ) -> ExtractionJob:
        job = await self.session.get(ExtractionJob, job_id, populate_existing=True)
        if not job:
            raise ValueError(f"job {job_id} not found")

        if status is not None:
            job.status = status
        if error_message is not None:
            job.error_message = error_message
        if notes is not None:
            job.notes = notes
        if completed:
            job.completed_at = utcnow()

        await self.session.commit()
        await self.session.refresh(job)
        return job

    @guarded("list pending jobs")
    async def list_pending_jobs(self, limit: int) -> list[ExtractionJob]:
        statement = (
            select(ExtractionJob)
            .where(ExtractionJob.status == "pending")
            .order_by(
                case((ExtractionJob.priority == "high", 0), else_=1),
                ExtractionJob.created_at,
                ExtractionJob.id,
            )
            .limit(limit)
        )
        return list((await self.session.scalars(statement)).all())

    @guarded("count jobs")
    async def job_status_counts(self) -> dict[str, int]:
        statement = select(ExtractionJob.status, func.count(ExtractionJob.id)).group_by(ExtractionJob.status)
        rows = (await self.session.execute(statement)).all()
        return {status: count for status, count in rows}

    @guarded("fail stale jobs")
    async def fail_stale_jobs(self, started_before: datetime) -> int:
        result = await self.session.execute(
            update(ExtractionJob)
            .where(ExtractionJob.status == "processing", ExtractionJob.started_at < started_before)
            .values(status="failed", error_message="stale: processing never finished", completed_at=utcnow())
        )
        await self.session.commit()
        return result.rowcount or 0

    @guarded("clear jobs")
    async def delete_finished_jobs_before(self, cutoff: datetime) -> int:
        result = await self.session.execute(
            delete(ExtractionJob).where(
                ExtractionJob.status.in_(("completed", "failed")),
                ExtractionJob.completed_at.is_not(None),
                ExtractionJob.completed_at < cutoff,
            )
        )
        await self.session.commit()
        return result.rowcount or 0

    # user attributes

    @guarded("load user attributes")
    async def get_user_attribute(self, user_id: str) -> UserAttribute | None:
        statement = select(UserAttribute).where(UserAttribute.user_id == user_id)
        return await self.session.scalar(statement.execution_options(populate_existing=True))

    @guarded("save user attributes")
    async def upsert_user_attribute(
        self,
        user_id: str,
        *,
        fields: dict[str, Any],
        confidence: float,
        detected_languages: Sequence[str] = (),
        original_values: dict[str, Any] | None = None,
        notes: str = "",
        conversation_id: int | None = None,
    ) -> tuple[UserAttribute, list[str]]:
        await self._insert_if_missing(
            UserAttribute,
            ("user_id",),
            user_id=user_id,
            detected_languages=[],
            original_language_data={},
            field_confidence_json={},
        )
        statement = select(UserAttribute).where(UserAttribute.user_id == user_id).with_for_update()
        existing = await self.session.scalar(statement.execution_options(populate_existing=True))

        current = {name: getattr(existing, name) for name in ATTRIBUTE_FIELDS}
        field_confidence = dict(existing.field_confidence_json or {})
        accepted = merge_attribute_fields(current, field_confidence, fields, confidence)

        for name, value in accepted.items():
            setattr(existing, name, value)
            field_confidence[name] = confidence
        existing.field_confidence_json = field_confidence

        languages = list(existing.detected_languages or [])
        for tag in detected_languages:
            if tag not in languages:
                languages.append(tag)
        existing.detected_languages = languages

        if original_values:
            original = dict(existing.original_language_data or {})
            original.update({name: value for name, value in original_values.items() if name in accepted})
            existing.original_language_data = original

        if accepted or existing.extraction_confidence is None:
            existing.extraction_confidence = confidence
            existing.extraction_notes = notes
            existing.conversation_id = conversation_id
        existing.updated_at = utcnow()

        await self.session.commit()
        await self.session.refresh(existing)
        return existing, sorted(accepted)

    @guarded("list user attributes")
    async def list_user_attributes(
        self,
        *,
        location: str | None = None,
        industry: str | None = None,
        business_size: str | None = None,
        updated_between: tuple[datetime, datetime] | None = None,
    ) -> list[UserAttribute]:
        statement = select(UserAttribute).order_by(UserAttribute.id)
        if location:
            statement = statement.where(func.lower(UserAttribute.location) == location.lower())
        if industry:
            statement = statement.where(func.lower(UserAttribute.industry) == industry.lower())
        if business_size:
            statement = statement.where(UserAttribute.business_size == business_size)
        if updated_between is not None:
            statement = statement.where(UserAttribute.updated_at.between(*updated_between))
        return list((await self.session.scalars(statement)).all())

    @guarded("anonymize user")
    async def mark_user_anonymized(self, user_id: str) -> bool:
        result = await self.session.execute(
            update(UserAttribute).where(UserAttribute.user_id == user_id).values(is_anonymized=True)
        )
        await self.session.commit()
        return result.rowcount == 1

    # scheme interests

    @guarded("save scheme interest")
    async def upsert_scheme_interest(
        self,
        user_id: str,
        scheme: Scheme,
        *,
        interest_level: str,
        languages: Sequence[str] = (),
        conversation_id: int | None = None,
    ) -> SchemeInterest:
        now = utcnow()
        # A fresh row starts at zero mentions and is counted by the merge below.
        await self._insert_if_missing(
            SchemeInterest,
            ("user_id", "scheme_id"),
            user_id=user_id,
            scheme_id=scheme.id,
            scheme_name=scheme.scheme_name,
            interest_level=interest_level,
            mention_count=0,
            mentioned_in_languages=[],
            first_mentioned_at=now,
            last_mentioned_at=now,
        )
        statement = (
            select(SchemeInterest)
            .where(SchemeInterest.user_id == user_id, SchemeInterest.scheme_id == scheme.id)
            .with_for_update()
        )
        interest = await self.session.scalar(statement.execution_options(populate_existing=True))

        interest.interest_level = upgrade_interest(interest.interest_level, interest_level)
        interest.mention_count += 1
        interest.mentioned_in_languages = list(
            dict.fromkeys([*(interest.mentioned_in_languages or []), *languages])
        )
        interest.conversation_id = conversation_id
        interest.last_mentioned_at = now

        await self.session.commit()
        await self.session.refresh(interest)
        return interest

    @guarded("list scheme interests")
    async def list_scheme_interests(
        self,
        *,
        user_id: str | None = None,
        scheme_id: int | None = None,
        mentioned_between: tuple[datetime, datetime] | None = None,
    ) -> list[SchemeInterest]:
        statement = select(SchemeInterest).order_by(SchemeInterest.id)
        if user_id is not None:
            statement = statement.where(SchemeInterest.user_id == user_id)
        if scheme_id is not None:
            statement = statement.where(SchemeInterest.scheme_id == scheme_id)
        if mentioned_between is not None:
            statement = statement.where(SchemeInterest.last_mentioned_at.between(*mentioned_between))
        return list((await self.session.scalars(statement)).all())

    @guarded("list conversations")
    async def list_conversations(
        self,
        *,
        created_between: tuple[datetime, datetime] | None = None,
    ) -> list[Conversation]:
        statement = select(Conversation).order_by(Conversation.created_at, Conversation.id)
        if created_between is not None:
            statement = statement.where(Conversation.created_at.between(*created_between))
        return list((await self.session.scalars(statement)).all())
