from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from msme_insights.config import Settings, get_settings
from msme_insights.core.cache import TTLCache, get_analytics_cache
from msme_insights.core.normalization import (
    normalize_business_size,
    normalize_industry,
    normalize_location,
)
from msme_insights.core.triggers import TriggerPolicy
from msme_insights.db.base import utcnow
from msme_insights.db.models import ExtractionJob, Scheme
from msme_insights.db.repositories import Repository, match_scheme, upgrade_interest
from msme_insights.db.session import SessionLocal
from msme_insights.errors import ConversationNotFoundError, InsightsError, JobStateError, PersistenceError
from msme_insights.llm.extractor import AIExtractor
from msme_insights.types import (
    ChatMessage,
    ExtractionResult,
    JobOutcome,
    NormalizedAttributes,
    QueueResult,
    QueueStats,
)

logger = logging.getLogger(__name__)

ANALYTICS_CACHE_PATTERN = "analytics:*"


def normalize_extraction(result: ExtractionResult) -> tuple[NormalizedAttributes, dict[str, Any]]:
    """Collapse raw extraction values onto the canonical vocabulary.

    Also returns the raw values that differ from their normalized form, so the
    user's original wording is kept alongside the canonical value.
    """
    normalized = NormalizedAttributes(
        location=normalize_location(result.location),
        industry=normalize_industry(result.industry),
        business_size=normalize_business_size(result.business_size, result.employee_count, result.annual_turnover),
        annual_turnover=result.annual_turnover,
        employee_count=result.employee_count,
    )

    original: dict[str, Any] = {}
    for name in ("location", "industry", "business_size"):
        raw = getattr(result, name)
        if raw is not None and raw != getattr(normalized, name):
            original[name] = raw
    return normalized, original


class ExtractionJobManager:
    def __init__(
        self,
        *,
        settings: Settings | None = None,
        extractor: AIExtractor | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        cache: TTLCache | None = None,
    ):
        self.settings = settings or get_settings()
        self.extractor = extractor or AIExtractor(self.settings)
        self.session_factory = session_factory or SessionLocal
        self.cache = cache or get_analytics_cache()
        self.policy = TriggerPolicy(
            message_threshold=self.settings.trigger_message_threshold,
            recent_window=self.settings.trigger_recent_message_window,
        )

    async def trigger(self, conversation_id: int, *, manual: bool = True) -> JobOutcome:
        """Create or reuse the extraction job for the conversation's current message count.

        Manual triggers run the job inline; automatic ones leave it pending for
        the queue. A job already processing at the same key is returned as is.
        """
        async with self.session_factory() as session:
            repo = Repository(session)
            conversation = await repo.get_conversation(conversation_id)
            if conversation is None:
                raise ConversationNotFoundError(f"conversation {conversation_id} not found")

            job, reused, run_now = await self._acquire_job(
                repo,
                conversation_id=conversation.id,
                user_id=conversation.user_id,
                message_count=conversation.message_count,
                manual=manual,
            )

        logger.info(
            "Extraction trigger conversation_id=%s job_id=%s reused=%s manual=%s status=%s",
            conversation_id,
            job.id,
            reused,
            manual,
            job.status,
        )
        if run_now:
            outcome = await self.run_job(job.id)
            return outcome.model_copy(update={"reused": reused})
        return self._outcome(job, reused=reused)

    async def _acquire_job(
        self,
        repo: Repository,
        *,
        conversation_id: int,
        user_id: str,
        message_count: int,
        manual: bool,
    ) -> tuple[ExtractionJob, bool, bool]:
        status, priority = ("processing", "high") if manual else ("pending", "normal")

        for _ in range(3):
            existing = await repo.find_active_job(conversation_id, message_count)
            if existing is None:
                created = await repo.create_job(
                    conversation_id=conversation_id,
                    user_id=user_id,
                    message_count=message_count,
                    status=status,
                    priority=priority,
                )
                if created is not None:
                    return created, False, manual
                # Another writer took the key between the read and the insert.
                continue

            if existing.status == "pending" and manual:
                if await repo.claim_job(existing.id, priority="high"):
                    promoted = await repo.get_job(existing.id)
                    return promoted, True, True
                existing = await repo.get_job(existing.id)
            return existing, True, False

        raise PersistenceError(f"could not acquire extraction job for conversation {conversation_id}")

    async def run_job(self, job_id: int) -> JobOutcome:
        async with self.session_factory() as session:
            repo = Repository(session)
            job = await repo.get_job(job_id)
            if job is None:
                raise JobStateError(f"job {job_id} not found")
            if job.status != "processing":
                raise JobStateError(f"job {job_id} is {job.status}, expected processing")
            conversation_id, priority = job.conversation_id, job.priority

            try:
                outcome = await self._process(repo, session, job)
            except Exception as exc:
                logger.exception("Extraction job failed job_id=%s", job_id)
                failure = exc.to_dict() if isinstance(exc, InsightsError) else {
                    "reason": "unexpected_error",
                    "message": str(exc) or exc.__class__.__name__,
                }
                try:
                    failed = await repo.update_job(
                        job_id,
                        status="failed",
                        error_message=f"{failure['reason']}: {failure['message']}",
                        completed=True,
                    )
                except PersistenceError as write_exc:
                    # Left processing; clear_old_jobs fails it once it goes stale.
                    logger.error("Could not record job failure job_id=%s error=%s", job_id, write_exc)
                    return JobOutcome(
                        job_id=job_id,
                        conversation_id=conversation_id,
                        status="failed",
                        priority=priority,
                        failure=failure,
                    )
                return self._outcome(failed, failure=failure)

        if outcome.status == "completed":
            self.cache.delete_pattern(ANALYTICS_CACHE_PATTERN)
        return outcome

    async def _process(self, repo: Repository, session: AsyncSession, job: ExtractionJob) -> JobOutcome:
        messages = await repo.list_messages(job.conversation_id)
        if job.message_count_at_extraction > 0:
            messages = messages[: job.message_count_at_extraction]
        history = [ChatMessage(role=m.role, content=m.content, created_at=m.created_at) for m in messages]
        # Release the read transaction before the completion call.
        await session.commit()

        result = await self.extractor.extract(history)

        threshold = self.settings.extraction_confidence_threshold
        if result.confidence < threshold:
            note = f"Low confidence {result.confidence:.2f} below threshold {threshold:.2f}; nothing stored"
            logger.info("Extraction below confidence gate job_id=%s confidence=%.2f", job.id, result.confidence)
            completed = await repo.update_job(job.id, status="completed", notes=note, completed=True)
            return self._outcome(completed, confidence=result.confidence, notes=note)

        normalized, original = normalize_extraction(result)
        _, persisted = await repo.upsert_user_attribute(
            job.user_id,
            fields=normalized.present_fields(),
            confidence=result.confidence,
            detected_languages=result.detected_languages,
            original_values=original,
            notes=result.extraction_notes,
            conversation_id=job.conversation_id,
        )

        interests = await self._store_scheme_interests(repo, job, result)

        completed = await repo.update_job(job.id, status="completed", notes=result.extraction_notes, completed=True)
        return self._outcome(
            completed,
            confidence=result.confidence,
            persisted=persisted,
            interests=interests,
            notes=result.extraction_notes,
        )

    async def _store_scheme_interests(self, repo: Repository, job: ExtractionJob, result: ExtractionResult) -> int:
        if not result.scheme_interests:
            return 0

        catalog = await repo.list_schemes()
        levels: dict[int, tuple[Scheme, str]] = {}
        for mention in result.scheme_interests:
            scheme = match_scheme(catalog, mention.scheme_name)
            if scheme is None:
                logger.info("Unmatched scheme mention job_id=%s name=%r", job.id, mention.scheme_name)
                continue
            _, level = levels.get(scheme.id, (scheme, "mentioned"))
            levels[scheme.id] = (scheme, upgrade_interest(level, mention.interest_level))

        for scheme, level in levels.values():
            await repo.upsert_scheme_interest(
                job.user_id,
                scheme,
                interest_level=level,
                languages=result.detected_languages,
                conversation_id=job.conversation_id,
            )
        return len(levels)

    async def process_queue(self, limit: int | None = None) -> QueueResult:
        batch_size = limit or self.settings.queue_batch_size
        async with self.session_factory() as session:
            repo = Repository(session)
            pending = await repo.list_pending_jobs(batch_size)
            claimed: list[int] = []
            for job in pending:
                if await repo.claim_job(job.id):
                    claimed.append(job.id)

        results = await asyncio.gather(*(self.run_job(job_id) for job_id in claimed), return_exceptions=True)

        summary = QueueResult(processed=len(claimed), skipped=len(pending) - len(claimed))
        for job_id, result in zip(claimed, results):
            if isinstance(result, BaseException):
                logger.error("Queued job could not run job_id=%s error=%s", job_id, result)
                summary.failed += 1
            elif result.status == "completed":
                summary.succeeded += 1
            else:
                summary.failed += 1
        logger.info(
            "Queue batch processed=%s succeeded=%s failed=%s skipped=%s",
            summary.processed,
            summary.succeeded,
            summary.failed,
            summary.skipped,
        )
        return summary

    async def should_trigger(self, conversation_id: int) -> bool:
        async with self.session_factory() as session:
            repo = Repository(session)
            conversation = await repo.get_conversation(conversation_id)
            if conversation is None:
                raise ConversationNotFoundError(f"conversation {conversation_id} not found")

            last_job = await repo.last_job_for_conversation(conversation_id)
            since = conversation.message_count
            if last_job is not None:
                since -= last_job.message_count_at_extraction

            window = min(max(since, 0), self.policy.recent_window)
            recent = await repo.list_messages(conversation_id, limit=window) if window else []

        return self.policy.should_trigger(
            messages_since_last=since,
            recent_user_texts=[message.content for message in recent if message.role == "user"],
        )

    async def trigger_if_needed(self, conversation_id: int) -> JobOutcome | None:
        if not await self.should_trigger(conversation_id):
            return None
        return await self.trigger(conversation_id, manual=False)

    async def queue_stats(self) -> QueueStats:
        async with self.session_factory() as session:
            counts = await Repository(session).job_status_counts()
        return QueueStats(
            pending=counts.get("pending", 0),
            processing=counts.get("processing", 0),
            completed=counts.get("completed", 0),
            failed=counts.get("failed", 0),
            total=sum(counts.values()),
        )

    async def clear_old_jobs(self, days: int | None = None) -> int:
        retention = self.settings.job_retention_days if days is None else days
        cutoff = utcnow() - timedelta(days=retention)
        stale_cutoff = utcnow() - timedelta(minutes=self.settings.job_stale_after_minutes)
        async with self.session_factory() as session:
            repo = Repository(session)
            stale = await repo.fail_stale_jobs(stale_cutoff)
            deleted = await repo.delete_finished_jobs_before(cutoff)
        if stale:
            logger.warning("Failed stale processing jobs count=%s started_before=%s", stale, stale_cutoff.isoformat())
        logger.info("Cleared finished extraction jobs deleted=%s cutoff=%s", deleted, cutoff.isoformat())
        return deleted

    @staticmethod
    def _outcome(
        job: ExtractionJob,
        *,
        reused: bool = False,
        confidence: float | None = None,
        persisted: list[str] | None = None,
        interests: int = 0,
        notes: str | None = None,
        failure: dict[str, str] | None = None,
    ) -> JobOutcome:
        return JobOutcome(
            job_id=job.id,
            conversation_id=job.conversation_id,
            status=job.status,
            priority=job.priority,
            reused=reused,
            confidence=confidence,
            persisted_fields=persisted or [],
            scheme_interests=interests,
            notes=job.notes if notes is None else notes,
            failure=failure,
        )
