from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path

_TEST_DIR = Path(tempfile.mkdtemp(prefix="msme-insights-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR / 'test.db'}"
os.environ["DATA_DIR"] = str(_TEST_DIR)
os.environ["EXPORT_DIR"] = str(_TEST_DIR / "exports")
os.environ["APP_ENV"] = "test"
os.environ["OPENAI_API_KEY"] = ""

import pytest  # noqa: E402

from msme_insights.config import get_settings  # noqa: E402
from msme_insights.core.cache import get_analytics_cache  # noqa: E402
from msme_insights.core.jobs import ExtractionJobManager  # noqa: E402
from msme_insights.db import models  # noqa: E402,F401
from msme_insights.db.base import Base  # noqa: E402
from msme_insights.db.repositories import Repository  # noqa: E402
from msme_insights.db.seed import seed_scheme_catalog  # noqa: E402
from msme_insights.db.session import SessionLocal, engine  # noqa: E402
from msme_insights.llm.extractor import AIExtractor  # noqa: E402
from msme_insights.types import ModelResponse  # noqa: E402


class FakeCompletionProvider:
    """Stands in for the completion service; replays canned replies in order."""

    def __init__(self, replies=None, *, delay: float = 0.0, error: Exception | None = None):
        self.replies = list(replies or [])
        self.delay = delay
        self.error = error
        self.prompts: list[str] = []
        self.calls: list[dict] = []

    async def complete_text(self, *, model, prompt, temperature=None, max_tokens=None, json_mode=False):
        self.prompts.append(prompt)
        self.calls.append({"model": model, "temperature": temperature, "max_tokens": max_tokens, "json_mode": json_mode})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        content = reply if isinstance(reply, str) else json.dumps(reply, ensure_ascii=False)
        return ModelResponse(content=content, raw={"api_path": "fake"})


@pytest.fixture(autouse=True)
async def reset_db():
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
        await connection.run_sync(Base.metadata.create_all)
    async with SessionLocal() as session:
        await seed_scheme_catalog(session)
    get_analytics_cache().clear()
    yield
    await engine.dispose()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def make_manager(settings):
    def factory(replies=None, *, delay: float = 0.0, error: Exception | None = None):
        provider = FakeCompletionProvider(replies, delay=delay, error=error)
        extractor = AIExtractor(settings=settings, provider=provider)
        return ExtractionJobManager(settings=settings, extractor=extractor), provider

    return factory


@pytest.fixture
def create_conversation():
    async def factory(user_id: str, messages: list[tuple[str, str]]) -> int:
        async with SessionLocal() as session:
            repo = Repository(session)
            conversation = await repo.create_conversation(user_id=user_id)
            for role, content in messages:
                await repo.append_message(conversation.id, role, content)
            return conversation.id

    return factory


@pytest.fixture
def add_messages():
    async def factory(conversation_id: int, messages: list[tuple[str, str]]) -> None:
        async with SessionLocal() as session:
            repo = Repository(session)
            for role, content in messages:
                await repo.append_message(conversation_id, role, content)

    return factory
