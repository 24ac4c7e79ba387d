from __future__ import annotations

from pathlib import Path

from msme_insights.config import get_settings
from msme_insights.db import models  # noqa: F401
from msme_insights.db.base import Base
from msme_insights.db.seed import seed_scheme_catalog
from msme_insights.db.session import SessionLocal, engine


def ensure_data_directories() -> None:
    settings = get_settings()
    paths: list[Path] = [settings.data_dir, settings.export_dir]
    for path in paths:
        path.mkdir(parents=True, exist_ok=True)


async def init_database() -> dict[str, int]:
    ensure_data_directories()
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    async with SessionLocal() as session:
        inserted = await seed_scheme_catalog(session)
    return {"seeded_schemes": inserted}
