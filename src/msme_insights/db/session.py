from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from msme_insights.config import get_settings

settings = get_settings()
connect_args = {"timeout": settings.db_timeout_sec} if settings.database_url.startswith("sqlite") else {}
engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    connect_args=connect_args,
    future=True,
)
SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
