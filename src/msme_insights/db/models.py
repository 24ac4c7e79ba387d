from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from msme_insights.db.base import Base, TimestampMixin, utcnow

ACTIVE_JOB_STATUSES = ("pending", "processing")


class Conversation(TimestampMixin, Base):
    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    message_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_active_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    messages: Mapped[list[Message]] = relationship(
        back_populates="conversation",
        order_by="Message.id",
        cascade="all, delete-orphan",
    )


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    conversation_id: Mapped[int] = mapped_column(ForeignKey("conversations.id", ondelete="CASCADE"), index=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    conversation: Mapped[Conversation] = relationship(back_populates="messages")


class Scheme(TimestampMixin, Base):
    __tablename__ = "schemes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    scheme_name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    ministry: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    category: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    aliases_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ExtractionJob(Base):
    __tablename__ = "extraction_jobs"
    __table_args__ = (
        Index(
            "uq_extraction_jobs_active_key",
            "conversation_id",
            "message_count_at_extraction",
            unique=True,
            sqlite_where=text("status IN ('pending', 'processing')"),
            postgresql_where=text("status IN ('pending', 'processing')"),
        ),
        Index("ix_extraction_jobs_status_priority", "status", "priority", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    conversation_id: Mapped[int] = mapped_column(ForeignKey("conversations.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    message_count_at_extraction: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)
    priority: Mapped[str] = mapped_column(String(16), default="normal", nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class UserAttribute(TimestampMixin, Base):
    __tablename__ = "user_attributes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    location: Mapped[str | None] = mapped_column(String(128), index=True, nullable=True)
    industry: Mapped[str | None] = mapped_column(String(128), index=True, nullable=True)
    business_size: Mapped[str | None] = mapped_column(String(16), nullable=True)
    annual_turnover: Mapped[int | None] = mapped_column(Integer, nullable=True)
    employee_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    detected_languages: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    original_language_data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    field_confidence_json: Mapped[dict[str, float]] = mapped_column(JSON, default=dict, nullable=False)
    extraction_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    extraction_notes: Mapped[str] = mapped_column(Text, default="", nullable=False)
    conversation_id: Mapped[int | None] = mapped_column(
        ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True
    )
    is_anonymized: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class SchemeInterest(Base):
    __tablename__ = "scheme_interests"
    __table_args__ = (UniqueConstraint("user_id", "scheme_id", name="uq_scheme_interest_user_scheme"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    scheme_id: Mapped[int] = mapped_column(ForeignKey("schemes.id", ondelete="CASCADE"), index=True)
    scheme_name: Mapped[str] = mapped_column(String(255), nullable=False)
    interest_level: Mapped[str] = mapped_column(String(16), default="mentioned", nullable=False)
    mention_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    mentioned_in_languages: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    conversation_id: Mapped[int | None] = mapped_column(
        ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True
    )
    first_mentioned_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    last_mentioned_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
