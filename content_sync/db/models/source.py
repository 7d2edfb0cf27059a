"""Source and sync state SQLAlchemy models."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, generate_uuid


class Source(Base, TimestampMixin):
    """A (creator, platform) pairing with its own sync lifecycle."""

    __tablename__ = "Sources"

    source_id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=generate_uuid,
    )
    creator_id: Mapped[UUID] = mapped_column(nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    external_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Provider-side identifier, e.g. a YouTube channel ID",
    )
    username: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Aggregates refreshed after each successful run
    follower_count: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    item_count: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    total_views: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    stats_updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "external_id", "creator_id", name="uq_sources_provider_external"),
        Index("ix_sources_provider_active", "provider", "is_active"),
    )


class SourceSyncState(Base, TimestampMixin):
    """Persisted progress of one source's synchronization."""

    __tablename__ = "SourceSyncStates"

    source_id: Mapped[UUID] = mapped_column(
        ForeignKey("Sources.source_id"),
        primary_key=True,
    )
    phase: Mapped[str] = mapped_column(String(30), default="never_synced", nullable=False)
    resume_cursor: Mapped[str | None] = mapped_column(String(200), nullable=True)
    synced_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_count: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Provider-reported catalog size, used for progress",
    )
    initial_sync_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    sync_started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    incremental_since: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
        comment="Incremental runs request items published after this instant",
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Run lock
    lock_owner: Mapped[str | None] = mapped_column(String(64), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_sync_states_phase", "phase"),
        Index("ix_sync_states_last_synced", "last_synced_at"),
    )
