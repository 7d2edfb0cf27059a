"""Generic content catalog models written by the ingestion pipeline."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, generate_uuid


class Content(Base, TimestampMixin):
    """A provider item mapped into the generic content representation."""

    __tablename__ = "Contents"

    content_id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=generate_uuid,
    )
    creator_id: Mapped[UUID] = mapped_column(nullable=False)
    source_id: Mapped[UUID] = mapped_column(
        ForeignKey("Sources.source_id"),
        nullable=False,
    )
    content_type: Mapped[str] = mapped_column(String(30), nullable=False)
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    platform_id: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # seconds
    published_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    language: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_live: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    quality: Mapped[str] = mapped_column(String(10), default="sd", nullable=False)

    __table_args__ = (
        UniqueConstraint("platform", "platform_id", name="uq_contents_platform_id"),
        Index("ix_contents_source", "source_id"),
        Index("ix_contents_published", "published_at"),
    )


class ContentCategory(Base):
    """Category assignment derived from the provider's category."""

    __tablename__ = "ContentCategories"

    content_id: Mapped[UUID] = mapped_column(
        ForeignKey("Contents.content_id"),
        primary_key=True,
    )
    category: Mapped[str] = mapped_column(String(100), primary_key=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    source: Mapped[str] = mapped_column(String(20), default="platform", nullable=False)


class ContentStatistics(Base):
    """Latest statistics snapshot for a content item."""

    __tablename__ = "ContentStatistics"

    content_id: Mapped[UUID] = mapped_column(
        ForeignKey("Contents.content_id"),
        primary_key=True,
    )
    views: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    likes: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    comments: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    shares: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    engagement_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    captured_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
