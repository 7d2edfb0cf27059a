"""Quota usage ledger model."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, generate_uuid, utcnow


class QuotaUsageRecord(Base):
    """One external call attempt and the quota units it consumed.

    Rows are append-only; they are only ever deleted by retention pruning.
    """

    __tablename__ = "QuotaUsageRecords"

    usage_id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=generate_uuid,
    )
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    operation: Mapped[str] = mapped_column(String(50), nullable=False)
    units: Mapped[int] = mapped_column(Integer, nullable=False)
    request_details: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="JSON-encoded request parameters",
    )
    response_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_quota_provider_created", "provider", "created_at"),
        Index("ix_quota_provider_operation", "provider", "operation"),
        Index("ix_quota_created", "created_at"),
    )
