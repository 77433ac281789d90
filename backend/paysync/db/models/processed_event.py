"""ProcessedWebhookEvent model for idempotency tracking."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, Index, Integer, String

from paysync.db.base import Base


class ProcessedWebhookEvent(Base):
    """One row per provider event id. The primary key makes the claim atomic."""

    __tablename__ = "processed_webhook_events"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(100), nullable=False)
    # processing | applied | ignored | failed
    outcome = Column(String(20), nullable=False, default="processing")
    attempts = Column(Integer, nullable=False, default=1)

    first_seen_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    claimed_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_processed_webhook_events_first_seen_at", "first_seen_at"),
    )
