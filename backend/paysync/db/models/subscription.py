"""Subscription model: local entitlement state driven by provider webhooks."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, Integer, String

from paysync.db.base import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String(255), primary_key=True)
    # NULL until the first state-carrying event arrives (e.g. refund recorded first)
    status = Column(String(30), nullable=True)
    customer_id = Column(String(255), nullable=True, index=True)
    product_id = Column(String(255), nullable=True)

    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)

    # Commutative facts: earliest occurrence wins, independent of the ordering marker
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    disputed_at = Column(DateTime(timezone=True), nullable=True)

    last_event_id = Column(String(255), nullable=True)
    last_event_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
