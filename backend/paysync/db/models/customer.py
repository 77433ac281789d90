"""Customer model: local mirror of the provider's customer record."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, Integer, String

from paysync.db.base import Base


class Customer(Base):
    __tablename__ = "customers"

    id = Column(String(255), primary_key=True)
    email = Column(String(255), nullable=True, index=True)
    name = Column(String(255), nullable=True)

    # Ordering marker: newest provider event applied to this row
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
