"""Order model: one-time purchases completed through checkout."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, Integer, String

from paysync.db.base import Base


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(255), primary_key=True)
    customer_id = Column(String(255), nullable=True, index=True)
    product_id = Column(String(255), nullable=True)
    status = Column(String(30), nullable=True)
    amount = Column(Integer, nullable=True)  # minor units (cents)
    currency = Column(String(10), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

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
