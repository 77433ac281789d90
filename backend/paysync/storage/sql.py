"""SqlStateStore: StateStore backed by SQLAlchemy async sessions."""

from datetime import UTC, datetime

from sqlalchemy import delete, func, or_, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paysync.db.models import Customer, Order, ProcessedWebhookEvent, Subscription
from paysync.domain.states import (
    CustomerState,
    EventOutcome,
    OrderState,
    ProcessedEventRecord,
    SubscriptionState,
    SubscriptionStatus,
)


def _utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _to_event_record(row: ProcessedWebhookEvent) -> ProcessedEventRecord:
    return ProcessedEventRecord(
        event_id=row.event_id,
        event_type=row.event_type,
        outcome=EventOutcome(row.outcome),
        attempts=row.attempts,
        first_seen_at=_utc(row.first_seen_at),
        claimed_at=_utc(row.claimed_at),
        processed_at=_utc(row.processed_at),
    )


def _to_subscription_state(row: Subscription) -> SubscriptionState:
    return SubscriptionState(
        id=row.id,
        status=SubscriptionStatus(row.status) if row.status else None,
        customer_id=row.customer_id,
        product_id=row.product_id,
        current_period_start=_utc(row.current_period_start),
        current_period_end=_utc(row.current_period_end),
        canceled_at=_utc(row.canceled_at),
        refunded_at=_utc(row.refunded_at),
        disputed_at=_utc(row.disputed_at),
        last_event_id=row.last_event_id,
        last_event_at=_utc(row.last_event_at),
        version=row.version,
    )


def _subscription_values(state: SubscriptionState) -> dict:
    return {
        "status": state.status.value if state.status else None,
        "customer_id": state.customer_id,
        "product_id": state.product_id,
        "current_period_start": state.current_period_start,
        "current_period_end": state.current_period_end,
        "canceled_at": state.canceled_at,
        "refunded_at": state.refunded_at,
        "disputed_at": state.disputed_at,
        "last_event_id": state.last_event_id,
        "last_event_at": state.last_event_at,
    }


def _to_customer_state(row: Customer) -> CustomerState:
    return CustomerState(
        id=row.id,
        email=row.email,
        name=row.name,
        last_event_id=row.last_event_id,
        last_event_at=_utc(row.last_event_at),
        version=row.version,
    )


def _customer_values(state: CustomerState) -> dict:
    return {
        "email": state.email,
        "name": state.name,
        "last_event_id": state.last_event_id,
        "last_event_at": state.last_event_at,
    }


def _to_order_state(row: Order) -> OrderState:
    return OrderState(
        id=row.id,
        customer_id=row.customer_id,
        product_id=row.product_id,
        status=row.status,
        amount=row.amount,
        currency=row.currency,
        refunded_at=_utc(row.refunded_at),
        last_event_id=row.last_event_id,
        last_event_at=_utc(row.last_event_at),
        version=row.version,
    )


def _order_values(state: OrderState) -> dict:
    return {
        "customer_id": state.customer_id,
        "product_id": state.product_id,
        "status": state.status,
        "amount": state.amount,
        "currency": state.currency,
        "refunded_at": state.refunded_at,
        "last_event_id": state.last_event_id,
        "last_event_at": state.last_event_at,
    }


class SqlStateStore:
    """StateStore over a SQLAlchemy async_sessionmaker.

    Each operation runs in its own short session/transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ── Processed events ────────────────────────────────────────────

    async def claim_event(
        self,
        event_id: str,
        event_type: str,
        now: datetime,
        lease_expired_before: datetime,
    ) -> bool:
        async with self._session_factory() as session:
            try:
                session.add(
                    ProcessedWebhookEvent(
                        event_id=event_id,
                        event_type=event_type,
                        outcome=EventOutcome.PROCESSING.value,
                        attempts=1,
                        first_seen_at=now,
                        claimed_at=now,
                    )
                )
                await session.commit()
                return True
            except IntegrityError:
                await session.rollback()

            # Seen before: re-claim in a single conditional UPDATE so only one
            # concurrent retry can win a failed or abandoned claim.
            result = await session.execute(
                update(ProcessedWebhookEvent)
                .where(
                    ProcessedWebhookEvent.event_id == event_id,
                    or_(
                        ProcessedWebhookEvent.outcome == EventOutcome.FAILED.value,
                        (ProcessedWebhookEvent.outcome == EventOutcome.PROCESSING.value)
                        & (ProcessedWebhookEvent.claimed_at < lease_expired_before),
                    ),
                )
                .values(
                    outcome=EventOutcome.PROCESSING.value,
                    attempts=ProcessedWebhookEvent.attempts + 1,
                    claimed_at=now,
                    processed_at=None,
                )
            )
            await session.commit()
            return result.rowcount == 1

    async def complete_event(self, event_id: str, outcome: EventOutcome, now: datetime) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(ProcessedWebhookEvent)
                .where(ProcessedWebhookEvent.event_id == event_id)
                .values(outcome=outcome.value, processed_at=now)
            )
            await session.commit()

    async def fail_event(self, event_id: str, now: datetime) -> None:
        await self.complete_event(event_id, EventOutcome.FAILED, now)

    async def get_event(self, event_id: str) -> ProcessedEventRecord | None:
        async with self._session_factory() as session:
            row = await session.get(ProcessedWebhookEvent, event_id)
            return _to_event_record(row) if row else None

    async def prune_events(self, before: datetime) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ProcessedWebhookEvent).where(ProcessedWebhookEvent.first_seen_at < before)
            )
            await session.commit()
            return result.rowcount or 0

    # ── Entities ────────────────────────────────────────────────────

    async def _compare_and_set(self, model, entity_id: str, version: int, values: dict) -> bool:
        async with self._session_factory() as session:
            if version == 0:
                session.add(model(id=entity_id, version=1, **values))
                try:
                    await session.commit()
                    return True
                except IntegrityError:
                    await session.rollback()
                    return False

            result = await session.execute(
                update(model)
                .where(model.id == entity_id, model.version == version)
                .values(version=version + 1, updated_at=datetime.now(UTC), **values)
            )
            await session.commit()
            return result.rowcount == 1

    async def get_subscription(self, subscription_id: str) -> SubscriptionState | None:
        async with self._session_factory() as session:
            row = await session.get(Subscription, subscription_id)
            return _to_subscription_state(row) if row else None

    async def save_subscription(self, state: SubscriptionState) -> bool:
        return await self._compare_and_set(Subscription, state.id, state.version, _subscription_values(state))

    async def get_customer(self, customer_id: str) -> CustomerState | None:
        async with self._session_factory() as session:
            row = await session.get(Customer, customer_id)
            return _to_customer_state(row) if row else None

    async def find_customer_by_email(self, email: str) -> CustomerState | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Customer)
                .where(func.lower(Customer.email) == email.lower())
                .order_by(Customer.created_at)
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _to_customer_state(row) if row else None

    async def save_customer(self, state: CustomerState) -> bool:
        return await self._compare_and_set(Customer, state.id, state.version, _customer_values(state))

    async def get_order(self, order_id: str) -> OrderState | None:
        async with self._session_factory() as session:
            row = await session.get(Order, order_id)
            return _to_order_state(row) if row else None

    async def save_order(self, state: OrderState) -> bool:
        return await self._compare_and_set(Order, state.id, state.version, _order_values(state))

    async def ping(self) -> bool:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
