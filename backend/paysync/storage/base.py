"""StateStore Protocol: the persistence seam of the webhook pipeline.

Two implementations ship with the service:
- SqlStateStore: SQLAlchemy async (Postgres in production, SQLite for local runs)
- InMemoryStateStore: single-process store for development and tests

Contract shared by every implementation:
- claim_event is ONE atomic operation: of any number of concurrent callers
  for the same event id, exactly one gets True.
- save_* is a compare-and-set on ``version``: version 0 means "insert, must
  not exist"; otherwise the row is updated only if its stored version still
  equals state.version, and the stored version is bumped by one.
"""

import asyncio
from collections.abc import Awaitable
from datetime import datetime
from typing import Protocol, TypeVar, runtime_checkable

from sqlalchemy.exc import SQLAlchemyError

from paysync.core.exceptions import DownstreamFailure
from paysync.domain.states import (
    CustomerState,
    EventOutcome,
    OrderState,
    ProcessedEventRecord,
    SubscriptionState,
)

T = TypeVar("T")


@runtime_checkable
class StateStore(Protocol):
    async def claim_event(
        self,
        event_id: str,
        event_type: str,
        now: datetime,
        lease_expired_before: datetime,
    ) -> bool:
        """Atomically claim an event for processing.

        Succeeds when the id was never seen, or when its previous claim
        failed, or when a "processing" claim is older than the lease.
        """
        ...

    async def complete_event(self, event_id: str, outcome: EventOutcome, now: datetime) -> None: ...

    async def fail_event(self, event_id: str, now: datetime) -> None: ...

    async def get_event(self, event_id: str) -> ProcessedEventRecord | None: ...

    async def prune_events(self, before: datetime) -> int:
        """Delete processed-event records first seen before ``before``; return the count."""
        ...

    async def get_subscription(self, subscription_id: str) -> SubscriptionState | None: ...

    async def save_subscription(self, state: SubscriptionState) -> bool: ...

    async def get_customer(self, customer_id: str) -> CustomerState | None: ...

    async def find_customer_by_email(self, email: str) -> CustomerState | None: ...

    async def save_customer(self, state: CustomerState) -> bool: ...

    async def get_order(self, order_id: str) -> OrderState | None: ...

    async def save_order(self, state: OrderState) -> bool: ...

    async def ping(self) -> bool: ...


async def bounded(operation: str, awaitable: Awaitable[T], timeout: float) -> T:
    """Await a storage call with a deadline.

    A timeout or a database/connection error surfaces as DownstreamFailure so
    the sender's retry schedule takes over; nothing is retried here.
    """
    try:
        async with asyncio.timeout(timeout):
            return await awaitable
    except TimeoutError as exc:
        raise DownstreamFailure(operation, f"timed out after {timeout}s") from exc
    except (SQLAlchemyError, OSError) as exc:
        raise DownstreamFailure(operation, f"{type(exc).__name__}: {exc}") from exc
