"""InMemoryStateStore: process-local StateStore.

Every method body runs without an await point, so each operation is atomic
on the event loop. State does not survive a restart; use SqlStateStore for
anything beyond a single development process.
"""

from dataclasses import replace
from datetime import datetime

from paysync.domain.states import (
    CustomerState,
    EventOutcome,
    OrderState,
    ProcessedEventRecord,
    SubscriptionState,
)


class InMemoryStateStore:
    def __init__(self) -> None:
        self.events: dict[str, ProcessedEventRecord] = {}
        self.subscriptions: dict[str, SubscriptionState] = {}
        self.customers: dict[str, CustomerState] = {}
        self.orders: dict[str, OrderState] = {}

    # ── Processed events ────────────────────────────────────────────

    async def claim_event(
        self,
        event_id: str,
        event_type: str,
        now: datetime,
        lease_expired_before: datetime,
    ) -> bool:
        record = self.events.get(event_id)
        if record is None:
            self.events[event_id] = ProcessedEventRecord(
                event_id=event_id,
                event_type=event_type,
                outcome=EventOutcome.PROCESSING,
                attempts=1,
                first_seen_at=now,
                claimed_at=now,
            )
            return True

        reclaimable = record.outcome == EventOutcome.FAILED or (
            record.outcome == EventOutcome.PROCESSING and record.claimed_at < lease_expired_before
        )
        if not reclaimable:
            return False

        record.outcome = EventOutcome.PROCESSING
        record.attempts += 1
        record.claimed_at = now
        record.processed_at = None
        return True

    async def complete_event(self, event_id: str, outcome: EventOutcome, now: datetime) -> None:
        record = self.events.get(event_id)
        if record is not None:
            record.outcome = outcome
            record.processed_at = now

    async def fail_event(self, event_id: str, now: datetime) -> None:
        await self.complete_event(event_id, EventOutcome.FAILED, now)

    async def get_event(self, event_id: str) -> ProcessedEventRecord | None:
        record = self.events.get(event_id)
        return replace(record) if record else None

    async def prune_events(self, before: datetime) -> int:
        expired = [eid for eid, rec in self.events.items() if rec.first_seen_at < before]
        for event_id in expired:
            del self.events[event_id]
        return len(expired)

    # ── Entities ────────────────────────────────────────────────────

    @staticmethod
    def _compare_and_set(table: dict, state) -> bool:
        stored = table.get(state.id)
        if state.version == 0:
            if stored is not None:
                return False
        elif stored is None or stored.version != state.version:
            return False
        table[state.id] = replace(state, version=state.version + 1)
        return True

    async def get_subscription(self, subscription_id: str) -> SubscriptionState | None:
        state = self.subscriptions.get(subscription_id)
        return replace(state) if state else None

    async def save_subscription(self, state: SubscriptionState) -> bool:
        return self._compare_and_set(self.subscriptions, state)

    async def get_customer(self, customer_id: str) -> CustomerState | None:
        state = self.customers.get(customer_id)
        return replace(state) if state else None

    async def find_customer_by_email(self, email: str) -> CustomerState | None:
        for state in self.customers.values():
            if state.email and state.email.lower() == email.lower():
                return replace(state)
        return None

    async def save_customer(self, state: CustomerState) -> bool:
        return self._compare_and_set(self.customers, state)

    async def get_order(self, order_id: str) -> OrderState | None:
        state = self.orders.get(order_id)
        return replace(state) if state else None

    async def save_order(self, state: OrderState) -> bool:
        return self._compare_and_set(self.orders, state)

    async def ping(self) -> bool:
        return True
