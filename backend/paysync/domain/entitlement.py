"""Entitlement decision for a subscription.

Pure domain function. The clock is passed in by the caller.
"""

from dataclasses import dataclass
from datetime import datetime

from paysync.domain.states import SubscriptionState, SubscriptionStatus

ENTITLED_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.SCHEDULED_CANCEL,
})


@dataclass
class Entitlement:
    entitled: bool
    reason: str
    until: datetime | None = None


def refunded_in_current_period(state: SubscriptionState) -> bool:
    """True when the recorded refund was issued on or after the current period start.

    A refund from an earlier, since-renewed period says nothing about the
    period being paid for now. Without a known period start every refund counts.
    """
    if state.refunded_at is None:
        return False
    if state.current_period_start is None:
        return True
    return state.refunded_at >= state.current_period_start


def evaluate_entitlement(state: SubscriptionState | None, now: datetime) -> Entitlement:
    """Decide whether the subscription currently grants premium access.

    Rules:
        - active / trialing / scheduled_cancel: entitled
        - canceled: entitled until current_period_end (grace period),
          unless a refund was issued in the current period, which revokes
          immediately
        - paused / unpaid / expired / unknown: not entitled
    """
    if state is None or state.status is None:
        return Entitlement(entitled=False, reason="unknown_subscription")

    if state.status == SubscriptionStatus.CANCELED:
        if refunded_in_current_period(state):
            return Entitlement(entitled=False, reason="canceled_and_refunded")
        if state.current_period_end is not None and now < state.current_period_end:
            return Entitlement(entitled=True, reason="grace_period", until=state.current_period_end)
        return Entitlement(entitled=False, reason="canceled_period_ended")

    if state.status in ENTITLED_STATUSES:
        return Entitlement(entitled=True, reason=state.status.value, until=state.current_period_end)

    return Entitlement(entitled=False, reason=state.status.value)


def is_entitled(state: SubscriptionState | None, now: datetime) -> bool:
    return evaluate_entitlement(state, now).entitled
