"""Read-only view of reconciled subscription state."""

from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException, Request

from paysync.api.schemas.entitlement import EntitlementResponse
from paysync.domain.entitlement import evaluate_entitlement
from paysync.storage.base import StateStore, bounded

router = APIRouter()


@router.get("/{subscription_id}/entitlement", response_model=EntitlementResponse)
async def get_entitlement(subscription_id: str, request: Request) -> EntitlementResponse:
    """Whether the subscription currently grants premium access."""
    store: StateStore = request.app.state.store
    timeout = request.app.state.settings.storage_timeout_seconds

    state = await bounded("get_subscription", store.get_subscription(subscription_id), timeout)
    if state is None:
        raise HTTPException(status_code=404, detail="Subscription not found")

    entitlement = evaluate_entitlement(state, datetime.now(UTC))
    return EntitlementResponse(
        subscription_id=state.id,
        status=state.status.value if state.status else None,
        entitled=entitlement.entitled,
        reason=entitlement.reason,
        current_period_end=state.current_period_end,
        refunded=state.refunded_at is not None,
        disputed=state.disputed_at is not None,
    )
