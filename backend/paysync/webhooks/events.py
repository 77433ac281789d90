"""Webhook event envelope and per-type payload shapes.

Wire contract of the envelope (preserved exactly):

    {"id": str, "eventType": str, "created_at": <epoch millis>, "object": {...}}

The ``object`` stays opaque on the envelope; each handler validates it
against the payload model for its event type. References to related
entities arrive either as a bare id string or as an expanded object, so
every reference field accepts both.
"""

from datetime import UTC, datetime
from typing import Annotated, Any, TypeVar

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from paysync.core.exceptions import MalformedPayload
from paysync.domain.states import EventType


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]

P = TypeVar("P", bound=BaseModel)


def _ref_id(value: Any) -> Any:
    """Collapse ``"sub_1"`` or ``{"id": "sub_1", ...}`` to ``"sub_1"``."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _expand_ref(value: Any) -> Any:
    """Expand a bare id string to ``{"id": ...}`` for nested models."""
    if isinstance(value, str):
        return {"id": value}
    return value


class WebhookEvent(BaseModel):
    """Immutable event envelope as delivered by the provider."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    event_type: str = Field(alias="eventType", min_length=1)
    created_at: UtcDatetime
    object: dict[str, Any]

    @field_validator("created_at", mode="before")
    @classmethod
    def _from_epoch_millis(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("created_at must be epoch milliseconds")
        if isinstance(value, str) and value.isdigit():
            value = int(value)
        if isinstance(value, int | float):
            return datetime.fromtimestamp(value / 1000, tz=UTC)
        return value

    @property
    def known_type(self) -> EventType | None:
        try:
            return EventType(self.event_type)
        except ValueError:
            return None


# ── Payload shapes ──────────────────────────────────────────────────


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class CustomerRef(_Payload):
    id: str | None = None
    email: str | None = None
    name: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _expand(cls, data: Any) -> Any:
        return _expand_ref(data)


class SubscriptionObject(_Payload):
    id: str = Field(min_length=1)
    status: str | None = None
    customer: CustomerRef | None = None
    product_id: str | None = Field(default=None, validation_alias=AliasChoices("product", "product_id"))
    current_period_start: UtcDatetime | None = Field(
        default=None,
        validation_alias=AliasChoices("current_period_start_date", "current_period_start"),
    )
    current_period_end: UtcDatetime | None = Field(
        default=None,
        validation_alias=AliasChoices("current_period_end_date", "current_period_end"),
    )
    canceled_at: UtcDatetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _expand(cls, data: Any) -> Any:
        return _expand_ref(data)

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_ref(cls, value: Any) -> Any:
        return _ref_id(value)


class OrderObject(_Payload):
    id: str = Field(min_length=1)
    status: str | None = None
    amount: int | None = None
    currency: str | None = None
    customer: CustomerRef | None = None
    product_id: str | None = Field(default=None, validation_alias=AliasChoices("product", "product_id"))

    @model_validator(mode="before")
    @classmethod
    def _expand(cls, data: Any) -> Any:
        return _expand_ref(data)

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_ref(cls, value: Any) -> Any:
        return _ref_id(value)


class CheckoutObject(_Payload):
    id: str = Field(min_length=1)
    customer: CustomerRef | None = None
    product_id: str | None = Field(default=None, validation_alias=AliasChoices("product", "product_id"))
    subscription: SubscriptionObject | None = None
    order: OrderObject | None = None

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_ref(cls, value: Any) -> Any:
        return _ref_id(value)


class RefundObject(_Payload):
    id: str = Field(min_length=1)
    customer: CustomerRef | None = None
    subscription_id: str | None = Field(
        default=None, validation_alias=AliasChoices("subscription", "subscription_id")
    )
    order_id: str | None = Field(default=None, validation_alias=AliasChoices("order", "order_id"))
    refund_amount: int | None = None
    currency: str | None = None

    @field_validator("subscription_id", "order_id", mode="before")
    @classmethod
    def _refs(cls, value: Any) -> Any:
        return _ref_id(value)


class DisputeObject(_Payload):
    id: str = Field(min_length=1)
    customer: CustomerRef | None = None
    subscription_id: str | None = Field(
        default=None, validation_alias=AliasChoices("subscription", "subscription_id")
    )
    order_id: str | None = Field(default=None, validation_alias=AliasChoices("order", "order_id"))
    amount: int | None = None
    currency: str | None = None

    @field_validator("subscription_id", "order_id", mode="before")
    @classmethod
    def _refs(cls, value: Any) -> Any:
        return _ref_id(value)


# ── Parsing ─────────────────────────────────────────────────────────


def _summarize(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors()[:3]:
        location = ".".join(str(p) for p in error["loc"]) or "body"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def parse_event(body: bytes) -> WebhookEvent:
    """Parse the raw body into an envelope.

    Raises:
        MalformedPayload: Body is not JSON or does not match the envelope contract
    """
    try:
        return WebhookEvent.model_validate_json(body)
    except ValidationError as exc:
        raise MalformedPayload(_summarize(exc)) from exc


def parse_object(event: WebhookEvent, model: type[P]) -> P:
    """Validate the event's ``object`` against its payload model.

    Raises:
        MalformedPayload: The object does not match the expected shape
    """
    try:
        return model.model_validate(event.object)
    except ValidationError as exc:
        raise MalformedPayload(f"{event.event_type} object invalid: {_summarize(exc)}") from exc
