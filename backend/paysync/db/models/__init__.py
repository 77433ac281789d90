"""Re-export all models so Base.metadata sees them."""

from paysync.db.models.customer import Customer
from paysync.db.models.order import Order
from paysync.db.models.processed_event import ProcessedWebhookEvent
from paysync.db.models.subscription import Subscription

__all__ = [
    "Customer",
    "Order",
    "ProcessedWebhookEvent",
    "Subscription",
]
