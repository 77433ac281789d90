from datetime import datetime

from pydantic import BaseModel


class EntitlementResponse(BaseModel):
    subscription_id: str
    status: str | None
    entitled: bool
    reason: str
    current_period_end: datetime | None = None
    refunded: bool = False
    disputed: bool = False
