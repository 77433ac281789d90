from fastapi import APIRouter

from paysync.api.routes import health, subscriptions, webhooks

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(subscriptions.router, prefix="/subscriptions", tags=["subscriptions"])
