"""API Routes."""

from fastapi import APIRouter

from .gettrx_webhooks import router as gettrx_webhooks_router
from .health import router as health_router
from .merchant import router as merchant_router
from .payment_methods import router as payment_methods_router
from .subscriptions import router as subscriptions_router

# Create main API router
api_router = APIRouter()

# Include route modules
api_router.include_router(health_router, tags=["Health"])
api_router.include_router(gettrx_webhooks_router)
api_router.include_router(payment_methods_router)
api_router.include_router(subscriptions_router)
api_router.include_router(merchant_router)
