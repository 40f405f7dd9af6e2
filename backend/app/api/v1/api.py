"""API v1 router aggregation."""

from fastapi import APIRouter

from app.api.v1.routers import credits, purchases, result_logs, wallet, webhooks

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(purchases.router)  # Checkout and refunds
api_router.include_router(webhooks.router)  # Processor callbacks
api_router.include_router(wallet.router)  # Seller wallet and payouts
api_router.include_router(credits.router)  # Credits balance and bonus
api_router.include_router(result_logs.router)  # Prompt outcome reports
