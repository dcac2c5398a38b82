from fastapi import APIRouter

from campaign_sync.api.routes import health, reconcile, recovery

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(reconcile.router, prefix="/reconcile", tags=["reconcile"])
api_router.include_router(recovery.router, prefix="/sync-recovery", tags=["sync"])
