from fastapi import APIRouter

from royalty_ledger.features.content.routes import router as content_router
from royalty_ledger.features.earnings.routes import router as earnings_router
from royalty_ledger.features.health.routes import router as health_router
from royalty_ledger.features.payouts.routes import router as payouts_router
from royalty_ledger.features.personas.routes import router as personas_router
from royalty_ledger.features.resolution.routes import router as resolution_router

api_v1_router = APIRouter()

api_v1_router.include_router(health_router, tags=["health"])
api_v1_router.include_router(personas_router, tags=["personas"])
api_v1_router.include_router(content_router, tags=["content"])
api_v1_router.include_router(earnings_router, tags=["earnings"])
api_v1_router.include_router(resolution_router, tags=["resolution"])
api_v1_router.include_router(payouts_router, tags=["payouts"])
