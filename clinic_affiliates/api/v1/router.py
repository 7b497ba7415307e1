from fastapi import APIRouter

from clinic_affiliates.api.v1.endpoints import (
    commission_plans,
    commissions,
)


api_router = APIRouter(prefix="/api/v1")

# ==================== Commission Plans ====================
api_router.include_router(
    commission_plans.router,
    prefix="/commission-plans",
    tags=["Commission Plans"]
)

# ==================== Commission Events ====================
api_router.include_router(
    commissions.router,
    prefix="/commissions",
    tags=["Commissions"]
)
