from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_affiliates.core.exceptions import (
    CommissionError,
    ConflictError,
    NotFoundError,
    PlanLockedError,
)
from clinic_affiliates.database import get_db
from clinic_affiliates.services.affiliate_commission_service import AffiliateCommissionService
from clinic_affiliates.services.commission_plan_service import CommissionPlanService


DB = Annotated[AsyncSession, Depends(get_db)]


def get_commission_service(request: Request, db: DB) -> AffiliateCommissionService:
    """Request-scoped service; fraud alert tasks go to the app-wide registry."""
    return AffiliateCommissionService(db, task_registry=request.app.state.background_tasks)


def get_plan_service(db: DB) -> CommissionPlanService:
    return CommissionPlanService(db)


CommissionServiceDep = Annotated[AffiliateCommissionService, Depends(get_commission_service)]
PlanServiceDep = Annotated[CommissionPlanService, Depends(get_plan_service)]


def http_error(exc: CommissionError) -> HTTPException:
    """Translate a domain error into the matching HTTP error."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (PlanLockedError, ConflictError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
