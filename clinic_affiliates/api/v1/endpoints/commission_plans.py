"""API endpoints for commission plan administration."""
from typing import List

from fastapi import APIRouter, Query, status

from clinic_affiliates.api.deps import PlanServiceDep, http_error
from clinic_affiliates.core.exceptions import CommissionError
from clinic_affiliates.schemas.commission import (
    # Plan
    CommissionPlanCreate, CommissionPlanUpdate, CommissionPlanResponse,
    # Tiers & rates
    CommissionTierCreate, CommissionTierResponse,
    ProductRateCreate, ProductRateResponse,
    # Promotions
    PromotionCreate, PromotionResponse,
    # Assignments
    PlanAssignmentCreate, PlanAssignmentResponse,
)

router = APIRouter()


# ==================== Commission Plans ====================

@router.post("", response_model=CommissionPlanResponse, status_code=status.HTTP_201_CREATED)
async def create_commission_plan(
    plan_in: CommissionPlanCreate,
    service: PlanServiceDep,
):
    """Create a new commission plan for a clinic."""
    try:
        return await service.create_plan(plan_in)
    except CommissionError as e:
        raise http_error(e)


@router.get("", response_model=List[CommissionPlanResponse])
async def list_commission_plans(
    service: PlanServiceDep,
    clinic_id: int = Query(...),
    active_only: bool = False,
):
    """List a clinic's commission plans, newest first."""
    return await service.list_plans(clinic_id, active_only=active_only)


@router.get("/{plan_id}", response_model=CommissionPlanResponse)
async def get_commission_plan(
    plan_id: int,
    service: PlanServiceDep,
):
    try:
        return await service.get_plan(plan_id)
    except CommissionError as e:
        raise http_error(e)


@router.put("/{plan_id}", response_model=CommissionPlanResponse)
async def update_commission_plan(
    plan_id: int,
    plan_in: CommissionPlanUpdate,
    service: PlanServiceDep,
):
    """
    Update a commission plan.

    Plans with PAID commissions are locked (409); create a new plan and
    assign it from a later effective date instead.
    """
    try:
        return await service.update_plan(plan_id, plan_in)
    except CommissionError as e:
        raise http_error(e)


# ==================== Tiers ====================

@router.post(
    "/{plan_id}/tiers",
    response_model=CommissionTierResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_commission_tier(
    plan_id: int,
    tier_in: CommissionTierCreate,
    service: PlanServiceDep,
):
    """Add a performance tier to a plan."""
    try:
        return await service.add_tier(plan_id, tier_in)
    except CommissionError as e:
        raise http_error(e)


# ==================== Product Rates ====================

@router.post(
    "/{plan_id}/product-rates",
    response_model=ProductRateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_product_rate(
    plan_id: int,
    rate_in: ProductRateCreate,
    service: PlanServiceDep,
):
    """Add a SKU, category or price-range rate override to a plan."""
    try:
        return await service.add_product_rate(plan_id, rate_in)
    except CommissionError as e:
        raise http_error(e)


# ==================== Promotions ====================

@router.post(
    "/{plan_id}/promotions",
    response_model=PromotionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_promotion(
    plan_id: int,
    promotion_in: PromotionCreate,
    service: PlanServiceDep,
):
    """Add a time-boxed promotional bonus to a plan."""
    try:
        return await service.add_promotion(plan_id, promotion_in)
    except CommissionError as e:
        raise http_error(e)


# ==================== Assignments ====================

@router.post(
    "/{plan_id}/assignments",
    response_model=PlanAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_commission_plan(
    plan_id: int,
    assignment_in: PlanAssignmentCreate,
    service: PlanServiceDep,
):
    """Assign a plan to an affiliate for an effective date range."""
    try:
        return await service.assign_plan(plan_id, assignment_in)
    except CommissionError as e:
        raise http_error(e)
