"""
Commission Plan Service

Admin operations for commission plans and everything layered on them:
tiers, product rate overrides, promotions and affiliate plan assignments.

A plan that has been paid against is immutable; further changes go into a
new plan assigned from a later effective date.
"""
import logging
from typing import List

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_affiliates.core.exceptions import (
    CommissionError,
    ConflictError,
    NotFoundError,
    PlanLockedError,
)
from clinic_affiliates.core.time_utils import ensure_utc
from clinic_affiliates.models.affiliate import Affiliate
from clinic_affiliates.models.clinic import Clinic
from clinic_affiliates.models.commission import (
    AffiliateCommissionEvent,
    AffiliateCommissionPlan,
    AffiliateCommissionTier,
    AffiliatePlanAssignment,
    AffiliateProductRate,
    AffiliatePromotion,
    CommissionEventStatus,
)
from clinic_affiliates.schemas.commission import (
    CommissionPlanCreate,
    CommissionPlanUpdate,
    CommissionTierCreate,
    PlanAssignmentCreate,
    ProductRateCreate,
    PromotionCreate,
)

logger = logging.getLogger(__name__)


class CommissionPlanService:
    """Service for commission plan administration"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_plan(self, plan_id: int) -> AffiliateCommissionPlan:
        plan = await self.db.get(AffiliateCommissionPlan, plan_id)
        if not plan:
            raise NotFoundError(f"Commission plan {plan_id} not found")
        return plan

    async def list_plans(self, clinic_id: int, active_only: bool = False) -> List[AffiliateCommissionPlan]:
        query = select(AffiliateCommissionPlan).where(AffiliateCommissionPlan.clinic_id == clinic_id)
        if active_only:
            query = query.where(AffiliateCommissionPlan.is_active.is_(True))
        result = await self.db.execute(query.order_by(AffiliateCommissionPlan.created_at.desc()))
        return list(result.scalars().all())

    async def is_plan_locked(self, plan_id: int) -> bool:
        """True once any PAID commission event references the plan."""
        result = await self.db.execute(
            select(func.count(AffiliateCommissionEvent.id)).where(
                AffiliateCommissionEvent.commission_plan_id == plan_id,
                AffiliateCommissionEvent.status == CommissionEventStatus.PAID.value,
            )
        )
        return (result.scalar() or 0) > 0

    async def create_plan(self, data: CommissionPlanCreate) -> AffiliateCommissionPlan:
        clinic = await self.db.get(Clinic, data.clinic_id)
        if not clinic:
            raise NotFoundError(f"Clinic {data.clinic_id} not found")

        plan = AffiliateCommissionPlan(**data.model_dump(mode="json"))
        self.db.add(plan)
        await self.db.commit()
        await self.db.refresh(plan)

        logger.info(f"Commission plan {plan.id} created for clinic {plan.clinic_id} ({plan.plan_type})")
        return plan

    async def update_plan(self, plan_id: int, data: CommissionPlanUpdate) -> AffiliateCommissionPlan:
        plan = await self.get_plan(plan_id)

        if await self.is_plan_locked(plan_id):
            raise PlanLockedError(
                f"Commission plan {plan_id} has paid commissions and cannot be modified; "
                f"create a new plan instead"
            )

        for field, value in data.model_dump(mode="json", exclude_unset=True).items():
            setattr(plan, field, value)

        await self.db.commit()
        await self.db.refresh(plan)

        logger.info(f"Commission plan {plan_id} updated")
        return plan

    async def add_tier(self, plan_id: int, data: CommissionTierCreate) -> AffiliateCommissionTier:
        await self.get_plan(plan_id)

        tier = AffiliateCommissionTier(plan_id=plan_id, **data.model_dump())
        self.db.add(tier)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(f"Tier level {data.level} or name '{data.name}' already exists on plan {plan_id}")
        await self.db.refresh(tier)

        logger.info(f"Tier '{tier.name}' (level {tier.level}) added to plan {plan_id}")
        return tier

    async def add_product_rate(self, plan_id: int, data: ProductRateCreate) -> AffiliateProductRate:
        await self.get_plan(plan_id)

        rate = AffiliateProductRate(plan_id=plan_id, **data.model_dump())
        self.db.add(rate)
        await self.db.commit()
        await self.db.refresh(rate)

        logger.info(f"Product rate {rate.id} added to plan {plan_id}")
        return rate

    async def add_promotion(self, plan_id: int, data: PromotionCreate) -> AffiliatePromotion:
        await self.get_plan(plan_id)

        values = data.model_dump()
        values["starts_at"] = ensure_utc(data.starts_at)
        values["ends_at"] = ensure_utc(data.ends_at)
        promotion = AffiliatePromotion(plan_id=plan_id, uses_count=0, **values)
        self.db.add(promotion)
        await self.db.commit()
        await self.db.refresh(promotion)

        logger.info(
            f"Promotion {promotion.id} '{promotion.name}' added to plan {plan_id} "
            f"({promotion.starts_at} - {promotion.ends_at})"
        )
        return promotion

    async def assign_plan(self, plan_id: int, data: PlanAssignmentCreate) -> AffiliatePlanAssignment:
        """Assign a plan to an affiliate of the same clinic from effective_from on."""
        plan = await self.get_plan(plan_id)

        effective_from = ensure_utc(data.effective_from)
        effective_to = ensure_utc(data.effective_to)
        if effective_to is not None and effective_to < effective_from:
            raise CommissionError("effective_to cannot be earlier than effective_from")

        result = await self.db.execute(
            select(Affiliate).where(
                Affiliate.id == data.affiliate_id,
                Affiliate.clinic_id == plan.clinic_id,
            )
        )
        if not result.scalar_one_or_none():
            raise NotFoundError(f"Affiliate {data.affiliate_id} not found in clinic {plan.clinic_id}")

        assignment = AffiliatePlanAssignment(
            clinic_id=plan.clinic_id,
            affiliate_id=data.affiliate_id,
            commission_plan_id=plan_id,
            effective_from=effective_from,
            effective_to=effective_to,
        )
        self.db.add(assignment)
        await self.db.commit()
        await self.db.refresh(assignment)

        logger.info(
            f"Plan {plan_id} assigned to affiliate {data.affiliate_id} "
            f"from {effective_from} to {effective_to or 'open-ended'}"
        )
        return assignment
