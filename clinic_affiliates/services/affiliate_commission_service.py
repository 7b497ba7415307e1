"""
Affiliate Commission Service

HIPAA: never stores or logs patient-identifiable information. Commission
events reference the patient by ID only; metadata holds plan / tier /
promotion provenance and fraud risk.

Handles:
- Commission event creation from Stripe payments (idempotent per Stripe event)
- Tiered, product-specific, promotional and recurring commission layering
- Refund / chargeback reversals (optimistic, at most once)
- Approval of commissions whose hold period has elapsed
- HIPAA-safe aggregate stats with small-cell suppression

Concurrency:
- UNIQUE(clinic_id, stripe_event_id) is the idempotency guarantee. The
  pre-check only avoids unnecessary work; a unique violation at insert time
  is answered with the existing event.
- Reversal is a conditional UPDATE guarded by reversed_at IS NULL; zero
  affected rows means another delivery already reversed the event.
- Event row, promotion usage and affiliate lifetime counters are written in
  one transaction.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import select, func, update, and_, or_, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_affiliates.config import settings
from clinic_affiliates.core.background import BackgroundTaskRegistry
from clinic_affiliates.core.time_utils import ensure_utc, utc_now
from clinic_affiliates.database import async_session_factory
from clinic_affiliates.models.affiliate import Affiliate, AffiliateStatus
from clinic_affiliates.models.clinic import Patient, Payment, PaymentStatus
from clinic_affiliates.models.commission import (
    AffiliateCommissionEvent,
    AffiliateCommissionPlan,
    AffiliateCommissionTier,
    AffiliatePlanAssignment,
    AffiliateProductRate,
    AffiliatePromotion,
    AttributionModel,
    CommissionAppliesTo,
    CommissionEventStatus,
)
from clinic_affiliates.models.fraud import RiskLevel
from clinic_affiliates.schemas.commission import (
    AffiliateStats,
    ApprovalResult,
    CommissionBreakdown,
    CommissionContext,
    CommissionResult,
    CommissionStatsResponse,
    CommissionTotals,
    DailyTrend,
    PaymentEventData,
    PlanRecord,
    ProductRateRecord,
    PromotionRecord,
    RefundEventData,
    StatusAggregate,
    TierRecord,
)
from clinic_affiliates.schemas.fraud import FraudCheckRequest, FraudCheckResult
from clinic_affiliates.services.commission_calculator import calculate_enhanced_commission
from clinic_affiliates.services.fraud_detection_service import FraudDetectionService

logger = logging.getLogger(__name__)

DUPLICATE_EVENT_CONSTRAINT = "uq_commission_event_clinic_stripe_event"
REVERSIBLE_STATUSES = (
    CommissionEventStatus.PENDING.value,
    CommissionEventStatus.APPROVED.value,
)


def classify_risk(risk_score: int) -> RiskLevel:
    if risk_score >= settings.FRAUD_HIGH_RISK_SCORE:
        return RiskLevel.HIGH
    if risk_score >= settings.FRAUD_MEDIUM_RISK_SCORE:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def is_duplicate_event_error(exc: IntegrityError) -> bool:
    """True when the violation is the (clinic_id, stripe_event_id) unique key."""
    message = str(exc.orig)
    if DUPLICATE_EVENT_CONSTRAINT in message:
        return True
    # SQLite names the columns instead of the constraint
    return (
        "affiliate_commission_events.clinic_id" in message
        and "affiliate_commission_events.stripe_event_id" in message
    )


def _skipped(reason: str, commission_event_id: Optional[int] = None) -> CommissionResult:
    return CommissionResult(
        success=True,
        skipped=True,
        skip_reason=reason,
        commission_event_id=commission_event_id,
    )


@dataclass
class CommissionLayers:
    """Tiers, product rates and promotions loaded for one payment."""
    tiers: List[TierRecord] = field(default_factory=list)
    product_rates: List[ProductRateRecord] = field(default_factory=list)
    promotions: List[PromotionRecord] = field(default_factory=list)

    def calculate(
        self,
        plan: PlanRecord,
        stats: AffiliateStats,
        amount_cents: int,
        context: CommissionContext,
        now: datetime,
        promotion_ids: Optional[List[int]] = None,
    ) -> CommissionBreakdown:
        """Run the calculator; promotion_ids restricts which promotions may apply."""
        promotions = self.promotions
        if promotion_ids is not None:
            promotions = [promo for promo in promotions if promo.id in promotion_ids]
        return calculate_enhanced_commission(
            plan,
            stats,
            amount_cents,
            context,
            tiers=self.tiers,
            product_rates=self.product_rates,
            promotions=promotions,
            now=now,
        )


class AffiliateCommissionService:
    """Service for affiliate commission processing"""

    def __init__(
        self,
        db: AsyncSession,
        fraud_service_factory: Callable[..., FraudDetectionService] = FraudDetectionService,
        session_factory: Optional[async_sessionmaker] = None,
        clock: Optional[Callable[[], datetime]] = None,
        task_registry: Optional[BackgroundTaskRegistry] = None,
    ):
        self.db = db
        self.clock = clock or utc_now
        self.fraud_service_factory = fraud_service_factory
        self.fraud_service = fraud_service_factory(db, clock=self.clock)
        self.session_factory = session_factory or async_session_factory
        # Fire-and-forget fraud alert tasks, held until they finish
        self.task_registry = task_registry if task_registry is not None else BackgroundTaskRegistry()

    # ========================================================================
    # Lookups
    # ========================================================================

    async def _find_event(self, clinic_id: int, stripe_event_id: str) -> Optional[AffiliateCommissionEvent]:
        result = await self.db.execute(
            select(AffiliateCommissionEvent).where(
                AffiliateCommissionEvent.clinic_id == clinic_id,
                AffiliateCommissionEvent.stripe_event_id == stripe_event_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_effective_commission_plan(
        self,
        affiliate_id: int,
        clinic_id: int,
        at: datetime,
    ) -> Optional[PlanRecord]:
        """Plan whose assignment range contains `at`, most recent assignment first."""
        at = ensure_utc(at)
        result = await self.db.execute(
            select(AffiliateCommissionPlan)
            .join(
                AffiliatePlanAssignment,
                AffiliatePlanAssignment.commission_plan_id == AffiliateCommissionPlan.id,
            )
            .where(
                AffiliatePlanAssignment.affiliate_id == affiliate_id,
                AffiliatePlanAssignment.clinic_id == clinic_id,
                AffiliatePlanAssignment.effective_from <= at,
                or_(
                    AffiliatePlanAssignment.effective_to.is_(None),
                    AffiliatePlanAssignment.effective_to >= at,
                ),
            )
            .order_by(AffiliatePlanAssignment.effective_from.desc(), AffiliatePlanAssignment.id.desc())
            .limit(1)
        )
        plan = result.scalar_one_or_none()
        return PlanRecord.model_validate(plan) if plan else None

    async def _load_tiers(self, plan_id: int) -> list[TierRecord]:
        result = await self.db.execute(
            select(AffiliateCommissionTier)
            .where(AffiliateCommissionTier.plan_id == plan_id)
            .order_by(AffiliateCommissionTier.level.desc())
        )
        return [TierRecord.model_validate(t) for t in result.scalars().all()]

    async def _load_product_rates(self, plan_id: int) -> list[ProductRateRecord]:
        result = await self.db.execute(
            select(AffiliateProductRate)
            .where(
                AffiliateProductRate.plan_id == plan_id,
                AffiliateProductRate.is_active.is_(True),
            )
            .order_by(AffiliateProductRate.priority.desc())
        )
        return [ProductRateRecord.model_validate(r) for r in result.scalars().all()]

    async def _load_promotions(self, plan_id: int, now: datetime) -> list[PromotionRecord]:
        result = await self.db.execute(
            select(AffiliatePromotion)
            .where(
                AffiliatePromotion.plan_id == plan_id,
                AffiliatePromotion.is_active.is_(True),
                AffiliatePromotion.starts_at <= now,
                AffiliatePromotion.ends_at >= now,
            )
            .order_by(AffiliatePromotion.id)
            .execution_options(populate_existing=True)
        )
        return [PromotionRecord.model_validate(p) for p in result.scalars().all()]

    async def check_if_first_payment(
        self,
        patient_id: int,
        current_payment_id: Optional[str] = None,
    ) -> bool:
        """True when the patient has no earlier successful payment."""
        conditions = [
            Payment.patient_id == patient_id,
            Payment.status == PaymentStatus.SUCCEEDED.value,
        ]
        if current_payment_id:
            conditions.append(
                or_(
                    Payment.stripe_payment_intent_id.is_(None),
                    Payment.stripe_payment_intent_id != current_payment_id,
                )
            )

        result = await self.db.execute(select(func.count(Payment.id)).where(*conditions))
        return (result.scalar() or 0) == 0

    # ========================================================================
    # Calculation
    # ========================================================================

    async def load_commission_layers(self, plan: PlanRecord, now: datetime) -> CommissionLayers:
        """The plan's tiers, active product rates and promotions live at `now`."""
        return CommissionLayers(
            tiers=await self._load_tiers(plan.id) if plan.tier_enabled else [],
            product_rates=await self._load_product_rates(plan.id),
            promotions=await self._load_promotions(plan.id, now),
        )

    async def update_affiliate_lifetime_stats(self, affiliate_id: int, event_amount_cents: int) -> None:
        """Atomic counter increment; runs inside the caller's transaction."""
        await self.db.execute(
            update(Affiliate)
            .where(Affiliate.id == affiliate_id)
            .values(
                lifetime_conversions=Affiliate.lifetime_conversions + 1,
                lifetime_revenue_cents=Affiliate.lifetime_revenue_cents + event_amount_cents,
            )
            .execution_options(synchronize_session=False)
        )

    async def claim_promotion_uses(self, promotion_ids: list[int]) -> list[int]:
        """
        Increment usage for each promotion still under its cap.

        Returns the ids that were incremented. A capped promotion filled by a
        concurrent event between calculation and persistence is left out.
        """
        claimed = []
        for promotion_id in promotion_ids:
            result = await self.db.execute(
                update(AffiliatePromotion)
                .where(
                    AffiliatePromotion.id == promotion_id,
                    or_(
                        AffiliatePromotion.max_uses.is_(None),
                        AffiliatePromotion.uses_count < AffiliatePromotion.max_uses,
                    ),
                )
                .values(uses_count=AffiliatePromotion.uses_count + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                claimed.append(promotion_id)
        return claimed

    async def _apply_transaction_timeout(self) -> None:
        """Bound the persistence transaction (PostgreSQL only)."""
        if self.db.get_bind().dialect.name != "postgresql":
            return
        timeout_ms = int(settings.COMMISSION_TX_TIMEOUT_SECONDS * 1000)
        await self.db.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))
        await self.db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))

    # ========================================================================
    # Payment -> Commission
    # ========================================================================

    async def process_payment_for_commission(self, data: PaymentEventData) -> CommissionResult:
        """
        Process a payment event and create a commission event if one is due.

        Returns:
            CommissionResult; skips are successes with skipped=True, anything
            unexpected is success=False with the error message.
        """
        try:
            return await self._process_payment(data)
        except Exception as e:
            await self.db.rollback()
            logger.error(
                f"Error processing payment {data.stripe_event_id} "
                f"for clinic {data.clinic_id}: {e}"
            )
            return CommissionResult(success=False, error=str(e))

    async def _process_payment(self, data: PaymentEventData) -> CommissionResult:
        clinic_id = data.clinic_id
        occurred_at = ensure_utc(data.occurred_at)

        # 1. Idempotency pre-check
        existing = await self._find_event(clinic_id, data.stripe_event_id)
        if existing:
            logger.debug(f"Event {data.stripe_event_id} already processed as {existing.id}")
            return _skipped("Event already processed", existing.id)

        # 2. Attribution
        result = await self.db.execute(
            select(Patient.attribution_affiliate_id, Patient.attribution_ref_code)
            .where(Patient.id == data.patient_id)
        )
        attribution = result.first()
        if not attribution or not attribution.attribution_affiliate_id:
            logger.debug(f"No affiliate attribution for patient {data.patient_id} in clinic {clinic_id}")
            return _skipped("No affiliate attribution")

        affiliate_id = attribution.attribution_affiliate_id
        ref_code = attribution.attribution_ref_code

        # 3. Affiliate must be active and belong to the clinic
        result = await self.db.execute(
            select(Affiliate)
            .where(
                Affiliate.id == affiliate_id,
                Affiliate.clinic_id == clinic_id,
                Affiliate.status == AffiliateStatus.ACTIVE.value,
            )
            .execution_options(populate_existing=True)
        )
        affiliate = result.scalar_one_or_none()
        if not affiliate:
            logger.debug(f"Affiliate {affiliate_id} not active or not in clinic {clinic_id}")
            return _skipped("Affiliate not active")
        stats = AffiliateStats.model_validate(affiliate)

        # 4. Plan resolution and scope
        plan = await self.get_effective_commission_plan(affiliate_id, clinic_id, occurred_at)
        if not plan or not plan.is_active:
            logger.debug(f"No active commission plan for affiliate {affiliate_id} in clinic {clinic_id}")
            return _skipped("No active commission plan")

        if (
            plan.applies_to == CommissionAppliesTo.FIRST_PAYMENT_ONLY
            and not data.is_first_payment
            and not data.is_recurring
        ):
            logger.debug(f"Plan {plan.id} only applies to first payment (affiliate {affiliate_id})")
            return _skipped("Plan only applies to first payment")

        if data.is_recurring and not plan.recurring_enabled:
            logger.debug(f"Recurring commissions not enabled on plan {plan.id}")
            return _skipped("Recurring commissions not enabled")

        # 5. Calculation
        context = CommissionContext(
            is_first_payment=data.is_first_payment,
            is_recurring=data.is_recurring,
            recurring_month=data.recurring_month,
            product_sku=data.product_sku,
            product_category=data.product_category,
            ref_code=ref_code,
        )
        now = ensure_utc(self.clock())
        layers = await self.load_commission_layers(plan, now)
        breakdown = layers.calculate(plan, stats, data.amount_cents, context, now)

        if breakdown.total_commission_cents <= 0:
            logger.debug(
                f"Zero commission for affiliate {affiliate_id} on {data.amount_cents} cents "
                f"(multiplier {breakdown.recurring_multiplier})"
            )
            return _skipped("Zero commission")

        # 6. Fraud check (soft dependency)
        fraud_request = FraudCheckRequest(
            clinic_id=clinic_id,
            affiliate_id=affiliate_id,
            patient_id=data.patient_id,
            event_amount_cents=data.amount_cents,
        )
        fraud_result: Optional[FraudCheckResult] = None
        try:
            fraud_result = await self.fraud_service.perform_fraud_check(fraud_request)
        except Exception as e:
            # Only reads have run so far; reset the session and continue unassessed
            await self.db.rollback()
            logger.error(
                f"Fraud check failed for affiliate {affiliate_id} in clinic {clinic_id}, "
                f"proceeding with commission: {e}"
            )

        risk_level = RiskLevel.LOW
        if fraud_result is not None:
            alert_types = [alert.type for alert in fraud_result.alerts]
            if fraud_result.recommendation == "reject":
                logger.warning(
                    f"Commission blocked by fraud detection: affiliate={affiliate_id} "
                    f"clinic={clinic_id} score={fraud_result.risk_score} alerts={alert_types}"
                )
                return _skipped(f"Fraud detected: {', '.join(alert_types)}")
            risk_level = classify_risk(fraud_result.risk_score)

        # 7. Persistence
        hold_until = occurred_at + timedelta(days=plan.hold_days) if plan.hold_days > 0 else None

        try:
            await self._apply_transaction_timeout()

            if breakdown.applied_promotion_ids:
                claimed = await self.claim_promotion_uses(breakdown.applied_promotion_ids)
                if len(claimed) < len(breakdown.applied_promotion_ids):
                    exhausted = [pid for pid in breakdown.applied_promotion_ids if pid not in claimed]
                    logger.warning(
                        f"Promotions {exhausted} reached max uses before event {data.stripe_event_id} "
                        f"was stored; recalculating without them"
                    )
                    breakdown = layers.calculate(
                        plan, stats, data.amount_cents, context, now, promotion_ids=claimed
                    )
                    if breakdown.total_commission_cents <= 0:
                        await self.db.rollback()
                        return _skipped("Zero commission")

            metadata = {
                "ref_code": ref_code,
                "plan_name": plan.name,
                "plan_type": plan.plan_type.value,
                "tier_name": breakdown.tier_name,
                "promotion_name": breakdown.promotion_name,
                "applied_product_rule": breakdown.applied_product_rule,
                "recurring_multiplier": breakdown.recurring_multiplier,
                "fraud_check": {
                    "risk_level": risk_level.value,
                    "risk_score": fraud_result.risk_score if fraud_result else None,
                    "assessed": fraud_result is not None,
                },
                "requires_review": risk_level == RiskLevel.HIGH,
            }

            event = AffiliateCommissionEvent(
                clinic_id=clinic_id,
                affiliate_id=affiliate_id,
                patient_id=data.patient_id,
                commission_plan_id=plan.id,
                stripe_event_id=data.stripe_event_id,
                stripe_object_id=data.stripe_object_id,
                stripe_event_type=data.stripe_event_type,
                event_amount_cents=data.amount_cents,
                commission_amount_cents=breakdown.total_commission_cents,
                base_commission_cents=breakdown.base_commission_cents,
                tier_bonus_cents=breakdown.tier_bonus_cents,
                promotion_bonus_cents=breakdown.promotion_bonus_cents,
                product_adjustment_cents=breakdown.product_adjustment_cents,
                is_recurring=data.is_recurring,
                recurring_month=data.recurring_month,
                attribution_model=AttributionModel.STORED.value,
                # HIGH risk stays PENDING and is flagged for manual review
                status=CommissionEventStatus.PENDING.value,
                occurred_at=occurred_at,
                hold_until=hold_until,
                event_metadata=metadata,
            )
            self.db.add(event)
            await self.db.flush()

            await self.update_affiliate_lifetime_stats(affiliate_id, data.amount_cents)

            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if not is_duplicate_event_error(e):
                raise
            existing = await self._find_event(clinic_id, data.stripe_event_id)
            logger.debug(
                f"Duplicate event {data.stripe_event_id} caught by constraint "
                f"(existing {existing.id if existing else None})"
            )
            return _skipped("Event already processed (constraint)", existing.id if existing else None)

        logger.info(
            f"Commission event {event.id} created: affiliate={affiliate_id} clinic={clinic_id} "
            f"amount={breakdown.total_commission_cents} base={breakdown.base_commission_cents} "
            f"tier={breakdown.tier_bonus_cents} promotion={breakdown.promotion_bonus_cents} "
            f"product={breakdown.product_adjustment_cents} stripe_event={data.stripe_event_id}"
        )

        if fraud_result is not None and fraud_result.alerts:
            fraud_request.commission_event_id = event.id
            self._dispatch_fraud_processing(fraud_request, fraud_result)

        return CommissionResult(
            success=True,
            commission_event_id=event.id,
            commission_amount_cents=breakdown.total_commission_cents,
        )

    def _dispatch_fraud_processing(self, request: FraudCheckRequest, result: FraudCheckResult) -> None:
        self.task_registry.spawn(self._process_fraud_result(request, result))

    async def _process_fraud_result(self, request: FraudCheckRequest, result: FraudCheckResult) -> None:
        """Persist fraud alerts in an independent session; failures are only logged."""
        try:
            async with self.session_factory() as session:
                fraud_service = self.fraud_service_factory(session, clock=self.clock)
                await fraud_service.process_fraud_check_result(request, result)
        except Exception as e:
            logger.error(
                f"Failed to process fraud result for affiliate {request.affiliate_id} "
                f"(commission event {request.commission_event_id}): {e}"
            )

    async def wait_for_background_tasks(self) -> None:
        """Wait for outstanding fraud alert tasks (tests, graceful shutdown)."""
        await self.task_registry.drain()

    # ========================================================================
    # Refund / Chargeback Reversal
    # ========================================================================

    async def reverse_commission_for_refund(self, data: RefundEventData) -> CommissionResult:
        """
        Reverse the commission for a refunded payment object.

        Only PENDING or APPROVED events are reversible, and only when the
        affiliate's current plan has clawback enabled.
        """
        try:
            return await self._reverse_commission(data)
        except Exception as e:
            await self.db.rollback()
            logger.error(
                f"Error reversing commission for object {data.stripe_object_id} "
                f"in clinic {data.clinic_id}: {e}"
            )
            return CommissionResult(success=False, error=str(e))

    async def _reverse_commission(self, data: RefundEventData) -> CommissionResult:
        result = await self.db.execute(
            select(AffiliateCommissionEvent)
            .where(
                AffiliateCommissionEvent.clinic_id == data.clinic_id,
                AffiliateCommissionEvent.stripe_object_id == data.stripe_object_id,
                AffiliateCommissionEvent.status.in_(REVERSIBLE_STATUSES),
            )
            .order_by(AffiliateCommissionEvent.id.desc())
            .limit(1)
        )
        event = result.scalar_one_or_none()

        if not event:
            logger.debug(
                f"No commission event to reverse for object {data.stripe_object_id} "
                f"in clinic {data.clinic_id}"
            )
            return _skipped("No commission event found")

        now = ensure_utc(self.clock())

        # Clawback policy follows the plan in force now, not the one that paid the event
        current_plan = await self.get_effective_commission_plan(event.affiliate_id, data.clinic_id, now)
        if not current_plan or not current_plan.clawback_enabled:
            logger.debug(
                f"Clawback not enabled for commission event {event.id} "
                f"(plan {current_plan.id if current_plan else None})"
            )
            return _skipped("Clawback not enabled")

        update_result = await self.db.execute(
            update(AffiliateCommissionEvent)
            .where(
                AffiliateCommissionEvent.id == event.id,
                AffiliateCommissionEvent.status.in_(REVERSIBLE_STATUSES),
                AffiliateCommissionEvent.reversed_at.is_(None),
            )
            .values(
                status=CommissionEventStatus.REVERSED.value,
                reversed_at=now,
                reversal_reason=data.reason or data.stripe_event_type,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if update_result.rowcount == 0:
            logger.info(f"Commission event {event.id} already reversed (affiliate {event.affiliate_id})")
            return _skipped("Already reversed", event.id)

        logger.info(
            f"Commission event {event.id} reversed: affiliate={event.affiliate_id} "
            f"reason={data.reason or data.stripe_event_type}"
        )
        return CommissionResult(success=True, commission_event_id=event.id)

    # ========================================================================
    # Approval Sweep
    # ========================================================================

    async def approve_pending_commissions(self) -> ApprovalResult:
        """Approve every PENDING commission whose hold period has passed."""
        now = ensure_utc(self.clock())

        try:
            result = await self.db.execute(
                update(AffiliateCommissionEvent)
                .where(
                    AffiliateCommissionEvent.status == CommissionEventStatus.PENDING.value,
                    or_(
                        AffiliateCommissionEvent.hold_until.is_(None),
                        AffiliateCommissionEvent.hold_until <= now,
                    ),
                )
                .values(
                    status=CommissionEventStatus.APPROVED.value,
                    approved_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error approving pending commissions: {e}")
            return ApprovalResult(approved=0, errors=1)

        logger.info(f"Approved {result.rowcount} pending commissions")
        return ApprovalResult(approved=result.rowcount, errors=0)

    # ========================================================================
    # Aggregated Stats (HIPAA-safe)
    # ========================================================================

    async def get_affiliate_commission_stats(
        self,
        affiliate_id: int,
        clinic_id: int,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> CommissionStatsResponse:
        """
        Aggregate commission stats for an affiliate.

        Returns counts and totals only. Daily buckets with fewer conversions
        than STATS_SUPPRESSION_MIN_COUNT report '<N' and null amounts.
        """
        filters = [
            AffiliateCommissionEvent.affiliate_id == affiliate_id,
            AffiliateCommissionEvent.clinic_id == clinic_id,
        ]
        if from_date:
            filters.append(AffiliateCommissionEvent.occurred_at >= ensure_utc(from_date))
        if to_date:
            filters.append(AffiliateCommissionEvent.occurred_at <= ensure_utc(to_date))

        status_result = await self.db.execute(
            select(
                AffiliateCommissionEvent.status,
                func.count(AffiliateCommissionEvent.id),
                func.coalesce(func.sum(AffiliateCommissionEvent.commission_amount_cents), 0),
            )
            .where(and_(*filters))
            .group_by(AffiliateCommissionEvent.status)
        )
        by_status = {
            row[0]: StatusAggregate(count=row[1], amount_cents=int(row[2]))
            for row in status_result.all()
        }

        def aggregate(status: CommissionEventStatus) -> StatusAggregate:
            return by_status.get(status.value, StatusAggregate())

        pending = aggregate(CommissionEventStatus.PENDING)
        approved = aggregate(CommissionEventStatus.APPROVED)
        paid = aggregate(CommissionEventStatus.PAID)
        reversed_ = aggregate(CommissionEventStatus.REVERSED)

        day = func.date(AffiliateCommissionEvent.occurred_at)
        daily_result = await self.db.execute(
            select(
                day.label("day"),
                func.count(AffiliateCommissionEvent.id).label("conversions"),
                func.sum(AffiliateCommissionEvent.event_amount_cents).label("revenue_cents"),
                func.sum(AffiliateCommissionEvent.commission_amount_cents).label("commission_cents"),
            )
            .where(
                and_(*filters),
                AffiliateCommissionEvent.status != CommissionEventStatus.REVERSED.value,
            )
            .group_by(day)
            .order_by(day.desc())
            .limit(settings.STATS_DAILY_TREND_LIMIT)
        )

        threshold = settings.STATS_SUPPRESSION_MIN_COUNT
        daily_trends = []
        for row in daily_result.all():
            conversions = int(row.conversions)
            if conversions < threshold:
                daily_trends.append(DailyTrend(date=row.day, conversions=f"<{threshold}"))
            else:
                daily_trends.append(DailyTrend(
                    date=row.day,
                    conversions=conversions,
                    revenue_cents=int(row.revenue_cents or 0),
                    commission_cents=int(row.commission_cents or 0),
                ))

        return CommissionStatsResponse(
            pending=pending,
            approved=approved,
            paid=paid,
            reversed=reversed_,
            totals=CommissionTotals(
                conversions=pending.count + approved.count + paid.count,
                commission_cents=pending.amount_cents + approved.amount_cents + paid.amount_cents,
            ),
            daily_trends=daily_trends,
        )
