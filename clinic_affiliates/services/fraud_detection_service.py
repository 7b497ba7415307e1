"""
Affiliate Fraud Detection Service

Scores affiliate activity before a commission is created:
- Velocity spikes (hourly / daily limits, spike vs 30-day average)
- Refund abuse (reversal rate over the last 90 days)

HIPAA: checks only use affiliate-level ledger counts. No patient email,
IP or device data reaches this service. The built-in checks therefore
raise HIGH or MEDIUM alerts at most; "reject" and auto-suspension are only
reached through CRITICAL alerts from a subclass that adds such a signal.

The check is a soft dependency of commission processing: any internal
failure returns an "accept" result with a zero score.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, List

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_affiliates.core.time_utils import ensure_utc, utc_now
from clinic_affiliates.models.affiliate import Affiliate, AffiliateStatus
from clinic_affiliates.models.commission import AffiliateCommissionEvent, CommissionEventStatus
from clinic_affiliates.models.fraud import (
    AffiliateFraudAlert,
    AffiliateFraudConfig,
    FraudAlertStatus,
    FraudAlertType,
    FraudSeverity,
)
from clinic_affiliates.schemas.fraud import (
    FraudAlertData,
    FraudCheckRequest,
    FraudCheckResult,
    FraudConfigRecord,
)

logger = logging.getLogger(__name__)

SEVERITY_SCORES = {
    FraudSeverity.CRITICAL: 40,
    FraudSeverity.HIGH: 25,
    FraudSeverity.MEDIUM: 15,
    FraudSeverity.LOW: 5,
}
REVIEW_SCORE = 25
VELOCITY_BASELINE_DAYS = 30
REFUND_WINDOW_DAYS = 90


def score_alerts(alerts: List[FraudAlertData]) -> FraudCheckResult:
    """Combine alerts into a capped risk score and a recommendation."""
    risk_score = min(100, sum(SEVERITY_SCORES[alert.severity] for alert in alerts))

    if any(alert.severity == FraudSeverity.CRITICAL for alert in alerts):
        recommendation = "reject"
    elif risk_score >= REVIEW_SCORE or any(alert.severity == FraudSeverity.HIGH for alert in alerts):
        recommendation = "review"
    else:
        recommendation = "accept"

    return FraudCheckResult(
        passed=recommendation == "accept",
        risk_score=risk_score,
        alerts=alerts,
        recommendation=recommendation,
    )


class FraudDetectionService:
    """Service for affiliate fraud scoring and alerting"""

    def __init__(self, db: AsyncSession, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clock = clock or utc_now

    async def get_fraud_config(self, clinic_id: int) -> FraudConfigRecord:
        """Clinic fraud thresholds, or the defaults when none are configured."""
        result = await self.db.execute(
            select(AffiliateFraudConfig).where(AffiliateFraudConfig.clinic_id == clinic_id)
        )
        config = result.scalar_one_or_none()
        if not config:
            return FraudConfigRecord()
        return FraudConfigRecord.model_validate(config)

    async def _count_events(self, clinic_id: int, affiliate_id: int, since, *conditions) -> int:
        result = await self.db.execute(
            select(func.count(AffiliateCommissionEvent.id)).where(
                AffiliateCommissionEvent.clinic_id == clinic_id,
                AffiliateCommissionEvent.affiliate_id == affiliate_id,
                AffiliateCommissionEvent.occurred_at >= since,
                *conditions,
            )
        )
        return result.scalar() or 0

    async def check_velocity_spike(
        self,
        clinic_id: int,
        affiliate_id: int,
        config: FraudConfigRecord,
    ) -> Optional[FraudAlertData]:
        """Flag unusual conversion rates for an affiliate."""
        now = ensure_utc(self.clock())
        not_reversed = AffiliateCommissionEvent.status != CommissionEventStatus.REVERSED.value

        hourly_count = await self._count_events(
            clinic_id, affiliate_id, now - timedelta(hours=1), not_reversed
        )
        daily_count = await self._count_events(
            clinic_id, affiliate_id, now - timedelta(days=1), not_reversed
        )
        monthly_count = await self._count_events(
            clinic_id, affiliate_id, now - timedelta(days=VELOCITY_BASELINE_DAYS), not_reversed
        )
        daily_average = monthly_count / VELOCITY_BASELINE_DAYS

        if hourly_count > config.max_conversions_per_hour:
            return FraudAlertData(
                type=FraudAlertType.VELOCITY_SPIKE.value,
                severity=FraudSeverity.HIGH,
                description=(
                    f"{hourly_count} conversions in the last hour "
                    f"(threshold: {config.max_conversions_per_hour})"
                ),
                evidence={
                    "hourly_count": hourly_count,
                    "threshold": config.max_conversions_per_hour,
                    "window": "hourly",
                },
            )

        if daily_count > config.max_conversions_per_day:
            return FraudAlertData(
                type=FraudAlertType.VELOCITY_SPIKE.value,
                severity=FraudSeverity.HIGH,
                description=(
                    f"{daily_count} conversions in the last 24 hours "
                    f"(threshold: {config.max_conversions_per_day})"
                ),
                evidence={
                    "daily_count": daily_count,
                    "threshold": config.max_conversions_per_day,
                    "window": "daily",
                },
            )

        if daily_average > 1 and daily_count > daily_average * config.velocity_spike_multiplier:
            return FraudAlertData(
                type=FraudAlertType.VELOCITY_SPIKE.value,
                severity=FraudSeverity.MEDIUM,
                description=(
                    f"Today's conversions ({daily_count}) are "
                    f"{daily_count / daily_average:.1f}x the daily average"
                ),
                evidence={
                    "daily_count": daily_count,
                    "daily_average": round(daily_average),
                    "multiplier": config.velocity_spike_multiplier,
                    "window": "spike",
                },
            )

        return None

    async def check_refund_rate(
        self,
        clinic_id: int,
        affiliate_id: int,
        config: FraudConfigRecord,
    ) -> Optional[FraudAlertData]:
        """Flag affiliates whose commissions are reversed too often."""
        since = ensure_utc(self.clock()) - timedelta(days=REFUND_WINDOW_DAYS)

        total_events = await self._count_events(clinic_id, affiliate_id, since)
        if total_events < config.min_refunds_for_alert:
            return None  # Not enough data

        reversed_events = await self._count_events(
            clinic_id,
            affiliate_id,
            since,
            AffiliateCommissionEvent.status == CommissionEventStatus.REVERSED.value,
        )
        refund_rate = reversed_events / total_events * 100

        if refund_rate > config.max_refund_rate_pct:
            return FraudAlertData(
                type=FraudAlertType.REFUND_ABUSE.value,
                severity=(
                    FraudSeverity.HIGH
                    if refund_rate > config.max_refund_rate_pct * 2
                    else FraudSeverity.MEDIUM
                ),
                description=(
                    f"Refund rate {refund_rate:.1f}% exceeds threshold "
                    f"{config.max_refund_rate_pct}%"
                ),
                evidence={
                    "total_events": total_events,
                    "reversed_events": reversed_events,
                    "refund_rate": round(refund_rate, 1),
                    "threshold": config.max_refund_rate_pct,
                },
            )

        return None

    async def perform_fraud_check(self, request: FraudCheckRequest) -> FraudCheckResult:
        """Run all checks for an affiliate and score the result."""
        config = await self.get_fraud_config(request.clinic_id)

        if not config.enabled:
            return FraudCheckResult(passed=True, risk_score=0, alerts=[], recommendation="accept")

        try:
            checks = [
                await self.check_velocity_spike(request.clinic_id, request.affiliate_id, config),
                await self.check_refund_rate(request.clinic_id, request.affiliate_id, config),
            ]
        except Exception as e:
            logger.error(
                f"Fraud check failed for affiliate {request.affiliate_id} "
                f"in clinic {request.clinic_id}: {e}"
            )
            return FraudCheckResult(passed=True, risk_score=0, alerts=[], recommendation="accept")

        return score_alerts([alert for alert in checks if alert])

    async def create_fraud_alert(
        self,
        request: FraudCheckRequest,
        alert: FraudAlertData,
        risk_score: int,
    ) -> AffiliateFraudAlert:
        record = AffiliateFraudAlert(
            clinic_id=request.clinic_id,
            affiliate_id=request.affiliate_id,
            commission_event_id=request.commission_event_id,
            alert_type=alert.type,
            severity=alert.severity.value,
            description=alert.description,
            evidence=alert.evidence,
            risk_score=risk_score,
            affected_amount_cents=alert.affected_amount_cents,
            status=FraudAlertStatus.OPEN.value,
        )
        self.db.add(record)
        await self.db.flush()

        logger.warning(
            f"Fraud alert {record.id} created: affiliate={request.affiliate_id} "
            f"clinic={request.clinic_id} type={alert.type} severity={alert.severity.value}"
        )
        return record

    async def process_fraud_check_result(
        self,
        request: FraudCheckRequest,
        result: FraudCheckResult,
    ) -> None:
        """
        Persist alerts and apply the clinic's automatic actions.

        Runs after the commission event has been committed, so
        request.commission_event_id refers to a real row.

        The commission processor skips rejected payments before dispatching
        here, and the built-in checks never emit CRITICAL, so auto-suspension
        only happens when a caller passes a result carrying a CRITICAL alert.
        """
        for alert in result.alerts:
            alert.affected_amount_cents = request.event_amount_cents
            await self.create_fraud_alert(request, alert, result.risk_score)

        config = await self.get_fraud_config(request.clinic_id)

        # Flag the commission for manual review; it stays PENDING
        if config.auto_hold_on_high_risk and result.recommendation == "review" and request.commission_event_id:
            event = await self.db.get(AffiliateCommissionEvent, request.commission_event_id)
            if event:
                event.event_metadata = {
                    **(event.event_metadata or {}),
                    "fraud_hold": True,
                    "fraud_risk_score": result.risk_score,
                    "fraud_alert_count": len(result.alerts),
                }

        if config.auto_suspend_on_critical and any(
            alert.severity == FraudSeverity.CRITICAL for alert in result.alerts
        ):
            await self.db.execute(
                update(Affiliate)
                .where(Affiliate.id == request.affiliate_id)
                .values(status=AffiliateStatus.SUSPENDED.value)
            )
            logger.warning(
                f"Affiliate {request.affiliate_id} auto-suspended after critical fraud alert "
                f"in clinic {request.clinic_id}"
            )

        await self.db.commit()
