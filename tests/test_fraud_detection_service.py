"""Tests for affiliate fraud scoring and alert handling."""
from datetime import timedelta

import pytest
from sqlalchemy import select

from clinic_affiliates.models import AffiliateCommissionEvent, AffiliateFraudAlert, AffiliateFraudConfig
from clinic_affiliates.schemas.fraud import FraudAlertData, FraudCheckRequest, FraudCheckResult
from clinic_affiliates.services.fraud_detection_service import FraudDetectionService, score_alerts


def alert(severity: str, alert_type: str = "VELOCITY_SPIKE") -> FraudAlertData:
    return FraudAlertData(type=alert_type, severity=severity, description="test signal")


class TestScoring:

    def test_no_alerts_accepts(self):
        result = score_alerts([])
        assert result.passed is True
        assert result.risk_score == 0
        assert result.recommendation == "accept"

    def test_low_and_medium_accept(self):
        result = score_alerts([alert("LOW"), alert("MEDIUM")])
        assert result.risk_score == 20
        assert result.recommendation == "accept"

    def test_high_needs_review(self):
        result = score_alerts([alert("HIGH")])
        assert result.risk_score == 25
        assert result.recommendation == "review"
        assert result.passed is False

    def test_critical_rejects(self):
        result = score_alerts([alert("CRITICAL")])
        assert result.recommendation == "reject"

    def test_score_is_capped(self):
        result = score_alerts([alert("CRITICAL")] * 3)
        assert result.risk_score == 100


class TestChecks:

    @pytest.mark.asyncio
    async def test_defaults_without_config(self, db_session, seed):
        clinic = await seed.clinic()

        config = await FraudDetectionService(db_session).get_fraud_config(clinic.id)

        assert config.enabled is True
        assert config.max_conversions_per_hour == 10
        assert config.max_conversions_per_day == 50
        assert config.auto_hold_on_high_risk is True
        assert config.auto_suspend_on_critical is False

    @pytest.mark.asyncio
    async def test_hourly_velocity(self, db_session, seed, now):
        clinic = await seed.clinic()
        affiliate = await seed.affiliate(clinic)
        db_session.add(AffiliateFraudConfig(clinic_id=clinic.id, max_conversions_per_hour=2))
        await db_session.commit()
        for _ in range(3):
            await seed.commission_event(affiliate, occurred_at=now - timedelta(minutes=5))

        result = await FraudDetectionService(db_session).perform_fraud_check(
            FraudCheckRequest(clinic_id=clinic.id, affiliate_id=affiliate.id)
        )

        assert [a.type for a in result.alerts] == ["VELOCITY_SPIKE"]
        assert result.alerts[0].evidence["window"] == "hourly"
        assert result.recommendation == "review"

    @pytest.mark.asyncio
    async def test_reversed_events_do_not_count_toward_velocity(self, db_session, seed, now):
        clinic = await seed.clinic()
        affiliate = await seed.affiliate(clinic)
        db_session.add(AffiliateFraudConfig(clinic_id=clinic.id, max_conversions_per_hour=2))
        await db_session.commit()
        for _ in range(3):
            await seed.commission_event(affiliate, status="REVERSED", occurred_at=now - timedelta(minutes=5))

        alert_data = await FraudDetectionService(db_session).check_velocity_spike(
            clinic.id, affiliate.id, await FraudDetectionService(db_session).get_fraud_config(clinic.id)
        )

        assert alert_data is None

    @pytest.mark.asyncio
    async def test_refund_rate(self, db_session, seed, now):
        clinic = await seed.clinic()
        affiliate = await seed.affiliate(clinic)
        for status in ("REVERSED", "REVERSED", "REVERSED", "PENDING", "APPROVED"):
            await seed.commission_event(affiliate, status=status, occurred_at=now - timedelta(days=10))
        service = FraudDetectionService(db_session)

        alert_data = await service.check_refund_rate(clinic.id, affiliate.id, await service.get_fraud_config(clinic.id))

        assert alert_data.type == "REFUND_ABUSE"
        # 60% is more than twice the 20% threshold
        assert alert_data.severity == "HIGH"
        assert alert_data.evidence["refund_rate"] == 60.0

    @pytest.mark.asyncio
    async def test_refund_rate_needs_minimum_history(self, db_session, seed, now):
        clinic = await seed.clinic()
        affiliate = await seed.affiliate(clinic)
        for _ in range(4):
            await seed.commission_event(affiliate, status="REVERSED", occurred_at=now - timedelta(days=1))
        service = FraudDetectionService(db_session)

        alert_data = await service.check_refund_rate(clinic.id, affiliate.id, await service.get_fraud_config(clinic.id))

        assert alert_data is None

    @pytest.mark.asyncio
    async def test_windows_follow_injected_clock(self, db_session, seed, now):
        clinic = await seed.clinic()
        affiliate = await seed.affiliate(clinic)
        db_session.add(AffiliateFraudConfig(clinic_id=clinic.id, max_conversions_per_hour=2))
        await db_session.commit()
        burst_at = now - timedelta(days=2)
        for _ in range(3):
            await seed.commission_event(affiliate, occurred_at=burst_at)
        request = FraudCheckRequest(clinic_id=clinic.id, affiliate_id=affiliate.id)

        at_burst = await FraudDetectionService(
            db_session, clock=lambda: burst_at + timedelta(minutes=10)
        ).perform_fraud_check(request)
        at_now = await FraudDetectionService(db_session).perform_fraud_check(request)

        assert [a.evidence["window"] for a in at_burst.alerts] == ["hourly"]
        assert at_now.alerts == []

    @pytest.mark.asyncio
    async def test_built_in_checks_stop_at_review(self, db_session, seed, now):
        clinic = await seed.clinic()
        affiliate = await seed.affiliate(clinic)
        db_session.add(AffiliateFraudConfig(clinic_id=clinic.id, max_conversions_per_hour=1))
        await db_session.commit()
        for status in ["PENDING"] * 3 + ["REVERSED"] * 6:
            await seed.commission_event(affiliate, status=status, occurred_at=now - timedelta(minutes=5))

        result = await FraudDetectionService(db_session).perform_fraud_check(
            FraudCheckRequest(clinic_id=clinic.id, affiliate_id=affiliate.id)
        )

        assert len(result.alerts) == 2
        assert all(a.severity == "HIGH" for a in result.alerts)
        assert result.risk_score == 50
        assert result.recommendation == "review"

    @pytest.mark.asyncio
    async def test_disabled_config_accepts(self, db_session, seed, now):
        clinic = await seed.clinic()
        affiliate = await seed.affiliate(clinic)
        db_session.add(AffiliateFraudConfig(clinic_id=clinic.id, enabled=False, max_conversions_per_hour=0))
        await db_session.commit()
        await seed.commission_event(affiliate, occurred_at=now)

        result = await FraudDetectionService(db_session).perform_fraud_check(
            FraudCheckRequest(clinic_id=clinic.id, affiliate_id=affiliate.id)
        )

        assert result.recommendation == "accept"
        assert result.alerts == []

    @pytest.mark.asyncio
    async def test_internal_error_fails_open(self, db_session, seed):
        clinic = await seed.clinic()
        affiliate = await seed.affiliate(clinic)

        class FailingChecks(FraudDetectionService):
            async def check_velocity_spike(self, *args):
                raise RuntimeError("boom")

        result = await FailingChecks(db_session).perform_fraud_check(
            FraudCheckRequest(clinic_id=clinic.id, affiliate_id=affiliate.id)
        )

        assert result.passed is True
        assert result.risk_score == 0
        assert result.recommendation == "accept"


class TestProcessResult:

    @pytest.mark.asyncio
    async def test_persists_alerts_and_flags_event(self, db_session, seed):
        clinic = await seed.clinic()
        affiliate = await seed.affiliate(clinic)
        event = await seed.commission_event(affiliate)
        request = FraudCheckRequest(
            clinic_id=clinic.id,
            affiliate_id=affiliate.id,
            event_amount_cents=10000,
            commission_event_id=event.id,
        )
        result = FraudCheckResult(passed=False, risk_score=25, alerts=[alert("HIGH")], recommendation="review")

        await FraudDetectionService(db_session).process_fraud_check_result(request, result)

        alerts = (await db_session.execute(select(AffiliateFraudAlert))).scalars().all()
        assert len(alerts) == 1
        assert alerts[0].status == "OPEN"
        assert alerts[0].risk_score == 25
        assert alerts[0].affected_amount_cents == 10000

        await db_session.refresh(event)
        assert event.event_metadata["fraud_hold"] is True
        assert event.status == "PENDING"

    @pytest.mark.asyncio
    async def test_auto_suspend_on_critical(self, db_session, seed):
        clinic = await seed.clinic()
        affiliate = await seed.affiliate(clinic)
        db_session.add(AffiliateFraudConfig(clinic_id=clinic.id, auto_suspend_on_critical=True))
        await db_session.commit()
        request = FraudCheckRequest(clinic_id=clinic.id, affiliate_id=affiliate.id)
        result = FraudCheckResult(passed=False, risk_score=40, alerts=[alert("CRITICAL")], recommendation="reject")

        await FraudDetectionService(db_session).process_fraud_check_result(request, result)

        await db_session.refresh(affiliate)
        assert affiliate.status == "SUSPENDED"

    @pytest.mark.asyncio
    async def test_no_hold_when_auto_hold_disabled(self, db_session, seed):
        clinic = await seed.clinic()
        affiliate = await seed.affiliate(clinic)
        db_session.add(AffiliateFraudConfig(clinic_id=clinic.id, auto_hold_on_high_risk=False))
        await db_session.commit()
        event = await seed.commission_event(affiliate, event_metadata={"plan_name": "Standard"})
        request = FraudCheckRequest(clinic_id=clinic.id, affiliate_id=affiliate.id, commission_event_id=event.id)
        result = FraudCheckResult(passed=False, risk_score=25, alerts=[alert("HIGH")], recommendation="review")

        await FraudDetectionService(db_session).process_fraud_check_result(request, result)

        stored = (await db_session.execute(
            select(AffiliateCommissionEvent)
            .where(AffiliateCommissionEvent.id == event.id)
            .execution_options(populate_existing=True)
        )).scalar_one()
        assert stored.event_metadata == {"plan_name": "Standard"}
