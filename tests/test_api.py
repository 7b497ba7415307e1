"""API tests through httpx against the ASGI app."""
import asyncio
from datetime import timedelta
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient

from clinic_affiliates.api.deps import get_commission_service
from clinic_affiliates.database import get_db
from clinic_affiliates.main import app, lifespan
from clinic_affiliates.services.affiliate_commission_service import AffiliateCommissionService


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session
            await session.commit()

    async def override_commission_service():
        async with session_factory() as session:
            yield AffiliateCommissionService(session, session_factory=session_factory)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_commission_service] = override_commission_service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


class TestCommissionPlanRoutes:

    @pytest.mark.asyncio
    async def test_plan_lifecycle(self, client, seed, now):
        clinic = await seed.clinic()
        affiliate = await seed.affiliate(clinic)

        response = await client.post("/api/v1/commission-plans", json={
            "clinic_id": clinic.id,
            "name": "Referral 10%",
            "plan_type": "PERCENT",
            "percent_bps": 1000,
            "tier_enabled": True,
        })
        assert response.status_code == 201
        plan = response.json()
        assert plan["plan_type"] == "PERCENT"

        response = await client.post(f"/api/v1/commission-plans/{plan['id']}/tiers", json={
            "name": "Gold", "level": 1, "min_conversions": 10, "percent_bps": 1500,
        })
        assert response.status_code == 201

        response = await client.post(f"/api/v1/commission-plans/{plan['id']}/tiers", json={
            "name": "Gold", "level": 2,
        })
        assert response.status_code == 409

        response = await client.post(f"/api/v1/commission-plans/{plan['id']}/product-rates", json={
            "product_sku": "SEMA-1", "percent_bps": 2000,
        })
        assert response.status_code == 201

        response = await client.post(f"/api/v1/commission-plans/{plan['id']}/promotions", json={
            "name": "Launch",
            "starts_at": now.isoformat(),
            "ends_at": (now + timedelta(days=7)).isoformat(),
            "bonus_flat_cents": 500,
        })
        assert response.status_code == 201
        assert response.json()["uses_count"] == 0

        response = await client.post(f"/api/v1/commission-plans/{plan['id']}/assignments", json={
            "affiliate_id": affiliate.id,
            "effective_from": now.isoformat(),
        })
        assert response.status_code == 201

        response = await client.put(f"/api/v1/commission-plans/{plan['id']}", json={"hold_days": 14})
        assert response.status_code == 200
        assert response.json()["hold_days"] == 14

        response = await client.get("/api/v1/commission-plans", params={"clinic_id": clinic.id})
        assert [p["id"] for p in response.json()] == [plan["id"]]

    @pytest.mark.asyncio
    async def test_update_paid_plan_conflicts(self, client, seed):
        clinic = await seed.clinic()
        affiliate = await seed.affiliate(clinic)
        plan = await seed.plan(clinic)
        await seed.commission_event(affiliate, commission_plan_id=plan.id, status="PAID")

        response = await client.put(f"/api/v1/commission-plans/{plan.id}", json={"percent_bps": 2000})

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_missing_plan(self, client):
        response = await client.get("/api/v1/commission-plans/404")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_assignment_range_rejected(self, client, seed, now):
        clinic = await seed.clinic()
        affiliate = await seed.affiliate(clinic)
        plan = await seed.plan(clinic)

        response = await client.post(f"/api/v1/commission-plans/{plan.id}/assignments", json={
            "affiliate_id": affiliate.id,
            "effective_from": now.isoformat(),
            "effective_to": (now - timedelta(days=1)).isoformat(),
        })

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_plan_payload(self, client, seed):
        clinic = await seed.clinic()

        response = await client.post("/api/v1/commission-plans", json={
            "clinic_id": clinic.id, "name": "Flat", "plan_type": "FLAT",
        })

        assert response.status_code == 422


class TestCommissionRoutes:

    @pytest.mark.asyncio
    async def test_payment_refund_and_stats(self, client, attributed, now):
        clinic, affiliate, _, patient = attributed
        payment = {
            "clinic_id": clinic.id,
            "patient_id": patient.id,
            "stripe_event_id": "evt_api_1",
            "stripe_object_id": "pi_api_1",
            "stripe_event_type": "payment_intent.succeeded",
            "amount_cents": 20000,
            "occurred_at": now.isoformat(),
            "is_first_payment": True,
        }

        response = await client.post("/api/v1/commissions/payment-events", json=payment)
        assert response.status_code == 200
        created = response.json()
        assert created["success"] is True
        assert created["commission_amount_cents"] == 2000

        response = await client.post("/api/v1/commissions/payment-events", json=payment)
        assert response.json()["skipped"] is True
        assert response.json()["commission_event_id"] == created["commission_event_id"]

        response = await client.get(
            f"/api/v1/commissions/affiliates/{affiliate.id}/stats", params={"clinic_id": clinic.id}
        )
        assert response.status_code == 200
        stats = response.json()
        assert stats["pending"] == {"count": 1, "amount_cents": 2000}
        assert stats["daily_trends"][0]["conversions"] == "<5"
        assert stats["daily_trends"][0]["commission_cents"] is None

        response = await client.post("/api/v1/commissions/refund-events", json={
            "clinic_id": clinic.id,
            "stripe_event_id": "evt_api_refund",
            "stripe_object_id": "pi_api_1",
            "stripe_event_type": "charge.refunded",
            "occurred_at": now.isoformat(),
        })
        assert response.json()["success"] is True
        assert response.json()["skipped"] is False

        response = await client.get(
            f"/api/v1/commissions/affiliates/{affiliate.id}/stats", params={"clinic_id": clinic.id}
        )
        assert response.json()["reversed"]["count"] == 1
        assert response.json()["totals"] == {"conversions": 0, "commission_cents": 0}

    @pytest.mark.asyncio
    async def test_approve_pending(self, client, seed, attributed, now):
        _, affiliate, _, _ = attributed
        await seed.commission_event(affiliate, hold_until=now - timedelta(hours=1))

        response = await client.post("/api/v1/commissions/approve-pending")

        assert response.status_code == 200
        assert response.json() == {"approved": 1, "errors": 0}

    @pytest.mark.asyncio
    async def test_negative_amount_rejected(self, client, attributed, now):
        clinic, _, _, patient = attributed

        response = await client.post("/api/v1/commissions/payment-events", json={
            "clinic_id": clinic.id,
            "patient_id": patient.id,
            "stripe_event_id": "evt_negative",
            "stripe_object_id": "pi_negative",
            "stripe_event_type": "payment_intent.succeeded",
            "amount_cents": -5,
            "occurred_at": now.isoformat(),
        })

        assert response.status_code == 422


class TestAppLifecycle:

    def test_commission_service_uses_app_task_registry(self, db_session):
        request = SimpleNamespace(app=app)

        service = get_commission_service(request, db_session)

        assert service.task_registry is app.state.background_tasks

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_fraud_alert_tasks(self):
        finished = []

        async def persist_alerts():
            await asyncio.sleep(0.05)
            finished.append(True)

        async with lifespan(app):
            app.state.background_tasks.spawn(persist_alerts())
            assert finished == []

        assert finished == [True]
        assert len(app.state.background_tasks) == 0
