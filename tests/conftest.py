"""
Shared fixtures: an in-memory SQLite database per test and a seeding helper
for clinics, affiliates, patients, plans and ledger rows.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import itertools
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from clinic_affiliates import models  # noqa: F401
from clinic_affiliates.database import Base, custom_json_dumps
from clinic_affiliates.models import (
    Affiliate,
    AffiliateCommissionEvent,
    AffiliateCommissionPlan,
    AffiliateCommissionTier,
    AffiliatePlanAssignment,
    AffiliateProductRate,
    AffiliatePromotion,
    Clinic,
    Patient,
    Payment,
)
from clinic_affiliates.schemas.commission import PaymentEventData, RefundEventData

_event_ids = itertools.count(1)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        json_serializer=custom_json_dumps,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def now():
    return datetime.now(timezone.utc).replace(microsecond=0)


class Seeder:
    """Inserts domain rows with sensible defaults."""

    def __init__(self, db: AsyncSession, now: datetime):
        self.db = db
        self.now = now

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        await self.db.refresh(obj)
        return obj

    async def clinic(self, name: str = "Downtown Clinic") -> Clinic:
        return await self._save(Clinic(name=name))

    async def affiliate(self, clinic: Clinic, ref_code: Optional[str] = "REF1", **kwargs) -> Affiliate:
        values = {"display_name": "Jordan Rep", "status": "ACTIVE"}
        values.update(kwargs)
        return await self._save(Affiliate(clinic_id=clinic.id, ref_code=ref_code, **values))

    async def patient(self, clinic: Clinic, affiliate: Optional[Affiliate] = None, ref_code: Optional[str] = None) -> Patient:
        return await self._save(Patient(
            clinic_id=clinic.id,
            attribution_affiliate_id=affiliate.id if affiliate else None,
            attribution_ref_code=ref_code if ref_code is not None else (affiliate.ref_code if affiliate else None),
            attribution_first_touch_at=self.now - timedelta(days=3) if affiliate else None,
        ))

    async def payment(self, patient: Patient, intent_id: str, status: str = "SUCCEEDED") -> Payment:
        return await self._save(Payment(
            clinic_id=patient.clinic_id,
            patient_id=patient.id,
            stripe_payment_intent_id=intent_id,
            amount_cents=10000,
            status=status,
        ))

    async def plan(self, clinic: Clinic, **kwargs) -> AffiliateCommissionPlan:
        values = {
            "name": "Standard 10%",
            "plan_type": "PERCENT",
            "percent_bps": 1000,
            "applies_to": "ALL_PAYMENTS",
            "hold_days": 0,
        }
        values.update(kwargs)
        return await self._save(AffiliateCommissionPlan(clinic_id=clinic.id, **values))

    async def assign(
        self,
        affiliate: Affiliate,
        plan: AffiliateCommissionPlan,
        effective_from: Optional[datetime] = None,
        effective_to: Optional[datetime] = None,
    ) -> AffiliatePlanAssignment:
        return await self._save(AffiliatePlanAssignment(
            clinic_id=affiliate.clinic_id,
            affiliate_id=affiliate.id,
            commission_plan_id=plan.id,
            effective_from=effective_from or self.now - timedelta(days=30),
            effective_to=effective_to,
        ))

    async def tier(self, plan: AffiliateCommissionPlan, **kwargs) -> AffiliateCommissionTier:
        values = {"name": "Gold", "level": 1}
        values.update(kwargs)
        return await self._save(AffiliateCommissionTier(plan_id=plan.id, **values))

    async def product_rate(self, plan: AffiliateCommissionPlan, **kwargs) -> AffiliateProductRate:
        return await self._save(AffiliateProductRate(plan_id=plan.id, **kwargs))

    async def promotion(self, plan: AffiliateCommissionPlan, **kwargs) -> AffiliatePromotion:
        values = {
            "name": "Spring Boost",
            "starts_at": self.now - timedelta(days=1),
            "ends_at": self.now + timedelta(days=1),
        }
        values.update(kwargs)
        return await self._save(AffiliatePromotion(plan_id=plan.id, **values))

    async def commission_event(self, affiliate: Affiliate, **kwargs) -> AffiliateCommissionEvent:
        n = next(_event_ids)
        values = {
            "stripe_event_id": f"evt_seed_{n}",
            "stripe_object_id": f"pi_seed_{n}",
            "stripe_event_type": "payment_intent.succeeded",
            "event_amount_cents": 10000,
            "commission_amount_cents": 1000,
            "base_commission_cents": 1000,
            "status": "PENDING",
            "occurred_at": self.now,
        }
        values.update(kwargs)
        return await self._save(AffiliateCommissionEvent(
            clinic_id=affiliate.clinic_id,
            affiliate_id=affiliate.id,
            **values,
        ))


@pytest.fixture
def seed(db_session, now):
    return Seeder(db_session, now)


@pytest.fixture
def payment_event(now):
    """Build a PaymentEventData with a fresh Stripe event id."""
    def _build(clinic_id: int, patient_id: int, **overrides) -> PaymentEventData:
        n = next(_event_ids)
        values = {
            "clinic_id": clinic_id,
            "patient_id": patient_id,
            "stripe_event_id": f"evt_{n}",
            "stripe_object_id": f"pi_{n}",
            "stripe_event_type": "payment_intent.succeeded",
            "amount_cents": 10000,
            "occurred_at": now,
            "is_first_payment": True,
        }
        values.update(overrides)
        return PaymentEventData(**values)
    return _build


@pytest.fixture
def refund_event(now):
    def _build(clinic_id: int, stripe_object_id: str, **overrides) -> RefundEventData:
        n = next(_event_ids)
        values = {
            "clinic_id": clinic_id,
            "stripe_event_id": f"evt_refund_{n}",
            "stripe_object_id": stripe_object_id,
            "stripe_event_type": "charge.refunded",
            "occurred_at": now,
        }
        values.update(overrides)
        return RefundEventData(**values)
    return _build


@pytest.fixture
async def attributed(seed):
    """Clinic, active affiliate with a 10% plan, and an attributed patient."""
    clinic = await seed.clinic()
    affiliate = await seed.affiliate(clinic)
    plan = await seed.plan(clinic, hold_days=7, clawback_enabled=True)
    await seed.assign(affiliate, plan)
    patient = await seed.patient(clinic, affiliate)
    return clinic, affiliate, plan, patient
