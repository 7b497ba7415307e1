"""Affiliate commission models.

Supports:
- Flat and percentage commission plans (with initial / recurring overrides)
- Performance tiers
- Product-specific rate overrides
- Time-bounded promotional bonuses
- Time-ranged plan assignments
- The commission event ledger (idempotent per Stripe event)
"""
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_affiliates.database import Base
from clinic_affiliates.db_types import JSONType

if TYPE_CHECKING:
    from clinic_affiliates.models.affiliate import Affiliate


class CommissionPlanType(str, Enum):
    """How the base commission is calculated."""
    FLAT = "FLAT"           # Fixed amount per payment
    PERCENT = "PERCENT"     # Basis points of the payment amount


class CommissionAppliesTo(str, Enum):
    """Which payments a plan pays commission on."""
    FIRST_PAYMENT_ONLY = "FIRST_PAYMENT_ONLY"
    ALL_PAYMENTS = "ALL_PAYMENTS"


class CommissionEventStatus(str, Enum):
    """Commission event lifecycle."""
    PENDING = "PENDING"     # Inside hold period
    APPROVED = "APPROVED"   # Eligible for payout
    PAID = "PAID"           # Included in a completed payout
    REVERSED = "REVERSED"   # Clawed back (refund / chargeback), terminal


class AttributionModel(str, Enum):
    """Where the attribution for an event came from."""
    STORED = "STORED"


class AffiliateCommissionPlan(Base):
    """
    Clinic-scoped commission plan.
    Rates are integers: percentages in basis points (1000 = 10%), amounts in cents.
    """
    __tablename__ = "affiliate_commission_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    clinic_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("clinics.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Type & default rates
    plan_type: Mapped[str] = mapped_column(String(20), nullable=False, default="PERCENT")
    flat_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    percent_bps: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Initial vs recurring payment overrides
    initial_percent_bps: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    initial_flat_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    recurring_percent_bps: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    recurring_flat_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Scope & payout rules
    applies_to: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="FIRST_PAYMENT_ONLY"
    )
    hold_days: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Days before a commission becomes eligible for payout"
    )
    clawback_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Recurring commissions
    recurring_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recurring_months: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Months of recurring commission; null means unlimited"
    )
    recurring_decay_pct: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Percent of commission paid after month 12"
    )

    # Tiers
    tier_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    tiers: Mapped[List["AffiliateCommissionTier"]] = relationship(
        "AffiliateCommissionTier",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="AffiliateCommissionTier.level"
    )
    product_rates: Mapped[List["AffiliateProductRate"]] = relationship(
        "AffiliateProductRate",
        back_populates="plan",
        cascade="all, delete-orphan"
    )
    promotions: Mapped[List["AffiliatePromotion"]] = relationship(
        "AffiliatePromotion",
        back_populates="plan",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<AffiliateCommissionPlan(id={self.id}, type='{self.plan_type}')>"


class AffiliateCommissionTier(Base):
    """
    Performance tier within a plan.
    An affiliate qualifies when both lifetime thresholds are met.
    """
    __tablename__ = "affiliate_commission_tiers"
    __table_args__ = (
        UniqueConstraint("plan_id", "level", name="uq_commission_tier_plan_level"),
        UniqueConstraint("plan_id", "name", name="uq_commission_tier_plan_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    plan_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("affiliate_commission_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Qualification
    min_conversions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_revenue_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Overrides
    percent_bps: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    flat_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bonus_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    plan: Mapped["AffiliateCommissionPlan"] = relationship(
        "AffiliateCommissionPlan",
        back_populates="tiers"
    )

    def __repr__(self) -> str:
        return f"<AffiliateCommissionTier(plan={self.plan_id}, level={self.level})>"


class AffiliateProductRate(Base):
    """
    Product-specific rate override.
    Matches by SKU, category or price range.
    """
    __tablename__ = "affiliate_product_rates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    plan_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("affiliate_commission_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Matchers
    product_sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    product_category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    min_price_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_price_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Rate
    percent_bps: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    flat_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    plan: Mapped["AffiliateCommissionPlan"] = relationship(
        "AffiliateCommissionPlan",
        back_populates="product_rates"
    )

    def __repr__(self) -> str:
        return f"<AffiliateProductRate(plan={self.plan_id}, sku='{self.product_sku}')>"


class AffiliatePromotion(Base):
    """
    Time-bounded promotional bonus on top of the plan commission.
    """
    __tablename__ = "affiliate_promotions"
    __table_args__ = (
        Index("ix_affiliate_promotions_plan_window", "plan_id", "starts_at", "ends_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    plan_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("affiliate_commission_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Window
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Bonus
    bonus_percent_bps: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bonus_flat_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Eligibility
    min_order_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    uses_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    affiliate_ids: Mapped[Optional[list]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Targeted affiliate IDs; null means all affiliates"
    )
    ref_codes: Mapped[Optional[list]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Targeted ref codes; null means all codes"
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    plan: Mapped["AffiliateCommissionPlan"] = relationship(
        "AffiliateCommissionPlan",
        back_populates="promotions"
    )

    def __repr__(self) -> str:
        return f"<AffiliatePromotion(id={self.id}, name='{self.name}')>"


class AffiliatePlanAssignment(Base):
    """
    Time-ranged binding of an affiliate to a commission plan.
    """
    __tablename__ = "affiliate_plan_assignments"
    __table_args__ = (
        Index("ix_plan_assignment_lookup", "affiliate_id", "clinic_id", "effective_from"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    clinic_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("clinics.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    affiliate_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    commission_plan_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("affiliate_commission_plans.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    effective_to: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    affiliate: Mapped["Affiliate"] = relationship(
        "Affiliate",
        back_populates="plan_assignments"
    )
    commission_plan: Mapped["AffiliateCommissionPlan"] = relationship("AffiliateCommissionPlan")

    def __repr__(self) -> str:
        return f"<AffiliatePlanAssignment(affiliate={self.affiliate_id}, plan={self.commission_plan_id})>"


class AffiliateCommissionEvent(Base):
    """
    Commission ledger entry, one per Stripe payment event.

    (clinic_id, stripe_event_id) is the idempotency boundary. Never holds
    patient-identifying data; event_metadata is limited to plan/tier/promotion
    provenance and fraud risk.
    """
    __tablename__ = "affiliate_commission_events"
    __table_args__ = (
        UniqueConstraint("clinic_id", "stripe_event_id", name="uq_commission_event_clinic_stripe_event"),
        Index("ix_commission_events_object", "clinic_id", "stripe_object_id"),
        Index("ix_commission_events_affiliate_status", "affiliate_id", "status"),
        Index("ix_commission_events_hold", "status", "hold_until"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    clinic_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("clinics.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    affiliate_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("affiliates.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    patient_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("patients.id", ondelete="SET NULL"),
        nullable=True
    )
    commission_plan_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("affiliate_commission_plans.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Stripe source
    stripe_event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    stripe_object_id: Mapped[str] = mapped_column(String(255), nullable=False)
    stripe_event_type: Mapped[str] = mapped_column(String(100), nullable=False)

    # Amounts (cents)
    event_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    commission_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    base_commission_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tier_bonus_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    promotion_bonus_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    product_adjustment_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Recurring
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recurring_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    attribution_model: Mapped[str] = mapped_column(String(30), nullable=False, default="STORED")

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING", index=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    hold_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reversed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reversal_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    event_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    affiliate: Mapped["Affiliate"] = relationship("Affiliate")
    commission_plan: Mapped[Optional["AffiliateCommissionPlan"]] = relationship("AffiliateCommissionPlan")

    def __repr__(self) -> str:
        return f"<AffiliateCommissionEvent(id={self.id}, status='{self.status}', amount={self.commission_amount_cents})>"
