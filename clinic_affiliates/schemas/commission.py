"""Pydantic schemas for the affiliate commission module."""
from datetime import datetime, date as date_type
from typing import Optional, List, Union

from pydantic import BaseModel, Field, model_validator

from clinic_affiliates.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema
from clinic_affiliates.models.commission import CommissionPlanType, CommissionAppliesTo


# ==================== Typed Records (ORM -> service) ====================

class PlanRecord(BaseResponseSchema):
    """Commission plan as seen by the calculator."""
    id: int
    clinic_id: int
    name: str
    plan_type: CommissionPlanType
    flat_amount_cents: Optional[int] = None
    percent_bps: Optional[int] = None
    initial_percent_bps: Optional[int] = None
    initial_flat_amount_cents: Optional[int] = None
    recurring_percent_bps: Optional[int] = None
    recurring_flat_amount_cents: Optional[int] = None
    applies_to: CommissionAppliesTo = CommissionAppliesTo.FIRST_PAYMENT_ONLY
    hold_days: int = 0
    clawback_enabled: bool = False
    recurring_enabled: bool = False
    recurring_months: Optional[int] = None
    recurring_decay_pct: Optional[int] = None
    tier_enabled: bool = False
    is_active: bool = True


class TierRecord(BaseResponseSchema):
    id: int
    plan_id: int
    name: str
    level: int
    min_conversions: int = 0
    min_revenue_cents: int = 0
    percent_bps: Optional[int] = None
    flat_amount_cents: Optional[int] = None
    bonus_cents: Optional[int] = None


class ProductRateRecord(BaseResponseSchema):
    id: int
    plan_id: int
    product_sku: Optional[str] = None
    product_category: Optional[str] = None
    min_price_cents: Optional[int] = None
    max_price_cents: Optional[int] = None
    percent_bps: Optional[int] = None
    flat_amount_cents: Optional[int] = None
    priority: int = 0
    is_active: bool = True


class PromotionRecord(BaseResponseSchema):
    id: int
    plan_id: int
    name: str
    starts_at: datetime
    ends_at: datetime
    bonus_percent_bps: Optional[int] = None
    bonus_flat_cents: Optional[int] = None
    min_order_cents: Optional[int] = None
    max_uses: Optional[int] = None
    uses_count: int = 0
    affiliate_ids: Optional[List[int]] = None
    ref_codes: Optional[List[str]] = None
    is_active: bool = True


class AffiliateStats(BaseResponseSchema):
    """Lifetime performance used for tier qualification."""
    id: int
    lifetime_conversions: int = 0
    lifetime_revenue_cents: int = 0


# ==================== Calculation ====================

class CommissionContext(BaseModel):
    """Per-payment inputs to the calculator."""
    is_first_payment: bool = False
    is_recurring: bool = False
    recurring_month: Optional[int] = None
    product_sku: Optional[str] = None
    product_category: Optional[str] = None
    ref_code: Optional[str] = None


class CommissionBreakdown(BaseModel):
    """
    Result of a commission calculation, all amounts in cents.

    product_adjustment_cents is informational: it is already folded into
    base_commission_cents and is not added again to the total.
    """
    base_commission_cents: int = 0
    tier_bonus_cents: int = 0
    product_adjustment_cents: int = 0
    promotion_bonus_cents: int = 0
    recurring_multiplier: float = 1.0
    total_commission_cents: int = 0
    tier_name: Optional[str] = None
    promotion_name: Optional[str] = None
    applied_product_rule: Optional[str] = None
    # Caller increments usage for these inside its transaction
    applied_promotion_ids: List[int] = Field(default_factory=list)


# ==================== Events ====================

class PaymentEventData(BaseModel):
    """Normalized payment event from the Stripe webhook handler."""
    clinic_id: int
    patient_id: int
    stripe_event_id: str = Field(..., min_length=1, max_length=255)
    stripe_object_id: str = Field(..., min_length=1, max_length=255)
    stripe_event_type: str = Field(..., min_length=1, max_length=100)
    amount_cents: int = Field(..., ge=0)
    occurred_at: datetime
    is_first_payment: bool = False
    is_recurring: bool = False
    recurring_month: Optional[int] = Field(None, ge=1)
    subscription_id: Optional[str] = None
    product_sku: Optional[str] = None
    product_category: Optional[str] = None
    metadata: Optional[dict] = None


class RefundEventData(BaseModel):
    """Normalized refund / chargeback event."""
    clinic_id: int
    stripe_event_id: str = Field(..., min_length=1, max_length=255)
    stripe_object_id: str = Field(..., min_length=1, max_length=255)  # Original payment object
    stripe_event_type: str = Field(..., min_length=1, max_length=100)
    amount_cents: int = Field(0, ge=0)
    occurred_at: datetime
    reason: Optional[str] = None


class CommissionResult(BaseModel):
    """Outcome of processing or reversing a commission."""
    success: bool
    commission_event_id: Optional[int] = None
    commission_amount_cents: Optional[int] = None
    skipped: bool = False
    skip_reason: Optional[str] = None
    error: Optional[str] = None


class ApprovalResult(BaseModel):
    approved: int = 0
    errors: int = 0


# ==================== Stats (HIPAA-safe aggregates) ====================

class StatusAggregate(BaseModel):
    count: int = 0
    amount_cents: int = 0


class CommissionTotals(BaseModel):
    conversions: int = 0
    commission_cents: int = 0


class DailyTrend(BaseModel):
    """
    One day of activity. Days with fewer conversions than the suppression
    threshold report conversions as '<5' and null monetary figures.
    """
    date: date_type
    conversions: Union[int, str]
    revenue_cents: Optional[int] = None
    commission_cents: Optional[int] = None


class CommissionStatsResponse(BaseModel):
    pending: StatusAggregate
    approved: StatusAggregate
    paid: StatusAggregate
    reversed: StatusAggregate
    totals: CommissionTotals
    daily_trends: List[DailyTrend] = Field(default_factory=list)


# ==================== CommissionPlan Admin Schemas ====================

class CommissionPlanBase(BaseModel):
    """Base schema for CommissionPlan."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    plan_type: CommissionPlanType = CommissionPlanType.PERCENT
    flat_amount_cents: Optional[int] = Field(None, ge=0)
    percent_bps: Optional[int] = Field(None, ge=0, le=10000)
    initial_percent_bps: Optional[int] = Field(None, ge=0, le=10000)
    initial_flat_amount_cents: Optional[int] = Field(None, ge=0)
    recurring_percent_bps: Optional[int] = Field(None, ge=0, le=10000)
    recurring_flat_amount_cents: Optional[int] = Field(None, ge=0)
    applies_to: CommissionAppliesTo = CommissionAppliesTo.FIRST_PAYMENT_ONLY
    hold_days: int = Field(0, ge=0)
    clawback_enabled: bool = False
    recurring_enabled: bool = False
    recurring_months: Optional[int] = Field(None, ge=1)
    recurring_decay_pct: Optional[int] = Field(None, ge=0, le=100)
    tier_enabled: bool = False
    is_active: bool = True


class CommissionPlanCreate(CommissionPlanBase, BaseCreateSchema):
    """Schema for creating CommissionPlan."""
    clinic_id: int

    @model_validator(mode='after')
    def check_rate_for_plan_type(self):
        if self.plan_type == CommissionPlanType.PERCENT and self.percent_bps is None:
            raise ValueError("percent_bps is required for PERCENT plans")
        if self.plan_type == CommissionPlanType.FLAT and self.flat_amount_cents is None:
            raise ValueError("flat_amount_cents is required for FLAT plans")
        return self


class CommissionPlanUpdate(BaseUpdateSchema):
    """Schema for updating CommissionPlan."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    flat_amount_cents: Optional[int] = Field(None, ge=0)
    percent_bps: Optional[int] = Field(None, ge=0, le=10000)
    initial_percent_bps: Optional[int] = Field(None, ge=0, le=10000)
    initial_flat_amount_cents: Optional[int] = Field(None, ge=0)
    recurring_percent_bps: Optional[int] = Field(None, ge=0, le=10000)
    recurring_flat_amount_cents: Optional[int] = Field(None, ge=0)
    applies_to: Optional[CommissionAppliesTo] = None
    hold_days: Optional[int] = Field(None, ge=0)
    clawback_enabled: Optional[bool] = None
    recurring_enabled: Optional[bool] = None
    recurring_months: Optional[int] = Field(None, ge=1)
    recurring_decay_pct: Optional[int] = Field(None, ge=0, le=100)
    tier_enabled: Optional[bool] = None
    is_active: Optional[bool] = None


class CommissionPlanResponse(PlanRecord):
    """Response schema for CommissionPlan."""
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# ==================== Tier Schemas ====================

class CommissionTierCreate(BaseCreateSchema):
    """Schema for adding a tier to a plan. plan_id comes from the URL path."""
    name: str = Field(..., min_length=1, max_length=100)
    level: int = Field(..., ge=1)
    min_conversions: int = Field(0, ge=0)
    min_revenue_cents: int = Field(0, ge=0)
    percent_bps: Optional[int] = Field(None, ge=0, le=10000)
    flat_amount_cents: Optional[int] = Field(None, ge=0)
    bonus_cents: Optional[int] = Field(None, ge=0)


class CommissionTierResponse(TierRecord):
    created_at: datetime


# ==================== Product Rate Schemas ====================

class ProductRateCreate(BaseCreateSchema):
    """Schema for adding a product rate override to a plan."""
    product_sku: Optional[str] = Field(None, max_length=100)
    product_category: Optional[str] = Field(None, max_length=100)
    min_price_cents: Optional[int] = Field(None, ge=0)
    max_price_cents: Optional[int] = Field(None, ge=0)
    percent_bps: Optional[int] = Field(None, ge=0, le=10000)
    flat_amount_cents: Optional[int] = Field(None, ge=0)
    priority: int = 0
    is_active: bool = True

    @model_validator(mode='after')
    def check_matcher_and_rate(self):
        has_range = self.min_price_cents is not None and self.max_price_cents is not None
        if not (self.product_sku or self.product_category or has_range):
            raise ValueError("A product rate needs a SKU, a category or a full price range")
        if has_range and self.min_price_cents > self.max_price_cents:
            raise ValueError("min_price_cents cannot exceed max_price_cents")
        if self.percent_bps is None and self.flat_amount_cents is None:
            raise ValueError("A product rate needs percent_bps or flat_amount_cents")
        return self


class ProductRateResponse(ProductRateRecord):
    created_at: datetime


# ==================== Promotion Schemas ====================

class PromotionCreate(BaseCreateSchema):
    """Schema for adding a promotion to a plan."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    starts_at: datetime
    ends_at: datetime
    bonus_percent_bps: Optional[int] = Field(None, ge=0, le=10000)
    bonus_flat_cents: Optional[int] = Field(None, ge=0)
    min_order_cents: Optional[int] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, ge=1)
    affiliate_ids: Optional[List[int]] = None
    ref_codes: Optional[List[str]] = None
    is_active: bool = True

    @model_validator(mode='after')
    def check_window_and_bonus(self):
        if self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        if not self.bonus_percent_bps and not self.bonus_flat_cents:
            raise ValueError("A promotion needs bonus_percent_bps or bonus_flat_cents")
        return self


class PromotionResponse(PromotionRecord):
    description: Optional[str] = None
    created_at: datetime


# ==================== Plan Assignment Schemas ====================

class PlanAssignmentCreate(BaseCreateSchema):
    """Schema for assigning a plan to an affiliate."""
    affiliate_id: int
    effective_from: datetime
    effective_to: Optional[datetime] = None


class PlanAssignmentResponse(BaseResponseSchema):
    id: int
    clinic_id: int
    affiliate_id: int
    commission_plan_id: int
    effective_from: datetime
    effective_to: Optional[datetime] = None
    created_at: datetime
