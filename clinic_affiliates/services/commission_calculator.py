"""
Commission Calculator

Pure functions that turn a payment amount plus plan / tier / product-rate /
promotion records into a CommissionBreakdown. No database access happens
here; AffiliateCommissionService loads the records and calls
calculate_enhanced_commission.

Layering, in order:
1. Base rate: recurring-specific or initial-specific override, else plan default
2. Tier override (highest qualifying tier by lifetime stats) + one-time bonus
3. Product rate override (SKU > category > price range, then priority)
4. Base commission from the final effective rate
5. Promotional bonuses (sum of all active promotions)
6. Recurring multiplier (window cut-off and decay after month 12)
7. total = round((base + tier bonus + promotion bonus) * multiplier)

All amounts are integer cents; percentages are basis points (1000 = 10%).
Rounding is half-up to the nearest cent.
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, List, Sequence, Tuple, Union

from clinic_affiliates.core.time_utils import ensure_utc, utc_now
from clinic_affiliates.models.commission import CommissionPlanType
from clinic_affiliates.schemas.commission import (
    PlanRecord,
    TierRecord,
    ProductRateRecord,
    PromotionRecord,
    AffiliateStats,
    CommissionContext,
    CommissionBreakdown,
)

BPS_DENOMINATOR = Decimal("10000")
DECAY_STARTS_AFTER_MONTH = 12


def round_cents(value: Union[Decimal, int, float]) -> int:
    """Round to the nearest whole cent, halves away from zero."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_of(amount_cents: int, percent_bps: int) -> int:
    return round_cents(Decimal(amount_cents) * Decimal(percent_bps) / BPS_DENOMINATOR)


def calculate_commission(
    event_amount_cents: int,
    plan_type: Union[CommissionPlanType, str],
    flat_amount_cents: Optional[int],
    percent_bps: Optional[int],
) -> int:
    """
    Calculate the base commission for a plan type.

    Args:
        event_amount_cents: Payment amount in cents
        plan_type: FLAT or PERCENT
        flat_amount_cents: Flat commission amount (FLAT plans)
        percent_bps: Percentage in basis points (PERCENT plans)

    Returns:
        Commission in cents; 0 when the rate for the plan type is missing.
    """
    plan_type = CommissionPlanType(plan_type)

    if plan_type == CommissionPlanType.FLAT:
        return flat_amount_cents or 0

    if plan_type == CommissionPlanType.PERCENT and percent_bps:
        return percent_of(event_amount_cents, percent_bps)

    return 0


def select_base_rates(
    plan: PlanRecord,
    context: CommissionContext,
) -> Tuple[Optional[int], Optional[int]]:
    """Pick (percent_bps, flat_amount_cents) for an initial or a recurring payment."""
    if context.is_recurring:
        percent_bps = plan.recurring_percent_bps if plan.recurring_percent_bps is not None else plan.percent_bps
        flat_cents = (
            plan.recurring_flat_amount_cents
            if plan.recurring_flat_amount_cents is not None
            else plan.flat_amount_cents
        )
    else:
        percent_bps = plan.initial_percent_bps if plan.initial_percent_bps is not None else plan.percent_bps
        flat_cents = (
            plan.initial_flat_amount_cents
            if plan.initial_flat_amount_cents is not None
            else plan.flat_amount_cents
        )
    return percent_bps, flat_cents


def resolve_tier(tiers: Sequence[TierRecord], stats: AffiliateStats) -> Optional[TierRecord]:
    """Highest-level tier whose conversion and revenue thresholds are both met."""
    for tier in sorted(tiers, key=lambda t: t.level, reverse=True):
        meets_conversions = stats.lifetime_conversions >= tier.min_conversions
        meets_revenue = stats.lifetime_revenue_cents >= tier.min_revenue_cents
        if meets_conversions and meets_revenue:
            return tier
    return None


def _format_dollars(cents: int) -> str:
    return f"${cents / 100:.2f}"


def match_product_rate(
    rules: Sequence[ProductRateRecord],
    product_sku: Optional[str],
    product_category: Optional[str],
    amount_cents: Optional[int],
) -> Optional[Tuple[ProductRateRecord, str]]:
    """
    Find the product rate override for a payment.

    A SKU match beats a category match (case-insensitive), which beats a
    price-range match (inclusive bounds). Among rules matching the same way,
    the highest priority wins, then the oldest rule.

    Returns:
        (rule, human-readable rule label) or None
    """
    candidates = []

    for rule in rules:
        if not rule.is_active:
            continue

        if rule.product_sku and product_sku and rule.product_sku == product_sku:
            candidates.append((0, -rule.priority, rule.id, rule, f"SKU: {rule.product_sku}"))
        elif (
            rule.product_category
            and product_category
            and rule.product_category.lower() == product_category.lower()
        ):
            candidates.append((1, -rule.priority, rule.id, rule, f"Category: {rule.product_category}"))
        elif (
            amount_cents is not None
            and rule.min_price_cents is not None
            and rule.max_price_cents is not None
            and rule.min_price_cents <= amount_cents <= rule.max_price_cents
        ):
            label = (
                f"Price range: {_format_dollars(rule.min_price_cents)}"
                f"-{_format_dollars(rule.max_price_cents)}"
            )
            candidates.append((2, -rule.priority, rule.id, rule, label))

    if not candidates:
        return None

    best = min(candidates, key=lambda c: c[:3])
    return best[3], best[4]


def is_promotion_applicable(
    promotion: PromotionRecord,
    affiliate_id: int,
    ref_code: Optional[str],
    amount_cents: int,
    now: datetime,
) -> bool:
    """Check window, usage cap, minimum order and targeting for one promotion."""
    if not promotion.is_active:
        return False

    now = ensure_utc(now)
    if not (ensure_utc(promotion.starts_at) <= now <= ensure_utc(promotion.ends_at)):
        return False

    # Usage cap
    if promotion.max_uses is not None and promotion.uses_count >= promotion.max_uses:
        return False

    if promotion.min_order_cents and amount_cents < promotion.min_order_cents:
        return False

    # Targeting
    if promotion.affiliate_ids is not None and affiliate_id not in promotion.affiliate_ids:
        return False
    if promotion.ref_codes is not None and (not ref_code or ref_code not in promotion.ref_codes):
        return False

    return True


def select_active_promotions(
    promotions: Sequence[PromotionRecord],
    affiliate_id: int,
    ref_code: Optional[str],
    amount_cents: int,
    now: Optional[datetime] = None,
) -> List[PromotionRecord]:
    now = now or utc_now()
    return [
        promo for promo in promotions
        if is_promotion_applicable(promo, affiliate_id, ref_code, amount_cents, now)
    ]


def calculate_recurring_multiplier(
    recurring_month: int,
    recurring_months: Optional[int],
    recurring_decay_pct: Optional[int],
) -> float:
    """
    Multiplier for a recurring payment.

    0 once the recurring window is exhausted; the decay percentage after
    month 12 when configured; otherwise 1.
    """
    if recurring_months is not None and recurring_month > recurring_months:
        return 0.0

    if recurring_decay_pct is not None and recurring_month > DECAY_STARTS_AFTER_MONTH:
        return recurring_decay_pct / 100

    return 1.0


def calculate_enhanced_commission(
    plan: PlanRecord,
    stats: AffiliateStats,
    event_amount_cents: int,
    context: CommissionContext,
    tiers: Sequence[TierRecord] = (),
    product_rates: Sequence[ProductRateRecord] = (),
    promotions: Sequence[PromotionRecord] = (),
    now: Optional[datetime] = None,
) -> CommissionBreakdown:
    """
    Calculate the full commission breakdown for one payment.

    Args:
        plan: Effective commission plan
        stats: Affiliate lifetime stats (tier qualification)
        event_amount_cents: Gross payment amount
        context: First-payment / recurring flags, product and ref code
        tiers: The plan's tiers
        product_rates: The plan's product rate overrides
        promotions: Candidate promotions for the plan
        now: Evaluation time for promotion windows (defaults to now)

    Returns:
        CommissionBreakdown. base_commission_cents already includes the product
        adjustment, so base_with_plan_rate + product_adjustment_cents equals
        base_commission_cents exactly.
    """
    breakdown = CommissionBreakdown()

    # 1. Initial vs recurring rates
    effective_percent_bps, effective_flat_cents = select_base_rates(plan, context)

    # 2. Tier override
    if plan.tier_enabled:
        tier = resolve_tier(tiers, stats)
        if tier:
            breakdown.tier_name = tier.name
            if tier.percent_bps is not None:
                effective_percent_bps = tier.percent_bps
            if tier.flat_amount_cents is not None:
                effective_flat_cents = tier.flat_amount_cents
            if tier.bonus_cents:
                breakdown.tier_bonus_cents = tier.bonus_cents

    # 3. Product rate override
    matched = match_product_rate(
        product_rates,
        context.product_sku,
        context.product_category,
        event_amount_cents,
    )
    if matched:
        rule, label = matched
        breakdown.applied_product_rule = label

        base_with_plan_rate = calculate_commission(
            event_amount_cents, plan.plan_type, effective_flat_cents, effective_percent_bps
        )

        if rule.percent_bps is not None:
            effective_percent_bps = rule.percent_bps
        if rule.flat_amount_cents is not None:
            effective_flat_cents = rule.flat_amount_cents

        base_with_product_rate = calculate_commission(
            event_amount_cents, plan.plan_type, effective_flat_cents, effective_percent_bps
        )
        breakdown.product_adjustment_cents = base_with_product_rate - base_with_plan_rate

    # 4. Base commission from the final effective rate
    breakdown.base_commission_cents = calculate_commission(
        event_amount_cents, plan.plan_type, effective_flat_cents, effective_percent_bps
    )

    # 5. Promotions
    applied = select_active_promotions(
        promotions, stats.id, context.ref_code, event_amount_cents, now
    )
    for promo in applied:
        if promo.bonus_percent_bps:
            breakdown.promotion_bonus_cents += percent_of(event_amount_cents, promo.bonus_percent_bps)
        if promo.bonus_flat_cents:
            breakdown.promotion_bonus_cents += promo.bonus_flat_cents
        breakdown.applied_promotion_ids.append(promo.id)
    if applied:
        breakdown.promotion_name = ", ".join(promo.name for promo in applied)

    # 6. Recurring multiplier
    if context.is_recurring and plan.recurring_enabled and context.recurring_month:
        breakdown.recurring_multiplier = calculate_recurring_multiplier(
            context.recurring_month,
            plan.recurring_months,
            plan.recurring_decay_pct,
        )

    # 7. Total
    pre_recurring_total = (
        breakdown.base_commission_cents
        + breakdown.tier_bonus_cents
        + breakdown.promotion_bonus_cents
    )
    breakdown.total_commission_cents = round_cents(
        Decimal(pre_recurring_total) * Decimal(str(breakdown.recurring_multiplier))
    )

    return breakdown
