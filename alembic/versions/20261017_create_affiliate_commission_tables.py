"""Create clinic, attribution and affiliate commission tables.

Revision ID: 20261017_affiliate_commissions
Revises:
Create Date: 2026-10-17

Commission ledger:
- affiliate_commission_events is unique on (clinic_id, stripe_event_id);
  webhook redeliveries resolve to the existing row
- plans, tiers, product rates and promotions layer the commission amount
- plan assignments bind an affiliate to a plan for a date range
- fraud alerts / configs back the pre-commission fraud check
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = '20261017_affiliate_commissions'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(updated: bool = True) -> list:
    columns = [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    ]
    if updated:
        columns.append(
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()'))
        )
    return columns


def upgrade() -> None:
    """Create commission tables."""

    # ==================== Clinics & attribution ====================
    op.create_table(
        'clinics',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('subdomain', sa.String(100), nullable=True, unique=True),
        sa.Column('is_active', sa.Boolean, nullable=True, server_default='true'),
        *_timestamps(updated=False),
    )

    op.create_table(
        'affiliates',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('clinic_id', sa.Integer, sa.ForeignKey('clinics.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('display_name', sa.String(200), nullable=False),
        sa.Column('ref_code', sa.String(100), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='ACTIVE'),
        sa.Column('lifetime_conversions', sa.Integer, nullable=False, server_default='0'),
        sa.Column('lifetime_revenue_cents', sa.BigInteger, nullable=False, server_default='0'),
        *_timestamps(),
        sa.UniqueConstraint('clinic_id', 'ref_code', name='uq_affiliate_clinic_ref_code'),
    )
    op.create_index('ix_affiliates_clinic_id', 'affiliates', ['clinic_id'])
    op.create_index('ix_affiliates_status', 'affiliates', ['status'])

    op.create_table(
        'patients',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('clinic_id', sa.Integer, sa.ForeignKey('clinics.id', ondelete='RESTRICT'), nullable=False),
        sa.Column(
            'attribution_affiliate_id', sa.Integer,
            sa.ForeignKey('affiliates.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('attribution_ref_code', sa.String(100), nullable=True),
        sa.Column('attribution_first_touch_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('ix_patients_clinic_id', 'patients', ['clinic_id'])
    op.create_index('ix_patients_attribution_affiliate_id', 'patients', ['attribution_affiliate_id'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('clinic_id', sa.Integer, sa.ForeignKey('clinics.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('patient_id', sa.Integer, sa.ForeignKey('patients.id', ondelete='CASCADE'), nullable=False),
        sa.Column('stripe_payment_intent_id', sa.String(255), nullable=True, unique=True),
        sa.Column('amount_cents', sa.Integer, nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        *_timestamps(updated=False),
    )
    op.create_index('ix_payments_clinic_id', 'payments', ['clinic_id'])
    op.create_index('ix_payments_patient_id', 'payments', ['patient_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])

    # ==================== Plans ====================
    op.create_table(
        'affiliate_commission_plans',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('clinic_id', sa.Integer, sa.ForeignKey('clinics.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('plan_type', sa.String(20), nullable=False, server_default='PERCENT'),
        sa.Column('flat_amount_cents', sa.Integer, nullable=True),
        sa.Column('percent_bps', sa.Integer, nullable=True),
        sa.Column('initial_percent_bps', sa.Integer, nullable=True),
        sa.Column('initial_flat_amount_cents', sa.Integer, nullable=True),
        sa.Column('recurring_percent_bps', sa.Integer, nullable=True),
        sa.Column('recurring_flat_amount_cents', sa.Integer, nullable=True),
        sa.Column('applies_to', sa.String(30), nullable=False, server_default='FIRST_PAYMENT_ONLY'),
        sa.Column('hold_days', sa.Integer, nullable=False, server_default='0'),
        sa.Column('clawback_enabled', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('recurring_enabled', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('recurring_months', sa.Integer, nullable=True),
        sa.Column('recurring_decay_pct', sa.Integer, nullable=True),
        sa.Column('tier_enabled', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default='true'),
        *_timestamps(),
    )
    op.create_index('ix_affiliate_commission_plans_clinic_id', 'affiliate_commission_plans', ['clinic_id'])

    op.create_table(
        'affiliate_commission_tiers',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            'plan_id', sa.Integer,
            sa.ForeignKey('affiliate_commission_plans.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('level', sa.Integer, nullable=False, server_default='1'),
        sa.Column('min_conversions', sa.Integer, nullable=False, server_default='0'),
        sa.Column('min_revenue_cents', sa.Integer, nullable=False, server_default='0'),
        sa.Column('percent_bps', sa.Integer, nullable=True),
        sa.Column('flat_amount_cents', sa.Integer, nullable=True),
        sa.Column('bonus_cents', sa.Integer, nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint('plan_id', 'level', name='uq_commission_tier_plan_level'),
        sa.UniqueConstraint('plan_id', 'name', name='uq_commission_tier_plan_name'),
    )
    op.create_index('ix_affiliate_commission_tiers_plan_id', 'affiliate_commission_tiers', ['plan_id'])

    op.create_table(
        'affiliate_product_rates',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            'plan_id', sa.Integer,
            sa.ForeignKey('affiliate_commission_plans.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('product_sku', sa.String(100), nullable=True),
        sa.Column('product_category', sa.String(100), nullable=True),
        sa.Column('min_price_cents', sa.Integer, nullable=True),
        sa.Column('max_price_cents', sa.Integer, nullable=True),
        sa.Column('percent_bps', sa.Integer, nullable=True),
        sa.Column('flat_amount_cents', sa.Integer, nullable=True),
        sa.Column('priority', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default='true'),
        *_timestamps(updated=False),
    )
    op.create_index('ix_affiliate_product_rates_plan_id', 'affiliate_product_rates', ['plan_id'])
    op.create_index('ix_affiliate_product_rates_product_sku', 'affiliate_product_rates', ['product_sku'])
    op.create_index('ix_affiliate_product_rates_product_category', 'affiliate_product_rates', ['product_category'])

    op.create_table(
        'affiliate_promotions',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            'plan_id', sa.Integer,
            sa.ForeignKey('affiliate_commission_plans.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('bonus_percent_bps', sa.Integer, nullable=True),
        sa.Column('bonus_flat_cents', sa.Integer, nullable=True),
        sa.Column('min_order_cents', sa.Integer, nullable=True),
        sa.Column('max_uses', sa.Integer, nullable=True),
        sa.Column('uses_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('affiliate_ids', JSONB, nullable=True),
        sa.Column('ref_codes', JSONB, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default='true'),
        *_timestamps(),
    )
    op.create_index('ix_affiliate_promotions_plan_id', 'affiliate_promotions', ['plan_id'])
    op.create_index('ix_affiliate_promotions_is_active', 'affiliate_promotions', ['is_active'])
    op.create_index(
        'ix_affiliate_promotions_plan_window', 'affiliate_promotions', ['plan_id', 'starts_at', 'ends_at']
    )

    op.create_table(
        'affiliate_plan_assignments',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('clinic_id', sa.Integer, sa.ForeignKey('clinics.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('affiliate_id', sa.Integer, sa.ForeignKey('affiliates.id', ondelete='CASCADE'), nullable=False),
        sa.Column(
            'commission_plan_id', sa.Integer,
            sa.ForeignKey('affiliate_commission_plans.id', ondelete='RESTRICT'), nullable=False,
        ),
        sa.Column('effective_from', sa.DateTime(timezone=True), nullable=False),
        sa.Column('effective_to', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('ix_affiliate_plan_assignments_clinic_id', 'affiliate_plan_assignments', ['clinic_id'])
    op.create_index('ix_affiliate_plan_assignments_affiliate_id', 'affiliate_plan_assignments', ['affiliate_id'])
    op.create_index(
        'ix_affiliate_plan_assignments_commission_plan_id', 'affiliate_plan_assignments', ['commission_plan_id']
    )
    op.create_index(
        'ix_plan_assignment_lookup', 'affiliate_plan_assignments', ['affiliate_id', 'clinic_id', 'effective_from']
    )

    # ==================== Commission ledger ====================
    op.create_table(
        'affiliate_commission_events',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('clinic_id', sa.Integer, sa.ForeignKey('clinics.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('affiliate_id', sa.Integer, sa.ForeignKey('affiliates.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('patient_id', sa.Integer, sa.ForeignKey('patients.id', ondelete='SET NULL'), nullable=True),
        sa.Column(
            'commission_plan_id', sa.Integer,
            sa.ForeignKey('affiliate_commission_plans.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('stripe_event_id', sa.String(255), nullable=False),
        sa.Column('stripe_object_id', sa.String(255), nullable=False),
        sa.Column('stripe_event_type', sa.String(100), nullable=False),
        sa.Column('event_amount_cents', sa.Integer, nullable=False),
        sa.Column('commission_amount_cents', sa.Integer, nullable=False),
        sa.Column('base_commission_cents', sa.Integer, nullable=False, server_default='0'),
        sa.Column('tier_bonus_cents', sa.Integer, nullable=False, server_default='0'),
        sa.Column('promotion_bonus_cents', sa.Integer, nullable=False, server_default='0'),
        sa.Column('product_adjustment_cents', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_recurring', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('recurring_month', sa.Integer, nullable=True),
        sa.Column('attribution_model', sa.String(30), nullable=False, server_default='STORED'),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('hold_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reversed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reversal_reason', sa.String(255), nullable=True),
        sa.Column('metadata', JSONB, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('clinic_id', 'stripe_event_id', name='uq_commission_event_clinic_stripe_event'),
    )
    op.create_index('ix_affiliate_commission_events_clinic_id', 'affiliate_commission_events', ['clinic_id'])
    op.create_index('ix_affiliate_commission_events_affiliate_id', 'affiliate_commission_events', ['affiliate_id'])
    op.create_index(
        'ix_affiliate_commission_events_commission_plan_id', 'affiliate_commission_events', ['commission_plan_id']
    )
    op.create_index('ix_affiliate_commission_events_status', 'affiliate_commission_events', ['status'])
    op.create_index('ix_affiliate_commission_events_occurred_at', 'affiliate_commission_events', ['occurred_at'])
    op.create_index('ix_commission_events_object', 'affiliate_commission_events', ['clinic_id', 'stripe_object_id'])
    op.create_index(
        'ix_commission_events_affiliate_status', 'affiliate_commission_events', ['affiliate_id', 'status']
    )
    op.create_index('ix_commission_events_hold', 'affiliate_commission_events', ['status', 'hold_until'])

    # ==================== Fraud ====================
    op.create_table(
        'affiliate_fraud_alerts',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('clinic_id', sa.Integer, sa.ForeignKey('clinics.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('affiliate_id', sa.Integer, sa.ForeignKey('affiliates.id', ondelete='RESTRICT'), nullable=False),
        sa.Column(
            'commission_event_id', sa.Integer,
            sa.ForeignKey('affiliate_commission_events.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('alert_type', sa.String(50), nullable=False),
        sa.Column('severity', sa.String(20), nullable=False, server_default='MEDIUM'),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('evidence', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('risk_score', sa.Integer, nullable=False, server_default='0'),
        sa.Column('affected_amount_cents', sa.Integer, nullable=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='OPEN'),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution', sa.Text, nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('ix_affiliate_fraud_alerts_clinic_id', 'affiliate_fraud_alerts', ['clinic_id'])
    op.create_index('ix_affiliate_fraud_alerts_affiliate_id', 'affiliate_fraud_alerts', ['affiliate_id'])
    op.create_index('ix_affiliate_fraud_alerts_severity', 'affiliate_fraud_alerts', ['severity'])
    op.create_index('ix_affiliate_fraud_alerts_status', 'affiliate_fraud_alerts', ['status'])

    op.create_table(
        'affiliate_fraud_configs',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            'clinic_id', sa.Integer,
            sa.ForeignKey('clinics.id', ondelete='RESTRICT'), nullable=False, unique=True,
        ),
        sa.Column('enabled', sa.Boolean, nullable=False, server_default='true'),
        sa.Column('max_conversions_per_day', sa.Integer, nullable=False, server_default='50'),
        sa.Column('max_conversions_per_hour', sa.Integer, nullable=False, server_default='10'),
        sa.Column('velocity_spike_multiplier', sa.Float, nullable=False, server_default='3.0'),
        sa.Column('max_refund_rate_pct', sa.Integer, nullable=False, server_default='20'),
        sa.Column('min_refunds_for_alert', sa.Integer, nullable=False, server_default='5'),
        sa.Column('auto_hold_on_high_risk', sa.Boolean, nullable=False, server_default='true'),
        sa.Column('auto_suspend_on_critical', sa.Boolean, nullable=False, server_default='false'),
        *_timestamps(),
    )

    print("Created affiliate commission tables")


def downgrade() -> None:
    """Drop commission tables."""
    for table in (
        'affiliate_fraud_configs',
        'affiliate_fraud_alerts',
        'affiliate_commission_events',
        'affiliate_plan_assignments',
        'affiliate_promotions',
        'affiliate_product_rates',
        'affiliate_commission_tiers',
        'affiliate_commission_plans',
        'payments',
        'patients',
        'affiliates',
        'clinics',
    ):
        op.drop_table(table)
