"""Affiliate fraud alert and per-clinic fraud configuration models."""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Float, Text
from sqlalchemy.orm import Mapped, mapped_column

from clinic_affiliates.database import Base
from clinic_affiliates.db_types import JSONType


class FraudAlertType(str, Enum):
    """Fraud alert type enumeration."""
    SELF_REFERRAL = "SELF_REFERRAL"
    DUPLICATE_IP = "DUPLICATE_IP"
    VELOCITY_SPIKE = "VELOCITY_SPIKE"
    SUSPICIOUS_PATTERN = "SUSPICIOUS_PATTERN"
    REFUND_ABUSE = "REFUND_ABUSE"


class FraudSeverity(str, Enum):
    """Fraud alert severity."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class FraudAlertStatus(str, Enum):
    """Fraud alert review status."""
    OPEN = "OPEN"
    INVESTIGATING = "INVESTIGATING"
    CONFIRMED_FRAUD = "CONFIRMED_FRAUD"
    FALSE_POSITIVE = "FALSE_POSITIVE"
    DISMISSED = "DISMISSED"


class RiskLevel(str, Enum):
    """Risk level recorded on a commission event from the fraud score."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class AffiliateFraudAlert(Base):
    """Fraud alert raised against an affiliate."""
    __tablename__ = "affiliate_fraud_alerts"

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
    commission_event_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("affiliate_commission_events.id", ondelete="SET NULL"),
        nullable=True
    )

    alert_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="MEDIUM", index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    affected_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="OPEN", index=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<AffiliateFraudAlert(id={self.id}, type='{self.alert_type}', severity='{self.severity}')>"


class AffiliateFraudConfig(Base):
    """Per-clinic fraud detection thresholds."""
    __tablename__ = "affiliate_fraud_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    clinic_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("clinics.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True
    )

    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    max_conversions_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    max_conversions_per_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    velocity_spike_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=3.0)
    max_refund_rate_pct: Mapped[int] = mapped_column(Integer, nullable=False, default=20)
    min_refunds_for_alert: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    auto_hold_on_high_risk: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_suspend_on_critical: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

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

    def __repr__(self) -> str:
        return f"<AffiliateFraudConfig(clinic={self.clinic_id}, enabled={self.enabled})>"
