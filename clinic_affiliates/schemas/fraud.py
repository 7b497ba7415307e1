"""Pydantic schemas for affiliate fraud detection."""
from typing import Optional, List, Literal

from pydantic import BaseModel, Field

from clinic_affiliates.schemas.base import BaseResponseSchema
from clinic_affiliates.models.fraud import FraudSeverity


FraudRecommendation = Literal["accept", "review", "reject"]


class FraudCheckRequest(BaseModel):
    """Input to a fraud check. Identifiers and amounts only."""
    clinic_id: int
    affiliate_id: int
    patient_id: Optional[int] = None
    event_amount_cents: Optional[int] = None
    commission_event_id: Optional[int] = None


class FraudAlertData(BaseModel):
    """A single fraud signal raised by a check."""
    type: str
    severity: FraudSeverity
    description: str
    evidence: dict = Field(default_factory=dict)
    affected_amount_cents: Optional[int] = None


class FraudCheckResult(BaseModel):
    """Outcome of a fraud check."""
    passed: bool
    risk_score: int = Field(0, ge=0, le=100)
    alerts: List[FraudAlertData] = Field(default_factory=list)
    recommendation: FraudRecommendation = "accept"


class FraudConfigRecord(BaseResponseSchema):
    """Per-clinic fraud thresholds (row or defaults)."""
    enabled: bool = True
    max_conversions_per_day: int = 50
    max_conversions_per_hour: int = 10
    velocity_spike_multiplier: float = 3.0
    max_refund_rate_pct: int = 20
    min_refunds_for_alert: int = 5
    auto_hold_on_high_risk: bool = True
    auto_suspend_on_critical: bool = False
