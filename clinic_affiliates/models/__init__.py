# Models module
from clinic_affiliates.models.clinic import Clinic, Patient, Payment, PaymentStatus
from clinic_affiliates.models.affiliate import Affiliate, AffiliateStatus
from clinic_affiliates.models.commission import (
    CommissionPlanType,
    CommissionAppliesTo,
    CommissionEventStatus,
    AttributionModel,
    AffiliateCommissionPlan,
    AffiliateCommissionTier,
    AffiliateProductRate,
    AffiliatePromotion,
    AffiliatePlanAssignment,
    AffiliateCommissionEvent,
)
from clinic_affiliates.models.fraud import (
    FraudAlertType,
    FraudSeverity,
    FraudAlertStatus,
    RiskLevel,
    AffiliateFraudAlert,
    AffiliateFraudConfig,
)

__all__ = [
    "Clinic",
    "Patient",
    "Payment",
    "PaymentStatus",
    "Affiliate",
    "AffiliateStatus",
    # Commission
    "CommissionPlanType",
    "CommissionAppliesTo",
    "CommissionEventStatus",
    "AttributionModel",
    "AffiliateCommissionPlan",
    "AffiliateCommissionTier",
    "AffiliateProductRate",
    "AffiliatePromotion",
    "AffiliatePlanAssignment",
    "AffiliateCommissionEvent",
    # Fraud
    "FraudAlertType",
    "FraudSeverity",
    "FraudAlertStatus",
    "RiskLevel",
    "AffiliateFraudAlert",
    "AffiliateFraudConfig",
]
