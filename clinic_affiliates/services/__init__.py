# Services module
from clinic_affiliates.services.affiliate_commission_service import AffiliateCommissionService
from clinic_affiliates.services.commission_plan_service import CommissionPlanService
from clinic_affiliates.services.fraud_detection_service import FraudDetectionService

__all__ = [
    "AffiliateCommissionService",
    "CommissionPlanService",
    "FraudDetectionService",
]
