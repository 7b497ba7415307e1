"""API endpoints for commission event processing and reporting."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query

from clinic_affiliates.api.deps import CommissionServiceDep
from clinic_affiliates.schemas.commission import (
    ApprovalResult,
    CommissionResult,
    CommissionStatsResponse,
    PaymentEventData,
    RefundEventData,
)

router = APIRouter()


@router.post("/payment-events", response_model=CommissionResult)
async def process_payment_event(
    event_in: PaymentEventData,
    service: CommissionServiceDep,
):
    """
    Create a commission from a normalized Stripe payment event.

    Redeliveries of the same Stripe event are answered with a skip and the
    existing commission event id.
    """
    return await service.process_payment_for_commission(event_in)


@router.post("/refund-events", response_model=CommissionResult)
async def process_refund_event(
    event_in: RefundEventData,
    service: CommissionServiceDep,
):
    """Reverse the commission for a refunded or charged-back payment."""
    return await service.reverse_commission_for_refund(event_in)


@router.post("/approve-pending", response_model=ApprovalResult)
async def approve_pending_commissions(service: CommissionServiceDep):
    """Approve pending commissions whose hold period has elapsed."""
    return await service.approve_pending_commissions()


@router.get("/affiliates/{affiliate_id}/stats", response_model=CommissionStatsResponse)
async def get_affiliate_commission_stats(
    affiliate_id: int,
    service: CommissionServiceDep,
    clinic_id: int = Query(...),
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
):
    """Aggregate commission stats; small daily buckets are suppressed."""
    return await service.get_affiliate_commission_stats(
        affiliate_id,
        clinic_id,
        from_date=from_date,
        to_date=to_date,
    )
