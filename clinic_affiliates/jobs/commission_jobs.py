"""
Commission Jobs

Background jobs for the commission ledger:
- Hold-period approval sweep (PENDING -> APPROVED)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


async def approve_pending_commissions_job(session_context: Optional[Callable] = None) -> Dict[str, Any]:
    """
    Approve pending commissions whose hold period has passed.

    Runs every APPROVAL_SWEEP_INTERVAL_MINUTES. Safe to run concurrently
    with webhook processing: the sweep is a single conditional UPDATE and a
    reversal racing it still sees an APPROVED event as reversible.

    Args:
        session_context: async context manager factory yielding a session
            (defaults to get_db_session)
    """
    from clinic_affiliates.database import get_db_session
    from clinic_affiliates.services.affiliate_commission_service import AffiliateCommissionService

    logger.info("Starting commission approval sweep...")
    start_time = datetime.now(timezone.utc)

    async with (session_context or get_db_session)() as session:
        result = await AffiliateCommissionService(session).approve_pending_commissions()

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        f"Commission approval sweep completed in {duration:.2f}s: "
        f"{result.approved} approved, {result.errors} errors"
    )

    return {
        "approved": result.approved,
        "errors": result.errors,
        "duration_seconds": duration,
    }
