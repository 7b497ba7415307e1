"""
Background Jobs Module

Handles scheduled tasks for:
- Approving commissions whose hold period has elapsed
"""

from clinic_affiliates.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from clinic_affiliates.jobs.commission_jobs import approve_pending_commissions_job

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "get_job_status",
    "approve_pending_commissions_job",
]
