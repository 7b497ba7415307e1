"""Tests for the scheduled approval sweep."""
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest

from clinic_affiliates.jobs.commission_jobs import approve_pending_commissions_job
from clinic_affiliates.jobs.scheduler import get_job_status, scheduler, shutdown_scheduler, start_scheduler


class TestApprovalJob:

    @pytest.mark.asyncio
    async def test_job_approves_elapsed_holds(self, db_session, session_factory, seed, attributed, now):
        _, affiliate, _, _ = attributed
        ready = await seed.commission_event(affiliate, hold_until=now - timedelta(minutes=1))
        held = await seed.commission_event(affiliate, hold_until=now + timedelta(days=2))

        @asynccontextmanager
        async def session_context():
            async with session_factory() as session:
                yield session

        summary = await approve_pending_commissions_job(session_context=session_context)

        assert summary["approved"] == 1
        assert summary["errors"] == 0
        await db_session.refresh(ready)
        await db_session.refresh(held)
        assert ready.status == "APPROVED"
        assert held.status == "PENDING"

    @pytest.mark.asyncio
    async def test_scheduler_registers_sweep(self):
        start_scheduler()
        try:
            jobs = get_job_status()
            assert [job["id"] for job in jobs] == ["approve_pending_commissions"]
            assert jobs[0]["next_run_time"] is not None
        finally:
            shutdown_scheduler()
        assert scheduler.running is False
