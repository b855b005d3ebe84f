"""
Scheduler wiring tests - jobs are registered, not run
"""

import pytest

from config import Config
from jobs.scheduler import OrderScheduler
from models import FlowKind


class TestOrderScheduler:

    def test_jobs_registered(self, services):
        scheduler = OrderScheduler(services, interval_minutes=5)
        scheduler.setup_jobs()

        jobs = {job.id: job for job in scheduler.scheduler.get_jobs()}
        assert set(jobs) == {"order_sweep", "flow_cleanup"}
        assert jobs["order_sweep"].trigger.interval.total_seconds() == 300

    def test_setup_is_idempotent(self, services):
        scheduler = OrderScheduler(services)
        scheduler.setup_jobs()
        scheduler.setup_jobs()
        assert len(scheduler.scheduler.get_jobs()) == 2
        assert scheduler.interval_minutes == Config.ORDER_SWEEP_INTERVAL_MINUTES

    @pytest.mark.asyncio
    async def test_sweep_job_runs_a_tick(self, services, factory, clock):
        requester = await factory.create_requester()
        order = await services.orders.create(requester.id, base_cents=2000)
        clock.advance(minutes=Config.ORDER_EXPIRY_MINUTES)

        result = await OrderScheduler(services)._sweep_orders()
        assert result["expiry"]["expired"] == [order.id]

    @pytest.mark.asyncio
    async def test_cleanup_job_drops_idle_flows(self, services, factory, clock):
        provider = await factory.create_provider()
        await services.conversations.start_flow(provider.id, FlowKind.NEW_SERVICE)
        clock.advance(minutes=Config.CONVERSATION_TIMEOUT_MINUTES + 1)

        assert await OrderScheduler(services)._cleanup_flows() == 1
