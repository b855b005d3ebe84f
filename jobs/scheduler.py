"""
Background job scheduler

Jobs:
1. Order sweep - stale-order reminders, then expiry of pending orders past their deadline
2. Flow cleanup - drops conversation flows and order chats idle past their timeout
"""

import logging
from datetime import datetime
from typing import Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from services.core_services import CoreServices
from services.order_expiry_service import run_order_sweep

logger = logging.getLogger(__name__)


class OrderScheduler:
    """Single-process scheduler; a tick never overlaps the previous one"""

    def __init__(self, services: CoreServices, interval_minutes: Optional[int] = None):
        self.services = services
        self.interval_minutes = interval_minutes or Config.ORDER_SWEEP_INTERVAL_MINUTES

        jobstores = {
            'default': MemoryJobStore()
        }
        executors = {
            'default': AsyncIOExecutor()
        }
        job_defaults = {
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': 120
        }

        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

    async def _sweep_orders(self):
        return await run_order_sweep(self.services.expiry)

    async def _cleanup_flows(self):
        removed = self.services.conversations.state_manager.cleanup_expired()
        if removed:
            logger.info(f"🧹 FLOW_CLEANUP: removed {removed} idle flows")
        chats = self.services.chats.cleanup_expired()
        if chats:
            logger.info(f"🧹 CHAT_CLEANUP: closed {chats} idle order chats")
        return removed

    def setup_jobs(self):
        for job in self.scheduler.get_jobs():
            self.scheduler.remove_job(job.id)

        # ===== JOB 1: ORDER SWEEP =====
        self.scheduler.add_job(
            self._sweep_orders,
            trigger=IntervalTrigger(
                minutes=self.interval_minutes,
                start_date=datetime.now().replace(second=0, microsecond=0),
            ),
            id="order_sweep",
            name="⏰ Order Sweep - reminders & expiry",
            replace_existing=True
        )
        logger.info(f"✅ Order sweep scheduled every {self.interval_minutes} minutes")

        # ===== JOB 2: FLOW CLEANUP =====
        self.scheduler.add_job(
            self._cleanup_flows,
            trigger=IntervalTrigger(minutes=Config.CONVERSATION_TIMEOUT_MINUTES),
            id="flow_cleanup",
            name="🧹 Flow Cleanup - idle conversations and chats",
            replace_existing=True
        )

    def start(self):
        self.setup_jobs()
        self.scheduler.start()
        jobs = self.scheduler.get_jobs()
        logger.info(f"📋 Active jobs: {[f'{job.name} ({job.id})' for job in jobs]}")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("📴 Job scheduler stopped")
