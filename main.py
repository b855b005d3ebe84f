#!/usr/bin/env python3
"""
SafeCall Bot - startup

Deterministic startup sequence:
Database -> Application -> Services -> Handlers -> Scheduler -> Polling
"""

import asyncio
import logging
import sys
from typing import List, Optional

from telegram.ext import Application

from config import Config
from database import create_tables, test_connection

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class StartupManager:
    """Explicit startup steps; the services bundle lives in application.bot_data"""

    def __init__(self):
        self.application: Optional[Application] = None
        self.scheduler = None
        self.startup_complete = False
        self.startup_errors: List[str] = []

    async def initialize_database(self) -> bool:
        logger.info("🗄️ Initializing database...")
        if not test_connection():
            self.startup_errors.append("Database: connection test failed")
            return False
        if not create_tables():
            self.startup_errors.append("Database: table creation failed")
            return False
        logger.info("✅ Database initialization complete")
        return True

    async def create_application(self) -> bool:
        logger.info("🤖 Creating Telegram application...")
        if not Config.validate_bot_configuration():
            self.startup_errors.append("Application: BOT_TOKEN not configured")
            return False
        self.application = Application.builder().token(Config.BOT_TOKEN).build()
        logger.info("✅ Telegram application created")
        return True

    async def initialize_services(self) -> bool:
        from services.core_services import BOT_DATA_KEY, build_services
        from services.telegram_notification_service import TelegramNotifier

        services = build_services(notifier=TelegramNotifier(self.application.bot))
        self.application.bot_data[BOT_DATA_KEY] = services
        logger.info("✅ Core services initialized")
        return True

    async def register_handlers(self) -> bool:
        from handlers.command_router import register_handlers

        register_handlers(self.application)
        return True

    async def start_application(self) -> bool:
        from jobs.scheduler import OrderScheduler
        from services.core_services import BOT_DATA_KEY
        from utils.bot_commands import BotCommandsManager

        await self.application.initialize()
        await BotCommandsManager.setup_bot_commands(self.application)
        await self.application.start()
        await self.application.updater.start_polling()

        self.scheduler = OrderScheduler(self.application.bot_data[BOT_DATA_KEY])
        self.scheduler.start()

        self.startup_complete = True
        logger.info("✅ Application started in polling mode")
        return True

    async def startup_sequence(self) -> bool:
        logger.info("🚀 Starting SafeCall bot...")
        Config.log_environment_config()

        startup_steps = [
            ("Database", self.initialize_database),
            ("Application", self.create_application),
            ("Services", self.initialize_services),
            ("Handlers", self.register_handlers),
            ("Start", self.start_application),
        ]

        for step_name, step_func in startup_steps:
            logger.info(f"▶️ Executing step: {step_name}")
            if not await step_func():
                logger.error(f"❌ Step '{step_name}' failed: {self.startup_errors}")
                return False

        logger.info("✅ Startup sequence completed successfully")
        return self.startup_complete

    async def shutdown(self) -> None:
        if self.scheduler is not None:
            self.scheduler.stop()
        if self.application is not None and self.startup_complete:
            await self.application.updater.stop()
            await self.application.stop()
            await self.application.shutdown()
        logger.info("👋 Bot stopped")


async def main() -> None:
    manager = StartupManager()
    if not await manager.startup_sequence():
        logger.error("❌ Startup failed - exiting")
        sys.exit(1)

    try:
        await asyncio.Event().wait()
    finally:
        await manager.shutdown()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("👋 Bot stopped by user")
