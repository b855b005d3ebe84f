"""Configuration management for the SafeCall Telegram Bot"""

import os
import logging
from decimal import Decimal
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


class Config:
    """Application configuration"""

    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"

    # Bot token: TELEGRAM_BOT_TOKEN takes priority over the generic BOT_TOKEN
    BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN") or os.getenv("BOT_TOKEN")
    BOT_USERNAME = os.getenv("BOT_USERNAME", "safecall_bot")

    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./safecall.db")

    # Operators - telegram ids that always get the operator role
    _admin_ids_env = os.getenv("ADMIN_IDS", "").strip()
    ADMIN_IDS: List[int] = [int(uid.strip()) for uid in _admin_ids_env.split(",") if uid.strip()]

    def _validate_percentage(env_var: str, default: str, min_val: float, max_val: float) -> Decimal:
        """Validate a percentage setting with bounds checking"""
        try:
            value = Decimal(os.getenv(env_var, default))

            if value < Decimal(str(min_val)) or value > Decimal(str(max_val)):
                logger.error(f"❌ {env_var}={value}% outside {min_val}%-{max_val}%. Using default {default}%")
                return Decimal(default)

            return value

        except Exception as e:
            logger.error(f"❌ Invalid {env_var} value '{os.getenv(env_var)}': {e}. Using default {default}%")
            return Decimal(default)

    def _validate_positive_int(env_var: str, default: str, allow_zero: bool = False) -> int:
        """Validate an integer setting that must be positive"""
        try:
            value = int(os.getenv(env_var, default))
            if value < 0 or (value == 0 and not allow_zero):
                logger.error(f"❌ {env_var}={value} must be positive. Using default {default}")
                return int(default)
            return value
        except ValueError:
            logger.error(f"❌ Invalid {env_var} value '{os.getenv(env_var)}'. Using default {default}")
            return int(default)

    # Order pricing: fee = round(base * rate) + flat
    ORDER_FEE_PERCENTAGE = _validate_percentage("ORDER_FEE_PERCENTAGE", "8.0", 0.0, 50.0)
    ORDER_FLAT_FEE_CENTS = _validate_positive_int("ORDER_FLAT_FEE_CENTS", "30", allow_zero=True)
    ORDER_CURRENCY = os.getenv("ORDER_CURRENCY", "EUR").upper().strip()

    # Amount bounds for any amount typed by a user (service price, top-up)
    MIN_AMOUNT_CENTS = _validate_positive_int("MIN_AMOUNT_CENTS", "100")
    MAX_AMOUNT_CENTS = _validate_positive_int("MAX_AMOUNT_CENTS", "10000000")

    # Order lifecycle timing
    ORDER_EXPIRY_MINUTES = _validate_positive_int("ORDER_EXPIRY_MINUTES", "1440")
    ORDER_REMINDER_MINUTES = _validate_positive_int("ORDER_REMINDER_MINUTES", "60")
    ORDER_SWEEP_INTERVAL_MINUTES = _validate_positive_int("ORDER_SWEEP_INTERVAL_MINUTES", "5")
    ORDER_SWEEP_BATCH_SIZE = _validate_positive_int("ORDER_SWEEP_BATCH_SIZE", "50")

    # "balance": funds are held from the requester wallet when the provider accepts.
    # "external": accept waits for a payment confirmation before the order is accepted.
    ORDER_PAYMENT_MODE = os.getenv("ORDER_PAYMENT_MODE", "balance").lower().strip()
    if ORDER_PAYMENT_MODE not in ("balance", "external"):
        logger.error(f"❌ Invalid ORDER_PAYMENT_MODE '{ORDER_PAYMENT_MODE}'. Using 'balance'")
        ORDER_PAYMENT_MODE = "balance"

    CONVERSATION_TIMEOUT_MINUTES = _validate_positive_int("CONVERSATION_TIMEOUT_MINUTES", "30")
    CHAT_RELAY_TIMEOUT_MINUTES = _validate_positive_int("CHAT_RELAY_TIMEOUT_MINUTES", "120")

    SESSION_URL_BASE = os.getenv("SESSION_URL_BASE", "https://meet.jit.si/")

    # Infrastructure retries for connectivity failures
    DB_RETRY_ATTEMPTS = _validate_positive_int("DB_RETRY_ATTEMPTS", "3")

    _validate_percentage = staticmethod(_validate_percentage)
    _validate_positive_int = staticmethod(_validate_positive_int)

    @staticmethod
    def is_operator(telegram_id: Optional[int]) -> bool:
        """Check whether a telegram id is configured as an operator"""
        return telegram_id is not None and int(telegram_id) in Config.ADMIN_IDS

    @staticmethod
    def validate_bot_configuration() -> bool:
        """Validate settings required to run the bot"""
        if not Config.BOT_TOKEN:
            logger.error("❌ No TELEGRAM_BOT_TOKEN or BOT_TOKEN configured")
            return False
        if not Config.ADMIN_IDS:
            logger.warning("⚠️ ADMIN_IDS is empty - providers cannot be approved and withdrawals cannot be processed")
        return True

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info("🔧 Bot Environment Configuration:")
        logger.info(f"   Environment: {Config.ENVIRONMENT.upper()}")
        logger.info(f"   Bot Username: @{Config.BOT_USERNAME}")
        logger.info(f"   Database: {Config.DATABASE_URL.split('://')[0]}")
        logger.info(f"   Operators configured: {len(Config.ADMIN_IDS)}")
        logger.info(
            f"   Fee: {Config.ORDER_FEE_PERCENTAGE}% + {Config.ORDER_FLAT_FEE_CENTS} cents ({Config.ORDER_CURRENCY})"
        )
        logger.info(f"   Payment mode: {Config.ORDER_PAYMENT_MODE}")
        logger.info(
            f"   Expiry: {Config.ORDER_EXPIRY_MINUTES}min, reminder: {Config.ORDER_REMINDER_MINUTES}min, "
            f"sweep every {Config.ORDER_SWEEP_INTERVAL_MINUTES}min"
        )
