import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).lower() == "true"


def _env_list(name: str, default: str = "") -> List[str]:
    raw = os.getenv(name, default) or ""
    return [x.strip() for x in raw.split(",") if x.strip()]


class Settings:
    """
    Process configuration, read once from the environment (.env supported).
    Attribute names mirror the env var names.
    """

    def __init__(self) -> None:
        self.LOYALTY_VERSION = os.getenv("LOYALTY_VERSION", "1.0.0")
        self.ENVIRONMENT = os.getenv("ENVIRONMENT", "production")

        # Shopify
        self.SHOPIFY_STORE_URL = (os.getenv("SHOPIFY_STORE_URL") or "").strip()
        self.SHOPIFY_ACCESS_TOKEN = (os.getenv("SHOPIFY_ACCESS_TOKEN") or "").strip()
        self.SHOPIFY_API_VERSION = os.getenv("SHOPIFY_API_VERSION", "2023-10")
        self.SHOPIFY_TIMEOUT_SECONDS = float(os.getenv("SHOPIFY_TIMEOUT_SECONDS", "20"))
        self.SHOPIFY_WEBHOOK_SECRET = os.getenv("SHOPIFY_WEBHOOK_SECRET", "")

        # Admin / CORS
        self.ADMIN_SECRET_KEY = os.getenv("ADMIN_SECRET_KEY", "")
        self.CORS_ALLOW_ORIGINS = _env_list("CORS_ALLOW_ORIGINS", "*")

        # Redemption store
        self.REDEMPTION_STORE = os.getenv("REDEMPTION_STORE", "memory").lower()
        self.SUPABASE_URL = (os.getenv("SUPABASE_URL") or "").strip()
        self.SUPABASE_SERVICE_ROLE_KEY = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()

        # Redemption policy
        self.REDEMPTION_TTL_MINUTES = int(os.getenv("REDEMPTION_TTL_MINUTES", "15"))
        self.DISCOUNT_CODE_PREFIX = os.getenv("DISCOUNT_CODE_PREFIX", "PSKLTY")
        self.MIN_ORDER_VALUE = float(os.getenv("MIN_ORDER_VALUE", "2000"))
        self.HIGH_TIER_ORDER_VALUE = float(os.getenv("HIGH_TIER_ORDER_VALUE", "10000"))
        self.MID_TIER_REDEEM_RATE = float(os.getenv("MID_TIER_REDEEM_RATE", "0.15"))
        self.HIGH_TIER_REDEEM_RATE = float(os.getenv("HIGH_TIER_REDEEM_RATE", "0.25"))
        self.EARN_RATE_MIN = float(os.getenv("EARN_RATE_MIN", "0.01"))
        self.EARN_RATE_MAX = float(os.getenv("EARN_RATE_MAX", "0.02"))
        self.COD_GATEWAYS = _env_list("COD_GATEWAYS", "cash on delivery,cod")

        # Background jobs
        self.SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", True)
        self.SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))
        self.USED_CODE_RETENTION_HOURS = int(os.getenv("USED_CODE_RETENTION_HOURS", "24"))
        self.ORDER_AWARD_RETENTION_DAYS = int(os.getenv("ORDER_AWARD_RETENTION_DAYS", "90"))

        # Rate limiting (redeem endpoint)
        self.REDEEM_RATE_LIMIT = int(os.getenv("REDEEM_RATE_LIMIT", "100"))
        self.REDEEM_RATE_WINDOW_SECONDS = int(os.getenv("REDEEM_RATE_WINDOW_SECONDS", "3600"))

    @property
    def shopify_configured(self) -> bool:
        return bool(self.SHOPIFY_STORE_URL and self.SHOPIFY_ACCESS_TOKEN)


settings = Settings()
