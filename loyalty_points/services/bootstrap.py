from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Optional

from loyalty_points.db import get_supabase
from loyalty_points.services.errors import LoyaltyError
from loyalty_points.services.loyalty.code_generator import CodeGenerator
from loyalty_points.services.loyalty.discount_provisioner import ShopifyDiscountProvisioner
from loyalty_points.services.loyalty.order_service import OrderEventService
from loyalty_points.services.loyalty.points_ledger import PointsLedger
from loyalty_points.services.loyalty.redemption_policy import RedemptionPolicy
from loyalty_points.services.loyalty.redemption_service import RedemptionService
from loyalty_points.services.loyalty.redemption_store import Clock, InMemoryRedemptionStore, utcnow
from loyalty_points.services.loyalty.supabase_store import SupabaseRedemptionStore
from loyalty_points.services.rate_limiter import RateLimiter
from loyalty_points.services.shopify_client import ShopifyClient

log = logging.getLogger("loyalty.main")


@dataclass
class LoyaltyContainer:
    """
    Everything with process lifetime: built once, injected into routes and
    the scheduler through app.state.
    """
    settings: Any
    store: Any
    redemptions: RedemptionService
    orders: OrderEventService
    codes: CodeGenerator
    redeem_limiter: RateLimiter
    client: Optional[ShopifyClient] = None

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()


def build_store(s: Any, *, clock: Clock = utcnow) -> Any:
    if s.REDEMPTION_STORE == "supabase":
        sb = get_supabase()
        if sb is None:
            raise RuntimeError("REDEMPTION_STORE=supabase but SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY are not set")
        log.info("Redemption store: supabase (discount_codes)")
        return SupabaseRedemptionStore(sb, clock=clock)
    log.info("Redemption store: in-memory")
    return InMemoryRedemptionStore(clock=clock)


def build_container(
    s: Any,
    *,
    store: Any = None,
    ledger: Any = None,
    provisioner: Any = None,
    clock: Clock = utcnow,
    rng: Optional[random.Random] = None,
) -> LoyaltyContainer:
    client: Optional[ShopifyClient] = None
    if ledger is None or provisioner is None:
        if not s.shopify_configured:
            raise LoyaltyError("Loyalty service is not configured", 503)
        client = ShopifyClient(
            s.SHOPIFY_STORE_URL,
            s.SHOPIFY_ACCESS_TOKEN,
            api_version=s.SHOPIFY_API_VERSION,
            timeout=s.SHOPIFY_TIMEOUT_SECONDS,
        )

    policy = RedemptionPolicy.from_settings(s, rng=rng)
    codes = CodeGenerator(s.DISCOUNT_CODE_PREFIX)
    store = store if store is not None else build_store(s, clock=clock)
    ledger = ledger if ledger is not None else PointsLedger(client)
    provisioner = (
        provisioner
        if provisioner is not None
        else ShopifyDiscountProvisioner(client, min_subtotal=s.MIN_ORDER_VALUE)
    )

    return LoyaltyContainer(
        settings=s,
        store=store,
        redemptions=RedemptionService(
            store=store,
            ledger=ledger,
            provisioner=provisioner,
            policy=policy,
            codes=codes,
            clock=clock,
        ),
        orders=OrderEventService(
            ledger=ledger,
            store=store,
            policy=policy,
            codes=codes,
            clock=clock,
        ),
        codes=codes,
        redeem_limiter=RateLimiter(
            limit=s.REDEEM_RATE_LIMIT,
            window_seconds=s.REDEEM_RATE_WINDOW_SECONDS,
        ),
        client=client,
    )
