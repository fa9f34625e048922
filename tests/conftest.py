import asyncio
import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from loyalty_points.main import create_app
from loyalty_points.services.bootstrap import build_container
from loyalty_points.services.errors import ExternalProvisioningError, ShopifyAPIError
from loyalty_points.services.loyalty.code_generator import CodeGenerator
from loyalty_points.services.loyalty.discount_provisioner import ProvisionedDiscount
from loyalty_points.services.loyalty.order_service import OrderEventService
from loyalty_points.services.loyalty.points_ledger import PointsBalance
from loyalty_points.services.loyalty.redemption_policy import RedemptionPolicy
from loyalty_points.services.loyalty.redemption_service import RedemptionService
from loyalty_points.services.loyalty.redemption_store import InMemoryRedemptionStore
from loyalty_points.settings import Settings

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeLedger:
    """Balances keyed by customer id; a missing key means no points account."""

    def __init__(self, balances: Optional[Dict[str, int]] = None):
        self.balances: Dict[str, int] = dict(balances or {})
        self.fail_set = False
        self.writes: List[tuple] = []

    async def get_balance(self, customer_id: str) -> Optional[PointsBalance]:
        # yield so concurrent redeems interleave at the Shopify round-trip
        await asyncio.sleep(0)
        if customer_id not in self.balances:
            return None
        return PointsBalance(customer_id, self.balances[customer_id], metafield_id=f"mf-{customer_id}")

    async def set_balance(self, customer_id: str, points: int, *, metafield_id: Optional[str] = None) -> int:
        await asyncio.sleep(0)
        if self.fail_set:
            raise ShopifyAPIError("metafield write failed", 500)
        points = max(0, int(points))
        self.balances[customer_id] = points
        self.writes.append((customer_id, points, metafield_id))
        return points

    async def adjust(self, customer_id: str, delta: int) -> int:
        current = self.balances.get(customer_id, 0)
        return await self.set_balance(customer_id, current + int(delta))


class FakeProvisioner:
    def __init__(self):
        self.created: List[dict] = []
        self.deleted: List[str] = []
        self.active_rules: List[dict] = []
        self.fail_create = False
        self.fail_delete = False
        self._next_id = 1000

    async def create(self, customer_id, cart_token, amount, expires_at, *, code, starts_at):
        await asyncio.sleep(0)
        if self.fail_create:
            raise ExternalProvisioningError()
        self._next_id += 1
        rule_id = str(self._next_id)
        self.created.append(
            {
                "customer_id": customer_id,
                "cart_token": cart_token,
                "amount": amount,
                "expires_at": expires_at,
                "code": code,
                "rule_id": rule_id,
            }
        )
        return ProvisionedDiscount(code=code, rule_id=rule_id)

    async def delete(self, rule_id: str) -> bool:
        self.deleted.append(rule_id)
        return not self.fail_delete

    async def list_active_rules(self, customer_id, now):
        return [r for r in self.active_rules if r.get("customer_id") == customer_id]


def make_settings(**overrides) -> Settings:
    s = Settings()
    s.SHOPIFY_STORE_URL = ""
    s.SHOPIFY_ACCESS_TOKEN = ""
    s.SHOPIFY_WEBHOOK_SECRET = ""
    s.ADMIN_SECRET_KEY = "admin-secret"
    s.CORS_ALLOW_ORIGINS = ["*"]
    s.REDEMPTION_STORE = "memory"
    s.REDEMPTION_TTL_MINUTES = 15
    s.DISCOUNT_CODE_PREFIX = "PSKLTY"
    s.MIN_ORDER_VALUE = 2000.0
    s.HIGH_TIER_ORDER_VALUE = 10000.0
    s.MID_TIER_REDEEM_RATE = 0.15
    s.HIGH_TIER_REDEEM_RATE = 0.25
    s.EARN_RATE_MIN = 0.01
    s.EARN_RATE_MAX = 0.01
    s.COD_GATEWAYS = ["cash on delivery", "cod"]
    s.SCHEDULER_ENABLED = False
    s.USED_CODE_RETENTION_HOURS = 24
    s.ORDER_AWARD_RETENTION_DAYS = 90
    s.REDEEM_RATE_LIMIT = 100
    s.REDEEM_RATE_WINDOW_SECONDS = 3600
    for k, v in overrides.items():
        setattr(s, k, v)
    return s


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def ledger():
    return FakeLedger({"42": 1000})


@pytest.fixture
def provisioner():
    return FakeProvisioner()


@pytest.fixture
def store(clock):
    return InMemoryRedemptionStore(clock=clock)


@pytest.fixture
def policy():
    return RedemptionPolicy(earn_rate_min=Decimal("0.01"), earn_rate_max=Decimal("0.01"), rng=random.Random(7))


@pytest.fixture
def codes():
    return CodeGenerator("PSKLTY")


@pytest.fixture
def service(store, ledger, provisioner, policy, codes, clock):
    return RedemptionService(
        store=store,
        ledger=ledger,
        provisioner=provisioner,
        policy=policy,
        codes=codes,
        clock=clock,
    )


@pytest.fixture
def orders(store, ledger, policy, codes, clock):
    return OrderEventService(ledger=ledger, store=store, policy=policy, codes=codes, clock=clock)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def container(settings, store, ledger, provisioner, clock):
    return build_container(
        settings,
        store=store,
        ledger=ledger,
        provisioner=provisioner,
        clock=clock,
        rng=random.Random(7),
    )


@pytest.fixture
def app(container):
    return create_app(container)


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
