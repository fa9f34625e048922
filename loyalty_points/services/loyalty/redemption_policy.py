"""
Redemption Policy (Canonical)
=============================

Single source of truth for how many points an order earns and how many
points a customer may spend against a cart.

Rules:
- Earn: a rate drawn uniformly from [earn_rate_min, earn_rate_max] of the
  order value, rounded half-up. Doubled for prepaid (non cash-on-delivery)
  orders. Setting min == max makes the earn deterministic.
- Redeem: nothing below min_order_value; a mid-tier share of the balance up
  to high_tier_order_value; a larger share above it.

Non-goals:
- No I/O. No HTTP. No knowledge of Shopify.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field, asdict
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Any, Dict, Optional, Tuple


D = Decimal


def _to_decimal(v: Any, default: Decimal = D("0")) -> Decimal:
    if v is None:
        return default
    if isinstance(v, Decimal):
        return v
    try:
        return D(str(v))
    except Exception:
        return default


def _round_half_up(x: Decimal) -> int:
    return int(x.quantize(D("1"), rounding=ROUND_HALF_UP))


def _floor(x: Decimal) -> int:
    return int(x.quantize(D("1"), rounding=ROUND_FLOOR))


@dataclass(frozen=True)
class RedemptionPolicy:
    min_order_value: Decimal = D("2000")
    high_tier_order_value: Decimal = D("10000")
    mid_tier_redeem_rate: Decimal = D("0.15")
    high_tier_redeem_rate: Decimal = D("0.25")

    earn_rate_min: Decimal = D("0.01")
    earn_rate_max: Decimal = D("0.02")
    prepaid_multiplier: int = 2
    cod_gateways: Tuple[str, ...] = ("cash on delivery", "cod")

    hold_ttl_minutes: int = 15

    # Draws are only used for the earn rate; inject a seeded Random in tests.
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    # -----------------------------
    # Earn
    # -----------------------------
    def _draw_rate(self) -> Decimal:
        lo, hi = self.earn_rate_min, self.earn_rate_max
        if hi <= lo:
            return lo
        return lo + (hi - lo) * _to_decimal(self.rng.random())

    def is_cash_on_delivery(self, payment_method: Optional[str]) -> bool:
        pm = (payment_method or "").strip().lower()
        return pm in self.cod_gateways

    def points_earned(self, order_value: Any, payment_method: Optional[str]) -> int:
        value = _to_decimal(order_value)
        if value <= 0:
            return 0
        points = _round_half_up(value * self._draw_rate())
        if not self.is_cash_on_delivery(payment_method):
            points *= self.prepaid_multiplier
        return points

    def estimate_points_earned(self, order_value: Any) -> int:
        """
        Re-derived award for an order whose exact award was never recorded.
        Independent draw, no payment multiplier: an approximation only.
        """
        value = _to_decimal(order_value)
        if value <= 0:
            return 0
        return _round_half_up(value * self._draw_rate())

    # -----------------------------
    # Redeem
    # -----------------------------
    def meets_minimum(self, order_value: Any) -> bool:
        return _to_decimal(order_value) >= self.min_order_value

    def max_redeemable(self, order_value: Any, current_points: int) -> int:
        value = _to_decimal(order_value)
        points = max(0, int(current_points or 0))
        if value < self.min_order_value:
            return 0
        if value < self.high_tier_order_value:
            return _floor(D(points) * self.mid_tier_redeem_rate)
        return _floor(D(points) * self.high_tier_redeem_rate)

    # -----------------------------
    # Serialization
    # -----------------------------
    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out.pop("rng", None)
        for k, v in out.items():
            if isinstance(v, Decimal):
                out[k] = str(v)
        out["cod_gateways"] = list(self.cod_gateways)
        return out

    @classmethod
    def from_settings(cls, s: Any, *, rng: Optional[random.Random] = None) -> "RedemptionPolicy":
        return cls(
            min_order_value=_to_decimal(s.MIN_ORDER_VALUE),
            high_tier_order_value=_to_decimal(s.HIGH_TIER_ORDER_VALUE),
            mid_tier_redeem_rate=_to_decimal(s.MID_TIER_REDEEM_RATE),
            high_tier_redeem_rate=_to_decimal(s.HIGH_TIER_REDEEM_RATE),
            earn_rate_min=_to_decimal(s.EARN_RATE_MIN),
            earn_rate_max=_to_decimal(s.EARN_RATE_MAX),
            cod_gateways=tuple(x.lower() for x in s.COD_GATEWAYS),
            hold_ttl_minutes=int(s.REDEMPTION_TTL_MINUTES),
            rng=rng or random.Random(),
        )
