"""
Redemption Service (Orchestrator)
=================================

Purpose:
- Drive a points-for-discount redemption end to end across two systems of
  record: Shopify (price rule + customer metafield) and the local
  Redemption Store.
- Keep routes thin: validation, invariants and compensation live here.

Flow (Rejected = no side effect yet, Failed = a Shopify discount exists or existed):

    Validating -> CheckingExisting -> CheckingBalance -> PolicyCheck
      -> Reserving -> Provisioning -> Recording -> Debiting -> Completed

- Reserving takes the customer's single active slot in the store *before*
  anything is created in Shopify; a concurrent second request gets Conflict.
- Provisioning failure releases the reservation. Nothing is left behind.
- Recording failure deletes the Shopify price rule (compensation) and
  releases the reservation.
- Debiting failure is not compensated: the code is real and usable. It is
  logged for reconciliation and surfaced as LedgerUpdateError.

Collaborator contracts:
- store: see redemption_store.py
- ledger.get_balance(customer_id) -> PointsBalance | None
- ledger.set_balance(customer_id, points, metafield_id=...) -> int
- provisioner.create(customer_id, cart_token, amount, expires_at, code=, starts_at=) -> ProvisionedDiscount
- provisioner.delete(rule_id) -> bool
- provisioner.list_active_rules(customer_id, now) -> list
"""

from __future__ import annotations

import logging
import math
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from loyalty_points.services.errors import (
    ExternalProvisioningError,
    InsufficientPoints,
    LedgerUpdateError,
    NoPointsAccount,
    PolicyViolation,
    RecordingError,
    ValidationError,
)
from loyalty_points.services.loyalty.code_generator import CodeGenerator
from loyalty_points.services.loyalty.redemption_policy import RedemptionPolicy
from loyalty_points.services.loyalty.redemption_store import (
    Clock,
    RedemptionHold,
    conflict_for,
    utcnow,
)

log = logging.getLogger("loyalty.redemption")

_INT_RE = re.compile(r"[+-]?[0-9]+")


def _first(params: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        v = params.get(k)
        if v is not None and v != "":
            return v
    return None


def _parse_points(v: Any) -> Optional[int]:
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, float):
        return int(v) if v.is_integer() else None
    s = str(v).strip() if v is not None else ""
    if not _INT_RE.fullmatch(s):
        return None
    return int(s)


def _fmt_amount(v: Any) -> str:
    d = Decimal(str(v))
    return str(int(d)) if d == d.to_integral_value() else str(d)


def _parse_amount(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    try:
        out = float(str(v).strip())
    except ValueError:
        return None
    if math.isnan(out) or math.isinf(out):
        return None
    return out


@dataclass(frozen=True)
class RedemptionRequest:
    customer_id: str
    points_to_redeem: int
    order_value: float
    cart_token: str

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "RedemptionRequest":
        """
        Accepts both the storefront query-string names (customerId, ...) and
        snake_case. Raises ValidationError with a user-facing reason.
        """
        customer_id = _first(params, "customerId", "customer_id")
        if not customer_id or not str(customer_id).strip():
            raise ValidationError("Missing customer ID")

        points = _parse_points(_first(params, "pointsToRedeem", "points_to_redeem"))
        if points is None or points <= 0:
            raise ValidationError("Please enter a valid number of points")

        order_value = _parse_amount(_first(params, "orderValue", "order_value"))
        if order_value is None or order_value < 0:
            raise ValidationError("Invalid order value")

        cart_token = _first(params, "cartToken", "cart_token") or f"fallback-{int(time.time() * 1000)}"

        return cls(
            customer_id=str(customer_id).strip(),
            points_to_redeem=points,
            order_value=order_value,
            cart_token=str(cart_token),
        )


@dataclass(frozen=True)
class RedemptionResult:
    discount_code: str
    points_redeemed: int
    new_balance: int
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "discountCode": self.discount_code,
            "pointsRedeemed": int(self.points_redeemed),
            "newBalance": int(self.new_balance),
            "expiresAt": self.expires_at.isoformat(),
        }


class RedemptionService:
    def __init__(
        self,
        *,
        store: Any,
        ledger: Any,
        provisioner: Any,
        policy: RedemptionPolicy,
        codes: CodeGenerator,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.provisioner = provisioner
        self.policy = policy
        self.codes = codes
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return timedelta(minutes=self.policy.hold_ttl_minutes)

    # -----------------------------
    # Redeem
    # -----------------------------
    async def redeem(self, request: RedemptionRequest) -> RedemptionResult:
        cid = request.customer_id
        wanted = request.points_to_redeem
        log.info(
            f"[REDEEM] customer={cid} points={wanted} order_value={request.order_value} cart={request.cart_token}"
        )

        # CheckingExisting
        existing = await self.store.find_active_by_customer(cid)
        if existing is not None:
            log.info(f"[REDEEM] customer={cid} already holds {existing.code}")
            raise conflict_for(existing)

        # CheckingBalance
        balance = await self.ledger.get_balance(cid)
        if balance is None:
            raise NoPointsAccount()
        current = int(balance.points)
        if current < wanted:
            raise InsufficientPoints(current)

        # PolicyCheck
        if not self.policy.meets_minimum(request.order_value):
            raise PolicyViolation(
                f"Minimum order value to redeem points is {_fmt_amount(self.policy.min_order_value)}",
                max_redeemable=0,
            )
        limit = self.policy.max_redeemable(request.order_value, current)
        if wanted > limit:
            raise PolicyViolation(f"Maximum points you can redeem is {limit}", max_redeemable=limit)

        # Reserving
        now = self._clock()
        hold = RedemptionHold.new(
            code=self.codes.generate(cid, request.cart_token),
            customer_id=cid,
            points_redeemed=wanted,
            ttl=self.ttl,
            now=now,
            cart_token=request.cart_token,
        )
        await self.store.reserve(hold)

        # Provisioning
        try:
            provisioned = await self.provisioner.create(
                cid,
                request.cart_token,
                wanted,
                hold.expires_at,
                code=hold.code,
                starts_at=now,
            )
        except Exception as e:
            await self.store.release(hold.code)
            if isinstance(e, ExternalProvisioningError):
                raise
            log.error(f"[REDEEM] provisioning crashed for customer={cid}: {e!r}")
            raise ExternalProvisioningError() from e

        # Recording
        try:
            await self.store.record(hold.code, provisioned.rule_id)
        except Exception as e:
            log.error(f"[REDEEM] recording failed for {hold.code} (rule {provisioned.rule_id}): {e!r}")
            await self._compensate(hold, provisioned.rule_id)
            raise RecordingError() from e

        # Debiting
        try:
            new_balance = await self.ledger.set_balance(
                cid,
                current - wanted,
                metafield_id=balance.metafield_id,
            )
        except Exception as e:
            log.error(
                f"[RECONCILE] debit failed after issuing code={hold.code} rule={provisioned.rule_id} "
                f"customer={cid} points={wanted} balance_before={current}: {e!r}"
            )
            raise LedgerUpdateError(hold.code, hold.expires_at.isoformat()) from e

        log.info(f"[REDEEM] customer={cid} redeemed {wanted} -> code {hold.code}, balance {new_balance}")
        return RedemptionResult(
            discount_code=hold.code,
            points_redeemed=wanted,
            new_balance=int(new_balance),
            expires_at=hold.expires_at,
        )

    async def _compensate(self, hold: RedemptionHold, rule_id: str) -> None:
        """
        Roll back a provisioned discount whose local hold could not be recorded.
        Delete is attempted exactly once; a failure is left for reconciliation.
        """
        try:
            deleted = await self.provisioner.delete(rule_id)
        except Exception as e:
            log.error(f"[RECONCILE] compensation delete raised for rule {rule_id}: {e!r}")
            deleted = False
        if not deleted:
            log.error(f"[RECONCILE] orphaned price rule {rule_id} (code {hold.code}, customer {hold.customer_id})")

        try:
            await self.store.release(hold.code)
        except Exception as e:
            log.error(f"[RECONCILE] could not release reservation {hold.code}: {e!r}")

    # -----------------------------
    # Queries
    # -----------------------------
    async def get_points(self, customer_id: str) -> int:
        balance = await self.ledger.get_balance(customer_id)
        if balance is None:
            raise NoPointsAccount("No loyalty points found")
        return int(balance.points)

    async def active_discounts(self, customer_id: str) -> Dict[str, Any]:
        holds = await self.store.list_for_customer(customer_id)
        if holds:
            return {
                "hasActiveDiscount": True,
                "activeDiscountInfo": {
                    "code": holds[0].code,
                    "expiresAt": holds[0].expires_at.isoformat(),
                },
            }

        # store may have been reset (restart); Shopify still knows live rules
        rules = await self.provisioner.list_active_rules(customer_id, self._clock())
        return {
            "hasActiveDiscount": len(rules) > 0,
            "activeDiscountCount": len(rules),
        }

    # -----------------------------
    # Reclamation
    # -----------------------------
    async def reclaim_expired(self) -> int:
        removed = await self.store.sweep_expired()
        failed = 0
        for hold in removed:
            if not hold.external_rule_id:
                continue
            try:
                ok = await self.provisioner.delete(hold.external_rule_id)
            except Exception as e:
                log.error(f"[SWEEP] delete raised for rule {hold.external_rule_id}: {e!r}")
                ok = False
            if not ok:
                failed += 1
        if removed:
            log.info(f"[SWEEP] reclaimed {len(removed)} expired holds ({failed} rule deletes failed)")
        return len(removed)

    async def purge_used(self, retention: timedelta) -> int:
        count = await self.store.purge_used(self._clock() - retention)
        if count:
            log.info(f"[SWEEP] purged {count} used holds older than {retention}")
        return count
