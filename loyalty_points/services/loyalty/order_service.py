"""
Order Event Service
===================

Purpose:
- Credit points when an order is fulfilled.
- Take them back when an order is cancelled.
- Mark loyalty discount codes used when an order consumed them.

Every award is written to an OrderAwardBook keyed by order id. That makes
fulfillment idempotent under webhook retries and lets a cancellation reverse
the exact amount awarded. Cancellations are claimed in the same book, so a
redelivered cancel webhook is answered from the first result. Orders with no
recorded award (e.g. fulfilled before a restart) fall back to a re-derived
estimate. Records older than the award retention are pruned hourly.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from loyalty_points.services.errors import NoPointsAccount
from loyalty_points.services.loyalty.code_generator import CodeGenerator
from loyalty_points.services.loyalty.redemption_policy import RedemptionPolicy
from loyalty_points.services.loyalty.redemption_store import Clock, utcnow
from loyalty_points.services.shopify_webhooks import OrderEvent

log = logging.getLogger("loyalty.orders")


@dataclass(frozen=True)
class OrderAward:
    order_id: str
    customer_id: str
    points: int
    awarded_at: datetime


class OrderAwardBook:
    """
    Per-order memory of what was credited and whether it was already taken
    back. Both sides claim their slot before touching the ledger, so webhook
    retries (including concurrent ones) apply at most once.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._awards: Dict[str, OrderAward] = {}
        # order_id -> (claimed_at, result); result is None while in flight
        self._cancellations: Dict[str, Tuple[datetime, Optional[Dict[str, Any]]]] = {}

    def add(self, award: OrderAward) -> bool:
        with self._lock:
            if award.order_id in self._awards:
                return False
            self._awards[award.order_id] = award
            return True

    def get(self, order_id: str) -> Optional[OrderAward]:
        with self._lock:
            return self._awards.get(order_id)

    def pop(self, order_id: str) -> Optional[OrderAward]:
        with self._lock:
            return self._awards.pop(order_id, None)

    def claim_cancellation(self, order_id: str, now: datetime) -> bool:
        with self._lock:
            if order_id in self._cancellations:
                return False
            self._cancellations[order_id] = (now, None)
            return True

    def finish_cancellation(self, order_id: str, result: Dict[str, Any]) -> None:
        with self._lock:
            claimed_at, _ = self._cancellations.get(order_id, (None, None))
            if claimed_at is not None:
                self._cancellations[order_id] = (claimed_at, dict(result))

    def release_cancellation(self, order_id: str) -> None:
        with self._lock:
            self._cancellations.pop(order_id, None)

    def cancellation(self, order_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._cancellations.get(order_id)
            return dict(entry[1]) if entry and entry[1] is not None else None

    def prune(self, older_than: datetime) -> int:
        with self._lock:
            stale_awards = [k for k, a in self._awards.items() if a.awarded_at < older_than]
            stale_cancels = [k for k, (at, _) in self._cancellations.items() if at < older_than]
            for k in stale_awards:
                del self._awards[k]
            for k in stale_cancels:
                del self._cancellations[k]
            return len(stale_awards) + len(stale_cancels)


class OrderEventService:
    def __init__(
        self,
        *,
        ledger: Any,
        store: Any,
        policy: RedemptionPolicy,
        codes: CodeGenerator,
        awards: Optional[OrderAwardBook] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.ledger = ledger
        self.store = store
        self.policy = policy
        self.codes = codes
        self.awards = awards or OrderAwardBook()
        self._clock = clock

    # -----------------------------
    # Fulfillment
    # -----------------------------
    async def handle_fulfillment(self, order: OrderEvent) -> Dict[str, Any]:
        customer_id = order.require_customer()
        points = self.policy.points_earned(order.total_price, order.payment_method)

        # the award book entry doubles as the idempotency claim for webhook retries
        if order.order_id:
            claimed = self.awards.add(
                OrderAward(
                    order_id=order.order_id,
                    customer_id=customer_id,
                    points=points,
                    awarded_at=self._clock(),
                )
            )
            if not claimed:
                prior = self.awards.get(order.order_id)
                log.info(f"[ORDERS] order {order.order_id} already awarded; skipping")
                return {
                    "message": "Loyalty points already assigned for this order",
                    "pointsEarned": prior.points if prior else 0,
                    "duplicate": True,
                }

        try:
            new_balance = await self.ledger.adjust(customer_id, points)
        except Exception:
            if order.order_id:
                self.awards.pop(order.order_id)
            raise

        log.info(
            f"[ORDERS] order {order.order_id} ({order.payment_method}) awarded {points} points "
            f"to customer {customer_id}, balance {new_balance}"
        )
        return {
            "message": "Loyalty points assigned successfully",
            "pointsEarned": points,
            "pointsBalance": new_balance,
        }

    # -----------------------------
    # Cancellation
    # -----------------------------
    async def handle_cancellation(self, order: OrderEvent) -> Dict[str, Any]:
        customer_id = order.require_customer()

        if order.order_id and not self.awards.claim_cancellation(order.order_id, self._clock()):
            prior = self.awards.cancellation(order.order_id) or {}
            log.info(f"[ORDERS] order {order.order_id} already cancelled; skipping")
            return {
                "message": "Loyalty points already deducted for this order",
                "pointsDeducted": prior.get("pointsDeducted", 0),
                "pointsRemaining": prior.get("pointsRemaining"),
                "deductionBasis": prior.get("deductionBasis"),
                "duplicate": True,
            }

        try:
            result = await self._reverse_award(order, customer_id)
        except Exception:
            if order.order_id:
                self.awards.release_cancellation(order.order_id)
            raise

        if order.order_id:
            self.awards.finish_cancellation(order.order_id, result)
        return result

    async def _reverse_award(self, order: OrderEvent, customer_id: str) -> Dict[str, Any]:
        balance = await self.ledger.get_balance(customer_id)
        if balance is None:
            raise NoPointsAccount("No loyalty points found")

        award = self.awards.get(order.order_id) if order.order_id else None
        if award is not None and award.customer_id == customer_id:
            deducted = award.points
            basis = "exact"
        else:
            deducted = self.policy.estimate_points_earned(order.total_price)
            basis = "estimated"

        remaining = max(0, int(balance.points) - deducted)
        await self.ledger.set_balance(customer_id, remaining, metafield_id=balance.metafield_id)

        log.info(
            f"[ORDERS] order {order.order_id} cancelled: deducted {deducted} ({basis}) "
            f"from customer {customer_id}, remaining {remaining}"
        )
        return {
            "message": "Loyalty points deducted due to order cancellation.",
            "pointsDeducted": deducted,
            "pointsRemaining": remaining,
            "deductionBasis": basis,
        }

    def prune_awards(self, retention: timedelta) -> int:
        count = self.awards.prune(self._clock() - retention)
        if count:
            log.info(f"[ORDERS] pruned {count} order award records older than {retention}")
        return count

    # -----------------------------
    # Discount usage
    # -----------------------------
    async def handle_discount_usage(self, order: OrderEvent) -> Dict[str, Any]:
        if not order.discount_codes:
            return {"success": True, "message": "No discount codes to process", "results": []}

        results: List[Dict[str, Any]] = []
        for code in order.discount_codes:
            if not self.codes.is_loyalty_code(code):
                log.debug(f"[ORDERS] skipping non-loyalty code {code}")
                continue
            try:
                ok = await self.store.mark_used(code)
            except Exception as e:
                log.error(f"[ORDERS] error marking {code} used on order {order.order_id}: {e!r}")
                results.append({"code": code, "success": False, "error": "Failed to update discount code"})
                continue

            if ok:
                log.info(f"[ORDERS] discount code {code} marked used (order {order.order_id})")
                results.append({"code": code, "success": True})
            else:
                log.warning(f"[ORDERS] discount code {code} not found in store (order {order.order_id})")
                results.append({"code": code, "success": False, "error": "Discount code not found"})

        return {
            "success": True,
            "message": "Processed order discount codes",
            "order_id": order.order_id,
            "order_number": order.order_number,
            "results": results,
        }
