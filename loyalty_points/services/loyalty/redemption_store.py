"""
Redemption Store
================

Purpose:
- Local ledger of issued loyalty discount codes ("holds").
- Keyed by code (primary) and by customer (at most one active hold each).
- TTL expiry enforced passively (reads treat lapsed holds as absent) and
  actively (sweep_expired).

Lifecycle:
    pending --record--> unused --mark_used--> used
       |                  |
       +--release         +--(lapsed)--> expired --sweep--> removed

pending is the reservation taken before the discount is provisioned; it
already counts as the customer's active hold, which is what makes the
one-hold-per-customer rule hold under concurrent redeem requests.

Store contract (shared by InMemoryRedemptionStore and SupabaseRedemptionStore):
- put(hold) / reserve(hold)            -> None, raises Conflict
- record(code, rule_id)                -> RedemptionHold, raises RecordingError
- release(code)                        -> bool
- find_active_by_customer(customer_id) -> RedemptionHold | None
- find_by_code(code)                   -> RedemptionHold | None
- mark_used(code)                      -> bool
- sweep_expired()                      -> List[RedemptionHold] (removed)
- purge_used(older_than)               -> int
- stats()                              -> Dict[str, int]
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Literal, Optional

from loyalty_points.services.errors import Conflict, RecordingError
from loyalty_points.services.loyalty.code_generator import normalize_code

log = logging.getLogger("loyalty.store")

HoldStatus = Literal["pending", "unused", "used", "expired"]

PENDING = "pending"
UNUSED = "unused"
USED = "used"
EXPIRED = "expired"

ACTIVE_STATUSES = (PENDING, UNUSED)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RedemptionHold:
    code: str
    customer_id: str
    points_redeemed: int
    created_at: datetime
    expires_at: datetime
    status: HoldStatus = PENDING
    cart_token: Optional[str] = None
    external_rule_id: Optional[str] = None
    used_at: Optional[datetime] = None

    @classmethod
    def new(
        cls,
        *,
        code: str,
        customer_id: str,
        points_redeemed: int,
        ttl: timedelta,
        now: datetime,
        cart_token: Optional[str] = None,
        status: HoldStatus = PENDING,
    ) -> "RedemptionHold":
        return cls(
            code=code,
            customer_id=str(customer_id),
            points_redeemed=int(points_redeemed),
            created_at=now,
            expires_at=now + ttl,
            status=status,
            cart_token=cart_token,
        )

    def is_active(self, now: datetime) -> bool:
        return self.status in ACTIVE_STATUSES and now < self.expires_at

    def is_lapsed(self, now: datetime) -> bool:
        return self.status == EXPIRED or (self.status in ACTIVE_STATUSES and now >= self.expires_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "customer_id": self.customer_id,
            "points_redeemed": self.points_redeemed,
            "status": self.status,
            "cart_token": self.cart_token,
            "external_rule_id": self.external_rule_id,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "used_at": self.used_at.isoformat() if self.used_at else None,
        }


def conflict_for(hold: RedemptionHold) -> Conflict:
    return Conflict(
        "You already have an active discount code",
        existing_code=hold.code,
        expires_at=hold.expires_at.isoformat(),
    )


class InMemoryRedemptionStore:
    """
    Process-local store. Every operation runs under one lock, so each call is
    atomic with respect to request handlers (event loop or threadpool) and the
    scheduler. State resets on restart.
    """

    def __init__(self, *, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._by_code: Dict[str, RedemptionHold] = {}
        self._active_by_customer: Dict[str, str] = {}

    # -----------------------------
    # Writes
    # -----------------------------
    def _insert_locked(self, hold: RedemptionHold) -> None:
        now = self._clock()

        current_code = self._active_by_customer.get(hold.customer_id)
        if current_code is not None:
            current = self._by_code.get(current_code)
            if current is not None and current.is_active(now):
                raise conflict_for(current)
            if current is not None and current.status in ACTIVE_STATUSES:
                # lapsed but not yet swept; keep it for reclamation
                self._by_code[current_code] = replace(current, status=EXPIRED)
            self._active_by_customer.pop(hold.customer_id, None)

        if hold.code in self._by_code:
            raise ValueError(f"duplicate discount code {hold.code}")

        self._by_code[hold.code] = hold
        if hold.status in ACTIVE_STATUSES:
            self._active_by_customer[hold.customer_id] = hold.code

    async def put(self, hold: RedemptionHold) -> None:
        with self._lock:
            self._insert_locked(hold)

    async def reserve(self, hold: RedemptionHold) -> None:
        with self._lock:
            self._insert_locked(replace(hold, status=PENDING))
        log.debug(f"[STORE] reserved {hold.code} for customer {hold.customer_id}")

    async def record(self, code: str, rule_id: str) -> RedemptionHold:
        with self._lock:
            hold = self._by_code.get(code)
            if hold is None or hold.status not in (PENDING, USED):
                raise RecordingError()
            # a usage webhook can land before the record step
            status = USED if hold.status == USED else UNUSED
            hold = replace(hold, status=status, external_rule_id=str(rule_id))
            self._by_code[code] = hold
            return hold

    async def release(self, code: str) -> bool:
        with self._lock:
            hold = self._by_code.get(code)
            if hold is None or hold.status != PENDING:
                return False
            del self._by_code[code]
            if self._active_by_customer.get(hold.customer_id) == code:
                del self._active_by_customer[hold.customer_id]
            return True

    async def mark_used(self, code: str) -> bool:
        code = normalize_code(code)
        with self._lock:
            hold = self._by_code.get(code)
            if hold is None:
                return False
            if hold.status == USED:
                return True
            self._by_code[code] = replace(hold, status=USED, used_at=self._clock())
            if self._active_by_customer.get(hold.customer_id) == code:
                del self._active_by_customer[hold.customer_id]
            return True

    # -----------------------------
    # Reads
    # -----------------------------
    async def find_active_by_customer(self, customer_id: str) -> Optional[RedemptionHold]:
        with self._lock:
            code = self._active_by_customer.get(str(customer_id))
            hold = self._by_code.get(code) if code else None
            if hold is None or not hold.is_active(self._clock()):
                return None
            return hold

    async def find_by_code(self, code: str) -> Optional[RedemptionHold]:
        code = normalize_code(code)
        with self._lock:
            hold = self._by_code.get(code)
            if hold is None or hold.is_lapsed(self._clock()):
                return None
            return hold

    async def list_for_customer(self, customer_id: str) -> List[RedemptionHold]:
        hold = await self.find_active_by_customer(customer_id)
        return [hold] if hold else []

    # -----------------------------
    # Reclamation
    # -----------------------------
    async def sweep_expired(self) -> List[RedemptionHold]:
        removed: List[RedemptionHold] = []
        with self._lock:
            now = self._clock()
            for code, hold in list(self._by_code.items()):
                # status is read under the same lock as the delete
                if not hold.is_lapsed(now):
                    continue
                del self._by_code[code]
                if self._active_by_customer.get(hold.customer_id) == code:
                    del self._active_by_customer[hold.customer_id]
                removed.append(hold)
        return removed

    async def purge_used(self, older_than: datetime) -> int:
        with self._lock:
            stale = [
                code
                for code, hold in self._by_code.items()
                if hold.status == USED and hold.used_at is not None and hold.used_at < older_than
            ]
            for code in stale:
                del self._by_code[code]
            return len(stale)

    async def stats(self) -> Dict[str, int]:
        with self._lock:
            out = {PENDING: 0, UNUSED: 0, USED: 0, EXPIRED: 0}
            for hold in self._by_code.values():
                out[hold.status] = out.get(hold.status, 0) + 1
            return out
