"""
Supabase Redemption Store (Postgres Adapter)
============================================

Purpose:
- Same contract as InMemoryRedemptionStore, backed by a supabase-py client,
  so issued codes survive a restart when REDEMPTION_STORE=supabase.

Expected table:
    public.discount_codes
      - code text primary key
      - customer_id text not null
      - price_rule_id text null
      - points_redeemed int not null
      - cart_token text null
      - status text not null            -- pending | unused | used | expired
      - created_at timestamptz not null
      - expires_at timestamptz not null
      - used_at timestamptz null

    create unique index discount_codes_one_active
      on public.discount_codes (customer_id)
      where status in ('pending', 'unused');

The partial unique index is what makes reserve() atomic across requests;
a unique violation on insert is reported as Conflict.
supabase-py is synchronous, so every query executes on a worker thread via
asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from loyalty_points.services.errors import RecordingError
from loyalty_points.services.loyalty.code_generator import normalize_code
from loyalty_points.services.loyalty.redemption_store import (
    ACTIVE_STATUSES,
    EXPIRED,
    PENDING,
    UNUSED,
    USED,
    Clock,
    RedemptionHold,
    conflict_for,
    utcnow,
)

log = logging.getLogger("loyalty.store")

UNIQUE_VIOLATION = "23505"


def _parse_ts(v: Any) -> Optional[datetime]:
    if not v:
        return None
    if isinstance(v, datetime):
        return v
    return datetime.fromisoformat(str(v).replace("Z", "+00:00"))


class SupabaseRedemptionStore:
    def __init__(
        self,
        supabase_client: Any,
        *,
        table: str = "discount_codes",
        clock: Clock = utcnow,
    ) -> None:
        self.sb = supabase_client
        self.table = table
        self._clock = clock

    def _t(self):
        return self.sb.table(self.table)

    async def _run(self, query: Any) -> Any:
        return await asyncio.to_thread(query.execute)

    # -----------------------------
    # Writes
    # -----------------------------
    async def _insert(self, hold: RedemptionHold) -> None:
        now_iso = self._clock().isoformat()

        # Lapsed-but-unswept holds would trip the unique index; flip them to
        # expired so the sweep still deprovisions their price rules.
        await self._run(
            self._t()
            .update({"status": EXPIRED})
            .eq("customer_id", hold.customer_id)
            .in_("status", list(ACTIVE_STATUSES))
            .lte("expires_at", now_iso)
        )

        existing = await self.find_active_by_customer(hold.customer_id)
        if existing is not None:
            raise conflict_for(existing)

        try:
            await self._run(self._t().insert(self._hold_to_row(hold)))
        except Exception as ex:
            if getattr(ex, "code", None) != UNIQUE_VIOLATION:
                raise
            winner = await self.find_active_by_customer(hold.customer_id)
            if winner is None:
                raise
            raise conflict_for(winner) from ex

    async def put(self, hold: RedemptionHold) -> None:
        await self._insert(hold)

    async def reserve(self, hold: RedemptionHold) -> None:
        await self._insert(replace(hold, status=PENDING))

    async def record(self, code: str, rule_id: str) -> RedemptionHold:
        r = await self._run(
            self._t()
            .update({"status": UNUSED, "price_rule_id": str(rule_id)})
            .eq("code", code)
            .eq("status", PENDING)
        )
        rows = getattr(r, "data", None) or []
        if rows:
            return self._row_to_hold(rows[0])

        # a usage webhook can land before the record step
        r = await self._run(self._t().update({"price_rule_id": str(rule_id)}).eq("code", code).eq("status", USED))
        rows = getattr(r, "data", None) or []
        if rows:
            return self._row_to_hold(rows[0])
        raise RecordingError()

    async def release(self, code: str) -> bool:
        r = await self._run(self._t().delete().eq("code", code).eq("status", PENDING))
        return bool(getattr(r, "data", None))

    async def mark_used(self, code: str) -> bool:
        code = normalize_code(code)
        row = await self._get_row(code)
        if row is None:
            return False
        if row.get("status") == USED:
            return True
        await self._run(
            self._t()
            .update({"status": USED, "used_at": self._clock().isoformat()})
            .eq("code", code)
            .neq("status", USED)
        )
        return True

    # -----------------------------
    # Reads
    # -----------------------------
    async def _get_row(self, code: str) -> Optional[Dict[str, Any]]:
        r = await self._run(self._t().select("*").eq("code", code).limit(1))
        rows = getattr(r, "data", None) or []
        return rows[0] if rows and isinstance(rows[0], dict) else None

    async def find_active_by_customer(self, customer_id: str) -> Optional[RedemptionHold]:
        r = await self._run(
            self._t()
            .select("*")
            .eq("customer_id", str(customer_id))
            .in_("status", list(ACTIVE_STATUSES))
            .gt("expires_at", self._clock().isoformat())
            .order("created_at", desc=True)
            .limit(1)
        )
        rows = getattr(r, "data", None) or []
        return self._row_to_hold(rows[0]) if rows else None

    async def find_by_code(self, code: str) -> Optional[RedemptionHold]:
        code = normalize_code(code)
        row = await self._get_row(code)
        if row is None:
            return None
        hold = self._row_to_hold(row)
        if hold.is_lapsed(self._clock()):
            return None
        return hold

    async def list_for_customer(self, customer_id: str) -> List[RedemptionHold]:
        hold = await self.find_active_by_customer(customer_id)
        return [hold] if hold else []

    # -----------------------------
    # Reclamation
    # -----------------------------
    async def sweep_expired(self) -> List[RedemptionHold]:
        now_iso = self._clock().isoformat()
        lapsed = await self._run(
            self._t()
            .select("*")
            .in_("status", list(ACTIVE_STATUSES))
            .lte("expires_at", now_iso)
        )
        flagged = await self._run(self._t().select("*").eq("status", EXPIRED))
        candidates = (getattr(lapsed, "data", None) or []) + (getattr(flagged, "data", None) or [])

        removed: List[RedemptionHold] = []
        for row in candidates:
            # the status filter on the delete guards against a concurrent mark_used
            r = await self._run(self._t().delete().eq("code", row["code"]).neq("status", USED))
            if getattr(r, "data", None):
                removed.append(self._row_to_hold(row))
        return removed

    async def purge_used(self, older_than: datetime) -> int:
        r = await self._run(self._t().delete().eq("status", USED).lt("used_at", older_than.isoformat()))
        return len(getattr(r, "data", None) or [])

    async def stats(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for status in (PENDING, UNUSED, USED, EXPIRED):
            r = await self._run(self._t().select("code", count="exact").eq("status", status))
            out[status] = int(getattr(r, "count", None) or 0)
        return out

    # -----------------------------
    # Row mapping
    # -----------------------------
    @staticmethod
    def _hold_to_row(hold: RedemptionHold) -> Dict[str, Any]:
        return {
            "code": hold.code,
            "customer_id": hold.customer_id,
            "price_rule_id": hold.external_rule_id,
            "points_redeemed": int(hold.points_redeemed),
            "cart_token": hold.cart_token,
            "status": hold.status,
            "created_at": hold.created_at.isoformat(),
            "expires_at": hold.expires_at.isoformat(),
            "used_at": hold.used_at.isoformat() if hold.used_at else None,
        }

    @staticmethod
    def _row_to_hold(row: Dict[str, Any]) -> RedemptionHold:
        return RedemptionHold(
            code=str(row.get("code")),
            customer_id=str(row.get("customer_id")),
            points_redeemed=int(row.get("points_redeemed") or 0),
            created_at=_parse_ts(row.get("created_at")),
            expires_at=_parse_ts(row.get("expires_at")),
            status=row.get("status") or PENDING,
            cart_token=row.get("cart_token"),
            external_rule_id=(str(row["price_rule_id"]) if row.get("price_rule_id") is not None else None),
            used_at=_parse_ts(row.get("used_at")),
        )
