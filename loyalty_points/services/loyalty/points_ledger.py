"""
Points Ledger Accessor
======================

Purpose:
- Read / write a customer's points balance stored on the Shopify customer
  record as an integer metafield (namespace "loyalty", key "points").
- No local cache: every read goes to Shopify.

Adjustments are read-then-write; the balance is never driven below zero.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from loyalty_points.services.errors import LedgerUnavailable, ShopifyAPIError
from loyalty_points.services.shopify_client import ShopifyClient

log = logging.getLogger("loyalty.ledger")

METAFIELD_NAMESPACE = "loyalty"
METAFIELD_KEY = "points"
METAFIELD_TYPE = "number_integer"


@dataclass(frozen=True)
class PointsBalance:
    customer_id: str
    points: int
    metafield_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"customer_id": self.customer_id, "points": int(self.points)}


def _parse_points(value: Any) -> int:
    try:
        return max(0, int(str(value).strip()))
    except (TypeError, ValueError):
        return 0


class PointsLedger:
    def __init__(self, client: ShopifyClient) -> None:
        self.client = client

    # -----------------------------
    # Read
    # -----------------------------
    async def get_balance(self, customer_id: str) -> Optional[PointsBalance]:
        """
        Returns None when the customer has no points metafield.
        Raises LedgerUnavailable when Shopify cannot be read.
        """
        try:
            payload, _ = await self.client.get(f"/customers/{customer_id}/metafields.json")
        except ShopifyAPIError as e:
            if e.status_code == 404:
                return None
            log.error(f"[LEDGER] balance read failed for customer {customer_id}: {e}")
            raise LedgerUnavailable() from e

        for m in payload.get("metafields") or []:
            if m.get("namespace") == METAFIELD_NAMESPACE and m.get("key") == METAFIELD_KEY:
                return PointsBalance(
                    customer_id=str(customer_id),
                    points=_parse_points(m.get("value")),
                    metafield_id=str(m.get("id")) if m.get("id") is not None else None,
                )
        return None

    # -----------------------------
    # Write
    # -----------------------------
    async def set_balance(self, customer_id: str, points: int, *, metafield_id: Optional[str] = None) -> int:
        """
        Writes the absolute balance. Creates the metafield when metafield_id is None.
        Raises ShopifyAPIError on failure.
        """
        points = max(0, int(points))

        if metafield_id:
            await self.client.put(
                f"/metafields/{metafield_id}.json",
                json={
                    "metafield": {
                        "id": metafield_id,
                        "namespace": METAFIELD_NAMESPACE,
                        "key": METAFIELD_KEY,
                        "value": str(points),
                        "type": METAFIELD_TYPE,
                    }
                },
            )
        else:
            await self.client.post(
                f"/customers/{customer_id}/metafields.json",
                json={
                    "metafield": {
                        "namespace": METAFIELD_NAMESPACE,
                        "key": METAFIELD_KEY,
                        "value": str(points),
                        "type": METAFIELD_TYPE,
                    }
                },
            )
            log.info(f"[LEDGER] created points metafield for customer {customer_id}")

        log.info(f"[LEDGER] points set to {points} for customer {customer_id}")
        return points

    async def adjust(self, customer_id: str, delta: int) -> int:
        """
        Read-then-write adjustment; creates the account on a positive delta.
        Returns the new balance.
        """
        current = await self.get_balance(customer_id)
        base = current.points if current else 0
        return await self.set_balance(
            customer_id,
            max(0, base + int(delta)),
            metafield_id=current.metafield_id if current else None,
        )
