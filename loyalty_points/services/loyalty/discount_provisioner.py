from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from loyalty_points.services.errors import ExternalProvisioningError, ShopifyAPIError
from loyalty_points.services.shopify_client import ShopifyClient

log = logging.getLogger("loyalty.shopify")


@dataclass(frozen=True)
class ProvisionedDiscount:
    code: str
    rule_id: str


def rule_title(customer_id: str, cart_token: str, points: int) -> str:
    return f"Loyalty Redemption - Customer:{customer_id} - Cart:{cart_token} - Points:{points}"


class ShopifyDiscountProvisioner:
    """
    Creates and deletes the Shopify price rule + discount code pair backing a
    redemption. One point is worth one unit of store currency.

    create() either returns a usable code or raises ExternalProvisioningError
    with nothing left behind in Shopify.
    """

    def __init__(self, client: ShopifyClient, *, min_subtotal: Optional[float] = None) -> None:
        self.client = client
        self.min_subtotal = min_subtotal

    def _price_rule_payload(
        self,
        customer_id: str,
        cart_token: str,
        amount: int,
        starts_at: datetime,
        expires_at: datetime,
    ) -> Dict[str, Any]:
        rule: Dict[str, Any] = {
            "title": rule_title(customer_id, cart_token, amount),
            "target_type": "line_item",
            "target_selection": "all",
            "allocation_method": "across",
            "value_type": "fixed_amount",
            "value": f"-{int(amount)}",
            "customer_selection": "prerequisite",
            "prerequisite_customer_ids": [int(customer_id) if str(customer_id).isdigit() else customer_id],
            "starts_at": starts_at.isoformat(),
            "ends_at": expires_at.isoformat(),
            "usage_limit": 1,
            "once_per_customer": True,
        }
        if self.min_subtotal:
            rule["prerequisite_subtotal_range"] = {"greater_than_or_equal_to": str(self.min_subtotal)}
        return {"price_rule": rule}

    async def create(
        self,
        customer_id: str,
        cart_token: str,
        amount: int,
        expires_at: datetime,
        *,
        code: str,
        starts_at: datetime,
    ) -> ProvisionedDiscount:
        try:
            payload, _ = await self.client.post(
                "/price_rules.json",
                json=self._price_rule_payload(customer_id, cart_token, amount, starts_at, expires_at),
            )
        except ShopifyAPIError as e:
            log.error(f"[PROVISION] price rule create failed for customer {customer_id}: {e}")
            raise ExternalProvisioningError() from e

        rule_id = str((payload.get("price_rule") or {}).get("id") or "")
        if not rule_id:
            log.error(f"[PROVISION] price rule response missing id for customer {customer_id}")
            raise ExternalProvisioningError()

        try:
            await self.client.post(
                f"/price_rules/{rule_id}/discount_codes.json",
                json={"discount_code": {"code": code}},
            )
        except ShopifyAPIError as e:
            log.error(f"[PROVISION] discount code create failed on rule {rule_id}: {e}")
            await self.delete(rule_id)
            raise ExternalProvisioningError() from e

        log.info(f"[PROVISION] created rule {rule_id} code {code} for customer {customer_id}")
        return ProvisionedDiscount(code=code, rule_id=rule_id)

    async def delete(self, rule_id: str) -> bool:
        try:
            await self.client.delete(f"/price_rules/{rule_id}.json")
        except ShopifyAPIError as e:
            if e.status_code == 404:
                return True
            log.error(f"[PROVISION] failed to delete price rule {rule_id}: {e}")
            return False
        log.info(f"[PROVISION] deleted price rule {rule_id}")
        return True

    async def list_active_rules(self, customer_id: str, now: datetime) -> List[Dict[str, Any]]:
        payload, _ = await self.client.get("/price_rules.json", params={"limit": 250})
        marker = f"Customer:{customer_id} "
        out = []
        for rule in payload.get("price_rules") or []:
            title = str(rule.get("title") or "")
            if marker not in title:
                continue
            starts_at = _parse(rule.get("starts_at"))
            ends_at = _parse(rule.get("ends_at"))
            if starts_at and starts_at > now:
                continue
            if ends_at is None or ends_at <= now:
                continue
            out.append(rule)
        return out


def _parse(v: Any) -> Optional[datetime]:
    if not v:
        return None
    try:
        return datetime.fromisoformat(str(v).replace("Z", "+00:00"))
    except ValueError:
        return None
