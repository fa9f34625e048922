from __future__ import annotations

import base64
import hashlib
import hmac
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loyalty_points.services.errors import ValidationError
from loyalty_points.services.loyalty.code_generator import normalize_code


def verify_webhook(raw: bytes, sig: Optional[str], secret: str) -> bool:
    digest = base64.b64encode(hmac.new(secret.encode(), raw, hashlib.sha256).digest()).decode()
    return hmac.compare_digest(digest, sig or "")


@dataclass(frozen=True)
class OrderEvent:
    """
    The slice of a Shopify order webhook the loyalty core consumes.
    """
    order_id: str
    order_number: Optional[str]
    customer_id: Optional[str]
    total_price: float
    payment_method: str
    discount_codes: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, order: Dict[str, Any]) -> "OrderEvent":
        if not isinstance(order, dict):
            raise ValidationError("Invalid order data")

        cust = order.get("customer") or {}
        customer_id = cust.get("id") if isinstance(cust, dict) else None

        try:
            total = float(order.get("total_price") or 0)
        except (TypeError, ValueError):
            raise ValidationError("Invalid order total")

        gateway = order.get("gateway")
        if not gateway:
            names = order.get("payment_gateway_names") or []
            gateway = names[0] if names else "unknown"

        codes: List[str] = []
        for d in order.get("discount_codes") or []:
            code = d.get("code") if isinstance(d, dict) else d
            if code:
                codes.append(normalize_code(code))

        return cls(
            order_id=str(order.get("id") or ""),
            order_number=(str(order["order_number"]) if order.get("order_number") is not None else None),
            customer_id=(str(customer_id) if customer_id is not None else None),
            total_price=total,
            payment_method=str(gateway).lower(),
            discount_codes=codes,
        )

    def require_customer(self) -> str:
        if not self.customer_id:
            raise ValidationError("Invalid order data")
        return self.customer_id
