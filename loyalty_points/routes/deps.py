import json
import logging
from typing import Any, Dict

from fastapi import Request

from loyalty_points.services.bootstrap import LoyaltyContainer, build_container
from loyalty_points.services.errors import LoyaltyError, ValidationError
from loyalty_points.services.shopify_webhooks import verify_webhook

log = logging.getLogger("loyalty.main")


def get_container(request: Request) -> LoyaltyContainer:
    container = getattr(request.app.state, "loyalty", None)
    if container is None:
        container = build_container(request.app.state.settings)
        request.app.state.loyalty = container
    return container


async def webhook_payload(request: Request) -> Dict[str, Any]:
    """
    Reads the raw webhook body, checks X-Shopify-Hmac-Sha256 when a secret is
    configured, and returns the decoded JSON object.
    """
    raw = await request.body()

    secret = request.app.state.webhook_secret
    if secret:
        sig = request.headers.get("X-Shopify-Hmac-Sha256")
        if not verify_webhook(raw, sig, secret):
            log.warning(f"[WEBHOOK] signature mismatch on {request.url.path}")
            raise LoyaltyError("Invalid webhook signature", 401)

    try:
        payload = json.loads(raw or b"{}")
    except ValueError:
        raise ValidationError("Invalid order data")
    if not isinstance(payload, dict):
        raise ValidationError("Invalid order data")
    return payload
