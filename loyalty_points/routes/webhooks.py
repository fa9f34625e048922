import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from loyalty_points.routes.deps import get_container, webhook_payload
from loyalty_points.services.bootstrap import LoyaltyContainer
from loyalty_points.services.errors import LoyaltyError
from loyalty_points.services.shopify_webhooks import OrderEvent

log = logging.getLogger("loyalty.orders")

# mounted under /shopify in main.py
router = APIRouter(prefix="/webhook", tags=["webhooks"])


def _reject(e: LoyaltyError) -> JSONResponse:
    # Shopify only looks at the status; order webhooks report any business rejection as 400
    log.info(f"[WEBHOOK] rejected: {e.message}")
    return JSONResponse(status_code=400, content={"message": e.message})


@router.post("/order-fulfilled")
async def order_fulfilled(
    payload: Dict[str, Any] = Depends(webhook_payload),
    container: LoyaltyContainer = Depends(get_container),
):
    try:
        order = OrderEvent.from_payload(payload)
        result = await container.orders.handle_fulfillment(order)
    except LoyaltyError as e:
        if e.status_code >= 500:
            raise
        return _reject(e)
    return JSONResponse(content=result)


@router.post("/order-canceled")
async def order_canceled(
    payload: Dict[str, Any] = Depends(webhook_payload),
    container: LoyaltyContainer = Depends(get_container),
):
    try:
        order = OrderEvent.from_payload(payload)
        result = await container.orders.handle_cancellation(order)
    except LoyaltyError as e:
        if e.status_code >= 500:
            raise
        return _reject(e)
    return JSONResponse(content=result)


@router.post("/discount-code-used")
async def discount_code_used(
    payload: Dict[str, Any] = Depends(webhook_payload),
    container: LoyaltyContainer = Depends(get_container),
):
    order = OrderEvent.from_payload(payload)
    result = await container.orders.handle_discount_usage(order)
    return JSONResponse(content=result)
