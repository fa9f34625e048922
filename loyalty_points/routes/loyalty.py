import json
import logging
from typing import Any, Dict
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse

from loyalty_points.routes.deps import get_container
from loyalty_points.services.bootstrap import LoyaltyContainer
from loyalty_points.services.errors import LoyaltyError
from loyalty_points.services.loyalty.redemption_service import RedemptionRequest
from loyalty_points.utils.envelope import outcome
from loyalty_points.utils.html import redeem_error_page, redeem_success_page

log = logging.getLogger("loyalty.redemption")

# mounted under /shopify in main.py
router = APIRouter(prefix="/loyalty", tags=["loyalty"])

RATE_LIMIT_MESSAGE = "Too many attempts. Please try again later."
GENERIC_FAILURE = "An error occurred while processing your request"


async def _redeem_params(request: Request) -> Dict[str, Any]:
    params: Dict[str, Any] = dict(request.query_params)
    if request.method != "POST":
        return params

    raw = await request.body()
    if not raw:
        return params

    ctype = request.headers.get("content-type", "")
    if "application/json" in ctype:
        try:
            body = json.loads(raw)
        except ValueError:
            body = None
        if isinstance(body, dict):
            params.update(body)
    elif "application/x-www-form-urlencoded" in ctype:
        params.update(dict(parse_qsl(raw.decode("utf-8", errors="replace"))))
    return params


def _respond(request: Request, success: bool, message: str, data: Dict[str, Any], status: int, ttl_minutes: int):
    if request.method == "GET":
        if success:
            return HTMLResponse(redeem_success_page(data, ttl_minutes))
        return HTMLResponse(redeem_error_page(message), status_code=status)
    return outcome(success, message, data, status=status)


@router.api_route("/redeem", methods=["GET", "POST"])
async def redeem(request: Request, container: LoyaltyContainer = Depends(get_container)):
    client_key = request.client.host if request.client else "anonymous"
    if not container.redeem_limiter.hit(client_key):
        log.warning(f"[REDEEM] rate limit exceeded for {client_key} ({request.method} {request.url.path})")
        return JSONResponse(
            status_code=429,
            content={"error": "Too Many Requests", "message": RATE_LIMIT_MESSAGE},
        )

    ttl = container.redemptions.policy.hold_ttl_minutes
    try:
        req = RedemptionRequest.from_params(await _redeem_params(request))
        result = await container.redemptions.redeem(req)
    except LoyaltyError as e:
        return _respond(request, False, e.message, e.data, e.status_code, ttl)
    except Exception as e:
        log.error(f"[REDEEM] unexpected failure: {e!r}")
        return _respond(request, False, GENERIC_FAILURE, {}, 500, ttl)

    return _respond(request, True, "Points redeemed successfully", result.to_dict(), 200, ttl)
