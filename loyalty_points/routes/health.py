from typing import Any, Dict

from fastapi import APIRouter, Request

from loyalty_points.settings import settings

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health_root():
    return {"ok": True}


@router.get("/loyalty")
async def health_loyalty(request: Request) -> Dict[str, Any]:
    """
    Store round-trip plus configuration checks. Never builds the container;
    an app that has not served a loyalty request yet reports not_initialized.
    """
    container = getattr(request.app.state, "loyalty", None)
    s = container.settings if container is not None else settings

    checks: Dict[str, Any] = {
        "shopify": container is not None or s.shopify_configured,
        "admin_key": bool(s.ADMIN_SECRET_KEY),
        "webhook_signing": bool(request.app.state.webhook_secret),
        "store": False,
    }

    if container is None:
        checks["store_error"] = "not_initialized"
    else:
        try:
            checks["store_stats"] = await container.store.stats()
            checks["store"] = True
        except Exception as e:
            checks["store_error"] = str(e)

    return {"ok": checks["store"] and checks["shopify"], "checks": checks}
