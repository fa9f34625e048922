import hmac
import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, Query

from loyalty_points.routes.deps import get_container
from loyalty_points.services.bootstrap import LoyaltyContainer
from loyalty_points.services.errors import LoyaltyError
from loyalty_points.utils.envelope import outcome

log = logging.getLogger("loyalty.admin")

# mounted under /shopify in main.py
router = APIRouter(prefix="/admin", tags=["admin"])


def require_admin_key(key: str = Query(default=""), container: LoyaltyContainer = Depends(get_container)) -> LoyaltyContainer:
    expected = container.settings.ADMIN_SECRET_KEY
    # an unset secret locks the admin surface instead of opening it
    if not expected or not hmac.compare_digest(key, expected):
        log.warning("[ADMIN] rejected admin call with bad key")
        raise LoyaltyError("Unauthorized access", 403)
    return container


@router.get("/cleanup-expired")
async def cleanup_expired(container: LoyaltyContainer = Depends(require_admin_key)):
    log.info("[ADMIN] running cleanup for expired discount codes")
    count = await container.redemptions.reclaim_expired()
    return outcome(True, f"Cleaned up {count} expired codes", {"processed": count})


@router.get("/cleanup-used")
async def cleanup_used(container: LoyaltyContainer = Depends(require_admin_key)):
    hours = container.settings.USED_CODE_RETENTION_HOURS
    log.info(f"[ADMIN] running cleanup for used discount codes older than {hours}h")
    count = await container.redemptions.purge_used(timedelta(hours=hours))
    return outcome(True, f"Removed {count} used codes older than {hours} hours", {"deleted": count})
