from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from loyalty_points.routes.deps import get_container
from loyalty_points.services.bootstrap import LoyaltyContainer
from loyalty_points.services.errors import NoPointsAccount

# mounted under /shopify in main.py
router = APIRouter(prefix="/customer", tags=["customers"])


@router.get("/{customer_id}/points")
async def customer_points(customer_id: str, container: LoyaltyContainer = Depends(get_container)):
    try:
        points = await container.redemptions.get_points(customer_id)
    except NoPointsAccount as e:
        return JSONResponse(status_code=404, content={"message": e.message})
    return JSONResponse(content={"loyaltyPoints": points})


@router.get("/{customer_id}/active-discounts")
async def customer_active_discounts(customer_id: str, container: LoyaltyContainer = Depends(get_container)):
    return JSONResponse(content=await container.redemptions.active_discounts(customer_id))
