# loyalty_points/main.py
import logging
import time
from typing import Any, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from loyalty_points.routes.admin import router as admin_router
from loyalty_points.routes.customers import router as customers_router
from loyalty_points.routes.health import router as health_router
from loyalty_points.routes.loyalty import router as loyalty_router
from loyalty_points.routes.webhooks import router as webhooks_router
from loyalty_points.services.admin.logger import log_request_response
from loyalty_points.services.bootstrap import LoyaltyContainer, build_container
from loyalty_points.services.errors import LoyaltyError
from loyalty_points.services.scheduler import start_reclaim_tasks
from loyalty_points.settings import settings as default_settings
from loyalty_points.utils.envelope import error

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
log = logging.getLogger("loyalty.main")


def create_app(container: Optional[LoyaltyContainer] = None, *, settings: Any = None) -> FastAPI:
    s = settings or (container.settings if container is not None else default_settings)

    app = FastAPI(
        title="Loyalty Points",
        version=s.LOYALTY_VERSION,
        description="Shopify loyalty points: earn on fulfillment, redeem for single-use discount codes",
    )
    app.state.loyalty = container
    app.state.settings = s
    app.state.webhook_secret = s.SHOPIFY_WEBHOOK_SECRET
    app.state.scheduler = None

    # -------------------------------------------------------------------
    # Error handling (stable envelopes, no stack leaks)
    # -------------------------------------------------------------------
    @app.exception_handler(LoyaltyError)
    async def loyalty_error_handler(request: Request, exc: LoyaltyError):
        return error(exc.message, exc.code, exc.status_code, exc.data)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        log.error(f"Unhandled error on {request.method} {request.url.path}: {exc!r}")
        return error("Internal server error", "internal_error", 500)

    # -------------------------------------------------------------------
    # CORS (storefront theme calls redeem/points from the shop domain)
    # -------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=s.CORS_ALLOW_ORIGINS,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    # -------------------------------------------------------------------
    # Request logging (sensitive headers masked)
    # -------------------------------------------------------------------
    @app.middleware("http")
    async def request_logging(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        await log_request_response(request, response, start)
        return response

    # -------------------------------------------------------------------
    # Routers
    # -------------------------------------------------------------------
    app.include_router(health_router)
    app.include_router(webhooks_router, prefix="/shopify")
    app.include_router(loyalty_router, prefix="/shopify")
    app.include_router(customers_router, prefix="/shopify")
    app.include_router(admin_router, prefix="/shopify")

    @app.get("/")
    async def root():
        return {
            "status": "Loyalty Points Online",
            "routes": [
                "/health",
                "/shopify/webhook",
                "/shopify/loyalty/redeem",
                "/shopify/customer",
                "/shopify/admin",
            ],
        }

    # -------------------------------------------------------------------
    # Startup / shutdown
    # -------------------------------------------------------------------
    @app.on_event("startup")
    async def startup_event():
        log.info(f"Loyalty Points {s.LOYALTY_VERSION} starting ({s.ENVIRONMENT})")

        if app.state.loyalty is None:
            try:
                app.state.loyalty = build_container(s)
            except LoyaltyError as e:
                log.warning(f"Loyalty core not started: {e.message}")
                return

        if s.SCHEDULER_ENABLED:
            scheduler = AsyncIOScheduler()
            start_reclaim_tasks(
                scheduler,
                app.state.loyalty,
                interval_seconds=s.SWEEP_INTERVAL_SECONDS,
                retention_hours=s.USED_CODE_RETENTION_HOURS,
                award_retention_days=s.ORDER_AWARD_RETENTION_DAYS,
            )
            scheduler.start()
            app.state.scheduler = scheduler

    @app.on_event("shutdown")
    async def shutdown_event():
        if app.state.scheduler is not None:
            app.state.scheduler.shutdown(wait=False)
            app.state.scheduler = None
        if app.state.loyalty is not None:
            await app.state.loyalty.aclose()
        log.info("Loyalty Points stopped")

    return app


app = create_app()
