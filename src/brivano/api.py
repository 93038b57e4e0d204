"""FastAPI application exposing credit entitlements and waterfall enrichment.

Endpoints:
- POST /entitlements/check - Can a user afford N units of an action
- POST /entitlements/charge - Atomically charge credits for an action
- GET /entitlements/usage/{user_id} - Current period usage and bonus
- POST /features/check - Tier gate for a feature
- POST /enrichment/waterfall - Run the provider waterfall for a domain
- POST /enrichment/reenrich-stale - Refresh stale leads for a user
- GET /health - Health check endpoint

Example:
    uvicorn brivano.api:app --host 0.0.0.0 --port 8080
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from . import __version__
from .config import config
from .entitlements import (
    EntitlementEngine,
    EntitlementError,
    SqlCreditStore,
    StaticTierResolver,
)
from .enrichment import EnrichmentService, RetryPolicy, SqlEnrichmentRecorder, WaterfallEnricher
from .integrations import build_providers, build_validators
from .models import close_database

logger = logging.getLogger(__name__)

# How often a running waterfall checks whether its caller went away
DISCONNECT_POLL_SECONDS = 0.5


# Request models

class CheckRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    action_name: str
    count: int = Field(1, ge=1)


class ChargeRequest(CheckRequest):
    reference_id: Optional[str] = None
    idempotency_key: Optional[str] = None


class FeatureCheckRequest(BaseModel):
    tier: Optional[str] = None
    feature_name: str


class WaterfallRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    domain: str = Field(..., min_length=1)
    known_fields: dict[str, Any] = Field(default_factory=dict)
    target_titles: Optional[list[str]] = None
    lead_id: Optional[str] = None
    idempotency_key: Optional[str] = None


class ReenrichRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    threshold_days: int = Field(config.STALE_THRESHOLD_DAYS, ge=1)
    max_leads: int = Field(config.REENRICH_MAX_LEADS, ge=1)
    lead_ids: Optional[list[str]] = None


def build_engine() -> EntitlementEngine:
    """Entitlement engine on the SQL credit store.

    Tiers come from the billing integration, which lives outside this
    service; until one is wired in every user resolves to the free tier.
    """
    return EntitlementEngine(SqlCreditStore(), StaticTierResolver())


def build_service(engine: EntitlementEngine) -> EnrichmentService:
    """Enrichment service using every provider configured in the environment."""
    enricher = WaterfallEnricher(
        build_providers(config),
        RetryPolicy(
            max_attempts=config.RETRY_MAX_ATTEMPTS,
            base_delay=config.RETRY_BASE_DELAY_SECONDS,
        ),
        validators=build_validators(config),
    )
    return EnrichmentService(engine, enricher, SqlEnrichmentRecorder())


def create_app(
    engine: Optional[EntitlementEngine] = None,
    service: Optional[EnrichmentService] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        engine: Entitlement engine. Built from configuration when omitted.
        service: Enrichment service. Built from configuration when omitted.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown."""
        # Startup
        logger.info("Brivano API starting...")
        if app.state.engine is None:
            config.validate_for_database()
            app.state.engine = build_engine()
        if app.state.service is None:
            app.state.service = build_service(app.state.engine)
        if not app.state.service.enricher.providers:
            logger.warning("No enrichment providers configured - waterfall requests will fail")
        logger.info("Brivano API ready")

        yield

        # Shutdown
        logger.info("Brivano API shutting down...")
        if app.state.owns_resources:
            await app.state.service.enricher.close()
            await close_database()
        logger.info("Brivano API shutdown complete")

    app = FastAPI(
        title="Brivano",
        description="Credit entitlements and waterfall contact enrichment",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.service = service
    app.state.owns_resources = engine is None and service is None

    # Add CORS middleware for development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    return app


def get_engine(request: Request) -> EntitlementEngine:
    """Dependency to get the entitlement engine."""
    return request.app.state.engine


def get_service(request: Request) -> EnrichmentService:
    """Dependency to get the enrichment service."""
    return request.app.state.service


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling waterfall")
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


def _register_routes(app: FastAPI) -> None:

    @app.get("/health")
    async def health_check(request: Request) -> dict[str, Any]:
        """Health check endpoint.

        Returns:
            Health status including provider configuration.
        """
        service = request.app.state.service
        return {
            "status": "healthy",
            "service": "brivano",
            "version": __version__,
            "providers": service.enricher.provider_names if service else [],
        }

    @app.post("/entitlements/check")
    async def check_entitlement(
        body: CheckRequest,
        engine: EntitlementEngine = Depends(get_engine),
    ) -> dict[str, Any]:
        """Decide whether a user can afford ``count`` units of an action."""
        decision = await engine.check(body.user_id, body.action_name, body.count)
        return decision.to_dict()

    @app.post("/entitlements/charge")
    async def charge_credits(
        body: ChargeRequest,
        engine: EntitlementEngine = Depends(get_engine),
    ) -> dict[str, Any]:
        """Charge credits; safe to retry with the same idempotency key."""
        result = await engine.charge(
            body.user_id,
            body.action_name,
            body.count,
            reference_id=body.reference_id,
            idempotency_key=body.idempotency_key,
        )
        return result.to_dict()

    @app.get("/entitlements/usage/{user_id}")
    async def get_usage(
        user_id: str,
        engine: EntitlementEngine = Depends(get_engine),
    ) -> dict[str, Any]:
        """Credits consumed and bonus available in the current period."""
        tier = await engine.tier_for(user_id)
        usage = await engine.current_usage(user_id)
        return {
            "user_id": user_id,
            "tier": tier.value,
            "period_start": engine.current_period().isoformat(),
            "consumed": usage.consumed,
            "bonus_available": usage.bonus_available,
        }

    @app.post("/features/check")
    async def check_feature(
        body: FeatureCheckRequest,
        engine: EntitlementEngine = Depends(get_engine),
    ) -> dict[str, Any]:
        """Tier gate for a feature, independent of credit balance."""
        return engine.feature_gate(body.tier, body.feature_name).to_dict()

    @app.post("/enrichment/waterfall")
    async def run_waterfall(
        body: WaterfallRequest,
        request: Request,
        service: EnrichmentService = Depends(get_service),
    ) -> dict[str, Any]:
        """Check credits, run the waterfall, store the run and charge."""
        if not service.enricher.providers:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=(
                    "No enrichment providers configured. Add APOLLO_API_KEY, "
                    "HUNTER_API_KEY, PDL_API_KEY, or CLEARBIT_API_KEY."
                ),
            )

        cancel_event = asyncio.Event()
        watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
        try:
            outcome = await service.enrich(
                body.user_id,
                body.domain,
                body.known_fields,
                target_titles=body.target_titles,
                lead_id=body.lead_id,
                idempotency_key=body.idempotency_key,
                cancel_event=cancel_event,
            )
        finally:
            watcher.cancel()
        return outcome.to_dict()

    @app.post("/enrichment/reenrich-stale")
    async def reenrich_stale(
        body: ReenrichRequest,
        service: EnrichmentService = Depends(get_service),
    ) -> dict[str, Any]:
        """Re-run the waterfall for leads whose enrichment went stale."""
        summary = await service.reenrich_stale(
            body.user_id,
            threshold_days=body.threshold_days,
            max_leads=body.max_leads,
            lead_ids=body.lead_ids,
        )
        return summary.to_dict()

    # Error handlers
    @app.exception_handler(EntitlementError)
    async def entitlement_error_handler(request: Request, exc: EntitlementError) -> JSONResponse:
        """Unknown actions and features are caller configuration errors."""
        logger.warning(
            "Rejected %s %s: %s", request.method, request.url.path, str(exc)
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"error": "Invalid request", "detail": str(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> Response:
        """Global exception handler for unhandled errors."""
        logger.error(
            "Unhandled error: %s %s - %s",
            request.method,
            request.url.path,
            str(exc),
            exc_info=True,
        )
        return Response(
            content=json.dumps({
                "error": "Internal server error",
                "detail": str(exc) if config.DEBUG else "An unexpected error occurred",
            }),
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            media_type="application/json",
        )


app = create_app()
