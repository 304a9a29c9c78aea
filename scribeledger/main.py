"""
FastAPI application for the scribeledger billing service.

Endpoints:
- POST /webhooks/stripe: Stripe event intake
- GET  /credits/balance: Credit balance and recent history
- POST /credits/purchase: Start a credit pack purchase
- GET  /subscriptions/current: Caller's subscription
- POST /usage/check: Quota decision
- GET  /usage/current: Current billing period usage
- GET  /health, GET /metrics
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from scribeledger.auth.identity import IdentityResolver, TrustedHeaderIdentityResolver
from scribeledger.billing.checkout import SubscriptionCheckoutFactory
from scribeledger.billing.ledger import CreditLedger
from scribeledger.billing.payment_intents import PaymentIntentFactory
from scribeledger.billing.quota import QuotaEvaluator
from scribeledger.billing.stripe_service import StripeService
from scribeledger.billing.usage_tracking import UsageRecorder
from scribeledger.billing.webhooks import SubscriptionReconciler
from scribeledger.config import Settings, get_settings
from scribeledger.errors import BillingError, MethodNotAllowedError
from scribeledger.observability.logging import configure_logging, get_logger
from scribeledger.observability.metrics import generate_metrics
from scribeledger.observability.middleware import (
    PrometheusMiddleware,
    StructuredLoggingMiddleware,
)
from scribeledger.rate_limits import limiter
from scribeledger.routers import (
    checkout_router,
    credits_router,
    subscriptions_router,
    usage_router,
    webhooks_router,
)
from scribeledger.storage.database import BillingDatabase

logger = get_logger(__name__)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    """Render billing errors as {"error": message} with the mapped status."""
    if exc.status_code >= 500:
        logger.error(
            "Billing request failed",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
            exc_info=exc,
        )
    else:
        logger.warning(
            "Billing request rejected",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=exc.message,
        )
    return _error_response(exc.status_code, exc.message)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        return _error_response(exc.status_code, MethodNotAllowedError().message)
    return _error_response(exc.status_code, str(exc.detail))


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Bad request bodies are a 400, not FastAPI's default 422."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid request: {location} {first.get('msg', '')}".strip()
    else:
        message = "Invalid request"
    logger.warning("Request validation failed", path=request.url.path, error=message)
    return _error_response(status.HTTP_400_BAD_REQUEST, message)


def create_app(
    settings: Settings | None = None,
    db: BillingDatabase | None = None,
    stripe_service: StripeService | None = None,
    identity_resolver: IdentityResolver | None = None,
) -> FastAPI:
    """
    Build the application and wire its services.

    Args:
        settings: Configuration (defaults to environment-loaded settings)
        db: Billing database (defaults to settings.storage.db_path)
        stripe_service: Stripe client wrapper
        identity_resolver: Caller identity strategy (defaults to gateway headers)

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()

    configure_logging(
        log_level=settings.logging.level,
        json_output=settings.logging.json_output,
        colorized=settings.logging.colorized,
        service_name=settings.logging.service_name,
        service_version=settings.logging.service_version,
        environment=settings.logging.environment,
    )

    db = db or BillingDatabase(db_path=settings.storage.db_path)
    stripe_service = stripe_service or StripeService(settings.stripe)
    ledger = CreditLedger(db)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize storage on startup, release it on shutdown."""
        logger.info("=== Billing Service Starting ===")
        await db.initialize()
        logger.info("=== Service Ready ===")

        yield

        logger.info("=== Shutting down ===")
        db.close()
        logger.info("=== Shutdown complete ===")

    app = FastAPI(
        title="Scribeledger Billing API",
        description="Usage metering, quota enforcement and credit ledger",
        version=settings.logging.service_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.db = db
    app.state.stripe_service = stripe_service
    app.state.ledger = ledger
    app.state.usage_recorder = UsageRecorder(db, settings.quota)
    app.state.quota_evaluator = QuotaEvaluator(db, settings.quota)
    app.state.payment_intents = PaymentIntentFactory(stripe_service, settings.stripe)
    app.state.checkout = SubscriptionCheckoutFactory(stripe_service, settings.stripe)
    app.state.reconciler = SubscriptionReconciler(settings.stripe, db, ledger, stripe_service)
    app.state.identity_resolver = identity_resolver or TrustedHeaderIdentityResolver(
        settings.auth
    )

    # Shared limiter; limits are read from app.state.settings per request
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_exception_handler(BillingError, billing_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)

    cors_origins = settings.cors.origins_list
    if "*" in cors_origins:
        logger.warning("CORS allows ALL origins (*) - configure CORS_ALLOWED_ORIGINS for production")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors.allow_credentials,
        allow_methods=settings.cors.methods_list,
        allow_headers=settings.cors.headers_list,
    )

    # Processed in reverse order of registration: logging context is outermost
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(StructuredLoggingMiddleware)

    app.include_router(webhooks_router)
    app.include_router(credits_router)
    app.include_router(checkout_router)
    app.include_router(subscriptions_router)
    app.include_router(usage_router)

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, str]:
        """Liveness probe. Performs no I/O."""
        return {"status": "ok"}

    @app.get("/metrics", tags=["Health"], include_in_schema=False)
    async def metrics() -> Response:
        """Prometheus exposition."""
        content, content_type = generate_metrics()
        return Response(content=content, media_type=content_type)

    return app


def run() -> None:
    """Console entry point."""
    settings = get_settings()
    uvicorn.run(
        "scribeledger.main:create_app",
        factory=True,
        host=settings.service.host,
        port=settings.service.port,
        reload=settings.service.reload,
        workers=settings.service.workers,
        log_level=settings.logging.level.lower(),
    )


if __name__ == "__main__":
    run()
