# app/main.py
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import Settings, get_settings
from app.api.endpoints import general, service, shards
from app.services.reputation import (
    DemoOwnershipProvider,
    DemoReputationProvider,
    OwnershipProvider,
    ReputationProvider,
)
from app.x402.audit import AuditLog
from app.x402.errors import PAYMENT_REQUIRED_HEADER, X_PAYMENT_REQUIRED_HEADER
from app.x402.facilitator import FacilitatorClient
from app.x402.gates import GateDependencies
from app.x402.middleware import PAYMENT_RESPONSE_HEADER, X_PAYMENT_RESPONSE_HEADER, X402GateMiddleware
from app.x402.registry import build_route_registry
import logging

logger = logging.getLogger(__name__)


def _available_endpoints(app: FastAPI) -> list:
    # Read from the OpenAPI schema; included routers are not always flattened into app.routes
    return sorted(app.openapi().get("paths", {}))


def create_app(
    settings: Optional[Settings] = None,
    facilitator: Optional[FacilitatorClient] = None,
    reputation: Optional[ReputationProvider] = None,
    ownership: Optional[OwnershipProvider] = None,
    audit: Optional[AuditLog] = None,
) -> FastAPI:
    """
    Build the application.

    Settings, the route registry and the gate collaborators are created once
    here and are read-only for the lifetime of the process.
    """
    settings = settings or get_settings()

    # Configure basic logging
    logging.basicConfig(level=settings.LOG_LEVEL)

    app = FastAPI(title=settings.PROJECT_NAME, version=settings.APP_VERSION)

    registry = build_route_registry(settings)
    deps = GateDependencies(
        settings=settings,
        facilitator=facilitator or FacilitatorClient(
            base_url=str(settings.X402_FACILITATOR_URL),
            timeout_seconds=settings.X402_FACILITATOR_TIMEOUT_SECONDS,
            require_tx_reference=settings.X402_REQUIRE_TX_REFERENCE,
        ),
        reputation=reputation or DemoReputationProvider(),
        ownership=ownership or DemoOwnershipProvider(),
        audit=audit or AuditLog(settings.X402_AUDIT_LOG_PATH, enabled=settings.X402_AUDIT_ENABLED),
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.gate_deps = deps

    app.include_router(general.router, tags=["default"])
    app.include_router(service.router, prefix="/service", tags=["service"])
    app.include_router(shards.router, prefix="/shard", tags=["shards"])

    # Gate middleware first so CORS wraps 402/403 responses too
    app.add_middleware(X402GateMiddleware, registry=registry, deps=deps)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            X_PAYMENT_REQUIRED_HEADER,
            PAYMENT_REQUIRED_HEADER,
            X_PAYMENT_RESPONSE_HEADER,
            PAYMENT_RESPONSE_HEADER,
        ],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(
                status_code=404,
                content={
                    "error": "Not Found",
                    "message": exc.detail if exc.detail != "Not Found" else f"No route for {request.url.path}",
                    "available_endpoints": _available_endpoints(request.app),
                },
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "message": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        deps.audit.log_error(
            client_ip=request.client.host if request.client else None,
            error_type=exc.__class__.__name__,
            error_message=str(exc),
        )
        message = str(exc) if settings.is_development else "An unexpected error occurred"
        return JSONResponse(
            status_code=500,
            content={"error": "Internal Server Error", "message": message},
        )

    logger.info(
        f"{settings.PROJECT_NAME} x402 server ready: network={settings.X402_NETWORK}, "
        f"facilitator={settings.X402_FACILITATOR_URL}, payee={settings.X402_PAY_TO_ADDRESS}"
    )
    return app


app = create_app()
