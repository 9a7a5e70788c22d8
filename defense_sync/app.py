"""
Chargeback Defense Sync Service
FastAPI surface over the integration hub: webhook ingestion, lifecycle,
sync control, matching and evidence
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from pms_connectors.contracts import (
    IntegrationError,
    InvalidCredentialsError,
    NotFoundError,
    PermanentAdapterError,
    UnsupportedCapabilityError,
    UnsupportedVendorError,
    WebhookVerificationError,
)
from pms_connectors.utils.logging import get_safe_logger

from .config import SyncSettings
from .core.exceptions import (
    ChargebackNotFoundError,
    DefenseSyncError,
    EvidenceDocumentNotFoundError,
    IntegrationNotConnectedError,
    IntegrationNotFoundError,
    InvalidStateTransitionError,
    InvalidSyncIntervalError,
    MatchNotFoundError,
    ReservationNotFoundError,
    TwoWaySyncDisabledError,
)
from .hub import IntegrationHub
from .lifecycle import app_lifespan
from .routers.cases import router as cases_router
from .routers.integrations import router as integrations_router
from .routers.sync import router as sync_router
from .routers.webhooks import router as webhooks_router

logger = get_safe_logger("defense_sync.app")

_ENGINE_STATUS = (
    ((IntegrationNotFoundError, ChargebackNotFoundError, ReservationNotFoundError,
      EvidenceDocumentNotFoundError, MatchNotFoundError), 404),
    ((InvalidStateTransitionError, IntegrationNotConnectedError, TwoWaySyncDisabledError), 409),
    ((InvalidSyncIntervalError,), 400),
)

_ADAPTER_STATUS = (
    ((UnsupportedVendorError, InvalidCredentialsError), 400),
    ((WebhookVerificationError,), 401),
    ((NotFoundError,), 404),
    ((UnsupportedCapabilityError,), 409),
    ((PermanentAdapterError,), 422),
)


def _status_for(error: Exception, table, default: int) -> int:
    for types, status_code in table:
        if isinstance(error, types):
            return status_code
    return default


async def engine_error_handler(request: Request, exc: DefenseSyncError) -> JSONResponse:
    status_code = _status_for(exc, _ENGINE_STATUS, 500)
    logger.warning("request_failed", path=request.url.path, error_code=exc.error_code, status_code=status_code)
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": exc.error_code, "message": exc.message, "details": exc.details}},
    )


async def integration_error_handler(request: Request, exc: IntegrationError) -> JSONResponse:
    status_code = getattr(exc, "status_code", None) if isinstance(exc, WebhookVerificationError) else None
    status_code = status_code or _status_for(exc, _ADAPTER_STATUS, 502)
    details = {"vendor": exc.vendor}
    if isinstance(exc, UnsupportedVendorError):
        details["supported_types"] = exc.supported_types
    if isinstance(exc, InvalidCredentialsError):
        details["missing_fields"] = exc.missing_fields
    logger.warning(
        "request_failed", path=request.url.path, error_code=type(exc).__name__, status_code=status_code
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": type(exc).__name__, "message": exc.message, "details": details}},
    )


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": {"code": "ValueError", "message": str(exc), "details": {}}})


def create_app(hub: Optional[IntegrationHub] = None, settings: Optional[SyncSettings] = None) -> FastAPI:
    app = FastAPI(
        title="Chargeback Defense Sync",
        description="PMS integration layer: sync, webhooks, reservation matching and evidence",
        version="1.0.0",
        lifespan=app_lifespan,
    )
    app.state.hub = hub
    app.state.settings = settings or (hub.settings if hub is not None else None)

    app.include_router(webhooks_router)
    app.include_router(integrations_router)
    app.include_router(sync_router)
    app.include_router(cases_router)

    app.add_exception_handler(DefenseSyncError, engine_error_handler)
    app.add_exception_handler(IntegrationError, integration_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)

    @app.get("/healthz")
    async def healthz(request: Request):
        database = await request.app.state.hub.database.health_check()
        return {"status": database["status"], "database": database}

    # Prometheus metrics endpoint
    app.mount("/metrics", make_asgi_app())
    return app


if __name__ == "__main__":
    import os
    import uvicorn

    uvicorn.run(
        create_app(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
    )
