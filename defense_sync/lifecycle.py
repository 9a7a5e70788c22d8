"""
Application lifecycle management for the sync engine service
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from pms_connectors.utils.logging import get_safe_logger

from .hub import IntegrationHub

logger = get_safe_logger("defense_sync.lifecycle")


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    """Build and start a hub unless one was handed to create_app; its owner closes it"""
    owned = getattr(app.state, "hub", None) is None
    if owned:
        app.state.hub = IntegrationHub.from_settings(app.state.settings)
        await app.state.hub.start()
    logger.info("defense_sync_service_started", owned_hub=owned)
    try:
        yield
    finally:
        if owned:
            await app.state.hub.close()
        logger.info("defense_sync_service_stopped")
