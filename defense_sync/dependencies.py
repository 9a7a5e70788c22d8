"""
Shared dependencies for FastAPI endpoints
"""

from fastapi import Request

from .hub import IntegrationHub


async def get_hub(request: Request) -> IntegrationHub:
    """Get the integration hub from app state"""
    return request.app.state.hub
