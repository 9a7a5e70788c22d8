"""
Integration router
PMS catalogue and the integration lifecycle
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..dependencies import get_hub
from ..hub import IntegrationHub

router = APIRouter(tags=["integrations"])


class ConnectRequest(BaseModel):
    """Connect a property to a PMS"""

    property_id: str = Field(..., min_length=1, description="Property being connected")
    vendor_type: str = Field(..., description="Registry key, case-insensitive (e.g. AUTOCLERK)")
    credentials: Dict[str, Any] = Field(..., description="Credential material for the vendor's auth scheme")
    sync_enabled: bool = True
    two_way_sync: bool = False
    sync_interval_minutes: Optional[int] = Field(None, description="One of 5, 15, 30, 60")
    options: Dict[str, Any] = Field(default_factory=dict, description="Adapter config such as base_url or timeout")
    webhook_secret: Optional[str] = Field(None, description="Shared secret when webhooks are registered by hand")


class CredentialsRequest(BaseModel):
    credentials: Optional[Dict[str, Any]] = None


@router.get("/v1/pms/systems")
async def list_pms_systems(hub: IntegrationHub = Depends(get_hub)):
    """Supported PMS vendors with their capability metadata"""
    return {"systems": [hub.get_metadata(vendor_type) for vendor_type in hub.get_supported_types()]}


@router.post("/v1/integrations", status_code=201)
async def connect_integration(request: ConnectRequest, hub: IntegrationHub = Depends(get_hub)):
    integration = await hub.connect_integration(
        request.property_id,
        request.vendor_type,
        request.credentials,
        sync_enabled=request.sync_enabled,
        two_way_sync=request.two_way_sync,
        sync_interval_minutes=request.sync_interval_minutes,
        options=request.options,
        webhook_secret=request.webhook_secret,
    )
    return integration.to_dict()


@router.get("/v1/integrations/{integration_id}")
async def get_integration(integration_id: str, hub: IntegrationHub = Depends(get_hub)):
    integration = await hub.get_integration(integration_id)
    return integration.to_dict()


@router.delete("/v1/integrations/{integration_id}")
async def disconnect_integration(integration_id: str, hub: IntegrationHub = Depends(get_hub)):
    integration = await hub.disconnect_integration(integration_id)
    return integration.to_dict()


@router.post("/v1/integrations/{integration_id}/reconnect")
async def reconnect_integration(
    integration_id: str, request: Optional[CredentialsRequest] = None, hub: IntegrationHub = Depends(get_hub)
):
    """Manual resume after an error; new credentials are optional"""
    credentials = request.credentials if request is not None else None
    integration = await hub.reconnect_integration(integration_id, credentials)
    return integration.to_dict()


@router.put("/v1/integrations/{integration_id}/credentials")
async def update_credentials(integration_id: str, request: CredentialsRequest, hub: IntegrationHub = Depends(get_hub)):
    if request.credentials is None:
        raise ValueError("credentials are required")
    integration = await hub.update_credentials(integration_id, request.credentials)
    return integration.to_dict()
