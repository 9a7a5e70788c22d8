"""
Sync router
Manual triggers, status with health and the sync log query
"""

from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..database.repository import SyncLogFilter
from ..dependencies import get_hub
from ..hub import IntegrationHub

router = APIRouter(prefix="/v1/sync", tags=["sync"])


class TriggerSyncRequest(BaseModel):
    integration_id: str
    sync_type: Literal["full", "incremental"] = "incremental"
    direction: Literal["inbound"] = Field("inbound", description="Outbound pushes follow case status changes")


@router.post("/trigger", status_code=202)
async def trigger_sync(request: TriggerSyncRequest, hub: IntegrationHub = Depends(get_hub)):
    """Queue a sync; returns the started log row immediately"""
    log = await hub.trigger_sync(request.integration_id, request.sync_type, request.direction)
    return log.to_dict()


@router.get("/status")
async def sync_status(integration_id: Optional[str] = None, hub: IntegrationHub = Depends(get_hub)):
    return await hub.get_sync_status(integration_id)


@router.get("/logs")
async def sync_logs(
    integration_id: Optional[str] = None,
    direction: Optional[str] = None,
    sync_type: Optional[str] = None,
    entity_type: Optional[str] = None,
    status: Optional[str] = None,
    started_after: Optional[datetime] = None,
    started_before: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    hub: IntegrationHub = Depends(get_hub),
):
    filters = SyncLogFilter(
        integration_id=integration_id,
        direction=direction,
        sync_type=sync_type,
        entity_type=entity_type,
        status=status,
        started_after=started_after,
        started_before=started_before,
    )
    logs = await hub.get_sync_logs(filters, limit=limit, offset=offset)
    return {"logs": [log.to_dict() for log in logs], "limit": limit, "offset": offset}
