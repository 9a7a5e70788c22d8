"""
Webhook router
Vendor deliveries are verified and turned into priority sync jobs
"""

from fastapi import APIRouter, Depends, Request

from ..dependencies import get_hub
from ..hub import IntegrationHub

router = APIRouter(tags=["webhooks"])


@router.post("/v1/webhooks/{integration_id}", status_code=202)
async def receive_webhook(integration_id: str, request: Request, hub: IntegrationHub = Depends(get_hub)):
    """Accept a signed vendor event; the raw body is needed for signature checks"""
    body = await request.body()
    log = await hub.ingest_webhook(integration_id, body, request.headers)
    return {"status": "accepted", "integration_id": integration_id, "sync_log_id": log.id}
