"""
Case router
Minimal chargeback records, reservation matching and evidence collection
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..dependencies import get_hub
from ..hub import IntegrationHub

router = APIRouter(tags=["cases"])


class ChargebackRequest(BaseModel):
    property_id: str = Field(..., min_length=1)
    chargeback_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: str = Field("USD", min_length=3, max_length=3)
    transaction_date: Optional[date] = None
    transaction_id: Optional[str] = None
    card_brand: Optional[str] = None
    card_last_four: Optional[str] = Field(None, pattern=r"^\d{4}$")
    cardholder_name: Optional[str] = None
    confirmation_number: Optional[str] = None


class LinkRequest(BaseModel):
    reservation_id: str


class EvidenceRequest(BaseModel):
    reservation_id: Optional[str] = None
    force: bool = False


class CaseStatusRequest(BaseModel):
    status: str = Field(..., min_length=1)
    notes: Optional[str] = None


@router.post("/v1/chargebacks", status_code=201)
async def record_chargeback(request: ChargebackRequest, hub: IntegrationHub = Depends(get_hub)):
    chargeback = await hub.record_chargeback(**request.model_dump())
    return chargeback.to_dict()


@router.post("/v1/chargebacks/{chargeback_id}/match")
async def match_reservation(chargeback_id: str, override: bool = False, hub: IntegrationHub = Depends(get_hub)):
    """No match is a valid outcome and returns ``match: null``"""
    match = await hub.match_reservation(chargeback_id, override=override)
    return {"chargeback_id": chargeback_id, "match": match.to_dict() if match else None}


@router.post("/v1/chargebacks/{chargeback_id}/link")
async def link_reservation(chargeback_id: str, request: LinkRequest, hub: IntegrationHub = Depends(get_hub)):
    match = await hub.link_reservation(chargeback_id, request.reservation_id)
    return {"chargeback_id": chargeback_id, "match": match.to_dict()}


@router.post("/v1/cases/{case_id}/evidence")
async def collect_evidence(case_id: str, request: EvidenceRequest, hub: IntegrationHub = Depends(get_hub)):
    result = await hub.collect_evidence_report(case_id, request.reservation_id, force=request.force)
    return result.to_dict()


@router.get("/v1/cases/{case_id}/evidence")
async def list_evidence(case_id: str, hub: IntegrationHub = Depends(get_hub)):
    documents = await hub.list_evidence(case_id)
    return {"case_id": case_id, "documents": [document.to_dict() for document in documents]}


@router.post("/v1/evidence/{document_id}/verify")
async def verify_document(document_id: str, hub: IntegrationHub = Depends(get_hub)):
    document = await hub.verify_document(document_id)
    return document.to_dict()


@router.post("/v1/cases/{case_id}/status")
async def update_case_status(case_id: str, request: CaseStatusRequest, hub: IntegrationHub = Depends(get_hub)):
    """Record a status change; pushed to the PMS when two-way sync is on"""
    log = await hub.notify_case_status(case_id, request.status, request.notes)
    return {"case_id": case_id, "status": request.status, "sync_log": log.to_dict() if log else None}


@router.get("/v1/cases/{case_id}/timeline")
async def case_timeline(case_id: str, hub: IntegrationHub = Depends(get_hub)):
    events = await hub.case_timeline(case_id)
    return {"case_id": case_id, "events": [event.to_dict() for event in events]}
