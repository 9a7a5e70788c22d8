"""
Chargeback Defense Dispute Network Contracts
Uniform contract over card-network alert services that raise disputes and
take evidence and case status back
"""

import base64
import secrets
import uuid
from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .contracts import (
    ChargebackAlert,
    DisputeStatus,
    InvalidCredentialsError,
    PermanentAdapterError,
    VendorConnection,
    WebhookEvent,
    WebhookEventType,
    WebhookSubscription,
)
from .credentials import AuthType
from .utils.logging import log_performance


class ReasonCategory(str, Enum):
    FRAUD = "fraud"
    AUTHORIZATION = "authorization"
    PROCESSING_ERROR = "processing_error"
    CONSUMER_DISPUTE = "consumer_dispute"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ReasonCode:
    code: str
    category: ReasonCategory
    description: str
    evidence_types: Tuple[str, ...] = ()


@dataclass
class DisputeStatusReport:
    dispute_id: str
    status: DisputeStatus
    network_status: Optional[str]
    updated_at: Optional[datetime] = None
    notes: str = ""
    outcome: Optional[str] = None
    outcome_date: Optional[date] = None


@dataclass
class EvidenceRequirements:
    dispute_id: str
    reason: ReasonCode
    required_types: List[str]
    network_required_types: List[str]
    recommended_types: List[str]
    due_date: Optional[date] = None


@dataclass
class EvidenceFile:
    file_name: str
    content: bytes
    mime_type: str = "application/pdf"
    document_type: str = "supporting_document"
    description: Optional[str] = None


@dataclass
class EvidencePackage:
    """Documents plus the stay facts a network representment carries"""

    files: List[EvidenceFile] = field(default_factory=list)
    category: str = "compelling_evidence"
    guest_name: Optional[str] = None
    confirmation_number: Optional[str] = None
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    transaction_amount: Optional[Decimal] = None
    transaction_date: Optional[date] = None
    transaction_id: Optional[str] = None
    notes: str = ""


@dataclass
class EvidenceSubmission:
    dispute_id: str
    submission_id: Optional[str]
    status: str
    message: Optional[str] = None


@dataclass
class DisputePage:
    alerts: List[ChargebackAlert]
    total: int
    page: int
    has_more: bool


class BaseDisputeAdapter(VendorConnection):
    """
    Base class for every dispute-network adapter.

    Networks authenticate with an API key plus the merchant identifiers
    listed in ``required_config``. Subclasses supply the status and
    reason-code tables and the three case operations that differ per
    network; alert normalization, listing, webhooks and reason-code
    lookups are shared.

    Extra config keys:
        merchant_id: merchant identifier at the network
    """

    auth_type = AuthType.API_KEY
    supports_webhooks = True
    card_brand: str = ""
    required_config: Tuple[str, ...] = ("merchant_id",)
    webhook_events: Tuple[str, ...] = ()

    # Payload keys tried in order for each alert field
    id_keys: Tuple[str, ...] = ("alertId", "disputeId", "id")
    reason_keys: Tuple[str, ...] = ("reasonCode",)
    card_keys: Tuple[str, ...] = ("cardLastFour", "cardLast4")

    STATUS_MAP: Dict[str, DisputeStatus] = {}
    STATUS_TO_NETWORK: Dict[DisputeStatus, str] = {}
    REASON_CODES: Dict[str, ReasonCode] = {}

    MAX_PAGE_SIZE = 100

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        missing = [key for key in self.required_config if not config.get(key)]
        if missing:
            raise InvalidCredentialsError(
                f"{self.vendor_type} requires {', '.join(missing)}",
                missing_fields=missing,
                vendor=self.vendor_type,
            )
        self.merchant_id = str(config["merchant_id"])

    @classmethod
    def metadata(cls) -> Dict[str, Any]:
        return {
            "vendor_type": cls.vendor_type,
            "display_name": cls.display_name,
            "auth_type": cls.auth_type.value,
            "card_brand": cls.card_brand,
            "supports_webhooks": cls.supports_webhooks,
            "webhook_events": list(cls.webhook_events),
            "reason_codes": sorted(cls.REASON_CODES),
        }

    def _auth_headers(self) -> Dict[str, str]:
        headers = super()._auth_headers()
        headers["X-Merchant-ID"] = self.merchant_id
        return headers

    async def _verify_credentials(self) -> None:
        await self._request("GET", "/ping")

    # Case operations
    @abstractmethod
    async def get_dispute_status(self, dispute_id: str) -> DisputeStatusReport:
        """Current network status of one dispute"""
        pass

    @abstractmethod
    async def submit_evidence(self, dispute_id: str, package: EvidencePackage) -> EvidenceSubmission:
        """Send an evidence package as the merchant's response"""
        pass

    @abstractmethod
    async def push_case_status(self, dispute_id: str, status: DisputeStatus, notes: str = "") -> Dict[str, Any]:
        """Report the merchant-side case status back to the network"""
        pass

    def receive_dispute(self, payload: Mapping[str, Any]) -> ChargebackAlert:
        """Normalize one alert or dispute record pushed or listed by the network"""
        try:
            alert_id = _first(payload, self.id_keys)
            if alert_id in (None, ""):
                raise KeyError("alert id")
            transaction_date = payload.get("transactionDate")
            due_date = payload.get("responseDeadline") or payload.get("dueDate")
            card = _first(payload, self.card_keys)
            reason = self.normalize_reason_code(_first(payload, self.reason_keys))
            return ChargebackAlert(
                alert_id=str(alert_id),
                source=self.vendor_type,
                amount=self.normalize_amount(payload.get("amount") or payload.get("transactionAmount")),
                currency=payload.get("currency") or payload.get("transactionCurrency") or "USD",
                transaction_date=self.normalize_date(transaction_date) if transaction_date else None,
                transaction_id=payload.get("transactionId") or payload.get("acquirerReferenceNumber"),
                card_brand=self.card_brand,
                card_last_four=self.last_four(card),
                cardholder_name=payload.get("cardholderName") or payload.get("guestName"),
                confirmation_number=payload.get("confirmationNumber"),
                reservation_external_id=payload.get("reservationId"),
                reason_code=None if reason.code == "UNKNOWN" else reason.code,
                reason_category=reason.category.value,
                status=self.normalize_status(payload.get("status")),
                due_date=self.normalize_date(due_date) if due_date else None,
                pre_chargeback=bool(payload.get("alertId")),
            )
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise self._mapping_error("dispute", e)

    @log_performance("fetch_disputes")
    async def fetch_disputes(
        self,
        since: Optional[datetime] = None,
        status: str = "pending",
        page: int = 1,
        limit: int = 50,
    ) -> DisputePage:
        """One page of alerts, optionally only those raised after ``since``"""
        params: Dict[str, Any] = {"status": status, "page": page, "limit": min(limit, self.MAX_PAGE_SIZE)}
        if since is not None:
            params["since"] = since.isoformat()
        result = await self._request("GET", "/alerts", params=params)
        rows = result.get("alerts") or result.get("data") or []
        current = int(result.get("page") or page)
        has_more = result.get("hasMore")
        if has_more is None:
            has_more = current < int(result.get("totalPages") or current)
        return DisputePage(
            alerts=[self.receive_dispute(row) for row in rows],
            total=int(result.get("totalCount") or result.get("total") or len(rows)),
            page=current,
            has_more=bool(has_more),
        )

    async def get_alert(self, alert_id: str) -> ChargebackAlert:
        result = await self._request("GET", f"/alerts/{alert_id}")
        return self.receive_dispute(result)

    @log_performance("get_evidence_requirements")
    async def get_evidence_requirements(self, dispute_id: str) -> EvidenceRequirements:
        """Network-required evidence types merged with what the reason code calls for"""
        result = await self._request("GET", f"/disputes/{dispute_id}")
        reason = self.normalize_reason_code(result.get("reasonCode"))
        network_required = list(result.get("requiredEvidenceTypes") or [])
        recommended = list(reason.evidence_types)
        due_date = result.get("responseDeadline") or result.get("dueDate")
        return EvidenceRequirements(
            dispute_id=dispute_id,
            reason=reason,
            required_types=_unique(network_required + recommended),
            network_required_types=network_required,
            recommended_types=recommended,
            due_date=self.normalize_date(due_date) if due_date else None,
        )

    # Webhooks
    async def subscribe_webhook(self, callback_url: str, events: Optional[List[str]] = None) -> WebhookSubscription:
        """Register a callback; the signing secret is generated here"""
        secret = secrets.token_hex(32)
        network_events = list(events or self.webhook_events)
        result = await self._request(
            "POST",
            "/webhooks",
            json={
                "merchantId": self.merchant_id,
                "callbackUrl": callback_url,
                "events": network_events,
                "active": True,
                "secret": secret,
                "format": "json",
            },
        )
        self.logger.info("dispute_webhook_registered", events=network_events)
        return WebhookSubscription(
            subscription_id=str(result.get("webhookId") or result.get("id")),
            callback_url=callback_url,
            events=[WebhookEventType.CHARGEBACK_ALERT],
            secret=secret,
        )

    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        event = payload.get("event") or payload.get("eventType")
        if event not in self.webhook_events:
            raise PermanentAdapterError(f"Unsupported webhook event: {event!r}", vendor=self.vendor_type)
        data = payload.get("data") or payload.get("payload") or payload
        alert = self.receive_dispute(data)
        return WebhookEvent(
            event_type=WebhookEventType.CHARGEBACK_ALERT,
            vendor=self.vendor_type,
            external_id=alert.alert_id,
            payload=payload,
            occurred_at=self.normalize_datetime(payload.get("timestamp")),
            alert=alert,
        )

    # Normalization
    def normalize_status(self, value: Optional[str]) -> DisputeStatus:
        if not value:
            return DisputeStatus.PENDING
        return self.STATUS_MAP.get(str(value).strip().lower(), DisputeStatus.PENDING)

    def status_for_network(self, status: DisputeStatus) -> str:
        return self.STATUS_TO_NETWORK.get(status, status.value)

    def normalize_reason_code(self, code: Any) -> ReasonCode:
        if code is None or not str(code).strip():
            return ReasonCode("UNKNOWN", ReasonCategory.UNKNOWN, "Unknown reason code")
        code = str(code).strip()
        known = self.REASON_CODES.get(code)
        if known is not None:
            return known
        return self._categorize_reason(code)

    def _categorize_reason(self, code: str) -> ReasonCode:
        return ReasonCode(code, ReasonCategory.UNKNOWN, f"{self.display_name} reason code {code}")

    # Request bodies shared by the networks' evidence endpoints
    def _evidence_body(self, dispute_id: str, package: EvidencePackage) -> Dict[str, Any]:
        return {
            "disputeId": dispute_id,
            "merchantId": self.merchant_id,
            "evidenceCategory": package.category,
            "documents": [
                {
                    "documentType": item.document_type,
                    "fileName": item.file_name,
                    "mimeType": item.mime_type,
                    "data": _base64(item.content),
                    "description": item.description or f"Evidence document {index}",
                }
                for index, item in enumerate(package.files, start=1)
            ],
            "transactionDetails": {
                "guestName": package.guest_name,
                "confirmationNumber": package.confirmation_number,
                "checkInDate": _iso(package.check_in_date),
                "checkOutDate": _iso(package.check_out_date),
                "transactionAmount": str(package.transaction_amount) if package.transaction_amount is not None else None,
                "transactionDate": _iso(package.transaction_date),
                "transactionId": package.transaction_id,
            },
            "merchantNotes": package.notes,
            "idempotencyKey": self._idempotency_key("evidence"),
        }

    def _submission(self, dispute_id: str, result: Mapping[str, Any]) -> EvidenceSubmission:
        submission = EvidenceSubmission(
            dispute_id=dispute_id,
            submission_id=_optional_str(result.get("submissionId") or result.get("id")),
            status=result.get("status") or "submitted",
            message=result.get("message"),
        )
        self.logger.info("dispute_evidence_submitted", dispute_id=dispute_id, submission_id=submission.submission_id)
        return submission

    def _status_report(self, dispute_id: str, result: Mapping[str, Any]) -> DisputeStatusReport:
        outcome_date = result.get("outcomeDate") or result.get("resolvedAt")
        return DisputeStatusReport(
            dispute_id=dispute_id,
            status=self.normalize_status(result.get("status")),
            network_status=result.get("status"),
            updated_at=self.normalize_datetime(result.get("lastUpdated") or result.get("updatedAt")),
            notes=result.get("notes") or result.get("statusNotes") or "",
            outcome=result.get("outcome"),
            outcome_date=self.normalize_date(outcome_date) if outcome_date else None,
        )

    def _idempotency_key(self, action: str) -> str:
        return f"{self.vendor_type.lower()}-{action}-{uuid.uuid4().hex}"


def _first(payload: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def _unique(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _base64(content: bytes) -> str:
    return base64.b64encode(content).decode("ascii")
