"""
AutoClerk PMS Connector
API-key REST API with full document access and dispute push
"""

from typing import Any, Dict, List, Optional

from ...contracts import (
    BaseAdapter,
    CanonicalReservation,
    ChargebackAlert,
    DocumentDescriptor,
    DocumentKind,
    Folio,
    FolioCategory,
    FolioLineItem,
    NotFoundError,
    PermanentAdapterError,
    ReservationCriteria,
    ReservationStatus,
    VendorDocument,
    WebhookEvent,
    WebhookEventType,
    WebhookSubscription,
)
from ...credentials import AuthType
from ...utils.logging import log_performance


class AutoClerkConnector(BaseAdapter):
    """AutoClerk PMS connector implementation"""

    vendor_type = "AUTOCLERK"
    display_name = "AutoClerk"
    auth_type = AuthType.API_KEY
    supports_webhooks = True
    supports_push = True
    supports_documents = True
    features = ("reservations", "folios", "documents", "signatures", "id_scans", "dispute_push", "webhooks")
    document_kinds = (
        DocumentKind.FOLIO,
        DocumentKind.AUTH_SIGNATURE,
        DocumentKind.CHECKOUT_SIGNATURE,
        DocumentKind.PAYMENT_RECEIPT,
        DocumentKind.ID_SCAN,
        DocumentKind.BOOKING_CONFIRMATION,
    )
    default_base_url = "https://api.autoclerk.com/v1"
    default_timeout = 20.0
    webhook_signature_header = "X-AutoClerk-Signature"

    PAGE_SIZE = 100

    STATUS_MAP = {
        "RESERVED": ReservationStatus.CONFIRMED,
        "CONFIRMED": ReservationStatus.CONFIRMED,
        "GUARANTEED": ReservationStatus.CONFIRMED,
        "IN_HOUSE": ReservationStatus.CHECKED_IN,
        "CHECKED_OUT": ReservationStatus.CHECKED_OUT,
        "CANCELLED": ReservationStatus.CANCELLED,
        "NO_SHOW": ReservationStatus.NO_SHOW,
    }

    CATEGORY_MAP = {
        "ROOM": FolioCategory.ROOM,
        "TAX": FolioCategory.TAX_FEE,
        "FEE": FolioCategory.TAX_FEE,
        "FNB": FolioCategory.FOOD_BEVERAGE,
        "INCIDENTAL": FolioCategory.INCIDENTAL,
        "PAYMENT": FolioCategory.PAYMENT,
        "ADJUSTMENT": FolioCategory.ADJUSTMENT,
    }

    DOCUMENT_MAP = {
        "FOLIO_PDF": DocumentKind.FOLIO,
        "REGISTRATION_CARD": DocumentKind.AUTH_SIGNATURE,
        "CHECKOUT_SIGNATURE": DocumentKind.CHECKOUT_SIGNATURE,
        "PAYMENT_RECEIPT": DocumentKind.PAYMENT_RECEIPT,
        "ID_SCAN": DocumentKind.ID_SCAN,
        "CONFIRMATION": DocumentKind.BOOKING_CONFIRMATION,
    }

    EVENT_MAP = {
        "reservation.created": WebhookEventType.RESERVATION_CREATED,
        "reservation.modified": WebhookEventType.RESERVATION_UPDATED,
        "reservation.cancelled": WebhookEventType.RESERVATION_UPDATED,
        "folio.posted": WebhookEventType.FOLIO_UPDATED,
        "chargeback.alert": WebhookEventType.CHARGEBACK_ALERT,
    }

    def _auth_headers(self) -> Dict[str, str]:
        headers = super()._auth_headers()
        if self.credentials.property_code:
            headers["X-Property-Code"] = self.credentials.property_code
        return headers

    async def _verify_credentials(self) -> None:
        await self._request("GET", "/property")

    @log_performance("get_reservation")
    async def get_reservation(self, external_id: str) -> CanonicalReservation:
        """Get reservation details"""
        result = await self._request("GET", f"/reservations/{external_id}")
        return self._map_reservation(result)

    @log_performance("search_reservations")
    async def search_reservations(self, criteria: ReservationCriteria) -> List[CanonicalReservation]:
        params: Dict[str, Any] = {"pageSize": min(criteria.limit, self.PAGE_SIZE)}
        if criteria.modified_since:
            params["modifiedSince"] = criteria.modified_since.isoformat()
        if criteria.check_in_from:
            params["arrivalFrom"] = criteria.check_in_from.isoformat()
        if criteria.check_in_to:
            params["arrivalTo"] = criteria.check_in_to.isoformat()
        if criteria.confirmation_number:
            params["confirmationNumber"] = criteria.confirmation_number
        if criteria.card_last_four:
            params["cardLastFour"] = criteria.card_last_four

        reservations: List[CanonicalReservation] = []
        page = 1
        while criteria.wants_more(len(reservations)):
            result = await self._request("GET", "/reservations", params={**params, "page": page})
            reservations.extend(self._map_reservation(item) for item in result.get("reservations", []))
            if page >= int(result.get("totalPages", 1)):
                break
            page += 1
        return self.apply_criteria(reservations, criteria)

    def _map_reservation(self, result: Dict[str, Any]) -> CanonicalReservation:
        try:
            guest = result.get("guest") or {}
            payment = result.get("payment") or {}
            name = " ".join(part for part in (guest.get("firstName"), guest.get("lastName")) if part)
            return CanonicalReservation(
                external_id=str(result["id"]),
                confirmation_number=result.get("confirmationNumber"),
                guest_name=name or None,
                guest_email=guest.get("email"),
                guest_phone=guest.get("phone"),
                check_in_date=self.normalize_date(result["arrivalDate"]),
                check_out_date=self.normalize_date(result["departureDate"]),
                actual_check_in=self.normalize_datetime(result.get("actualArrival")),
                actual_check_out=self.normalize_datetime(result.get("actualDeparture")),
                room_number=result.get("roomNumber"),
                room_type=result.get("roomType"),
                rate_code=result.get("rateCode"),
                rate_amount=self.normalize_amount(result.get("rateAmount")),
                total_amount=self.normalize_amount(result.get("totalAmount")),
                currency=result.get("currency", "USD"),
                card_brand=payment.get("cardType"),
                card_last_four=self.last_four(payment.get("cardNumberMasked")),
                booking_source=result.get("source"),
                status=self._map_status(result.get("status", "RESERVED")),
                is_flagged=bool(result.get("flagged", False)),
                sync_source=self.vendor_type,
                updated_at=self.normalize_datetime(result["lastModified"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise self._mapping_error("reservation", e)

    def _map_status(self, status: str) -> ReservationStatus:
        """Map AutoClerk status to the canonical status"""
        return self.STATUS_MAP.get(status.upper(), ReservationStatus.CONFIRMED)

    @log_performance("get_folio")
    async def get_folio(self, external_id: str) -> Folio:
        result = await self._request("GET", f"/reservations/{external_id}/folio")
        currency = result.get("currency", "USD")
        items = []
        try:
            for txn in result.get("transactions", []):
                category = self.CATEGORY_MAP.get(str(txn.get("type", "")).upper(), FolioCategory.OTHER)
                amount = self.normalize_amount(txn["amount"])
                if category == FolioCategory.PAYMENT:
                    amount = -abs(amount)
                items.append(
                    FolioLineItem(
                        posting_date=self.normalize_date(txn["postedAt"]),
                        category=category,
                        description=txn.get("description", ""),
                        amount=amount,
                        currency=txn.get("currency", currency),
                        transaction_code=txn.get("code"),
                        auth_code=txn.get("authorizationCode"),
                        external_id=str(txn["id"]) if txn.get("id") is not None else None,
                    )
                )
        except (KeyError, TypeError, ValueError) as e:
            raise self._mapping_error("folio", e)
        return Folio(
            reservation_external_id=external_id,
            items=items,
            currency=currency,
            reported_balance=self.normalize_amount(result.get("balance")),
        )

    @log_performance("list_documents")
    async def list_documents(self, external_id: str) -> List[DocumentDescriptor]:
        result = await self._request("GET", f"/reservations/{external_id}/documents")
        documents = []
        for doc in result.get("documents", []):
            kind = self.DOCUMENT_MAP.get(doc.get("type"))
            if kind is None:
                continue
            documents.append(
                DocumentDescriptor(
                    kind=kind,
                    external_id=str(doc["id"]),
                    file_name=doc.get("fileName"),
                    mime_type=doc.get("contentType"),
                    source_timestamp=self.normalize_datetime(doc.get("createdAt")),
                )
            )
        return documents

    @log_performance("fetch_document")
    async def fetch_document(self, external_id: str, kind: DocumentKind) -> VendorDocument:
        candidates = [doc for doc in await self.list_documents(external_id) if doc.kind == kind]
        if not candidates:
            raise NotFoundError(f"No {kind.value} document for reservation {external_id}", vendor=self.vendor_type)
        # Latest version wins
        descriptor = max(candidates, key=lambda d: d.source_timestamp.timestamp() if d.source_timestamp else 0.0)
        response = await self._request("GET", f"/documents/{descriptor.external_id}/content", expect_json=False)
        return VendorDocument(
            kind=kind,
            content=response.content,
            mime_type=descriptor.mime_type or response.headers.get("Content-Type", "application/octet-stream"),
            file_name=descriptor.file_name or f"{kind.value}-{external_id}",
            source_timestamp=descriptor.source_timestamp,
        )

    @log_performance("push_case_update")
    async def push_case_update(
        self,
        case_id: str,
        status: str,
        reservation_external_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        body = {"caseId": case_id, "status": status, "reservationId": reservation_external_id, "notes": notes}
        result = await self._request("POST", "/disputes", json=body)
        return {"vendor_reference": result.get("id"), "status": result.get("status", status)}

    async def subscribe_webhook(
        self, callback_url: str, events: Optional[List[WebhookEventType]] = None
    ) -> WebhookSubscription:
        wanted = events or list(WebhookEventType)
        vendor_events = [name for name, event_type in self.EVENT_MAP.items() if event_type in wanted]
        result = await self._request("POST", "/webhooks", json={"url": callback_url, "events": vendor_events})
        return WebhookSubscription(
            subscription_id=str(result["id"]),
            callback_url=callback_url,
            events=list(wanted),
            secret=result.get("secret"),
        )

    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        event_type = self.EVENT_MAP.get(payload.get("event", ""))
        if event_type is None:
            raise PermanentAdapterError(f"Unsupported webhook event: {payload.get('event')!r}", vendor=self.vendor_type)
        alert = None
        if event_type == WebhookEventType.CHARGEBACK_ALERT:
            alert = self._map_alert(payload)
        return WebhookEvent(
            event_type=event_type,
            vendor=self.vendor_type,
            external_id=payload.get("reservationId"),
            payload=payload,
            occurred_at=self.normalize_datetime(payload.get("timestamp")),
            alert=alert,
        )

    def _map_alert(self, payload: Dict[str, Any]) -> ChargebackAlert:
        try:
            chargeback = payload["chargeback"]
            transaction_date = chargeback.get("transactionDate")
            return ChargebackAlert(
                alert_id=str(chargeback["caseId"]),
                source=self.vendor_type,
                amount=self.normalize_amount(chargeback.get("amount")),
                currency=chargeback.get("currency", "USD"),
                transaction_date=self.normalize_date(transaction_date) if transaction_date else None,
                transaction_id=chargeback.get("transactionId"),
                card_brand=chargeback.get("cardType"),
                card_last_four=self.last_four(chargeback.get("cardNumberMasked")),
                cardholder_name=chargeback.get("cardholderName"),
                confirmation_number=chargeback.get("confirmationNumber"),
                reservation_external_id=payload.get("reservationId"),
                reason_code=chargeback.get("reasonCode"),
            )
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise self._mapping_error("chargeback alert", e)
