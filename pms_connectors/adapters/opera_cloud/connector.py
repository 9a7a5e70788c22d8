"""
Oracle OPERA Cloud PMS Connector
OHIP REST APIs with OAuth2 client-credentials tokens
"""

from typing import Any, Dict, List, Optional

from ...contracts import (
    BaseAdapter,
    CanonicalReservation,
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


class OperaCloudConnector(BaseAdapter):
    """OPERA Cloud connector implementation"""

    vendor_type = "OPERA_CLOUD"
    display_name = "Oracle OPERA Cloud"
    auth_type = AuthType.OAUTH2
    supports_webhooks = True
    supports_push = True
    supports_documents = True
    features = ("reservations", "folios", "documents", "signatures", "dispute_push", "webhooks", "multi_property")
    document_kinds = (
        DocumentKind.FOLIO,
        DocumentKind.AUTH_SIGNATURE,
        DocumentKind.CHECKOUT_SIGNATURE,
        DocumentKind.PAYMENT_RECEIPT,
        DocumentKind.BOOKING_CONFIRMATION,
    )
    default_base_url = "https://api.oracle-hospitality.com"
    default_timeout = 30.0
    token_path = "/oauth/v1/tokens"
    webhook_signature_header = "x-oracle-signature"

    PAGE_SIZE = 50

    STATUS_MAP = {
        "RESERVED": ReservationStatus.CONFIRMED,
        "PROSPECT": ReservationStatus.CONFIRMED,
        "DUEIN": ReservationStatus.CONFIRMED,
        "INHOUSE": ReservationStatus.CHECKED_IN,
        "DUEOUT": ReservationStatus.CHECKED_IN,
        "CHECKEDOUT": ReservationStatus.CHECKED_OUT,
        "CANCELLED": ReservationStatus.CANCELLED,
        "NOSHOW": ReservationStatus.NO_SHOW,
    }

    CATEGORY_MAP = {
        "ROOM": FolioCategory.ROOM,
        "TAX": FolioCategory.TAX_FEE,
        "FEE": FolioCategory.TAX_FEE,
        "FB": FolioCategory.FOOD_BEVERAGE,
        "MISC": FolioCategory.INCIDENTAL,
        "PAYMENT": FolioCategory.PAYMENT,
        "ADJ": FolioCategory.ADJUSTMENT,
    }

    ATTACHMENT_MAP = {
        "Folio": DocumentKind.FOLIO,
        "RegistrationCard": DocumentKind.AUTH_SIGNATURE,
        "CheckoutSignature": DocumentKind.CHECKOUT_SIGNATURE,
        "Receipt": DocumentKind.PAYMENT_RECEIPT,
        "Confirmation": DocumentKind.BOOKING_CONFIRMATION,
    }

    EVENT_MAP = {
        "NEW RESERVATION": WebhookEventType.RESERVATION_CREATED,
        "UPDATE RESERVATION": WebhookEventType.RESERVATION_UPDATED,
        "CANCEL RESERVATION": WebhookEventType.RESERVATION_UPDATED,
        "CHECKIN": WebhookEventType.RESERVATION_UPDATED,
        "CHECKOUT": WebhookEventType.RESERVATION_UPDATED,
        "POST CHARGE": WebhookEventType.FOLIO_UPDATED,
        "POST PAYMENT": WebhookEventType.FOLIO_UPDATED,
    }

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.hotel_id = config.get("hotel_id") or self.property_id
        self.app_key = config.get("app_key")
        if not self.hotel_id:
            raise PermanentAdapterError("OPERA Cloud requires hotel_id or property_id", vendor=self.vendor_type)

    def _auth_headers(self) -> Dict[str, str]:
        headers = super()._auth_headers()
        headers["x-hotelid"] = self.hotel_id
        if self.app_key:
            headers["x-app-key"] = self.app_key
        return headers

    @property
    def _rsv(self) -> str:
        return f"/rsv/v1/hotels/{self.hotel_id}/reservations"

    async def _verify_credentials(self) -> None:
        await self._request("GET", self._rsv, params={"limit": 1})

    @log_performance("get_reservation")
    async def get_reservation(self, external_id: str) -> CanonicalReservation:
        result = await self._request("GET", f"{self._rsv}/{external_id}")
        reservations = (result.get("reservations") or {}).get("reservation") or []
        if not reservations:
            raise NotFoundError(f"Reservation {external_id} not found", vendor=self.vendor_type)
        return self._map_reservation(reservations[0])

    @log_performance("search_reservations")
    async def search_reservations(self, criteria: ReservationCriteria) -> List[CanonicalReservation]:
        params: Dict[str, Any] = {"limit": min(criteria.limit, self.PAGE_SIZE)}
        if criteria.modified_since:
            params["lastModifiedStartDate"] = criteria.modified_since.isoformat()
        if criteria.check_in_from:
            params["arrivalStartDate"] = criteria.check_in_from.isoformat()
        if criteria.check_in_to:
            params["arrivalEndDate"] = criteria.check_in_to.isoformat()
        if criteria.confirmation_number:
            params["confirmationNumberList"] = criteria.confirmation_number
        if criteria.guest_name:
            params["surname"] = criteria.guest_name.split()[-1]

        reservations: List[CanonicalReservation] = []
        offset = 0
        while criteria.wants_more(len(reservations)):
            result = await self._request("GET", self._rsv, params={**params, "offset": offset})
            page = (result.get("reservations") or {}).get("reservationInfo") or []
            reservations.extend(self._map_reservation(item) for item in page)
            if not result.get("hasMore") or not page:
                break
            offset += len(page)
        return self.apply_criteria(reservations, criteria)

    def _reservation_id(self, result: Dict[str, Any], id_type: str) -> Optional[str]:
        for entry in result.get("reservationIdList", []):
            if entry.get("type") == id_type:
                return str(entry.get("id"))
        return None

    def _map_reservation(self, result: Dict[str, Any]) -> CanonicalReservation:
        try:
            stay = result["roomStay"]
            guest = result.get("reservationGuest") or {}
            card = (result.get("reservationPaymentMethod") or {}).get("paymentCard") or {}
            external_id = self._reservation_id(result, "Reservation")
            if external_id is None:
                raise KeyError("reservationIdList[Reservation]")
            name = " ".join(part for part in (guest.get("givenName"), guest.get("surname")) if part)
            total = stay.get("total") or {}
            rate = stay.get("rateAmount") or {}
            return CanonicalReservation(
                external_id=external_id,
                confirmation_number=self._reservation_id(result, "Confirmation"),
                guest_name=name or None,
                guest_email=guest.get("email"),
                guest_phone=guest.get("phoneNumber"),
                check_in_date=self.normalize_date(stay["arrivalDate"]),
                check_out_date=self.normalize_date(stay["departureDate"]),
                actual_check_in=self.normalize_datetime(result.get("checkInDateTime")),
                actual_check_out=self.normalize_datetime(result.get("checkOutDateTime")),
                room_number=stay.get("roomId"),
                room_type=stay.get("roomType"),
                rate_code=stay.get("ratePlanCode"),
                rate_amount=self.normalize_amount(rate.get("amount")),
                total_amount=self.normalize_amount(total.get("amount")),
                currency=total.get("currencyCode") or rate.get("currencyCode") or "USD",
                card_brand=card.get("cardType"),
                card_last_four=card.get("cardNumberLast4Digits"),
                booking_source=(result.get("sourceOfSale") or {}).get("sourceCode"),
                status=self._map_status(result.get("reservationStatus", "Reserved")),
                sync_source=self.vendor_type,
                updated_at=self.normalize_datetime(result["lastModifyDateTime"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise self._mapping_error("reservation", e)

    def _map_status(self, status: str) -> ReservationStatus:
        """Map OPERA reservation status to the canonical status"""
        return self.STATUS_MAP.get(status.replace(" ", "").upper(), ReservationStatus.CONFIRMED)

    @log_performance("get_folio")
    async def get_folio(self, external_id: str) -> Folio:
        result = await self._request(
            "GET",
            f"/csh/v1/hotels/{self.hotel_id}/reservations/{external_id}/folios",
            params={"fetchInstructions": "Postings"},
        )
        windows = (result.get("reservationFolioInformation") or {}).get("folioWindows") or []
        items: List[FolioLineItem] = []
        balance = None
        currency = "USD"
        try:
            for window in windows:
                window_balance = (window.get("balance") or {}).get("amount")
                if window_balance is not None:
                    balance = (balance or 0) + self.normalize_amount(window_balance)
                for posting in window.get("postings", []):
                    posted = posting["postedAmount"]
                    currency = posted.get("currencyCode", currency)
                    category = self.CATEGORY_MAP.get(posting.get("transactionGroup", ""), FolioCategory.OTHER)
                    amount = self.normalize_amount(posted["amount"])
                    if category == FolioCategory.PAYMENT:
                        amount = -abs(amount)
                    items.append(
                        FolioLineItem(
                            posting_date=self.normalize_date(posting["transactionDate"]),
                            category=category,
                            description=posting.get("remark") or posting.get("transactionCode", ""),
                            amount=amount,
                            currency=currency,
                            transaction_code=posting.get("transactionCode"),
                            auth_code=posting.get("approvalCode"),
                            external_id=str(posting.get("transactionNo")) if posting.get("transactionNo") else None,
                        )
                    )
        except (KeyError, TypeError, ValueError) as e:
            raise self._mapping_error("folio", e)
        return Folio(reservation_external_id=external_id, items=items, currency=currency, reported_balance=balance)

    @log_performance("list_documents")
    async def list_documents(self, external_id: str) -> List[DocumentDescriptor]:
        result = await self._request("GET", f"{self._rsv}/{external_id}/attachments")
        documents = []
        for attachment in result.get("attachments", []):
            kind = self.ATTACHMENT_MAP.get(attachment.get("attachmentType"))
            if kind is None:
                continue
            documents.append(
                DocumentDescriptor(
                    kind=kind,
                    external_id=str(attachment["attachmentId"]),
                    file_name=attachment.get("fileName"),
                    mime_type=attachment.get("mimeType"),
                    source_timestamp=self.normalize_datetime(attachment.get("createDateTime")),
                )
            )
        return documents

    @log_performance("fetch_document")
    async def fetch_document(self, external_id: str, kind: DocumentKind) -> VendorDocument:
        candidates = [doc for doc in await self.list_documents(external_id) if doc.kind == kind]
        if not candidates:
            raise NotFoundError(f"No {kind.value} attachment for reservation {external_id}", vendor=self.vendor_type)
        descriptor = max(candidates, key=lambda d: d.source_timestamp.timestamp() if d.source_timestamp else 0.0)
        response = await self._request(
            "GET", f"{self._rsv}/{external_id}/attachments/{descriptor.external_id}", expect_json=False
        )
        return VendorDocument(
            kind=kind,
            content=response.content,
            mime_type=descriptor.mime_type or response.headers.get("Content-Type", "application/pdf"),
            file_name=descriptor.file_name or f"{kind.value}-{external_id}.pdf",
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
        # OPERA has no dispute object; the update lands as a reservation comment
        if not reservation_external_id:
            raise PermanentAdapterError("OPERA Cloud case updates need a reservation id", vendor=self.vendor_type)
        text = f"Chargeback case {case_id}: {status}"
        if notes:
            text = f"{text} - {notes}"
        result = await self._request(
            "POST",
            f"{self._rsv}/{reservation_external_id}/comments",
            json={"comment": {"text": text, "type": "CHARGEBACK", "internal": True}},
        )
        return {"vendor_reference": result.get("commentId"), "status": status}

    async def subscribe_webhook(
        self, callback_url: str, events: Optional[List[WebhookEventType]] = None
    ) -> WebhookSubscription:
        wanted = events or [
            WebhookEventType.RESERVATION_CREATED,
            WebhookEventType.RESERVATION_UPDATED,
            WebhookEventType.FOLIO_UPDATED,
        ]
        vendor_events = [name for name, event_type in self.EVENT_MAP.items() if event_type in wanted]
        result = await self._request(
            "POST",
            "/int/v1/webhooks",
            json={"callbackUrl": callback_url, "hotelId": self.hotel_id, "events": vendor_events},
        )
        return WebhookSubscription(
            subscription_id=str(result["subscriptionId"]),
            callback_url=callback_url,
            events=list(wanted),
            secret=result.get("secret"),
        )

    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        event_name = str(payload.get("eventName", "")).upper()
        event_type = self.EVENT_MAP.get(event_name)
        if event_type is None:
            raise PermanentAdapterError(f"Unsupported webhook event: {event_name!r}", vendor=self.vendor_type)
        return WebhookEvent(
            event_type=event_type,
            vendor=self.vendor_type,
            external_id=str(payload["primaryKey"]) if payload.get("primaryKey") else None,
            payload=payload,
            occurred_at=self.normalize_datetime(payload.get("timestamp")),
        )
