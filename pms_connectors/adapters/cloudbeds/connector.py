"""
Cloudbeds PMS Connector
OAuth2 authorization-code flow with refresh tokens
"""

from typing import Any, Dict, List, Optional

from ...contracts import (
    BaseAdapter,
    CanonicalReservation,
    Folio,
    FolioCategory,
    FolioLineItem,
    NotFoundError,
    PermanentAdapterError,
    ReservationCriteria,
    ReservationStatus,
    WebhookEvent,
    WebhookEventType,
    WebhookSubscription,
)
from ...credentials import AuthType
from ...utils.logging import log_performance


class CloudbedsConnector(BaseAdapter):
    """Cloudbeds connector implementation"""

    vendor_type = "CLOUDBEDS"
    display_name = "Cloudbeds"
    auth_type = AuthType.OAUTH2
    supports_webhooks = True
    supports_push = True
    supports_documents = False
    features = ("reservations", "folios", "dispute_push", "webhooks", "guest_notes")
    default_base_url = "https://api.cloudbeds.com/api/v1.2"
    default_timeout = 30.0
    token_path = "/access_token"
    authorize_path = "https://hotels.cloudbeds.com/api/v1.2/oauth"
    webhook_signature_header = "X-Cloudbeds-Signature"

    PAGE_SIZE = 100

    STATUS_MAP = {
        "not_confirmed": ReservationStatus.CONFIRMED,
        "confirmed": ReservationStatus.CONFIRMED,
        "checked_in": ReservationStatus.CHECKED_IN,
        "checked_out": ReservationStatus.CHECKED_OUT,
        "canceled": ReservationStatus.CANCELLED,
        "no_show": ReservationStatus.NO_SHOW,
    }

    CATEGORY_MAP = {
        "rate": FolioCategory.ROOM,
        "tax": FolioCategory.TAX_FEE,
        "fee": FolioCategory.TAX_FEE,
        "product": FolioCategory.FOOD_BEVERAGE,
        "addon": FolioCategory.INCIDENTAL,
        "payment": FolioCategory.PAYMENT,
        "refund": FolioCategory.ADJUSTMENT,
        "adjustment": FolioCategory.ADJUSTMENT,
    }

    # (object, action) pairs understood by postWebhook
    EVENT_MAP = {
        "reservation/created": WebhookEventType.RESERVATION_CREATED,
        "reservation/status_changed": WebhookEventType.RESERVATION_UPDATED,
        "reservation/dates_changed": WebhookEventType.RESERVATION_UPDATED,
        "reservation/accommodation_changed": WebhookEventType.RESERVATION_UPDATED,
        "transaction/created": WebhookEventType.FOLIO_UPDATED,
    }

    def _data(self, result: Dict[str, Any], what: str) -> Any:
        """Cloudbeds answers 200 with success=false for logical errors"""
        if not result.get("success", False):
            message = result.get("message") or f"{what} failed"
            if "not found" in message.lower():
                raise NotFoundError(message, vendor=self.vendor_type)
            raise PermanentAdapterError(message, vendor=self.vendor_type)
        return result.get("data")

    async def _verify_credentials(self) -> None:
        self._data(await self._request("GET", "/getHotelDetails"), "getHotelDetails")

    @log_performance("get_reservation")
    async def get_reservation(self, external_id: str) -> CanonicalReservation:
        result = await self._request("GET", "/getReservation", params={"reservationID": external_id})
        return self._map_reservation(self._data(result, "getReservation"))

    @log_performance("search_reservations")
    async def search_reservations(self, criteria: ReservationCriteria) -> List[CanonicalReservation]:
        params: Dict[str, Any] = {"pageSize": min(criteria.limit, self.PAGE_SIZE)}
        if criteria.modified_since:
            params["modifiedFrom"] = criteria.modified_since.strftime("%Y-%m-%d %H:%M:%S")
        if criteria.check_in_from:
            params["checkInFrom"] = criteria.check_in_from.isoformat()
        if criteria.check_in_to:
            params["checkInTo"] = criteria.check_in_to.isoformat()

        reservations: List[CanonicalReservation] = []
        page_number = 1
        while criteria.wants_more(len(reservations)):
            result = await self._request("GET", "/getReservations", params={**params, "pageNumber": page_number})
            page = self._data(result, "getReservations") or []
            reservations.extend(self._map_reservation(item) for item in page)
            if not page or len(reservations) >= int(result.get("total", 0)):
                break
            page_number += 1
        return self.apply_criteria(reservations, criteria)

    def _map_reservation(self, result: Dict[str, Any]) -> CanonicalReservation:
        try:
            assigned = (result.get("assigned") or [{}])[0]
            cards = result.get("cardsOnFile") or []
            card = cards[0] if cards else {}
            return CanonicalReservation(
                external_id=str(result["reservationID"]),
                confirmation_number=result.get("thirdPartyIdentifier") or str(result["reservationID"]),
                guest_name=result.get("guestName"),
                guest_email=result.get("guestEmail"),
                guest_phone=result.get("guestPhone"),
                check_in_date=self.normalize_date(result["startDate"]),
                check_out_date=self.normalize_date(result["endDate"]),
                room_number=assigned.get("roomName"),
                room_type=assigned.get("roomTypeName"),
                rate_code=str(assigned["rateID"]) if assigned.get("rateID") else None,
                total_amount=self.normalize_amount(result.get("total")),
                currency=result.get("currency", "USD"),
                card_brand=card.get("cardType"),
                card_last_four=self.last_four(card.get("cardNumber")),
                booking_source=result.get("sourceName"),
                status=self.STATUS_MAP.get(result.get("status", "confirmed"), ReservationStatus.CONFIRMED),
                sync_source=self.vendor_type,
                updated_at=self.normalize_datetime(result.get("dateModified") or result["dateCreated"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise self._mapping_error("reservation", e)

    @log_performance("get_folio")
    async def get_folio(self, external_id: str) -> Folio:
        result = await self._request("GET", "/getTransactions", params={"reservationID": external_id})
        transactions = self._data(result, "getTransactions") or []
        items: List[FolioLineItem] = []
        currency = "USD"
        try:
            for txn in transactions:
                currency = txn.get("currency", currency)
                category = self.CATEGORY_MAP.get(str(txn.get("transactionCategory", "")).lower(), FolioCategory.OTHER)
                amount = self.normalize_amount(txn["amount"])
                if category == FolioCategory.PAYMENT:
                    amount = -abs(amount)
                items.append(
                    FolioLineItem(
                        posting_date=self.normalize_date(txn["transactionDateTime"]),
                        category=category,
                        description=txn.get("description", ""),
                        amount=amount,
                        currency=currency,
                        transaction_code=txn.get("transactionCode"),
                        external_id=str(txn["transactionID"]),
                    )
                )
        except (KeyError, TypeError, ValueError) as e:
            raise self._mapping_error("folio", e)
        return Folio(reservation_external_id=external_id, items=items, currency=currency)

    @log_performance("push_case_update")
    async def push_case_update(
        self,
        case_id: str,
        status: str,
        reservation_external_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not reservation_external_id:
            raise PermanentAdapterError("Cloudbeds case updates need a reservation id", vendor=self.vendor_type)
        note = f"Chargeback case {case_id}: {status}"
        if notes:
            note = f"{note}. {notes}"
        result = await self._request(
            "POST",
            "/postReservationNote",
            data={"reservationID": reservation_external_id, "reservationNote": note},
        )
        return {"vendor_reference": self._data(result, "postReservationNote"), "status": status}

    async def subscribe_webhook(
        self, callback_url: str, events: Optional[List[WebhookEventType]] = None
    ) -> WebhookSubscription:
        wanted = events or [
            WebhookEventType.RESERVATION_CREATED,
            WebhookEventType.RESERVATION_UPDATED,
            WebhookEventType.FOLIO_UPDATED,
        ]
        subscription_ids = []
        # One subscription per object/action pair
        for name, event_type in self.EVENT_MAP.items():
            if event_type not in wanted:
                continue
            obj, action = name.split("/")
            result = await self._request(
                "POST", "/postWebhook", data={"object": obj, "action": action, "endpointUrl": callback_url}
            )
            data = self._data(result, "postWebhook") or {}
            subscription_ids.append(str(data.get("subscriptionID")))
        return WebhookSubscription(
            subscription_id=",".join(subscription_ids),
            callback_url=callback_url,
            events=list(wanted),
        )

    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        event_name = payload.get("event", "")
        event_type = self.EVENT_MAP.get(event_name)
        if event_type is None:
            raise PermanentAdapterError(f"Unsupported webhook event: {event_name!r}", vendor=self.vendor_type)
        reservation_id = payload.get("reservationID") or payload.get("reservationId")
        return WebhookEvent(
            event_type=event_type,
            vendor=self.vendor_type,
            external_id=str(reservation_id) if reservation_id else None,
            payload=payload,
            occurred_at=self.normalize_datetime(payload.get("timestamp")),
        )
