"""
Mews PMS Connector
Connector API with client/access token pair, POST-only endpoints
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
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


class MewsConnector(BaseAdapter):
    """
    Mews connector implementation.

    ``api_key`` is the enterprise AccessToken and ``api_secret`` the
    integration ClientToken; both travel as query tokens.
    """

    vendor_type = "MEWS"
    display_name = "Mews"
    auth_type = AuthType.API_KEY
    supports_webhooks = True
    supports_push = True
    supports_documents = False
    features = ("reservations", "folios", "dispute_push", "webhooks", "real_time_sync")
    default_base_url = "https://api.mews.com"
    default_timeout = 30.0
    webhook_signature_header = "X-Mews-Signature"

    CLIENT_NAME = "ChargebackDefense 1.0"
    PAGE_SIZE = 100
    # Mews rejects update windows longer than three months
    MAX_UPDATED_WINDOW = timedelta(days=90)

    STATUS_MAP = {
        "Enquired": ReservationStatus.CONFIRMED,
        "Optional": ReservationStatus.CONFIRMED,
        "Confirmed": ReservationStatus.CONFIRMED,
        "Started": ReservationStatus.CHECKED_IN,
        "Processed": ReservationStatus.CHECKED_OUT,
        "Canceled": ReservationStatus.CANCELLED,
    }

    ORDER_ITEM_MAP = {
        "SpaceOrder": FolioCategory.ROOM,
        "CityTax": FolioCategory.TAX_FEE,
        "ServiceCharge": FolioCategory.TAX_FEE,
        "ProductOrder": FolioCategory.FOOD_BEVERAGE,
        "AdditionalExpense": FolioCategory.INCIDENTAL,
        "Rebate": FolioCategory.ADJUSTMENT,
    }

    EVENT_MAP = {
        "ServiceOrderCreated": WebhookEventType.RESERVATION_CREATED,
        "ServiceOrderUpdated": WebhookEventType.RESERVATION_UPDATED,
        "PaymentAdded": WebhookEventType.FOLIO_UPDATED,
        "OrderItemAdded": WebhookEventType.FOLIO_UPDATED,
    }

    def _auth_params(self) -> Dict[str, str]:
        return {}

    def _auth_headers(self) -> Dict[str, str]:
        return {}

    def _tokens(self) -> Dict[str, str]:
        credentials = self.credentials
        if credentials.api_secret is None:
            raise PermanentAdapterError("Mews requires api_secret (ClientToken)", vendor=self.vendor_type)
        return {
            "ClientToken": credentials.api_secret.get_secret_value(),
            "AccessToken": credentials.api_key.get_secret_value(),
            "Client": self.CLIENT_NAME,
        }

    async def _call(self, operation: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self._request(
            "POST", f"/api/connector/v1/{operation}", params=self._tokens(), json=body or {}
        )

    async def _verify_credentials(self) -> None:
        await self._call("configuration/get")

    @log_performance("get_reservation")
    async def get_reservation(self, external_id: str) -> CanonicalReservation:
        result = await self._call(
            "reservations/getAll",
            {
                "ReservationIds": [external_id],
                "Extent": {"Reservations": True, "Customers": True, "Resources": True},
                "Limitation": {"Count": 1},
            },
        )
        reservations = self._map_page(result)
        if not reservations:
            raise NotFoundError(f"Reservation {external_id} not found", vendor=self.vendor_type)
        return reservations[0]

    @log_performance("search_reservations")
    async def search_reservations(self, criteria: ReservationCriteria) -> List[CanonicalReservation]:
        now = datetime.now(timezone.utc)
        body: Dict[str, Any] = {"Extent": {"Reservations": True, "Customers": True, "Resources": True}}
        if criteria.modified_since:
            start = max(criteria.modified_since, now - self.MAX_UPDATED_WINDOW)
            body["UpdatedUtc"] = {"StartUtc": start.isoformat(), "EndUtc": now.isoformat()}
        elif criteria.check_in_from or criteria.check_in_to:
            start = criteria.check_in_from or (now - self.MAX_UPDATED_WINDOW).date()
            end = criteria.check_in_to or now.date()
            body["ScheduledStartUtc"] = {"StartUtc": f"{start.isoformat()}T00:00:00Z", "EndUtc": f"{end.isoformat()}T23:59:59Z"}
        else:
            body["UpdatedUtc"] = {"StartUtc": (now - self.MAX_UPDATED_WINDOW).isoformat(), "EndUtc": now.isoformat()}
        if criteria.confirmation_number:
            body["Numbers"] = [criteria.confirmation_number]

        reservations: List[CanonicalReservation] = []
        cursor = None
        while criteria.wants_more(len(reservations)):
            limitation: Dict[str, Any] = {"Count": min(criteria.limit, self.PAGE_SIZE)}
            if cursor:
                limitation["Cursor"] = cursor
            result = await self._call("reservations/getAll", {**body, "Limitation": limitation})
            page = self._map_page(result)
            reservations.extend(page)
            cursor = result.get("Cursor")
            if not cursor or not page:
                break
        return self.apply_criteria(reservations, criteria)

    def _map_page(self, result: Dict[str, Any]) -> List[CanonicalReservation]:
        customers = {c["Id"]: c for c in result.get("Customers", []) if "Id" in c}
        resources = {r["Id"]: r for r in result.get("Resources", []) if "Id" in r}
        return [self._map_reservation(item, customers, resources) for item in result.get("Reservations", [])]

    def _map_reservation(
        self, result: Dict[str, Any], customers: Dict[str, Any], resources: Dict[str, Any]
    ) -> CanonicalReservation:
        try:
            customer = customers.get(result.get("AccountId") or result.get("CustomerId"), {})
            resource = resources.get(result.get("AssignedResourceId"), {})
            amount = result.get("Amount") or {}
            name = " ".join(part for part in (customer.get("FirstName"), customer.get("LastName")) if part)
            return CanonicalReservation(
                external_id=str(result["Id"]),
                confirmation_number=str(result["Number"]) if result.get("Number") else None,
                guest_name=name or None,
                guest_email=customer.get("Email"),
                guest_phone=customer.get("Phone"),
                check_in_date=self.normalize_date(result["StartUtc"]),
                check_out_date=self.normalize_date(result["EndUtc"]),
                actual_check_in=self.normalize_datetime(result.get("ActualStartUtc")),
                actual_check_out=self.normalize_datetime(result.get("ActualEndUtc")),
                room_number=resource.get("Name"),
                room_type=result.get("RequestedResourceCategoryId"),
                rate_code=result.get("RateId"),
                total_amount=self.normalize_amount(amount.get("GrossValue")),
                currency=amount.get("Currency", "EUR"),
                booking_source=result.get("Origin"),
                status=self._map_status(result),
                sync_source=self.vendor_type,
                updated_at=self.normalize_datetime(result["UpdatedUtc"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise self._mapping_error("reservation", e)

    def _map_status(self, result: Dict[str, Any]) -> ReservationStatus:
        """Map Mews reservation state; no-shows are cancellations with a reason"""
        state = result.get("State", "Confirmed")
        if state == "Canceled" and result.get("CancellationReason") == "NoShow":
            return ReservationStatus.NO_SHOW
        return self.STATUS_MAP.get(state, ReservationStatus.CONFIRMED)

    @log_performance("get_folio")
    async def get_folio(self, external_id: str) -> Folio:
        order_items = await self._call("orderItems/getAll", {"ServiceOrderIds": [external_id]})
        payments = await self._call("payments/getAll", {"ReservationIds": [external_id]})

        items: List[FolioLineItem] = []
        currency = "EUR"
        try:
            for item in order_items.get("OrderItems", []):
                amount = item["Amount"]
                currency = amount.get("Currency", currency)
                items.append(
                    FolioLineItem(
                        posting_date=self.normalize_date(item.get("ConsumedUtc") or item["CreatedUtc"]),
                        category=self.ORDER_ITEM_MAP.get(item.get("Type"), FolioCategory.OTHER),
                        description=item.get("Name") or item.get("Type", ""),
                        amount=self.normalize_amount(amount["GrossValue"]),
                        currency=currency,
                        transaction_code=item.get("AccountingCategoryId"),
                        external_id=str(item["Id"]),
                    )
                )
            for payment in payments.get("Payments", []):
                amount = payment["Amount"]
                items.append(
                    FolioLineItem(
                        posting_date=self.normalize_date(payment["CreatedUtc"]),
                        category=FolioCategory.PAYMENT,
                        description=payment.get("Type", "Payment"),
                        amount=-abs(self.normalize_amount(amount["GrossValue"]) or Decimal("0")),
                        currency=amount.get("Currency", currency),
                        auth_code=payment.get("ReceiptIdentifier"),
                        external_id=str(payment["Id"]),
                    )
                )
        except (KeyError, TypeError, ValueError) as e:
            raise self._mapping_error("folio", e)
        # Mews does not report a folio balance alongside items
        return Folio(reservation_external_id=external_id, items=items, currency=currency)

    @log_performance("push_case_update")
    async def push_case_update(
        self,
        case_id: str,
        status: str,
        reservation_external_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        deadline = datetime.now(timezone.utc) + timedelta(days=1)
        description = notes or ""
        if reservation_external_id:
            description = f"Reservation {reservation_external_id}. {description}".strip()
        result = await self._call(
            "tasks/add",
            {
                "Name": f"Chargeback {case_id}: {status}",
                "Description": description,
                "DeadlineUtc": deadline.isoformat(),
            },
        )
        return {"vendor_reference": result.get("TaskId"), "status": status}

    async def subscribe_webhook(
        self, callback_url: str, events: Optional[List[WebhookEventType]] = None
    ) -> WebhookSubscription:
        wanted = events or [
            WebhookEventType.RESERVATION_CREATED,
            WebhookEventType.RESERVATION_UPDATED,
            WebhookEventType.FOLIO_UPDATED,
        ]
        discriminators = [name for name, event_type in self.EVENT_MAP.items() if event_type in wanted]
        result = await self._call("webhooks/add", {"Url": callback_url, "Discriminators": discriminators})
        return WebhookSubscription(
            subscription_id=str(result["WebhookId"]),
            callback_url=callback_url,
            events=list(wanted),
            secret=result.get("Secret"),
        )

    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        # Mews batches events; the first known one decides the sync
        for event in payload.get("Events", []):
            event_type = self.EVENT_MAP.get(event.get("Discriminator"))
            if event_type is None:
                continue
            value = event.get("Value") or {}
            external_id = value.get("ReservationId") or value.get("Id")
            return WebhookEvent(
                event_type=event_type,
                vendor=self.vendor_type,
                external_id=str(external_id) if external_id else None,
                payload=payload,
                occurred_at=self.normalize_datetime(value.get("UpdatedUtc")),
            )
        raise PermanentAdapterError("Webhook carries no supported Mews event", vendor=self.vendor_type)
