"""
protel PMS Connector
HTTP Basic with hotel code header; poll-only, read-only
"""

from typing import Any, Dict, List

from ...contracts import (
    BaseAdapter,
    CanonicalReservation,
    Folio,
    FolioCategory,
    FolioLineItem,
    ReservationCriteria,
    ReservationStatus,
)
from ...credentials import AuthType
from ...utils.logging import log_performance


class ProtelConnector(BaseAdapter):
    """protel connector implementation"""

    vendor_type = "PROTEL"
    display_name = "protel PMS"
    auth_type = AuthType.BASIC
    supports_webhooks = False
    supports_push = False
    supports_documents = False
    features = ("reservations", "folios")
    default_base_url = "https://api.protel.net/v2"
    default_timeout = 45.0
    hotel_code_header = "X-Protel-Hotel"

    PAGE_SIZE = 100

    STATUS_MAP = {
        "R": ReservationStatus.CONFIRMED,
        "W": ReservationStatus.CONFIRMED,
        "I": ReservationStatus.CHECKED_IN,
        "O": ReservationStatus.CHECKED_OUT,
        "X": ReservationStatus.CANCELLED,
        "N": ReservationStatus.NO_SHOW,
    }

    DEPARTMENT_MAP = {
        "LOGIS": FolioCategory.ROOM,
        "TAX": FolioCategory.TAX_FEE,
        "FB": FolioCategory.FOOD_BEVERAGE,
        "MISC": FolioCategory.INCIDENTAL,
        "PAY": FolioCategory.PAYMENT,
        "CORR": FolioCategory.ADJUSTMENT,
    }

    async def _verify_credentials(self) -> None:
        await self._request("GET", f"/hotels/{self.credentials.hotel_code}")

    @log_performance("get_reservation")
    async def get_reservation(self, external_id: str) -> CanonicalReservation:
        result = await self._request("GET", f"/reservations/{external_id}")
        return self._map_reservation(result.get("reservation", result))

    @log_performance("search_reservations")
    async def search_reservations(self, criteria: ReservationCriteria) -> List[CanonicalReservation]:
        params: Dict[str, Any] = {"limit": min(criteria.limit, self.PAGE_SIZE)}
        if criteria.modified_since:
            params["changedSince"] = criteria.modified_since.isoformat()
        if criteria.check_in_from:
            params["arrivalFrom"] = criteria.check_in_from.isoformat()
        if criteria.check_in_to:
            params["arrivalTo"] = criteria.check_in_to.isoformat()
        if criteria.confirmation_number:
            params["confirmationNo"] = criteria.confirmation_number

        reservations: List[CanonicalReservation] = []
        offset = 0
        while criteria.wants_more(len(reservations)):
            result = await self._request("GET", "/reservations", params={**params, "offset": offset})
            page = result.get("reservations", [])
            reservations.extend(self._map_reservation(item) for item in page)
            offset += len(page)
            if not page or offset >= int(result.get("total", 0)):
                break
        return self.apply_criteria(reservations, criteria)

    def _map_reservation(self, result: Dict[str, Any]) -> CanonicalReservation:
        try:
            guest = result.get("guest") or {}
            payment = result.get("payment") or {}
            # protel keeps the surname in name1
            name = " ".join(part for part in (guest.get("firstName"), guest.get("name1")) if part)
            return CanonicalReservation(
                external_id=str(result["resNo"]),
                confirmation_number=result.get("confirmationNo"),
                guest_name=name or None,
                guest_email=guest.get("email"),
                guest_phone=guest.get("phone"),
                check_in_date=self.normalize_date(result["arrival"]),
                check_out_date=self.normalize_date(result["departure"]),
                actual_check_in=self.normalize_datetime(result.get("checkInTime")),
                actual_check_out=self.normalize_datetime(result.get("checkOutTime")),
                room_number=result.get("roomNo"),
                room_type=result.get("category"),
                rate_code=result.get("rateCode"),
                rate_amount=self.normalize_amount(result.get("rate")),
                total_amount=self.normalize_amount(result.get("total")),
                currency=result.get("currency", "EUR"),
                card_brand=payment.get("cardType"),
                card_last_four=self.last_four(payment.get("maskedPan")),
                booking_source=result.get("channel"),
                status=self.STATUS_MAP.get(str(result.get("status", "R")).upper(), ReservationStatus.CONFIRMED),
                sync_source=self.vendor_type,
                updated_at=self.normalize_datetime(result["lastChange"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise self._mapping_error("reservation", e)

    @log_performance("get_folio")
    async def get_folio(self, external_id: str) -> Folio:
        result = await self._request("GET", f"/reservations/{external_id}/invoice")
        currency = result.get("currency", "EUR")
        items = []
        try:
            for posting in result.get("postings", []):
                category = self.DEPARTMENT_MAP.get(posting.get("department", ""), FolioCategory.OTHER)
                amount = self.normalize_amount(posting["amount"])
                if category == FolioCategory.PAYMENT:
                    amount = -abs(amount)
                items.append(
                    FolioLineItem(
                        posting_date=self.normalize_date(posting["date"]),
                        category=category,
                        description=posting.get("text", ""),
                        amount=amount,
                        currency=currency,
                        transaction_code=posting.get("articleNo"),
                        auth_code=posting.get("authCode"),
                        external_id=str(posting["postingId"]) if posting.get("postingId") else None,
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
