"""
In-memory PMS vendors for engine tests, served through httpx.MockTransport
"""

import asyncio
import hashlib
import hmac
import json
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional

import httpx

AUTOCLERK_HOST = "api.autoclerk.com"
PROTEL_HOST = "api.protel.net"

AUTOCLERK_API_KEY = "ak-live-123"
AUTOCLERK_WEBHOOK_SECRET = "whsec-autoclerk-test"


def autoclerk_reservation(reservation_id: str = "RES-1001", **overrides: Any) -> Dict[str, Any]:
    reservation = {
        "id": reservation_id,
        "confirmationNumber": "AC123456",
        "guest": {"firstName": "John", "lastName": "Smith", "email": "john.smith@example.com"},
        "arrivalDate": "2024-03-01",
        "departureDate": "2024-03-04",
        "roomNumber": "412",
        "rateAmount": "149.00",
        "totalAmount": "512.37",
        "currency": "USD",
        "payment": {"cardType": "VISA", "cardNumberMasked": "XXXXXXXXXXXX4242"},
        "status": "CHECKED_OUT",
        "lastModified": "2024-03-04T10:06:00Z",
    }
    reservation.update(overrides)
    return reservation


def autoclerk_folio(balance: str = "0.00") -> Dict[str, Any]:
    return {
        "currency": "USD",
        "balance": balance,
        "transactions": [
            {"id": 1, "postedAt": "2024-03-01", "type": "ROOM", "description": "Room 412", "amount": "149.00"},
            {"id": 2, "postedAt": "2024-03-01", "type": "TAX", "description": "Occupancy tax", "amount": "22.35"},
            {"id": 3, "postedAt": "2024-03-02", "type": "FNB", "description": "Restaurant", "amount": "41.02"},
            {"id": 4, "postedAt": "2024-03-04", "type": "PAYMENT", "description": "Visa 4242", "amount": "212.37"},
        ],
    }


def sign(body: bytes, secret: str = AUTOCLERK_WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class FakePMS:
    """
    AutoClerk and Protel APIs backed by dictionaries.

    ``errors`` maps a path (without the version prefix) to status codes
    returned one per request before the real handler; ``sticky_errors``
    keeps failing until removed. ``search_gate`` holds reservation searches
    until it is set.
    """

    def __init__(self):
        self.reservations: Dict[str, Dict[str, Any]] = {"RES-1001": autoclerk_reservation()}
        self.folios: Dict[str, Dict[str, Any]] = {"RES-1001": autoclerk_folio()}
        self.documents: Dict[str, List[Dict[str, Any]]] = {
            "RES-1001": [
                {
                    "id": "DOC-FOLIO",
                    "type": "FOLIO_PDF",
                    "fileName": "folio.pdf",
                    "contentType": "application/pdf",
                    "createdAt": "2024-03-04T10:06:00Z",
                },
                {
                    "id": "DOC-REG",
                    "type": "REGISTRATION_CARD",
                    "fileName": "regcard.pdf",
                    "contentType": "application/pdf",
                    "createdAt": "2024-03-01T15:21:00Z",
                },
                {
                    "id": "DOC-ID",
                    "type": "ID_SCAN",
                    "fileName": "id.jpg",
                    "contentType": "image/jpeg",
                    "createdAt": "2024-03-01T15:22:00Z",
                },
            ]
        }
        self.contents: Dict[str, bytes] = {
            "DOC-FOLIO": b"%PDF-1.7 folio RES-1001",
            "DOC-REG": b"%PDF-1.7 registration card RES-1001",
            "DOC-ID": b"\xff\xd8\xff id scan",
        }
        self.api_key = AUTOCLERK_API_KEY
        self.webhook_secret = AUTOCLERK_WEBHOOK_SECRET
        self.errors: Dict[str, Deque[int]] = defaultdict(deque)
        self.sticky_errors: Dict[str, int] = {}
        self.search_gate: Optional[asyncio.Event] = None
        self.search_started = asyncio.Event()
        self.disputes: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []

    def calls(self, path: str, method: str = "GET") -> int:
        return sum(
            1 for request in self.requests if request.method == method and self._path(request) == path
        )

    @staticmethod
    def _path(request: httpx.Request) -> str:
        path = request.url.path
        for prefix in ("/v1", "/v2"):
            if path.startswith(prefix + "/"):
                return path[len(prefix):]
        return path

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = self._path(request)
        if self.errors[path]:
            return httpx.Response(self.errors[path].popleft(), json={"error": "injected"})
        if path in self.sticky_errors:
            return httpx.Response(self.sticky_errors[path], json={"error": "injected"})
        if request.url.host == PROTEL_HOST:
            return self._protel(request, path)
        return await self._autoclerk(request, path)

    def _protel(self, request: httpx.Request, path: str) -> httpx.Response:
        if path == "/hotels/PRT01":
            return httpx.Response(200, json={"code": "PRT01", "name": "Protel Test Hotel"})
        return httpx.Response(404, json={"error": "not found"})

    async def _autoclerk(self, request: httpx.Request, path: str) -> httpx.Response:
        if request.headers.get("X-API-Key") != self.api_key:
            return httpx.Response(401, json={"error": "invalid api key"})
        parts = [part for part in path.split("/") if part]

        if path == "/property":
            return httpx.Response(200, json={"id": "HTL01", "name": "AutoClerk Test Hotel"})
        if path == "/reservations":
            self.search_started.set()
            if self.search_gate is not None:
                await self.search_gate.wait()
            rows = list(self.reservations.values())
            size = int(request.url.params.get("pageSize", 50))
            page = int(request.url.params.get("page", 1))
            return httpx.Response(
                200,
                json={
                    "reservations": rows[(page - 1) * size : page * size],
                    "totalPages": max(1, -(-len(rows) // size)),
                },
            )
        if path == "/disputes" and request.method == "POST":
            self.disputes.append(json.loads(request.content))
            return httpx.Response(201, json={"id": f"DSP-{len(self.disputes)}", "status": "received"})
        if path == "/webhooks" and request.method == "POST":
            return httpx.Response(201, json={"id": "WH-1", "secret": self.webhook_secret})
        if len(parts) >= 2 and parts[0] == "reservations":
            reservation_id = parts[1]
            if reservation_id not in self.reservations:
                return httpx.Response(404, json={"error": "not found"})
            if len(parts) == 2:
                return httpx.Response(200, json=self.reservations[reservation_id])
            if parts[2] == "folio":
                if reservation_id not in self.folios:
                    return httpx.Response(404, json={"error": "no folio"})
                return httpx.Response(200, json=self.folios[reservation_id])
            if parts[2] == "documents":
                return httpx.Response(200, json={"documents": self.documents.get(reservation_id, [])})
        if len(parts) == 3 and parts[0] == "documents" and parts[2] == "content":
            content = self.contents.get(parts[1])
            if content is None:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, content=content, headers={"Content-Type": "application/octet-stream"})
        return httpx.Response(404, json={"error": f"no route for {path}"})
