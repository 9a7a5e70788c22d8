"""
Unit tests for OPERA Cloud connector with HTTPX mocking
Covers the OAuth2 client-credentials flow and payload mapping
"""

import json
import re
from datetime import date
from decimal import Decimal
from urllib.parse import parse_qs

import pytest
from pytest_httpx import HTTPXMock

from pms_connectors.adapters.opera_cloud.connector import OperaCloudConnector
from pms_connectors.contracts import (
    AuthenticationError,
    DocumentKind,
    FolioCategory,
    PermanentAdapterError,
    ReservationStatus,
    WebhookEventType,
)

from .fixtures import OPERA_BASE

TOKEN_URL = f"{OPERA_BASE}/oauth/v1/tokens"
RSV = f"{OPERA_BASE}/rsv/v1/hotels/HOTEL1/reservations"
VERIFY_URL = re.compile(rf"{re.escape(RSV)}\?limit=1$")


def add_handshake(httpx_mock: HTTPXMock, token_response):
    httpx_mock.add_response(method="POST", url=TOKEN_URL, json=token_response)
    httpx_mock.add_response(method="GET", url=VERIFY_URL, json={"reservations": {"reservationInfo": []}})


class TestOperaCloudAuthentication:
    @pytest.mark.asyncio
    async def test_client_credentials_exchange(self, opera_config, oauth_token_response, httpx_mock: HTTPXMock):
        add_handshake(httpx_mock, oauth_token_response)
        connector = OperaCloudConnector(opera_config)
        await connector.authenticate()

        token_request, verify_request = httpx_mock.get_requests()
        assert parse_qs(token_request.content.decode()) == {"grant_type": ["client_credentials"]}
        assert token_request.headers["Authorization"].startswith("Basic ")
        assert verify_request.headers["Authorization"] == "Bearer test-token-123"
        assert verify_request.headers["x-hotelid"] == "HOTEL1"

        # The new token must be persisted by the caller
        assert connector.credentials_updated
        assert connector.credentials.access_token.get_secret_value() == "test-token-123"
        assert connector.credentials.expires_at is not None
        await connector.close()

    @pytest.mark.asyncio
    async def test_rejected_client_secret(self, opera_config, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=TOKEN_URL, status_code=401, json={"error": "invalid_client"})
        connector = OperaCloudConnector(opera_config)
        with pytest.raises(AuthenticationError, match="Token exchange rejected"):
            await connector.authenticate()
        assert not connector.is_authenticated
        await connector.close()

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_once_on_401(
        self, opera_config, oauth_token_response, httpx_mock: HTTPXMock, opera_reservation_payload
    ):
        add_handshake(httpx_mock, oauth_token_response)
        httpx_mock.add_response(method="GET", url=f"{RSV}/98765", status_code=401)
        httpx_mock.add_response(method="POST", url=TOKEN_URL, json={**oauth_token_response, "access_token": "tok-2"})
        httpx_mock.add_response(
            method="GET", url=f"{RSV}/98765", json={"reservations": {"reservation": [opera_reservation_payload]}}
        )
        connector = OperaCloudConnector(opera_config)
        await connector.authenticate()
        reservation = await connector.get_reservation("98765")

        assert reservation.external_id == "98765"
        assert httpx_mock.get_requests()[-1].headers["Authorization"] == "Bearer tok-2"
        await connector.close()

    @pytest.mark.asyncio
    async def test_second_401_is_authentication_error(self, opera_config, oauth_token_response, httpx_mock: HTTPXMock):
        add_handshake(httpx_mock, oauth_token_response)
        httpx_mock.add_response(method="GET", url=f"{RSV}/1", status_code=401)
        httpx_mock.add_response(method="POST", url=TOKEN_URL, json=oauth_token_response)
        httpx_mock.add_response(method="GET", url=f"{RSV}/1", status_code=401)
        connector = OperaCloudConnector(opera_config)
        await connector.authenticate()
        with pytest.raises(AuthenticationError):
            await connector.get_reservation("1")
        await connector.close()

    def test_hotel_id_required(self, opera_config):
        config = {**opera_config}
        config.pop("hotel_id")
        config.pop("property_id")
        with pytest.raises(PermanentAdapterError, match="hotel_id"):
            OperaCloudConnector(config)


class TestOperaCloudData:
    @pytest.mark.asyncio
    async def test_reservation_mapping(
        self, opera_config, oauth_token_response, httpx_mock: HTTPXMock, opera_reservation_payload
    ):
        add_handshake(httpx_mock, oauth_token_response)
        httpx_mock.add_response(
            method="GET", url=f"{RSV}/98765", json={"reservations": {"reservation": [opera_reservation_payload]}}
        )
        async with OperaCloudConnector(opera_config) as connector:
            reservation = await connector.get_reservation("98765")

        assert reservation.confirmation_number == "OC-555"
        assert reservation.guest_name == "Anna Müller"
        assert reservation.check_in_date == date(2024, 5, 10)
        assert reservation.total_amount == Decimal("640.00")
        assert reservation.currency == "EUR"
        assert reservation.card_last_four == "5454"
        assert reservation.booking_source == "WEB"
        assert reservation.status == ReservationStatus.CHECKED_IN

    @pytest.mark.asyncio
    async def test_folio_windows(self, opera_config, oauth_token_response, httpx_mock: HTTPXMock):
        add_handshake(httpx_mock, oauth_token_response)
        httpx_mock.add_response(
            method="GET",
            url=re.compile(rf"{re.escape(OPERA_BASE)}/csh/v1/hotels/HOTEL1/reservations/98765/folios\?.*"),
            json={
                "reservationFolioInformation": {
                    "folioWindows": [
                        {
                            "balance": {"amount": 0},
                            "postings": [
                                {
                                    "transactionNo": 501,
                                    "transactionCode": "1000",
                                    "transactionDate": "2024-05-10",
                                    "postedAmount": {"amount": 320, "currencyCode": "EUR"},
                                    "transactionGroup": "ROOM",
                                },
                                {
                                    "transactionNo": 502,
                                    "transactionCode": "9000",
                                    "transactionDate": "2024-05-12",
                                    "postedAmount": {"amount": 320, "currencyCode": "EUR"},
                                    "transactionGroup": "PAYMENT",
                                    "approvalCode": "OK991",
                                    "remark": "MC 5454",
                                },
                            ],
                        }
                    ]
                }
            },
        )
        async with OperaCloudConnector(opera_config) as connector:
            folio = await connector.get_folio("98765")

        assert folio.currency == "EUR"
        assert [item.category for item in folio.items] == [FolioCategory.ROOM, FolioCategory.PAYMENT]
        assert folio.items[1].amount == Decimal("-320.00")
        assert folio.items[1].auth_code == "OK991"
        assert folio.reported_balance == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_attachments_have_no_id_scans(self, opera_config, oauth_token_response, httpx_mock: HTTPXMock):
        add_handshake(httpx_mock, oauth_token_response)
        httpx_mock.add_response(
            method="GET",
            url=f"{RSV}/98765/attachments",
            json={
                "attachments": [
                    {"attachmentId": 11, "attachmentType": "Folio", "fileName": "folio.pdf"},
                    {"attachmentId": 12, "attachmentType": "Passport", "fileName": "passport.jpg"},
                ]
            },
        )
        async with OperaCloudConnector(opera_config) as connector:
            documents = await connector.list_documents("98765")

        assert [(d.kind, d.external_id) for d in documents] == [(DocumentKind.FOLIO, "11")]
        assert DocumentKind.ID_SCAN not in OperaCloudConnector.document_kinds

    @pytest.mark.asyncio
    async def test_push_case_update_as_comment(self, opera_config, oauth_token_response, httpx_mock: HTTPXMock):
        add_handshake(httpx_mock, oauth_token_response)
        httpx_mock.add_response(method="POST", url=f"{RSV}/98765/comments", json={"commentId": "C-1"})
        async with OperaCloudConnector(opera_config) as connector:
            result = await connector.push_case_update("case-7", "submitted", "98765")

        body = json.loads(httpx_mock.get_requests()[-1].content)
        assert body["comment"]["text"] == "Chargeback case case-7: submitted"
        assert result == {"vendor_reference": "C-1", "status": "submitted"}

    @pytest.mark.asyncio
    async def test_push_without_reservation_rejected(self, opera_config):
        connector = OperaCloudConnector(opera_config)
        with pytest.raises(PermanentAdapterError):
            await connector.push_case_update("case-7", "submitted")

    def test_parse_webhook(self, opera_config):
        connector = OperaCloudConnector(opera_config)
        event = connector.parse_webhook(
            {"eventName": "post charge", "primaryKey": 98765, "timestamp": "2024-05-11T09:30:00Z"}
        )
        assert event.event_type == WebhookEventType.FOLIO_UPDATED
        assert event.external_id == "98765"
        assert event.occurred_at.year == 2024
