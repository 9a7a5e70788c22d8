"""
Shared test fixtures for connector tests
Uses pytest-httpx for mocking HTTP calls
"""

from typing import Any, Dict

import pytest

AUTOCLERK_BASE = "https://api.autoclerk.com/v1"
OPERA_BASE = "https://api.oracle-hospitality.com"
CLOUDBEDS_BASE = "https://api.cloudbeds.com/api/v1.2"
MEWS_BASE = "https://api.mews.com"
PROTEL_BASE = "https://api.protel.net/v2"
VERIFI_BASE = "https://api.verifi.com/v3"
ETHOCA_BASE = "https://api.ethoca.com/v2"


@pytest.fixture
def oauth_token_response() -> Dict[str, Any]:
    """Standard OAuth token response"""
    return {
        "access_token": "test-token-123",
        "token_type": "Bearer",
        "expires_in": 3600,
        "scope": "read write",
    }


@pytest.fixture
def autoclerk_config() -> Dict[str, Any]:
    return {
        "property_id": "prop-1",
        "credentials": {"api_key": "ak-live-123", "property_code": "HTL01"},
    }


@pytest.fixture
def opera_config() -> Dict[str, Any]:
    return {
        "property_id": "prop-1",
        "hotel_id": "HOTEL1",
        "credentials": {"client_id": "opera-client", "client_secret": "opera-secret"},
    }


@pytest.fixture
def cloudbeds_config() -> Dict[str, Any]:
    return {
        "property_id": "prop-1",
        "credentials": {
            "client_id": "cb-client",
            "client_secret": "cb-secret",
            "grant_type": "authorization_code",
            "authorization_code": "one-time-code",
            "redirect_uri": "https://app.example.com/oauth/callback",
        },
    }


@pytest.fixture
def mews_config() -> Dict[str, Any]:
    return {
        "property_id": "prop-1",
        "credentials": {"api_key": "access-token-1", "api_secret": "client-token-1", "placement": "query"},
    }


@pytest.fixture
def protel_config() -> Dict[str, Any]:
    return {
        "property_id": "prop-1",
        "credentials": {"username": "api-user", "password": "s3cret-pass", "hotel_code": "PRT01"},
    }


@pytest.fixture
def verifi_config() -> Dict[str, Any]:
    return {
        "property_id": "prop-1",
        "merchant_id": "M-100",
        "card_acceptor_id": "CA-200",
        "credentials": {"api_key": "vk-live-1"},
    }


@pytest.fixture
def ethoca_config() -> Dict[str, Any]:
    return {
        "property_id": "prop-1",
        "merchant_id": "M-300",
        "merchant_descriptor": "GRAND HOTEL NYC",
        "credentials": {"api_key": "ek-live-1"},
    }


@pytest.fixture
def vendor_configs(autoclerk_config, opera_config, cloudbeds_config, mews_config, protel_config):
    return {
        "AUTOCLERK": autoclerk_config,
        "OPERA_CLOUD": opera_config,
        "CLOUDBEDS": cloudbeds_config,
        "MEWS": mews_config,
        "PROTEL": protel_config,
    }


@pytest.fixture
def autoclerk_reservation_response() -> Dict[str, Any]:
    """Mock AutoClerk reservation"""
    return {
        "id": "RES-1001",
        "confirmationNumber": "AC123456",
        "guest": {
            "firstName": "John",
            "lastName": "Smith",
            "email": "john.smith@example.com",
            "phone": "+15555550100",
        },
        "arrivalDate": "2024-03-01",
        "departureDate": "2024-03-04",
        "actualArrival": "2024-03-01T15:20:00Z",
        "actualDeparture": "2024-03-04T10:05:00Z",
        "roomNumber": "412",
        "roomType": "KING",
        "rateCode": "BAR",
        "rateAmount": "149.00",
        "totalAmount": "512.37",
        "currency": "USD",
        "payment": {"cardType": "VISA", "cardNumberMasked": "XXXXXXXXXXXX4242"},
        "source": "Direct",
        "status": "CHECKED_OUT",
        "flagged": False,
        "lastModified": "2024-03-04T10:06:00Z",
    }


@pytest.fixture
def autoclerk_folio_response() -> Dict[str, Any]:
    return {
        "currency": "USD",
        "balance": "0.00",
        "transactions": [
            {"id": 1, "postedAt": "2024-03-01", "type": "ROOM", "description": "Room 412", "amount": "149.00"},
            {"id": 2, "postedAt": "2024-03-01", "type": "TAX", "description": "Occupancy tax", "amount": "22.35"},
            {"id": 3, "postedAt": "2024-03-02", "type": "FNB", "description": "Restaurant", "amount": "41.02"},
            {
                "id": 4,
                "postedAt": "2024-03-04",
                "type": "PAYMENT",
                "description": "Visa 4242",
                "amount": "212.37",
                "authorizationCode": "A1B2C3",
            },
        ],
    }


@pytest.fixture
def autoclerk_documents_response() -> Dict[str, Any]:
    return {
        "documents": [
            {
                "id": "DOC-1",
                "type": "REGISTRATION_CARD",
                "fileName": "regcard.pdf",
                "contentType": "application/pdf",
                "createdAt": "2024-03-01T15:21:00Z",
            },
            {
                "id": "DOC-2",
                "type": "ID_SCAN",
                "fileName": "id.jpg",
                "contentType": "image/jpeg",
                "createdAt": "2024-03-01T15:22:00Z",
            },
            {"id": "DOC-3", "type": "MARKETING_CONSENT", "fileName": "consent.pdf"},
        ]
    }


@pytest.fixture
def opera_reservation_payload() -> Dict[str, Any]:
    return {
        "reservationIdList": [
            {"type": "Reservation", "id": "98765"},
            {"type": "Confirmation", "id": "OC-555"},
        ],
        "roomStay": {
            "arrivalDate": "2024-05-10",
            "departureDate": "2024-05-12",
            "roomId": "1203",
            "roomType": "DLX",
            "ratePlanCode": "RACK",
            "rateAmount": {"amount": 320, "currencyCode": "EUR"},
            "total": {"amount": 640, "currencyCode": "EUR"},
        },
        "reservationGuest": {"givenName": "Anna", "surname": "Müller", "email": "anna@example.de"},
        "reservationPaymentMethod": {"paymentCard": {"cardType": "MC", "cardNumberLast4Digits": "5454"}},
        "sourceOfSale": {"sourceCode": "WEB"},
        "reservationStatus": "InHouse",
        "lastModifyDateTime": "2024-05-10T18:00:00Z",
    }
