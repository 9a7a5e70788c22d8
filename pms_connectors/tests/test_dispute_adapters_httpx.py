"""
Unit tests for the Verifi and Ethoca dispute network connectors with HTTPX mocking
"""

import base64
import hashlib
import hmac
import json
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from pytest_httpx import HTTPXMock

from pms_connectors.contracts import (
    AuthenticationError,
    DisputeStatus,
    InvalidCredentialsError,
    NotFoundError,
    PermanentAdapterError,
    UnsupportedVendorError,
    WebhookEventType,
)
from pms_connectors.dispute_contracts import EvidenceFile, EvidencePackage, ReasonCategory
from pms_connectors.disputes.ethoca.connector import EthocaConnector
from pms_connectors.disputes.verifi.connector import VerifiConnector
from pms_connectors.factory import (
    DisputeAdapterRegistry,
    create_dispute_adapter,
    get_network_metadata,
    get_supported_networks,
    get_supported_types,
    is_supported_network,
)

from .fixtures import ETHOCA_BASE, VERIFI_BASE


def verifi_alert(**overrides):
    alert = {
        "alertId": "ALR-555",
        "disputeId": "VD-9001",
        "amount": "512.37",
        "currency": "USD",
        "maskedCardNumber": "XXXXXXXXXXXX4242",
        "cardholderName": "John Smith",
        "conditionCode": "13.1",
        "status": "under_review",
        "transactionDate": "2024-03-03",
        "transactionId": "TXN-778",
        "responseDeadline": "2024-04-02",
    }
    alert.update(overrides)
    return alert


@pytest_asyncio.fixture
async def connected_verifi(verifi_config, httpx_mock: HTTPXMock):
    httpx_mock.add_response(method="GET", url=f"{VERIFI_BASE}/ping", json={"ok": True})
    connector = VerifiConnector(verifi_config)
    await connector.authenticate()
    yield connector
    await connector.close()


@pytest_asyncio.fixture
async def connected_ethoca(ethoca_config, httpx_mock: HTTPXMock):
    httpx_mock.add_response(method="GET", url=f"{ETHOCA_BASE}/ping", json={"ok": True})
    connector = EthocaConnector(ethoca_config)
    await connector.authenticate()
    yield connector
    await connector.close()


class TestVerifiConnectorWithHTTPX:
    @pytest.mark.asyncio
    async def test_authenticate_sends_merchant_headers(self, verifi_config, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="GET", url=f"{VERIFI_BASE}/ping", json={"ok": True})
        connector = VerifiConnector(verifi_config)
        await connector.authenticate()

        request = httpx_mock.get_requests()[0]
        assert request.headers["X-API-Key"] == "vk-live-1"
        assert request.headers["X-Merchant-ID"] == "M-100"
        assert request.headers["X-Card-Acceptor-ID"] == "CA-200"
        await connector.close()

    @pytest.mark.asyncio
    async def test_rejected_key_raises_authentication_error(self, verifi_config, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="GET", url=f"{VERIFI_BASE}/ping", status_code=403)
        connector = VerifiConnector(verifi_config)
        with pytest.raises(AuthenticationError):
            await connector.authenticate()
        await connector.close()

    def test_merchant_identifiers_are_required(self, verifi_config):
        del verifi_config["card_acceptor_id"]
        verifi_config["merchant_id"] = ""

        with pytest.raises(InvalidCredentialsError) as exc_info:
            VerifiConnector(verifi_config)

        assert exc_info.value.missing_fields == ["merchant_id", "card_acceptor_id"]

    def test_receive_dispute_normalizes_alert(self, verifi_config):
        alert = VerifiConnector(verifi_config).receive_dispute(verifi_alert())

        assert alert.alert_id == "VD-9001"
        assert alert.source == "VERIFI"
        assert alert.amount == Decimal("512.37")
        assert alert.card_brand == "VISA"
        assert alert.card_last_four == "4242"
        assert alert.cardholder_name == "John Smith"
        assert alert.reason_code == "13.1"
        assert alert.reason_category == "consumer_dispute"
        assert alert.status == DisputeStatus.IN_REVIEW
        assert alert.transaction_date == date(2024, 3, 3)
        assert alert.due_date == date(2024, 4, 2)
        assert alert.pre_chargeback is True

    def test_receive_dispute_without_alert_is_not_pre_chargeback(self, verifi_config):
        payload = verifi_alert(alertId=None, status="closed", conditionCode=None, reasonCode="10.4")
        alert = VerifiConnector(verifi_config).receive_dispute(payload)

        assert alert.pre_chargeback is False
        assert alert.status == DisputeStatus.RESOLVED
        assert alert.reason_category == "fraud"

    def test_receive_dispute_without_an_id_is_permanent(self, verifi_config):
        connector = VerifiConnector(verifi_config)
        with pytest.raises(PermanentAdapterError):
            connector.receive_dispute(verifi_alert(alertId=None, disputeId=None))

    def test_reason_codes(self, verifi_config):
        connector = VerifiConnector(verifi_config)

        assert connector.normalize_reason_code("13.7").description == "Cancelled Merchandise/Services"
        assert "folio" in connector.normalize_reason_code("13.1").evidence_types
        assert connector.normalize_reason_code("11.3").category == ReasonCategory.AUTHORIZATION
        assert connector.normalize_reason_code("12.6").category == ReasonCategory.PROCESSING_ERROR
        assert connector.normalize_reason_code("99").category == ReasonCategory.UNKNOWN
        assert connector.normalize_reason_code(None).code == "UNKNOWN"

    def test_unknown_status_is_pending(self, verifi_config):
        connector = VerifiConnector(verifi_config)
        assert connector.normalize_status("MERCHANT_WON") == DisputeStatus.WON
        assert connector.normalize_status("archived") == DisputeStatus.PENDING
        assert connector.normalize_status(None) == DisputeStatus.PENDING

    @pytest.mark.asyncio
    async def test_fetch_disputes_pages_alerts(self, connected_verifi, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=f"{VERIFI_BASE}/alerts?status=pending&page=1&limit=100",
            json={
                "alerts": [verifi_alert(), verifi_alert(disputeId="VD-9002", alertId="ALR-556")],
                "totalCount": 3,
                "page": 1,
                "totalPages": 2,
            },
        )

        page = await connected_verifi.fetch_disputes(limit=500)

        assert [alert.alert_id for alert in page.alerts] == ["VD-9001", "VD-9002"]
        assert (page.total, page.page, page.has_more) == (3, 1, True)

    @pytest.mark.asyncio
    async def test_get_dispute_status(self, connected_verifi, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=f"{VERIFI_BASE}/disputes/VD-9001/status",
            json={"status": "merchant_won", "updatedAt": "2024-04-10T12:00:00Z", "outcome": "reversed"},
        )

        report = await connected_verifi.get_dispute_status("VD-9001")

        assert report.status == DisputeStatus.WON
        assert report.network_status == "merchant_won"
        assert report.outcome == "reversed"
        assert report.updated_at.year == 2024

    @pytest.mark.asyncio
    async def test_unknown_dispute_raises_not_found(self, connected_verifi, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="GET", url=f"{VERIFI_BASE}/disputes/VD-404/status", status_code=404)

        with pytest.raises(NotFoundError):
            await connected_verifi.get_dispute_status("VD-404")

    @pytest.mark.asyncio
    async def test_submit_evidence_sends_documents_and_stay(self, connected_verifi, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST",
            url=f"{VERIFI_BASE}/disputes/VD-9001/evidence",
            json={"submissionId": "SUB-1", "status": "received"},
        )
        package = EvidencePackage(
            files=[EvidenceFile(file_name="folio.pdf", content=b"%PDF-1.7 folio", document_type="folio")],
            guest_name="John Smith",
            confirmation_number="AC123456",
            check_in_date=date(2024, 3, 1),
            check_out_date=date(2024, 3, 4),
            transaction_amount=Decimal("512.37"),
        )

        submission = await connected_verifi.submit_evidence("VD-9001", package)

        assert (submission.submission_id, submission.status) == ("SUB-1", "received")
        body = json.loads(httpx_mock.get_requests()[-1].content)
        assert body["cardAcceptorId"] == "CA-200"
        assert body["merchantId"] == "M-100"
        assert base64.b64decode(body["documents"][0]["data"]) == b"%PDF-1.7 folio"
        assert body["documents"][0]["description"] == "Evidence document 1"
        assert body["transactionDetails"]["checkInDate"] == "2024-03-01"
        assert body["transactionDetails"]["transactionAmount"] == "512.37"
        assert body["idempotencyKey"].startswith("verifi-evidence-")

    @pytest.mark.asyncio
    async def test_push_case_status_uses_network_vocabulary(self, connected_verifi, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST", url=f"{VERIFI_BASE}/disputes/VD-9001/evidence", json={"message": "Status updated"}
        )

        result = await connected_verifi.push_case_status("VD-9001", DisputeStatus.SUBMITTED, notes="Folio sent")

        assert result == {"dispute_id": "VD-9001", "status": "responded", "message": "Status updated"}
        body = json.loads(httpx_mock.get_requests()[-1].content)
        assert (body["statusUpdate"], body["notes"]) == ("responded", "Folio sent")

    @pytest.mark.asyncio
    async def test_evidence_requirements_merge_network_and_reason(self, connected_verifi, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=f"{VERIFI_BASE}/disputes/VD-9001",
            json={"reasonCode": "13.1", "requiredEvidenceTypes": ["folio", "signed_receipt"], "dueDate": "2024-04-02"},
        )

        requirements = await connected_verifi.get_evidence_requirements("VD-9001")

        assert requirements.required_types[:2] == ["folio", "signed_receipt"]
        assert requirements.required_types.count("folio") == 1
        assert "guest_registration_card" in requirements.required_types
        assert requirements.reason.code == "13.1"
        assert requirements.due_date == date(2024, 4, 2)

    @pytest.mark.asyncio
    async def test_subscribe_webhook_generates_secret(self, connected_verifi, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=f"{VERIFI_BASE}/webhooks", json={"webhookId": "WH-7"})

        subscription = await connected_verifi.subscribe_webhook("https://app.example.com/hooks/verifi")

        body = json.loads(httpx_mock.get_requests()[-1].content)
        assert subscription.subscription_id == "WH-7"
        assert subscription.events == [WebhookEventType.CHARGEBACK_ALERT]
        assert body["secret"] == subscription.secret
        assert len(subscription.secret) == 64
        assert body["events"] == list(VerifiConnector.webhook_events)

    def test_webhook_signature_and_parse(self, verifi_config):
        body = json.dumps(
            {"event": "alert.created", "timestamp": "2024-03-20T09:00:00Z", "data": verifi_alert()}
        ).encode()
        signature = hmac.new(b"whsec-verifi", body, hashlib.sha256).hexdigest()

        assert VerifiConnector.verify_webhook_signature(body, {"x-verifi-signature": signature}, "whsec-verifi")
        assert not VerifiConnector.verify_webhook_signature(body, {"X-Ethoca-Signature": signature}, "whsec-verifi")

        event = VerifiConnector(verifi_config).parse_webhook(json.loads(body))
        assert event.event_type == WebhookEventType.CHARGEBACK_ALERT
        assert event.external_id == "VD-9001"
        assert event.alert.card_last_four == "4242"

    def test_unknown_webhook_event_is_permanent(self, verifi_config):
        with pytest.raises(PermanentAdapterError):
            VerifiConnector(verifi_config).parse_webhook({"event": "order.insight", "data": verifi_alert()})


class TestEthocaConnectorWithHTTPX:
    @pytest.mark.asyncio
    async def test_authenticate_sends_merchant_header(self, ethoca_config, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="GET", url=f"{ETHOCA_BASE}/ping", json={"ok": True})
        connector = EthocaConnector(ethoca_config)
        await connector.authenticate()

        request = httpx_mock.get_requests()[0]
        assert request.headers["X-API-Key"] == "ek-live-1"
        assert request.headers["X-Merchant-ID"] == "M-300"
        assert "X-Card-Acceptor-ID" not in request.headers
        await connector.close()

    def test_receive_dispute_prefers_alert_id(self, ethoca_config):
        alert = EthocaConnector(ethoca_config).receive_dispute(
            {
                "alertId": "ETH-1",
                "disputeId": "MC-1",
                "transactionAmount": 149,
                "maskedPan": "5555********4444",
                "reasonCode": "4855",
                "status": "investigating",
            }
        )

        assert alert.alert_id == "ETH-1"
        assert alert.amount == Decimal("149.00")
        assert alert.card_brand == "MASTERCARD"
        assert alert.card_last_four == "4444"
        assert alert.reason_category == "consumer_dispute"
        assert alert.status == DisputeStatus.IN_REVIEW

    def test_reason_codes(self, ethoca_config):
        connector = EthocaConnector(ethoca_config)

        assert connector.normalize_reason_code("4837").category == ReasonCategory.FRAUD
        assert connector.normalize_reason_code("4808").category == ReasonCategory.CONSUMER_DISPUTE
        assert connector.normalize_reason_code("13.1").category == ReasonCategory.UNKNOWN

    @pytest.mark.asyncio
    async def test_get_dispute_status_reads_dispute_resource(self, connected_ethoca, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=f"{ETHOCA_BASE}/disputes/MC-1",
            json={"status": "resolved_issuer", "resolvedAt": "2024-04-12"},
        )

        report = await connected_ethoca.get_dispute_status("MC-1")

        assert report.status == DisputeStatus.LOST
        assert report.outcome_date == date(2024, 4, 12)

    @pytest.mark.asyncio
    async def test_submit_evidence_carries_descriptor(self, connected_ethoca, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=f"{ETHOCA_BASE}/disputes/MC-1/evidence", json={"id": 42})

        submission = await connected_ethoca.submit_evidence("MC-1", EvidencePackage(notes="Guest stayed 3 nights"))

        body = json.loads(httpx_mock.get_requests()[-1].content)
        assert submission.submission_id == "42"
        assert submission.status == "submitted"
        assert body["transactionDetails"]["merchantDescriptor"] == "GRAND HOTEL NYC"
        assert body["merchantNotes"] == "Guest stayed 3 nights"
        assert "cardAcceptorId" not in body

    @pytest.mark.asyncio
    async def test_push_case_status(self, connected_ethoca, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=f"{ETHOCA_BASE}/disputes/MC-1/evidence", json={})

        won = await connected_ethoca.push_case_status("MC-1", DisputeStatus.WON)
        assert won["status"] == "resolved_merchant"

        httpx_mock.add_response(method="POST", url=f"{ETHOCA_BASE}/disputes/MC-1/evidence", json={})
        resolved = await connected_ethoca.push_case_status("MC-1", DisputeStatus.RESOLVED)
        assert resolved["status"] == "resolved"

    def test_webhook_uses_ethoca_header(self, ethoca_config):
        body = b'{"event": "alert.new", "data": {"alertId": "ETH-2"}}'
        signature = hmac.new(b"whsec-ethoca", body, hashlib.sha256).hexdigest()

        assert EthocaConnector.verify_webhook_signature(body, {"X-Ethoca-Signature": signature}, "whsec-ethoca")
        event = EthocaConnector(ethoca_config).parse_webhook(json.loads(body))
        assert event.alert.alert_id == "ETH-2"
        assert event.alert.pre_chargeback is True


class TestDisputeAdapterRegistry:
    def test_discovers_networks_separately_from_pms_vendors(self):
        registry = DisputeAdapterRegistry()

        assert registry.supported_types() == ["ETHOCA", "VERIFI"]
        assert get_supported_networks() == ["ETHOCA", "VERIFI"]
        assert "VERIFI" not in get_supported_types()

    def test_metadata_merges_capability_matrix(self):
        metadata = get_network_metadata("verifi")

        assert metadata["display_name"] == "Verifi (Visa)"
        assert metadata["card_brand"] == "VISA"
        assert metadata["status"] == "available"
        assert "13.1" in metadata["reason_codes"]
        assert "dispute.resolved" in metadata["webhook_events"]
        assert get_network_metadata("amex") is None

    def test_create_is_case_insensitive(self, ethoca_config):
        assert is_supported_network(" ethoca ")
        adapter = create_dispute_adapter("Ethoca", ethoca_config)
        assert isinstance(adapter, EthocaConnector)

    def test_unknown_network_raises(self, verifi_config):
        with pytest.raises(UnsupportedVendorError):
            create_dispute_adapter("MERLINK", verifi_config)

    def test_missing_credentials_raise(self, verifi_config):
        del verifi_config["credentials"]
        with pytest.raises(InvalidCredentialsError):
            create_dispute_adapter("VERIFI", verifi_config)
