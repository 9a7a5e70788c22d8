"""
Verifi Dispute Network Connector
Visa alert and dispute API keyed by merchant and card acceptor id
"""

from typing import Any, Dict

from ...contracts import DisputeStatus
from ...dispute_contracts import (
    BaseDisputeAdapter,
    DisputeStatusReport,
    EvidencePackage,
    EvidenceSubmission,
    ReasonCategory,
    ReasonCode,
)
from ...utils.logging import log_performance


class VerifiConnector(BaseDisputeAdapter):
    """
    Verifi (Visa) dispute network connector.

    Extra config keys:
        card_acceptor_id: Visa card acceptor id for the property
    """

    vendor_type = "VERIFI"
    display_name = "Verifi"
    card_brand = "VISA"
    default_base_url = "https://api.verifi.com/v3"
    webhook_signature_header = "X-Verifi-Signature"
    required_config = ("merchant_id", "card_acceptor_id")
    webhook_events = ("alert.created", "alert.updated", "dispute.created", "dispute.resolved", "rdr.resolved")

    id_keys = ("disputeId", "alertId", "id")
    reason_keys = ("reasonCode", "conditionCode")
    card_keys = ("cardLastFour", "cardLast4", "maskedCardNumber")

    STATUS_MAP = {
        "new": DisputeStatus.PENDING,
        "pending": DisputeStatus.PENDING,
        "under_review": DisputeStatus.IN_REVIEW,
        "in_progress": DisputeStatus.IN_REVIEW,
        "evidence_submitted": DisputeStatus.SUBMITTED,
        "responded": DisputeStatus.SUBMITTED,
        "representment_filed": DisputeStatus.SUBMITTED,
        "won": DisputeStatus.WON,
        "merchant_won": DisputeStatus.WON,
        "lost": DisputeStatus.LOST,
        "merchant_lost": DisputeStatus.LOST,
        "expired": DisputeStatus.EXPIRED,
        "closed": DisputeStatus.RESOLVED,
    }

    STATUS_TO_NETWORK = {
        DisputeStatus.PENDING: "pending",
        DisputeStatus.IN_REVIEW: "under_review",
        DisputeStatus.SUBMITTED: "responded",
        DisputeStatus.WON: "won",
        DisputeStatus.LOST: "lost",
        DisputeStatus.EXPIRED: "expired",
    }

    REASON_CODES = {
        "10.1": ReasonCode(
            "10.1",
            ReasonCategory.FRAUD,
            "EMV Liability Shift Counterfeit Fraud",
            ("emv_chip_transaction_log", "terminal_capability"),
        ),
        "10.2": ReasonCode(
            "10.2",
            ReasonCategory.FRAUD,
            "EMV Liability Shift Non-Counterfeit Fraud",
            ("emv_chip_transaction_log", "terminal_capability"),
        ),
        "10.3": ReasonCode(
            "10.3",
            ReasonCategory.FRAUD,
            "Other Fraud - Card-Present Environment",
            ("signed_receipt", "chip_read_log", "surveillance"),
        ),
        "10.4": ReasonCode(
            "10.4",
            ReasonCategory.FRAUD,
            "Other Fraud - Card-Absent Environment",
            ("avs_cvv_match", "device_fingerprint", "ip_address_match", "prior_undisputed_transactions"),
        ),
        "10.5": ReasonCode(
            "10.5",
            ReasonCategory.FRAUD,
            "Visa Fraud Monitoring Program",
            ("transaction_receipt", "proof_of_delivery"),
        ),
        "13.1": ReasonCode(
            "13.1",
            ReasonCategory.CONSUMER_DISPUTE,
            "Merchandise/Services Not Received",
            ("check_in_confirmation", "folio", "guest_registration_card", "id_verification"),
        ),
        "13.2": ReasonCode(
            "13.2",
            ReasonCategory.CONSUMER_DISPUTE,
            "Cancelled Recurring Transaction",
            ("terms_and_conditions", "cancellation_policy", "signed_agreement"),
        ),
        "13.3": ReasonCode(
            "13.3",
            ReasonCategory.CONSUMER_DISPUTE,
            "Not as Described or Defective Merchandise/Services",
            ("service_description", "terms_accepted", "guest_correspondence", "folio"),
        ),
        "13.6": ReasonCode(
            "13.6",
            ReasonCategory.CONSUMER_DISPUTE,
            "Credit Not Processed",
            ("refund_policy", "terms_and_conditions", "credit_issued_proof"),
        ),
        "13.7": ReasonCode(
            "13.7",
            ReasonCategory.CONSUMER_DISPUTE,
            "Cancelled Merchandise/Services",
            ("cancellation_policy", "no_show_documentation", "terms_accepted", "folio", "reservation_confirmation"),
        ),
    }

    # Visa groups reason codes by their leading number
    PREFIX_CATEGORIES = {
        "10.": ReasonCategory.FRAUD,
        "11.": ReasonCategory.AUTHORIZATION,
        "12.": ReasonCategory.PROCESSING_ERROR,
        "13.": ReasonCategory.CONSUMER_DISPUTE,
    }

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.card_acceptor_id = str(config["card_acceptor_id"])

    def _auth_headers(self) -> Dict[str, str]:
        headers = super()._auth_headers()
        headers["X-Card-Acceptor-ID"] = self.card_acceptor_id
        return headers

    def _categorize_reason(self, code: str) -> ReasonCode:
        for prefix, category in self.PREFIX_CATEGORIES.items():
            if code.startswith(prefix):
                return ReasonCode(code, category, f"Visa reason code {code}")
        return super()._categorize_reason(code)

    @log_performance("get_dispute_status")
    async def get_dispute_status(self, dispute_id: str) -> DisputeStatusReport:
        result = await self._request("GET", f"/disputes/{dispute_id}/status")
        return self._status_report(dispute_id, result)

    @log_performance("submit_evidence")
    async def submit_evidence(self, dispute_id: str, package: EvidencePackage) -> EvidenceSubmission:
        body = self._evidence_body(dispute_id, package)
        body["cardAcceptorId"] = self.card_acceptor_id
        result = await self._request("POST", f"/disputes/{dispute_id}/evidence", json=body)
        return self._submission(dispute_id, result)

    @log_performance("push_case_status")
    async def push_case_status(self, dispute_id: str, status: DisputeStatus, notes: str = "") -> Dict[str, Any]:
        network_status = self.status_for_network(status)
        result = await self._request(
            "POST",
            f"/disputes/{dispute_id}/evidence",
            json={
                "disputeId": dispute_id,
                "merchantId": self.merchant_id,
                "statusUpdate": network_status,
                "notes": notes,
            },
        )
        return {"dispute_id": dispute_id, "status": network_status, "message": result.get("message")}
