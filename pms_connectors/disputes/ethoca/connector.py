"""
Ethoca Dispute Network Connector
Mastercard collaborative alerts; status and evidence share the dispute resource
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


class EthocaConnector(BaseDisputeAdapter):
    """Ethoca (Mastercard) dispute network connector"""

    vendor_type = "ETHOCA"
    display_name = "Ethoca"
    card_brand = "MASTERCARD"
    default_base_url = "https://api.ethoca.com/v2"
    webhook_signature_header = "X-Ethoca-Signature"
    webhook_events = ("alert.new", "alert.updated", "dispute.opened", "dispute.closed", "clarity.requested")

    card_keys = ("cardLastFour", "cardLast4", "maskedPan")

    STATUS_MAP = {
        "new": DisputeStatus.PENDING,
        "open": DisputeStatus.PENDING,
        "pending": DisputeStatus.PENDING,
        "investigating": DisputeStatus.IN_REVIEW,
        "under_review": DisputeStatus.IN_REVIEW,
        "in_progress": DisputeStatus.IN_REVIEW,
        "evidence_submitted": DisputeStatus.SUBMITTED,
        "responded": DisputeStatus.SUBMITTED,
        "representment_filed": DisputeStatus.SUBMITTED,
        "won": DisputeStatus.WON,
        "merchant_won": DisputeStatus.WON,
        "resolved_merchant": DisputeStatus.WON,
        "auto_resolved": DisputeStatus.WON,
        "lost": DisputeStatus.LOST,
        "merchant_lost": DisputeStatus.LOST,
        "resolved_issuer": DisputeStatus.LOST,
        "expired": DisputeStatus.EXPIRED,
        "closed": DisputeStatus.RESOLVED,
    }

    STATUS_TO_NETWORK = {
        DisputeStatus.PENDING: "open",
        DisputeStatus.IN_REVIEW: "investigating",
        DisputeStatus.SUBMITTED: "responded",
        DisputeStatus.WON: "resolved_merchant",
        DisputeStatus.LOST: "resolved_issuer",
        DisputeStatus.EXPIRED: "expired",
    }

    REASON_CODES = {
        "4837": ReasonCode(
            "4837",
            ReasonCategory.FRAUD,
            "No Cardholder Authorization",
            ("signed_receipt", "chip_read_log", "avs_cvv_match", "id_verification", "device_fingerprint"),
        ),
        "4853": ReasonCode(
            "4853",
            ReasonCategory.CONSUMER_DISPUTE,
            "Cardholder Dispute - Not as Described or Defective",
            ("service_description", "terms_accepted", "guest_correspondence", "folio", "booking_confirmation"),
        ),
        "4855": ReasonCode(
            "4855",
            ReasonCategory.CONSUMER_DISPUTE,
            "Goods or Services Not Provided",
            ("check_in_confirmation", "folio", "guest_registration_card", "key_card_access_log", "id_verification"),
        ),
        "4860": ReasonCode(
            "4860",
            ReasonCategory.CONSUMER_DISPUTE,
            "Credit Not Processed",
            ("refund_policy", "terms_and_conditions", "credit_issued_proof", "cancellation_policy"),
        ),
        "4863": ReasonCode(
            "4863",
            ReasonCategory.CONSUMER_DISPUTE,
            "Cardholder Does Not Recognize Transaction",
            ("signed_receipt", "booking_confirmation", "guest_registration_card", "folio"),
        ),
    }

    def _categorize_reason(self, code: str) -> ReasonCode:
        # Mastercard chargeback codes run 4800-4899
        if code.isdigit() and 4800 <= int(code) < 4900:
            return ReasonCode(code, ReasonCategory.CONSUMER_DISPUTE, f"Mastercard reason code {code}")
        return super()._categorize_reason(code)

    @log_performance("get_dispute_status")
    async def get_dispute_status(self, dispute_id: str) -> DisputeStatusReport:
        result = await self._request("GET", f"/disputes/{dispute_id}")
        return self._status_report(dispute_id, result)

    @log_performance("submit_evidence")
    async def submit_evidence(self, dispute_id: str, package: EvidencePackage) -> EvidenceSubmission:
        body = self._evidence_body(dispute_id, package)
        body["transactionDetails"]["merchantDescriptor"] = self.config.get("merchant_descriptor") or ""
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
