"""
Webhook security for vendor callbacks
Size and content-type checks, the vendor's own signature scheme, then the rate limit
"""

import hashlib
import hmac
import time
from collections import deque
from typing import Deque, Dict, List, Mapping, Optional, Type

from pydantic import BaseModel, Field

from pms_connectors.contracts import VendorConnection, WebhookVerificationError, header_value
from pms_connectors.utils.logging import get_safe_logger

logger = get_safe_logger("defense_sync.webhook_security")


class WebhookRejectedError(WebhookVerificationError):
    """Delivery refused for its size, content type or rate"""

    def __init__(self, message: str, status_code: int, vendor: Optional[str] = None):
        super().__init__(message, vendor=vendor)
        self.status_code = status_code


class WebhookConfig(BaseModel):
    """Configuration for webhook security"""

    max_payload_size: int = Field(default=1048576)  # 1MB
    allowed_content_types: List[str] = Field(default=["application/json"])
    max_requests_per_minute: int = Field(default=120, ge=1)


def sign_payload(secret: str, payload: bytes) -> str:
    """HMAC-SHA256 hex digest in the form vendors send it"""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


class WebhookVerifier:
    """Rejects oversized, mistyped, flooding or badly signed deliveries"""

    def __init__(self, config: Optional[WebhookConfig] = None):
        self.config = config or WebhookConfig()
        self._recent: Dict[str, Deque[float]] = {}

    def verify(
        self,
        integration_id: str,
        adapter_class: Type[VendorConnection],
        payload: bytes,
        headers: Mapping[str, str],
        secret: Optional[str],
    ) -> None:
        """
        Verify one delivery.

        Raises:
            WebhookRejectedError: size, content type or rate limit violated
            WebhookVerificationError: unsigned payload or bad signature
        """
        vendor = adapter_class.vendor_type
        self._check_payload_size(payload, vendor)
        self._check_content_type(headers, vendor)

        if not adapter_class.supports_webhooks:
            raise WebhookVerificationError(f"{vendor} does not deliver webhooks", vendor=vendor)
        if not secret:
            logger.warning("webhook_secret_missing", integration_id=integration_id, vendor=vendor)
            raise WebhookVerificationError("No webhook secret configured for this integration", vendor=vendor)
        if not adapter_class.verify_webhook_signature(payload, headers, secret):
            logger.warning(
                "webhook_signature_invalid",
                integration_id=integration_id,
                vendor=vendor,
                header=adapter_class.webhook_signature_header,
            )
            raise WebhookVerificationError("Invalid or missing webhook signature", vendor=vendor)
        # only authenticated deliveries count against the sender's budget
        self._check_rate(integration_id, vendor)
        logger.debug("webhook_verified", integration_id=integration_id, vendor=vendor)

    def _check_payload_size(self, payload: bytes, vendor: str) -> None:
        if len(payload) > self.config.max_payload_size:
            logger.warning("webhook_payload_too_large", size=len(payload), max_size=self.config.max_payload_size)
            raise WebhookRejectedError("Payload too large", status_code=413, vendor=vendor)

    def _check_content_type(self, headers: Mapping[str, str], vendor: str) -> None:
        content_type = (header_value(headers, "Content-Type") or "").split(";")[0].strip().lower()
        if content_type not in self.config.allowed_content_types:
            logger.warning(
                "webhook_invalid_content_type", content_type=content_type, allowed=self.config.allowed_content_types
            )
            raise WebhookRejectedError(f"Content type '{content_type}' not allowed", status_code=415, vendor=vendor)

    def _check_rate(self, integration_id: str, vendor: str) -> None:
        now = time.monotonic()
        window = self._recent.setdefault(integration_id, deque())
        while window and now - window[0] > 60:
            window.popleft()
        if len(window) >= self.config.max_requests_per_minute:
            logger.warning("webhook_rate_limited", integration_id=integration_id, vendor=vendor)
            raise WebhookRejectedError("Too many webhook deliveries", status_code=429, vendor=vendor)
        window.append(now)
