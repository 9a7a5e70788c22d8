"""
Error taxonomy shared by adapters, credentials and the retry policy
"""

from typing import List, Optional, Sequence


class IntegrationError(Exception):
    """Base exception for adapter operations"""

    retryable = False

    def __init__(self, message: str, vendor: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.vendor = vendor


class UnsupportedVendorError(IntegrationError):
    """Vendor type has no registered adapter"""

    def __init__(self, vendor_type: str, supported_types: Sequence[str]):
        self.vendor_type = vendor_type
        self.supported_types = list(supported_types)
        super().__init__(
            f'No adapter available for PMS type: "{vendor_type}". '
            f"Supported types: {', '.join(self.supported_types)}"
        )


class AuthenticationError(IntegrationError):
    """Failed to authenticate with the vendor"""

    pass


class InvalidCredentialsError(AuthenticationError):
    """Credential material is missing or malformed"""

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None, vendor: Optional[str] = None):
        super().__init__(message, vendor=vendor)
        self.missing_fields = missing_fields or []


class RateLimitedError(IntegrationError):
    """Vendor throttled the request"""

    retryable = True

    def __init__(self, message: str, retry_after: Optional[float] = None, vendor: Optional[str] = None):
        super().__init__(message, vendor=vendor)
        self.retry_after = retry_after


class TransientNetworkError(IntegrationError):
    """Timeout, transport failure or 5xx"""

    retryable = True


class PermanentAdapterError(IntegrationError):
    """Vendor returned a definitive rejection"""

    def __init__(self, message: str, status_code: Optional[int] = None, vendor: Optional[str] = None):
        super().__init__(message, vendor=vendor)
        self.status_code = status_code


class NotFoundError(PermanentAdapterError):
    """Resource not found in PMS"""

    pass


class UnsupportedCapabilityError(PermanentAdapterError):
    """The vendor does not offer this capability"""

    def __init__(self, capability: str, vendor: Optional[str] = None):
        super().__init__(f"{vendor or 'adapter'} does not support {capability}", vendor=vendor)
        self.capability = capability


class WebhookVerificationError(IntegrationError):
    """Webhook payload is unsigned or its signature is invalid"""

    pass
