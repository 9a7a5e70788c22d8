"""
Chargeback Defense PMS Connector Package

One canonical adapter contract over heterogeneous PMS vendor APIs:
- credentials, request plumbing and error classification in contracts
- registry/factory with a YAML capability matrix
- vendor-specific adapters under adapters/
- card-network dispute adapters under disputes/
"""

from .factory import (
    create_adapter,
    get_supported_types,
    is_supported,
    get_metadata,
    get_all_metadata,
    find_vendors_with_feature,
    register_adapter,
    get_registry,
    AdapterRegistry,
    AdapterStatus,
    AdapterMetadata,
    SYNC_INTERVAL_TIERS,
    # Dispute networks
    create_dispute_adapter,
    get_supported_networks,
    is_supported_network,
    get_network_metadata,
    get_dispute_registry,
    DisputeAdapterRegistry,
    DisputeNetworkMetadata,
)

from .contracts import (
    VendorConnection,
    BaseAdapter,
    Capabilities,
    # Errors
    IntegrationError,
    UnsupportedVendorError,
    AuthenticationError,
    InvalidCredentialsError,
    RateLimitedError,
    TransientNetworkError,
    PermanentAdapterError,
    NotFoundError,
    UnsupportedCapabilityError,
    WebhookVerificationError,
    # Enums
    ReservationStatus,
    FolioCategory,
    EvidenceType,
    DocumentKind,
    WebhookEventType,
    DisputeStatus,
    # Domain models
    ReservationCriteria,
    CanonicalReservation,
    FolioLineItem,
    Folio,
    DocumentDescriptor,
    VendorDocument,
    WebhookEvent,
    WebhookSubscription,
    ChargebackAlert,
)

from .dispute_contracts import (
    BaseDisputeAdapter,
    ReasonCategory,
    ReasonCode,
    DisputeStatusReport,
    EvidenceRequirements,
    EvidenceFile,
    EvidencePackage,
    EvidenceSubmission,
    DisputePage,
)

from .credentials import (
    AuthType,
    ApiKeyCredentials,
    OAuth2Credentials,
    BasicCredentials,
    CredentialCipher,
    parse_credentials,
)

from .retry import RetryPolicy, CallResult, call_with_retry

__all__ = [
    # Factory functions
    "create_adapter",
    "get_supported_types",
    "is_supported",
    "get_metadata",
    "get_all_metadata",
    "find_vendors_with_feature",
    "register_adapter",
    "get_registry",
    # Factory classes
    "AdapterRegistry",
    "AdapterStatus",
    "AdapterMetadata",
    "SYNC_INTERVAL_TIERS",
    "create_dispute_adapter",
    "get_supported_networks",
    "is_supported_network",
    "get_network_metadata",
    "get_dispute_registry",
    "DisputeAdapterRegistry",
    "DisputeNetworkMetadata",
    # Contracts
    "VendorConnection",
    "BaseAdapter",
    "BaseDisputeAdapter",
    "Capabilities",
    # Errors
    "IntegrationError",
    "UnsupportedVendorError",
    "AuthenticationError",
    "InvalidCredentialsError",
    "RateLimitedError",
    "TransientNetworkError",
    "PermanentAdapterError",
    "NotFoundError",
    "UnsupportedCapabilityError",
    "WebhookVerificationError",
    # Enums
    "ReservationStatus",
    "FolioCategory",
    "EvidenceType",
    "DocumentKind",
    "WebhookEventType",
    "DisputeStatus",
    "ReasonCategory",
    # Domain models
    "ReservationCriteria",
    "CanonicalReservation",
    "FolioLineItem",
    "Folio",
    "DocumentDescriptor",
    "VendorDocument",
    "WebhookEvent",
    "WebhookSubscription",
    "ChargebackAlert",
    "ReasonCode",
    "DisputeStatusReport",
    "EvidenceRequirements",
    "EvidenceFile",
    "EvidencePackage",
    "EvidenceSubmission",
    "DisputePage",
    # Credentials
    "AuthType",
    "ApiKeyCredentials",
    "OAuth2Credentials",
    "BasicCredentials",
    "CredentialCipher",
    "parse_credentials",
    # Retry
    "RetryPolicy",
    "CallResult",
    "call_with_retry",
]
