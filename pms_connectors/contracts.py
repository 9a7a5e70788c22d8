"""
Chargeback Defense PMS Connector Contracts
Uniform capability contract that every PMS adapter must implement
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import httpx
from dateutil import parser as date_parser

from .credentials import (
    ApiKeyCredentials,
    AuthType,
    BasicCredentials,
    Credentials,
    CredentialPlacement,
    OAuth2Credentials,
    OAuth2GrantType,
    parse_credentials,
)
from .errors import (
    AuthenticationError,
    IntegrationError,
    InvalidCredentialsError,
    NotFoundError,
    PermanentAdapterError,
    RateLimitedError,
    TransientNetworkError,
    UnsupportedCapabilityError,
    UnsupportedVendorError,
    WebhookVerificationError,
)
from .utils.logging import get_safe_logger, sanitize_url


# Canonical vocabularies
class ReservationStatus(str, Enum):
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class FolioCategory(str, Enum):
    ROOM = "ROOM"
    TAX_FEE = "TAX_FEE"
    FOOD_BEVERAGE = "FOOD_BEVERAGE"
    INCIDENTAL = "INCIDENTAL"
    PAYMENT = "PAYMENT"
    ADJUSTMENT = "ADJUSTMENT"
    OTHER = "OTHER"


class EvidenceType(str, Enum):
    ID_SCAN = "ID_SCAN"
    AUTH_SIGNATURE = "AUTH_SIGNATURE"
    CHECKOUT_SIGNATURE = "CHECKOUT_SIGNATURE"
    FOLIO = "FOLIO"
    RESERVATION_CONFIRMATION = "RESERVATION_CONFIRMATION"
    CANCELLATION_POLICY = "CANCELLATION_POLICY"
    KEY_CARD_LOG = "KEY_CARD_LOG"
    CCTV_FOOTAGE = "CCTV_FOOTAGE"
    CORRESPONDENCE = "CORRESPONDENCE"
    INCIDENT_REPORT = "INCIDENT_REPORT"
    DAMAGE_PHOTOS = "DAMAGE_PHOTOS"
    POLICE_REPORT = "POLICE_REPORT"
    NO_SHOW_DOCUMENTATION = "NO_SHOW_DOCUMENTATION"
    ARBITRATION_DOCUMENT = "ARBITRATION_DOCUMENT"
    OTHER = "OTHER"


class DocumentKind(str, Enum):
    """Document kinds an adapter can fetch, in evidence plan order"""

    FOLIO = "folio"
    AUTH_SIGNATURE = "auth_signature"
    CHECKOUT_SIGNATURE = "checkout_signature"
    PAYMENT_RECEIPT = "payment_receipt"
    ID_SCAN = "id_scan"
    BOOKING_CONFIRMATION = "booking_confirmation"


class WebhookEventType(str, Enum):
    RESERVATION_CREATED = "reservation_created"
    RESERVATION_UPDATED = "reservation_updated"
    FOLIO_UPDATED = "folio_updated"
    CHARGEBACK_ALERT = "chargeback_alert"


class DisputeStatus(str, Enum):
    """Case status shared with dispute networks"""

    PENDING = "pending"
    IN_REVIEW = "in_review"
    SUBMITTED = "submitted"
    WON = "won"
    LOST = "lost"
    EXPIRED = "expired"
    RESOLVED = "resolved"


class Capabilities(Enum):
    """Capability methods of the adapter contract"""

    AUTHENTICATE = "authenticate"
    GET_RESERVATION = "get_reservation"
    SEARCH_RESERVATIONS = "search_reservations"
    GET_FOLIO = "get_folio"
    LIST_DOCUMENTS = "list_documents"
    FETCH_DOCUMENT = "fetch_document"
    PUSH_CASE_UPDATE = "push_case_update"
    SUBSCRIBE_WEBHOOK = "subscribe_webhook"
    PARSE_WEBHOOK = "parse_webhook"


# Domain Models (vendor-agnostic)
@dataclass
class ReservationCriteria:
    """
    Search filters for ``search_reservations``.

    ``limit`` caps lookups and sets the page size. An ``exhaustive`` search
    reads every page the vendor has and returns the rows oldest first, so a
    sync pull never drops changed rows past the limit.
    """

    modified_since: Optional[datetime] = None
    check_in_from: Optional[date] = None
    check_in_to: Optional[date] = None
    confirmation_number: Optional[str] = None
    guest_name: Optional[str] = None
    card_last_four: Optional[str] = None
    limit: int = 100
    exhaustive: bool = False

    def wants_more(self, fetched: int) -> bool:
        return self.exhaustive or fetched < self.limit


@dataclass
class CanonicalReservation:
    external_id: str
    confirmation_number: Optional[str]
    guest_name: Optional[str]
    check_in_date: date
    check_out_date: date
    status: ReservationStatus
    updated_at: datetime
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    actual_check_in: Optional[datetime] = None
    actual_check_out: Optional[datetime] = None
    room_number: Optional[str] = None
    room_type: Optional[str] = None
    rate_code: Optional[str] = None
    rate_amount: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    currency: str = "USD"
    card_brand: Optional[str] = None
    card_last_four: Optional[str] = None
    booking_source: Optional[str] = None
    is_flagged: bool = False
    sync_source: Optional[str] = None


@dataclass
class FolioLineItem:
    posting_date: date
    category: FolioCategory
    description: str
    amount: Decimal  # charges positive, payments negative
    currency: str = "USD"
    transaction_code: Optional[str] = None
    auth_code: Optional[str] = None
    external_id: Optional[str] = None


@dataclass
class Folio:
    reservation_external_id: str
    items: List[FolioLineItem]
    currency: str = "USD"
    reported_balance: Optional[Decimal] = None


@dataclass
class DocumentDescriptor:
    kind: DocumentKind
    external_id: str
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    source_timestamp: Optional[datetime] = None


@dataclass
class VendorDocument:
    kind: DocumentKind
    content: bytes
    mime_type: str
    file_name: str
    source_timestamp: Optional[datetime] = None


@dataclass
class ChargebackAlert:
    """
    Dispute notice raised by a PMS or a card-network alert service.

    ``alert_id`` is the sender's case id; with ``source`` it identifies the
    case across repeated deliveries.
    """

    alert_id: str
    source: str
    amount: Optional[Decimal] = None
    currency: str = "USD"
    transaction_date: Optional[date] = None
    transaction_id: Optional[str] = None
    card_brand: Optional[str] = None
    card_last_four: Optional[str] = None
    cardholder_name: Optional[str] = None
    confirmation_number: Optional[str] = None
    reservation_external_id: Optional[str] = None
    reason_code: Optional[str] = None
    reason_category: Optional[str] = None
    status: DisputeStatus = DisputeStatus.PENDING
    due_date: Optional[date] = None
    pre_chargeback: bool = False


@dataclass
class WebhookEvent:
    event_type: WebhookEventType
    vendor: str
    external_id: Optional[str]
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: Optional[datetime] = None
    alert: Optional[ChargebackAlert] = None


@dataclass
class WebhookSubscription:
    subscription_id: str
    callback_url: str
    events: List[WebhookEventType]
    secret: Optional[str] = None


_GATED_CAPABILITIES = {
    "supports_webhooks": (Capabilities.SUBSCRIBE_WEBHOOK, Capabilities.PARSE_WEBHOOK),
    "supports_push": (Capabilities.PUSH_CASE_UPDATE,),
    "supports_documents": (Capabilities.LIST_DOCUMENTS, Capabilities.FETCH_DOCUMENT),
}


# Base implementation with common functionality
class VendorConnection(ABC):
    """
    Authenticated HTTP session with one vendor.

    Holds the credential handling, OAuth2 token lifecycle, error
    classification and value normalization that PMS adapters and
    dispute-network adapters share.

    Config keys:
        credentials: credential model or raw dict for ``auth_type``
        base_url: override of ``default_base_url``
        property_id: owning property
        timeout: per-call timeout in seconds
        http_options: extra keyword arguments for ``httpx.AsyncClient``
    """

    vendor_type: str = ""
    display_name: str = ""
    auth_type: AuthType = AuthType.API_KEY
    supports_webhooks: bool = False
    default_base_url: str = ""
    default_timeout: float = 30.0
    token_path: str = "/oauth/token"
    authorize_path: str = "/oauth/authorize"
    hotel_code_header: str = "X-Hotel-Code"
    webhook_signature_header: str = "X-Signature"

    # Refresh OAuth2 tokens this long before they expire
    TOKEN_REFRESH_MARGIN = timedelta(seconds=60)

    def __init__(self, config: Dict[str, Any]):
        self._validate_declaration()
        self.config = config
        self.property_id = config.get("property_id")
        self.base_url = (config.get("base_url") or self.default_base_url).rstrip("/")
        self.timeout = float(config.get("timeout") or self.default_timeout)
        self.http_options = dict(config.get("http_options") or {})
        self.credentials = self._coerce_credentials(config.get("credentials"))
        self.credentials_updated = False
        self.logger = get_safe_logger(f"pms_connectors.{self.vendor_type.lower()}").bind(
            vendor=self.vendor_type, property_id=self.property_id
        )
        self._client: Optional[httpx.AsyncClient] = None
        self._authenticated = False
        self._handshake = False

    @classmethod
    def _validate_declaration(cls) -> None:
        if not cls.vendor_type or not cls.display_name:
            raise TypeError(f"{cls.__name__} must declare vendor_type and display_name")

    def _coerce_credentials(self, raw: Any) -> Credentials:
        if raw is None:
            raise InvalidCredentialsError("credentials are required", vendor=self.vendor_type)
        if isinstance(raw, Mapping):
            return parse_credentials(self.auth_type, raw)
        if getattr(raw, "auth_type", None) != self.auth_type:
            raise InvalidCredentialsError(
                f"{self.vendor_type} expects {self.auth_type.value} credentials",
                vendor=self.vendor_type,
            )
        return raw

    # Connection lifecycle
    @property
    def is_authenticated(self) -> bool:
        return self._authenticated

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            options = {
                "base_url": self.base_url,
                "timeout": httpx.Timeout(self.timeout),
                "limits": httpx.Limits(max_keepalive_connections=5, max_connections=10),
                "headers": {"Accept": "application/json", "User-Agent": "chargeback-defense-sync/1.0"},
            }
            options.update(self.http_options)
            if isinstance(self.credentials, BasicCredentials):
                options.setdefault(
                    "auth",
                    httpx.BasicAuth(self.credentials.username, self.credentials.password.get_secret_value()),
                )
            self._client = httpx.AsyncClient(**options)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._authenticated = False

    async def __aenter__(self):
        await self.authenticate()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def authenticate(self) -> None:
        """
        Prepare credentials and verify them against the vendor.

        Raises:
            AuthenticationError: credentials rejected
            RateLimitedError: vendor throttled the handshake
            TransientNetworkError: timeout or 5xx, safe to retry
        """
        self._handshake = True
        try:
            if isinstance(self.credentials, OAuth2Credentials):
                await self._obtain_token(force=False)
            await self._verify_credentials()
        finally:
            self._handshake = False
        self._authenticated = True
        self.logger.info("adapter_authenticated", auth_type=self.auth_type.value)

    @abstractmethod
    async def _verify_credentials(self) -> None:
        """Cheap authenticated call proving the credentials work"""
        pass

    async def health_check(self) -> Dict[str, Any]:
        """Check if the vendor connection is healthy"""
        self._handshake = True
        try:
            await self._verify_credentials()
            return {
                "status": "healthy",
                "vendor": self.vendor_type,
                "authenticated": self._authenticated,
                "base_url": self.base_url,
            }
        except IntegrationError as e:
            return {
                "status": "unhealthy",
                "vendor": self.vendor_type,
                "authenticated": self._authenticated,
                "error": str(e),
                "error_type": type(e).__name__,
            }
        finally:
            self._handshake = False

    # OAuth2
    def _token_url(self, credentials: OAuth2Credentials) -> str:
        return credentials.token_url or self.token_path

    def authorization_url(self, state: str) -> str:
        """Consent URL for the authorization-code flow"""
        if not isinstance(self.credentials, OAuth2Credentials):
            raise UnsupportedCapabilityError("authorization_url", vendor=self.vendor_type)
        authorize = self.authorize_path
        if not authorize.startswith("http"):
            authorize = f"{self.base_url}{authorize}"
        return self.credentials.authorization_url(authorize, state)

    def _token_is_fresh(self, credentials: OAuth2Credentials) -> bool:
        if not credentials.access_token:
            return False
        if credentials.expires_at is None:
            return True
        return credentials.expires_at - self.TOKEN_REFRESH_MARGIN > datetime.now(timezone.utc)

    async def _obtain_token(self, force: bool) -> None:
        credentials = self.credentials
        assert isinstance(credentials, OAuth2Credentials)
        if not force and self._token_is_fresh(credentials):
            return

        secret = credentials.client_secret.get_secret_value()
        data: Dict[str, str] = {}
        update: Dict[str, Any] = {}
        if credentials.refresh_token is not None:
            data = {"grant_type": "refresh_token", "refresh_token": credentials.refresh_token.get_secret_value()}
        elif credentials.grant_type == OAuth2GrantType.CLIENT_CREDENTIALS:
            data = {"grant_type": "client_credentials"}
            if credentials.scope:
                data["scope"] = credentials.scope
        elif credentials.authorization_code is not None:
            data = {
                "grant_type": "authorization_code",
                "code": credentials.authorization_code.get_secret_value(),
            }
            if credentials.redirect_uri:
                data["redirect_uri"] = credentials.redirect_uri
            # Authorization codes are single use
            update["authorization_code"] = None
        else:
            raise AuthenticationError(
                "OAuth2 authorization has not been granted; no code or refresh token available",
                vendor=self.vendor_type,
            )

        response = await self._send(
            "POST",
            self._token_url(credentials),
            data=data,
            auth=httpx.BasicAuth(credentials.client_id, secret),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if response.status_code in (400, 401, 403):
            raise AuthenticationError(
                f"Token exchange rejected: HTTP {response.status_code}", vendor=self.vendor_type
            )
        self._raise_for_status(response)

        token = response.json()
        if "access_token" not in token:
            raise AuthenticationError("Token response missing access_token", vendor=self.vendor_type)
        update["access_token"] = token["access_token"]
        if token.get("refresh_token"):
            update["refresh_token"] = token["refresh_token"]
        expires_in = token.get("expires_in")
        update["expires_at"] = (
            datetime.now(timezone.utc) + timedelta(seconds=int(expires_in)) if expires_in else None
        )
        self.credentials = credentials.with_token(**update)
        self.credentials_updated = True
        self.logger.info("oauth_token_obtained", grant_type=data["grant_type"], expires_in=expires_in)

    # Request plumbing
    def _auth_headers(self) -> Dict[str, str]:
        credentials = self.credentials
        if isinstance(credentials, OAuth2Credentials) and credentials.access_token:
            return {"Authorization": f"Bearer {credentials.access_token.get_secret_value()}"}
        if isinstance(credentials, ApiKeyCredentials) and credentials.placement == CredentialPlacement.HEADER:
            return {credentials.header_name: credentials.api_key.get_secret_value()}
        if isinstance(credentials, BasicCredentials):
            return {self.hotel_code_header: credentials.hotel_code}
        return {}

    def _auth_params(self) -> Dict[str, str]:
        credentials = self.credentials
        if isinstance(credentials, ApiKeyCredentials) and credentials.placement == CredentialPlacement.QUERY:
            return {credentials.query_param: credentials.api_key.get_secret_value()}
        return {}

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send one HTTP request, translating transport failures"""
        client = self._get_client()
        try:
            return await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(
                f"Timeout calling {sanitize_url(url)}: {type(e).__name__}", vendor=self.vendor_type
            ) from e
        except httpx.TransportError as e:
            raise TransientNetworkError(
                f"Transport error calling {sanitize_url(url)}: {e}", vendor=self.vendor_type
            ) from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        url = sanitize_url(str(response.request.url)) if response.request else ""
        if status == 429:
            raise RateLimitedError(
                f"Rate limited by {self.vendor_type}",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
                vendor=self.vendor_type,
            )
        if status in (401, 403):
            raise AuthenticationError(f"HTTP {status} from {url}", vendor=self.vendor_type)
        if status == 404:
            raise NotFoundError(f"Not found: {url}", status_code=status, vendor=self.vendor_type)
        if status == 408 or status >= 500:
            raise TransientNetworkError(f"HTTP {status} from {url}", vendor=self.vendor_type)
        raise PermanentAdapterError(
            f"HTTP {status} from {url}: {response.text[:200]}", status_code=status, vendor=self.vendor_type
        )

    def _require_authenticated(self) -> None:
        if not self._authenticated and not self._handshake:
            raise AuthenticationError(
                "authenticate() must be called before data calls", vendor=self.vendor_type
            )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        expect_json: bool = True,
    ) -> Union[Dict[str, Any], List[Any], httpx.Response]:
        """
        Authenticated request with vendor-neutral error classification

        429 -> RateLimitedError, 401/403 -> AuthenticationError,
        404 -> NotFoundError, 408/5xx/transport -> TransientNetworkError,
        other 4xx -> PermanentAdapterError.
        """
        self._require_authenticated()
        if isinstance(self.credentials, OAuth2Credentials):
            await self._obtain_token(force=False)

        refreshed = False
        while True:
            request_headers = {**self._auth_headers(), **(headers or {})}
            request_params = {**self._auth_params(), **(params or {})}
            response = await self._send(
                method, path, params=request_params, json=json, data=data, headers=request_headers
            )
            # An expired bearer token gets one forced refresh
            if (
                response.status_code == 401
                and isinstance(self.credentials, OAuth2Credentials)
                and self.credentials.can_refresh
                and not refreshed
            ):
                refreshed = True
                await self._obtain_token(force=True)
                continue
            break

        self.logger.debug(
            "vendor_request",
            method=method,
            url=sanitize_url(str(response.request.url)),
            status_code=response.status_code,
        )
        self._raise_for_status(response)
        if not expect_json:
            return response
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise PermanentAdapterError(
                f"Invalid JSON from {self.vendor_type}", status_code=response.status_code, vendor=self.vendor_type
            ) from e

    @classmethod
    def verify_webhook_signature(cls, payload: bytes, headers: Mapping[str, str], secret: str) -> bool:
        """HMAC-SHA256 hex digest of the raw body, compared in constant time"""
        if not cls.supports_webhooks:
            return False
        signature = header_value(headers, cls.webhook_signature_header)
        if not signature or not secret:
            return False
        if signature.startswith("sha256="):
            signature = signature[len("sha256="):]
        expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature.strip().lower())

    # Normalization helpers
    def normalize_date(self, date_input: Any) -> date:
        """Normalize various date formats to Python date"""
        if isinstance(date_input, datetime):
            return date_input.date()
        if isinstance(date_input, date):
            return date_input
        return date_parser.parse(date_input).date()

    def normalize_datetime(self, value: Any) -> Optional[datetime]:
        """Normalize timestamps to timezone-aware UTC datetimes"""
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, date):
            parsed = datetime(value.year, value.month, value.day)
        elif isinstance(value, (int, float)):
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        else:
            parsed = date_parser.parse(value)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    def normalize_amount(self, amount: Any) -> Optional[Decimal]:
        """Normalize monetary amounts to Decimal"""
        if amount is None or amount == "":
            return None
        if isinstance(amount, str):
            amount = amount.replace(",", "").strip()
        try:
            return Decimal(str(amount)).quantize(Decimal("0.01"))
        except InvalidOperation as e:
            raise PermanentAdapterError(f"Invalid amount {amount!r}", vendor=self.vendor_type) from e

    @staticmethod
    def last_four(card_number: Optional[str]) -> Optional[str]:
        if not card_number:
            return None
        digits = "".join(ch for ch in str(card_number) if ch.isdigit())
        return digits[-4:] if len(digits) >= 4 else None

    def _mapping_error(self, what: str, error: Exception) -> PermanentAdapterError:
        return PermanentAdapterError(f"Unexpected {what} payload: {error}", vendor=self.vendor_type)


class BaseAdapter(VendorConnection):
    """
    Base class for every PMS adapter.

    Subclasses declare their static metadata as class attributes and
    implement the capability methods that metadata claims. The declaration
    is checked when the adapter is constructed.
    """

    supports_push: bool = False
    supports_documents: bool = False
    features: Tuple[str, ...] = ()
    document_kinds: Tuple[DocumentKind, ...] = ()

    # Declaration checks
    @classmethod
    def _overrides(cls, method_name: str) -> bool:
        return getattr(cls, method_name) is not getattr(BaseAdapter, method_name)

    @classmethod
    def _validate_declaration(cls) -> None:
        super()._validate_declaration()
        for flag, capabilities in _GATED_CAPABILITIES.items():
            declared = getattr(cls, flag)
            for capability in capabilities:
                method_name = capability.value
                if declared and not cls._overrides(method_name):
                    raise TypeError(f"{cls.__name__} declares {flag} but does not implement {method_name}")
                if not declared and cls._overrides(method_name):
                    raise TypeError(f"{cls.__name__} implements {method_name} without declaring {flag}")
        if cls.supports_documents and not cls.document_kinds:
            raise TypeError(f"{cls.__name__} declares supports_documents without document_kinds")
        if not cls.supports_documents and cls.document_kinds:
            raise TypeError(f"{cls.__name__} lists document_kinds without supports_documents")

    @classmethod
    def metadata(cls) -> Dict[str, Any]:
        """Static capability metadata declared by the adapter class"""
        return {
            "vendor_type": cls.vendor_type,
            "display_name": cls.display_name,
            "auth_type": cls.auth_type.value,
            "supports_webhooks": cls.supports_webhooks,
            "supports_push": cls.supports_push,
            "supports_documents": cls.supports_documents,
            "features": list(cls.features),
            "document_kinds": [kind.value for kind in cls.document_kinds],
        }

    # Capability methods
    @abstractmethod
    async def get_reservation(self, external_id: str) -> CanonicalReservation:
        """Retrieve one reservation by vendor id"""
        pass

    @abstractmethod
    async def search_reservations(self, criteria: ReservationCriteria) -> List[CanonicalReservation]:
        """Search reservations, newest changes first where the vendor allows"""
        pass

    @abstractmethod
    async def get_folio(self, external_id: str) -> Folio:
        """Itemized folio for a reservation"""
        pass

    async def list_documents(self, external_id: str) -> List[DocumentDescriptor]:
        raise UnsupportedCapabilityError("list_documents", vendor=self.vendor_type)

    async def fetch_document(self, external_id: str, kind: DocumentKind) -> VendorDocument:
        raise UnsupportedCapabilityError("fetch_document", vendor=self.vendor_type)

    async def push_case_update(
        self,
        case_id: str,
        status: str,
        reservation_external_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        raise UnsupportedCapabilityError("push_case_update", vendor=self.vendor_type)

    async def subscribe_webhook(
        self, callback_url: str, events: Optional[List[WebhookEventType]] = None
    ) -> WebhookSubscription:
        raise UnsupportedCapabilityError("subscribe_webhook", vendor=self.vendor_type)

    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        raise UnsupportedCapabilityError("parse_webhook", vendor=self.vendor_type)

    @staticmethod
    def apply_criteria(
        reservations: List[CanonicalReservation], criteria: ReservationCriteria
    ) -> List[CanonicalReservation]:
        """
        Apply criteria a vendor cannot filter on server side.

        Lookups come back newest first, cut at ``limit``. Exhaustive pulls
        come back oldest first and uncut.
        """
        results = []
        for reservation in reservations:
            if criteria.modified_since and reservation.updated_at < criteria.modified_since:
                continue
            if criteria.check_in_from and reservation.check_in_date < criteria.check_in_from:
                continue
            if criteria.check_in_to and reservation.check_in_date > criteria.check_in_to:
                continue
            if criteria.confirmation_number and reservation.confirmation_number != criteria.confirmation_number:
                continue
            if criteria.card_last_four and reservation.card_last_four != criteria.card_last_four:
                continue
            if criteria.guest_name and criteria.guest_name.lower() not in (reservation.guest_name or "").lower():
                continue
            results.append(reservation)
        if criteria.exhaustive:
            results.sort(key=lambda r: r.updated_at)
            return results
        results.sort(key=lambda r: r.updated_at, reverse=True)
        return results[: criteria.limit]


def header_value(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup over any mapping"""
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        retry_at = date_parser.parse(value)
    except (ValueError, OverflowError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())
