"""
Chargeback Defense - Adapter Registries & Factory
Resolves PMS vendor and dispute network keys to adapter classes and exposes
capability metadata
"""

import importlib
import inspect
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Type

import yaml

from .contracts import (
    BaseAdapter,
    IntegrationError,
    InvalidCredentialsError,
    UnsupportedVendorError,
    VendorConnection,
)
from .credentials import parse_credentials
from .dispute_contracts import BaseDisputeAdapter
from .utils.logging import get_safe_logger

logger = get_safe_logger("pms_connectors.factory")

SYNC_INTERVAL_TIERS = (5, 15, 30, 60)


class AdapterStatus(Enum):
    """Adapter availability status"""

    AVAILABLE = "available"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    MAINTENANCE = "maintenance"


@dataclass
class AdapterMetadata:
    """Class-declared capabilities merged with operational metadata"""

    vendor_type: str
    display_name: str
    auth_type: str
    supports_webhooks: bool
    supports_push: bool
    supports_documents: bool
    features: List[str]
    document_kinds: List[str]
    status: AdapterStatus = AdapterStatus.AVAILABLE
    rate_limits: Dict[str, int] = field(default_factory=lambda: {"requests_per_minute": 60})
    documentation_url: Optional[str] = None
    default_sync_interval_minutes: int = 15

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


def normalize_vendor_type(vendor_type: str) -> str:
    return (vendor_type or "").strip().upper()


def load_capability_matrix(matrix_path: Path) -> Dict[str, Any]:
    """Load operational metadata from YAML configuration"""
    if not matrix_path.exists():
        logger.warning("capability_matrix_missing", path=str(matrix_path))
        return {"vendors": {}, "networks": {}}
    with open(matrix_path, "r") as f:
        matrix = yaml.safe_load(f) or {}
    logger.info(
        "capability_matrix_loaded",
        vendors=len(matrix.get("vendors", {})),
        networks=len(matrix.get("networks", {})),
    )
    return matrix


def _validate_credentials(adapter_class: Type[VendorConnection], config: Dict[str, Any]) -> None:
    """Validate configuration for a vendor"""
    credentials = config.get("credentials")
    if credentials is None:
        raise InvalidCredentialsError(
            f"Missing credentials for {adapter_class.vendor_type}",
            missing_fields=["credentials"],
            vendor=adapter_class.vendor_type,
        )
    if isinstance(credentials, dict):
        config["credentials"] = parse_credentials(adapter_class.auth_type, credentials)
    http_options = config.get("http_options")
    if http_options is not None and not isinstance(http_options, dict):
        raise ValueError("http_options must be a mapping of httpx.AsyncClient keyword arguments")



class AdapterRegistry:
    """Registry of available PMS adapters keyed by uppercase vendor type"""

    def __init__(self, matrix_path: Optional[Path] = None, discover: bool = True):
        self._adapters: Dict[str, Type[BaseAdapter]] = {}
        self._metadata: Dict[str, AdapterMetadata] = {}
        self._capability_matrix: Dict[str, Any] = {}
        self._load_capability_matrix(matrix_path or Path(__file__).parent / "capability_matrix.yaml")
        if discover:
            self._discover_adapters()

    def _load_capability_matrix(self, matrix_path: Path):
        self._capability_matrix = load_capability_matrix(matrix_path)

    def _discover_adapters(self):
        """Import every adapters/<vendor>/connector.py and register its adapter class"""
        adapters_path = Path(__file__).parent / "adapters"
        for vendor_dir in sorted(adapters_path.iterdir()):
            if not vendor_dir.is_dir() or vendor_dir.name.startswith("_"):
                continue
            module_name = f"{__package__}.adapters.{vendor_dir.name}.connector"
            module = importlib.import_module(module_name)
            for _, obj in inspect.getmembers(module, inspect.isclass):
                if issubclass(obj, BaseAdapter) and obj is not BaseAdapter and obj.__module__ == module.__name__:
                    self.register(obj)
                    logger.debug("adapter_discovered", vendor_type=obj.vendor_type, adapter=obj.__name__)

    def register(self, adapter_class: Type[BaseAdapter], **overrides: Any) -> AdapterMetadata:
        """Register an adapter class, merging its declaration with the capability matrix"""
        adapter_class._validate_declaration()
        key = normalize_vendor_type(adapter_class.vendor_type)
        vendor_config = dict(self._capability_matrix.get("vendors", {}).get(key, {}))
        vendor_config.update(overrides)

        declared = adapter_class.metadata()
        interval = int(vendor_config.get("default_sync_interval_minutes", 15))
        if interval not in SYNC_INTERVAL_TIERS:
            raise ValueError(f"{key}: default_sync_interval_minutes must be one of {SYNC_INTERVAL_TIERS}")

        metadata = AdapterMetadata(
            vendor_type=key,
            display_name=vendor_config.get("display_name", declared["display_name"]),
            auth_type=declared["auth_type"],
            supports_webhooks=declared["supports_webhooks"],
            supports_push=declared["supports_push"],
            supports_documents=declared["supports_documents"],
            features=declared["features"],
            document_kinds=declared["document_kinds"],
            status=AdapterStatus(vendor_config.get("status", "available")),
            rate_limits=vendor_config.get("rate_limits", {"requests_per_minute": 60}),
            documentation_url=vendor_config.get("documentation_url"),
            default_sync_interval_minutes=interval,
        )
        self._adapters[key] = adapter_class
        self._metadata[key] = metadata
        return metadata

    def unregister(self, vendor_type: str) -> None:
        key = normalize_vendor_type(vendor_type)
        self._adapters.pop(key, None)
        self._metadata.pop(key, None)

    def supported_types(self) -> List[str]:
        return sorted(self._adapters)

    def is_supported(self, vendor_type: str) -> bool:
        return normalize_vendor_type(vendor_type) in self._adapters

    def get_adapter_class(self, vendor_type: str) -> Type[BaseAdapter]:
        key = normalize_vendor_type(vendor_type)
        if key not in self._adapters:
            raise UnsupportedVendorError(vendor_type, self.supported_types())
        return self._adapters[key]

    def get_metadata(self, vendor_type: str) -> Optional[AdapterMetadata]:
        return self._metadata.get(normalize_vendor_type(vendor_type))

    def find_vendors_with_feature(self, feature: str) -> List[str]:
        """Vendors listing ``feature`` or declaring ``supports_<feature>``"""
        matches = []
        for key, meta in sorted(self._metadata.items()):
            if feature in meta.features or getattr(meta, f"supports_{feature}", False) is True:
                matches.append(key)
        return matches

    def create(self, vendor_type: str, config: Dict[str, Any]) -> BaseAdapter:
        """Create an unauthenticated adapter instance for the vendor"""
        adapter_class = self.get_adapter_class(vendor_type)
        metadata = self._metadata[normalize_vendor_type(vendor_type)]

        if metadata.status == AdapterStatus.UNAVAILABLE:
            raise IntegrationError(f"Adapter {metadata.vendor_type} is currently unavailable", vendor=metadata.vendor_type)
        if metadata.status == AdapterStatus.MAINTENANCE:
            logger.warning("adapter_in_maintenance", vendor_type=metadata.vendor_type)

        _validate_credentials(adapter_class, config)
        adapter = adapter_class(config)
        logger.info("adapter_created", vendor_type=metadata.vendor_type, property_id=config.get("property_id"))
        return adapter



@dataclass
class DisputeNetworkMetadata:
    """Dispute-network declaration merged with operational metadata"""

    vendor_type: str
    display_name: str
    auth_type: str
    card_brand: str
    supports_webhooks: bool
    webhook_events: List[str]
    reason_codes: List[str]
    status: AdapterStatus = AdapterStatus.AVAILABLE
    rate_limits: Dict[str, int] = field(default_factory=lambda: {"requests_per_minute": 60})
    documentation_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


class DisputeAdapterRegistry:
    """Registry of dispute-network adapters keyed by uppercase network name"""

    def __init__(self, matrix_path: Optional[Path] = None, discover: bool = True):
        self._adapters: Dict[str, Type[BaseDisputeAdapter]] = {}
        self._metadata: Dict[str, DisputeNetworkMetadata] = {}
        self._networks = load_capability_matrix(
            matrix_path or Path(__file__).parent / "capability_matrix.yaml"
        ).get("networks", {})
        if discover:
            self._discover_adapters()

    def _discover_adapters(self):
        """Import every disputes/<network>/connector.py and register its adapter class"""
        disputes_path = Path(__file__).parent / "disputes"
        for network_dir in sorted(disputes_path.iterdir()):
            if not network_dir.is_dir() or network_dir.name.startswith("_"):
                continue
            module = importlib.import_module(f"{__package__}.disputes.{network_dir.name}.connector")
            for _, obj in inspect.getmembers(module, inspect.isclass):
                if issubclass(obj, BaseDisputeAdapter) and obj.__module__ == module.__name__:
                    self.register(obj)
                    logger.debug("dispute_adapter_discovered", vendor_type=obj.vendor_type, adapter=obj.__name__)

    def register(self, adapter_class: Type[BaseDisputeAdapter], **overrides: Any) -> DisputeNetworkMetadata:
        adapter_class._validate_declaration()
        key = normalize_vendor_type(adapter_class.vendor_type)
        network_config = dict(self._networks.get(key, {}))
        network_config.update(overrides)

        declared = adapter_class.metadata()
        metadata = DisputeNetworkMetadata(
            vendor_type=key,
            display_name=network_config.get("display_name", declared["display_name"]),
            auth_type=declared["auth_type"],
            card_brand=declared["card_brand"],
            supports_webhooks=declared["supports_webhooks"],
            webhook_events=declared["webhook_events"],
            reason_codes=declared["reason_codes"],
            status=AdapterStatus(network_config.get("status", "available")),
            rate_limits=network_config.get("rate_limits", {"requests_per_minute": 60}),
            documentation_url=network_config.get("documentation_url"),
        )
        self._adapters[key] = adapter_class
        self._metadata[key] = metadata
        return metadata

    def supported_types(self) -> List[str]:
        return sorted(self._adapters)

    def is_supported(self, vendor_type: str) -> bool:
        return normalize_vendor_type(vendor_type) in self._adapters

    def get_adapter_class(self, vendor_type: str) -> Type[BaseDisputeAdapter]:
        key = normalize_vendor_type(vendor_type)
        if key not in self._adapters:
            raise UnsupportedVendorError(vendor_type, self.supported_types())
        return self._adapters[key]

    def get_metadata(self, vendor_type: str) -> Optional[DisputeNetworkMetadata]:
        return self._metadata.get(normalize_vendor_type(vendor_type))

    def create(self, vendor_type: str, config: Dict[str, Any]) -> BaseDisputeAdapter:
        """Create an unauthenticated dispute adapter for the network"""
        adapter_class = self.get_adapter_class(vendor_type)
        metadata = self._metadata[normalize_vendor_type(vendor_type)]
        if metadata.status == AdapterStatus.UNAVAILABLE:
            raise IntegrationError(f"Adapter {metadata.vendor_type} is currently unavailable", vendor=metadata.vendor_type)
        if metadata.status == AdapterStatus.MAINTENANCE:
            logger.warning("adapter_in_maintenance", vendor_type=metadata.vendor_type)

        _validate_credentials(adapter_class, config)
        adapter = adapter_class(config)
        logger.info("dispute_adapter_created", vendor_type=metadata.vendor_type, property_id=config.get("property_id"))
        return adapter


# Global registry instances
_registry = AdapterRegistry()
_dispute_registry = DisputeAdapterRegistry()


def get_registry() -> AdapterRegistry:
    return _registry


# Convenience functions
def create_adapter(vendor_type: str, config: Dict[str, Any]) -> BaseAdapter:
    """Create an adapter for the vendor type (case-insensitive)"""
    return _registry.create(vendor_type, dict(config))


def get_supported_types() -> List[str]:
    return _registry.supported_types()


def is_supported(vendor_type: str) -> bool:
    return _registry.is_supported(vendor_type)


def get_metadata(vendor_type: str) -> Optional[Dict[str, Any]]:
    """Metadata dict for a vendor, or None when unsupported"""
    metadata = _registry.get_metadata(vendor_type)
    return metadata.to_dict() if metadata else None


def get_all_metadata() -> Dict[str, Dict[str, Any]]:
    return {key: _registry.get_metadata(key).to_dict() for key in _registry.supported_types()}


def find_vendors_with_feature(feature: str) -> List[str]:
    return _registry.find_vendors_with_feature(feature)


# Allow manual registration for testing
def register_adapter(adapter_class: Type[BaseAdapter], **metadata: Any) -> AdapterMetadata:
    """Register a custom adapter"""
    return _registry.register(adapter_class, **metadata)


# Dispute networks
def get_dispute_registry() -> DisputeAdapterRegistry:
    return _dispute_registry


def create_dispute_adapter(vendor_type: str, config: Dict[str, Any]) -> BaseDisputeAdapter:
    """Create a dispute-network adapter (case-insensitive network name)"""
    return _dispute_registry.create(vendor_type, dict(config))


def get_supported_networks() -> List[str]:
    return _dispute_registry.supported_types()


def is_supported_network(vendor_type: str) -> bool:
    return _dispute_registry.is_supported(vendor_type)


def get_network_metadata(vendor_type: str) -> Optional[Dict[str, Any]]:
    metadata = _dispute_registry.get_metadata(vendor_type)
    return metadata.to_dict() if metadata else None
