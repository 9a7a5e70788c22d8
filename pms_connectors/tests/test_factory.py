"""
Test the PMS Adapter Registry & Factory
"""

from typing import List

import pytest

from pms_connectors.contracts import (
    BaseAdapter,
    CanonicalReservation,
    Folio,
    InvalidCredentialsError,
    ReservationCriteria,
    UnsupportedVendorError,
)
from pms_connectors.credentials import AuthType
from pms_connectors.factory import (
    AdapterRegistry,
    AdapterStatus,
    create_adapter,
    find_vendors_with_feature,
    get_all_metadata,
    get_metadata,
    get_supported_types,
    is_supported,
)

ALL_VENDORS = ["AUTOCLERK", "CLOUDBEDS", "MEWS", "OPERA_CLOUD", "PROTEL"]


class ReadOnlyTestAdapter(BaseAdapter):
    vendor_type = "TEST_PMS"
    display_name = "Test PMS"
    auth_type = AuthType.API_KEY
    features = ("reservations",)

    async def _verify_credentials(self) -> None:
        pass

    async def get_reservation(self, external_id: str) -> CanonicalReservation:
        raise NotImplementedError

    async def search_reservations(self, criteria: ReservationCriteria) -> List[CanonicalReservation]:
        return []

    async def get_folio(self, external_id: str) -> Folio:
        return Folio(reservation_external_id=external_id, items=[])


class TestAdapterRegistry:
    """Test the adapter registry functionality"""

    def test_registry_initialization(self):
        """Registry loads the capability matrix and discovers every adapter"""
        registry = AdapterRegistry()
        assert "vendors" in registry._capability_matrix
        assert registry.supported_types() == ALL_VENDORS

    def test_manual_registration(self):
        """Manually registered adapters merge declaration and overrides"""
        registry = AdapterRegistry(discover=False)
        metadata = registry.register(ReadOnlyTestAdapter, status="maintenance", default_sync_interval_minutes=60)

        assert registry.supported_types() == ["TEST_PMS"]
        assert registry.get_adapter_class("test_pms") is ReadOnlyTestAdapter
        assert metadata.status == AdapterStatus.MAINTENANCE
        assert metadata.default_sync_interval_minutes == 60
        assert metadata.supports_push is False

    def test_invalid_sync_tier_rejected(self):
        registry = AdapterRegistry(discover=False)
        with pytest.raises(ValueError):
            registry.register(ReadOnlyTestAdapter, default_sync_interval_minutes=7)

    def test_declaration_mismatch_rejected(self):
        """Declaring a capability without implementing it fails registration"""

        class BrokenAdapter(ReadOnlyTestAdapter):
            vendor_type = "BROKEN"
            supports_push = True

        registry = AdapterRegistry(discover=False)
        with pytest.raises(TypeError, match="push_case_update"):
            registry.register(BrokenAdapter)

    def test_undeclared_capability_rejected(self):
        """Implementing a gated capability without declaring it fails construction"""

        class SneakyAdapter(ReadOnlyTestAdapter):
            vendor_type = "SNEAKY"

            async def push_case_update(self, case_id, status, reservation_external_id=None, notes=None):
                return {}

        with pytest.raises(TypeError, match="supports_push"):
            SneakyAdapter({"credentials": {"api_key": "k"}})

    def test_unavailable_adapter_cannot_be_created(self):
        registry = AdapterRegistry(discover=False)
        registry.register(ReadOnlyTestAdapter, status="unavailable")
        with pytest.raises(Exception, match="unavailable"):
            registry.create("TEST_PMS", {"credentials": {"api_key": "k"}})


class TestFactoryFunctions:
    """Module-level convenience functions over the global registry"""

    def test_supported_types(self):
        assert get_supported_types() == ALL_VENDORS

    @pytest.mark.parametrize("vendor_type", ALL_VENDORS)
    def test_created_adapter_matches_registry_metadata(self, vendor_type, vendor_configs):
        """Declared auth type and features equal the registry metadata"""
        adapter = create_adapter(vendor_type, vendor_configs[vendor_type])
        metadata = get_metadata(vendor_type)

        assert adapter.auth_type.value == metadata["auth_type"]
        assert list(adapter.features) == metadata["features"]
        assert adapter.supports_webhooks == metadata["supports_webhooks"]
        assert adapter.supports_push == metadata["supports_push"]
        assert adapter.supports_documents == metadata["supports_documents"]
        assert adapter.is_authenticated is False

    def test_vendor_type_is_case_insensitive(self, autoclerk_config):
        adapter = create_adapter("  autoclerk ", autoclerk_config)
        assert adapter.vendor_type == "AUTOCLERK"
        assert is_supported("Opera_Cloud")

    @pytest.mark.parametrize("vendor_type", ["SABRE", "apaleo", "", "opera cloud"])
    def test_unsupported_vendor_lists_registry_keys(self, vendor_type):
        with pytest.raises(UnsupportedVendorError) as exc_info:
            create_adapter(vendor_type, {"credentials": {}})

        assert exc_info.value.supported_types == get_supported_types()
        assert "Supported types: AUTOCLERK, CLOUDBEDS, MEWS, OPERA_CLOUD, PROTEL" in str(exc_info.value)

    def test_get_metadata_unknown_is_none(self):
        assert get_metadata("SABRE") is None

    def test_get_all_metadata(self):
        all_metadata = get_all_metadata()
        assert sorted(all_metadata) == ALL_VENDORS
        assert all_metadata["PROTEL"]["auth_type"] == "basic"
        assert all_metadata["PROTEL"]["default_sync_interval_minutes"] == 60
        assert all_metadata["OPERA_CLOUD"]["display_name"] == "Oracle OPERA Cloud"
        assert all_metadata["MEWS"]["rate_limits"]["requests_per_minute"] == 200

    def test_find_vendors_with_feature(self):
        assert find_vendors_with_feature("documents") == ["AUTOCLERK", "OPERA_CLOUD"]
        assert "PROTEL" not in find_vendors_with_feature("webhooks")
        assert find_vendors_with_feature("push") == ["AUTOCLERK", "CLOUDBEDS", "MEWS", "OPERA_CLOUD"]
        assert find_vendors_with_feature("guest_notes") == ["CLOUDBEDS"]

    def test_missing_credentials(self):
        with pytest.raises(InvalidCredentialsError):
            create_adapter("PROTEL", {"property_id": "prop-1"})

    def test_malformed_credentials_name_missing_fields(self):
        with pytest.raises(InvalidCredentialsError) as exc_info:
            create_adapter("PROTEL", {"credentials": {"username": "u", "password": "p"}})
        assert exc_info.value.missing_fields == ["hotel_code"]

    def test_credentials_of_wrong_scheme_rejected(self, autoclerk_config):
        from pms_connectors.credentials import parse_credentials

        basic = parse_credentials("basic", {"username": "u", "password": "p", "hotel_code": "H"})
        with pytest.raises(InvalidCredentialsError):
            create_adapter("AUTOCLERK", {"credentials": basic})
