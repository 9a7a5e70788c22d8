"""
Integration Hub - caller-facing facade of the sync engine

Wires the database, sync orchestrator, matching service and evidence
collector together and exposes the operations the platform calls.
"""

import asyncio
import json
from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

from pms_connectors.contracts import BaseAdapter, ChargebackAlert, PermanentAdapterError
from pms_connectors.dispute_contracts import BaseDisputeAdapter
from pms_connectors.factory import AdapterRegistry, DisputeAdapterRegistry, get_dispute_registry, get_registry
from pms_connectors.utils.logging import configure_logging, get_safe_logger

from .alerts import AlertIntakeResult, ChargebackAlertIntake
from .config import SyncSettings, get_settings
from .core.exceptions import MatchNotFoundError, ReservationNotFoundError
from .database.connection import Database
from .database.models import Chargeback, EvidenceDocument, Integration, ReservationMatch, SyncLog, TimelineEvent
from .database.repository import (
    ChargebackRepository,
    EvidenceRepository,
    IntegrationRepository,
    MatchRepository,
    ReservationRepository,
    SyncLogFilter,
    TimelineRepository,
)
from .evidence import EvidenceCollectionResult, EvidenceCollector, EvidenceStore, LocalEvidenceStore
from .matching import MatchingService
from .sync.orchestrator import SyncOrchestrator

logger = get_safe_logger("defense_sync.hub")


class IntegrationHub:
    """Single entry point over integrations, sync, matching and evidence"""

    def __init__(
        self,
        settings: SyncSettings,
        database: Optional[Database] = None,
        registry: Optional[AdapterRegistry] = None,
        dispute_registry: Optional[DisputeAdapterRegistry] = None,
        store: Optional[EvidenceStore] = None,
        http_options: Optional[Dict[str, Any]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        orchestrator: Optional[SyncOrchestrator] = None,
    ):
        self.settings = settings
        self.database = database or Database(settings.database_url, echo=settings.database_echo)
        self.registry = registry or get_registry()
        self.dispute_registry = dispute_registry or get_dispute_registry()
        self.matching = MatchingService(self.database)
        self.alerts = ChargebackAlertIntake(self.database, self.matching)
        self.orchestrator = orchestrator or SyncOrchestrator(
            self.database,
            settings,
            registry=self.registry,
            http_options=http_options,
            sleep=sleep,
            alerts=self.alerts,
        )
        self.evidence = EvidenceCollector(
            self.database,
            store or LocalEvidenceStore(settings.evidence_storage_path),
            retry_policy=settings.retry_policy(),
            sleep=sleep,
        )

    @classmethod
    def from_settings(cls, settings: Optional[SyncSettings] = None, **kwargs: Any) -> "IntegrationHub":
        settings = settings or get_settings()
        configure_logging(json_logs=settings.json_logs, level=settings.log_level)
        return cls(settings, **kwargs)

    async def start(self) -> None:
        await self.database.create_all()
        await self.orchestrator.start()
        logger.info("integration_hub_started", supported_types=self.get_supported_types())

    async def close(self) -> None:
        await self.orchestrator.shutdown()
        await self.database.dispose()
        logger.info("integration_hub_stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # Registry
    def create_adapter(self, vendor_type: str, config: Mapping[str, Any]) -> BaseAdapter:
        return self.registry.create(vendor_type, dict(config))

    def get_supported_types(self) -> List[str]:
        return self.registry.supported_types()

    def get_metadata(self, vendor_type: str) -> Optional[Dict[str, Any]]:
        metadata = self.registry.get_metadata(vendor_type)
        return metadata.to_dict() if metadata else None

    def create_dispute_adapter(self, vendor_type: str, config: Mapping[str, Any]) -> BaseDisputeAdapter:
        return self.dispute_registry.create(vendor_type, dict(config))

    def get_supported_networks(self) -> List[str]:
        return self.dispute_registry.supported_types()

    # Integration lifecycle
    async def connect_integration(
        self, property_id: str, vendor_type: str, credentials: Mapping[str, Any], **options: Any
    ) -> Integration:
        return await self.orchestrator.connect_integration(property_id, vendor_type, credentials, **options)

    async def reconnect_integration(
        self, integration_id: str, credentials: Optional[Mapping[str, Any]] = None
    ) -> Integration:
        return await self.orchestrator.reconnect_integration(integration_id, credentials)

    async def update_credentials(self, integration_id: str, credentials: Mapping[str, Any]) -> Integration:
        return await self.orchestrator.update_credentials(integration_id, credentials)

    async def disconnect_integration(self, integration_id: str) -> Integration:
        return await self.orchestrator.disconnect_integration(integration_id)

    async def get_integration(self, integration_id: str) -> Integration:
        async with self.database.session() as session:
            return await IntegrationRepository(session).require(integration_id)

    # Sync
    async def trigger_sync(
        self, integration_id: str, sync_type: str = "incremental", direction: str = "inbound"
    ) -> SyncLog:
        return await self.orchestrator.trigger_sync(integration_id, sync_type, direction)

    async def ingest_webhook(self, integration_id: str, body: bytes, headers: Mapping[str, str]) -> SyncLog:
        return await self.orchestrator.ingest_webhook(integration_id, body, headers)

    async def notify_case_status(self, case_id: str, status: str, notes: Optional[str] = None) -> Optional[SyncLog]:
        return await self.orchestrator.notify_case_status(case_id, status, notes)

    async def get_sync_status(self, integration_id: Optional[str] = None) -> Dict[str, Any]:
        return await self.orchestrator.get_sync_status(integration_id)

    async def get_sync_logs(
        self, filters: Optional[SyncLogFilter] = None, limit: int = 50, offset: int = 0
    ) -> List[SyncLog]:
        return await self.orchestrator.get_sync_logs(filters, limit, offset)

    # Chargebacks and matching
    async def record_chargeback(
        self,
        property_id: str,
        *,
        chargeback_id: Optional[str] = None,
        amount: Optional[Decimal] = None,
        currency: str = "USD",
        transaction_date: Optional[date] = None,
        transaction_id: Optional[str] = None,
        card_brand: Optional[str] = None,
        card_last_four: Optional[str] = None,
        cardholder_name: Optional[str] = None,
        confirmation_number: Optional[str] = None,
    ) -> Chargeback:
        """Minimal chargeback record needed for matching"""
        fields: Dict[str, Any] = {
            "property_id": property_id,
            "amount": amount,
            "currency": currency,
            "transaction_date": transaction_date,
            "transaction_id": transaction_id,
            "card_brand": card_brand,
            "card_last_four": card_last_four,
            "cardholder_name": cardholder_name,
            "confirmation_number": confirmation_number,
        }
        if chargeback_id is not None:
            fields["id"] = chargeback_id
        async with self.database.session() as session:
            chargeback = await ChargebackRepository(session).create(**fields)
        logger.info("chargeback_recorded", chargeback_id=chargeback.id, property_id=property_id)
        return chargeback

    async def receive_chargeback_alert(self, property_id: str, alert: ChargebackAlert) -> AlertIntakeResult:
        """Open or refresh the case an alert names, then match it to a stay"""
        return await self.alerts.receive(property_id, alert)

    async def ingest_dispute_webhook(
        self,
        property_id: str,
        adapter: BaseDisputeAdapter,
        body: bytes,
        headers: Mapping[str, str],
        secret: str,
    ) -> AlertIntakeResult:
        """
        Verify a dispute-network delivery and open or refresh its case.

        Raises:
            WebhookVerificationError: unsigned, badly signed or refused payload
            PermanentAdapterError: body is not a recognizable network event
        """
        vendor = adapter.vendor_type
        self.orchestrator.webhooks.verify(f"{vendor}:{property_id}", type(adapter), body, headers, secret)
        try:
            payload = json.loads(body)
        except ValueError:
            raise PermanentAdapterError("Webhook body is not valid JSON", status_code=400, vendor=vendor)
        if not isinstance(payload, dict):
            raise PermanentAdapterError("Webhook body must be a JSON object", status_code=400, vendor=vendor)
        event = adapter.parse_webhook(payload)
        return await self.alerts.receive(property_id, event.alert)

    async def match_reservation(self, chargeback_id: str, override: bool = False) -> Optional[ReservationMatch]:
        return await self.matching.match_reservation(chargeback_id, override=override)

    async def link_reservation(self, chargeback_id: str, reservation_id: str) -> ReservationMatch:
        return await self.matching.link_reservation(chargeback_id, reservation_id)

    async def batch_match(self, chargeback_ids: Iterable[str]) -> Dict[str, Optional[ReservationMatch]]:
        return await self.matching.batch_match(chargeback_ids)

    # Evidence
    async def collect_evidence_report(
        self, case_id: str, reservation_id: Optional[str] = None, force: bool = False
    ) -> EvidenceCollectionResult:
        """
        Run the evidence fetch plan for a case.

        Without ``reservation_id`` the case's active match is used; a case
        with no match raises MatchNotFoundError. Vendors without document
        support produce an empty result without contacting the vendor.
        """
        async with self.database.session() as session:
            if reservation_id is None:
                match = await MatchRepository(session).active_for(case_id)
                if match is None:
                    raise MatchNotFoundError(case_id)
                reservation_id = match.reservation_id
            reservation = await ReservationRepository(session).get(reservation_id)
            if reservation is None:
                raise ReservationNotFoundError(reservation_id)
            integration = await IntegrationRepository(session).require(reservation.integration_id)

        if not self.registry.get_adapter_class(integration.vendor_type).supports_documents:
            logger.info("evidence_not_supported", case_id=case_id, vendor=integration.vendor_type)
            return EvidenceCollectionResult(case_id=case_id, reservation_id=reservation.id)

        adapter = await self.orchestrator.adapter_for(integration.id)
        return await self.evidence.collect(case_id, reservation, adapter, force=force)

    async def collect_evidence(
        self, case_id: str, reservation_id: Optional[str] = None, force: bool = False
    ) -> List[EvidenceDocument]:
        result = await self.collect_evidence_report(case_id, reservation_id, force)
        return result.documents

    async def list_evidence(self, case_id: str) -> List[EvidenceDocument]:
        async with self.database.session() as session:
            return await EvidenceRepository(session).list_for_case(case_id)

    async def verify_document(self, document_id: str, verified: bool = True) -> EvidenceDocument:
        async with self.database.session() as session:
            return await EvidenceRepository(session).set_verified(document_id, verified)

    async def case_timeline(self, case_id: str) -> List[TimelineEvent]:
        async with self.database.session() as session:
            return await TimelineRepository(session).list_for_case(case_id)
