"""
Sync Orchestrator

Owns the integration lifecycle, turns polls, manual triggers, webhooks and
case-status changes into jobs on the per-integration queue, runs those jobs
against the vendor adapter and keeps the circuit breaker.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from pms_connectors.contracts import (
    AuthenticationError,
    BaseAdapter,
    CanonicalReservation,
    ChargebackAlert,
    IntegrationError,
    NotFoundError,
    PermanentAdapterError,
    ReservationCriteria,
    UnsupportedCapabilityError,
    WebhookEventType,
    WebhookVerificationError,
)
from pms_connectors.credentials import CredentialCipher, parse_credentials
from pms_connectors.factory import SYNC_INTERVAL_TIERS, AdapterRegistry, get_registry
from pms_connectors.retry import CallResult, call_with_retry
from pms_connectors.utils.logging import get_safe_logger, with_correlation_id

from ..alerts import ChargebackAlertIntake
from ..config import SyncSettings
from ..core.exceptions import (
    ChargebackNotFoundError,
    FolioBalanceMismatchError,
    IntegrationNotConnectedError,
    InvalidSyncIntervalError,
    TwoWaySyncDisabledError,
)
from ..database.connection import Database
from ..database.models import Integration, SyncLog, utcnow
from ..database.repository import (
    ChargebackRepository,
    IntegrationRepository,
    MatchRepository,
    ReservationRepository,
    SyncLogFilter,
    SyncLogRepository,
)
from ..folio import check_reconciled
from ..metrics import (
    adapter_calls_total,
    adapter_retries_total,
    circuit_breaker_trips_total,
    integrations_by_status,
    sync_job_duration,
    sync_jobs_total,
    webhook_deliveries_total,
)
from ..webhook_security import WebhookVerifier
from .health import IntegrationHealth, compute_health, consecutive_failures
from .job_queue import IntegrationJobQueue, JobPriority, SyncJob
from .scheduler import SyncScheduler
from .state import IntegrationState, IntegrationStateMachine

logger = get_safe_logger("defense_sync.sync.orchestrator")

SYNC_TYPES = ("full", "incremental", "webhook")
DIRECTIONS = ("inbound", "outbound")

WEBHOOK_ENTITY_TYPES = {
    WebhookEventType.RESERVATION_CREATED: "reservation",
    WebhookEventType.RESERVATION_UPDATED: "reservation",
    WebhookEventType.FOLIO_UPDATED: "folio",
    WebhookEventType.CHARGEBACK_ALERT: "chargeback_alert",
}


@dataclass
class JobOutcome:
    processed: int = 0
    failed: int = 0
    error: Optional[IntegrationError] = None
    record_errors: Dict[str, str] = field(default_factory=dict)

    def record_failure(self, external_id: str, reason: str) -> None:
        self.failed += 1
        self.record_errors[external_id] = reason

    @property
    def status(self) -> str:
        if self.error is not None:
            return "failed"
        if self.failed:
            return "partial" if self.processed else "failed"
        return "completed"

    @property
    def error_message(self) -> Optional[str]:
        if self.error is not None:
            return f"{type(self.error).__name__}: {self.error}"
        if self.record_errors:
            external_id, reason = next(iter(self.record_errors.items()))
            return f"{self.failed} record(s) failed; first {external_id}: {reason}"
        return None


class SyncOrchestrator:
    """Integration lifecycle and sync job execution"""

    def __init__(
        self,
        database: Database,
        settings: SyncSettings,
        cipher: Optional[CredentialCipher] = None,
        registry: Optional[AdapterRegistry] = None,
        http_options: Optional[Dict[str, Any]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        scheduler: Optional[SyncScheduler] = None,
        webhook_verifier: Optional[WebhookVerifier] = None,
        alerts: Optional[ChargebackAlertIntake] = None,
    ):
        self.database = database
        self.settings = settings
        self.cipher = cipher or CredentialCipher(settings.credentials_key.get_secret_value())
        self.registry = registry or get_registry()
        self.http_options = dict(http_options or {})
        self.retry_policy = settings.retry_policy()
        self.webhooks = webhook_verifier or WebhookVerifier()
        self.alerts = alerts or ChargebackAlertIntake(database)
        self.states = IntegrationStateMachine()
        self.queue = IntegrationJobQueue(self._run_job, max_workers=settings.max_workers)
        self.scheduler = scheduler or SyncScheduler(self._scheduled_tick)
        self._sleep = sleep
        self._adapters: Dict[str, BaseAdapter] = {}
        self._cancel_reasons: Dict[str, str] = {}

    # Startup and shutdown
    async def start(self) -> None:
        """Restore lifecycle state from the store and resume polling"""
        async with self.database.session() as session:
            integrations = await IntegrationRepository(session).list_all(include_disconnected=True)
        scheduled = 0
        for integration in integrations:
            state = self.states.restore(integration.id, integration.status)
            if state == IntegrationState.IDLE and integration.sync_enabled:
                self.scheduler.schedule(integration.id, integration.sync_interval_minutes)
                scheduled += 1
        await self._refresh_status_gauge()
        logger.info("sync_orchestrator_started", integrations=len(integrations), scheduled=scheduled)

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
        for integration_id in list(self._adapters):
            self._cancel_reasons[integration_id] = "Sync cancelled: engine shutting down"
        affected = await self.queue.shutdown()
        for job in affected:
            await self._finalize_if_open(job.sync_log_id, "Sync cancelled: engine shutting down")
        for integration_id in list(self._adapters):
            await self._discard_adapter(integration_id)
        logger.info("sync_orchestrator_stopped", cancelled_jobs=len(affected))

    # Adapter plumbing
    def _build_adapter(self, integration: Integration) -> BaseAdapter:
        config: Dict[str, Any] = dict(integration.options or {})
        config["credentials"] = self.cipher.decrypt(integration.credentials)
        config["property_id"] = integration.property_id
        if not config.get("timeout") and self.settings.adapter_timeout_seconds:
            config["timeout"] = self.settings.adapter_timeout_seconds
        if self.http_options:
            config["http_options"] = dict(self.http_options)
        return self.registry.create(integration.vendor_type, config)

    async def _call(self, adapter: BaseAdapter, operation: str, func, *args, **kwargs) -> CallResult:
        call = await call_with_retry(
            func, *args, policy=self.retry_policy, operation=operation, sleep=self._sleep, **kwargs
        )
        if call.attempts > 1:
            adapter_retries_total.labels(vendor=adapter.vendor_type, operation=operation).inc(call.attempts - 1)
        adapter_calls_total.labels(
            vendor=adapter.vendor_type, operation=operation, outcome="ok" if call.ok else "error"
        ).inc()
        return call

    async def _adapter_for(self, integration: Integration) -> BaseAdapter:
        """Cached, authenticated adapter for the integration"""
        adapter = self._adapters.get(integration.id)
        if adapter is None:
            adapter = self._build_adapter(integration)
            self._adapters[integration.id] = adapter
        if not adapter.is_authenticated:
            call = await self._call(adapter, "authenticate", adapter.authenticate)
            call.unwrap()
        return adapter

    async def adapter_for(self, integration_id: str) -> BaseAdapter:
        async with self.database.session() as session:
            integration = await IntegrationRepository(session).require(integration_id)
        if not self.states.is_active(integration_id):
            raise IntegrationNotConnectedError(integration_id, self.states.get(integration_id).value)
        adapter = await self._adapter_for(integration)
        await self._persist_refreshed_credentials(integration_id, adapter)
        return adapter

    async def _discard_adapter(self, integration_id: str) -> None:
        adapter = self._adapters.pop(integration_id, None)
        if adapter is not None:
            await adapter.close()

    async def _persist_refreshed_credentials(self, integration_id: str, adapter: Optional[BaseAdapter]) -> None:
        if adapter is None or not adapter.credentials_updated:
            return
        async with self.database.session() as session:
            await IntegrationRepository(session).update(
                integration_id, credentials=self.cipher.encrypt(adapter.credentials)
            )
        adapter.credentials_updated = False
        logger.info("integration_credentials_refreshed", integration_id=integration_id)

    # Lifecycle
    def _resolve_interval(self, vendor_type: str, requested: Optional[int]) -> int:
        if requested is None:
            metadata = self.registry.get_metadata(vendor_type)
            vendor_default = metadata.default_sync_interval_minutes if metadata else 15
            return max(vendor_default, self.settings.default_sync_interval_minutes)
        if requested not in SYNC_INTERVAL_TIERS:
            raise InvalidSyncIntervalError(
                f"Sync interval {requested} is not one of {SYNC_INTERVAL_TIERS} minutes",
                details={"allowed": list(SYNC_INTERVAL_TIERS)},
            )
        return requested

    async def connect_integration(
        self,
        property_id: str,
        vendor_type: str,
        credentials: Mapping[str, Any],
        *,
        sync_enabled: bool = True,
        two_way_sync: bool = False,
        sync_interval_minutes: Optional[int] = None,
        options: Optional[Dict[str, Any]] = None,
        webhook_secret: Optional[str] = None,
    ) -> Integration:
        """
        Register an integration and connect it.

        Caller errors (unknown vendor, malformed credentials, bad interval)
        raise. A vendor rejecting the credentials does not: the integration
        is returned with status ``error`` and the reason in ``error_message``.
        """
        adapter_class = self.registry.get_adapter_class(vendor_type)
        parsed = parse_credentials(adapter_class.auth_type, credentials)
        interval = self._resolve_interval(adapter_class.vendor_type, sync_interval_minutes)

        async with self.database.session() as session:
            integration = await IntegrationRepository(session).create(
                property_id=property_id,
                vendor_type=adapter_class.vendor_type,
                auth_type=adapter_class.auth_type.value,
                credentials=self.cipher.encrypt(parsed),
                webhook_secret=self.cipher.encrypt_secret(webhook_secret) if webhook_secret else None,
                status="disconnected",
                sync_enabled=sync_enabled,
                two_way_sync=two_way_sync,
                sync_interval_minutes=interval,
                options=dict(options or {}),
            )
        logger.info(
            "integration_created",
            integration_id=integration.id,
            property_id=property_id,
            vendor_type=integration.vendor_type,
            sync_interval_minutes=interval,
        )
        return await self._connect(integration.id)

    async def _connect(self, integration_id: str) -> Integration:
        self.states.transition(integration_id, IntegrationState.CONNECTING)
        self.scheduler.unschedule(integration_id)
        await self._discard_adapter(integration_id)

        async with self.database.session() as session:
            integration = await IntegrationRepository(session).require(integration_id)

        error: Optional[IntegrationError] = None
        adapter: Optional[BaseAdapter] = None
        try:
            adapter = self._build_adapter(integration)
        except IntegrationError as e:
            error = e
        if adapter is not None:
            call = await self._call(adapter, "authenticate", adapter.authenticate)
            error = call.error

        if error is not None:
            if adapter is not None:
                await adapter.close()
            self.states.transition(integration_id, IntegrationState.ERROR)
            async with self.database.session() as session:
                integration = await IntegrationRepository(session).update(
                    integration_id, status="error", error_message=str(error)
                )
            logger.warning(
                "integration_connect_failed",
                integration_id=integration_id,
                vendor_type=integration.vendor_type,
                error_type=type(error).__name__,
                error=str(error),
            )
            await self._refresh_status_gauge()
            return integration

        self._adapters[integration_id] = adapter
        self.states.transition(integration_id, IntegrationState.CONNECTED)
        fields: Dict[str, Any] = {
            "status": "connected",
            "error_message": None,
            "connected_at": utcnow(),
            "disconnected_at": None,
        }
        if adapter.credentials_updated:
            fields["credentials"] = self.cipher.encrypt(adapter.credentials)
            adapter.credentials_updated = False
        fields.update(await self._subscribe_webhooks(integration, adapter))

        async with self.database.session() as session:
            integration = await IntegrationRepository(session).update(integration_id, **fields)

        self.states.transition(integration_id, IntegrationState.IDLE)
        if integration.sync_enabled:
            self.scheduler.schedule(integration_id, integration.sync_interval_minutes)
        await self._refresh_status_gauge()
        logger.info(
            "integration_connected",
            integration_id=integration_id,
            vendor_type=integration.vendor_type,
            webhooks=bool(integration.webhook_subscription_id),
        )
        return integration

    async def _subscribe_webhooks(self, integration: Integration, adapter: BaseAdapter) -> Dict[str, Any]:
        base_url = self.settings.webhook_callback_base_url
        if not adapter.supports_webhooks or not base_url or integration.webhook_subscription_id:
            return {}
        callback_url = f"{base_url}/v1/webhooks/{integration.id}"
        call = await self._call(adapter, "subscribe_webhook", adapter.subscribe_webhook, callback_url)
        if not call.ok:
            # Polling still covers the integration
            logger.warning(
                "webhook_subscription_failed",
                integration_id=integration.id,
                vendor_type=integration.vendor_type,
                error=str(call.error),
            )
            return {}
        subscription = call.value
        fields: Dict[str, Any] = {"webhook_subscription_id": subscription.subscription_id}
        if subscription.secret:
            fields["webhook_secret"] = self.cipher.encrypt_secret(subscription.secret)
        logger.info("webhook_subscribed", integration_id=integration.id, subscription_id=subscription.subscription_id)
        return fields

    async def reconnect_integration(
        self, integration_id: str, credentials: Optional[Mapping[str, Any]] = None
    ) -> Integration:
        """Manual resume after an error or disconnect, optionally with new credentials"""
        self.states.ensure_can(integration_id, IntegrationState.CONNECTING)
        async with self.database.session() as session:
            repository = IntegrationRepository(session)
            integration = await repository.require(integration_id)
            if credentials is not None:
                adapter_class = self.registry.get_adapter_class(integration.vendor_type)
                parsed = parse_credentials(adapter_class.auth_type, credentials)
                await repository.update(integration_id, credentials=self.cipher.encrypt(parsed))
        logger.info("integration_reconnect_requested", integration_id=integration_id, new_credentials=credentials is not None)
        return await self._connect(integration_id)

    async def update_credentials(self, integration_id: str, credentials: Mapping[str, Any]) -> Integration:
        return await self.reconnect_integration(integration_id, credentials)

    async def disconnect_integration(self, integration_id: str) -> Integration:
        """Soft delete: stop polling, cancel the running job and drop queued ones"""
        async with self.database.session() as session:
            integration = await IntegrationRepository(session).require(integration_id)
        if integration.status == "disconnected" and self.states.get(integration_id) == IntegrationState.DISCONNECTED:
            return integration

        self.scheduler.unschedule(integration_id)
        reason = "Sync cancelled: integration disconnected"
        self._cancel_reasons[integration_id] = reason
        try:
            dropped, running, task = self.queue.cancel_integration(integration_id)
            if task is not None:
                await asyncio.wait({task})
            for job in dropped + ([running] if running is not None else []):
                await self._finalize_if_open(job.sync_log_id, reason)
        finally:
            self._cancel_reasons.pop(integration_id, None)

        await self._discard_adapter(integration_id)
        if self.states.get(integration_id) != IntegrationState.DISCONNECTED:
            self.states.transition(integration_id, IntegrationState.DISCONNECTED)
        async with self.database.session() as session:
            integration = await IntegrationRepository(session).update(
                integration_id, status="disconnected", disconnected_at=utcnow()
            )
        await self._refresh_status_gauge()
        logger.info(
            "integration_disconnected",
            integration_id=integration_id,
            dropped_jobs=len(dropped),
            cancelled_running=running is not None,
        )
        return integration

    # Job intake
    async def trigger_sync(
        self,
        integration_id: str,
        sync_type: str = "incremental",
        direction: str = "inbound",
        *,
        entity_type: str = "reservation",
        trigger: str = "manual",
        payload: Optional[Dict[str, Any]] = None,
    ) -> SyncLog:
        """Queue a sync job and return its ``started`` log row without waiting"""
        if sync_type not in SYNC_TYPES:
            raise ValueError(f"sync_type must be one of {SYNC_TYPES}")
        if direction not in DIRECTIONS:
            raise ValueError(f"direction must be one of {DIRECTIONS}")
        payload = dict(payload or {})

        async with self.database.session() as session:
            integration = await IntegrationRepository(session).require(integration_id)
        if not self.states.is_active(integration_id):
            raise IntegrationNotConnectedError(integration_id, self.states.get(integration_id).value)
        if direction == "outbound":
            if not integration.two_way_sync:
                raise TwoWaySyncDisabledError(integration_id)
            if not self.registry.get_adapter_class(integration.vendor_type).supports_push:
                raise UnsupportedCapabilityError("push_case_update", vendor=integration.vendor_type)
            if "case_id" not in payload or "status" not in payload:
                raise ValueError("outbound sync needs case_id and status in its payload")

        async with self.database.session() as session:
            log = await SyncLogRepository(session).create(
                integration_id, direction, sync_type, entity_type=entity_type, trigger=trigger
            )

        priority = JobPriority.HIGH if trigger in ("manual", "webhook") else JobPriority.NORMAL
        self.queue.enqueue(
            SyncJob(
                integration_id=integration_id,
                sync_log_id=log.id,
                direction=direction,
                sync_type=sync_type,
                entity_type=entity_type,
                trigger=trigger,
                priority=priority,
                payload=payload,
            )
        )
        logger.info(
            "sync_triggered",
            integration_id=integration_id,
            sync_log_id=log.id,
            sync_type=sync_type,
            direction=direction,
            trigger=trigger,
        )
        return log

    async def _scheduled_tick(self, integration_id: str) -> None:
        if not self.states.is_active(integration_id):
            return
        if self.queue.has_pending_poll(integration_id):
            self.queue.note_coalesced(integration_id)
            logger.debug("scheduled_sync_coalesced", integration_id=integration_id)
            return
        await self.trigger_sync(integration_id, "incremental", trigger="scheduled")

    async def ingest_webhook(self, integration_id: str, body: bytes, headers: Mapping[str, str]) -> SyncLog:
        """
        Verify a vendor delivery and queue a priority sync for it.

        Raises:
            WebhookVerificationError: unsigned, badly signed or refused payload
            IntegrationNotConnectedError: integration is not active
            PermanentAdapterError: body is not a recognizable vendor event
        """
        async with self.database.session() as session:
            integration = await IntegrationRepository(session).require(integration_id)
        vendor = integration.vendor_type
        adapter_class = self.registry.get_adapter_class(vendor)
        secret = self.cipher.decrypt_secret(integration.webhook_secret) if integration.webhook_secret else None

        try:
            self.webhooks.verify(integration_id, adapter_class, body, headers, secret)
        except WebhookVerificationError:
            webhook_deliveries_total.labels(vendor=vendor, outcome="rejected").inc()
            raise

        if not self.states.is_active(integration_id):
            webhook_deliveries_total.labels(vendor=vendor, outcome="ignored").inc()
            raise IntegrationNotConnectedError(integration_id, self.states.get(integration_id).value)

        try:
            payload = json.loads(body)
        except ValueError:
            webhook_deliveries_total.labels(vendor=vendor, outcome="invalid").inc()
            raise PermanentAdapterError("Webhook body is not valid JSON", status_code=400, vendor=vendor)
        if not isinstance(payload, dict):
            webhook_deliveries_total.labels(vendor=vendor, outcome="invalid").inc()
            raise PermanentAdapterError("Webhook body must be a JSON object", status_code=400, vendor=vendor)

        adapter = self._adapters.get(integration_id)
        if adapter is None:
            adapter = self._adapters[integration_id] = self._build_adapter(integration)
        try:
            event = adapter.parse_webhook(payload)
        except PermanentAdapterError:
            webhook_deliveries_total.labels(vendor=vendor, outcome="invalid").inc()
            raise
        job_payload: Dict[str, Any] = {"external_id": event.external_id, "event_type": event.event_type.value}
        if event.event_type == WebhookEventType.CHARGEBACK_ALERT:
            if event.alert is None:
                webhook_deliveries_total.labels(vendor=vendor, outcome="invalid").inc()
                raise PermanentAdapterError("Chargeback alert carries no case details", vendor=vendor)
            job_payload["alert"] = event.alert

        log = await self.trigger_sync(
            integration_id,
            "webhook",
            entity_type=WEBHOOK_ENTITY_TYPES[event.event_type],
            trigger="webhook",
            payload=job_payload,
        )
        webhook_deliveries_total.labels(vendor=vendor, outcome="accepted").inc()
        logger.info(
            "webhook_accepted",
            integration_id=integration_id,
            event_type=event.event_type.value,
            external_id=event.external_id,
            sync_log_id=log.id,
        )
        return log

    async def notify_case_status(self, case_id: str, status: str, notes: Optional[str] = None) -> Optional[SyncLog]:
        """
        Record a case status change and push it to the PMS when two-way sync allows.

        Returns the outbound sync log, or None when nothing is pushed.
        """
        async with self.database.session() as session:
            chargeback = await ChargebackRepository(session).get(case_id)
            if chargeback is None:
                raise ChargebackNotFoundError(case_id)
            chargeback.status = status
            match = await MatchRepository(session).active_for(case_id)
            reservation = await ReservationRepository(session).get(match.reservation_id) if match else None
            integration = (
                await IntegrationRepository(session).get(reservation.integration_id) if reservation else None
            )

        if integration is None:
            logger.info("case_status_not_pushed", case_id=case_id, reason="no_linked_reservation")
            return None
        adapter_class = self.registry.get_adapter_class(integration.vendor_type)
        if not integration.two_way_sync or not adapter_class.supports_push:
            logger.info("case_status_not_pushed", case_id=case_id, reason="push_not_enabled")
            return None
        if not self.states.is_active(integration.id):
            logger.warning("case_status_not_pushed", case_id=case_id, reason="integration_not_connected")
            return None

        return await self.trigger_sync(
            integration.id,
            "incremental",
            "outbound",
            entity_type="case_status",
            trigger="case_status",
            payload={
                "case_id": case_id,
                "status": status,
                "reservation_external_id": reservation.external_id,
                "notes": notes,
            },
        )

    # Job execution
    async def _finalize(
        self,
        log_id: str,
        status: str,
        records_processed: int = 0,
        records_failed: int = 0,
        error_message: Optional[str] = None,
    ) -> SyncLog:
        async with self.database.session() as session:
            return await SyncLogRepository(session).finalize(
                log_id, status, records_processed, records_failed, error_message
            )

    async def _finalize_if_open(self, log_id: str, reason: str) -> None:
        async with self.database.session() as session:
            repository = SyncLogRepository(session)
            log = await repository.get(log_id)
            if log is not None and not log.is_finalized:
                await repository.finalize(log_id, "failed", error_message=reason)

    def _settle(self, integration_id: str) -> None:
        if self.states.get(integration_id) == IntegrationState.SYNCING:
            self.states.transition(integration_id, IntegrationState.IDLE)

    async def _run_job(self, job: SyncJob) -> None:
        with_correlation_id()
        log = logger.bind(
            integration_id=job.integration_id,
            sync_log_id=job.sync_log_id,
            direction=job.direction,
            trigger=job.trigger,
        )
        integration_id = job.integration_id
        if not self.states.is_active(integration_id):
            await self._finalize(
                job.sync_log_id,
                "failed",
                error_message=f"Integration is {self.states.get(integration_id).value}",
            )
            return

        async with self.database.session() as session:
            integration = await IntegrationRepository(session).require(integration_id)
            started_log = await SyncLogRepository(session).mark_started(job.sync_log_id)
        launched_at = started_log.started_at
        self.states.transition(integration_id, IntegrationState.SYNCING)
        log.info("sync_job_started", sync_type=job.sync_type)

        outcome = JobOutcome()
        adapter: Optional[BaseAdapter] = None
        started = time.perf_counter()
        try:
            adapter = await self._adapter_for(integration)
            if job.direction == "outbound":
                await self._run_outbound(adapter, job, outcome)
            else:
                await self._run_inbound(integration, adapter, job, outcome)
        except asyncio.CancelledError:
            reason = self._cancel_reasons.get(integration_id, "Sync cancelled")
            await self._finalize(
                job.sync_log_id, "failed", outcome.processed, outcome.failed, error_message=reason
            )
            sync_jobs_total.labels(vendor=integration.vendor_type, direction=job.direction, status="cancelled").inc()
            log.warning("sync_job_cancelled", reason=reason, records_processed=outcome.processed)
            raise
        except IntegrationError as e:
            outcome.error = e
        except Exception as e:
            await self._finalize(
                job.sync_log_id,
                "failed",
                outcome.processed,
                outcome.failed,
                error_message=f"Unexpected {type(e).__name__}: {e}",
            )
            self._settle(integration_id)
            raise

        await self._finalize(
            job.sync_log_id, outcome.status, outcome.processed, outcome.failed, outcome.error_message
        )
        duration = time.perf_counter() - started
        sync_jobs_total.labels(vendor=integration.vendor_type, direction=job.direction, status=outcome.status).inc()
        sync_job_duration.labels(vendor=integration.vendor_type, direction=job.direction).observe(duration)
        log.info(
            "sync_job_finished",
            status=outcome.status,
            records_processed=outcome.processed,
            records_failed=outcome.failed,
            duration_ms=int(duration * 1000),
            error=outcome.error_message,
        )
        await self._after_job(integration, adapter, job, outcome, launched_at)

    async def _after_job(
        self,
        integration: Integration,
        adapter: Optional[BaseAdapter],
        job: SyncJob,
        outcome: JobOutcome,
        launched_at: datetime,
    ) -> None:
        integration_id = integration.id
        if (
            job.direction == "inbound"
            and job.sync_type in ("full", "incremental")
            and outcome.status in ("completed", "partial")
        ):
            async with self.database.session() as session:
                await IntegrationRepository(session).update(integration_id, last_sync_at=launched_at)
        await self._persist_refreshed_credentials(integration_id, adapter)

        if isinstance(outcome.error, AuthenticationError):
            await self._trip(integration_id, "authentication", f"Authentication failed: {outcome.error}")
            return
        if outcome.status == "failed":
            threshold = self.settings.failure_threshold
            async with self.database.session() as session:
                current = await IntegrationRepository(session).require(integration_id)
                recent = await SyncLogRepository(session).finalized_since(
                    integration_id, current.connected_at, threshold
                )
            failures = consecutive_failures(recent)
            if failures >= threshold:
                await self._trip(
                    integration_id,
                    "consecutive_failures",
                    f"{failures} consecutive failed syncs; last error: {outcome.error_message}",
                )
                return
        self._settle(integration_id)

    async def _trip(self, integration_id: str, reason: str, message: str) -> None:
        """Open the circuit breaker: error state, no polling, queued jobs dropped"""
        if self.states.get(integration_id) in (IntegrationState.ERROR, IntegrationState.DISCONNECTED):
            return
        self.states.transition(integration_id, IntegrationState.ERROR)
        self.scheduler.unschedule(integration_id)
        dropped = self.queue.drop_pending(integration_id)
        for job in dropped:
            await self._finalize_if_open(job.sync_log_id, f"Circuit breaker open: {message}")
        async with self.database.session() as session:
            integration = await IntegrationRepository(session).update(
                integration_id, status="error", error_message=message
            )
        await self._discard_adapter(integration_id)
        circuit_breaker_trips_total.labels(vendor=integration.vendor_type, reason=reason).inc()
        await self._refresh_status_gauge()
        logger.error(
            "circuit_breaker_opened",
            integration_id=integration_id,
            vendor_type=integration.vendor_type,
            reason=reason,
            dropped_jobs=len(dropped),
            error=message,
        )

    async def _run_inbound(
        self, integration: Integration, adapter: BaseAdapter, job: SyncJob, outcome: JobOutcome
    ) -> None:
        external_id = job.payload.get("external_id")
        alert: Optional[ChargebackAlert] = job.payload.get("alert")
        if alert is not None and not external_id:
            reservations = []
        elif job.sync_type == "webhook" and external_id:
            call = await self._call(adapter, "get_reservation", adapter.get_reservation, external_id)
            if alert is not None and isinstance(call.error, NotFoundError):
                # The case still opens and matches against stored reservations
                reservations = []
            else:
                reservations = [call.unwrap()]
        else:
            # last_sync_at advances to launch time, so every changed row must be read
            criteria = ReservationCriteria(
                limit=self.settings.sync_batch_limit,
                modified_since=integration.last_sync_at if job.sync_type != "full" else None,
                exhaustive=True,
            )
            call = await self._call(adapter, "search_reservations", adapter.search_reservations, criteria)
            reservations = call.unwrap()

        for reservation in reservations:
            await self._sync_reservation(integration, adapter, reservation, outcome)
        if alert is not None:
            await self.alerts.receive(integration.property_id, alert)
            outcome.processed += 1

    async def _sync_reservation(
        self,
        integration: Integration,
        adapter: BaseAdapter,
        reservation: CanonicalReservation,
        outcome: JobOutcome,
    ) -> None:
        folio_call = await self._call(adapter, "get_folio", adapter.get_folio, reservation.external_id)
        if isinstance(folio_call.error, AuthenticationError):
            raise folio_call.error

        async with self.database.session() as session:
            reservations = ReservationRepository(session)
            row, created = await reservations.upsert(integration.id, integration.property_id, reservation)
            if isinstance(folio_call.error, NotFoundError):
                # No folio opened yet, e.g. a future stay
                outcome.processed += 1
                return
            if folio_call.error is not None:
                outcome.record_failure(reservation.external_id, str(folio_call.error))
                return
            folio = folio_call.value
            try:
                check_reconciled(
                    reservation.external_id,
                    folio.items,
                    folio.reported_balance,
                    self.settings.folio_balance_tolerance,
                )
            except FolioBalanceMismatchError as e:
                outcome.record_failure(reservation.external_id, e.message)
                logger.warning(
                    "folio_not_reconciled",
                    integration_id=integration.id,
                    reservation_external_id=reservation.external_id,
                    **e.details,
                )
                return
            await reservations.replace_folio(row.id, folio.items)
        outcome.processed += 1

    async def _run_outbound(self, adapter: BaseAdapter, job: SyncJob, outcome: JobOutcome) -> None:
        payload = job.payload
        call = await self._call(
            adapter,
            "push_case_update",
            adapter.push_case_update,
            payload["case_id"],
            payload["status"],
            payload.get("reservation_external_id"),
            payload.get("notes"),
        )
        call.unwrap()
        outcome.processed = 1

    # Status surface
    async def health(self, integration_id: str) -> IntegrationHealth:
        window = self.settings.health_window_hours
        async with self.database.session() as session:
            await IntegrationRepository(session).require(integration_id)
            logs = SyncLogRepository(session)
            window_logs = await logs.since(integration_id, utcnow() - timedelta(hours=window))
            latest = await logs.latest(integration_id)
            recent = await logs.finalized_since(integration_id, None, self.settings.failure_threshold * 4)
        return compute_health(integration_id, window_logs, latest, consecutive_failures(recent), window)

    async def get_sync_status(self, integration_id: Optional[str] = None) -> Dict[str, Any]:
        async with self.database.session() as session:
            repository = IntegrationRepository(session)
            if integration_id is not None:
                integrations = [await repository.require(integration_id)]
            else:
                integrations = await repository.list_all(include_disconnected=True)

        entries: List[Dict[str, Any]] = []
        for integration in integrations:
            entry = integration.to_dict()
            entry["state"] = self.states.get(integration.id).value
            entry["scheduled"] = self.scheduler.is_scheduled(integration.id)
            entry["health"] = (await self.health(integration.id)).to_dict()
            entries.append(entry)
        return {"integrations": entries, "queues": self.queue.stats(integration_id)}

    async def get_sync_logs(
        self, filters: Optional[SyncLogFilter] = None, limit: int = 50, offset: int = 0
    ) -> List[SyncLog]:
        async with self.database.session() as session:
            return await SyncLogRepository(session).query(filters, limit=limit, offset=offset)

    async def _refresh_status_gauge(self) -> None:
        async with self.database.session() as session:
            counts = await IntegrationRepository(session).count_by_status()
        for status in ("connected", "error", "disconnected"):
            integrations_by_status.labels(status=status).set(counts.get(status, 0))
