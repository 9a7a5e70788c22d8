"""
Repositories for sync engine persistence

Repositories flush but never commit; the session owner decides the
transaction boundary.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pms_connectors.contracts import CanonicalReservation, ChargebackAlert, FolioLineItem
from pms_connectors.utils.logging import get_safe_logger

from ..core.exceptions import (
    EvidenceDocumentNotFoundError,
    IntegrationNotFoundError,
    SyncLogFinalizedError,
)
from .models import (
    Chargeback,
    EvidenceDocument,
    FolioLineItemRecord,
    Integration,
    Reservation,
    ReservationMatch,
    SyncLog,
    TimelineEvent,
    utcnow,
)

logger = get_safe_logger("defense_sync.database.repository")

_RESERVATION_FIELDS = (
    "confirmation_number",
    "guest_name",
    "guest_email",
    "guest_phone",
    "check_in_date",
    "check_out_date",
    "actual_check_in",
    "actual_check_out",
    "room_number",
    "room_type",
    "rate_code",
    "rate_amount",
    "total_amount",
    "currency",
    "card_brand",
    "card_last_four",
    "booking_source",
    "is_flagged",
    "sync_source",
    "updated_at",
)

_ALERT_FIELDS = (
    "amount",
    "transaction_date",
    "transaction_id",
    "card_brand",
    "card_last_four",
    "cardholder_name",
    "confirmation_number",
    "reason_code",
    "due_date",
)


class IntegrationRepository:
    """Repository for integration records"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields: Any) -> Integration:
        integration = Integration(**fields)
        self.session.add(integration)
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error("integration_creation_failed", vendor_type=fields.get("vendor_type"), error=str(e))
            raise
        return integration

    async def get(self, integration_id: str) -> Optional[Integration]:
        return await self.session.get(Integration, integration_id)

    async def require(self, integration_id: str) -> Integration:
        integration = await self.get(integration_id)
        if integration is None:
            raise IntegrationNotFoundError(integration_id)
        return integration

    async def list_all(self, property_id: Optional[str] = None, include_disconnected: bool = False) -> List[Integration]:
        stmt = select(Integration).order_by(Integration.created_at, Integration.id)
        if property_id is not None:
            stmt = stmt.where(Integration.property_id == property_id)
        if not include_disconnected:
            stmt = stmt.where(Integration.status != "disconnected")
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update(self, integration_id: str, **fields: Any) -> Integration:
        integration = await self.require(integration_id)
        for key, value in fields.items():
            setattr(integration, key, value)
        await self.session.flush()
        return integration

    async def count_by_status(self) -> Dict[str, int]:
        stmt = select(Integration.status, func.count()).group_by(Integration.status)
        result = await self.session.execute(stmt)
        return {status: count for status, count in result.all()}


class ReservationRepository:
    """Canonical reservations and their folio lines"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, reservation_id: str) -> Optional[Reservation]:
        return await self.session.get(Reservation, reservation_id)

    async def get_by_external_id(self, integration_id: str, external_id: str) -> Optional[Reservation]:
        stmt = select(Reservation).where(
            Reservation.integration_id == integration_id, Reservation.external_id == external_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(
        self, integration_id: str, property_id: str, canonical: CanonicalReservation
    ) -> Tuple[Reservation, bool]:
        """Insert or update by (integration_id, external_id); returns (row, created)"""
        reservation = await self.get_by_external_id(integration_id, canonical.external_id)
        created = reservation is None
        if created:
            reservation = Reservation(
                integration_id=integration_id,
                property_id=property_id,
                external_id=canonical.external_id,
            )
            self.session.add(reservation)
        for name in _RESERVATION_FIELDS:
            setattr(reservation, name, getattr(canonical, name))
        reservation.status = canonical.status.value
        await self.session.flush()
        return reservation, created

    async def replace_folio(self, reservation_id: str, items: Sequence[FolioLineItem]) -> List[FolioLineItemRecord]:
        await self.session.execute(
            delete(FolioLineItemRecord).where(FolioLineItemRecord.reservation_id == reservation_id)
        )
        records = []
        for position, item in enumerate(items):
            record = FolioLineItemRecord(
                reservation_id=reservation_id,
                external_id=item.external_id,
                position=position,
                posting_date=item.posting_date,
                category=item.category.value,
                description=item.description,
                amount=item.amount,
                currency=item.currency,
                transaction_code=item.transaction_code,
                auth_code=item.auth_code,
            )
            self.session.add(record)
            records.append(record)
        await self.session.flush()
        return records

    async def folio_items(self, reservation_id: str) -> List[FolioLineItemRecord]:
        stmt = (
            select(FolioLineItemRecord)
            .where(FolioLineItemRecord.reservation_id == reservation_id)
            .order_by(FolioLineItemRecord.position)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_confirmation(self, property_id: str, confirmation_number: str) -> List[Reservation]:
        stmt = select(Reservation).where(
            Reservation.property_id == property_id,
            func.upper(Reservation.confirmation_number) == confirmation_number.strip().upper(),
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_card(self, property_id: str, card_last_four: str) -> List[Reservation]:
        stmt = select(Reservation).where(
            Reservation.property_id == property_id, Reservation.card_last_four == card_last_four
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_stay_overlap(self, property_id: str, date_from: date, date_to: date) -> List[Reservation]:
        stmt = select(Reservation).where(
            Reservation.property_id == property_id,
            Reservation.check_in_date <= date_to,
            Reservation.check_out_date >= date_from,
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class ChargebackRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields: Any) -> Chargeback:
        chargeback = Chargeback(**fields)
        self.session.add(chargeback)
        await self.session.flush()
        return chargeback

    async def get(self, chargeback_id: str) -> Optional[Chargeback]:
        return await self.session.get(Chargeback, chargeback_id)

    async def get_by_external_case(self, source: str, external_case_id: str) -> Optional[Chargeback]:
        stmt = select(Chargeback).where(
            Chargeback.source == source, Chargeback.external_case_id == external_case_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_alert(self, property_id: str, alert: ChargebackAlert) -> Tuple[Chargeback, bool]:
        """
        Open or refresh the case an alert describes; returns (row, created).

        Keyed on (source, alert_id). A repeated alert only fills in facts it
        carries, so details entered earlier are not blanked.
        """
        chargeback = await self.get_by_external_case(alert.source, alert.alert_id)
        created = chargeback is None
        if created:
            chargeback = Chargeback(
                property_id=property_id,
                source=alert.source,
                external_case_id=alert.alert_id,
                currency=alert.currency,
            )
            self.session.add(chargeback)
        for name in _ALERT_FIELDS:
            value = getattr(alert, name)
            if value is not None:
                setattr(chargeback, name, value)
        await self.session.flush()
        return chargeback, created


class MatchRepository:
    """Reservation match history; superseded rows are kept"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def active_for(self, chargeback_id: str) -> Optional[ReservationMatch]:
        stmt = select(ReservationMatch).where(
            ReservationMatch.chargeback_id == chargeback_id, ReservationMatch.active.is_(True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def history(self, chargeback_id: str) -> List[ReservationMatch]:
        stmt = (
            select(ReservationMatch)
            .where(ReservationMatch.chargeback_id == chargeback_id)
            .order_by(ReservationMatch.created_at, ReservationMatch.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def supersede_and_create(
        self,
        chargeback_id: str,
        reservation_id: str,
        strategy: str,
        confidence: int,
        manually_confirmed: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ) -> ReservationMatch:
        now = utcnow()
        await self.session.execute(
            update(ReservationMatch)
            .where(ReservationMatch.chargeback_id == chargeback_id, ReservationMatch.active.is_(True))
            .values(active=False, superseded_at=now)
            .execution_options(synchronize_session="fetch")
        )
        match = ReservationMatch(
            chargeback_id=chargeback_id,
            reservation_id=reservation_id,
            strategy=strategy,
            confidence=confidence,
            manually_confirmed=manually_confirmed,
            active=True,
            details=details or {},
            created_at=now,
        )
        self.session.add(match)
        await self.session.flush()
        return match


class EvidenceRepository:
    """Evidence rows are appended; only ``verified`` ever changes"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_existing(
        self, case_id: str, evidence_type: str, source_fetched_at: datetime, content_hash: str
    ) -> Optional[EvidenceDocument]:
        """A document with the same fetch timestamp or the same content"""
        stmt = (
            select(EvidenceDocument)
            .where(EvidenceDocument.case_id == case_id, EvidenceDocument.evidence_type == evidence_type)
            .order_by(EvidenceDocument.created_at)
        )
        result = await self.session.execute(stmt)
        for document in result.scalars():
            if document.source_fetched_at == source_fetched_at or document.content_hash == content_hash:
                return document
        return None

    async def add(self, **fields: Any) -> EvidenceDocument:
        document = EvidenceDocument(**fields)
        self.session.add(document)
        await self.session.flush()
        return document

    async def list_for_case(self, case_id: str) -> List[EvidenceDocument]:
        stmt = (
            select(EvidenceDocument)
            .where(EvidenceDocument.case_id == case_id)
            .order_by(EvidenceDocument.created_at, EvidenceDocument.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def set_verified(self, document_id: str, verified: bool = True) -> EvidenceDocument:
        document = await self.session.get(EvidenceDocument, document_id)
        if document is None:
            raise EvidenceDocumentNotFoundError(f"Evidence document {document_id} not found")
        document.verified = verified
        await self.session.flush()
        return document


@dataclass
class SyncLogFilter:
    integration_id: Optional[str] = None
    direction: Optional[str] = None
    sync_type: Optional[str] = None
    entity_type: Optional[str] = None
    status: Optional[str] = None
    started_after: Optional[datetime] = None
    started_before: Optional[datetime] = None


class SyncLogRepository:
    """Append-only sync log store"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        integration_id: str,
        direction: str,
        sync_type: str,
        entity_type: str = "reservation",
        trigger: str = "manual",
    ) -> SyncLog:
        now = utcnow()
        log = SyncLog(
            integration_id=integration_id,
            direction=direction,
            sync_type=sync_type,
            entity_type=entity_type,
            trigger=trigger,
            status="started",
            queued_at=now,
            started_at=now,
        )
        self.session.add(log)
        await self.session.flush()
        return log

    async def get(self, log_id: str) -> Optional[SyncLog]:
        return await self.session.get(SyncLog, log_id)

    async def _require_open(self, log_id: str) -> SyncLog:
        log = await self.get(log_id)
        if log is None:
            raise LookupError(f"Sync log {log_id} not found")
        if log.is_finalized:
            raise SyncLogFinalizedError(log_id, log.completed_at)
        return log

    async def mark_started(self, log_id: str) -> SyncLog:
        """Stamp the actual launch time of a queued job"""
        log = await self._require_open(log_id)
        log.started_at = utcnow()
        await self.session.flush()
        return log

    async def finalize(
        self,
        log_id: str,
        status: str,
        records_processed: int = 0,
        records_failed: int = 0,
        error_message: Optional[str] = None,
    ) -> SyncLog:
        if status not in ("completed", "failed", "partial"):
            raise ValueError(f"Cannot finalize a sync log as {status!r}")
        log = await self._require_open(log_id)
        completed_at = utcnow()
        log.status = status
        log.records_processed = records_processed
        log.records_failed = records_failed
        log.error_message = error_message
        log.completed_at = completed_at
        log.duration_ms = max(0, int((completed_at - log.started_at).total_seconds() * 1000))
        await self.session.flush()
        return log

    async def query(self, filters: Optional[SyncLogFilter] = None, limit: int = 50, offset: int = 0) -> List[SyncLog]:
        filters = filters or SyncLogFilter()
        stmt = select(SyncLog)
        for column, value in (
            (SyncLog.integration_id, filters.integration_id),
            (SyncLog.direction, filters.direction),
            (SyncLog.sync_type, filters.sync_type),
            (SyncLog.entity_type, filters.entity_type),
            (SyncLog.status, filters.status),
        ):
            if value is not None:
                stmt = stmt.where(column == value)
        if filters.started_after is not None:
            stmt = stmt.where(SyncLog.started_at >= filters.started_after)
        if filters.started_before is not None:
            stmt = stmt.where(SyncLog.started_at < filters.started_before)
        stmt = stmt.order_by(SyncLog.started_at.desc(), SyncLog.id).limit(limit).offset(offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def since(self, integration_id: str, cutoff: datetime) -> List[SyncLog]:
        stmt = (
            select(SyncLog)
            .where(SyncLog.integration_id == integration_id, SyncLog.started_at >= cutoff)
            .order_by(SyncLog.started_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def latest(self, integration_id: str) -> Optional[SyncLog]:
        stmt = (
            select(SyncLog)
            .where(SyncLog.integration_id == integration_id)
            .order_by(SyncLog.started_at.desc(), SyncLog.queued_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def finalized_since(self, integration_id: str, cutoff: Optional[datetime], limit: int) -> List[SyncLog]:
        """Finalized logs newest first, used to count consecutive failures"""
        stmt = select(SyncLog).where(SyncLog.integration_id == integration_id, SyncLog.completed_at.is_not(None))
        if cutoff is not None:
            stmt = stmt.where(SyncLog.queued_at >= cutoff)
        stmt = stmt.order_by(SyncLog.completed_at.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class TimelineRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self, case_id: str, event_type: str, message: str, details: Optional[Dict[str, Any]] = None
    ) -> TimelineEvent:
        event = TimelineEvent(case_id=case_id, event_type=event_type, message=message, details=details or {})
        self.session.add(event)
        await self.session.flush()
        return event

    async def list_for_case(self, case_id: str) -> List[TimelineEvent]:
        stmt = (
            select(TimelineEvent)
            .where(TimelineEvent.case_id == case_id)
            .order_by(TimelineEvent.created_at, TimelineEvent.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
