"""
SQLAlchemy models for integrations, canonical PMS data, evidence and sync logs
"""

from datetime import datetime, timezone
from typing import Any, Dict
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

Base = declarative_base()


def _uuid() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend, SQLite included"""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _iso(value) -> Any:
    return value.isoformat() if value is not None else None


def _money(value) -> Any:
    return str(value) if value is not None else None


class Integration(Base):
    """A property's connection to one PMS vendor"""

    __tablename__ = "integrations"

    id = Column(String(36), primary_key=True, default=_uuid)
    property_id = Column(String(255), nullable=False, index=True)
    vendor_type = Column(String(50), nullable=False)
    auth_type = Column(String(20), nullable=False)

    # AES-GCM token; never decrypted outside the orchestrator
    credentials = Column(Text, nullable=False)
    webhook_secret = Column(Text)
    webhook_subscription_id = Column(String(255))

    status = Column(String(20), nullable=False, default="disconnected")
    error_message = Column(Text)
    sync_enabled = Column(Boolean, nullable=False, default=True)
    two_way_sync = Column(Boolean, nullable=False, default=False)
    sync_interval_minutes = Column(Integer, nullable=False, default=15)
    options = Column(JSON, nullable=False, default=dict)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)
    connected_at = Column(UTCDateTime)
    last_sync_at = Column(UTCDateTime)
    disconnected_at = Column(UTCDateTime)

    __table_args__ = (
        CheckConstraint("status IN ('connected', 'error', 'disconnected')", name="ck_integration_status"),
        CheckConstraint("auth_type IN ('api_key', 'oauth2', 'basic')", name="ck_integration_auth_type"),
        CheckConstraint("sync_interval_minutes IN (5, 15, 30, 60)", name="ck_integration_interval"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "vendor_type": self.vendor_type,
            "auth_type": self.auth_type,
            "status": self.status,
            "error_message": self.error_message,
            "sync_enabled": self.sync_enabled,
            "two_way_sync": self.two_way_sync,
            "sync_interval_minutes": self.sync_interval_minutes,
            "webhooks_enabled": self.webhook_secret is not None,
            "created_at": _iso(self.created_at),
            "connected_at": _iso(self.connected_at),
            "last_sync_at": _iso(self.last_sync_at),
            "disconnected_at": _iso(self.disconnected_at),
        }

    def __repr__(self):
        return f"<Integration(id={self.id}, vendor_type={self.vendor_type}, status={self.status})>"


class Reservation(Base):
    """Canonical reservation pulled from a PMS"""

    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True, default=_uuid)
    integration_id = Column(String(36), ForeignKey("integrations.id"), nullable=False)
    property_id = Column(String(255), nullable=False)
    external_id = Column(String(255), nullable=False)
    confirmation_number = Column(String(100))

    guest_name = Column(String(255))
    guest_email = Column(String(255))
    guest_phone = Column(String(50))

    check_in_date = Column(Date, nullable=False)
    check_out_date = Column(Date, nullable=False)
    actual_check_in = Column(UTCDateTime)
    actual_check_out = Column(UTCDateTime)

    room_number = Column(String(20))
    room_type = Column(String(100))
    rate_code = Column(String(50))
    rate_amount = Column(Numeric(12, 2))
    total_amount = Column(Numeric(12, 2))
    currency = Column(String(3), nullable=False, default="USD")

    card_brand = Column(String(30))
    card_last_four = Column(String(4))
    booking_source = Column(String(100))
    status = Column(String(20), nullable=False)
    is_flagged = Column(Boolean, nullable=False, default=False)
    sync_source = Column(String(50))

    # Vendor modification time, distinct from when the row was written
    updated_at = Column(UTCDateTime, nullable=False)
    synced_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("integration_id", "external_id", name="uq_reservation_external"),
        Index("idx_reservation_confirmation", "property_id", "confirmation_number"),
        Index("idx_reservation_card", "property_id", "card_last_four"),
        Index("idx_reservation_stay", "property_id", "check_in_date", "check_out_date"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "integration_id": self.integration_id,
            "property_id": self.property_id,
            "external_id": self.external_id,
            "confirmation_number": self.confirmation_number,
            "guest_name": self.guest_name,
            "check_in_date": _iso(self.check_in_date),
            "check_out_date": _iso(self.check_out_date),
            "room_number": self.room_number,
            "total_amount": _money(self.total_amount),
            "currency": self.currency,
            "card_brand": self.card_brand,
            "card_last_four": self.card_last_four,
            "status": self.status,
            "is_flagged": self.is_flagged,
            "updated_at": _iso(self.updated_at),
        }


class FolioLineItemRecord(Base):
    """One folio posting; running balance is derived, never stored"""

    __tablename__ = "folio_line_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    reservation_id = Column(String(36), ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False, index=True)
    external_id = Column(String(255))
    position = Column(Integer, nullable=False, default=0)
    posting_date = Column(Date, nullable=False)
    category = Column(String(20), nullable=False)
    description = Column(Text, nullable=False, default="")
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    transaction_code = Column(String(50))
    auth_code = Column(String(50))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "posting_date": _iso(self.posting_date),
            "category": self.category,
            "description": self.description,
            "amount": _money(self.amount),
            "currency": self.currency,
            "transaction_code": self.transaction_code,
            "auth_code": self.auth_code,
        }


class Chargeback(Base):
    """Minimal chargeback record used for matching; its id doubles as the case id"""

    __tablename__ = "chargebacks"

    id = Column(String(36), primary_key=True, default=_uuid)
    property_id = Column(String(255), nullable=False, index=True)
    amount = Column(Numeric(12, 2))
    currency = Column(String(3), nullable=False, default="USD")
    transaction_date = Column(Date)
    transaction_id = Column(String(255))
    card_brand = Column(String(30))
    card_last_four = Column(String(4))
    cardholder_name = Column(String(255))
    confirmation_number = Column(String(100))
    status = Column(String(30), nullable=False, default="open")
    reservation_id = Column(String(36), ForeignKey("reservations.id"))
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    # Set for cases opened by a PMS or dispute-network alert
    source = Column(String(50))
    external_case_id = Column(String(255))
    reason_code = Column(String(20))
    due_date = Column(Date)

    __table_args__ = (UniqueConstraint("source", "external_case_id", name="uq_chargeback_external_case"),)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "amount": _money(self.amount),
            "currency": self.currency,
            "transaction_date": _iso(self.transaction_date),
            "card_brand": self.card_brand,
            "card_last_four": self.card_last_four,
            "confirmation_number": self.confirmation_number,
            "status": self.status,
            "reservation_id": self.reservation_id,
            "source": self.source,
            "external_case_id": self.external_case_id,
            "reason_code": self.reason_code,
            "due_date": _iso(self.due_date),
        }


class ReservationMatch(Base):
    """Match history; exactly one active row per chargeback"""

    __tablename__ = "reservation_matches"

    id = Column(String(36), primary_key=True, default=_uuid)
    chargeback_id = Column(String(36), ForeignKey("chargebacks.id"), nullable=False)
    reservation_id = Column(String(36), ForeignKey("reservations.id"), nullable=False)
    confidence = Column(Integer, nullable=False)
    strategy = Column(String(30), nullable=False)
    manually_confirmed = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    superseded_at = Column(UTCDateTime)

    __table_args__ = (
        CheckConstraint("confidence >= 0 AND confidence <= 100", name="ck_match_confidence"),
        Index("idx_match_chargeback_active", "chargeback_id", "active"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chargeback_id": self.chargeback_id,
            "reservation_id": self.reservation_id,
            "confidence": self.confidence,
            "strategy": self.strategy,
            "manually_confirmed": self.manually_confirmed,
            "active": self.active,
            "details": self.details,
            "created_at": _iso(self.created_at),
            "superseded_at": _iso(self.superseded_at),
        }


class EvidenceDocument(Base):
    """Evidence attached to a case; immutable except for the verified flag"""

    __tablename__ = "evidence_documents"

    id = Column(String(36), primary_key=True, default=_uuid)
    case_id = Column(String(36), nullable=False)
    reservation_id = Column(String(36), ForeignKey("reservations.id"))
    evidence_type = Column(String(40), nullable=False)
    source_kind = Column(String(40))
    source_fetched_at = Column(UTCDateTime, nullable=False)
    file_ref = Column(String(100), nullable=False)
    content_hash = Column(String(64), nullable=False)
    file_name = Column(String(255))
    mime_type = Column(String(100))
    size_bytes = Column(Integer, nullable=False, default=0)
    verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_evidence_case_type", "case_id", "evidence_type", "source_fetched_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "case_id": self.case_id,
            "reservation_id": self.reservation_id,
            "type": self.evidence_type,
            "source_fetched_at": _iso(self.source_fetched_at),
            "file_ref": self.file_ref,
            "file_name": self.file_name,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "verified": self.verified,
        }


class SyncLog(Base):
    """Append-only record of one sync job"""

    __tablename__ = "sync_logs"

    id = Column(String(36), primary_key=True, default=_uuid)
    integration_id = Column(String(36), ForeignKey("integrations.id"), nullable=False)
    direction = Column(String(10), nullable=False)
    sync_type = Column(String(20), nullable=False)
    entity_type = Column(String(30), nullable=False, default="reservation")
    trigger = Column(String(20), nullable=False, default="manual")
    status = Column(String(20), nullable=False, default="started")
    records_processed = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    queued_at = Column(UTCDateTime, nullable=False, default=utcnow)
    started_at = Column(UTCDateTime, nullable=False, default=utcnow)
    completed_at = Column(UTCDateTime)
    duration_ms = Column(Integer)
    error_message = Column(Text)

    __table_args__ = (
        CheckConstraint("direction IN ('inbound', 'outbound')", name="ck_sync_direction"),
        CheckConstraint("sync_type IN ('full', 'incremental', 'webhook')", name="ck_sync_type"),
        CheckConstraint("status IN ('started', 'completed', 'failed', 'partial')", name="ck_sync_status"),
        Index("idx_sync_log_integration_started", "integration_id", "started_at"),
    )

    @property
    def is_finalized(self) -> bool:
        return self.completed_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "integration_id": self.integration_id,
            "direction": self.direction,
            "sync_type": self.sync_type,
            "entity_type": self.entity_type,
            "trigger": self.trigger,
            "status": self.status,
            "records_processed": self.records_processed,
            "records_failed": self.records_failed,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "duration_ms": self.duration_ms,
            "error_message": self.error_message,
        }


class TimelineEvent(Base):
    """Case timeline entry written by the evidence and matching pipelines"""

    __tablename__ = "timeline_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    case_id = Column(String(36), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "case_id": self.case_id,
            "event_type": self.event_type,
            "message": self.message,
            "details": self.details,
            "created_at": _iso(self.created_at),
        }
