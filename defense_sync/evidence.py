"""
Evidence collection pipeline

Runs a fixed fetch plan against the reservation's adapter. Every document
kind is fetched and retried on its own; a failure is recorded and the plan
continues. Stored documents are content addressed.
"""

import asyncio
import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

from pms_connectors.contracts import BaseAdapter, DocumentKind, EvidenceType, NotFoundError
from pms_connectors.retry import RetryPolicy, call_with_retry
from pms_connectors.utils.logging import get_safe_logger, with_correlation_id

from .core.exceptions import PartialEvidenceCollectionError
from .database.connection import Database
from .database.models import EvidenceDocument, Reservation
from .database.repository import EvidenceRepository, TimelineRepository
from .metrics import adapter_calls_total, adapter_retries_total, evidence_documents_total

logger = get_safe_logger("defense_sync.evidence")

FETCH_PLAN = (
    DocumentKind.FOLIO,
    DocumentKind.AUTH_SIGNATURE,
    DocumentKind.CHECKOUT_SIGNATURE,
    DocumentKind.PAYMENT_RECEIPT,
    DocumentKind.ID_SCAN,
    DocumentKind.BOOKING_CONFIRMATION,
)

DOCUMENT_EVIDENCE_TYPES: Dict[DocumentKind, EvidenceType] = {
    DocumentKind.FOLIO: EvidenceType.FOLIO,
    DocumentKind.AUTH_SIGNATURE: EvidenceType.AUTH_SIGNATURE,
    DocumentKind.CHECKOUT_SIGNATURE: EvidenceType.CHECKOUT_SIGNATURE,
    DocumentKind.PAYMENT_RECEIPT: EvidenceType.OTHER,
    DocumentKind.ID_SCAN: EvidenceType.ID_SCAN,
    DocumentKind.BOOKING_CONFIRMATION: EvidenceType.RESERVATION_CONFIRMATION,
}


class EvidenceStore(Protocol):
    """Storage backend for evidence content"""

    async def put(self, content: bytes) -> str:
        """Store content and return its file reference"""
        ...

    async def get(self, file_ref: str) -> bytes:
        ...


class LocalEvidenceStore:
    """Filesystem store keyed by SHA-256; writing the same content twice is a no-op"""

    PREFIX = "sha256:"

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, digest: str) -> Path:
        return self.root / digest[:2] / digest

    @classmethod
    def file_ref_for(cls, content: bytes) -> str:
        return cls.PREFIX + hashlib.sha256(content).hexdigest()

    def _write(self, path: Path, content: bytes) -> None:
        if path.exists():
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        partial = path.with_suffix(".tmp")
        partial.write_bytes(content)
        partial.replace(path)

    async def put(self, content: bytes) -> str:
        file_ref = self.file_ref_for(content)
        await asyncio.to_thread(self._write, self._path(file_ref[len(self.PREFIX):]), content)
        return file_ref

    async def get(self, file_ref: str) -> bytes:
        if not file_ref.startswith(self.PREFIX):
            raise ValueError(f"Not a content-addressed reference: {file_ref}")
        return await asyncio.to_thread(self._path(file_ref[len(self.PREFIX):]).read_bytes)


@dataclass
class EvidenceCollectionResult:
    case_id: str
    reservation_id: str
    planned: List[DocumentKind] = field(default_factory=list)
    documents: List[EvidenceDocument] = field(default_factory=list)
    collected: List[DocumentKind] = field(default_factory=list)
    duplicates: List[DocumentKind] = field(default_factory=list)
    missing: List[DocumentKind] = field(default_factory=list)
    failed: Dict[DocumentKind, str] = field(default_factory=dict)

    @property
    def summary(self) -> str:
        available = len(self.collected) + len(self.duplicates)
        return f"{available} of {len(self.planned)} evidence types collected"

    @property
    def partial_error(self) -> Optional[PartialEvidenceCollectionError]:
        """Informational error describing the gaps, if there are any"""
        if not self.missing and not self.failed:
            return None
        return PartialEvidenceCollectionError(
            self.case_id,
            [kind.value for kind in self.missing],
            {kind.value: reason for kind, reason in self.failed.items()},
        )

    def to_dict(self):
        return {
            "case_id": self.case_id,
            "reservation_id": self.reservation_id,
            "summary": self.summary,
            "documents": [document.to_dict() for document in self.documents],
            "collected": [kind.value for kind in self.collected],
            "duplicates": [kind.value for kind in self.duplicates],
            "missing": [kind.value for kind in self.missing],
            "failed": {kind.value: reason for kind, reason in self.failed.items()},
        }


class EvidenceCollector:
    """Fetches vendor documents for a matched reservation and attaches them to the case"""

    def __init__(
        self,
        database: Database,
        store: EvidenceStore,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.database = database
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    @staticmethod
    def plan_for(adapter: BaseAdapter) -> List[DocumentKind]:
        if not adapter.supports_documents:
            return []
        declared = set(adapter.document_kinds)
        return [kind for kind in FETCH_PLAN if kind in declared]

    async def collect(
        self, case_id: str, reservation: Reservation, adapter: BaseAdapter, force: bool = False
    ) -> EvidenceCollectionResult:
        with_correlation_id()
        result = EvidenceCollectionResult(case_id=case_id, reservation_id=reservation.id)
        result.planned = self.plan_for(adapter)
        if not result.planned:
            logger.info("evidence_not_supported", case_id=case_id, vendor=adapter.vendor_type)
            return result

        for kind in result.planned:
            await self._collect_one(result, reservation, adapter, kind, force)

        async with self.database.session() as session:
            await TimelineRepository(session).append(
                case_id,
                "evidence_collected",
                result.summary,
                {
                    "reservation_id": reservation.id,
                    "collected": [kind.value for kind in result.collected],
                    "missing": [kind.value for kind in result.missing],
                    "failed": {kind.value: reason for kind, reason in result.failed.items()},
                },
            )

        partial = result.partial_error
        if partial is not None:
            logger.warning("evidence_collection_partial", case_id=case_id, **partial.details)
        logger.info("evidence_collection_finished", case_id=case_id, summary=result.summary)
        return result

    async def _collect_one(
        self,
        result: EvidenceCollectionResult,
        reservation: Reservation,
        adapter: BaseAdapter,
        kind: DocumentKind,
        force: bool,
    ) -> None:
        evidence_type = DOCUMENT_EVIDENCE_TYPES[kind]
        call = await call_with_retry(
            adapter.fetch_document,
            reservation.external_id,
            kind,
            policy=self.retry_policy,
            operation="fetch_document",
            sleep=self._sleep,
        )
        if call.attempts > 1:
            adapter_retries_total.labels(vendor=adapter.vendor_type, operation="fetch_document").inc(call.attempts - 1)
        adapter_calls_total.labels(
            vendor=adapter.vendor_type, operation="fetch_document", outcome="ok" if call.ok else "error"
        ).inc()

        if isinstance(call.error, NotFoundError):
            result.missing.append(kind)
            evidence_documents_total.labels(evidence_type=evidence_type.value, outcome="missing").inc()
            return
        if call.error is not None:
            result.failed[kind] = str(call.error)
            evidence_documents_total.labels(evidence_type=evidence_type.value, outcome="failed").inc()
            logger.warning(
                "evidence_fetch_failed",
                case_id=result.case_id,
                kind=kind.value,
                attempts=call.attempts,
                error_type=type(call.error).__name__,
            )
            return

        document = call.value
        source_fetched_at: datetime = document.source_timestamp or reservation.updated_at
        content_hash = hashlib.sha256(document.content).hexdigest()

        async with self.database.session() as session:
            evidence = EvidenceRepository(session)
            if not force:
                existing = await evidence.find_existing(
                    result.case_id, evidence_type.value, source_fetched_at, content_hash
                )
                if existing is not None:
                    result.documents.append(existing)
                    result.duplicates.append(kind)
                    evidence_documents_total.labels(evidence_type=evidence_type.value, outcome="duplicate").inc()
                    return

            file_ref = await self.store.put(document.content)
            stored = await evidence.add(
                case_id=result.case_id,
                reservation_id=reservation.id,
                evidence_type=evidence_type.value,
                source_kind=kind.value,
                source_fetched_at=source_fetched_at,
                file_ref=file_ref,
                content_hash=content_hash,
                file_name=document.file_name,
                mime_type=document.mime_type,
                size_bytes=len(document.content),
            )
        result.documents.append(stored)
        result.collected.append(kind)
        evidence_documents_total.labels(evidence_type=evidence_type.value, outcome="stored").inc()
