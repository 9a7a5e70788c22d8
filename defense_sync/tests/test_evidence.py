"""
Tests for evidence collection
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from defense_sync.core.exceptions import (
    EvidenceDocumentNotFoundError,
    MatchNotFoundError,
    ReservationNotFoundError,
)
from defense_sync.database.repository import ReservationRepository
from defense_sync.evidence import FETCH_PLAN, LocalEvidenceStore
from pms_connectors.contracts import CanonicalReservation, DocumentKind, ReservationStatus


async def matched_case(hub, credentials):
    integration = await hub.connect_integration("prop-1", "AUTOCLERK", credentials)
    await hub.trigger_sync(integration.id)
    await hub.orchestrator.queue.join()
    chargeback = await hub.record_chargeback(
        "prop-1",
        amount=Decimal("512.37"),
        transaction_date=date(2024, 3, 3),
        card_last_four="4242",
        cardholder_name="John Smith",
    )
    match = await hub.match_reservation(chargeback.id)
    return chargeback, match


class TestLocalEvidenceStore:
    @pytest.mark.asyncio
    async def test_content_addressed_round_trip(self, tmp_path):
        store = LocalEvidenceStore(tmp_path)

        first = await store.put(b"folio bytes")
        second = await store.put(b"folio bytes")

        assert first == second
        assert first.startswith("sha256:")
        assert await store.get(first) == b"folio bytes"
        assert len(list(tmp_path.rglob("*"))) == 2  # one shard dir, one file

    @pytest.mark.asyncio
    async def test_rejects_foreign_references(self, tmp_path):
        with pytest.raises(ValueError):
            await LocalEvidenceStore(tmp_path).get("s3://bucket/key")


class TestEvidenceCollection:
    @pytest.mark.asyncio
    async def test_collects_available_documents_and_reports_gaps(self, hub, autoclerk_credentials):
        chargeback, match = await matched_case(hub, autoclerk_credentials)

        result = await hub.collect_evidence_report(chargeback.id)

        assert result.reservation_id == match.reservation_id
        assert result.planned == list(FETCH_PLAN)
        assert result.collected == [DocumentKind.FOLIO, DocumentKind.AUTH_SIGNATURE, DocumentKind.ID_SCAN]
        assert result.missing == [
            DocumentKind.CHECKOUT_SIGNATURE,
            DocumentKind.PAYMENT_RECEIPT,
            DocumentKind.BOOKING_CONFIRMATION,
        ]
        assert result.failed == {}
        assert result.summary == "3 of 6 evidence types collected"
        assert sorted(result.partial_error.missing) == ["booking_confirmation", "checkout_signature", "payment_receipt"]

        documents = await hub.list_evidence(chargeback.id)
        assert [d.evidence_type for d in documents] == ["FOLIO", "AUTH_SIGNATURE", "ID_SCAN"]
        folio = documents[0]
        assert folio.source_fetched_at == datetime(2024, 3, 4, 10, 6, tzinfo=timezone.utc)
        assert folio.mime_type == "application/pdf"
        assert await hub.evidence.store.get(folio.file_ref) == b"%PDF-1.7 folio RES-1001"

    @pytest.mark.asyncio
    async def test_recollecting_does_not_duplicate_unless_forced(self, hub, autoclerk_credentials):
        chargeback, _ = await matched_case(hub, autoclerk_credentials)
        first = await hub.collect_evidence(chargeback.id)

        again = await hub.collect_evidence_report(chargeback.id)

        assert again.collected == []
        assert len(again.duplicates) == 3
        assert sorted(d.id for d in again.documents) == sorted(d.id for d in first)
        assert len(await hub.list_evidence(chargeback.id)) == 3

        forced = await hub.collect_evidence_report(chargeback.id, force=True)
        assert len(forced.collected) == 3
        assert len(await hub.list_evidence(chargeback.id)) == 6

    @pytest.mark.asyncio
    async def test_failed_kind_does_not_stop_the_plan(self, hub, fake_pms, autoclerk_credentials):
        chargeback, _ = await matched_case(hub, autoclerk_credentials)
        fake_pms.sticky_errors["/documents/DOC-ID/content"] = 500

        result = await hub.collect_evidence_report(chargeback.id)

        assert result.collected == [DocumentKind.FOLIO, DocumentKind.AUTH_SIGNATURE]
        assert list(result.failed) == [DocumentKind.ID_SCAN]
        assert "500" in result.failed[DocumentKind.ID_SCAN]
        assert fake_pms.calls("/documents/DOC-ID/content") == 3
        assert result.summary == "2 of 6 evidence types collected"

    @pytest.mark.asyncio
    async def test_timeline_records_collection(self, hub, autoclerk_credentials):
        chargeback, _ = await matched_case(hub, autoclerk_credentials)
        await hub.collect_evidence(chargeback.id)

        events = await hub.case_timeline(chargeback.id)

        assert [e.event_type for e in events] == ["reservation_matched", "evidence_collected"]
        assert events[1].message == "3 of 6 evidence types collected"
        assert events[1].details["missing"] == ["checkout_signature", "payment_receipt", "booking_confirmation"]

    @pytest.mark.asyncio
    async def test_documents_can_be_marked_verified(self, hub, autoclerk_credentials):
        chargeback, _ = await matched_case(hub, autoclerk_credentials)
        [folio, *_] = await hub.collect_evidence(chargeback.id)

        verified = await hub.verify_document(folio.id)

        assert verified.verified is True
        assert (await hub.list_evidence(chargeback.id))[0].verified is True
        with pytest.raises(EvidenceDocumentNotFoundError):
            await hub.verify_document("missing")


class TestEvidencePreconditions:
    @pytest.mark.asyncio
    async def test_unmatched_case_raises(self, hub):
        chargeback = await hub.record_chargeback("prop-1", card_last_four="0005")

        with pytest.raises(MatchNotFoundError):
            await hub.collect_evidence(chargeback.id)
        with pytest.raises(ReservationNotFoundError):
            await hub.collect_evidence(chargeback.id, reservation_id="missing")

    @pytest.mark.asyncio
    async def test_vendor_without_documents_returns_nothing(self, hub, database, fake_pms, protel_credentials):
        integration = await hub.connect_integration("prop-1", "PROTEL", protel_credentials)
        async with database.session() as session:
            reservation, _ = await ReservationRepository(session).upsert(
                integration.id,
                "prop-1",
                CanonicalReservation(
                    external_id="P-77",
                    confirmation_number="PR7700",
                    guest_name="Anna Weber",
                    check_in_date=date(2024, 5, 1),
                    check_out_date=date(2024, 5, 3),
                    status=ReservationStatus.CHECKED_OUT,
                    updated_at=datetime(2024, 5, 3, tzinfo=timezone.utc),
                ),
            )
        chargeback = await hub.record_chargeback("prop-1", confirmation_number="PR7700")
        await hub.link_reservation(chargeback.id, reservation.id)
        requests_before = len(fake_pms.requests)

        assert await hub.collect_evidence(chargeback.id) == []
        assert len(fake_pms.requests) == requests_before
