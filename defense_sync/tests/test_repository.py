"""
Tests for sync engine repositories
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from defense_sync.core.exceptions import IntegrationNotFoundError, SyncLogFinalizedError
from defense_sync.database.repository import (
    EvidenceRepository,
    IntegrationRepository,
    ReservationRepository,
    SyncLogFilter,
    SyncLogRepository,
)
from pms_connectors.contracts import CanonicalReservation, FolioCategory, FolioLineItem, ReservationStatus


async def make_integration(database, **overrides):
    fields = dict(
        property_id="prop-1", vendor_type="AUTOCLERK", auth_type="api_key", credentials="sealed", status="connected"
    )
    fields.update(overrides)
    async with database.session() as session:
        return await IntegrationRepository(session).create(**fields)


def canonical(**overrides) -> CanonicalReservation:
    fields = dict(
        external_id="RES-1001",
        confirmation_number="AC123456",
        guest_name="John Smith",
        check_in_date=date(2024, 3, 1),
        check_out_date=date(2024, 3, 4),
        status=ReservationStatus.CONFIRMED,
        updated_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
        total_amount=Decimal("512.37"),
    )
    fields.update(overrides)
    return CanonicalReservation(**fields)


class TestIntegrationRepository:
    @pytest.mark.asyncio
    async def test_require_missing_integration(self, database):
        async with database.session() as session:
            with pytest.raises(IntegrationNotFoundError):
                await IntegrationRepository(session).require("missing")

    @pytest.mark.asyncio
    async def test_list_hides_disconnected_by_default(self, database):
        await make_integration(database)
        await make_integration(database, status="disconnected")

        async with database.session() as session:
            repo = IntegrationRepository(session)
            assert len(await repo.list_all()) == 1
            assert len(await repo.list_all(include_disconnected=True)) == 2
            assert await repo.count_by_status() == {"connected": 1, "disconnected": 1}


class TestReservationRepository:
    @pytest.mark.asyncio
    async def test_upsert_is_keyed_by_external_id(self, database):
        integration = await make_integration(database)

        async with database.session() as session:
            first, created = await ReservationRepository(session).upsert(integration.id, "prop-1", canonical())
        async with database.session() as session:
            second, created_again = await ReservationRepository(session).upsert(
                integration.id,
                "prop-1",
                canonical(status=ReservationStatus.CHECKED_OUT, updated_at=datetime(2024, 3, 4, tzinfo=timezone.utc)),
            )

        assert created is True
        assert created_again is False
        assert second.id == first.id
        assert second.status == "checked_out"
        assert second.updated_at == datetime(2024, 3, 4, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_replace_folio_keeps_vendor_order(self, database):
        integration = await make_integration(database)
        items = [
            FolioLineItem(date(2024, 3, 1), FolioCategory.ROOM, "Room", Decimal("100.00")),
            FolioLineItem(date(2024, 3, 4), FolioCategory.PAYMENT, "Visa", Decimal("-100.00")),
        ]

        async with database.session() as session:
            repo = ReservationRepository(session)
            reservation, _ = await repo.upsert(integration.id, "prop-1", canonical())
            await repo.replace_folio(reservation.id, items)
            await repo.replace_folio(reservation.id, items[:1])
            stored = await repo.folio_items(reservation.id)

        assert [(item.category, item.amount) for item in stored] == [("ROOM", Decimal("100.00"))]

    @pytest.mark.asyncio
    async def test_confirmation_lookup_is_case_insensitive(self, database):
        integration = await make_integration(database)
        async with database.session() as session:
            repo = ReservationRepository(session)
            await repo.upsert(integration.id, "prop-1", canonical())
            assert len(await repo.find_by_confirmation("prop-1", " ac123456 ")) == 1
            assert await repo.find_by_confirmation("prop-2", "AC123456") == []


class TestSyncLogRepository:
    @pytest.mark.asyncio
    async def test_logs_finalize_exactly_once(self, database):
        integration = await make_integration(database)
        async with database.session() as session:
            log = await SyncLogRepository(session).create(integration.id, "inbound", "incremental")

        async with database.session() as session:
            finalized = await SyncLogRepository(session).finalize(log.id, "completed", records_processed=4)
        assert finalized.status == "completed"
        assert finalized.duration_ms >= 0

        async with database.session() as session:
            with pytest.raises(SyncLogFinalizedError):
                await SyncLogRepository(session).finalize(log.id, "failed", error_message="late")
        async with database.session() as session:
            stored = await SyncLogRepository(session).get(log.id)
        assert (stored.status, stored.records_processed, stored.error_message) == ("completed", 4, None)

    @pytest.mark.asyncio
    async def test_cannot_finalize_as_started(self, database):
        integration = await make_integration(database)
        async with database.session() as session:
            repo = SyncLogRepository(session)
            log = await repo.create(integration.id, "inbound", "full")
            with pytest.raises(ValueError):
                await repo.finalize(log.id, "started")

    @pytest.mark.asyncio
    async def test_query_filters(self, database):
        first = await make_integration(database)
        second = await make_integration(database, vendor_type="PROTEL", auth_type="basic")
        async with database.session() as session:
            repo = SyncLogRepository(session)
            await repo.create(first.id, "inbound", "incremental")
            outbound = await repo.create(first.id, "outbound", "incremental", entity_type="case_status")
            await repo.create(second.id, "inbound", "full")

        async with database.session() as session:
            repo = SyncLogRepository(session)
            assert len(await repo.query(SyncLogFilter(integration_id=first.id))) == 2
            pushed = await repo.query(SyncLogFilter(direction="outbound"))
            assert [log.id for log in pushed] == [outbound.id]
            assert len(await repo.query(limit=1)) == 1
            assert len(await repo.query(SyncLogFilter(started_before=datetime(2000, 1, 1, tzinfo=timezone.utc)))) == 0


class TestEvidenceRepository:
    @pytest.mark.asyncio
    async def test_find_existing_by_timestamp_or_hash(self, database):
        fetched_at = datetime(2024, 3, 4, 10, 6, tzinfo=timezone.utc)
        async with database.session() as session:
            repo = EvidenceRepository(session)
            document = await repo.add(
                case_id="case-1",
                evidence_type="FOLIO",
                source_fetched_at=fetched_at,
                file_ref="ref-1",
                content_hash="a" * 64,
            )
            assert (await repo.find_existing("case-1", "FOLIO", fetched_at, "b" * 64)).id == document.id
            later = datetime(2024, 3, 5, tzinfo=timezone.utc)
            assert (await repo.find_existing("case-1", "FOLIO", later, "a" * 64)).id == document.id
            assert await repo.find_existing("case-1", "FOLIO", later, "b" * 64) is None
            assert await repo.find_existing("case-1", "ID_SCAN", fetched_at, "a" * 64) is None
