"""
Tests for folio arithmetic
"""

import random
from datetime import date, timedelta
from decimal import Decimal

import pytest

from defense_sync.core.exceptions import FolioBalanceMismatchError
from defense_sync.folio import check_reconciled, reconcile, running_balances, summarize_folio
from pms_connectors.contracts import FolioCategory, FolioLineItem


def item(day: int, category: FolioCategory, amount: str, description: str = "") -> FolioLineItem:
    return FolioLineItem(
        posting_date=date(2024, 3, 1) + timedelta(days=day),
        category=category,
        description=description,
        amount=Decimal(amount),
    )


@pytest.fixture
def stay_folio():
    return [
        item(0, FolioCategory.ROOM, "149.00", "Room 412"),
        item(0, FolioCategory.TAX_FEE, "22.35", "Occupancy tax"),
        item(1, FolioCategory.FOOD_BEVERAGE, "41.02", "Restaurant"),
        item(3, FolioCategory.PAYMENT, "-212.37", "Visa 4242"),
    ]


def test_summary_totals(stay_folio):
    summary = summarize_folio(stay_folio)

    assert summary.total_charges == Decimal("212.37")
    assert summary.total_payments == Decimal("212.37")
    assert summary.balance == Decimal("0.00")
    assert summary.item_count == 4
    assert summary.by_category["PAYMENT"]["count"] == 1
    assert summary.to_dict()["balance"] == "0.00"


def test_adjustments_reduce_charges():
    folio = [
        item(0, FolioCategory.ROOM, "200.00"),
        item(1, FolioCategory.ADJUSTMENT, "-25.00"),
        item(2, FolioCategory.PAYMENT, "-100.00"),
    ]
    summary = summarize_folio(folio)

    assert summary.total_charges == Decimal("175.00")
    assert summary.total_payments == Decimal("100.00")
    assert summary.balance == Decimal("75.00")


def test_running_balance_is_chronological_and_stable():
    folio = [
        item(2, FolioCategory.PAYMENT, "-50.00", "late payment"),
        item(0, FolioCategory.ROOM, "100.00", "first"),
        item(0, FolioCategory.TAX_FEE, "10.00", "second"),
    ]
    balances = running_balances(folio)

    assert [entry.description for entry, _ in balances] == ["first", "second", "late payment"]
    assert [total for _, total in balances] == [Decimal("100.00"), Decimal("110.00"), Decimal("60.00")]


def test_running_balance_ends_at_charges_minus_payments():
    rng = random.Random(20240301)
    categories = list(FolioCategory)
    for _ in range(50):
        folio = []
        for _ in range(rng.randint(1, 15)):
            category = rng.choice(categories)
            cents = rng.randint(1, 50000)
            amount = -cents if category == FolioCategory.PAYMENT else cents
            folio.append(item(rng.randint(0, 6), category, str(Decimal(amount) / 100)))
        rng.shuffle(folio)

        summary = summarize_folio(folio)
        _, last = running_balances(folio)[-1]
        assert last == summary.total_charges - summary.total_payments


def test_reconcile_within_tolerance(stay_folio):
    assert reconcile(stay_folio, Decimal("0.00"))
    assert reconcile(stay_folio, Decimal("0.01"))
    assert not reconcile(stay_folio, Decimal("0.02"))
    assert reconcile(stay_folio, None)


def test_check_reconciled_raises_with_both_balances(stay_folio):
    with pytest.raises(FolioBalanceMismatchError) as exc_info:
        check_reconciled("RES-1001", stay_folio, Decimal("100.00"))

    assert exc_info.value.expected == Decimal("100.00")
    assert exc_info.value.actual == Decimal("0.00")
