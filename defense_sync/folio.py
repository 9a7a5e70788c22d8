"""
Folio arithmetic

Works on anything with ``posting_date``, ``category`` and ``amount``: the
adapters' FolioLineItem dataclasses as well as stored folio rows. Amounts
are signed, charges positive and payments negative.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pms_connectors.contracts import FolioCategory

from .core.exceptions import FolioBalanceMismatchError

CENT = Decimal("0.01")
DEFAULT_TOLERANCE = CENT


def _category(item: Any) -> str:
    category = item.category
    return category.value if isinstance(category, FolioCategory) else str(category)


def _amount(item: Any) -> Decimal:
    return Decimal(item.amount)


@dataclass(frozen=True)
class FolioSummary:
    total_charges: Decimal
    total_payments: Decimal
    balance: Decimal
    item_count: int
    currency: str = "USD"
    by_category: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_charges": str(self.total_charges),
            "total_payments": str(self.total_payments),
            "balance": str(self.balance),
            "item_count": self.item_count,
            "currency": self.currency,
            "by_category": {
                name: {"count": entry["count"], "total": str(entry["total"])}
                for name, entry in self.by_category.items()
            },
        }


def summarize_folio(items: Iterable[Any], currency: str = "USD") -> FolioSummary:
    """
    Folio-level totals.

    Payments are reported as a positive total; every other category counts
    toward charges with its sign, so adjustments reduce the charge total.
    """
    total_charges = Decimal("0")
    total_payments = Decimal("0")
    by_category: Dict[str, Dict[str, Any]] = {}
    count = 0
    for item in items:
        count += 1
        name = _category(item)
        amount = _amount(item)
        if name == FolioCategory.PAYMENT.value:
            total_payments -= amount
        else:
            total_charges += amount
        entry = by_category.setdefault(name, {"count": 0, "total": Decimal("0")})
        entry["count"] += 1
        entry["total"] += amount

    return FolioSummary(
        total_charges=total_charges.quantize(CENT),
        total_payments=total_payments.quantize(CENT),
        balance=(total_charges - total_payments).quantize(CENT),
        item_count=count,
        currency=currency,
        by_category=by_category,
    )


def running_balances(items: Iterable[Any]) -> List[Tuple[Any, Decimal]]:
    """Chronological cumulative sums, stable for postings on the same day"""
    ordered = sorted(enumerate(items), key=lambda pair: (pair[1].posting_date, pair[0]))
    balance = Decimal("0")
    result = []
    for _, item in ordered:
        balance += _amount(item)
        result.append((item, balance.quantize(CENT)))
    return result


def reconcile(
    items: Sequence[Any], reported_balance: Optional[Decimal], tolerance: Decimal = DEFAULT_TOLERANCE
) -> bool:
    """True when the line items add up to the reported balance; no reported balance always reconciles"""
    if reported_balance is None:
        return True
    computed = sum((_amount(item) for item in items), Decimal("0"))
    return abs(computed - Decimal(reported_balance)) <= tolerance


def check_reconciled(
    reservation_external_id: str,
    items: Sequence[Any],
    reported_balance: Optional[Decimal],
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> None:
    if not reconcile(items, reported_balance, tolerance):
        computed = sum((_amount(item) for item in items), Decimal("0")).quantize(CENT)
        raise FolioBalanceMismatchError(reservation_external_id, Decimal(reported_balance), computed)
