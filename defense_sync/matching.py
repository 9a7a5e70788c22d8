"""
Reservation matching for chargebacks

Strategies run in priority order and the first one producing a candidate at
or above its minimum confidence wins. Within a strategy candidates are ranked
by date proximity (40%), amount proximity (35%) and name similarity (25%),
then by the most recently updated reservation.
"""

import math
import unicodedata
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pms_connectors.utils.logging import get_safe_logger

from .core.exceptions import ChargebackNotFoundError, ReservationNotFoundError
from .database.connection import Database
from .database.models import ReservationMatch
from .database.repository import ChargebackRepository, MatchRepository, ReservationRepository, TimelineRepository
from .metrics import reservation_matches_total

logger = get_safe_logger("defense_sync.matching")


class MatchStrategy(str, Enum):
    CONFIRMATION_NUMBER = "confirmation_number"
    CARD_LAST4 = "card_last4"
    GUEST_NAME_DATE = "guest_name_date"
    COMPOSITE = "composite"


STRATEGY_ORDER = (
    MatchStrategy.CONFIRMATION_NUMBER,
    MatchStrategy.CARD_LAST4,
    MatchStrategy.GUEST_NAME_DATE,
    MatchStrategy.COMPOSITE,
)

STRATEGY_MINIMUMS = {
    MatchStrategy.CONFIRMATION_NUMBER: 95,
    MatchStrategy.CARD_LAST4: 70,
    MatchStrategy.GUEST_NAME_DATE: 40,
    MatchStrategy.COMPOSITE: 50,
}

# Stay window: check-in minus two days through check-out plus three
WINDOW_BEFORE_CHECK_IN = timedelta(days=2)
WINDOW_AFTER_CHECK_OUT = timedelta(days=3)

NAME_SIMILARITY_MINIMUM = 0.65
NAME_DATE_SLACK_DAYS = 14
COMPOSITE_AMOUNT_TOLERANCE = Decimal("0.05")
COMPOSITE_MAX_DAYS = 180
DATE_PROXIMITY_HORIZON_DAYS = 30

RANK_WEIGHTS = {"date": 0.40, "amount": 0.35, "text": 0.25}


@dataclass(frozen=True)
class ChargebackFacts:
    id: str
    property_id: str
    transaction_date: Optional[date] = None
    amount: Optional[Decimal] = None
    card_brand: Optional[str] = None
    card_last_four: Optional[str] = None
    cardholder_name: Optional[str] = None
    confirmation_number: Optional[str] = None

    @classmethod
    def from_record(cls, record: Any) -> "ChargebackFacts":
        return cls(
            id=record.id,
            property_id=record.property_id,
            transaction_date=record.transaction_date,
            amount=record.amount,
            card_brand=record.card_brand,
            card_last_four=record.card_last_four,
            cardholder_name=record.cardholder_name,
            confirmation_number=record.confirmation_number,
        )


@dataclass(frozen=True)
class ReservationFacts:
    id: str
    check_in_date: date
    check_out_date: date
    updated_at: datetime
    confirmation_number: Optional[str] = None
    guest_name: Optional[str] = None
    total_amount: Optional[Decimal] = None
    card_last_four: Optional[str] = None

    @classmethod
    def from_record(cls, record: Any) -> "ReservationFacts":
        return cls(
            id=record.id,
            check_in_date=record.check_in_date,
            check_out_date=record.check_out_date,
            updated_at=record.updated_at,
            confirmation_number=record.confirmation_number,
            guest_name=record.guest_name,
            total_amount=record.total_amount,
            card_last_four=record.card_last_four,
        )


@dataclass(frozen=True)
class MatchCandidate:
    reservation: ReservationFacts
    strategy: MatchStrategy
    confidence: int
    rank_score: float
    date_proximity: float
    amount_proximity: float
    name_similarity: float

    def details(self) -> Dict[str, Any]:
        return {
            "rank_score": self.rank_score,
            "date_proximity": round(self.date_proximity, 4),
            "amount_proximity": round(self.amount_proximity, 4),
            "name_similarity": round(self.name_similarity, 4),
        }


# Name handling
# Letters NFKD leaves whole
_ASCII_FOLDS = str.maketrans(
    {
        "ł": "l",
        "Ł": "L",
        "ø": "o",
        "Ø": "O",
        "đ": "d",
        "Đ": "D",
        "ß": "ss",
        "æ": "ae",
        "Æ": "AE",
        "œ": "oe",
        "Œ": "OE",
        "þ": "th",
        "Þ": "TH",
        "ı": "i",
    }
)


def normalize_name(name: Optional[str]) -> str:
    """Case and diacritic-insensitive form; "Smith, John" becomes "john smith" """
    if not name:
        return ""
    decomposed = unicodedata.normalize("NFKD", name.translate(_ASCII_FOLDS))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()
    if stripped.count(",") == 1:
        last, first = stripped.split(",")
        stripped = f"{first} {last}"
    cleaned = "".join(ch if ch.isalpha() else " " for ch in stripped)
    return " ".join(cleaned.split())


def _split_name(normalized: str) -> Tuple[str, str]:
    parts = normalized.split()
    if not parts:
        return "", ""
    return " ".join(parts[:-1]), parts[-1]


def _bigrams(text: str) -> Counter:
    # Word boundaries count, so "lee" and "leeds" differ at the end
    padded = f" {text} "
    return Counter(padded[i : i + 2] for i in range(len(padded) - 1))


def name_similarity(first: Optional[str], second: Optional[str]) -> float:
    a = normalize_name(first)
    b = normalize_name(second)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    shorter, longer = sorted((a.split(), b.split()), key=len)
    if set(shorter) <= set(longer):
        return 0.9

    first_a, last_a = _split_name(a)
    first_b, last_b = _split_name(b)
    if last_a == last_b:
        if first_a and first_b:
            if first_a == first_b:
                return 1.0
            if first_a[0] == first_b[0]:
                return 0.8
        return 0.7

    # Sørensen-Dice on character bigrams
    bigrams_a, bigrams_b = _bigrams(a), _bigrams(b)
    total = sum(bigrams_a.values()) + sum(bigrams_b.values())
    overlap = sum((bigrams_a & bigrams_b).values())
    return 2 * overlap / total


# Date and amount proximity
def days_outside_stay(transaction_date: date, reservation: ReservationFacts) -> int:
    if transaction_date < reservation.check_in_date:
        return (reservation.check_in_date - transaction_date).days
    if transaction_date > reservation.check_out_date:
        return (transaction_date - reservation.check_out_date).days
    return 0


def in_stay_window(transaction_date: date, reservation: ReservationFacts) -> bool:
    return (
        reservation.check_in_date - WINDOW_BEFORE_CHECK_IN
        <= transaction_date
        <= reservation.check_out_date + WINDOW_AFTER_CHECK_OUT
    )


def date_proximity(transaction_date: Optional[date], reservation: ReservationFacts) -> float:
    """1.0 during the stay, decaying linearly to 0 thirty days away; 0.5 when unknown"""
    if transaction_date is None:
        return 0.5
    distance = days_outside_stay(transaction_date, reservation)
    return max(0.0, 1.0 - distance / DATE_PROXIMITY_HORIZON_DAYS)


def amount_proximity(amount: Optional[Decimal], total: Optional[Decimal]) -> float:
    """1 - relative difference; 0.5 when either side is unknown"""
    if amount is None or total is None:
        return 0.5
    amount, total = abs(Decimal(amount)), abs(Decimal(total))
    largest = max(amount, total)
    if largest == 0:
        return 1.0
    return max(0.0, 1.0 - float(abs(amount - total) / largest))


def _same_reference(first: Optional[str], second: Optional[str]) -> bool:
    return bool(first and second and first.strip().upper() == second.strip().upper())


class MatchEngine:
    """Pure scoring; no I/O"""

    def score(
        self, chargeback: ChargebackFacts, strategy: MatchStrategy, reservation: ReservationFacts
    ) -> Optional[MatchCandidate]:
        txn = chargeback.transaction_date
        dp = date_proximity(txn, reservation)
        ap = amount_proximity(chargeback.amount, reservation.total_amount)
        sim = name_similarity(chargeback.cardholder_name, reservation.guest_name)

        if strategy == MatchStrategy.CONFIRMATION_NUMBER:
            if not _same_reference(chargeback.confirmation_number, reservation.confirmation_number):
                return None
            if txn is None:
                confidence = 95
            elif in_stay_window(txn, reservation):
                confidence = 100
            else:
                confidence = 100 - min(5, math.ceil(days_outside_stay(txn, reservation) / 7))

        elif strategy == MatchStrategy.CARD_LAST4:
            if txn is None or not _same_reference(chargeback.card_last_four, reservation.card_last_four):
                return None
            if not in_stay_window(txn, reservation):
                return None
            confidence = 70 + round(20 * (0.5 * dp + 0.5 * ap))

        elif strategy == MatchStrategy.GUEST_NAME_DATE:
            if txn is None or sim < NAME_SIMILARITY_MINIMUM:
                return None
            if days_outside_stay(txn, reservation) > NAME_DATE_SLACK_DAYS:
                return None
            confidence = 40 + round(30 * (0.6 * sim + 0.4 * dp))

        else:
            if not _same_reference(chargeback.card_last_four, reservation.card_last_four):
                return None
            if chargeback.amount is None or reservation.total_amount is None:
                return None
            total = abs(Decimal(reservation.total_amount))
            if total == 0:
                return None
            difference = abs(abs(Decimal(chargeback.amount)) - total) / total
            if difference > COMPOSITE_AMOUNT_TOLERANCE:
                return None
            if txn is not None and days_outside_stay(txn, reservation) > COMPOSITE_MAX_DAYS:
                return None
            closeness = 1.0 - float(difference / COMPOSITE_AMOUNT_TOLERANCE)
            confidence = 50 + round(15 * (0.5 * closeness + 0.5 * dp))

        if confidence < STRATEGY_MINIMUMS[strategy]:
            return None
        rank_score = round(RANK_WEIGHTS["date"] * dp + RANK_WEIGHTS["amount"] * ap + RANK_WEIGHTS["text"] * sim, 6)
        return MatchCandidate(
            reservation=reservation,
            strategy=strategy,
            confidence=int(confidence),
            rank_score=rank_score,
            date_proximity=dp,
            amount_proximity=ap,
            name_similarity=sim,
        )

    @staticmethod
    def rank(candidates: Iterable[MatchCandidate]) -> List[MatchCandidate]:
        ordered = sorted(candidates, key=lambda c: c.reservation.id)
        ordered.sort(key=lambda c: c.reservation.updated_at, reverse=True)
        ordered.sort(key=lambda c: c.rank_score, reverse=True)
        return ordered

    def best_match(
        self,
        chargeback: ChargebackFacts,
        pools: Mapping[MatchStrategy, Sequence[ReservationFacts]],
    ) -> Optional[MatchCandidate]:
        for strategy in STRATEGY_ORDER:
            scored = []
            for reservation in pools.get(strategy, ()):
                candidate = self.score(chargeback, strategy, reservation)
                if candidate is not None:
                    scored.append(candidate)
            if scored:
                return self.rank(scored)[0]
        return None


class MatchingService:
    """Persists matches for stored chargebacks against stored reservations"""

    MANUAL_LINK_STRATEGY = MatchStrategy.COMPOSITE

    def __init__(self, database: Database, engine: Optional[MatchEngine] = None):
        self.database = database
        self.engine = engine or MatchEngine()

    async def _candidate_pools(
        self, reservations: ReservationRepository, chargeback: ChargebackFacts
    ) -> Dict[MatchStrategy, List[ReservationFacts]]:
        pools: Dict[MatchStrategy, List[ReservationFacts]] = {}
        if chargeback.confirmation_number:
            rows = await reservations.find_by_confirmation(chargeback.property_id, chargeback.confirmation_number)
            pools[MatchStrategy.CONFIRMATION_NUMBER] = [ReservationFacts.from_record(r) for r in rows]
        if chargeback.card_last_four:
            rows = await reservations.find_by_card(chargeback.property_id, chargeback.card_last_four)
            card_pool = [ReservationFacts.from_record(r) for r in rows]
            pools[MatchStrategy.CARD_LAST4] = card_pool
            pools[MatchStrategy.COMPOSITE] = card_pool
        if chargeback.cardholder_name and chargeback.transaction_date:
            slack = timedelta(days=NAME_DATE_SLACK_DAYS)
            rows = await reservations.find_by_stay_overlap(
                chargeback.property_id, chargeback.transaction_date - slack, chargeback.transaction_date + slack
            )
            pools[MatchStrategy.GUEST_NAME_DATE] = [ReservationFacts.from_record(r) for r in rows]
        return pools

    async def match_reservation(self, chargeback_id: str, override: bool = False) -> Optional[ReservationMatch]:
        """
        Match a chargeback and persist the result.

        A new match row is written only when the outcome differs from the
        active match. A manually confirmed match is kept unless ``override``.
        Returns the active match, or None when nothing matches.
        """
        async with self.database.session() as session:
            chargeback = await ChargebackRepository(session).get(chargeback_id)
            if chargeback is None:
                raise ChargebackNotFoundError(chargeback_id)
            matches = MatchRepository(session)
            active = await matches.active_for(chargeback_id)
            if active is not None and active.manually_confirmed and not override:
                logger.info("manual_match_kept", chargeback_id=chargeback_id, reservation_id=active.reservation_id)
                return active

            facts = ChargebackFacts.from_record(chargeback)
            pools = await self._candidate_pools(ReservationRepository(session), facts)
            best = self.engine.best_match(facts, pools)
            if best is None:
                reservation_matches_total.labels(strategy="none").inc()
                logger.info("reservation_match_not_found", chargeback_id=chargeback_id)
                return None

            reservation_matches_total.labels(strategy=best.strategy.value).inc()
            if (
                active is not None
                and not active.manually_confirmed
                and active.reservation_id == best.reservation.id
                and active.strategy == best.strategy.value
                and active.confidence == best.confidence
            ):
                return active

            match = await matches.supersede_and_create(
                chargeback_id=chargeback_id,
                reservation_id=best.reservation.id,
                strategy=best.strategy.value,
                confidence=best.confidence,
                details=best.details(),
            )
            chargeback.reservation_id = best.reservation.id
            await TimelineRepository(session).append(
                chargeback_id,
                "reservation_matched",
                f"Matched reservation by {best.strategy.value} ({best.confidence}% confidence)",
                {"reservation_id": best.reservation.id, "strategy": best.strategy.value},
            )
            logger.info(
                "reservation_matched",
                chargeback_id=chargeback_id,
                reservation_id=best.reservation.id,
                strategy=best.strategy.value,
                confidence=best.confidence,
            )
            return match

    async def link_reservation(self, chargeback_id: str, reservation_id: str) -> ReservationMatch:
        """Manually confirmed link, superseding any active match"""
        async with self.database.session() as session:
            chargeback = await ChargebackRepository(session).get(chargeback_id)
            if chargeback is None:
                raise ChargebackNotFoundError(chargeback_id)
            reservation = await ReservationRepository(session).get(reservation_id)
            if reservation is None:
                raise ReservationNotFoundError(reservation_id)
            match = await MatchRepository(session).supersede_and_create(
                chargeback_id=chargeback_id,
                reservation_id=reservation_id,
                strategy=self.MANUAL_LINK_STRATEGY.value,
                confidence=100,
                manually_confirmed=True,
                details={"linked_at": datetime.now(timezone.utc).isoformat()},
            )
            chargeback.reservation_id = reservation_id
            await TimelineRepository(session).append(
                chargeback_id, "reservation_linked", "Reservation linked manually", {"reservation_id": reservation_id}
            )
        logger.info("reservation_linked", chargeback_id=chargeback_id, reservation_id=reservation_id)
        return match

    async def batch_match(self, chargeback_ids: Iterable[str]) -> Dict[str, Optional[ReservationMatch]]:
        results: Dict[str, Optional[ReservationMatch]] = {}
        for chargeback_id in chargeback_ids:
            results[chargeback_id] = await self.match_reservation(chargeback_id)
        return results

    async def active_match(self, chargeback_id: str) -> Optional[ReservationMatch]:
        async with self.database.session() as session:
            return await MatchRepository(session).active_for(chargeback_id)
