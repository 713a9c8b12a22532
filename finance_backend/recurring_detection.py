from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Hashable, Iterable, List, Optional, Sequence, Set, Tuple

from finance_backend.periods import DEFAULT_DETECTOR, MIN_OCCURRENCES, FrequencyDetector

PRIMARY = "PRIMARY"
FALLBACK = "FALLBACK"


@dataclass(frozen=True)
class TransactionRecord:
    id: int
    amount: Decimal
    category: str
    date: date
    description: Optional[str] = None
    currency: Optional[str] = None


@dataclass(frozen=True)
class RecurringTransaction:
    key: str
    frequency: str
    count: int
    amount: Decimal
    category: str
    description: Optional[str]
    grouping: str
    transaction_ids: Tuple[int, ...]


def detect_recurring(
    transactions: Iterable[TransactionRecord],
    detector: FrequencyDetector = DEFAULT_DETECTOR,
    min_occurrences: int = MIN_OCCURRENCES,
) -> List[RecurringTransaction]:
    """Find recurring charges in two passes.

    The first pass groups on amount, category and description. The second
    groups on amount and category alone, and only for amount/category pairs
    the first pass did not already report.
    """
    ordered = sorted(transactions, key=lambda txn: (txn.date, txn.id))
    results: List[RecurringTransaction] = []
    matched: Set[Tuple[Decimal, str]] = set()

    for key, group in _group(ordered, _primary_key).items():
        found = _check_group(group, PRIMARY, detector, min_occurrences)
        if found is not None:
            results.append(found)
            matched.add((key[0], key[1]))

    for key, group in _group(ordered, _fallback_key).items():
        if key in matched:
            continue
        found = _check_group(group, FALLBACK, detector, min_occurrences)
        if found is not None:
            results.append(found)

    return results


def _primary_key(txn: TransactionRecord) -> Tuple[Decimal, str, str]:
    return (txn.amount, txn.category, txn.description or "")


def _fallback_key(txn: TransactionRecord) -> Tuple[Decimal, str]:
    return (txn.amount, txn.category)


def _group(
    transactions: Sequence[TransactionRecord], key_fn
) -> Dict[Hashable, List[TransactionRecord]]:
    groups: Dict[Hashable, List[TransactionRecord]] = {}
    for txn in transactions:
        groups.setdefault(key_fn(txn), []).append(txn)
    return groups


def _check_group(
    group: List[TransactionRecord],
    grouping: str,
    detector: FrequencyDetector,
    min_occurrences: int,
) -> Optional[RecurringTransaction]:
    if len(group) < min_occurrences:
        return None
    frequency = detector.detect([txn.date for txn in group])
    if frequency is None:
        return None
    first = group[0]
    key = f"{first.amount}-{first.category}"
    if grouping == PRIMARY:
        key = f"{key}-{first.description or ''}"
    return RecurringTransaction(
        key=key,
        frequency=frequency,
        count=len(group),
        amount=first.amount,
        category=first.category,
        description=first.description,
        grouping=grouping,
        transaction_ids=tuple(txn.id for txn in group),
    )
