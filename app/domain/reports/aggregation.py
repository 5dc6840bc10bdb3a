"""
Group-and-summarize routine shared by every report.

Each report picks a grouping key, the numeric fields to total and any
conditional counts; ``aggregate`` does the rest so that a report's totals are
always the sum of the records it was given.
"""

from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

Getter = Callable[[Any], Any]


@dataclass
class Bucket:
    key: Hashable
    count: int = 0
    sums: dict[str, float] = field(default_factory=dict)
    mins: dict[str, float] = field(default_factory=dict)
    maxs: dict[str, float] = field(default_factory=dict)
    counts: dict[str, int] = field(default_factory=dict)
    distinct: dict[str, set] = field(default_factory=dict)
    first: dict[str, Any] = field(default_factory=dict)

    def avg(self, name: str) -> float:
        return self.sums.get(name, 0) / self.count if self.count else 0


def aggregate(
    records: Iterable[Any],
    key: Getter,
    sums: Optional[dict[str, Getter]] = None,
    counts: Optional[dict[str, Callable[[Any], bool]]] = None,
    distinct: Optional[dict[str, Getter]] = None,
    first: Optional[dict[str, Getter]] = None,
    mins: Optional[dict[str, Getter]] = None,
    maxs: Optional[dict[str, Getter]] = None,
) -> dict[Hashable, Bucket]:
    """
    Group records by ``key`` and summarize each group.

    Args:
        records: Rows to summarize (ORM objects or dicts)
        key: Grouping key per record; ``None`` keys are grouped like any other value
        sums: Output name -> numeric getter, totalled per group (missing values count as 0)
        counts: Output name -> predicate, counted per group when true
        distinct: Output name -> getter, number of distinct non-null values per group
        first: Output name -> getter, value taken from the first record of the group
        mins / maxs: Output name -> numeric getter, extreme value per group

    Returns:
        Buckets keyed by group key, in first-seen order
    """
    sums = sums or {}
    counts = counts or {}
    distinct = distinct or {}
    first = first or {}
    mins = mins or {}
    maxs = maxs or {}

    buckets: dict[Hashable, Bucket] = {}
    for record in records:
        group = key(record)
        bucket = buckets.get(group)
        if bucket is None:
            bucket = Bucket(
                key=group,
                sums={name: 0.0 for name in sums},
                counts={name: 0 for name in counts},
                distinct={name: set() for name in distinct},
                first={name: getter(record) for name, getter in first.items()},
            )
            buckets[group] = bucket

        bucket.count += 1
        for name, getter in sums.items():
            bucket.sums[name] += getter(record) or 0
        for name, predicate in counts.items():
            if predicate(record):
                bucket.counts[name] += 1
        for name, getter in distinct.items():
            value = getter(record)
            if value is not None:
                bucket.distinct[name].add(value)
        for name, getter in mins.items():
            value = getter(record) or 0
            bucket.mins[name] = value if name not in bucket.mins else min(bucket.mins[name], value)
        for name, getter in maxs.items():
            value = getter(record) or 0
            bucket.maxs[name] = value if name not in bucket.maxs else max(bucket.maxs[name], value)

    return buckets


def total(records: Iterable[Any], **kwargs) -> Bucket:
    """Summary over all records as a single bucket"""
    buckets = aggregate(records, key=lambda _: None, **kwargs)
    if None in buckets:
        return buckets[None]
    # Empty selection still reports zeros for every requested figure
    return Bucket(
        key=None,
        sums={name: 0.0 for name in kwargs.get("sums") or {}},
        mins={name: 0 for name in kwargs.get("mins") or {}},
        maxs={name: 0 for name in kwargs.get("maxs") or {}},
        counts={name: 0 for name in kwargs.get("counts") or {}},
        distinct={name: set() for name in kwargs.get("distinct") or {}},
    )


def month_bucket(value: Optional[datetime]) -> Optional[str]:
    return value.strftime("%Y-%m") if value else None


def day_bucket(value: Optional[datetime]) -> Optional[str]:
    return value.strftime("%Y-%m-%d") if value else None


def percentage(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0
