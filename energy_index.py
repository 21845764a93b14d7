"""
Date -> country -> category lookup over normalized records.

The index is built once per dataset load and never mutated afterwards; a new
dataset means a new index. Every query is total: missing dates, countries or
categories read as 0 or as an empty result, never as an error.
"""

from __future__ import annotations

import logging
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, NamedTuple

import pandas as pd

from dashboard_hook import RANKING_CATEGORY, RANKING_ASCENDING_SKIP
from prepare_energy_dataset import normalize_period, period_sort_key

logger = logging.getLogger("energymap.index")

_EMPTY = MappingProxyType({})


class Direction(Enum):
    ASCENDING = "L"   # lowest consumption first
    DESCENDING = "M"  # highest consumption first


class RankingEntry(NamedTuple):
    country: str
    value: float


class CountryHistoryPoint(NamedTuple):
    timestamp: str
    value: float


class CategoryShare(NamedTuple):
    category: str
    value: float
    share: float | None


class AggregationIndex:
    """
    Read-only three-level mapping.

    Key domains: level 1 is the normalized period ("January 2020"), level 2
    the country name as it appears in the dataset, level 3 the product
    category ("P.Wind").
    """

    def __init__(self, data: dict, duplicate_count: int = 0):
        self._data = MappingProxyType({
            date: MappingProxyType({c: MappingProxyType(cats) for c, cats in countries.items()})
            for date, countries in data.items()
        })
        self.duplicate_count = duplicate_count

    @property
    def dates(self) -> tuple[str, ...]:
        """Date keys in first-seen order."""
        return tuple(self._data)

    def countries(self, date: str) -> Mapping[str, Mapping[str, float]]:
        return self._data.get(resolve_date(date), _EMPTY)

    def __contains__(self, date) -> bool:
        return resolve_date(date) in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self):
        return f"<AggregationIndex dates={len(self._data)} duplicates={self.duplicate_count}>"


def resolve_date(date: str) -> str:
    """Canonical form of a date key; unparseable keys are used verbatim."""
    try:
        return normalize_period(date)
    except ValueError:
        return date


def build_index(records: Iterable, balance=None) -> AggregationIndex:
    """Single pass over records. Duplicate (date, country, category) keys: last write wins."""
    data: dict[str, dict[str, dict[str, float]]] = {}
    balances: dict[tuple, object] = {}
    duplicates = 0
    mixed = 0
    for rec in records:
        if balance is not None and rec.balance is not balance:
            continue
        cats = data.setdefault(rec.timestamp, {}).setdefault(rec.country, {})
        key = (rec.timestamp, rec.country, rec.category)
        if rec.category in cats:
            duplicates += 1
            if balances[key] is not rec.balance:
                mixed += 1
        cats[rec.category] = rec.value
        balances[key] = rec.balance

    if mixed:
        logger.warning(
            "Index overwrote %d values with a different balance; the last row in the file wins. "
            "Pass a balance to keep one direction.", mixed,
        )
    if duplicates:
        logger.info("Index overwrote %d duplicate (date, country, category) values", duplicates)
    logger.debug("Built index with %d dates", len(data))
    return AggregationIndex(data, duplicate_count=duplicates)


def value_for(index: AggregationIndex, date: str, country: str, category: str) -> float:
    return index.countries(date).get(country, _EMPTY).get(category, 0)


def country_slice(index: AggregationIndex, date: str, country: str) -> Mapping[str, float]:
    return index.countries(date).get(country, _EMPTY)


def top_n(
    index: AggregationIndex,
    date: str,
    n: int,
    direction: Direction = Direction.DESCENDING,
    *,
    category: str = RANKING_CATEGORY,
    ascending_skip: int = RANKING_ASCENDING_SKIP,
) -> list[RankingEntry]:
    """
    Rank the countries that reported ``category`` on ``date``.

    Ties are broken by country name in both directions. The ascending ranking
    leaves out the ``ascending_skip`` lowest entries before taking ``n``.
    """
    if n <= 0:
        return []
    entries = [
        RankingEntry(country, cats[category])
        for country, cats in index.countries(date).items()
        if category in cats
    ]
    if direction is Direction.DESCENDING:
        entries.sort(key=lambda e: (-e.value, e.country))
        return entries[:n]
    entries.sort(key=lambda e: (e.value, e.country))
    skip = max(ascending_skip, 0)
    return entries[skip:skip + n]


def history(
    index: AggregationIndex,
    country: str,
    *,
    category: str = RANKING_CATEGORY,
) -> Iterator[CountryHistoryPoint]:
    """One point per date in the index, zero where the country did not report."""
    for date in index.dates:
        yield CountryHistoryPoint(date, value_for(index, date, country, category))


def history_frame(index: AggregationIndex, country: str, *, category: str = RANKING_CATEGORY) -> pd.DataFrame:
    """History in calendar order, ready for plotting."""
    points = sorted(history(index, country, category=category), key=lambda p: period_sort_key(p.timestamp))
    return pd.DataFrame(points, columns=["timestamp", "value"])


def category_breakdown(
    index: AggregationIndex,
    date: str,
    country: str,
    allowed_categories: Iterable[str],
    *,
    total: float | None = None,
) -> list[CategoryShare]:
    """Reported categories of one country, limited to and ordered by ``allowed_categories``."""
    cats = country_slice(index, date, country)
    out = []
    for category in dict.fromkeys(allowed_categories):
        if category not in cats:
            continue
        value = cats[category]
        share = value / total * 100 if total and total > 0 else None
        out.append(CategoryShare(category, value, share))
    return out


def chronological_dates(index: AggregationIndex) -> list[str]:
    return sorted(index.dates, key=period_sort_key)
