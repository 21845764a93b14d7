import argparse
import logging
import math
import re
import sys
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

import pandas as pd

from dashboard_hook import CATEGORY_VOCABULARY

logger = logging.getLogger("energymap.ingest")

REQUIRED_COLUMNS = ("Country", "Time", "Balance", "Product", "Value")
# Commas only as thousands grouping: "1,234.5" yes, "1,2" no
GROUPED_NUMBER = re.compile(r"^[+-]?\d{1,3}(,\d{3})+(\.\d+)?$")
CLEAN_COLUMNS =["country", "timestamp", "balance", "category", "value", "unit"]

# Accepted spellings of a monthly period, tried in order
PERIOD_FORMATS = ("%B %Y", "%b %Y", "%Y-%m", "%Y-%m-%d", "%m/%Y", "%b-%y", "%B-%Y")


class BalanceDirection(Enum):
    PRODUCTION = "Production"
    CONSUMPTION = "Consumption"
    IMPORT = "Import"
    EXPORT = "Export"
    NET = "Net"
    OTHER = "Other"

    @classmethod
    def parse(cls, text):
        """Map a raw ``Balance`` label onto a direction. Unknown labels are OTHER."""
        t = (text or "").strip().lower()
        if any(k in t for k in ("net import", "net export", "deficit", "statistical difference")):
            return cls.NET
        if "import" in t:
            return cls.IMPORT
        if "export" in t:
            return cls.EXPORT
        if "production" in t:
            return cls.PRODUCTION
        if "consumption" in t:
            return cls.CONSUMPTION
        return cls.OTHER

    @property
    def allows_negative(self):
        return self is BalanceDirection.NET


class MalformedRecordError(ValueError):
    """A raw row that cannot become a Record. The row is dropped, ingest goes on."""

    def __init__(self, reason, row=None, row_number=None):
        self.reason = reason
        self.row = row
        self.row_number = row_number
        where = f"row {row_number}: " if row_number is not None else ""
        super().__init__(f"{where}{reason}")


class UnknownCategoryWarning(UserWarning):
    """A row whose product is outside the category vocabulary. The row is kept."""

    def __init__(self, category, row_number=None):
        self.category = category
        self.row_number = row_number
        super().__init__(f"unknown category {category!r} (row {row_number})")


@dataclass(frozen=True)
class Record:
    country: str
    timestamp: str
    category: str
    balance: BalanceDirection
    value: float
    unit: str = ""
    known_category: bool = True


@dataclass
class IngestReport:
    records: list = field(default_factory=list)
    dropped: list = field(default_factory=list)
    unknown: list = field(default_factory=list)

    @property
    def dates(self):
        seen = dict.fromkeys(r.timestamp for r in self.records)
        return sorted(seen, key=period_sort_key)


def normalize_period(text):
    """
    Normalize a monthly period to the "Month Year" key used everywhere,
    e.g. "Jan 2020", "2020-01" and "January 2020" all become "January 2020".
    """
    t = " ".join(str(text).split())
    for fmt in PERIOD_FORMATS:
        try:
            d = datetime.strptime(t, fmt)
        except ValueError:
            continue
        return f"{d:%B} {d.year}"
    raise ValueError(f"Unrecognised period: {text!r}")


def period_sort_key(key):
    """Calendar order for normalized keys; unparseable keys sort last, by text."""
    try:
        d = datetime.strptime(key, "%B %Y")
    except ValueError:
        return (1, 0, 0, key)
    return (0, d.year, d.month, key)


def _coerce_value(raw):
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw)
    text = str(raw).strip()
    if not text:
        raise ValueError("empty value")
    if "," in text:
        if not GROUPED_NUMBER.match(text):
            raise ValueError(f"misplaced thousands separator in {text!r}")
        text = text.replace(",", "")
    return float(text)


def _field(row, name):
    val = row.get(name)
    if val is None:
        return ""
    if isinstance(val, float) and math.isnan(val):
        return ""
    return str(val).strip()


def normalize_record(row, row_number=None, vocabulary=CATEGORY_VOCABULARY):
    """Turn one raw row into a Record, or raise MalformedRecordError."""
    for name in REQUIRED_COLUMNS:
        if not _field(row, name):
            raise MalformedRecordError(f"missing {name}", row, row_number)

    try:
        value = _coerce_value(row["Value"])
    except (TypeError, ValueError):
        raise MalformedRecordError(f"Value {row['Value']!r} is not a number", row, row_number)
    if not math.isfinite(value):
        raise MalformedRecordError(f"Value {value!r} is not finite", row, row_number)

    balance = BalanceDirection.parse(_field(row, "Balance"))
    if value < 0 and not balance.allows_negative:
        raise MalformedRecordError(
            f"negative Value {value} for balance {_field(row, 'Balance')!r}", row, row_number
        )

    try:
        timestamp = normalize_period(_field(row, "Time"))
    except ValueError as e:
        raise MalformedRecordError(str(e), row, row_number)

    category = _field(row, "Product")
    return Record(
        country=_field(row, "Country"),
        timestamp=timestamp,
        category=category,
        balance=balance,
        value=value,
        unit=_field(row, "Unit"),
        known_category=category in vocabulary,
    )


def normalize_rows(raw_rows, vocabulary=CATEGORY_VOCABULARY):
    """
    Normalize every row, collecting problems instead of stopping on them.
    Row numbers are 1-based data rows (the header is not counted).
    """
    report = IngestReport()
    for i, row in enumerate(raw_rows, start=1):
        try:
            rec = normalize_record(row, row_number=i, vocabulary=vocabulary)
        except MalformedRecordError as e:
            report.dropped.append(e)
            logger.debug("Dropping %s", e)
            continue
        if not rec.known_category:
            report.unknown.append(UnknownCategoryWarning(rec.category, i))
        report.records.append(rec)
    return report


def normalize(raw_rows, vocabulary=CATEGORY_VOCABULARY):
    """Normalize raw rows into Records; bad rows are dropped with one summary warning."""
    report = normalize_rows(raw_rows, vocabulary=vocabulary)
    if report.dropped or report.unknown:
        logger.warning(
            "Ingest kept %d rows, dropped %d malformed rows, flagged %d rows with unknown categories",
            len(report.records), len(report.dropped), len(report.unknown),
        )
    return report.records


def read_rows(path):
    """Read the raw CSV as text columns, one dict per row."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{path} not found. Download the monthly electricity CSV first.")
    df = pd.read_csv(path, dtype=str, keep_default_na=False, skipinitialspace=True)
    df.columns = [c.strip() for c in df.columns]
    missing = set(REQUIRED_COLUMNS) - set(df.columns)
    if missing:
        raise ValueError(f"Missing columns in CSV: {sorted(missing)}")
    return df.to_dict(orient="records")


def load_records(path, vocabulary=CATEGORY_VOCABULARY):
    return normalize(read_rows(path), vocabulary=vocabulary)


def records_to_frame(records):
    """Long, tidy frame of records (one row per record)."""
    return pd.DataFrame(
        [(r.country, r.timestamp, r.balance.value, r.category, r.value, r.unit) for r in records],
        columns=CLEAN_COLUMNS,
    )


def main(argv=None):
    parser = argparse.ArgumentParser(description="Clean a monthly electricity statistics CSV.")
    parser.add_argument("raw_csv", help="CSV with Country, Time, Balance, Product, Value, Unit columns")
    parser.add_argument("-o", "--output", default="energy_data_clean.csv")
    args = parser.parse_args(argv)

    try:
        rows = read_rows(args.raw_csv)
    except (FileNotFoundError, ValueError) as e:
        print(f"  ⚠️ {e}")
        return 1

    report = normalize_rows(rows)
    if not report.records:
        print("  ⚠️ No usable rows found; nothing written.")
        return 1

    records_to_frame(report.records).to_csv(args.output, index=False)

    dates = report.dates
    print("\n✅ Wrote:")
    print(f" - {args.output}   ({', '.join(CLEAN_COLUMNS)})")
    print(f"\nRows kept: {len(report.records):,}, dropped: {len(report.dropped):,}")
    if report.unknown:
        unknown = sorted({w.category for w in report.unknown})
        print(f"Unknown categories ({len(report.unknown):,} rows):", unknown)
    print(f"Periods: {dates[0]} – {dates[-1]} ({len(dates)} months)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
