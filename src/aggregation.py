"""
CEA Transaction Aggregation

Single streaming pass over the transaction records CSV that builds every
derived view the dashboard reads:

- transactions per year
- unique salespersons per year
- per-salesperson monthly time series ("YYYY-MM" -> count) with totals
- transaction type and property type breakdowns per year
- per-salesperson record lists for the lookup page

All accumulators live on a TransactionAggregator instance for the duration
of one run; nothing is shared between runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from itertools import islice
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set

from config.settings import PROGRESS_LOG_EVERY, TRANSACTION_MIN_FIELDS
from src.csv_stream import CsvRowStream, CsvSource
from src.dates import parse_transaction_date

logger = logging.getLogger(__name__)

UNKNOWN_REG_NUM = "UNKNOWN"
UNKNOWN_NAME = "Unknown"
UNKNOWN_TYPE = "Unknown"
MISSING = "-"

YearCounts = Dict[str, int]
TypeBreakdown = Dict[str, Dict[str, int]]


# =============================================================================
# Data Model
# =============================================================================

@dataclass(frozen=True)
class TransactionRecord:
    """One row of the transaction records CSV."""

    name: str
    reg_num: str
    transaction_date: str
    property_type: str = ""
    transaction_type: str = ""
    represented: str = ""
    town: str = ""
    district: str = ""
    general_location: str = ""

    @classmethod
    def from_fields(cls, fields: Sequence[str]) -> "TransactionRecord":
        """Build a record from CSV fields in the extract's column order."""
        (
            name,
            transaction_date,
            reg_num,
            property_type,
            transaction_type,
            represented,
            town,
            district,
            general_location,
        ) = fields[:TRANSACTION_MIN_FIELDS]
        return cls(
            name=name or UNKNOWN_NAME,
            reg_num=reg_num or UNKNOWN_REG_NUM,
            transaction_date=transaction_date,
            property_type=property_type,
            transaction_type=transaction_type,
            represented=represented,
            town=town,
            district=district,
            general_location=general_location,
        )

    def to_dict(self) -> Dict[str, str]:
        """Lookup-page shape; empty optional fields become "-"."""
        return {
            "name": self.name,
            "reg_num": self.reg_num,
            "transaction_date": self.transaction_date,
            "property_type": self.property_type or MISSING,
            "transaction_type": self.transaction_type or MISSING,
            "represented": self.represented or MISSING,
            "town": self.town or MISSING,
            "district": self.district or MISSING,
            "general_location": self.general_location or MISSING,
        }


@dataclass
class SalespersonMonthly:
    """Monthly transaction counts for one salesperson."""

    reg_num: str
    name: str
    monthly: Dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.monthly.values())

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "reg_num": self.reg_num,
            "monthly": dict(self.monthly),
            "total": self.total,
        }


@dataclass
class Metadata:
    last_sync: datetime
    total_records: int
    unique_salespersons: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "last_sync": self.last_sync.isoformat(),
            "total_records": self.total_records,
            "unique_salespersons": self.unique_salespersons,
        }


@dataclass
class AggregationResult:
    transactions_by_year: YearCounts
    salespersons_by_year: YearCounts
    salesperson_monthly: List[SalespersonMonthly]
    transaction_type_by_year: TypeBreakdown
    property_type_by_year: TypeBreakdown
    salesperson_records: Dict[str, List[TransactionRecord]]
    metadata: Metadata
    skipped_rows: int = 0
    undated_records: int = 0


# =============================================================================
# Accumulators
# =============================================================================

class TransactionAggregator:
    """Accumulates every derived view in one pass over TransactionRecords."""

    def __init__(self):
        self.transactions_by_year: YearCounts = {}
        self.transaction_type_by_year: TypeBreakdown = {}
        self.property_type_by_year: TypeBreakdown = {}
        self.salesperson_records: Dict[str, List[TransactionRecord]] = {}
        self._salespersons_per_year: Dict[str, Set[str]] = {}
        self._monthly: Dict[str, SalespersonMonthly] = {}
        self.total_records = 0
        self.undated_records = 0

    def add(self, record: TransactionRecord) -> bool:
        """
        Fold one record into the accumulators.

        Returns False when the record has no usable date; such records are
        kept for the salesperson lookup but left out of every date-keyed view.
        """
        self.salesperson_records.setdefault(record.reg_num, []).append(record)

        period = parse_transaction_date(record.transaction_date)
        if period is None:
            self.undated_records += 1
            return False

        year, month_year = period
        self.total_records += 1

        self.transactions_by_year[year] = self.transactions_by_year.get(year, 0) + 1
        self._salespersons_per_year.setdefault(year, set()).add(record.reg_num)

        salesperson = self._monthly.get(record.reg_num)
        if salesperson is None:
            salesperson = SalespersonMonthly(reg_num=record.reg_num, name=record.name)
            self._monthly[record.reg_num] = salesperson
        salesperson.monthly[month_year] = salesperson.monthly.get(month_year, 0) + 1

        _increment(self.transaction_type_by_year, year, record.transaction_type or UNKNOWN_TYPE)
        _increment(self.property_type_by_year, year, record.property_type or UNKNOWN_TYPE)

        return True

    def finalize(self, skipped_rows: int = 0, now: Optional[datetime] = None) -> AggregationResult:
        salespersons_by_year = {
            year: len(reg_nums) for year, reg_nums in self._salespersons_per_year.items()
        }

        # sorted() is stable, so ties keep first-seen order
        salesperson_monthly = sorted(self._monthly.values(), key=lambda sp: sp.total, reverse=True)

        metadata = Metadata(
            last_sync=now or datetime.utcnow(),
            total_records=self.total_records,
            unique_salespersons=len(salesperson_monthly),
        )

        return AggregationResult(
            transactions_by_year=self.transactions_by_year,
            salespersons_by_year=salespersons_by_year,
            salesperson_monthly=salesperson_monthly,
            transaction_type_by_year=self.transaction_type_by_year,
            property_type_by_year=self.property_type_by_year,
            salesperson_records=self.salesperson_records,
            metadata=metadata,
            skipped_rows=skipped_rows,
            undated_records=self.undated_records,
        )


def _increment(breakdown: TypeBreakdown, year: str, label: str) -> None:
    counts = breakdown.setdefault(year, {})
    counts[label] = counts.get(label, 0) + 1


# =============================================================================
# Entry Points
# =============================================================================

def aggregate_transactions(
    rows: Iterable[Sequence[str]],
    *,
    skipped_rows: int = 0,
    progress_every: int = PROGRESS_LOG_EVERY,
) -> AggregationResult:
    """Aggregate already-split CSV rows (header excluded)."""
    aggregator = TransactionAggregator()
    _consume(aggregator, rows, progress_every)
    return aggregator.finalize(skipped_rows=skipped_rows)


def _consume(aggregator: TransactionAggregator, rows: Iterable[Sequence[str]], progress_every: int) -> None:
    for line_number, fields in enumerate(rows, start=1):
        aggregator.add(TransactionRecord.from_fields(fields))
        if progress_every and line_number % progress_every == 0:
            logger.info(f"  Processed {line_number:,} lines...")


def aggregate_transactions_csv(
    source: CsvSource,
    *,
    limit: Optional[int] = None,
    progress_every: int = PROGRESS_LOG_EVERY,
) -> AggregationResult:
    """Stream the transaction records CSV and aggregate it in one pass."""
    if isinstance(source, (str, Path)):
        logger.info(f"Reading transaction records from {source}...")

    stream = CsvRowStream(source, min_fields=TRANSACTION_MIN_FIELDS)
    rows = stream if limit is None else islice(stream, limit)

    aggregator = TransactionAggregator()
    _consume(aggregator, rows, progress_every)
    result = aggregator.finalize(skipped_rows=stream.skipped_rows)

    logger.info(f"Total records processed: {result.metadata.total_records:,}")
    logger.info(f"  ├─ Skipped short rows: {result.skipped_rows:,}")
    logger.info(f"  ├─ Undated records: {result.undated_records:,}")
    logger.info(f"  └─ Unique salespersons: {result.metadata.unique_salespersons:,}")
    logger.info(f"Years: {', '.join(sorted(result.transactions_by_year))}")

    return result
