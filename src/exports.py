"""
File-based deployment: aggregates as a fixed set of named JSON files.

write_artifacts() dumps one AggregationResult (plus the salesperson
directory) into a data directory; the get_* accessors read them back in the
shapes the dashboard consumes.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from config.settings import DATA_PROCESSED
from src.aggregation import AggregationResult
from src.salesperson_info import SalespersonInfo

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
TRANSACTIONS_BY_YEAR_FILE = "transactions_by_year.json"
SALESPERSONS_BY_YEAR_FILE = "salespersons_by_year.json"
SALESPERSON_MONTHLY_FILE = "salesperson_monthly.json"
TRANSACTION_TYPE_BY_YEAR_FILE = "transaction_type_by_year.json"
PROPERTY_TYPE_BY_YEAR_FILE = "property_type_by_year.json"
SALESPERSON_RECORDS_FILE = "salesperson_records.json"
SALESPERSON_INFO_FILE = "salesperson_info.json"


def write_artifacts(
    result: AggregationResult,
    directory: Mapping[str, SalespersonInfo],
    data_dir: Path = DATA_PROCESSED,
) -> List[Path]:
    """Write every aggregate to its JSON file; returns the written paths."""
    data_dir = Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)

    logger.info(f"Saving aggregated data to {data_dir}...")

    # Large files are written compact, the small summaries indented
    payloads = [
        (METADATA_FILE, result.metadata.to_dict(), 2),
        (TRANSACTIONS_BY_YEAR_FILE, result.transactions_by_year, 2),
        (SALESPERSONS_BY_YEAR_FILE, result.salespersons_by_year, 2),
        (SALESPERSON_MONTHLY_FILE, [sp.to_dict() for sp in result.salesperson_monthly], 2),
        (TRANSACTION_TYPE_BY_YEAR_FILE, result.transaction_type_by_year, 2),
        (PROPERTY_TYPE_BY_YEAR_FILE, result.property_type_by_year, 2),
        (
            SALESPERSON_RECORDS_FILE,
            {reg_num: [r.to_dict() for r in records] for reg_num, records in result.salesperson_records.items()},
            None,
        ),
        (SALESPERSON_INFO_FILE, {reg_num: info.to_dict() for reg_num, info in directory.items()}, None),
    ]

    written = []
    for filename, payload, indent in payloads:
        path = data_dir / filename
        path.write_text(json.dumps(payload, indent=indent), encoding="utf-8")
        logger.info(f"  ✓ {filename}")
        written.append(path)

    return written


# =============================================================================
# Accessors
# =============================================================================

def read_artifact(filename: str, data_dir: Path = DATA_PROCESSED) -> Any:
    path = Path(data_dir) / filename
    if not path.exists():
        raise FileNotFoundError(f"Artifact not found at {path}. Run src/etl.py --output files first.")
    return json.loads(path.read_text(encoding="utf-8"))


def get_metadata(data_dir: Path = DATA_PROCESSED) -> Dict[str, Any]:
    return read_artifact(METADATA_FILE, data_dir)


def get_transactions_by_year(data_dir: Path = DATA_PROCESSED) -> Dict[str, int]:
    return read_artifact(TRANSACTIONS_BY_YEAR_FILE, data_dir)


def get_salespersons_by_year(data_dir: Path = DATA_PROCESSED) -> Dict[str, int]:
    return read_artifact(SALESPERSONS_BY_YEAR_FILE, data_dir)


def get_salesperson_monthly(data_dir: Path = DATA_PROCESSED) -> List[Dict[str, Any]]:
    return read_artifact(SALESPERSON_MONTHLY_FILE, data_dir)


def get_transaction_type_by_year(data_dir: Path = DATA_PROCESSED) -> Dict[str, Dict[str, int]]:
    return read_artifact(TRANSACTION_TYPE_BY_YEAR_FILE, data_dir)


def get_property_type_by_year(data_dir: Path = DATA_PROCESSED) -> Dict[str, Dict[str, int]]:
    return read_artifact(PROPERTY_TYPE_BY_YEAR_FILE, data_dir)


def get_salesperson_records(data_dir: Path = DATA_PROCESSED) -> Dict[str, List[Dict[str, str]]]:
    return read_artifact(SALESPERSON_RECORDS_FILE, data_dir)


def get_salesperson_info(data_dir: Path = DATA_PROCESSED) -> Dict[str, Dict[str, str]]:
    return read_artifact(SALESPERSON_INFO_FILE, data_dir)


def lookup_salesperson(reg_num: str, data_dir: Path = DATA_PROCESSED) -> Optional[Dict[str, Any]]:
    """Records and directory entry for one registration number, from the JSON files."""
    records = get_salesperson_records(data_dir).get(reg_num)
    if not records:
        return None
    return {"records": records, "info": get_salesperson_info(data_dir).get(reg_num)}


def monthly_rows(salespersons: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Flatten salesperson_monthly.json into salesperson_monthly table rows."""
    return [
        {"reg_num": sp["reg_num"], "name": sp["name"], "month_year": month_year, "count": count}
        for sp in salespersons
        for month_year, count in sp["monthly"].items()
    ]


def get_available_date_range(salespersons: List[Dict[str, Any]]) -> Optional[Dict[str, str]]:
    """Earliest and latest "YYYY-MM" present; None when there is no data."""
    months = [month_year for sp in salespersons for month_year in sp["monthly"]]
    if not months:
        return None
    return {"min_date": min(months), "max_date": max(months)}
