"""
CEA Salesperson Analytics - Aggregation ETL

Extracts the CEA transaction records and salesperson information CSVs,
Transforms them in a single streaming pass into the dashboard aggregates,
Loads them into the store (or writes the JSON artifact files).

Key Features:
- Constant-memory CSV parsing; malformed rows skipped and counted
- Undated rows kept for salesperson lookup, excluded from date-keyed views
- Data contracts on aggregate invariants before anything is written
- Full replacement of monthly series and record lists on every run

Usage:
    python -m src.etl
    python -m src.etl --output files --data-dir data/processed
"""

import argparse
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import pandas as pd

from config.settings import (
    DATA_PROCESSED,
    REPORTS_DATA_DIR,
    SALESPERSON_INFO_CSV,
    SYNC_CONFIG,
    TRANSACTIONS_CSV,
)
from src.aggregation import AggregationResult, aggregate_transactions_csv
from src.database import (
    PropertyTypeByYear,
    SalespersonInfoRow,
    SalespersonMonthlyRow,
    SalespersonRecordRow,
    SalespersonsByYear,
    SyncMetadata,
    TransactionTypeByYear,
    TransactionsByYear,
    create_tables,
    get_engine,
)
from src.exports import monthly_rows, write_artifacts
from src.salesperson_info import SalespersonInfo, load_salesperson_info
from src.store import RowStore
from src.validation.data_contracts import (
    DataContractError,
    DataContractResult,
    format_contract_violations,
    validate_aggregates,
    validate_directory,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

OUTPUT_STORE = "store"
OUTPUT_FILES = "files"


# =============================================================================
# 1. ROW SHAPES
# =============================================================================

def _none_if_dash(value: Optional[str]) -> Optional[str]:
    return None if value in (None, "", "-") else value


def yearly_rows(counts: Mapping[str, int]) -> List[Dict]:
    return [{"year": year, "count": count} for year, count in counts.items()]


def breakdown_rows(breakdown: Mapping[str, Mapping[str, int]], label_column: str) -> List[Dict]:
    return [
        {"year": year, label_column: label, "count": count}
        for year, labels in breakdown.items()
        for label, count in labels.items()
    ]


def record_rows(result: AggregationResult) -> List[Dict]:
    rows = []
    for records in result.salesperson_records.values():
        for record in records:
            row = record.to_dict()
            rows.append({key: (value if key in ("reg_num", "name") else _none_if_dash(value)) for key, value in row.items()})
    return rows


# =============================================================================
# 2. LOADING
# =============================================================================

def load_to_store(
    store: RowStore,
    result: AggregationResult,
    directory: Mapping[str, SalespersonInfo],
    *,
    batch_size: int = SYNC_CONFIG.upsert_batch_size,
) -> Dict[str, int]:
    """
    Write one aggregation run into the store.

    Metadata and the directory are upserted. The yearly views, monthly
    series and record lists are deleted and re-inserted so no stale year,
    label or salesperson rows survive. Steps commit independently; a
    failure leaves earlier steps in place.
    """
    logger.info("Loading aggregates to the store...")
    loaded: Dict[str, int] = {}

    metadata = result.metadata
    loaded["metadata"] = store.upsert(
        SyncMetadata,
        [{
            "id": 1,
            "last_sync": metadata.last_sync,
            "total_records": metadata.total_records,
            "unique_salespersons": metadata.unique_salespersons,
        }],
        ["id"],
    )

    # Replaced wholesale: no year or label from an earlier run survives
    year_views = [
        (TransactionsByYear, yearly_rows(result.transactions_by_year)),
        (SalespersonsByYear, yearly_rows(result.salespersons_by_year)),
        (TransactionTypeByYear, breakdown_rows(result.transaction_type_by_year, "transaction_type")),
        (PropertyTypeByYear, breakdown_rows(result.property_type_by_year, "property_type")),
    ]
    for model, rows in year_views:
        store.delete_where(model)
        loaded[model.__tablename__] = store.insert(model, rows, batch_size=batch_size)

    loaded["salesperson_info"] = store.upsert(
        SalespersonInfoRow,
        [info.to_row() for info in directory.values()],
        ["reg_num"],
        batch_size=batch_size,
    )

    store.delete_where(SalespersonMonthlyRow)
    loaded["salesperson_monthly"] = store.insert(
        SalespersonMonthlyRow,
        monthly_rows([sp.to_dict() for sp in result.salesperson_monthly]),
        batch_size=batch_size,
    )

    logger.info("  Clearing existing salesperson records...")
    store.delete_where(SalespersonRecordRow)
    loaded["salesperson_records"] = store.insert(
        SalespersonRecordRow, record_rows(result), batch_size=batch_size
    )

    for table, count in loaded.items():
        logger.info(f"  ✓ {table} ({count:,} rows)")
    return loaded


# =============================================================================
# 3. REPORTING
# =============================================================================

def _record_stage(stage_stats: list[dict], stage_name: str, **counters) -> None:
    """Capture row and quality counters for ETL stage reporting."""
    stage_stats.append({"stage": stage_name, **counters})


def _input_quality_lines(result: Optional[AggregationResult], directory_size: Optional[int]) -> List[str]:
    if result is None:
        return ["_Aggregation did not complete._"]

    years = sorted(result.transactions_by_year)
    lines = [
        f"- Dated records: {result.metadata.total_records:,}",
        f"- Undated records (lookup only): {result.undated_records:,}",
        f"- Skipped short rows: {result.skipped_rows:,}",
        f"- Unique salespersons: {result.metadata.unique_salespersons:,}",
        f"- Years covered: {', '.join(years) if years else 'none'}",
    ]
    if directory_size is not None:
        lines.append(f"- Directory entries: {directory_size:,}")
    return lines


def _write_etl_report(
    run_started_at: datetime,
    transactions_path: Path,
    info_path: Path,
    output: str,
    dry_run: bool,
    stage_stats: list[dict],
    contract_results: list[tuple[str, DataContractResult]],
    result: Optional[AggregationResult] = None,
    directory_size: Optional[int] = None,
    report_dir: Path = REPORTS_DATA_DIR,
) -> tuple[Path, Path]:
    """
    Write the run report pair into `report_dir`:
    - etl_run_YYYYMMDD.md  (inputs, input quality, stages, contracts)
    - etl_run_YYYYMMDD.csv (one row per stage)
    """
    report_dir = Path(report_dir)
    report_dir.mkdir(parents=True, exist_ok=True)

    run_stamp = run_started_at.strftime("%Y%m%d")
    markdown_path = report_dir / f"etl_run_{run_stamp}.md"
    csv_path = report_dir / f"etl_run_{run_stamp}.csv"

    stage_df = pd.DataFrame(stage_stats).fillna(0)
    stage_df.to_csv(csv_path, index=False)

    failed_checks = [
        f"- {label} / `{violation.check}`: {violation.message} ({violation.failed_rows:,} rows)"
        for label, contract in contract_results
        for violation in contract.violations
    ]
    contract_status = ", ".join(
        f"{label} {'PASS' if contract.passed else 'FAIL'}" for label, contract in contract_results
    )

    md = [
        f"# CEA Aggregation Run - {run_stamp}",
        "",
        "## Inputs",
        f"- Started (UTC): {run_started_at.isoformat()}",
        f"- Transaction records: `{transactions_path}`",
        f"- Salesperson information: `{info_path}`",
        f"- Target: `{output}`{' (dry run, nothing written)' if dry_run else ''}",
        "",
        "## Input Quality",
        *_input_quality_lines(result, directory_size),
        "",
        "## Stages",
        "```text",
        stage_df.to_string(index=False) if not stage_df.empty else "No stages completed.",
        "```",
        "",
        "## Contracts",
        f"- Status: {contract_status or 'not reached'}",
        *failed_checks,
    ]

    markdown_path.write_text("\n".join(md) + "\n", encoding="utf-8")
    return markdown_path, csv_path


# =============================================================================
# MAIN PIPELINE
# =============================================================================

def run_etl(
    transactions_path: Path = TRANSACTIONS_CSV,
    info_path: Path = SALESPERSON_INFO_CSV,
    *,
    output: str = OUTPUT_STORE,
    data_dir: Path = DATA_PROCESSED,
    store: Optional[RowStore] = None,
    limit: Optional[int] = None,
    dry_run: bool = False,
    write_report: bool = False,
    report_dir: Path = REPORTS_DATA_DIR,
) -> AggregationResult:
    """Execute the full aggregation pipeline."""
    logger.info("=" * 60)
    logger.info("CEA Salesperson Analytics ETL")
    logger.info("=" * 60)

    if output not in (OUTPUT_STORE, OUTPUT_FILES):
        raise ValueError(f"Unknown output {output!r}; expected '{OUTPUT_STORE}' or '{OUTPUT_FILES}'")

    run_started_at = datetime.utcnow()
    stage_stats: list[dict] = []
    contract_results: list[tuple[str, DataContractResult]] = []
    result: Optional[AggregationResult] = None
    directory: Optional[Dict[str, SalespersonInfo]] = None

    def report(partial: bool) -> None:
        markdown_path, csv_path = _write_etl_report(
            run_started_at=run_started_at,
            transactions_path=transactions_path,
            info_path=info_path,
            output=output,
            dry_run=dry_run,
            stage_stats=stage_stats,
            contract_results=contract_results,
            result=result,
            directory_size=None if directory is None else len(directory),
            report_dir=report_dir,
        )
        prefix = "Partial ETL" if partial else "ETL"
        logger.info(f"{prefix} report written: {markdown_path}")
        logger.info(f"{prefix} CSV summary written: {csv_path}")

    try:
        # 1. Extract + Transform (single streaming pass)
        result = aggregate_transactions_csv(transactions_path, limit=limit)
        _record_stage(
            stage_stats,
            "aggregated_transactions",
            rows=result.metadata.total_records,
            skipped_rows=result.skipped_rows,
            undated_records=result.undated_records,
        )

        directory = load_salesperson_info(info_path)
        _record_stage(stage_stats, "loaded_salesperson_info", rows=len(directory))

        # 2. Contracts (both run before either can fail the pipeline)
        contract_results.append(("aggregates", validate_aggregates(result, raise_on_error=False)))
        contract_results.append(("directory", validate_directory(directory, raise_on_error=False)))
        violations = [v for _, contract in contract_results for v in contract.violations]
        if violations:
            raise DataContractError(format_contract_violations(violations))
        logger.info("Data contracts (aggregates, directory): PASS")

        # 3. Load
        if dry_run:
            logger.info("Dry run enabled: skipping load.")
            _record_stage(stage_stats, "load_skipped_dry_run", rows=0)
        elif output == OUTPUT_FILES:
            written = write_artifacts(result, directory, data_dir)
            _record_stage(stage_stats, "wrote_json_artifacts", rows=len(written))
        else:
            if store is None:
                engine = get_engine()
                create_tables(engine)
                store = RowStore(engine)
            loaded = load_to_store(store, result, directory)
            _record_stage(stage_stats, "loaded_store", rows=sum(loaded.values()))

        # Summary
        logger.info("=" * 60)
        logger.info("ETL Pipeline Completed Successfully")
        logger.info("=" * 60)
        logger.info(f"Final record count: {result.metadata.total_records:,}")
        logger.info(f"Unique salespersons: {result.metadata.unique_salespersons:,}")
        logger.info(f"Directory entries: {len(directory):,}")

        if write_report:
            report(partial=False)

        return result

    except Exception as e:
        logger.error(f"ETL Failed: {e}")
        if write_report and stage_stats:
            try:
                report(partial=True)
            except OSError as report_error:
                logger.error(f"Failed to write partial ETL report: {report_error}")
        raise


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the CEA salesperson aggregation ETL")
    parser.add_argument(
        "--transactions",
        type=Path,
        default=TRANSACTIONS_CSV,
        help=f"Transaction records CSV (default: {TRANSACTIONS_CSV})",
    )
    parser.add_argument(
        "--info",
        type=Path,
        default=SALESPERSON_INFO_CSV,
        help=f"Salesperson information CSV (default: {SALESPERSON_INFO_CSV})",
    )
    parser.add_argument(
        "--output",
        choices=[OUTPUT_STORE, OUTPUT_FILES],
        default=OUTPUT_STORE,
        help="Load into the database or write JSON artifact files",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=DATA_PROCESSED,
        help=f"Directory for JSON artifacts (default: {DATA_PROCESSED})",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Optional row limit on the transaction records (applied while streaming)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run aggregation and contracts without writing anything",
    )
    parser.add_argument(
        "--write-report",
        action="store_true",
        help="Write reports/data/etl_run_YYYYMMDD.md and CSV stage summary",
    )
    args = parser.parse_args()

    run_etl(
        transactions_path=args.transactions,
        info_path=args.info,
        output=args.output,
        data_dir=args.data_dir,
        limit=args.limit,
        dry_run=args.dry_run,
        write_report=args.write_report,
    )
