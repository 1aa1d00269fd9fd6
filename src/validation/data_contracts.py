"""Data contracts for aggregation and directory reliability checks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Mapping, Optional

import pandas as pd

from src.aggregation import AggregationResult
from src.salesperson_info import SalespersonInfo


DEFAULT_DIRECTORY_COLUMNS = [
    "reg_num",
    "name",
    "registration_start_date",
    "registration_end_date",
    "estate_agent_name",
    "estate_agent_license_no",
]

DEFAULT_NULL_THRESHOLDS = {
    "reg_num": 0.0,
    "name": 0.0,
}


@dataclass
class ContractViolation:
    """Represents a failed data-contract check."""

    check: str
    message: str
    failed_rows: int = 0


@dataclass
class DataContractResult:
    """Aggregated result for all checks."""

    passed: bool
    row_count: int
    checked_at: str
    violations: List[ContractViolation]


class DataContractError(ValueError):
    """Raised when one or more contract checks fail."""


def validate_aggregates(result: AggregationResult, *, raise_on_error: bool = True) -> DataContractResult:
    """
    Check the invariants every aggregation run must satisfy.

    Checks:
    - each year's transaction-type and property-type counts sum to that
      year's transaction count
    - each year's unique salesperson count does not exceed its transactions
    - metadata totals match the yearly and per-salesperson views
    - the salesperson leaderboard is ordered by total descending
    """
    violations: List[ContractViolation] = []
    violations.extend(_check_breakdown("transaction_type_by_year", result.transaction_type_by_year, result.transactions_by_year))
    violations.extend(_check_breakdown("property_type_by_year", result.property_type_by_year, result.transactions_by_year))
    violations.extend(_check_salespersons_by_year(result))
    violations.extend(_check_totals(result))

    return _finish(violations, row_count=result.metadata.total_records, raise_on_error=raise_on_error)


def validate_directory(
    directory: Mapping[str, SalespersonInfo],
    *,
    required_columns: Optional[Iterable[str]] = None,
    null_thresholds: Optional[dict[str, float]] = None,
    raise_on_error: bool = True,
) -> DataContractResult:
    """
    Execute directory checks on the salesperson information load.

    Checks:
    - required schema columns
    - null thresholds
    - registration numbers unique and matching their directory key
    """
    df = pd.DataFrame([info.to_row() for info in directory.values()], columns=DEFAULT_DIRECTORY_COLUMNS)
    req_cols = list(required_columns or DEFAULT_DIRECTORY_COLUMNS)
    thresholds = null_thresholds or DEFAULT_NULL_THRESHOLDS

    violations: List[ContractViolation] = []
    violations.extend(_check_required_columns(df, req_cols))
    violations.extend(_check_null_thresholds(df, thresholds))

    mismatched = sum(1 for key, info in directory.items() if key != info.reg_num)
    if mismatched:
        violations.append(
            ContractViolation(
                check="directory_key",
                message="directory key differs from reg_num",
                failed_rows=mismatched,
            )
        )

    duplicated = df["reg_num"].duplicated(keep=False)
    if duplicated.any():
        violations.append(
            ContractViolation(
                check="unique_reg_num",
                message="duplicate reg_num values",
                failed_rows=int(duplicated.sum()),
            )
        )

    return _finish(violations, row_count=len(df), raise_on_error=raise_on_error)


def format_contract_violations(violations: List[ContractViolation]) -> str:
    """Format violations into a single error message."""
    lines = ["Data contract validation failed:"]
    for v in violations:
        lines.append(f"- [{v.check}] {v.message} (failed_rows={v.failed_rows})")
    return "\n".join(lines)


def _finish(violations: List[ContractViolation], *, row_count: int, raise_on_error: bool) -> DataContractResult:
    result = DataContractResult(
        passed=len(violations) == 0,
        row_count=row_count,
        checked_at=datetime.utcnow().isoformat(),
        violations=violations,
    )

    if raise_on_error and not result.passed:
        raise DataContractError(format_contract_violations(result.violations))

    return result


def _check_breakdown(name: str, breakdown: dict, transactions_by_year: dict) -> List[ContractViolation]:
    bad_years = [
        year
        for year in set(breakdown) | set(transactions_by_year)
        if sum(breakdown.get(year, {}).values()) != transactions_by_year.get(year, 0)
    ]
    if not bad_years:
        return []
    return [
        ContractViolation(
            check=f"{name}_sum",
            message=f"{name} does not sum to transactions_by_year for {', '.join(sorted(bad_years))}",
            failed_rows=len(bad_years),
        )
    ]


def _check_salespersons_by_year(result: AggregationResult) -> List[ContractViolation]:
    bad_years = [
        year
        for year, count in result.salespersons_by_year.items()
        if count > result.transactions_by_year.get(year, 0)
    ]
    if not bad_years:
        return []
    return [
        ContractViolation(
            check="salespersons_by_year_bound",
            message=f"more salespersons than transactions for {', '.join(sorted(bad_years))}",
            failed_rows=len(bad_years),
        )
    ]


def _check_totals(result: AggregationResult) -> List[ContractViolation]:
    violations: List[ContractViolation] = []
    metadata = result.metadata

    yearly_total = sum(result.transactions_by_year.values())
    monthly_total = sum(sp.total for sp in result.salesperson_monthly)
    if not metadata.total_records == yearly_total == monthly_total:
        violations.append(
            ContractViolation(
                check="total_records",
                message=(
                    f"total_records {metadata.total_records} disagrees with yearly sum "
                    f"{yearly_total} or monthly sum {monthly_total}"
                ),
                failed_rows=abs(metadata.total_records - yearly_total) + abs(metadata.total_records - monthly_total),
            )
        )

    if metadata.unique_salespersons != len(result.salesperson_monthly):
        violations.append(
            ContractViolation(
                check="unique_salespersons",
                message="unique_salespersons disagrees with the salesperson_monthly length",
                failed_rows=abs(metadata.unique_salespersons - len(result.salesperson_monthly)),
            )
        )

    totals = [sp.total for sp in result.salesperson_monthly]
    out_of_order = sum(1 for a, b in zip(totals, totals[1:]) if a < b)
    if out_of_order:
        violations.append(
            ContractViolation(
                check="leaderboard_order",
                message="salesperson_monthly not sorted by total descending",
                failed_rows=out_of_order,
            )
        )

    return violations


def _check_required_columns(df: pd.DataFrame, required_columns: List[str]) -> List[ContractViolation]:
    missing = [col for col in required_columns if col not in df.columns]
    if not missing:
        return []
    return [
        ContractViolation(
            check="required_columns",
            message=f"Missing required columns: {', '.join(missing)}",
            failed_rows=len(df),
        )
    ]


def _check_null_thresholds(df: pd.DataFrame, null_thresholds: dict[str, float]) -> List[ContractViolation]:
    violations: List[ContractViolation] = []
    if df.empty:
        return violations
    for col, threshold in null_thresholds.items():
        if col not in df.columns:
            continue
        null_ratio = float(df[col].isna().mean())
        if null_ratio > threshold:
            violations.append(
                ContractViolation(
                    check="null_threshold",
                    message=f"{col} null ratio {null_ratio:.4f} exceeds threshold {threshold:.4f}",
                    failed_rows=int(df[col].isna().sum()),
                )
            )
    return violations
