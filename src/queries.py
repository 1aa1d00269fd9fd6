"""
Read-side queries for the dashboard pages.

- leaderboard by "YYYY-MM" range (server-side function, with client-side
  re-aggregation of salesperson_monthly when the function is missing)
- salesperson lookup (record list + directory entry)
- paginated, searchable movement log
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd
from sqlalchemy import or_

from config.settings import LEADERBOARD_LIMIT, LEADERBOARD_PROCEDURE, STORE_PAGE_SIZE
from src.database import MovementRow, SalespersonInfoRow, SalespersonMonthlyRow, SalespersonRecordRow
from src.salesperson_info import SalespersonInfo
from src.store import ProcedureNotFoundError, RowStore

logger = logging.getLogger(__name__)

LEADERBOARD_COLUMNS = ["name", "reg_num", "transactions"]


# =============================================================================
# Leaderboard
# =============================================================================

def rank_by_date_range(
    monthly_rows: Iterable[Mapping[str, Any]],
    start_date: str,
    end_date: str,
    limit: int = LEADERBOARD_LIMIT,
) -> List[Dict[str, Any]]:
    """
    Sum monthly counts per salesperson within [start_date, end_date].

    `monthly_rows` carry reg_num, name, month_year and count. Salespersons
    with no transactions in range are dropped; ties keep input order.
    """
    df = pd.DataFrame(list(monthly_rows), columns=["reg_num", "name", "month_year", "count"])
    if df.empty:
        return []

    in_range = df[(df["month_year"] >= start_date) & (df["month_year"] <= end_date)]
    if in_range.empty:
        return []

    ranked = (
        in_range.groupby("reg_num", sort=False)
        .agg(name=("name", "first"), transactions=("count", "sum"))
        .reset_index()
    )
    ranked = ranked[ranked["transactions"] > 0]
    ranked = ranked.sort_values("transactions", ascending=False, kind="mergesort").head(limit)

    return [
        {"name": row.name, "reg_num": row.reg_num, "transactions": int(row.transactions)}
        for row in ranked[LEADERBOARD_COLUMNS].itertuples(index=False)
    ]


def get_leaderboard_by_date_range(
    store: RowStore,
    start_date: str,
    end_date: str,
    limit: int = LEADERBOARD_LIMIT,
    *,
    page_size: int = STORE_PAGE_SIZE,
) -> List[Dict[str, Any]]:
    """
    Top salespersons by transactions in an inclusive "YYYY-MM" range.

    Tries the server-side function first. Only when it does not exist are
    the monthly rows paged in and ranked client-side; other store errors
    propagate.
    """
    try:
        rows = store.call_procedure(
            LEADERBOARD_PROCEDURE,
            {"start_date": start_date, "end_date": end_date, "row_limit": limit},
        )
        return [
            {"name": row["name"], "reg_num": row["reg_num"], "transactions": int(row["transactions"])}
            for row in rows
        ]
    except ProcedureNotFoundError as e:
        logger.info(f"{e}; aggregating salesperson_monthly client-side")

    where = [
        SalespersonMonthlyRow.month_year >= start_date,
        SalespersonMonthlyRow.month_year <= end_date,
    ]
    order_by = [SalespersonMonthlyRow.reg_num, SalespersonMonthlyRow.month_year]

    monthly_rows: List[Dict[str, Any]] = []
    offset = 0
    while True:
        page = store.select_range(
            SalespersonMonthlyRow, offset, page_size, where=where, order_by=order_by
        )
        monthly_rows.extend(page)
        if len(page) < page_size:
            break
        offset += page_size

    return rank_by_date_range(monthly_rows, start_date, end_date, limit)


# =============================================================================
# Salesperson Lookup
# =============================================================================

@dataclass
class SalespersonLookup:
    records: List[Dict[str, Any]]
    info: Optional[SalespersonInfo]


def fetch_salesperson(store: RowStore, reg_num: str) -> Optional[SalespersonLookup]:
    """Records and directory entry for one registration number; None if unknown."""
    records = store.select_all(
        SalespersonRecordRow,
        where=[SalespersonRecordRow.reg_num == reg_num],
        order_by=[SalespersonRecordRow.id],
    )
    if not records:
        return None

    info_rows = store.select_all(SalespersonInfoRow, where=[SalespersonInfoRow.reg_num == reg_num])
    info = SalespersonInfo.from_row(info_rows[0]) if info_rows else None

    for record in records:
        record.pop("id", None)
    return SalespersonLookup(records=records, info=info)


# =============================================================================
# Movements
# =============================================================================

@dataclass
class MovementsPage:
    movements: List[Dict[str, Any]]
    total_count: int
    has_more: bool


def fetch_movements(
    store: RowStore,
    search: str = "",
    page: int = 1,
    page_size: int = 20,
) -> MovementsPage:
    """
    Newest-first page of the movement log.

    `search` matches salesperson name or registration number,
    case-insensitively.
    """
    offset = (max(page, 1) - 1) * page_size

    where = []
    term = search.strip()
    if term:
        pattern = f"%{term}%"
        where.append(or_(MovementRow.salesperson_name.ilike(pattern), MovementRow.reg_num.ilike(pattern)))

    total_count = store.count(MovementRow, where=where)
    movements = store.select_range(
        MovementRow,
        offset,
        page_size,
        where=where,
        order_by=[MovementRow.detected_at.desc(), MovementRow.id.desc()],
    )

    return MovementsPage(
        movements=movements,
        total_count=total_count,
        has_more=offset + page_size < total_count,
    )


def get_movements_count(store: RowStore) -> int:
    return store.count(MovementRow)
