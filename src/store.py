"""
Row store used by the ETL load, the movement sync and the dashboard queries.

A thin layer over SQLAlchemy Core exposing the handful of operations the
pipelines need: full reads, paginated range reads, counts, deletes, batched
inserts, batched keyed upserts and calls to server-side functions. Every
database failure surfaces as StoreError with the driver message chained.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from sqlalchemy import Table, delete, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from config.settings import SYNC_CONFIG

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE for undefined_function
UNDEFINED_FUNCTION = "42883"

Row = Dict[str, Any]
TableLike = Union[Table, Any]  # Table or declarative model class


class StoreError(RuntimeError):
    """Raised when a read or write against the store fails."""


class ProcedureNotFoundError(StoreError):
    """Raised when a server-side function does not exist on the store."""


def _table(obj: TableLike) -> Table:
    return obj if isinstance(obj, Table) else obj.__table__


def _batches(rows: Sequence[Row], batch_size: int) -> Iterable[Sequence[Row]]:
    for i in range(0, len(rows), batch_size):
        yield rows[i:i + batch_size]


def _last_per_key(rows: Sequence[Row], key_columns: Sequence[str]) -> List[Row]:
    """Keep the last row for each key, in first-seen key order."""
    latest: Dict[tuple, Row] = {}
    for row in rows:
        latest[tuple(row[column] for column in key_columns)] = row
    return list(latest.values())


def _sqlstate(error: DBAPIError) -> Optional[str]:
    orig = error.orig
    # psycopg2 exposes pgcode, psycopg 3 exposes sqlstate
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


class RowStore:
    """Generic table access over one SQLAlchemy engine."""

    def __init__(self, engine: Engine):
        self.engine = engine

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def select_all(
        self,
        table: TableLike,
        *,
        columns: Optional[Sequence[str]] = None,
        where: Sequence[Any] = (),
        order_by: Sequence[Any] = (),
    ) -> List[Row]:
        """Read every matching row."""
        stmt = self._select(table, columns, where, order_by)
        return self._fetch(stmt, f"Failed to read {_table(table).name}")

    def select_range(
        self,
        table: TableLike,
        offset: int,
        limit: int,
        *,
        columns: Optional[Sequence[str]] = None,
        where: Sequence[Any] = (),
        order_by: Sequence[Any] = (),
    ) -> List[Row]:
        """Read one page of rows (offset/limit)."""
        stmt = self._select(table, columns, where, order_by).offset(offset).limit(limit)
        return self._fetch(stmt, f"Failed to read {_table(table).name}")

    def count(self, table: TableLike, *, where: Sequence[Any] = ()) -> int:
        stmt = select(func.count()).select_from(_table(table))
        for clause in where:
            stmt = stmt.where(clause)
        try:
            with self.engine.connect() as conn:
                return int(conn.execute(stmt).scalar_one())
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to count {_table(table).name}: {e}") from e

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def delete_where(self, table: TableLike, **equals: Any) -> int:
        """Delete rows matching every column=value pair (all rows when empty)."""
        tbl = _table(table)
        stmt = delete(tbl)
        for column, value in equals.items():
            stmt = stmt.where(tbl.c[column] == value)
        try:
            with self.engine.begin() as conn:
                return conn.execute(stmt).rowcount
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to delete from {tbl.name}: {e}") from e

    def insert(
        self,
        table: TableLike,
        rows: Sequence[Row],
        *,
        batch_size: int = SYNC_CONFIG.insert_batch_size,
    ) -> int:
        """Insert rows in sequential batches; each batch commits on its own."""
        tbl = _table(table)
        inserted = 0
        for batch in _batches(rows, batch_size):
            try:
                with self.engine.begin() as conn:
                    conn.execute(tbl.insert(), list(batch))
            except SQLAlchemyError as e:
                raise StoreError(f"Failed to insert into {tbl.name}: {e}") from e
            inserted += len(batch)
        return inserted

    def upsert(
        self,
        table: TableLike,
        rows: Sequence[Row],
        key_columns: Sequence[str],
        *,
        batch_size: int = SYNC_CONFIG.upsert_batch_size,
    ) -> int:
        """
        Insert or replace rows keyed by `key_columns`, one batch at a time.

        Rows repeating a key are collapsed to the last one; an ON CONFLICT
        statement may affect each target row at most once.
        Batch N+1 is only sent after batch N commits. A failing batch raises
        and leaves earlier batches in place.
        """
        tbl = _table(table)
        unique_rows = _last_per_key(rows, key_columns)
        if len(unique_rows) < len(rows):
            logger.info(f"  {tbl.name}: collapsed {len(rows) - len(unique_rows):,} rows with repeated keys")
        rows = unique_rows
        dialect_insert = self._dialect_insert()
        upserted = 0
        total_batches = (len(rows) + batch_size - 1) // batch_size

        for number, batch in enumerate(_batches(rows, batch_size), start=1):
            stmt = dialect_insert(tbl).values(list(batch))
            update_columns = {
                c.name: stmt.excluded[c.name]
                for c in tbl.columns
                if c.name not in key_columns and c.name in batch[0]
            }
            if update_columns:
                stmt = stmt.on_conflict_do_update(index_elements=list(key_columns), set_=update_columns)
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=list(key_columns))

            try:
                with self.engine.begin() as conn:
                    conn.execute(stmt)
            except SQLAlchemyError as e:
                raise StoreError(
                    f"Failed to upsert {tbl.name} batch {number}/{total_batches}: {e}"
                ) from e

            upserted += len(batch)
            logger.debug(f"  ✓ {tbl.name} batch {number}/{total_batches}")

        return upserted

    # ------------------------------------------------------------------
    # Server-side functions
    # ------------------------------------------------------------------

    def call_procedure(self, name: str, params: Mapping[str, Any]) -> List[Row]:
        """
        Call a set-returning server-side function.

        Raises ProcedureNotFoundError when the function is not installed or
        the dialect has no stored functions; any other failure is StoreError.
        """
        if self.engine.dialect.name != "postgresql":
            raise ProcedureNotFoundError(
                f"Function {name}() unavailable on dialect {self.engine.dialect.name}"
            )

        placeholders = ", ".join(f":{key}" for key in params)
        stmt = text(f"SELECT * FROM {name}({placeholders})")
        try:
            with self.engine.connect() as conn:
                return [dict(row._mapping) for row in conn.execute(stmt, dict(params))]
        except DBAPIError as e:
            if _sqlstate(e) == UNDEFINED_FUNCTION:
                raise ProcedureNotFoundError(f"Function {name}() does not exist") from e
            raise StoreError(f"Failed to call {name}(): {e}") from e
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to call {name}(): {e}") from e

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _select(self, table, columns, where, order_by):
        tbl = _table(table)
        cols = [tbl.c[name] for name in columns] if columns else [tbl]
        stmt = select(*cols)
        for clause in where:
            stmt = stmt.where(clause)
        if order_by:
            stmt = stmt.order_by(*order_by)
        return stmt

    def _fetch(self, stmt, message: str) -> List[Row]:
        try:
            with self.engine.connect() as conn:
                return [dict(row._mapping) for row in conn.execute(stmt)]
        except SQLAlchemyError as e:
            raise StoreError(f"{message}: {e}") from e

    def _dialect_insert(self):
        name = self.engine.dialect.name
        if name == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif name == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise StoreError(f"Upsert is not supported on dialect {name}")
        return insert
