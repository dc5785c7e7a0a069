"""Base repository providing generic CRUD operations for Oracle DB."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Sequence
from typing import Any

import oracledb

logger = logging.getLogger(__name__)

SLOW_QUERY_THRESHOLD_MS = 100  # Log queries slower than this


class BaseRepository:
    """Generic repository with CRUD operations using python-oracledb.

    All entity repositories extend this class and configure
    ``table_name`` and ``id_column``. Primary keys are 32-char hex
    strings stored as ``VARCHAR2(32)``.
    """

    def __init__(
        self,
        pool: Any,
        table_name: str,
        id_column: str,
    ) -> None:
        self.pool = pool
        self.table_name = table_name
        self.id_column = id_column

    # ── helpers ──────────────────────────────────────────────────────

    def _acquire(self) -> Any:
        """Acquire a connection from the pool."""
        return self.pool.acquire()

    @staticmethod
    def _log_query(sql: str, elapsed_ms: float) -> None:
        """Log query timing; warn if above slow-query threshold."""
        if elapsed_ms > SLOW_QUERY_THRESHOLD_MS:
            logger.warning("SLOW QUERY (%.1fms): %s", elapsed_ms, sql[:200])
        else:
            logger.debug("Query (%.1fms): %s", elapsed_ms, sql[:200])

    @staticmethod
    def _generate_id() -> str:
        """Generate a new UUID string."""
        return uuid.uuid4().hex

    @staticmethod
    def _convert_row(row: dict[str, Any]) -> dict[str, Any]:
        """Convert Oracle LOB columns to plain values for JSON serialization."""
        return {
            k: v.read() if isinstance(v, oracledb.LOB) else v
            for k, v in row.items()
        }

    @staticmethod
    def _in_clause(
        values: Sequence[Any],
        prefix: str,
    ) -> tuple[str, dict[str, Any]]:
        """Build ``(:p0, :p1, …)`` and its bind dict for an IN list."""
        names = [f"{prefix}{i}" for i in range(len(values))]
        placeholders = ", ".join(f":{n}" for n in names)
        return f"({placeholders})", dict(zip(names, values, strict=True))

    def _build_where(
        self,
        filters: dict[str, Any],
        prefix: str = "w_",
    ) -> tuple[str, dict[str, Any]]:
        """Build a WHERE clause and bind-param dict from *filters*.

        Returns ("WHERE col1 = :w_col1 AND col2 = :w_col2", {"w_col1": v1, …}).
        """
        if not filters:
            return "", {}
        clauses: list[str] = []
        params: dict[str, Any] = {}
        for col, val in filters.items():
            bind_name = f"{prefix}{col}"
            clauses.append(f"{col} = :{bind_name}")
            params[bind_name] = val
        return "WHERE " + " AND ".join(clauses), params

    def _select(self, sql: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Run a SELECT and return rows as dicts keyed by lower-case column."""
        conn = self._acquire()
        try:
            with conn.cursor() as cur:
                start = time.perf_counter()
                cur.execute(sql, params)
                columns = [col[0].lower() for col in (cur.description or [])]
                rows = [
                    self._convert_row(dict(zip(columns, row, strict=True)))
                    for row in cur.fetchall()
                ]
                self._log_query(sql, (time.perf_counter() - start) * 1000)
                return rows
        finally:
            conn.close()

    def _execute(self, sql: str, params: dict[str, Any]) -> int:
        """Run a single DML statement, commit, and return rows affected."""
        conn = self._acquire()
        try:
            with conn.cursor() as cur:
                start = time.perf_counter()
                cur.execute(sql, params)
                conn.commit()
                self._log_query(sql, (time.perf_counter() - start) * 1000)
                return int(cur.rowcount)
        finally:
            conn.close()

    # ── read ─────────────────────────────────────────────────────────

    def find_by_id(self, entity_id: str) -> dict[str, Any] | None:
        """Return a single row by primary key, or ``None``."""
        sql = f"SELECT * FROM {self.table_name} WHERE {self.id_column} = :id"
        rows = self._select(sql, {"id": entity_id})
        return rows[0] if rows else None

    def find_all(
        self,
        limit: int = 20,
        offset: int = 0,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        """Return paginated rows, optionally filtered and ordered."""
        where_clause, params = self._build_where(filters or {})
        order_clause = f"ORDER BY {order_by}" if order_by else ""
        sql = (
            f"SELECT * FROM {self.table_name} {where_clause} {order_clause} "
            f"OFFSET :off ROWS FETCH NEXT :lim ROWS ONLY"
        )
        params["off"] = offset
        params["lim"] = limit
        return self._select(sql, params)

    def find_by_field(
        self,
        field: str,
        value: Any,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        """Return all rows matching a single field value."""
        order_clause = f" ORDER BY {order_by}" if order_by else ""
        sql = f"SELECT * FROM {self.table_name} WHERE {field} = :val{order_clause}"
        return self._select(sql, {"val": value})

    def count(self, filters: dict[str, Any] | None = None) -> int:
        """Return row count, optionally filtered."""
        where_clause, params = self._build_where(filters or {})
        sql = f"SELECT COUNT(*) AS cnt FROM {self.table_name} {where_clause}"
        rows = self._select(sql, params)
        return int(rows[0]["cnt"]) if rows else 0

    # ── write ────────────────────────────────────────────────────────

    def create(
        self,
        data: dict[str, Any],
        new_id: str | None = None,
    ) -> str:
        """Insert a new row and return its ID.

        The ID is either supplied via *new_id* or auto-generated.
        """
        if new_id is None:
            new_id = self._generate_id()

        all_data = {self.id_column: new_id, **data}
        columns = ", ".join(all_data.keys())
        placeholders = ", ".join(f":{k}" for k in all_data)
        sql = f"INSERT INTO {self.table_name} ({columns}) VALUES ({placeholders})"
        self._execute(sql, all_data)
        return new_id

    def create_many(self, rows: list[dict[str, Any]]) -> list[str]:
        """Bulk-insert rows sharing the same columns in one round trip."""
        if not rows:
            return []
        batch = [{self.id_column: self._generate_id(), **row} for row in rows]
        columns = ", ".join(batch[0].keys())
        placeholders = ", ".join(f":{k}" for k in batch[0])
        sql = f"INSERT INTO {self.table_name} ({columns}) VALUES ({placeholders})"

        conn = self._acquire()
        try:
            with conn.cursor() as cur:
                start = time.perf_counter()
                cur.executemany(sql, batch)
                conn.commit()
                self._log_query(sql, (time.perf_counter() - start) * 1000)
            return [row[self.id_column] for row in batch]
        finally:
            conn.close()

    def update(self, entity_id: str, data: dict[str, Any]) -> int:
        """Update a row by primary key. Returns rows affected."""
        if not data:
            raise ValueError("No data provided for update")

        set_clause = ", ".join(f"{k} = :s_{k}" for k in data)
        params: dict[str, Any] = {f"s_{k}": v for k, v in data.items()}
        params["id"] = entity_id
        sql = f"UPDATE {self.table_name} SET {set_clause} WHERE {self.id_column} = :id"
        return self._execute(sql, params)

    def delete(self, entity_id: str) -> int:
        """Delete a row by primary key. Returns rows affected."""
        sql = f"DELETE FROM {self.table_name} WHERE {self.id_column} = :id"
        return self._execute(sql, {"id": entity_id})

    def delete_by_field(self, field: str, value: Any) -> int:
        """Delete all rows matching a single field value."""
        sql = f"DELETE FROM {self.table_name} WHERE {field} = :val"
        return self._execute(sql, {"val": value})
