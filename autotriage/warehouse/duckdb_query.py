from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

import duckdb

from autotriage.errors import WarehouseQueryError


_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_\.]*$")

COLUMNS = ("timestamp", "service", "severity", "message", "metadata", "signature")


class WarehouseQuery(Protocol):
    def query_events(self, *, since: Optional[datetime], severities: Sequence[str], limit: int) -> List[Dict[str, Any]]: ...


@dataclass(frozen=True)
class DuckDBWarehouse:
    """
    Read-only query against a DuckDB table shaped like:

        timestamp TIMESTAMP (UTC), service VARCHAR, severity VARCHAR,
        message VARCHAR, metadata VARCHAR (JSON), signature VARCHAR (nullable)
    """

    path: str
    table: str = "error_events"

    def _sql(self, *, with_since: bool, n_sev: int) -> str:
        if not _IDENT_RE.match(self.table):
            raise WarehouseQueryError(f"invalid table name: {self.table!r}")
        placeholders = ", ".join(["?"] * n_sev)
        where = f'"severity" IN ({placeholders})'
        if with_since:
            where += ' AND "timestamp" > ?'
        cols = ", ".join(f'"{c}"' for c in COLUMNS)
        return f'SELECT {cols} FROM {self.table} WHERE {where} ORDER BY "timestamp" DESC LIMIT ?'

    def query_events(self, *, since: Optional[datetime], severities: Sequence[str], limit: int) -> List[Dict[str, Any]]:
        params: list[Any] = list(severities)
        if since is not None:
            # Column is naive UTC; bind a naive UTC value so DuckDB never applies the session timezone.
            if since.tzinfo is not None:
                since = since.astimezone(timezone.utc).replace(tzinfo=None)
            params.append(since)
        params.append(int(limit))
        sql = self._sql(with_since=since is not None, n_sev=len(severities))
        try:
            con = duckdb.connect(self.path, read_only=True)
        except duckdb.Error as e:
            raise WarehouseQueryError(f"warehouse_connect_failed: {e}") from e
        try:
            rows = con.execute(sql, params).fetchall()
        except duckdb.Error as e:
            raise WarehouseQueryError(f"warehouse_query_failed: {e}") from e
        finally:
            con.close()
        return [dict(zip(COLUMNS, r)) for r in rows]
