# tsdb.py
# --------------------------------------------------------------------
# Thin session layer between the loader/router and IoTDB.
#
#   Session    open/close + non-query, batch and query execution
#   ResultSet  column names, row cursor, text access per column
#
# IoTDBSession adapts the apache-iotdb client to these protocols and turns
# every client failure into DatabaseError.
#
# Requirements:
#   pip install apache-iotdb
# --------------------------------------------------------------------

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Sequence

from .config import Settings
from .errors import DatabaseError

try:
    from iotdb.Session import Session as IoTDBClient
except Exception:
    IoTDBClient = None

log = logging.getLogger(__name__)

TIMESTAMP_COLUMN = "Time"
NULL_TEXT = "null"


class ResultSet(Protocol):
    def column_count(self) -> int: ...

    def column_name(self, i: int) -> str: ...

    def next(self) -> bool: ...

    def get_text(self, column: str) -> Optional[str]: ...

    def has_timestamps(self) -> bool: ...

    def close(self) -> None: ...


class Session(Protocol):
    def open(self, timeout_ms: int) -> None: ...

    def close(self) -> None: ...

    def execute_non_query(self, sql: str) -> int: ...

    def execute_batch(self, sqls: Sequence[str]) -> int: ...

    def execute_query(self, sql: str, timeout_ms: int) -> ResultSet: ...


SessionFactory = Callable[[], Session]


class IoTDBResultSet:
    def __init__(self, data_set):
        self._ds = data_set
        names = list(data_set.get_column_names())
        self._timestamps = bool(names) and names[0] == TIMESTAMP_COLUMN
        self._names = names[1:] if self._timestamps else names
        self._index: Dict[str, int] = {n: i for i, n in enumerate(self._names)}
        self._record = None

    def column_count(self) -> int:
        return len(self._names)

    def column_name(self, i: int) -> str:
        return self._names[i]

    def has_timestamps(self) -> bool:
        return self._timestamps

    def next(self) -> bool:
        try:
            if not self._ds.has_next():
                self._record = None
                return False
            self._record = self._ds.next()
        except Exception as e:
            raise DatabaseError(f"fetch failed: {e}") from e
        return True

    def get_text(self, column: str) -> Optional[str]:
        if self._record is None:
            return None
        if column == TIMESTAMP_COLUMN and self._timestamps:
            return str(self._record.get_timestamp())
        field = self._record.get_fields()[self._index[column]]
        if field is None:
            return None
        value = field.get_string_value()
        return None if value in (None, "None") else value

    def close(self) -> None:
        try:
            self._ds.close_operation_handle()
        except Exception as e:
            raise DatabaseError(f"close failed: {e}") from e


class IoTDBSession:
    def __init__(self, settings: Settings, fetch_size: int = 1024):
        self.settings = settings
        self.fetch_size = fetch_size
        self._client = None

    def open(self, timeout_ms: int) -> None:
        if IoTDBClient is None:
            raise RuntimeError("Missing dependency: apache-iotdb. Install: pip install apache-iotdb")
        s = self.settings
        client = IoTDBClient(
            s.iotdb_host, str(s.iotdb_port), s.iotdb_user, s.iotdb_password,
            fetch_size=self.fetch_size, zone_id="UTC",
        )
        try:
            client.open(False)
        except Exception as e:
            raise DatabaseError(f"cannot open IoTDB session at {s.iotdb_host}:{s.iotdb_port}: {e}") from e
        self._client = client

    def close(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            client.close()
        except Exception as e:
            raise DatabaseError(f"close failed: {e}") from e

    def _require(self):
        if self._client is None:
            raise DatabaseError("session is not open")
        return self._client

    def execute_non_query(self, sql: str) -> int:
        client = self._require()
        log.debug("%s", sql)
        try:
            status = client.execute_non_query_statement(sql)
        except Exception as e:
            raise DatabaseError(str(e), sql) from e
        # older clients report failure through a negative status instead of raising
        if isinstance(status, int) and status < 0:
            raise DatabaseError(f"statement failed with status {status}", sql)
        return 0

    def execute_batch(self, sqls: Sequence[str]) -> int:
        for sql in sqls:
            self.execute_non_query(sql)
        return 0

    def execute_query(self, sql: str, timeout_ms: int) -> IoTDBResultSet:
        client = self._require()
        try:
            data_set = client.execute_query_statement(sql, timeout_ms)
        except Exception as e:
            raise DatabaseError(str(e), sql) from e
        if data_set is None:
            raise DatabaseError("query returned no result set", sql)
        return IoTDBResultSet(data_set)


@contextmanager
def open_session(settings: Settings, factory: Optional[SessionFactory] = None) -> Iterator[Session]:
    """Open a session and always close it, also when the body raises."""
    session = factory() if factory is not None else IoTDBSession(settings)
    session.open(settings.timeout_ms)
    try:
        yield session
    finally:
        session.close()


def render_cells(rs: ResultSet) -> List[str]:
    """Flatten a result set into one cell per line, each row closed by an empty line.

    The header row comes first (`Time` when the set carries timestamps,
    then the column names); null values render as `null`.
    """
    cells: List[str] = []
    names = [rs.column_name(i) for i in range(rs.column_count())]
    if rs.has_timestamps():
        cells.append(TIMESTAMP_COLUMN)
    cells.extend(names)
    cells.append("")
    while rs.next():
        if rs.has_timestamps():
            cells.append(rs.get_text(TIMESTAMP_COLUMN) or NULL_TEXT)
        for name in names:
            value = rs.get_text(name)
            cells.append(NULL_TEXT if value is None else value)
        cells.append("")
    return cells
