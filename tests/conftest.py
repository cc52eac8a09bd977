from __future__ import annotations

import io
from typing import Callable, Dict, List, Optional, Sequence

import pandas as pd
import pytest

from etsidata.errors import DatabaseError
from etsidata.schema import synthesize

E1_SUMMARY = """field,type,sum,min,max,mean,units
Utc_timestamp,longint,0,0,0,0,unixutc
Temperature,float,10,20,30,25,°C
interpolated,my_ds,,,,,
"""


SIDECAR = """netcdf ecobee_2017 {
dimensions:
	id = 3 ;
	time = UNLIMITED ; // (4 currently)
variables:
	char id(id) ;
		id:long_name = "thermostat id" ;
	double time(time) ;
		time:units = "seconds since 2017-01-01 00:00:00" ;
		time:calendar = "standard" ;
	double T_ctrl(id, time) ;
		T_ctrl:units = "F" ;
		T_ctrl:long_name = "Thermostat temperature" ;
		T_ctrl:_FillValue = -9999. ;
	byte fan(id, time) ;
		fan:comment = "fan on/off" ;

// global attributes:
		:title = "Ecobee thermostats" ;
		:description = "Smart thermostat readings" ;
		:history = "created" ;
		:ignored_attr = "x" ;
data:

 id = "a1", "b2",
    "c3" ;

 time = 0, 300, 600, 900 ;
}
"""


class FakeResultSet:
    """In-memory result set; with `timestamps`, the first cell of each row is the time."""

    def __init__(self, columns: Sequence[str], rows: Sequence[Sequence[Optional[str]]] = (), timestamps: bool = False):
        self.columns = list(columns)
        self.rows = [list(r) for r in rows]
        self.timestamps = timestamps
        self._i = -1
        self.closed = False

    def column_count(self) -> int:
        return len(self.columns)

    def column_name(self, i: int) -> str:
        return self.columns[i]

    def has_timestamps(self) -> bool:
        return self.timestamps

    def next(self) -> bool:
        self._i += 1
        return self._i < len(self.rows)

    def get_text(self, column: str) -> Optional[str]:
        row = self.rows[self._i]
        if self.timestamps:
            if column == "Time":
                return row[0]
            return row[1 + self.columns.index(column)]
        return row[self.columns.index(column)]

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Records every statement; `fail_on` substrings raise DatabaseError, `results` answer queries."""

    def __init__(
        self,
        fail_on: Sequence[str] = (),
        results: Optional[Dict[str, Callable[[], FakeResultSet]]] = None,
        error: str = "statement failed",
    ):
        self.fail_on = list(fail_on)
        self.results = results or {}
        self.error = error
        self.statements: List[str] = []
        self.queries: List[str] = []
        self.opened = False
        self.closed = False

    def open(self, timeout_ms: int) -> None:
        self.opened = True

    def close(self) -> None:
        self.closed = True

    def execute_non_query(self, sql: str) -> int:
        self.statements.append(sql)
        if any(s in sql for s in self.fail_on):
            raise DatabaseError(self.error, sql)
        return 0

    def execute_batch(self, sqls: Sequence[str]) -> int:
        for sql in sqls:
            self.execute_non_query(sql)
        return 0

    def execute_query(self, sql: str, timeout_ms: int) -> FakeResultSet:
        self.queries.append(sql)
        if any(s in sql for s in self.fail_on):
            raise DatabaseError(self.error, sql)
        for prefix, make in self.results.items():
            if sql.startswith(prefix):
                return make()
        return FakeResultSet([])


def summary_frame(text: str) -> pd.DataFrame:
    return pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)


@pytest.fixture
def e1_schema():
    return synthesize(summary_frame(E1_SUMMARY))
