"""IoTDB statement builders.

Everything here is a pure function of the schema (or a part of it), so the
exact SQL the loader sends can be checked without a database.
"""
from __future__ import annotations

from typing import Iterable, List, Sequence

from .errors import ParseError
from .schema import Measurement

TRUE_TOKENS = ("true", "t", "yes", "y")
FALSE_TOKENS = ("false", "f", "no", "n")


def quote_literal(text: str) -> str:
    return "'" + str(text).replace('"', "`").replace("'", "`") + "'"


def format_literal(text: str, xsd_type: str) -> str:
    """Render one source cell as an INSERT value for a measurement of `xsd_type`."""
    s = str(text).strip()
    if xsd_type in ("double", "float"):
        return s if s else "null"
    if xsd_type in ("int32", "int64"):
        if not s:
            return "null"
        dot = s.find(".")
        return s[:dot] if dot >= 0 else s
    if xsd_type == "boolean":
        if not s:
            return "null"
        low = s.lower()
        if low in TRUE_TOKENS:
            return "1"
        if low in FALSE_TOKENS:
            return "0"
        try:
            return "0" if float(s) == 0.0 else "1"
        except ValueError:
            raise ParseError(f"not a boolean: {text!r}") from None
    return quote_literal(text)


def create_database_sql(identifier: str) -> str:
    return f"CREATE DATABASE {identifier}"


def create_timeseries_sql(prefix: str, measurements: Iterable[Measurement]) -> str:
    decls = []
    for m in measurements:
        wire, encoding, compressor = m.storage
        decls.append(f"{m.alias} {wire} encoding={encoding} compressor={compressor}")
    return f"CREATE ALIGNED TIMESERIES {prefix}({', '.join(decls)});"


def drop_timeseries_sql(prefix: str) -> str:
    return f"DROP TIMESERIES {prefix}.*"


def delete_sql(prefix: str, alias: str) -> str:
    return f"DELETE FROM {prefix}.{alias}"


def insert_sql(prefix: str, columns: Sequence[str], rows: Iterable[Sequence[str]]) -> str:
    values = ",".join("(" + ",".join(r) + ")" for r in rows)
    return f"INSERT INTO {prefix} ({','.join(['time', *columns])}) ALIGNED VALUES {values};"


def alter_sql(path: str, m: Measurement) -> List[str]:
    """ATTRIBUTES/TAGS pair recording the logical type and unit of one series."""
    return [
        f"ALTER timeseries {path} ADD ATTRIBUTES 'datatype'={quote_literal(m.type)}",
        f"ALTER timeseries {path} ADD TAGS 'units'={quote_literal(m.unit)}",
    ]


def show_timeseries_sql(pattern: str) -> str:
    return f"show timeseries {pattern};"
