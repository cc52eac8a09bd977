# router.py
# --------------------------------------------------------------------
# Command grammar of the WebSocket stream and its translation to IoTDB.
#
#   login <name>
#   groups
#   group.device <group>
#   timeseries <group.device>
#   count <group.device>
#   data <group.device> [interval <s>] [format csv|json] [limit <n>]
#                       [startdate <yyyy-MM-ddThh:mm:ssZ>] [enddate <...>]
#                       [loop <n>]
#   logout
#   stop
#
# Everything except run_query is pure; run_query opens one short-lived
# session per command.
# --------------------------------------------------------------------

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .api.schemas import SeriesCount, TimeseriesProfile
from .config import Settings
from .errors import ParseError, ProtocolError
from .statements import show_timeseries_sql
from .timeparse import parse_iso_z
from .tsdb import SessionFactory, render_cells

log = logging.getLogger(__name__)

END_OF_DATA = "<end of data>"

COMMAND_FORMS = [
    "login <myName>",
    "groups",
    "group.device <group>",
    "timeseries <group.device>",
    "count <group.device>",
    "data <group.device> interval <1s> format <csv>",
    "logout",
    "stop",
]
GREETING = "Available commands: " + "; ".join(COMMAND_FORMS)

QUERY_VERBS = ("groups", "group.device", "timeseries", "count", "data")
SESSION_VERBS = ("login", "logout", "stop")
PARAMETERS = ("interval", "format", "limit", "startdate", "enddate", "loop")
OUTPUT_FORMATS = ("csv", "json")

MAX_INTERVAL = 3600.0
MAX_COUNT = 1_000_000
PROFILE_BLOCK = 11
COUNT_WIDTH = 9


@dataclass(frozen=True)
class Command:
    verb: str
    args: Tuple[str, ...] = ()


@dataclass
class DataOptions:
    interval: float = 0.0
    format: str = "csv"
    limit: int = 0
    start: Optional[int] = None
    end: Optional[int] = None
    loop: int = 0


@dataclass
class Reply:
    """Frames produced for one command; `stream` replies are paced and end with END_OF_DATA."""

    lines: List[str] = field(default_factory=list)
    stream: bool = False
    interval: float = 0.0
    loop: int = 0


# ----------------- grammar -----------------

def parse_command(frame: str) -> Optional[Command]:
    """Split one inbound frame; returns None for empty frames and unknown verbs."""
    tokens = frame.split()
    if not tokens:
        return None
    verb = tokens[0].lower()
    if verb not in QUERY_VERBS and verb not in SESSION_VERBS:
        log.info("Ignoring unknown command %r", tokens[0])
        return None
    return Command(verb, tuple(tokens[1:]))


def _bounded_int(value: str, name: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise ProtocolError(f"{name} must be an integer, got {value!r}") from None
    if not 0 <= n <= MAX_COUNT:
        raise ProtocolError(f"{name} {n} outside [0, {MAX_COUNT}]")
    return n


def _apply_parameter(opts: DataOptions, name: str, value: str) -> None:
    if name == "interval":
        try:
            seconds = float(value)
        except ValueError:
            raise ProtocolError(f"interval must be a number, got {value!r}") from None
        if not 0.0 <= seconds <= MAX_INTERVAL:
            raise ProtocolError(f"interval {value} outside [0, {MAX_INTERVAL:g}]")
        opts.interval = seconds
    elif name == "format":
        fmt = value.lower()
        if fmt not in OUTPUT_FORMATS:
            raise ProtocolError(f"unknown format {value!r}")
        opts.format = fmt
    elif name == "limit":
        opts.limit = _bounded_int(value, "limit")
    elif name == "loop":
        opts.loop = _bounded_int(value, "loop")
    else:
        try:
            epoch = parse_iso_z(value)
        except ParseError as e:
            raise ProtocolError(f"{name}: {e}") from e
        if name == "startdate":
            opts.start = epoch
        else:
            opts.end = epoch


def parse_data_options(tokens: Sequence[str]) -> DataOptions:
    """Read `name value` pairs; bad names are dropped and bad values keep the default."""
    opts = DataOptions()
    i = 0
    while i < len(tokens):
        name = tokens[i].lower()
        if name not in PARAMETERS:
            log.warning("Dropping unknown data parameter %r", tokens[i])
            i += 1
            continue
        if i + 1 >= len(tokens):
            log.warning("Parameter %s has no value", name)
            break
        try:
            _apply_parameter(opts, name, tokens[i + 1])
        except ProtocolError as e:
            log.warning("%s; using default", e)
        i += 2
    return opts


def split_target(arg: str) -> Tuple[str, str]:
    group, sep, device = arg.partition(".")
    if not sep or not group or not device:
        raise ProtocolError(f"expected <group.device>, got {arg!r}")
    return group, device


def _require_arg(cmd: Command, form: str) -> str:
    if not cmd.args:
        raise ProtocolError(f"expected {cmd.verb} {form}")
    return cmd.args[0]


# ----------------- compilation -----------------

def data_query_sql(path: str, opts: DataOptions) -> str:
    conditions = []
    if opts.start is not None:
        conditions.append(f"Time >= {opts.start}")
    if opts.end is not None:
        conditions.append(f"Time <= {opts.end}")
    where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
    limit = f"LIMIT {opts.limit} " if opts.limit else ""
    return f"SELECT * FROM {path}{where} ORDER BY Time ASC  {limit};"


def compile_query(cmd: Command, root: str, opts: Optional[DataOptions] = None) -> str:
    if cmd.verb == "groups":
        return show_timeseries_sql(f"{root}.**")
    if cmd.verb == "group.device":
        group = _require_arg(cmd, "<group>")
        return show_timeseries_sql(f"{root}.{group}.**")

    group, device = split_target(_require_arg(cmd, "<group.device>"))
    path = f"{root}.{group}.{device}"
    if cmd.verb == "timeseries":
        return show_timeseries_sql(f"{path}.*")
    if cmd.verb == "count":
        return f"SELECT COUNT(*) FROM {path};"
    if cmd.verb == "data":
        return data_query_sql(path, opts or DataOptions())
    raise ProtocolError(f"{cmd.verb} is not a query")


# ----------------- result parsing -----------------

def _strip_prefix(name: str, prefix: str) -> str:
    return name[len(prefix):] if name.startswith(prefix) else name


def parse_timeseries_profiles(cells: Sequence[str]) -> List[TimeseriesProfile]:
    """Read `show timeseries` cells in fixed blocks: 10 values then the row separator.

    Servers that add columns after DeadbandParameters widen the block; the
    header row gives the width.
    """
    width = cells.index("") + 1 if "" in cells else PROFILE_BLOCK
    profiles = []
    for start in range(width, len(cells) - width + 1, width):
        v = [c.strip() for c in cells[start:start + width - 1]]
        v += [""] * (PROFILE_BLOCK - 1 - len(v))
        profiles.append(TimeseriesProfile(
            timeseries=v[0],
            alias=v[1],
            database=v[2],
            data_type=v[3],
            encoding=v[4],
            compression=v[5],
            tags=v[6],
            attributes=v[7],
            deadband=v[8],
            deadband_parameters=v[9],
        ))
    return profiles


def series_names(profiles: Sequence[TimeseriesProfile], root: str) -> List[str]:
    return [_strip_prefix(p.timeseries, root + ".") for p in profiles]


def distinct_prefixes(names: Sequence[str], depth: int) -> List[str]:
    """Unique first `depth` path nodes, in first-seen order."""
    seen = []
    for name in names:
        parts = name.split(".")
        if len(parts) <= depth:
            continue
        key = ".".join(parts[:depth])
        if key not in seen:
            seen.append(key)
    return seen


def parse_counts(cells: Sequence[str], root: str) -> List[SeriesCount]:
    names, counts = [], []
    for cell in cells:
        s = cell.strip()
        if "COUNT(" in s:
            name = s.replace(f"COUNT({root}.", "", 1).replace("COUNT(", "", 1)
            names.append(name.replace(")", "", 1))
        elif s:
            counts.append(s)
    return [SeriesCount(name=n, count=int(c)) for n, c in zip(names, counts)]


def format_counts(counts: Sequence[SeriesCount]) -> List[str]:
    width = max((len(c.name) for c in counts), default=0) + 1
    return [c.name.rjust(width) + str(c.count).rjust(COUNT_WIDTH) for c in counts]


def parse_data(cells: Sequence[str], prefix: str) -> Tuple[List[str], List[List[str]]]:
    """Split rendered cells into a header (prefix removed) and the data rows.

    Rows are cut by the header width, so empty text values do not end a row.
    """
    if "" not in cells:
        return [], []
    width = cells.index("")
    header = [_strip_prefix(name.strip(), prefix) for name in cells[:width]]
    rows = []
    for start in range(width + 1, len(cells) - width, width + 1):
        rows.append([c.strip() for c in cells[start:start + width]])
    return header, rows


def format_rows(header: List[str], rows: Sequence[Sequence[str]], fmt: str) -> List[str]:
    if fmt == "json":
        lines = [json.dumps(header)]
        for r in rows:
            lines.append(json.dumps({h: (None if v == "null" else v) for h, v in zip(header, r)}))
        return lines
    return [",".join(header)] + [",".join(r) for r in rows]


# ----------------- execution -----------------

def run_query(session_factory: SessionFactory, cmd: Command, settings: Settings) -> Reply:
    """Compile and execute one query command and materialize its frames.

    Blocking; the stream app runs it in a worker thread. DatabaseError and
    ProtocolError propagate to the caller.
    """
    root = settings.identifier_root
    opts = parse_data_options(cmd.args[1:]) if cmd.verb == "data" else None
    sql = compile_query(cmd, root, opts)
    log.info("%s", sql)

    session = session_factory()
    session.open(settings.timeout_ms)
    try:
        rs = session.execute_query(sql, settings.timeout_ms)
        try:
            cells = render_cells(rs)
        finally:
            rs.close()
    finally:
        session.close()

    if cmd.verb == "count":
        return Reply(format_counts(parse_counts(cells, root)))
    if cmd.verb == "data":
        group, device = split_target(cmd.args[0])
        header, rows = parse_data(cells, f"{root}.{group}.{device}.")
        lines = format_rows(header, rows, opts.format)
        log.info("%d rows will be sent to the client", len(lines))
        return Reply(lines, stream=True, interval=opts.interval, loop=opts.loop)

    names = series_names(parse_timeseries_profiles(cells), root)
    if cmd.verb == "groups":
        return Reply(distinct_prefixes(names, 1))
    if cmd.verb == "group.device":
        return Reply(distinct_prefixes(names, 2))
    return Reply(names)
