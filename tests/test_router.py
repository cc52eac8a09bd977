from __future__ import annotations

import json

import pytest

from conftest import FakeResultSet, FakeSession
from etsidata.api.schemas import SeriesCount
from etsidata.config import Settings
from etsidata.errors import DatabaseError, ProtocolError
from etsidata.router import (
    Command,
    compile_query,
    distinct_prefixes,
    format_counts,
    format_rows,
    parse_command,
    parse_counts,
    parse_data,
    parse_data_options,
    run_query,
)

ROOT = "root.etsidata"
PROFILE_COLUMNS = ["Timeseries", "Alias", "Database", "DataType", "Encoding", "Compression", "Tags", "Attributes", "Deadband", "DeadbandParameters"]


def profile_rows(*names):
    return [[n, "null", ROOT, "DOUBLE", "GORILLA", "SNAPPY", "null", "null", "null", "null"] for n in names]


def test_parse_command() -> None:
    assert parse_command("data synthetic.IoT_Weather limit 5") == Command("data", ("synthetic.IoT_Weather", "limit", "5"))
    assert parse_command("  LOGIN alice ") == Command("login", ("alice",))
    assert parse_command("") is None
    assert parse_command("drop everything") is None


def test_data_command_compiles_to_select() -> None:
    cmd = parse_command("data synthetic.IoT_Weather interval 0.5 format csv limit 100")
    opts = parse_data_options(cmd.args[1:])

    assert compile_query(cmd, ROOT, opts) == "SELECT * FROM root.etsidata.synthetic.IoT_Weather ORDER BY Time ASC  LIMIT 100 ;"
    assert opts.interval == 0.5


def test_date_range_goes_before_order_by() -> None:
    cmd = parse_command("data g.d startdate 2023-11-14T22:13:20Z enddate 2023-11-14T22:14:20Z")

    sql = compile_query(cmd, ROOT, parse_data_options(cmd.args[1:]))

    assert sql == "SELECT * FROM root.etsidata.g.d WHERE Time >= 1700000000 AND Time <= 1700000060 ORDER BY Time ASC  ;"


def test_catalog_commands_compile() -> None:
    assert compile_query(Command("groups"), ROOT) == "show timeseries root.etsidata.**;"
    assert compile_query(Command("group.device", ("synthetic",)), ROOT) == "show timeseries root.etsidata.synthetic.**;"
    assert compile_query(Command("timeseries", ("g.d",)), ROOT) == "show timeseries root.etsidata.g.d.*;"
    assert compile_query(Command("count", ("g.d",)), ROOT) == "SELECT COUNT(*) FROM root.etsidata.g.d;"


@pytest.mark.parametrize("args", [(), ("nodevice",), (".d",)])
def test_target_is_required(args) -> None:
    with pytest.raises(ProtocolError):
        compile_query(Command("count", args), ROOT)


def test_bad_parameters_keep_defaults() -> None:
    opts = parse_data_options(["interval", "-1", "format", "xml", "limit", "many", "colour", "red", "loop", "2"])

    assert (opts.interval, opts.format, opts.limit, opts.loop) == (0.0, "csv", 0, 2)


def test_parameter_without_value_is_dropped() -> None:
    assert parse_data_options(["limit"]).limit == 0


def test_parse_data_strips_prefix_and_keeps_empty_values() -> None:
    cells = ["Time", "root.etsidata.g.d.Temp", "root.etsidata.g.d.Mode", "", "1", "20.5", "", "", "2", "null", "heat", ""]

    header, rows = parse_data(cells, "root.etsidata.g.d.")

    assert header == ["Time", "Temp", "Mode"]
    assert rows == [["1", "20.5", ""], ["2", "null", "heat"]]


def test_format_rows_csv_and_json() -> None:
    header, rows = ["Time", "Temp"], [["1", "20.5"], ["2", "null"]]

    assert format_rows(header, rows, "csv") == ["Time,Temp", "1,20.5", "2,null"]
    lines = format_rows(header, rows, "json")
    assert json.loads(lines[0]) == header
    assert json.loads(lines[2]) == {"Time": "2", "Temp": None}


def test_counts_are_parsed_and_aligned() -> None:
    cells = ["COUNT(root.etsidata.g.d.Temp)", "COUNT(root.etsidata.g.d.Humidity)", "", "10", "7", ""]

    counts = parse_counts(cells, ROOT)

    assert counts == [SeriesCount(name="g.d.Temp", count=10), SeriesCount(name="g.d.Humidity", count=7)]
    assert format_counts(counts) == ["     g.d.Temp       10", " g.d.Humidity        7"]


def test_distinct_prefixes() -> None:
    names = ["a.x.t", "a.y.t", "b.z.t", "a.x.u"]

    assert distinct_prefixes(names, 1) == ["a", "b"]
    assert distinct_prefixes(names, 2) == ["a.x", "a.y", "b.z"]


def test_run_query_streams_data_rows() -> None:
    rows = [[str(1700000000 + i), f"{20 + i}.0"] for i in range(3)]
    session = FakeSession(results={"SELECT": lambda: FakeResultSet(["root.etsidata.g.d.Temp"], rows, timestamps=True)})

    reply = run_query(lambda: session, parse_command("data g.d interval 0.5 loop 1"), Settings())

    assert reply.lines == ["Time,Temp", "1700000000,20.0", "1700000001,21.0", "1700000002,22.0"]
    assert reply.stream and reply.interval == 0.5 and reply.loop == 1
    assert session.opened and session.closed


def test_run_query_groups_and_devices() -> None:
    names = ("root.etsidata.home.house_1.Temp", "root.etsidata.home.house_2.Temp", "root.etsidata.ecobee.a1.T_ctrl")
    session = FakeSession(results={"show timeseries": lambda: FakeResultSet(PROFILE_COLUMNS, profile_rows(*names))})

    assert run_query(lambda: session, Command("groups"), Settings()).lines == ["home", "ecobee"]
    assert run_query(lambda: session, Command("group.device", ("home",)), Settings()).lines == ["home.house_1", "home.house_2", "ecobee.a1"]
    assert run_query(lambda: session, Command("timeseries", ("home.house_1",)), Settings()).lines == [
        "home.house_1.Temp",
        "home.house_2.Temp",
        "ecobee.a1.T_ctrl",
    ]


def test_run_query_closes_session_on_failure() -> None:
    session = FakeSession(fail_on=["SELECT"])

    with pytest.raises(DatabaseError):
        run_query(lambda: session, Command("count", ("g.d",)), Settings())

    assert session.closed
