from __future__ import annotations

import json

import pytest

from conftest import E1_SUMMARY, SIDECAR, summary_frame
from etsidata.errors import SchemaError
from etsidata.schema import DATASET_NAME_COLUMN, read_summary, synthesize
from etsidata.sidecar import parse_sidecar


def test_schema_from_summary(e1_schema) -> None:
    s = e1_schema

    assert s.identifier == "my_ds"
    assert s.dataset_name == "my_ds"
    assert s.time_measurement_name == "Time1"
    assert [(m.name, m.type, m.unit) for m in s.ordered()] == [
        ("Time1", "int64", "unixutc"),
        ("Temperature", "float", "°C"),
        (DATASET_NAME_COLUMN, "string", "unitless"),
    ]
    assert not s.is_multi_device
    assert s.device_paths() == [("my_ds", "my_ds.my_ds")]


def test_time_measurement_is_never_ignored(e1_schema) -> None:
    assert not e1_schema.time_measurement.ignore


def test_column_order_is_a_permutation(e1_schema) -> None:
    orders = sorted(m.column_order for m in e1_schema.measurements.values())

    assert orders == list(range(len(e1_schema.measurements)))


def test_all_zero_columns_are_ignored() -> None:
    text = E1_SUMMARY.replace("interpolated", "Dead Sensor,double,0,0,0,0,W\ninterpolated")

    s = synthesize(summary_frame(text))

    assert s.measurements["DeadSensor"].ignore
    assert "DeadSensor" not in [m.name for m in s.active()]


def test_reserved_time_column_is_aliased() -> None:
    text = E1_SUMMARY.replace("Utc_timestamp", "time")

    s = synthesize(summary_frame(text))

    assert s.time_measurement.alias == "Time1"
    assert s.time_measurement.label == "time"


def test_duplicate_names_are_rejected() -> None:
    text = E1_SUMMARY.replace("interpolated", "temperature,float,1,2,3,2,°C\ninterpolated")

    with pytest.raises(SchemaError):
        synthesize(summary_frame(text))


def test_dataset_name_column_collision_is_rejected() -> None:
    text = E1_SUMMARY.replace("interpolated", "DatasetName,string,0,1,1,1,\ninterpolated")

    with pytest.raises(SchemaError):
        synthesize(summary_frame(text))


def test_missing_time_measurement_is_rejected() -> None:
    text = E1_SUMMARY.replace("Utc_timestamp", "Counter")

    with pytest.raises(SchemaError):
        synthesize(summary_frame(text))


def test_rows_after_terminator_are_ignored() -> None:
    s = synthesize(summary_frame(E1_SUMMARY + "Extra,float,1,2,3,2,W\n"))

    assert "Extra" not in s.measurements


def test_backslash_terminator_and_unit_hints() -> None:
    text = """field,type,min,max,units
Utc_timestamp,longint,1,2,unixutc
Thermostat_Temperature,float,60,80,
HVAC_Mode,string,,,
\\,home.house_1,,,
"""
    s = synthesize(summary_frame(text))

    assert s.identifier == "home.house_1"
    assert s.dataset_name == "house_1"
    assert s.measurements["Thermostat_Temperature"].unit == "°F"
    assert s.measurements["HVAC_Mode"].unit == "unitless"


def test_unknown_type_falls_back_to_sidecar_then_string() -> None:
    text = """field,type,min,max,units
time,,0,900,
T_ctrl,?,60,80,
fan,,0,1,
Label,complex,,,
interpolated,root.etsidata.ecobee.ecobee_2017,,,
"""
    sidecar = parse_sidecar(SIDECAR.splitlines())

    s = synthesize(summary_frame(text), sidecar=sidecar)

    assert s.measurements["T_ctrl"].type == "double"
    assert s.measurements["T_ctrl"].unit == "F"
    assert s.measurements["T_ctrl"].label == "Thermostat temperature"
    assert s.measurements["Fan"].type == "boolean"
    assert s.measurements["Label"].type == "string"
    assert s.time_measurement.unit == "unixutc"
    assert s.devices == ("a1", "b2", "c3")
    assert s.dimensions["time"] == 4
    assert s.description == "Smart thermostat readings"
    assert s.device_paths()[0] == ("a1", "root.etsidata.ecobee.ecobee_2017.a1")


def test_cleared_schema_has_no_measurements(e1_schema) -> None:
    cleared = e1_schema.cleared()

    assert cleared.active() == []
    assert cleared.identifier == e1_schema.identifier


def test_schema_is_read_only(e1_schema) -> None:
    with pytest.raises(TypeError):
        e1_schema.measurements["X"] = e1_schema.time_measurement


def test_to_dict_is_json_serializable(e1_schema) -> None:
    doc = json.loads(json.dumps(e1_schema.to_dict()))

    assert doc["identifier"] == "my_ds"
    assert doc["measurements"][1]["storage"] == ["FLOAT", "GORILLA", "SNAPPY"]


def test_read_summary_keeps_text(tmp_path) -> None:
    path = tmp_path / "summary_my_ds.csv"
    path.write_text(E1_SUMMARY, encoding="utf-8")

    frame = read_summary(path)

    assert frame.iloc[0, 2] == "0"
    assert frame.iloc[2, 2] == ""
