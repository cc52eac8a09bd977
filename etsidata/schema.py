# schema.py
# --------------------------------------------------------------------
# Dataset schema synthesis.
#
# Input:  the per-column statistics file produced next to each dataset
#         (summary_<name>.csv, header `field,type,sum,min,max,...,units`)
#         and, for netCDF exports, the `ncdump -c` sidecar (<name>.var).
# Output: DatasetSchema, an immutable description of one family of aligned
#         IoTDB timeseries (one per device, or the dataset itself).
#
# The summary ends at a row whose field is `interpolated` or `\`; the second
# cell of that row is the dataset identifier.
# --------------------------------------------------------------------

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

import pandas as pd

from .errors import SchemaError
from .naming import (
    TIME_ALIAS,
    default_unit,
    is_known_type,
    logical_type,
    normalize,
    storage,
)
from .sidecar import Sidecar

log = logging.getLogger(__name__)

DATASET_NAME_COLUMN = "DatasetName"
TERMINATORS = ("interpolated", "\\")


@dataclass(frozen=True)
class Measurement:
    name: str
    alias: str
    type: str
    unit: str
    column_order: int
    ignore: bool = False
    label: str = ""
    # netCDF only
    dimension_index: int = 0
    fill_value: str = ""
    comment: str = ""
    calendar: str = ""

    @property
    def storage(self) -> Tuple[str, str, str]:
        return storage(self.type)

    def describe(self) -> str:
        s = f"{self.name} : {self.alias} : {self.type} : {self.unit}"
        if self.ignore:
            s += " : IGNORED!"
        return s


@dataclass(frozen=True)
class DatasetSchema:
    identifier: str
    dataset_name: str
    measurements: Mapping[str, Measurement]
    time_measurement_name: str = TIME_ALIAS
    devices: Tuple[str, ...] = ()
    dimensions: Mapping[str, int] = field(default_factory=dict)
    description: str = ""
    attributes: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "measurements", MappingProxyType(dict(self.measurements)))
        object.__setattr__(self, "dimensions", MappingProxyType(dict(self.dimensions)))
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))
        object.__setattr__(self, "devices", tuple(self.devices))

    @property
    def is_multi_device(self) -> bool:
        return len(self.devices) > 0

    @property
    def time_measurement(self) -> Optional[Measurement]:
        return self.measurements.get(self.time_measurement_name)

    def ordered(self) -> List[Measurement]:
        return sorted(self.measurements.values(), key=lambda m: m.column_order)

    def active(self) -> List[Measurement]:
        """Non-ignored measurements in column order."""
        return [m for m in self.ordered() if not m.ignore]

    def device_paths(self) -> List[Tuple[str, str]]:
        """(device key, series prefix) pairs; the dataset acts as the device when there are none."""
        keys = list(self.devices) or [self.dataset_name]
        return [(d, f"{self.identifier}.{d}") for d in keys]

    def cleared(self) -> "DatasetSchema":
        return replace(self, measurements={})

    def to_dict(self) -> Dict[str, object]:
        return {
            "identifier": self.identifier,
            "dataset_name": self.dataset_name,
            "description": self.description,
            "time_measurement": self.time_measurement_name,
            "devices": list(self.devices),
            "dimensions": dict(self.dimensions),
            "attributes": dict(self.attributes),
            "measurements": [
                {
                    "name": m.name,
                    "alias": m.alias,
                    "label": m.label,
                    "type": m.type,
                    "unit": m.unit,
                    "column_order": m.column_order,
                    "ignore": m.ignore,
                    "storage": list(m.storage),
                    "dimension_index": m.dimension_index,
                    "fill_value": m.fill_value,
                    "comment": m.comment,
                    "calendar": m.calendar,
                }
                for m in self.ordered()
            ],
        }


# ----------------- summary file -----------------

def read_summary(path: Path) -> pd.DataFrame:
    try:
        return pd.read_csv(path, dtype=str, keep_default_na=False)
    except pd.errors.ParserError as e:
        raise SchemaError(f"cannot parse summary {path}: {e}") from e


def _find_column(columns: List[str], name: str) -> Optional[str]:
    for c in columns:
        if str(c).strip().lower() == name:
            return c
    return None


def _is_zero(cell: str) -> bool:
    try:
        return float(cell) == 0.0
    except (TypeError, ValueError):
        return False


# ----------------- synthesis -----------------

def synthesize(
    summary: pd.DataFrame,
    sidecar: Optional[Sidecar] = None,
    time_measurement_name: str = TIME_ALIAS,
    dataset_name: Optional[str] = None,
    description: str = "",
) -> DatasetSchema:
    """Build a DatasetSchema from a summary table and an optional netCDF sidecar.

    Raises SchemaError when the time measurement is missing, when two
    columns normalize to the same key or alias, or when no identifier can be
    found.
    """
    columns = list(summary.columns)
    if len(columns) < 2:
        raise SchemaError("summary needs at least the field and type columns")

    field_col = _find_column(columns, "field") or columns[0]
    type_col = _find_column(columns, "type") or columns[1]
    min_col = _find_column(columns, "min")
    max_col = _find_column(columns, "max")
    mean_col = _find_column(columns, "mean")
    units_col = _find_column(columns, "units")

    variables = sidecar.variables if sidecar is not None else {}
    measurements: Dict[str, Measurement] = {}
    aliases: Dict[str, str] = {}
    identifier: Optional[str] = None

    for _, row in summary.iterrows():
        raw = str(row[field_col]).strip()
        if raw in TERMINATORS:
            identifier = str(row[columns[1]]).strip()
            break
        if not raw:
            log.warning("Skipping summary row without a field name")
            continue

        name, alias = normalize(raw)
        var = variables.get(raw) or variables.get(name)

        raw_type = str(row[type_col]).strip()
        if not is_known_type(raw_type) and var is not None and is_known_type(var.type_token):
            raw_type = var.type_token
        if not is_known_type(raw_type):
            log.warning("Unknown type %r for column %s; using string", raw_type, raw)
        mtype = logical_type(raw_type)

        unit = str(row[units_col]).strip() if units_col is not None else ""
        if not unit and var is not None:
            unit = var.units
        unit = default_unit(name, unit)

        ignore = (
            min_col is not None
            and max_col is not None
            and _is_zero(row[min_col])
            and _is_zero(row[max_col])
            and (mean_col is None or _is_zero(row[mean_col]))
        )
        if ignore and name == time_measurement_name:
            ignore = False
        if ignore:
            log.info("Ignoring empty data column %s", raw)

        if name in measurements:
            raise SchemaError(f"duplicate measurement {name!r} (from column {raw!r})")
        if alias in aliases:
            raise SchemaError(f"columns {aliases[alias]!r} and {raw!r} share alias {alias!r}")
        aliases[alias] = raw

        measurements[name] = Measurement(
            name=name,
            alias=alias,
            type=mtype,
            unit=unit,
            column_order=len(measurements),
            ignore=ignore,
            label=(var.long_name if var is not None and var.long_name else raw),
            dimension_index=sidecar.dimension_index(raw) if sidecar is not None else 0,
            fill_value=var.fill_value if var is not None else "",
            comment=var.comment if var is not None else "",
            calendar=var.calendar if var is not None else "",
        )

    if DATASET_NAME_COLUMN in measurements or DATASET_NAME_COLUMN in aliases:
        raise SchemaError(f"source column collides with the synthetic {DATASET_NAME_COLUMN} measurement")
    measurements[DATASET_NAME_COLUMN] = Measurement(
        name=DATASET_NAME_COLUMN,
        alias=DATASET_NAME_COLUMN,
        type="string",
        unit="unitless",
        column_order=len(measurements),
        label=DATASET_NAME_COLUMN,
    )

    if time_measurement_name not in measurements:
        raise SchemaError(f"time measurement {time_measurement_name!r} not found in summary")

    if not identifier:
        identifier = (sidecar.identifier if sidecar is not None else "") or (dataset_name or "")
        if not identifier:
            raise SchemaError("summary has no terminator row carrying the dataset identifier")
        log.warning("Summary has no terminator row; using identifier %s", identifier)

    if not dataset_name:
        dataset_name = identifier.rsplit(".", 1)[-1]

    if sidecar is not None:
        devices: Tuple[str, ...] = tuple(sidecar.devices)
        dimensions: Mapping[str, int] = sidecar.dimensions
        attributes: Mapping[str, str] = sidecar.attributes
        if not description:
            description = sidecar.attributes.get("description", "")
    else:
        devices, dimensions, attributes = (), {}, {}

    return DatasetSchema(
        identifier=identifier,
        dataset_name=dataset_name,
        measurements=measurements,
        time_measurement_name=time_measurement_name,
        devices=devices,
        dimensions=dimensions,
        description=description,
        attributes=attributes,
    )
