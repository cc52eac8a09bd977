# sidecar.py
# --------------------------------------------------------------------
# Parser for the text sidecar written by `ncdump -c <file>.nc > <file>.var`.
#
# Recognized sections:
#   dimensions:   `id = 990 ;`, `time = UNLIMITED ; // (8928 currently)`
#   variables:    `double T_ctrl(id, time) ;` followed by attribute lines
#                 `T_ctrl:units = "unitless" ;` (units, long_name,
#                 _FillValue, comment, calendar)
#   globals:      `:title = "..." ;` and the other file-level attributes
#   data:         `id = 1, 2, 3 ;` (values may wrap over several lines)
# --------------------------------------------------------------------

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import SchemaError

VARIABLE_ATTRS = ("units", "long_name", "_FillValue", "comment", "calendar")
GLOBAL_ATTRS = (
    "title",
    "description",
    "conventions",
    "institution",
    "code_url",
    "location_meaning",
    "datastream_name",
    "input_files",
    "history",
)

# netCDF type names that the summary vocabulary does not know
NETCDF_TYPE_MAP = {
    "char": "string",
    "byte": "boolean",
    "short": "int32",
    "decimal": "double",
}

HEADER_RE = re.compile(r"^\s*netcdf\s+(\S+)\s*\{")
DIMENSION_RE = re.compile(r"^\s*(\w+)\s*=\s*(\w+)\s*;(?:\s*//\s*\((\d+)\s+currently\))?")
VARIABLE_RE = re.compile(r"^\s*(\w+)\s+(\w+)\s*(?:\(([^)]*)\))?\s*;")
ATTRIBUTE_RE = re.compile(r"^\s*(\w*):(\w+)\s*=\s*(.*?)\s*;\s*$")
DATA_START_RE = re.compile(r"^\s*(\w+)\s*=\s*(.*)$")


def prettify(value: str) -> str:
    s = value.replace('"', "").strip()
    if s.endswith(";"):
        s = s[:-1]
    return s.strip()


@dataclass
class SidecarVariable:
    name: str
    nc_type: str
    dims: Tuple[str, ...] = ()
    units: str = ""
    long_name: str = ""
    fill_value: str = ""
    comment: str = ""
    calendar: str = ""

    @property
    def type_token(self) -> str:
        return NETCDF_TYPE_MAP.get(self.nc_type.lower(), self.nc_type)


@dataclass
class Sidecar:
    identifier: str = ""
    dimensions: Dict[str, int] = field(default_factory=dict)
    variables: Dict[str, SidecarVariable] = field(default_factory=dict)
    attributes: Dict[str, str] = field(default_factory=dict)
    data: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def devices(self) -> List[str]:
        return list(self.data.get("id", []))

    @property
    def time_indices(self) -> List[str]:
        return list(self.data.get("time", []))

    def dimension_index(self, name: str) -> int:
        """1-based position of `name` among the dimensions, 0 when it is not one."""
        for i, dim in enumerate(self.dimensions, start=1):
            if dim == name:
                return i
        return 0


def _split_values(text: str) -> List[str]:
    return [prettify(v) for v in text.split(",") if prettify(v)]


def parse_sidecar(lines: Iterable[str]) -> Sidecar:
    sc = Sidecar()
    section = None
    pending_name: Optional[str] = None
    pending: List[str] = []

    for lineno, raw in enumerate(lines, start=1):
        line = raw.rstrip("\n")
        stripped = line.strip()

        m = HEADER_RE.match(line)
        if m:
            sc.identifier = m.group(1)
            continue
        if stripped in ("dimensions:", "variables:", "data:"):
            section = stripped[:-1]
            continue
        if not stripped or stripped == "}" or stripped.startswith("//"):
            continue

        if section == "dimensions":
            m = DIMENSION_RE.match(line)
            if not m:
                raise SchemaError(f"sidecar line {lineno}: bad dimension {stripped!r}")
            name, size, current_size = m.groups()
            if size.isdigit():
                sc.dimensions[name] = int(size)
            elif current_size is not None:
                sc.dimensions[name] = int(current_size)
            else:
                sc.dimensions[name] = 0

        elif section == "variables":
            m = ATTRIBUTE_RE.match(line)
            if m:
                owner, attr, value = m.groups()
                if not owner:
                    if attr in GLOBAL_ATTRS:
                        sc.attributes[attr] = prettify(value)
                    continue
                var = sc.variables.get(owner)
                if var is None or attr not in VARIABLE_ATTRS:
                    continue
                value = prettify(value)
                if attr == "units":
                    var.units = value
                elif attr == "long_name":
                    var.long_name = value
                elif attr == "_FillValue":
                    var.fill_value = value
                elif attr == "comment":
                    var.comment = value
                else:
                    var.calendar = value
                continue
            m = VARIABLE_RE.match(line)
            if m:
                nc_type, name, dims = m.groups()
                dims_t = tuple(d.strip() for d in (dims or "").split(",") if d.strip())
                sc.variables[name] = SidecarVariable(name=name, nc_type=nc_type, dims=dims_t)

        elif section == "data":
            if pending_name is None:
                m = DATA_START_RE.match(line)
                if not m:
                    continue
                pending_name, rest = m.group(1), m.group(2)
                pending = [rest]
            else:
                pending.append(stripped)
            if pending[-1].rstrip().endswith(";"):
                sc.data[pending_name] = _split_values(" ".join(pending).rstrip().rstrip(";"))
                pending_name, pending = None, []

    if pending_name is not None:
        raise SchemaError(f"sidecar data block {pending_name!r} is not terminated by ';'")
    return sc


def read_sidecar(path: Path) -> Sidecar:
    with Path(path).open("r", encoding="utf-8") as f:
        return parse_sidecar(f)
