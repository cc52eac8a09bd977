# naming.py
# --------------------------------------------------------------------
# Column-name and type normalization shared by the schema, the loader and
# the stream router.
#
#   normalize("Outdoor Temp (F)")  -> ("OutdoorTemp_F", "OutdoorTemp_F")
#   normalize("utc_timestamp")     -> ("Time1", "Time1")
#   logical_type("Longint")        -> "int64"
#   storage("int64")               -> ("INT64", "GORILLA", "SNAPPY")
# --------------------------------------------------------------------

from __future__ import annotations

import re
from typing import Optional, Tuple

TIME_ALIAS = "Time1"
RESERVED_TIME_NAMES = {"time", "timestamp", "utc_timestamp"}

STRIPPED_CHARS = "~!@#$%^&*/?.,:;|\\=+)}]"
BRACKET_CHARS = "({["
_CLEAN_TABLE = str.maketrans({**{c: None for c in STRIPPED_CHARS}, **{c: "_" for c in BRACKET_CHARS}})
_NON_IDENT_RE = re.compile(r"[^0-9A-Za-z_]")

LOGICAL_TYPES = ("double", "float", "int32", "int64", "string", "boolean", "datetime")

TYPE_MAP = {
    "string": "string",
    "unicode": "string",
    "float": "float",
    "integer": "int32",
    "int": "int32",
    "longint": "int64",
    "int64": "int64",
    "double": "double",
    "datetime": "datetime",
    "boolean": "boolean",
}

STORAGE_MAP = {
    "double": ("DOUBLE", "GORILLA", "SNAPPY"),
    "float": ("FLOAT", "GORILLA", "SNAPPY"),
    "int32": ("INT32", "GORILLA", "SNAPPY"),
    "int64": ("INT64", "GORILLA", "SNAPPY"),
    "string": ("TEXT", "PLAIN", "SNAPPY"),
    "datetime": ("TEXT", "PLAIN", "SNAPPY"),
    "boolean": ("BOOLEAN", "RLE", "SNAPPY"),
}
TEXT_STORAGE = ("TEXT", "PLAIN", "SNAPPY")

# checked in order; first substring match wins
UNIT_HINTS = (
    ("Temperature", "°F"),
    ("Setpoint", "°F"),
    ("RunTime", "seconds"),
    ("Humidity", "%rh"),
    ("DetectedMotion", "boolean"),
    ("Mode", "unitless"),
)


def _title_words(name: str) -> str:
    return "".join(w[:1].upper() + w[1:] for w in name.split())


def canonical_name(raw: str) -> str:
    return _title_words(str(raw).strip().translate(_CLEAN_TABLE))


def identifier_safe(name: str) -> str:
    """Alias usable as an IoTDB path node: letters, digits and `_`, a leading digit replaced by `_`."""
    alias = _NON_IDENT_RE.sub("_", name)
    if alias[:1].isdigit():
        alias = "_" + alias[1:]
    return alias


def is_reserved_time(name: str) -> bool:
    return name.strip().lower() in RESERVED_TIME_NAMES


def normalize(raw: str) -> Tuple[str, str]:
    """Return (canonical, alias) for a raw column name.

    Both values are derived from the cleaned name only, so normalizing a
    canonical name again yields the same pair. Time-axis names collapse to
    `Time1`.
    """
    canonical = canonical_name(raw)
    if is_reserved_time(canonical):
        return TIME_ALIAS, TIME_ALIAS
    return canonical, identifier_safe(canonical)


def is_known_type(raw: Optional[str]) -> bool:
    return str(raw or "").strip().lower() in TYPE_MAP


def logical_type(raw: Optional[str]) -> str:
    """Map a summary/sidecar type token onto the internal type vocabulary (unknown -> string)."""
    return TYPE_MAP.get(str(raw or "").strip().lower(), "string")


def storage(xsd_type: str) -> Tuple[str, str, str]:
    return STORAGE_MAP.get(xsd_type, TEXT_STORAGE)


def default_unit(name: str, unit: Optional[str]) -> str:
    """Fill in a unit for columns whose source unit is empty or `unitless`."""
    unit = (unit or "").strip()
    if unit and unit != "unitless":
        if any(ch.isspace() for ch in unit):
            return "unixutc"
        return unit
    for needle, hint in UNIT_HINTS:
        if needle in name:
            return hint
    return "unitless"
