from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .errors import ParseError

ISO_Z_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
TEXT_FORMATS = (ISO_Z_FORMAT, "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S")

# yyyy-MM-ddThh:mm:ssZ style unit patterns
_PATTERN_TOKENS = (
    ("yyyy", "%Y"),
    ("MM", "%m"),
    ("dd", "%d"),
    ("HH", "%H"),
    ("hh", "%H"),
    ("mm", "%M"),
    ("ss", "%S"),
)
_PATTERN_RE = re.compile(r"yyyy|MM|dd|HH|hh|mm|ss")


def pattern_to_strptime(pattern: str) -> Optional[str]:
    """Translate a `yyyy-MM-ddThh:mm:ssZ` unit pattern, or None when the unit is not a pattern."""
    if "yyyy" not in pattern:
        return None
    lookup = dict(_PATTERN_TOKENS)
    return _PATTERN_RE.sub(lambda m: lookup[m.group(0)], pattern.replace("%", "%%"))


def _to_epoch(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.astimezone(timezone.utc).timestamp())


def parse_text_time(text: str, formats: Optional[List[str]] = None) -> int:
    s = str(text).strip()
    for fmt in formats or TEXT_FORMATS:
        try:
            return _to_epoch(datetime.strptime(s, fmt))
        except ValueError:
            continue
    try:
        return _to_epoch(datetime.fromisoformat(s.replace("Z", "+00:00")))
    except ValueError:
        raise ParseError(f"cannot parse time {text!r}") from None


def parse_iso_z(text: str) -> int:
    """`yyyy-MM-ddThh:mm:ssZ` -> UTC epoch seconds."""
    try:
        return _to_epoch(datetime.strptime(str(text).strip(), ISO_Z_FORMAT))
    except ValueError:
        raise ParseError(f"expected yyyy-MM-ddThh:mm:ssZ, got {text!r}") from None


def parse_unix_seconds(text: str) -> int:
    s = str(text).strip()
    try:
        return int(s)
    except ValueError:
        pass
    try:
        return int(float(s))
    except (ValueError, OverflowError):
        pass
    return parse_iso_z(s)


def time_parser_for(unit: str) -> Callable[[str], int]:
    """Pick the epoch-seconds parser for a time measurement from its unit."""
    if unit == "unixutc":
        return parse_unix_seconds
    fmt = pattern_to_strptime(unit or "")
    formats = [fmt] + list(TEXT_FORMATS) if fmt else list(TEXT_FORMATS)
    return lambda text: parse_text_time(text, formats)


def format_iso_z(dt: Optional[datetime] = None) -> str:
    dt = dt or datetime.now(timezone.utc)
    return dt.astimezone(timezone.utc).strftime(ISO_Z_FORMAT)
