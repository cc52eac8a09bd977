from __future__ import annotations

import logging
from pathlib import Path
from typing import Tuple

import numpy as np
import pandas as pd

from .schema import DatasetSchema

log = logging.getLogger(__name__)

TINY_VALUE = 1e-9
FLOAT_TYPES = ("float", "double")


def read_dataset(path: Path) -> pd.DataFrame:
    """Read a sensor CSV keeping every cell as its source text (header row becomes the columns)."""
    return pd.read_csv(path, dtype=str, keep_default_na=False)


def clamp_tiny_values(frame: pd.DataFrame, schema: DatasetSchema) -> Tuple[pd.DataFrame, int]:
    """Replace finite float cells with |x| < 1e-9 by the literal "0".

    Returns a new frame and the number of substituted cells.
    """
    out = frame.copy()
    total = 0
    for m in schema.active():
        if m.type not in FLOAT_TYPES or m.column_order >= out.shape[1]:
            continue
        col = out.columns[m.column_order]
        text = out[col]
        values = pd.to_numeric(text, errors="coerce").to_numpy(dtype=float)
        with np.errstate(invalid="ignore"):
            mask = np.isfinite(values) & (np.abs(values) < TINY_VALUE) & (text.to_numpy() != "0")
        n = int(mask.sum())
        if n:
            out.loc[mask, col] = "0"
            total += n
    if total:
        log.info("Replaced %d tiny float values with 0 in %s", total, schema.dataset_name)
    return out, total


def count_present_values(frame: pd.DataFrame) -> pd.Series:
    """Non-empty cells per source column."""
    return (frame.apply(lambda s: s.str.strip()) != "").sum()
