# loader.py
# --------------------------------------------------------------------
# Bulk loader: runs the lifecycle verbs of one dataset against one open
# session.
#
#   createdb   CREATE DATABASE <identifier>
#   createts   one CREATE ALIGNED TIMESERIES per device
#   dropts     DROP TIMESERIES <identifier>.<device>.* (then forgets the
#              measurements for the rest of the run)
#   delete     DELETE FROM every active series, one batch
#   insert     one multi-row aligned INSERT per block
#   alter      ATTRIBUTES/TAGS catalog for every active series, one batch
#   query      show timeseries under the identifier
#
# Blocks:
#   multi-device   one block per device, size = dimensions["time"]
#   single-device  131072 / 32768 / 8192 rows depending on the column count
# Row numbers count the header as row 0, so data rows are [1, n_rows).
# --------------------------------------------------------------------

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import pandas as pd
from tqdm import tqdm

from .dataset import clamp_tiny_values
from .errors import DatabaseError, ParseError, SchemaError
from .router import parse_timeseries_profiles
from .schema import DATASET_NAME_COLUMN, DatasetSchema
from .statements import (
    alter_sql,
    create_database_sql,
    create_timeseries_sql,
    delete_sql,
    drop_timeseries_sql,
    format_literal,
    insert_sql,
    quote_literal,
    show_timeseries_sql,
)
from .timeparse import time_parser_for
from .tsdb import Session, render_cells

log = logging.getLogger(__name__)

VERBS = ("createdb", "createts", "dropts", "delete", "insert", "alter", "query")


@dataclass(frozen=True)
class Block:
    index: int
    device: str
    prefix: str
    start: int
    stop: int

    def __len__(self) -> int:
        return max(0, self.stop - self.start)


@dataclass
class InsertReport:
    blocks: int = 0
    rows: int = 0
    failed_blocks: List[int] = field(default_factory=list)
    bad_rows: int = 0
    clamped: int = 0


def single_device_block_size(n_measurements: int) -> int:
    if n_measurements < 256:
        return 131072
    if n_measurements < 512:
        return 32768
    return 8192


def partition_blocks(schema: DatasetSchema, n_rows: int) -> List[Block]:
    """Cut rows [1, n_rows) into insert blocks.

    Multi-device: block k holds rows [k*size+1, (k+1)*size+1) of device k; the
    last device also takes any trailing rows.
    """
    paths = schema.device_paths()
    blocks: List[Block] = []
    if schema.is_multi_device:
        size = int(schema.dimensions.get("time", 0))
        if size <= 0:
            raise SchemaError("multi-device dataset needs a positive 'time' dimension")
        for k, (device, prefix) in enumerate(paths):
            start = k * size + 1
            if start >= n_rows:
                log.warning("No rows left for device %s (block %d)", device, k)
                break
            stop = n_rows if k == len(paths) - 1 else min(start + size, n_rows)
            blocks.append(Block(k, device, prefix, start, stop))
        return blocks

    device, prefix = paths[0]
    size = single_device_block_size(len(schema.measurements))
    n_blocks = math.ceil(max(n_rows - 1, 0) / size)
    for k in range(n_blocks):
        start = k * size + 1
        blocks.append(Block(k, device, prefix, start, min(start + size, n_rows)))
    return blocks


class BulkLoader:
    def __init__(self, session: Session, schema: DatasetSchema, timeout_ms: int = 1000, progress: bool = False):
        self.session = session
        self.schema = schema
        self.timeout_ms = timeout_ms
        self.progress = progress

    def run(self, verbs: Sequence[str], dataset: Optional[pd.DataFrame] = None) -> Dict[str, object]:
        """Execute verbs in order; returns each verb's result keyed by verb."""
        results: Dict[str, object] = {}
        for verb in verbs:
            if verb not in VERBS:
                raise ValueError(f"unknown verb {verb!r}; expected one of {', '.join(VERBS)}")
            if verb == "insert":
                if dataset is None:
                    raise ValueError("insert needs the dataset rows")
                results[verb] = self.insert(dataset)
            else:
                results[verb] = getattr(self, verb)()
            log.info("Timeseries <%s> completed.", verb)
        return results

    # ----------------- schema verbs -----------------

    def createdb(self) -> bool:
        """Create the database; an existing database counts as success (returns False)."""
        try:
            self.session.execute_non_query(create_database_sql(self.schema.identifier))
        except DatabaseError as e:
            if "already exist" in str(e).lower():
                log.info("Database %s already exists", self.schema.identifier)
                return False
            raise
        return True

    def createts(self) -> int:
        active = self.schema.active()
        if not active:
            log.warning("No measurements to create for %s", self.schema.dataset_name)
            return 0
        n = 0
        for _, prefix in self.schema.device_paths():
            self.session.execute_non_query(create_timeseries_sql(prefix, active))
            n += 1
        log.info("Created %d device(s) for %s", n, self.schema.dataset_name)
        return n

    def dropts(self) -> int:
        n = 0
        for _, prefix in self.schema.device_paths():
            self.session.execute_non_query(drop_timeseries_sql(prefix))
            n += 1
        self.schema = self.schema.cleared()
        return n

    def delete(self) -> int:
        statements = [
            delete_sql(prefix, m.alias)
            for _, prefix in self.schema.device_paths()
            for m in self.schema.active()
        ]
        if statements:
            self.session.execute_batch(statements)
        return len(statements)

    def alter(self) -> int:
        statements = []
        for _, prefix in self.schema.device_paths():
            for m in self.schema.active():
                statements.extend(alter_sql(f"{prefix}.{m.alias}", m))
        if statements:
            self.session.execute_batch(statements)
        return len(statements)

    def query(self):
        rs = self.session.execute_query(show_timeseries_sql(f"{self.schema.identifier}.**"), self.timeout_ms)
        try:
            cells = render_cells(rs)
        finally:
            rs.close()
        return parse_timeseries_profiles(cells)

    # ----------------- insert -----------------

    def insert(self, dataset: pd.DataFrame) -> InsertReport:
        schema = self.schema
        report = InsertReport()
        source = [m for m in schema.active() if m.name != DATASET_NAME_COLUMN]
        if not source:
            log.warning("No measurements to insert for %s", schema.dataset_name)
            return report

        tm = schema.time_measurement
        if tm is None:
            raise SchemaError(f"time measurement {schema.time_measurement_name!r} is not in the schema")
        width = dataset.shape[1]
        if tm.column_order >= width or any(m.column_order >= width for m in source):
            raise SchemaError(f"dataset has {width} columns but the schema expects {len(source)} or more")

        frame, report.clamped = clamp_tiny_values(dataset, schema)
        values = frame.to_numpy(dtype=object)
        parse_time = time_parser_for(tm.unit)
        columns = [m.alias for m in source] + [DATASET_NAME_COLUMN]
        dataset_literal = quote_literal(schema.dataset_name)

        blocks = partition_blocks(schema, len(values) + 1)
        for block in tqdm(blocks, desc=f"Insert {schema.dataset_name}", disable=not self.progress):
            rows = []
            for r in range(block.start, block.stop):
                cells = values[r - 1]
                try:
                    t = parse_time(cells[tm.column_order])
                    row = [str(t)] + [format_literal(cells[m.column_order], m.type) for m in source]
                except ParseError as e:
                    log.warning("Block %d (%s) row %d: %s; skipping rest of block", block.index, block.device, r, e)
                    report.bad_rows += 1
                    break
                row.append(dataset_literal)
                rows.append(row)
            if not rows:
                continue
            try:
                self.session.execute_non_query(insert_sql(block.prefix, columns, rows))
            except DatabaseError as e:
                log.error("INSERT block %d (%s) failed: %s", block.index, block.device, e)
                report.failed_blocks.append(block.index)
                continue
            report.blocks += 1
            report.rows += len(rows)
        return report
