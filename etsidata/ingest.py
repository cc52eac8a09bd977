# ingest.py
# --------------------------------------------------------------------
# Load one sensor dataset into IoTDB.
#
# Expected files (next to the data file unless overridden):
#   <name>.csv               sensor rows, header first
#   summary_<name>.csv       per-column statistics + `units` column, ending
#                            with an `interpolated,<identifier>` row
#   <name>.var               optional `ncdump -c` sidecar (multi-device)
#   description.txt          optional free-text description
# For netCDF datasets pass <name>.nc; rows are then read from csv/<name>.csv.
#
# Verbs run in the order given:
#   createdb createts dropts delete insert alter query describe
#
# Connection settings come from IOTDB_HOST / IOTDB_PORT / IOTDB_USER /
# IOTDB_PASSWORD (flags override).
#
# Example:
#   etsidata-ingest --data_file data/household_1min.csv --verbs createts insert --audit
# --------------------------------------------------------------------

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional, Sequence

from .config import Settings
from .dataset import count_present_values, read_dataset
from .errors import DatabaseError, SchemaError
from .loader import VERBS, BulkLoader, InsertReport
from .logs import setup_logging
from .naming import TIME_ALIAS
from .schema import DatasetSchema, read_summary, synthesize
from .sidecar import read_sidecar
from .tsdb import open_session

SUMMARY_PREFIX = "summary_"
DESCRIPTION_FILE = "description.txt"
ALL_VERBS = VERBS + ("describe",)


@dataclass(frozen=True)
class DatasetPaths:
    data: Path
    summary: Path
    sidecar: Optional[Path] = None
    description: Optional[Path] = None

    @property
    def name(self) -> str:
        return self.data.stem


def resolve_paths(data_file: Path, summary: Optional[Path] = None, sidecar: Optional[Path] = None) -> DatasetPaths:
    folder, stem = data_file.parent, data_file.stem
    if data_file.suffix.lower() == ".nc":
        data = folder / "csv" / f"{stem}.csv"
        sidecar = sidecar or folder / f"{stem}.var"
    else:
        data = data_file
        if sidecar is None and (folder / f"{stem}.var").exists():
            sidecar = folder / f"{stem}.var"
    description = folder / DESCRIPTION_FILE
    return DatasetPaths(
        data=data,
        summary=summary or folder / f"{SUMMARY_PREFIX}{stem}.csv",
        sidecar=sidecar,
        description=description if description.exists() else None,
    )


def load_schema(paths: DatasetPaths, time_measurement: str, identifier: Optional[str] = None) -> DatasetSchema:
    sidecar = read_sidecar(paths.sidecar) if paths.sidecar is not None else None
    description = paths.description.read_text(encoding="utf-8").strip() if paths.description else ""
    schema = synthesize(
        read_summary(paths.summary),
        sidecar=sidecar,
        time_measurement_name=time_measurement,
        dataset_name=paths.name,
        description=description,
    )
    if identifier:
        schema = replace(schema, identifier=identifier)
    return schema


def format_profiles(profiles) -> List[str]:
    if not profiles:
        return []
    w1 = max(len(p.timeseries) for p in profiles)
    w2 = max(len(p.data_type) for p in profiles)
    w3 = max(len(p.encoding) for p in profiles)
    return [
        f"{p.timeseries:<{w1}}  {p.data_type:<{w2}}  {p.encoding:<{w3}}  {p.compression}  {p.tags}  {p.attributes}"
        for p in profiles
    ]


def print_report(report: InsertReport) -> None:
    print(
        f"[insert] blocks={report.blocks} rows={report.rows} failed_blocks={len(report.failed_blocks)} "
        f"bad_rows={report.bad_rows} tiny_values={report.clamped}"
    )
    if report.failed_blocks:
        print(f"[insert] failed blocks: {', '.join(str(b) for b in report.failed_blocks)}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Load a sensor dataset into IoTDB")
    ap.add_argument("--data_file", required=True, help="Dataset CSV (or .nc, rows then come from csv/<name>.csv)")
    ap.add_argument("--summary", default=None, help="Summary statistics CSV (default summary_<name>.csv)")
    ap.add_argument("--sidecar", default=None, help="ncdump -c sidecar (default <name>.var when present)")
    ap.add_argument("--identifier", default=None, help="Override the identifier read from the summary")
    ap.add_argument("--time_measurement", default=TIME_ALIAS)
    ap.add_argument("--verbs", nargs="+", choices=ALL_VERBS, default=["createts", "insert"])
    ap.add_argument("--audit", action="store_true", help="Print non-empty cell counts per column")
    ap.add_argument("--output", action="store_true", help="Write the query listing to <name>.sql")

    ap.add_argument("--host", default=None)
    ap.add_argument("--port", type=int, default=None)
    ap.add_argument("--user", default=None)
    ap.add_argument("--password", default=None)
    ap.add_argument("--log_level", default=None)

    args = ap.parse_args(argv)
    setup_logging(args.log_level)

    settings = Settings.from_env()
    overrides = {
        "iotdb_host": args.host,
        "iotdb_port": args.port,
        "iotdb_user": args.user,
        "iotdb_password": args.password,
    }
    settings = replace(settings, **{k: v for k, v in overrides.items() if v is not None})

    paths = resolve_paths(
        Path(args.data_file),
        summary=Path(args.summary) if args.summary else None,
        sidecar=Path(args.sidecar) if args.sidecar else None,
    )

    try:
        schema = load_schema(paths, args.time_measurement, args.identifier)
    except SchemaError as e:
        print(f"[schema] ERROR {paths.summary}: {e}")
        return 2

    print(f"Processing time series for dataset {schema.dataset_name} ({schema.identifier}) ...")
    for m in schema.ordered():
        print(f"  {m.describe()}")
    if schema.is_multi_device:
        print(f"  devices: {len(schema.devices)}")

    if "describe" in args.verbs:
        out = paths.data.with_suffix(".json")
        out.write_text(json.dumps(schema.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        print(f"[describe] wrote {out}")

    db_verbs = [v for v in args.verbs if v in VERBS]
    dataset = read_dataset(paths.data) if ("insert" in db_verbs or args.audit) else None

    if db_verbs:
        verb = db_verbs[0]
        try:
            with open_session(settings) as session:
                loader = BulkLoader(session, schema, timeout_ms=settings.timeout_ms, progress=True)
                for verb in db_verbs:
                    result = loader.run([verb], dataset)[verb]
                    if verb == "insert":
                        print_report(result)
                    elif verb == "query":
                        for line in format_profiles(result):
                            print(line)
                        if args.output:
                            out = paths.data.with_suffix(".sql")
                            out.write_text("\n".join(p.timeseries for p in result) + "\n", encoding="utf-8")
                            print(f"[query] wrote {out}")
                    print(f"Timeseries <{verb}> completed.")
        except (SchemaError, DatabaseError) as e:
            print(f"[{verb}] ERROR {e}")
            return 1

    if args.audit and dataset is not None:
        print("\n=== AUDIT non-empty cells per column ===")
        counts = count_present_values(dataset)
        total = len(dataset)
        for column, n in counts.items():
            print(f"{column:<40} n={int(n):<10} missing={total - int(n)}")

    print("\n✅ Ingest completed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
