"""Promote reviewed triage rows into the alias tables.

The triage sheet written by ``curation.standardize`` lists unmatched values.
A curator fills ``standard_value`` and sets ``approved``; this job merges the
approved rows into the matching alias CSVs. Reviewed rows replace existing
aliases with the same raw value.
"""

import argparse
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Tuple

import pandas as pd

from curation.aliases import AliasMap, alias_columns, alias_map_from_frame
from curation.fields import FIELDS
from curation.utils import (
  build_s3_client,
  clean_text_frame,
  download_bytes,
  now_iso,
  parse_approved_flag,
  read_csv_bytes,
  reference_dir,
  resolve_bucket_name,
  sha256_hex
)


REQUIRED_COLUMNS = {"field", "column", "raw_value", "standard_value", "approved"}


def log(message: str) -> None:
  print(f"[curation.promote] {message}", flush=True)


def approved_rows(df: pd.DataFrame, source: str) -> pd.DataFrame:
  if not REQUIRED_COLUMNS.issubset(df.columns):
    raise RuntimeError(f"Triage sheet {source} missing required columns {sorted(REQUIRED_COLUMNS - set(df.columns))}")
  flags = df["approved"].apply(parse_approved_flag)
  approved = df[flags].copy()
  approved = clean_text_frame(approved, ["field", "column", "raw_value", "standard_value"])
  log(f"approved rows={len(approved)} total rows={len(df)} source={source}")

  if approved["raw_value"].isna().any():
    raise RuntimeError(f"Approved rows missing raw_value in {source}")
  if approved["standard_value"].isna().any():
    raise RuntimeError(f"Approved rows missing standard_value in {source}")
  duplicates = approved.duplicated(subset=["field", "column", "raw_value"])
  if duplicates.any():
    raise RuntimeError(f"Duplicate raw_value entries in approved rows for {source}")
  return approved


def alias_file_for(field_name: str, column: str) -> str:
  spec = FIELDS.get(field_name)
  if spec is None:
    raise RuntimeError(f"Unknown field in triage sheet: {field_name}")
  filename = spec.aliases.get(column)
  if filename is None:
    raise RuntimeError(f"Field {field_name} has no alias table for column {column}")
  return filename


def promote(approved: pd.DataFrame, ref_dir: Path) -> List[Dict[str, Any]]:
  grouped: Dict[Tuple[str, str], Dict[str, str]] = {}
  for row in approved.to_dict(orient="records"):
    grouped.setdefault((row["field"], row["column"]), {})[row["raw_value"]] = row["standard_value"]

  written = []
  for (field_name, column), overrides in sorted(grouped.items()):
    path = ref_dir / alias_file_for(field_name, column)
    if path.is_file():
      raw_header, standard_header = alias_columns(path)
      current = alias_map_from_frame(pd.read_csv(path, dtype=str, keep_default_na=False), name=path.stem)
    else:
      raw_header, standard_header = f"raw_{column}", f"standard_{column}"
      current = AliasMap(name=path.stem)
    merged = current.merged_with(overrides)
    data = merged.to_frame(raw_header, standard_header).to_csv(index=False)
    path.write_text(data, encoding="utf-8")
    log(f"promote field={field_name} column={column} added={len(overrides)} total={len(merged)} path={path}")
    written.append({
      "field": field_name,
      "column": column,
      "path": str(path),
      "promoted": len(overrides),
      "entries": len(merged),
      "sha256": sha256_hex(data.encode("utf-8"))
    })
  return written


def main() -> None:
  parser = argparse.ArgumentParser(description="Merge approved triage rows into alias tables")
  parser.add_argument("--triage_path", nargs="*", default=[], help="Local reviewed triage CSVs")
  parser.add_argument("--triage_key", nargs="*", default=[], help="Storage keys of reviewed triage CSVs")
  parser.add_argument("--reference_dir")
  parser.add_argument("--auto_approve_all", action="store_true")
  args = parser.parse_args()

  if not args.triage_path and not args.triage_key:
    raise RuntimeError("Provide --triage_path or --triage_key")
  target = args.reference_dir or os.getenv("CURATION_REFERENCE_DIR")
  if not target:
    raise RuntimeError("Provide --reference_dir (or CURATION_REFERENCE_DIR) to write promoted aliases")
  ref_dir = reference_dir(target)

  frames = []
  for path in args.triage_path:
    frames.append((path, pd.read_csv(Path(path).expanduser(), dtype=str, keep_default_na=False)))
  if args.triage_key:
    bucket = resolve_bucket_name()
    client = build_s3_client()
    for key in args.triage_key:
      frames.append((key, read_csv_bytes(download_bytes(client, bucket, key))))

  approved_frames = []
  for source, df in frames:
    if args.auto_approve_all:
      df = df.assign(approved="1")
    approved_frames.append(approved_rows(df, source))
  approved = pd.concat(approved_frames, ignore_index=True)
  if approved.duplicated(subset=["field", "column", "raw_value"]).any():
    raise RuntimeError("Duplicate raw_value entries across triage sheets")

  written = promote(approved, ref_dir)
  print(json.dumps({
    "promoted_at": now_iso(),
    "reference_dir": str(ref_dir),
    "tables": written
  }, indent=2))
  log("done")


if __name__ == "__main__":
  main()
