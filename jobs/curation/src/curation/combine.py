"""Cross-field combiner.

Joins every field's matched entries on ``study_title`` into one long table,
adds study metadata and renames everything into the published schema.
Coverage diagnostics compare the source table with each cleaned table.
"""

import argparse
import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, List

import pandas as pd

from curation.export import read_long_table, write_frame
from curation.fields import FieldSpec, resolve_fields
from curation.matching import TIER_NONE
from curation.records import JOIN_KEY, load_records_file, load_records_from_storage, resolve_source_key
from curation.utils import build_s3_client, download_bytes, now_iso, nulls_to_none, resolve_bucket_name


METADATA_COLUMNS = {
  "publication_year": "study_publication_year",
  "evidence_type": "study_evidence_type",
  "offset_category_general": "offset_category_general",
  "permanence_solutions_recommendations_discussed": "permanence_solutions_recommendations_discussed",
  "reviewer_notes": "reviewer_notes"
}

STATUS_BOTH = "present_in_both"
STATUS_MISSING_CLEANED = "missing_in_cleaned"
STATUS_UNEXPECTED = "unexpected_in_cleaned"
STATUS_NEITHER = "missing_in_both"

Accessor = Callable[[pd.DataFrame], pd.Series]


def log(message: str) -> None:
  print(f"[curation.combine] {message}", flush=True)


def column_accessor(column: str) -> Accessor:
  def access(df: pd.DataFrame) -> pd.Series:
    return df[column]
  return access


def matched_entries(table: pd.DataFrame) -> pd.DataFrame:
  return table[table["match_tier"] != TIER_NONE]


def published_table(table: pd.DataFrame, spec: FieldSpec) -> pd.DataFrame:
  missing = [column for column in spec.published if column not in table.columns]
  if missing:
    raise RuntimeError(f"{spec.name}: standardized table lacks columns {missing}")
  columns = [JOIN_KEY] + list(spec.published)
  out = matched_entries(table)[columns].rename(columns=spec.published)
  return out.drop_duplicates().reset_index(drop=True)


def combine_fields(records: pd.DataFrame, tables: Dict[str, pd.DataFrame], specs: List[FieldSpec]) -> pd.DataFrame:
  combined = records[["study_id", JOIN_KEY]].copy()
  for spec in specs:
    if spec.name not in tables:
      continue
    combined = combined.merge(published_table(tables[spec.name], spec), on=JOIN_KEY, how="outer")
    log(f"combine_fields joined field={spec.name} rows={len(combined)}")

  present = {source: target for source, target in METADATA_COLUMNS.items() if source in records.columns}
  if present:
    metadata = records[[JOIN_KEY] + list(present)].rename(columns=present)
    combined = combined.merge(metadata, on=JOIN_KEY, how="left")
  return nulls_to_none(combined).reset_index(drop=True)


def coverage_row(df: pd.DataFrame, name: str, total: int) -> Dict[str, Any]:
  studies = int(df[JOIN_KEY].nunique()) if len(df) else 0
  percent = round(100.0 * studies / total, 1) if total else 0.0
  return {
    "dataset": name,
    "rows": int(len(df)),
    "unique_studies": studies,
    "coverage": f"{studies} of {total} ({percent}%)"
  }


def coverage_summary(records: pd.DataFrame, combined: pd.DataFrame, tables: Dict[str, pd.DataFrame]) -> pd.DataFrame:
  total = int(records[JOIN_KEY].nunique())
  rows = [coverage_row(records, "raw", total), coverage_row(combined, "joined", total)]
  for name, table in tables.items():
    rows.append(coverage_row(matched_entries(table), name, total))
  return pd.DataFrame(rows, columns=["dataset", "rows", "unique_studies", "coverage"])


def presence_diagnostics(records: pd.DataFrame, cleaned: pd.DataFrame, raw_values: Accessor) -> pd.DataFrame:
  """Per study: did the source have a value, and did cleaning keep one?"""
  has_raw = raw_values(records).notna()
  raw_titles = set(records.loc[has_raw, JOIN_KEY].tolist())
  cleaned_titles = set(matched_entries(cleaned)[JOIN_KEY].tolist())
  rows = []
  for title in sorted(set(records[JOIN_KEY].tolist()) | cleaned_titles):
    in_raw = title in raw_titles
    in_cleaned = title in cleaned_titles
    if in_raw and in_cleaned:
      status = STATUS_BOTH
    elif in_raw:
      status = STATUS_MISSING_CLEANED
    elif in_cleaned:
      status = STATUS_UNEXPECTED
    else:
      status = STATUS_NEITHER
    rows.append({JOIN_KEY: title, "in_raw": in_raw, "in_cleaned": in_cleaned, "status": status})
  return pd.DataFrame(rows, columns=[JOIN_KEY, "in_raw", "in_cleaned", "status"])


def load_field_tables(client: Any, bucket: str, prefix: str, specs: List[FieldSpec]) -> Dict[str, pd.DataFrame]:
  tables = {}
  for spec in specs:
    key = f"{prefix}/{spec.name}/standardized_long.csv"
    tables[spec.name] = read_long_table(download_bytes(client, bucket, key))
  return tables


def main() -> None:
  parser = argparse.ArgumentParser(description="Combine standardized field tables into one long table")
  parser.add_argument("--version_id")
  parser.add_argument("--source_path")
  parser.add_argument("--source_key")
  parser.add_argument("--sheet")
  parser.add_argument("--fields", nargs="*", default=["all"])
  parser.add_argument("--input_prefix")
  parser.add_argument("--output_prefix")
  args = parser.parse_args()

  version_id = args.version_id or os.getenv("CURATION_VERSION_ID")
  if not version_id and not args.input_prefix:
    raise RuntimeError("Provide --version_id or --input_prefix")
  bucket = resolve_bucket_name()
  client = build_s3_client()
  input_prefix = (args.input_prefix or f"curated/{version_id}").rstrip("/")
  output_prefix = (args.output_prefix or f"{input_prefix}/combined").rstrip("/")
  log(f"start version_id={version_id} input_prefix={input_prefix} output_prefix={output_prefix}")

  if args.source_path:
    records = load_records_file(Path(args.source_path).expanduser(), sheet=args.sheet)
  else:
    if not args.source_key and not version_id:
      raise RuntimeError("Provide --source_key or --source_path when --version_id is not set")
    source_key = args.source_key or resolve_source_key(client, bucket, version_id)
    records = load_records_from_storage(client, bucket, source_key, sheet=args.sheet)

  specs = resolve_fields(args.fields)
  tables = load_field_tables(client, bucket, input_prefix, specs)
  combined = combine_fields(records, tables, specs)
  coverage = coverage_summary(records, combined, tables)
  print(coverage.to_string(index=False), flush=True)

  written = {
    "long_cleaned": write_frame(client, bucket, f"{output_prefix}/long_cleaned.csv", combined),
    "coverage": write_frame(client, bucket, f"{output_prefix}/coverage.csv", coverage)
  }
  for spec in specs:
    presence = presence_diagnostics(records, tables[spec.name], column_accessor(spec.raw_column))
    counts = presence["status"].value_counts().to_dict()
    log(f"presence field={spec.name} {counts}")
    written[f"presence_{spec.name}"] = write_frame(client, bucket, f"{output_prefix}/presence_{spec.name}.csv", presence)

  print(json.dumps({
    "version_id": version_id,
    "created_at": now_iso(),
    "output_prefix": output_prefix,
    "rows": int(len(combined)),
    "studies": int(combined["study_title"].nunique()),
    "files": written
  }, indent=2))
  log("done")


if __name__ == "__main__":
  main()
