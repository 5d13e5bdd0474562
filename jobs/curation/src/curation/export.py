"""Exporter: full-overwrite CSV outputs for one field run.

Every file is rewritten on each run. Long tables are read back with
``read_long_table`` so ``row_id``/``position`` stay integers and empty cells
come back as None.
"""

import json
from typing import Any, Dict, List

import pandas as pd

from curation.diagnostics import Diagnostics
from curation.matching import (
  ISSUE_BAD_COUNTRY,
  ISSUE_BAD_REGION,
  ISSUE_CONTINENT_ONLY,
  ISSUE_UNMAPPED,
  ISSUE_UNSTANDARDIZED,
  TIER_NONE
)
from curation.pipeline import INTEGER_COLUMNS, FieldOutput
from curation.utils import (
  frame_to_csv_bytes,
  now_iso,
  nulls_to_none,
  read_csv_bytes,
  sha256_hex,
  upload_bytes
)


TRIAGE_COLUMNS = ["field", "column", "raw_value", "standard_value", "approved", "issue_type", "count", "notes"]

# which resolved column an issue points at, for alias triage
ISSUE_COLUMNS = {
  ISSUE_BAD_COUNTRY: "country",
  ISSUE_BAD_REGION: "subnational_region",
  ISSUE_CONTINENT_ONLY: "continent"
}


def log(message: str) -> None:
  print(f"[curation.export] {message}", flush=True)


def write_frame(client: Any, bucket: str, key: str, df: pd.DataFrame) -> Dict[str, Any]:
  data = frame_to_csv_bytes(df)
  upload_bytes(client, bucket, key, data, "text/csv")
  return {"path": key, "rows": int(len(df)), "sha256": sha256_hex(data)}


def write_json(client: Any, bucket: str, key: str, payload: Dict[str, Any]) -> str:
  data = json.dumps(payload, indent=2).encode("utf-8")
  upload_bytes(client, bucket, key, data, "application/json")
  return sha256_hex(data)


def read_long_table(raw: bytes) -> pd.DataFrame:
  df = read_csv_bytes(raw)
  text_columns = [column for column in df.columns if column not in INTEGER_COLUMNS]
  df = df.replace({"": None})
  df = nulls_to_none(df, text_columns)
  for column in INTEGER_COLUMNS:
    if column in df.columns:
      df[column] = pd.to_numeric(df[column]).astype("Int64")
  return df


def collapse_by_record(table: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
  """One row per record with the distinct matched values of each column joined by '; '."""
  keys = ["study_id", "study_title", "row_id"]
  matched = table[table["match_tier"] != TIER_NONE].sort_values(["row_id", "position"])
  rows = []
  for row_id, group in matched.groupby("row_id", sort=True):
    first = group.iloc[0]
    row: Dict[str, Any] = {"study_id": first["study_id"], "study_title": first["study_title"], "row_id": row_id}
    for column in columns:
      values = [value for value in group[column].tolist() if value is not None]
      row[column] = "; ".join(dict.fromkeys(values)) if values else None
    rows.append(row)
  out = pd.DataFrame(rows, columns=keys + list(columns))
  out["row_id"] = out["row_id"].astype("Int64")
  return out


def triage_sheet(output: FieldOutput, diagnostics: Diagnostics) -> pd.DataFrame:
  """Distinct unmatched values laid out for manual alias curation."""
  spec = output.spec
  rows: List[Dict[str, Any]] = []
  for record in diagnostics.unmatched_counts.to_dict(orient="records"):
    issue = record["issue_type"]
    if issue in (ISSUE_UNMAPPED, ISSUE_UNSTANDARDIZED):
      column = spec.key_columns[0]
    else:
      column = ISSUE_COLUMNS.get(issue)
    if column is None or column not in spec.aliases:
      continue
    value = record.get(column)
    if value is None:
      continue
    rows.append({
      "field": spec.name,
      "column": column,
      "raw_value": value,
      "standard_value": None,
      "approved": 0,
      "issue_type": issue,
      "count": int(record["count"]),
      "notes": None
    })
  sheet = pd.DataFrame(rows, columns=TRIAGE_COLUMNS)
  if sheet.empty:
    return sheet
  sheet = (
    sheet.groupby(["field", "column", "raw_value"], as_index=False, sort=True)
    .agg(
      standard_value=("standard_value", "first"),
      approved=("approved", "first"),
      issue_type=("issue_type", "first"),
      count=("count", "sum"),
      notes=("notes", "first")
    )
  )
  return nulls_to_none(sheet[TRIAGE_COLUMNS], ["standard_value", "notes"])


def export_field(
  client: Any,
  bucket: str,
  prefix: str,
  output: FieldOutput,
  diagnostics: Diagnostics
) -> Dict[str, Any]:
  name = output.spec.name
  base = f"{prefix}/{name}"
  files = {
    "standardized_long": write_frame(client, bucket, f"{base}/standardized_long.csv", output.table),
    "unmatched": write_frame(client, bucket, f"{base}/unmatched.csv", diagnostics.unmatched),
    "unmatched_counts": write_frame(client, bucket, f"{base}/unmatched_counts.csv", diagnostics.unmatched_counts),
    "incomplete_reference": write_frame(
      client, bucket, f"{base}/incomplete_reference.csv", diagnostics.incomplete_reference
    ),
    "key_conflicts": write_frame(client, bucket, f"{base}/key_conflicts.csv", diagnostics.key_conflicts),
    "hierarchy_conflicts": write_frame(
      client, bucket, f"{base}/hierarchy_conflicts.csv", diagnostics.hierarchy_conflicts
    ),
    "records_lost": write_frame(client, bucket, f"{base}/records_lost.csv", diagnostics.records_lost),
    "triage": write_frame(client, bucket, f"{base}/triage.csv", triage_sheet(output, diagnostics)),
    "collapsed": write_frame(
      client, bucket, f"{base}/collapsed.csv", collapse_by_record(output.table, list(output.spec.published))
    )
  }

  reference_files = {
    output.reference.name: write_frame(
      client, bucket, f"{prefix}/reference/{output.reference.name}.csv", output.reference.frame
    )
  }
  for column, alias_map in output.aliases.items():
    filename = output.spec.aliases[column]
    reference_files[filename] = write_frame(
      client,
      bucket,
      f"{prefix}/reference/{filename}",
      alias_map.to_frame(f"raw_{column}", f"standard_{column}")
    )

  manifest = {
    "field": name,
    "created_at": now_iso(),
    "columns": list(output.table.columns),
    "reference_table": output.reference.name,
    "reference_sha256": output.reference.content_hash(),
    "diagnostics": diagnostics.summary(),
    "data_quality_notes": diagnostics.data_quality_notes,
    "files": files,
    "reference_files": reference_files
  }
  manifest_key = f"{base}/manifest.json"
  manifest_sha = write_json(client, bucket, manifest_key, manifest)
  log(f"export_field field={name} rows={len(output.table)} manifest={manifest_key}")
  return {"field": name, "manifest": manifest_key, "manifest_sha256": manifest_sha, "files": files}
