"""Descriptive summaries of the coded-study table.

Outputs (under ``<prefix>/summary/``):
- studies_by_year.csv
- studies_by_category.csv
- studies_by_evidence_type.csv
- evidence_type_by_category.csv
- summary.md

Counts are per distinct study. Every helper takes an explicit column accessor
so the same code serves any column of the source table.
"""

import argparse
import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from curation.export import write_frame
from curation.records import JOIN_KEY, load_records_file, load_records_from_storage, resolve_source_key
from curation.utils import build_s3_client, now_iso, resolve_bucket_name, sha256_hex, upload_bytes


Accessor = Callable[[pd.DataFrame], pd.Series]

TOP_YEARS = 5


def log(message: str) -> None:
  print(f"[curation.summarize] {message}", flush=True)


def column(name: str) -> Accessor:
  def access(df: pd.DataFrame) -> pd.Series:
    if name not in df.columns:
      return pd.Series([None] * len(df), index=df.index, dtype=object)
    return df[name]
  return access


def year_of(name: str) -> Accessor:
  def access(df: pd.DataFrame) -> pd.Series:
    return pd.to_numeric(column(name)(df), errors="coerce").astype("Int64")
  return access


def count_studies(df: pd.DataFrame, key: Accessor, label: str) -> pd.DataFrame:
  """Distinct studies per value of ``key``, most frequent first; missing values are dropped."""
  frame = pd.DataFrame({label: key(df), JOIN_KEY: df[JOIN_KEY]}).dropna(subset=[label])
  if frame.empty:
    return pd.DataFrame(columns=[label, "studies"])
  counts = frame.groupby(label)[JOIN_KEY].nunique().reset_index(name="studies")
  return counts.sort_values(["studies", label], ascending=[False, True]).reset_index(drop=True)


def cross_count(df: pd.DataFrame, rows: Accessor, columns: Accessor, row_label: str, column_label: str) -> pd.DataFrame:
  frame = pd.DataFrame({row_label: rows(df), column_label: columns(df), JOIN_KEY: df[JOIN_KEY]})
  frame = frame.dropna(subset=[row_label, column_label])
  if frame.empty:
    return pd.DataFrame(columns=[row_label])
  table = frame.pivot_table(index=row_label, columns=column_label, values=JOIN_KEY, aggfunc="nunique", fill_value=0)
  table.columns = [str(value) for value in table.columns]
  return table.reset_index()


def year_range(df: pd.DataFrame, years: Accessor) -> Dict[str, Optional[int]]:
  values = years(df).dropna()
  if values.empty:
    return {"earliest": None, "latest": None}
  return {"earliest": int(values.min()), "latest": int(values.max())}


def top_years(by_year: pd.DataFrame, n: int = TOP_YEARS) -> pd.DataFrame:
  if by_year.empty:
    return by_year
  return by_year.nlargest(n, "studies", keep="all").reset_index(drop=True)


def build_summary(records: pd.DataFrame) -> Dict[str, Any]:
  years = year_of("publication_year")
  by_year = count_studies(records, years, "publication_year")
  return {
    "studies": int(records[JOIN_KEY].nunique()),
    "years": year_range(records, years),
    "by_year": by_year,
    "top_years": top_years(by_year),
    "by_category": count_studies(records, column("offset_category_general"), "offset_category_general"),
    "by_evidence_type": count_studies(records, column("evidence_type"), "evidence_type"),
    "evidence_by_category": cross_count(
      records,
      column("evidence_type"),
      column("offset_category_general"),
      "evidence_type",
      "offset_category_general"
    )
  }


def render_markdown(summary: Dict[str, Any]) -> str:
  md: List[str] = []
  md.append("# Study summary\n")
  md.append(f"- Studies: **{summary['studies']}**\n")
  earliest = summary["years"]["earliest"]
  latest = summary["years"]["latest"]
  if earliest is None:
    md.append("- Publication years: NA\n")
  else:
    md.append(f"- Publication years: {earliest} to {latest}\n")

  md.append("\n## Top publication years\n")
  if summary["top_years"].empty:
    md.append("No publication years recorded.\n")
  for _, row in summary["top_years"].iterrows():
    md.append(f"- {int(row['publication_year'])}: {int(row['studies'])}\n")

  for title, key, label in [
    ("Offset category (general)", "by_category", "offset_category_general"),
    ("Evidence type", "by_evidence_type", "evidence_type")
  ]:
    md.append(f"\n## {title}\n")
    table = summary[key]
    if table.empty:
      md.append("No values recorded.\n")
    for _, row in table.iterrows():
      md.append(f"- {row[label]}: {int(row['studies'])}\n")
  return "".join(md)


def write_summary(client: Any, bucket: str, prefix: str, summary: Dict[str, Any]) -> Dict[str, Any]:
  files = {
    "studies_by_year": write_frame(client, bucket, f"{prefix}/studies_by_year.csv", summary["by_year"]),
    "studies_by_category": write_frame(client, bucket, f"{prefix}/studies_by_category.csv", summary["by_category"]),
    "studies_by_evidence_type": write_frame(
      client, bucket, f"{prefix}/studies_by_evidence_type.csv", summary["by_evidence_type"]
    ),
    "evidence_type_by_category": write_frame(
      client, bucket, f"{prefix}/evidence_type_by_category.csv", summary["evidence_by_category"]
    )
  }
  report = render_markdown(summary).encode("utf-8")
  upload_bytes(client, bucket, f"{prefix}/summary.md", report, "text/markdown")
  files["summary_md"] = {"path": f"{prefix}/summary.md", "sha256": sha256_hex(report)}
  return files


def main() -> None:
  parser = argparse.ArgumentParser(description="Descriptive summaries of the coded-study table")
  parser.add_argument("--version_id")
  parser.add_argument("--source_path")
  parser.add_argument("--source_key")
  parser.add_argument("--sheet")
  parser.add_argument("--output_prefix")
  args = parser.parse_args()

  version_id = args.version_id or os.getenv("CURATION_VERSION_ID")
  if not version_id and not args.source_path and not args.source_key:
    raise RuntimeError("Provide --version_id, --source_key or --source_path")
  bucket = resolve_bucket_name()
  client = build_s3_client()
  output_prefix = (args.output_prefix or f"curated/{version_id or 'adhoc'}/summary").rstrip("/")

  if args.source_path:
    records = load_records_file(Path(args.source_path).expanduser(), sheet=args.sheet)
  else:
    source_key = args.source_key or resolve_source_key(client, bucket, version_id)
    records = load_records_from_storage(client, bucket, source_key, sheet=args.sheet)

  summary = build_summary(records)
  log(f"studies={summary['studies']} years={summary['years']}")
  files = write_summary(client, bucket, output_prefix, summary)
  print(json.dumps({
    "version_id": version_id,
    "created_at": now_iso(),
    "studies": summary["studies"],
    "years": summary["years"],
    "files": files
  }, indent=2))
  log("done")


if __name__ == "__main__":
  main()
