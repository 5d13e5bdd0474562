import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

from curation.diagnostics import emit_notices
from curation.export import export_field
from curation.fields import FIELDS, resolve_fields
from curation.pipeline import run_field
from curation.records import load_records_file, load_records_from_storage, resolve_source_key
from curation.utils import build_s3_client, now_iso, reference_dir, resolve_bucket_name


def log(message: str) -> None:
  print(f"[curation.standardize] {message}", flush=True)


def load_source(client: Any, bucket: str, args: argparse.Namespace) -> pd.DataFrame:
  if args.source_path:
    return load_records_file(Path(args.source_path).expanduser(), sheet=args.sheet)
  source_key = args.source_key or resolve_source_key(client, bucket, args.version_id)
  return load_records_from_storage(client, bucket, source_key, sheet=args.sheet)


def standardize_all(
  client: Any,
  bucket: str,
  records: pd.DataFrame,
  field_names: List[str],
  ref_dir: Path,
  output_prefix: str
) -> Dict[str, Dict[str, Any]]:
  results: Dict[str, Dict[str, Any]] = {}
  for spec in resolve_fields(field_names):
    try:
      output, diagnostics = run_field(records, spec, ref_dir)
      exported = export_field(client, bucket, output_prefix, output, diagnostics)
    except (OSError, RuntimeError, ValueError) as exc:
      print(f"[warn] {spec.name}: field pipeline failed: {exc}", file=sys.stderr, flush=True)
      results[spec.name] = {"status": "FAILED", "error": str(exc)}
      continue
    emit_notices(diagnostics)
    results[spec.name] = {
      "status": "SUCCEEDED",
      "manifest": exported["manifest"],
      "diagnostics": diagnostics.summary()
    }
  return results


def main() -> None:
  parser = argparse.ArgumentParser(description="Standardize multi-valued study fields against reference tables")
  parser.add_argument("--version_id")
  parser.add_argument("--source_path", help="Local CSV/XLSX instead of raw/<version_id>/dataset.*")
  parser.add_argument("--source_key", help="Storage key of the source table")
  parser.add_argument("--sheet")
  parser.add_argument("--fields", nargs="*", default=["all"], help=f"Subset of {list(FIELDS)}")
  parser.add_argument("--reference_dir")
  parser.add_argument("--output_prefix")
  args = parser.parse_args()

  version_id = args.version_id or os.getenv("CURATION_VERSION_ID")
  args.version_id = version_id
  if not version_id and not args.source_path and not args.source_key:
    raise RuntimeError("Provide --version_id, --source_key or --source_path")

  bucket = resolve_bucket_name()
  client = build_s3_client()
  ref_dir = reference_dir(args.reference_dir)
  output_prefix = (args.output_prefix or f"curated/{version_id or 'adhoc'}").rstrip("/")
  started_at = now_iso()
  log(f"start version_id={version_id} fields={args.fields} reference_dir={ref_dir} output_prefix={output_prefix}")

  records = load_source(client, bucket, args)
  results = standardize_all(client, bucket, records, args.fields, ref_dir, output_prefix)

  failed = [name for name, result in results.items() if result["status"] != "SUCCEEDED"]
  print(json.dumps({
    "version_id": version_id,
    "started_at": started_at,
    "finished_at": now_iso(),
    "records": int(len(records)),
    "output_prefix": output_prefix,
    "fields": results
  }, indent=2))
  log("done")
  if failed:
    raise SystemExit(f"Field pipelines failed: {failed}")


if __name__ == "__main__":
  main()
