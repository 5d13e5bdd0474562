"""Record source: the coded-study table every field pipeline starts from.

Each record is one coded study. Multi-valued cells hold ``;``-delimited lists
that the field exploder splits later; here we only clean headers, normalize
missing tokens and attach a stable ``row_id``.
"""

import io
from pathlib import Path
from typing import Any, List, Optional

import pandas as pd

from curation.utils import (
  clean_text_frame,
  download_bytes,
  key_exists,
  normalize_header
)


JOIN_KEY = "study_title"
RECORD_ID_COLUMNS = ["study_id", "study_title", "row_id"]
SOURCE_CANDIDATES = ["dataset.csv", "dataset.xlsx"]


def log(message: str) -> None:
  print(f"[curation.records] {message}", flush=True)


def read_table_bytes(raw: bytes, name: str, sheet: Optional[str] = None) -> pd.DataFrame:
  suffix = Path(name).suffix.lower()
  if suffix in {".xlsx", ".xlsm"}:
    return pd.read_excel(io.BytesIO(raw), sheet_name=sheet or 0, dtype=str, engine="openpyxl")
  if suffix in {".csv", ".txt", ""}:
    return pd.read_csv(io.BytesIO(raw), dtype=str, keep_default_na=False)
  raise RuntimeError(f"Unsupported source format: {name}")


def dedupe_headers(columns: List[str]) -> List[str]:
  seen = {}
  out = []
  for column in columns:
    name = normalize_header(column) or "column"
    count = seen.get(name, 0)
    seen[name] = count + 1
    out.append(name if count == 0 else f"{name}_{count + 1}")
  return out


def validate_join_key(df: pd.DataFrame) -> None:
  if JOIN_KEY not in df.columns:
    raise ValueError(f"Source table has no {JOIN_KEY} column")
  missing = df[JOIN_KEY].isna()
  if missing.any():
    rows = df.loc[missing, "row_id"].tolist()
    raise ValueError(f"Records without {JOIN_KEY} at row_id={rows[:10]}")
  duplicated = df[JOIN_KEY].duplicated(keep=False)
  if duplicated.any():
    titles = sorted(df.loc[duplicated, JOIN_KEY].unique().tolist())
    raise ValueError(f"Duplicate {JOIN_KEY} values: {titles[:10]}")


def prepare_records(df: pd.DataFrame) -> pd.DataFrame:
  out = df.copy()
  out.columns = dedupe_headers([str(column) for column in out.columns])
  out = clean_text_frame(out)
  out = out.dropna(how="all").reset_index(drop=True)
  if "study_id" not in out.columns:
    out["study_id"] = None
  out["row_id"] = pd.array(range(1, len(out) + 1), dtype="Int64")
  validate_join_key(out)
  ordered = RECORD_ID_COLUMNS + [column for column in out.columns if column not in RECORD_ID_COLUMNS]
  log(f"prepare_records rows={len(out)} columns={len(ordered)}")
  return out[ordered]


def load_records_file(path: Path, sheet: Optional[str] = None) -> pd.DataFrame:
  if not path.is_file():
    raise FileNotFoundError(f"Source file not found: {path}")
  log(f"load_records_file path={path}")
  return prepare_records(read_table_bytes(path.read_bytes(), path.name, sheet))


def resolve_source_key(client: Any, bucket: str, version_id: str) -> str:
  for name in SOURCE_CANDIDATES:
    key = f"raw/{version_id}/{name}"
    if key_exists(client, bucket, key):
      return key
  raise FileNotFoundError(f"No source dataset under raw/{version_id}/")


def load_records_from_storage(client: Any, bucket: str, key: str, sheet: Optional[str] = None) -> pd.DataFrame:
  log(f"load_records_from_storage key={key}")
  raw = download_bytes(client, bucket, key)
  return prepare_records(read_table_bytes(raw, key, sheet))
