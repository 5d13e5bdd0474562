import hashlib
import io
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

import boto3
import pandas as pd


MISSING_TOKENS = {"", "nan", "#n/a", "n/a", "na", "none", "null"}
DEFAULT_REFERENCE_DIR = Path(__file__).resolve().parent / "reference_data"


def log(message: str) -> None:
  print(f"[curation.utils] {message}", flush=True)


def env_or_error(name: str) -> str:
  value = os.getenv(name)
  if not value:
    raise RuntimeError(f"Missing required env var: {name}")
  return value


def local_storage_root() -> Optional[Path]:
  value = os.getenv("LOCAL_STORAGE_ROOT")
  if not value:
    return None
  root = Path(value).expanduser().resolve()
  root.mkdir(parents=True, exist_ok=True)
  return root


def using_local_storage() -> bool:
  return local_storage_root() is not None


def resolve_bucket_name() -> str:
  if using_local_storage():
    return "__local__"
  return env_or_error("R2_BUCKET")


def reference_dir(override: Optional[str] = None) -> Path:
  value = override or os.getenv("CURATION_REFERENCE_DIR")
  if not value:
    return DEFAULT_REFERENCE_DIR
  path = Path(value).expanduser().resolve()
  if not path.is_dir():
    raise FileNotFoundError(f"Reference directory not found: {path}")
  return path


def now_iso() -> str:
  return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"


def sha256_hex(data: bytes) -> str:
  return hashlib.sha256(data).hexdigest()


def is_missing_cell(value: Any) -> bool:
  return value is None or value is pd.NA or (isinstance(value, float) and pd.isna(value))


def is_missing_value(value: Any) -> bool:
  if is_missing_cell(value):
    return True
  text = str(value).strip().lower()
  return text in MISSING_TOKENS


def normalize_raw_value(value: Any) -> Optional[str]:
  if is_missing_value(value):
    return None
  return str(value).strip()


def normalize_header(name: str) -> str:
  return re.sub(r"[^a-z0-9]+", "_", str(name).strip().lower()).strip("_")


def clean_text_frame(df: pd.DataFrame, columns: Optional[Iterable[str]] = None) -> pd.DataFrame:
  """Return a copy where every cell in ``columns`` is a stripped string or None."""
  out = df.copy()
  targets = list(columns) if columns is not None else list(out.columns)
  for column in targets:
    out[column] = pd.Series([normalize_raw_value(value) for value in out[column]], index=out.index, dtype=object)
  return out


def frame_to_csv_bytes(df: pd.DataFrame) -> bytes:
  return df.to_csv(index=False).encode("utf-8")


def read_csv_bytes(raw: bytes) -> pd.DataFrame:
  return pd.read_csv(io.BytesIO(raw), dtype=str, keep_default_na=False)


def build_s3_client() -> Any:
  root = local_storage_root()
  if root is not None:
    log(f"build_s3_client local_root={root}")
    return {"mode": "local", "root": str(root)}

  endpoint = env_or_error("R2_ENDPOINT")
  access_key = env_or_error("R2_ACCESS_KEY_ID")
  secret_key = env_or_error("R2_SECRET_ACCESS_KEY")
  log(f"build_s3_client endpoint={endpoint}")
  return boto3.client(
    "s3",
    endpoint_url=endpoint,
    aws_access_key_id=access_key,
    aws_secret_access_key=secret_key,
    region_name="auto"
  )


def _local_path(root: Path, key: str) -> Path:
  relative = key.lstrip("/")
  path = (root / relative).resolve()
  if path != root and root not in path.parents:
    raise RuntimeError(f"Invalid storage key outside root: {key}")
  return path


def _is_local_client(client: Any) -> bool:
  return isinstance(client, dict) and client.get("mode") == "local"


def key_exists(client: Any, bucket: str, key: str) -> bool:
  if _is_local_client(client):
    root = Path(client["root"]).resolve()
    return _local_path(root, key).is_file()
  resp = client.list_objects_v2(Bucket=bucket, Prefix=key, MaxKeys=1)
  return any(entry.get("Key") == key for entry in resp.get("Contents", []) or [])


def download_bytes(client: Any, bucket: str, key: str) -> bytes:
  if _is_local_client(client):
    root = Path(client["root"]).resolve()
    path = _local_path(root, key)
    log(f"download_bytes local key={key}")
    if not path.is_file():
      raise FileNotFoundError(f"Storage key not found: {key}")
    return path.read_bytes()

  log(f"download_bytes bucket={bucket} key={key}")
  obj = client.get_object(Bucket=bucket, Key=key)
  data = obj["Body"].read()
  log(f"download_bytes completed size={len(data)}")
  return data


def upload_bytes(client: Any, bucket: str, key: str, data: bytes, content_type: str) -> None:
  if _is_local_client(client):
    root = Path(client["root"]).resolve()
    path = _local_path(root, key)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    log(f"upload_bytes local key={key} bytes={len(data)} content_type={content_type}")
    return

  log(f"upload_bytes bucket={bucket} key={key} bytes={len(data)} content_type={content_type}")
  client.put_object(Bucket=bucket, Key=key, Body=data, ContentType=content_type)
  log("upload_bytes completed")


def parse_approved_flag(value: Any) -> bool:
  if value is None:
    return False
  if isinstance(value, (int, float)) and not pd.isna(value):
    return int(value) == 1
  text = str(value).strip().lower()
  return text in {"1", "true", "yes", "y"}


def nulls_to_none(df: pd.DataFrame, columns: Optional[Iterable[str]] = None) -> pd.DataFrame:
  """Cast ``columns`` to object and replace NaN with None."""
  out = df.copy()
  targets = list(columns) if columns is not None else list(out.columns)
  if not targets:
    return out
  for column in targets:
    out[column] = pd.Series(
      [None if is_missing_cell(value) else value for value in out[column]],
      index=out.index,
      dtype=object
    )
  return out
