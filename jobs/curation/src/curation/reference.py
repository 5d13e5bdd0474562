"""Reference tables: the authoritative value sets every field is matched against.

A table is keyed on one or more columns. Keys compare null-to-null (a
supranational geography row has no region), so lookups go through an index
of plain tuples rather than a pandas merge.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import pandas as pd

from curation.utils import clean_text_frame, frame_to_csv_bytes, normalize_raw_value, nulls_to_none, sha256_hex


STATUS_RULES = {
  "active": "active",
  "repealed": "inactive",
  "replaced": "inactive",
  "suspended": "inactive",
  "historical": "inactive"
}

POLICY_TYPE_RULES = {
  "legislation": ("legislation", "Primary law passed by a legislature."),
  "regulation": ("regulation", "Binding rules issued by an executive agency under enabling legislation."),
  "directive": ("directive", "Binding instruction setting goals that lower jurisdictions must implement."),
  "model rule": ("model_rule", "Template rule offered for adoption by other jurisdictions; not binding by itself."),
  "policy": ("policy", "Non-statutory government policy or guidance."),
  "policy directive": ("policy", "Policy instrument issued as a directive; treated as non-statutory policy."),
  "code": ("code", "Codified body of law or planning code."),
  "decree": ("decree", "Executive order or decree with force of law."),
  "framework": ("framework", "Framework instrument setting principles for later rules."),
  "framework legislation": ("framework", "Framework law setting principles for later rules."),
  "international agreement": ("international_agreement", "Treaty or convention between states.")
}

JURISDICTION_LEVEL_RULES = {
  "national": ("national", "Applies across one country."),
  "subnational": ("subnational", "Applies within a state, province or other subnational unit."),
  "multi-jurisdiction": ("regional", "Spans several jurisdictions of the same level; grouped as regional."),
  "international": ("international", "Applies across several countries.")
}


def log(message: str) -> None:
  print(f"[curation.reference] {message}", flush=True)


def _key_of(row: Dict[str, Any], columns: List[str]) -> Tuple[Optional[str], ...]:
  return tuple(normalize_raw_value(row.get(column)) for column in columns)


@dataclass
class ReferenceTable:
  name: str
  frame: pd.DataFrame
  key_columns: List[str]
  standardized_column: str
  required_columns: List[str] = field(default_factory=list)

  def __post_init__(self) -> None:
    missing = [c for c in self.key_columns + [self.standardized_column] + self.required_columns if c not in self.frame.columns]
    if missing:
      raise RuntimeError(f"Reference table {self.name} missing columns {missing}")
    self.frame = clean_text_frame(self.frame).drop_duplicates().reset_index(drop=True)
    self._index: Dict[Tuple[Optional[str], ...], Dict[str, Any]] = {}
    for row in self.frame.to_dict(orient="records"):
      self._index.setdefault(_key_of(row, self.key_columns), row)

  @property
  def attribute_columns(self) -> List[str]:
    return [column for column in self.frame.columns if column not in self.key_columns]

  def __len__(self) -> int:
    return len(self.frame)

  def lookup(self, key: Tuple[Optional[str], ...]) -> Optional[Dict[str, Any]]:
    return self._index.get(tuple(key))

  def has_key(self, key: Tuple[Optional[str], ...]) -> bool:
    return tuple(key) in self._index

  def values(self, column: str) -> Set[str]:
    return {value for value in self.frame[column].tolist() if value is not None}

  def incomplete_entries(self) -> pd.DataFrame:
    if not self.required_columns:
      return self.frame.iloc[0:0].copy()
    mask = self.frame[self.required_columns].isna().any(axis=1)
    return self.frame[mask].reset_index(drop=True)

  def key_conflicts(self) -> pd.DataFrame:
    """Keys that appear on more than one distinct row."""
    keyed = self.frame.assign(_key=[_key_of(row, self.key_columns) for row in self.frame.to_dict(orient="records")])
    duplicated = keyed["_key"].duplicated(keep=False)
    return keyed[duplicated].drop(columns="_key").reset_index(drop=True)

  def hierarchy_conflicts(self, child: str, parent: str) -> pd.DataFrame:
    """Child values that map to more than one parent value."""
    pairs = self.frame[[child, parent]].dropna().drop_duplicates()
    counts = pairs.groupby(child)[parent].transform("nunique")
    out = pairs[counts > 1].sort_values([child, parent]).reset_index(drop=True)
    return out.rename(columns={child: "child_value", parent: "parent_value"}).assign(
      child_column=child, parent_column=parent
    )[["child_column", "child_value", "parent_column", "parent_value"]]

  def content_hash(self) -> str:
    return sha256_hex(frame_to_csv_bytes(self.frame))


def load_reference_frame(path: Path) -> pd.DataFrame:
  if not path.is_file():
    raise FileNotFoundError(f"Reference table not found: {path}")
  df = pd.read_csv(path, dtype=str, keep_default_na=False)
  log(f"load_reference_frame path={path.name} rows={len(df)}")
  return clean_text_frame(df)


def merge_reference(authoritative: pd.DataFrame, curated: pd.DataFrame, key_columns: List[str]) -> pd.DataFrame:
  """Union two sources; curated rows replace authoritative rows with the same key."""
  curated = clean_text_frame(curated).drop_duplicates()
  authoritative = clean_text_frame(authoritative).drop_duplicates()
  curated_keys = {_key_of(row, key_columns) for row in curated.to_dict(orient="records")}
  keep = [
    _key_of(row, key_columns) not in curated_keys
    for row in authoritative.to_dict(orient="records")
  ]
  kept = authoritative[keep] if len(authoritative) else authoritative
  merged = pd.concat([kept, curated], ignore_index=True, sort=False)
  columns = list(authoritative.columns) + [c for c in curated.columns if c not in authoritative.columns]
  merged = nulls_to_none(merged.reindex(columns=columns)).drop_duplicates().reset_index(drop=True)
  log(f"merge_reference authoritative={len(authoritative)} curated={len(curated)} replaced={keep.count(False)} merged={len(merged)}")
  return merged


def attach_descriptions(frame: pd.DataFrame, descriptions: pd.DataFrame, on: str) -> pd.DataFrame:
  merged = frame.merge(clean_text_frame(descriptions), on=on, how="left")
  return nulls_to_none(merged)


def _classify(value: Optional[str], rules: Dict[str, Tuple[str, str]]) -> Tuple[Optional[str], Optional[str]]:
  if value is None:
    return None, None
  return rules.get(value.strip().lower(), (None, None))


def derive_policy_classifications(frame: pd.DataFrame) -> pd.DataFrame:
  out = frame.copy()
  out["status_standardized"] = [
    STATUS_RULES.get(value.strip().lower()) if value is not None else None
    for value in out["status"].tolist()
  ]
  types = [_classify(value, POLICY_TYPE_RULES) for value in out["policy_type"].tolist()]
  out["policy_type_standardized"] = [item[0] for item in types]
  out["policy_type_notes"] = [item[1] for item in types]
  levels = [_classify(value, JURISDICTION_LEVEL_RULES) for value in out["jurisdiction_level"].tolist()]
  out["jurisdiction_level_standardized"] = [item[0] for item in levels]
  out["jurisdiction_level_notes"] = [item[1] for item in levels]
  return nulls_to_none(out)
