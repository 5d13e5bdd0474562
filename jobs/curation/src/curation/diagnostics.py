"""Diagnostics for one field run: what failed to match, and why.

Nothing here prints as a side effect of building diagnostics; callers decide
when to emit notices via ``emit_notices``.
"""

import sys
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from curation.explode import RAW_PREFIX
from curation.matching import TIER_NONE
from curation.reference import ReferenceTable
from curation.utils import nulls_to_none


LEVEL_OK = "ok"
LEVEL_WARN = "warn"

UNMATCHED_STUDY_COLUMNS = ["study_id", "study_title"]


def log(message: str) -> None:
  print(f"[curation.diagnostics] {message}", flush=True)


@dataclass
class Diagnostics:
  field_name: str
  value_columns: List[str]
  entries: int = 0
  matched: int = 0
  unmatched: pd.DataFrame = field(default_factory=pd.DataFrame)
  unmatched_counts: pd.DataFrame = field(default_factory=pd.DataFrame)
  incomplete_reference: pd.DataFrame = field(default_factory=pd.DataFrame)
  key_conflicts: pd.DataFrame = field(default_factory=pd.DataFrame)
  hierarchy_conflicts: pd.DataFrame = field(default_factory=pd.DataFrame)
  records_with_values: int = 0
  records_with_matches: int = 0
  records_lost: pd.DataFrame = field(default_factory=pd.DataFrame)
  data_quality_notes: List[str] = field(default_factory=list)

  @property
  def unmatched_entries(self) -> int:
    return self.entries - self.matched

  @property
  def has_unmatched(self) -> bool:
    return self.unmatched_entries > 0

  def notices(self) -> List[Tuple[str, str]]:
    out: List[Tuple[str, str]] = []
    if self.has_unmatched:
      out.append((
        LEVEL_WARN,
        f"{self.field_name}: {self.unmatched_entries} unmatched entries "
        f"({len(self.unmatched_counts)} distinct values) need manual review"
      ))
    else:
      out.append((LEVEL_OK, f"{self.field_name}: all values standardized ({self.matched} entries)"))
    if len(self.incomplete_reference):
      out.append((
        LEVEL_WARN,
        f"{self.field_name}: {len(self.incomplete_reference)} reference entries are missing required attributes"
      ))
    if len(self.key_conflicts) or len(self.hierarchy_conflicts):
      out.append((
        LEVEL_WARN,
        f"{self.field_name}: reference has {len(self.key_conflicts)} conflicting key rows "
        f"and {len(self.hierarchy_conflicts)} inconsistent hierarchy rows"
      ))
    if len(self.records_lost):
      out.append((
        LEVEL_WARN,
        f"{self.field_name}: {len(self.records_lost)} records have values but no standardized entry"
      ))
    for note in self.data_quality_notes:
      out.append((LEVEL_WARN, note))
    return out

  def summary(self) -> Dict[str, int]:
    return {
      "entries": int(self.entries),
      "matched": int(self.matched),
      "unmatched": int(self.unmatched_entries),
      "distinct_unmatched": int(len(self.unmatched_counts)),
      "incomplete_reference": int(len(self.incomplete_reference)),
      "key_conflicts": int(len(self.key_conflicts)),
      "hierarchy_conflicts": int(len(self.hierarchy_conflicts)),
      "records_with_values": int(self.records_with_values),
      "records_with_matches": int(self.records_with_matches),
      "data_quality_notes": len(self.data_quality_notes)
    }


def unmatched_by_study(table: pd.DataFrame, value_columns: List[str]) -> pd.DataFrame:
  """Distinct failing values (raw and resolved), listed once per study that mentions them."""
  columns = value_columns + ["issue_type"] + UNMATCHED_STUDY_COLUMNS
  failed = table.loc[table["match_tier"] == TIER_NONE, columns]
  return failed.drop_duplicates().sort_values(value_columns + ["study_title"], na_position="first").reset_index(drop=True)


def unmatched_frequencies(table: pd.DataFrame, value_columns: List[str]) -> pd.DataFrame:
  """Count of (study, mention) pairs and distinct studies per failing value."""
  group_columns = value_columns + ["issue_type"]
  failed = table.loc[table["match_tier"] == TIER_NONE, group_columns + ["study_title"]]
  if failed.empty:
    return pd.DataFrame(columns=group_columns + ["count", "studies"])
  counts = (
    failed.groupby(group_columns, dropna=False)
    .agg(count=("study_title", "size"), studies=("study_title", "nunique"))
    .reset_index()
    .sort_values(["count"] + group_columns, ascending=[False] + [True] * len(group_columns), na_position="first")
    .reset_index(drop=True)
  )
  return nulls_to_none(counts, group_columns)


def records_without_matches(table: pd.DataFrame) -> pd.DataFrame:
  if table.empty:
    return pd.DataFrame(columns=UNMATCHED_STUDY_COLUMNS + ["row_id"])
  matched_rows = set(table.loc[table["match_tier"] != TIER_NONE, "row_id"].tolist())
  lost = table.loc[~table["row_id"].isin(matched_rows), UNMATCHED_STUDY_COLUMNS + ["row_id"]]
  return lost.drop_duplicates().sort_values("row_id").reset_index(drop=True)


def build_diagnostics(
  field_name: str,
  table: pd.DataFrame,
  value_columns: List[str],
  reference: ReferenceTable,
  hierarchy: Sequence[Tuple[str, str]] = (),
  notes: Optional[List[str]] = None
) -> Diagnostics:
  hierarchy_frames = [reference.hierarchy_conflicts(child, parent) for child, parent in hierarchy]
  hierarchy_conflicts = (
    pd.concat(hierarchy_frames, ignore_index=True)
    if hierarchy_frames
    else pd.DataFrame(columns=["child_column", "child_value", "parent_column", "parent_value"])
  )
  # source spellings first, then the resolved values
  reported = [RAW_PREFIX + column for column in value_columns if RAW_PREFIX + column in table.columns]
  reported += list(value_columns)
  matched_mask = table["match_tier"] != TIER_NONE
  diagnostics = Diagnostics(
    field_name=field_name,
    value_columns=list(value_columns),
    entries=int(len(table)),
    matched=int(matched_mask.sum()),
    unmatched=unmatched_by_study(table, reported),
    unmatched_counts=unmatched_frequencies(table, reported),
    incomplete_reference=reference.incomplete_entries(),
    key_conflicts=reference.key_conflicts(),
    hierarchy_conflicts=hierarchy_conflicts,
    records_with_values=int(table["row_id"].nunique()),
    records_with_matches=int(table.loc[matched_mask, "row_id"].nunique()),
    records_lost=records_without_matches(table),
    data_quality_notes=list(notes or [])
  )
  log(f"build_diagnostics field={field_name} {diagnostics.summary()}")
  return diagnostics


def emit_notices(diagnostics: Diagnostics, prefix: str = "curation.standardize") -> None:
  for level, message in diagnostics.notices():
    if level == LEVEL_WARN:
      print(f"[warn] {message}", file=sys.stderr, flush=True)
    else:
      print(f"[{prefix}] [ok] {message}", flush=True)
  if diagnostics.has_unmatched:
    print(diagnostics.unmatched_counts.to_string(index=False), file=sys.stderr, flush=True)
