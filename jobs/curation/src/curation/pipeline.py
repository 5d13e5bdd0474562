"""Generic field standardization pipeline.

records -> explode -> normalize -> alias -> match -> (long table, diagnostics)
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple, Union

import pandas as pd

from curation.aliases import AliasMap
from curation.diagnostics import Diagnostics, build_diagnostics
from curation.explode import RAW_PREFIX, ExplodedEntry, explode_records
from curation.fields import MATCH_GEOGRAPHY, FieldSpec
from curation.matching import GeographyMatcher, MatchResult, StrictMatcher
from curation.records import RECORD_ID_COLUMNS
from curation.reference import ReferenceTable
from curation.utils import nulls_to_none


Matcher = Union[GeographyMatcher, StrictMatcher]
MATCH_COLUMNS = ["match_tier", "issue_type", "imputed"]
INTEGER_COLUMNS = ["row_id", "position"]


def log(message: str) -> None:
  print(f"[curation.pipeline] {message}", flush=True)


@dataclass
class FieldOutput:
  spec: FieldSpec
  table: pd.DataFrame
  reference: ReferenceTable
  aliases: Dict[str, AliasMap]


def build_matcher(spec: FieldSpec, reference: ReferenceTable) -> Matcher:
  if spec.matcher == MATCH_GEOGRAPHY:
    return GeographyMatcher(reference)
  return StrictMatcher(reference, spec.key_columns)


def exploded_columns(spec: FieldSpec, records: pd.DataFrame) -> List[str]:
  return spec.columns + [column for column in spec.optional_columns if column in records.columns]


def long_table_columns(spec: FieldSpec, reference: ReferenceTable, columns: List[str]) -> List[str]:
  ordered = ["study_id", "study_title", "row_id", "position"]
  ordered += [RAW_PREFIX + column for column in columns]
  ordered += spec.resolved_columns + MATCH_COLUMNS
  if spec.matcher != MATCH_GEOGRAPHY:
    ordered += [column for column in reference.attribute_columns if column not in ordered]
  return ordered


def standardize_entry(
  entry: ExplodedEntry,
  spec: FieldSpec,
  aliases: Dict[str, AliasMap],
  matcher: Matcher
) -> MatchResult:
  values = dict(entry.values)
  if spec.normalizer is not None:
    for column in spec.key_columns:
      if values.get(column) is not None:
        values[column] = spec.normalizer(values[column])
  for column, alias_map in aliases.items():
    if column in values:
      values[column] = alias_map.resolve(values[column])
  return matcher.match(values)


def entry_row(entry: ExplodedEntry, result: MatchResult, spec: FieldSpec) -> Dict[str, object]:
  row: Dict[str, object] = {
    "study_id": entry.study_id,
    "study_title": entry.study_title,
    "row_id": entry.row_id,
    "position": entry.position
  }
  for column, value in entry.values.items():
    row[RAW_PREFIX + column] = value
  for column in spec.resolved_columns:
    row[column] = result.values.get(column)
  row["match_tier"] = result.tier
  row["issue_type"] = result.issue_type
  row["imputed"] = ";".join(result.imputed) if result.imputed else None
  row.update(result.attributes)
  return row


def paired_column_notes(records: pd.DataFrame, spec: FieldSpec) -> List[str]:
  notes = []
  for first, second in spec.paired_columns:
    if first not in records.columns or second not in records.columns:
      continue
    mismatched = records[records[first].isna() != records[second].isna()]
    for record in mismatched.to_dict(orient="records"):
      filled = first if record[first] is not None else second
      notes.append(
        f"{spec.name}: row_id={record['row_id']} study_title={record['study_title']!r} "
        f"has {filled} without its paired column"
      )
  return notes


def run_field(records: pd.DataFrame, spec: FieldSpec, reference_dir: Path) -> Tuple[FieldOutput, Diagnostics]:
  log(f"run_field field={spec.name} records={len(records)} reference_dir={reference_dir}")
  reference = spec.load_reference(reference_dir)
  aliases = spec.load_aliases(reference_dir)
  matcher = build_matcher(spec, reference)
  columns = exploded_columns(spec, records)

  notes = paired_column_notes(records, spec)
  rows = []
  for entry in explode_records(records, spec.name, columns, require=spec.require, notes=notes):
    rows.append(entry_row(entry, standardize_entry(entry, spec, aliases, matcher), spec))

  ordered = long_table_columns(spec, reference, columns)
  table = pd.DataFrame(rows, columns=ordered)
  table = nulls_to_none(table, [column for column in ordered if column not in INTEGER_COLUMNS])
  table = table.astype({column: "Int64" for column in INTEGER_COLUMNS})

  missing_keys = table[RECORD_ID_COLUMNS[1]].isna()
  if missing_keys.any():
    raise ValueError(f"{spec.name}: {int(missing_keys.sum())} entries lack {RECORD_ID_COLUMNS[1]}")

  diagnostics = build_diagnostics(
    spec.name,
    table,
    spec.value_columns,
    reference,
    hierarchy=spec.hierarchy,
    notes=notes
  )
  log(f"run_field field={spec.name} entries={len(table)} matched={diagnostics.matched}")
  return FieldOutput(spec=spec, table=table, reference=reference, aliases=aliases), diagnostics
