"""Field exploder: split ``;``-delimited cells into one entry per value.

Several columns can be exploded together ("lockstep"): token ``i`` of every
column lands in the same entry. When the columns disagree on the number of
tokens the shorter ones are padded with nulls and a data-quality note is
recorded.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional

import pandas as pd

from curation.utils import normalize_raw_value


DELIMITER_PATTERN = re.compile(r";\s*")
RAW_PREFIX = "raw_"


@dataclass
class ExplodedEntry:
  field_name: str
  row_id: int
  study_id: Optional[str]
  study_title: Optional[str]
  position: int
  values: Dict[str, Optional[str]] = field(default_factory=dict)

  @property
  def raw_value(self) -> Optional[str]:
    """Value of the first exploded column."""
    for value in self.values.values():
      return value
    return None


def split_tokens(value: Any) -> List[Optional[str]]:
  """Split a cell into stripped tokens, keeping blank positions as None.

  Missing-value markers only empty a whole cell; inside a list a token such
  as ``NA`` is an ordinary value and goes on to matching.
  """
  text = normalize_raw_value(value)
  if text is None:
    return []
  return [token.strip() or None for token in DELIMITER_PATTERN.split(text)]


def explode_record(
  record: Mapping[str, Any],
  field_name: str,
  columns: List[str],
  require: Optional[str] = None,
  notes: Optional[List[str]] = None
) -> Iterator[ExplodedEntry]:
  tokens = {column: split_tokens(record[column]) for column in columns}
  lengths = {column: len(values) for column, values in tokens.items()}
  width = max(lengths.values()) if lengths else 0
  if notes is not None and len(columns) > 1:
    filled = {column: n for column, n in lengths.items() if n > 0}
    if len(set(filled.values())) > 1:
      detail = ", ".join(f"{column}={n}" for column, n in filled.items())
      notes.append(
        f"{field_name}: row_id={record['row_id']} study_title={record.get('study_title')!r} "
        f"has mismatched value counts ({detail}); shorter columns padded with nulls"
      )

  for index in range(width):
    values = {
      column: tokens[column][index] if index < lengths[column] else None
      for column in columns
    }
    if all(value is None for value in values.values()):
      continue
    if require is not None and values.get(require) is None:
      continue
    yield ExplodedEntry(
      field_name=field_name,
      row_id=int(record["row_id"]),
      study_id=record.get("study_id"),
      study_title=record.get("study_title"),
      position=index + 1,
      values=values
    )


def explode_records(
  records: pd.DataFrame,
  field_name: str,
  columns: List[str],
  require: Optional[str] = None,
  notes: Optional[List[str]] = None
) -> Iterator[ExplodedEntry]:
  missing = [column for column in columns if column not in records.columns]
  if missing:
    raise ValueError(f"{field_name}: source table is missing columns {missing}")
  for record in records.to_dict(orient="records"):
    yield from explode_record(record, field_name, columns, require=require, notes=notes)

