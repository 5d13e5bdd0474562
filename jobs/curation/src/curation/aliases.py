from pathlib import Path
from typing import Dict, Iterable, Iterator, Mapping, Optional, Tuple

import pandas as pd

from curation.utils import normalize_raw_value


def log(message: str) -> None:
  print(f"[curation.aliases] {message}", flush=True)


class AliasMap:
  """Exact, case-sensitive rewrite of known spelling variants to canonical values.

  Values without an alias pass through unchanged. Keys are unique and no
  canonical value may itself be rewritten, so resolving twice equals
  resolving once.
  """

  def __init__(self, pairs: Iterable[Tuple[str, str]] = (), name: str = "alias"):
    self.name = name
    self._mapping: Dict[str, str] = {}
    for raw, standard in pairs:
      raw_clean = normalize_raw_value(raw)
      standard_clean = normalize_raw_value(standard)
      if raw_clean is None or standard_clean is None:
        raise RuntimeError(f"{name}: alias rows need both a raw and a standard value (got {raw!r} -> {standard!r})")
      if raw_clean in self._mapping:
        raise RuntimeError(f"{name}: duplicate alias key {raw_clean!r}")
      self._mapping[raw_clean] = standard_clean
    self._check_chains()

  def _check_chains(self) -> None:
    for raw, standard in self._mapping.items():
      target = self._mapping.get(standard)
      if target is not None and target != standard:
        raise RuntimeError(
          f"{self.name}: alias {raw!r} -> {standard!r} points at another alias ({standard!r} -> {target!r})"
        )

  def __len__(self) -> int:
    return len(self._mapping)

  def __contains__(self, value: object) -> bool:
    return value in self._mapping

  def __iter__(self) -> Iterator[str]:
    return iter(self._mapping)

  def items(self):
    return self._mapping.items()

  def resolve(self, value: Optional[str]) -> Optional[str]:
    if value is None:
      return None
    return self._mapping.get(value, value)

  def merged_with(self, overrides: Mapping[str, str]) -> "AliasMap":
    """Return a new map where ``overrides`` replace existing keys."""
    combined = dict(self._mapping)
    combined.update(overrides)
    return AliasMap(combined.items(), name=self.name)

  def to_frame(self, raw_column: str = "raw_value", standard_column: str = "standard_value") -> pd.DataFrame:
    rows = sorted(self._mapping.items(), key=lambda item: item[0])
    return pd.DataFrame(rows, columns=[raw_column, standard_column])


def alias_map_from_frame(df: pd.DataFrame, name: str) -> AliasMap:
  if df.shape[1] < 2:
    raise RuntimeError(f"{name}: alias table needs two columns, found {list(df.columns)}")
  raw_column, standard_column = df.columns[0], df.columns[1]
  return AliasMap(zip(df[raw_column].tolist(), df[standard_column].tolist()), name=name)


def load_alias_map(path: Path) -> AliasMap:
  if not path.is_file():
    raise FileNotFoundError(f"Alias table not found: {path}")
  df = pd.read_csv(path, dtype=str, keep_default_na=False)
  alias_map = alias_map_from_frame(df, name=path.stem)
  log(f"load_alias_map name={path.stem} entries={len(alias_map)}")
  return alias_map


def alias_columns(path: Path) -> Tuple[str, str]:
  header = pd.read_csv(path, dtype=str, nrows=0).columns.tolist()
  if len(header) < 2:
    raise RuntimeError(f"Alias table {path} needs two columns")
  return header[0], header[1]
