"""Matching of resolved values against reference tables.

Every entry produces exactly one MatchResult. Unmatched entries keep their
resolved values, carry no attributes and name the issue that stopped them.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from curation.reference import ReferenceTable


TIER_FULL = "full"
TIER_COUNTRY = "country"
TIER_CONTINENT = "continent"
TIER_EXACT = "exact"
TIER_NONE = "none"

ISSUE_BAD_COUNTRY = "bad_country"
ISSUE_BAD_REGION = "bad_region"
ISSUE_BAD_TYPE = "bad_type"
ISSUE_ONLY_COUNTRY = "only_country"
ISSUE_CONTINENT_ONLY = "continent_only"
ISSUE_COMPLETELY_UNKNOWN = "completely_unknown"
ISSUE_UNMAPPED = "unmapped_value"
ISSUE_UNSTANDARDIZED = "unstandardized_reference"

GEOGRAPHY_COLUMNS = ["country", "subnational_region", "subnational_region_type", "continent"]


@dataclass
class MatchResult:
  values: Dict[str, Optional[str]]
  tier: str
  issue_type: Optional[str] = None
  attributes: Dict[str, Optional[str]] = field(default_factory=dict)
  imputed: List[str] = field(default_factory=list)

  @property
  def matched(self) -> bool:
    return self.tier != TIER_NONE


class StrictMatcher:
  """Single-tier exact match on the reference key."""

  def __init__(self, reference: ReferenceTable, key_columns: List[str]):
    if len(key_columns) != len(reference.key_columns):
      raise RuntimeError(
        f"{reference.name}: {len(key_columns)} key columns given for a {len(reference.key_columns)}-column key"
      )
    self.reference = reference
    self.key_columns = key_columns

  def match(self, values: Dict[str, Optional[str]]) -> MatchResult:
    key = tuple(values.get(column) for column in self.key_columns)
    attributes = {column: None for column in self.reference.attribute_columns}
    row = self.reference.lookup(key)
    if row is None:
      return MatchResult(dict(values), TIER_NONE, ISSUE_UNMAPPED, attributes)
    if row.get(self.reference.standardized_column) is None:
      return MatchResult(dict(values), TIER_NONE, ISSUE_UNSTANDARDIZED, attributes)
    attributes = {column: row.get(column) for column in self.reference.attribute_columns}
    return MatchResult(dict(values), TIER_EXACT, None, attributes)


class GeographyMatcher:
  """Tiered matcher for (country, subnational region, region type, continent).

  Missing region types (and continents) are imputed from the reference before
  matching. Tiers are tried in order: full key, country only, continent only.
  A country-only entry whose continent contradicts the reference is not
  matched (``only_country``).
  """

  def __init__(self, reference: ReferenceTable):
    if reference.key_columns != GEOGRAPHY_COLUMNS[:3]:
      raise RuntimeError(f"{reference.name}: geography reference must be keyed on {GEOGRAPHY_COLUMNS[:3]}")
    self.reference = reference
    self.countries = reference.values("country")
    self.regions = reference.values("subnational_region")
    self.continents = reference.values("continent")
    self._by_region: Dict[Tuple[str, str], Dict[str, Optional[str]]] = {}
    self._by_country: Dict[str, Dict[str, Optional[str]]] = {}
    self._continents_by_country: Dict[str, Set[str]] = {}
    for row in reference.frame.to_dict(orient="records"):
      country = row.get("country")
      region = row.get("subnational_region")
      if country is None:
        continue
      if region is not None:
        self._by_region.setdefault((country, region), row)
      if row.get("continent") is not None:
        self._continents_by_country.setdefault(country, set()).add(row["continent"])
        # a row without region wins over region rows for imputation
        current = self._by_country.get(country)
        if current is None or (region is None and current.get("subnational_region") is not None):
          self._by_country[country] = row

  def impute(self, values: Dict[str, Optional[str]]) -> Tuple[Dict[str, Optional[str]], List[str]]:
    out = {column: values.get(column) for column in GEOGRAPHY_COLUMNS}
    imputed: List[str] = []
    country = out["country"]
    region = out["subnational_region"]
    source = None
    if country is not None and region is not None:
      source = self._by_region.get((country, region))
      if source is not None and out["subnational_region_type"] is None and source.get("subnational_region_type") is not None:
        out["subnational_region_type"] = source["subnational_region_type"]
        imputed.append("subnational_region_type")
    if out["continent"] is None and country is not None:
      source = source or self._by_country.get(country)
      if source is not None and source.get("continent") is not None:
        out["continent"] = source["continent"]
        imputed.append("continent")
    return out, imputed

  def continent_agrees(self, country: str, continent: Optional[str]) -> bool:
    known = self._continents_by_country.get(country)
    return continent is None or not known or continent in known

  def classify_issue(self, values: Dict[str, Optional[str]]) -> str:
    country = values.get("country")
    region = values.get("subnational_region")
    region_type = values.get("subnational_region_type")
    if country is not None and country not in self.countries:
      return ISSUE_BAD_COUNTRY
    if region is not None and region not in self.regions:
      return ISSUE_BAD_REGION
    if region is not None or region_type is not None:
      return ISSUE_BAD_TYPE
    if country is not None:
      return ISSUE_ONLY_COUNTRY
    if values.get("continent") is not None:
      return ISSUE_CONTINENT_ONLY
    return ISSUE_COMPLETELY_UNKNOWN

  def match(self, values: Dict[str, Optional[str]]) -> MatchResult:
    resolved, imputed = self.impute(values)
    country = resolved["country"]
    region = resolved["subnational_region"]
    region_type = resolved["subnational_region_type"]
    attributes: Dict[str, Optional[str]] = {}

    if country is not None and (region is not None or region_type is not None):
      if self.reference.has_key((country, region, region_type)):
        return MatchResult(resolved, TIER_FULL, None, attributes, imputed)
    elif country is not None:
      if country in self.countries and self.continent_agrees(country, resolved["continent"]):
        return MatchResult(resolved, TIER_COUNTRY, None, attributes, imputed)
    elif region is None and region_type is None and resolved["continent"] in self.continents:
      return MatchResult(resolved, TIER_CONTINENT, None, attributes, imputed)

    return MatchResult(resolved, TIER_NONE, self.classify_issue(resolved), {}, imputed)
