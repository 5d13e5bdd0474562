"""Per-field configuration of the standardization pipeline.

Each FieldSpec says which source columns to explode, which alias tables to
apply, which reference table to match against and how the results are named
in the combined table. Reference loaders take the reference directory so a
curated copy can be swapped in with ``--reference_dir``.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from curation.aliases import AliasMap, load_alias_map
from curation.matching import GEOGRAPHY_COLUMNS
from curation.reference import (
  ReferenceTable,
  attach_descriptions,
  derive_policy_classifications,
  load_reference_frame,
  merge_reference
)
from curation.utils import is_missing_cell, nulls_to_none


MATCH_STRICT = "strict"
MATCH_GEOGRAPHY = "geography"


@dataclass
class FieldSpec:
  name: str
  columns: List[str]
  reference_loader: Callable[[Path], ReferenceTable]
  key_columns: List[str]
  matcher: str = MATCH_STRICT
  require: Optional[str] = None
  optional_columns: List[str] = field(default_factory=list)
  aliases: Dict[str, str] = field(default_factory=dict)
  normalizer: Optional[Callable[[str], str]] = None
  paired_columns: List[Tuple[str, str]] = field(default_factory=list)
  hierarchy: List[Tuple[str, str]] = field(default_factory=list)
  published: Dict[str, str] = field(default_factory=dict)

  @property
  def raw_column(self) -> str:
    return self.columns[0]

  @property
  def value_columns(self) -> List[str]:
    """Resolved columns that identify a failing value in diagnostics."""
    if self.matcher == MATCH_GEOGRAPHY:
      return list(GEOGRAPHY_COLUMNS)
    return list(self.key_columns)

  @property
  def resolved_columns(self) -> List[str]:
    if self.matcher == MATCH_GEOGRAPHY:
      return list(GEOGRAPHY_COLUMNS)
    return self.columns + [column for column in self.optional_columns if column not in self.columns]

  def load_reference(self, reference_dir: Path) -> ReferenceTable:
    return self.reference_loader(reference_dir)

  def load_aliases(self, reference_dir: Path) -> Dict[str, AliasMap]:
    return {column: load_alias_map(reference_dir / filename) for column, filename in self.aliases.items()}


def lowercase(value: str) -> str:
  return value.lower()


def load_geography_reference(reference_dir: Path) -> ReferenceTable:
  authoritative = load_reference_frame(reference_dir / "geography_admin1.csv")
  curated = load_reference_frame(reference_dir / "geography_custom.csv")
  key = GEOGRAPHY_COLUMNS[:3]
  return ReferenceTable(
    name="geography",
    frame=merge_reference(authoritative, curated, key),
    key_columns=key,
    standardized_column="country",
    required_columns=["country", "continent"]
  )


def load_species_reference(reference_dir: Path) -> ReferenceTable:
  return ReferenceTable(
    name="focal_species_lookup",
    frame=load_reference_frame(reference_dir / "focal_species_lookup.csv"),
    key_columns=["focal_species"],
    standardized_column="standard_scientific_name",
    required_columns=["standard_common_name", "standard_scientific_name", "taxonomic_group"]
  )


def load_ecosystem_reference(reference_dir: Path) -> ReferenceTable:
  frame = attach_descriptions(
    load_reference_frame(reference_dir / "ecosystem_lookup.csv"),
    load_reference_frame(reference_dir / "ecosystem_broad_descriptions.csv"),
    on="broad_ecosystem"
  )
  return ReferenceTable(
    name="ecosystem_lookup",
    frame=frame,
    key_columns=["ecosystem_type_specific"],
    standardized_column="broad_ecosystem",
    required_columns=["broad_ecosystem", "description"]
  )


def load_project_reference(reference_dir: Path) -> ReferenceTable:
  frame = load_reference_frame(reference_dir / "project_intervention_lookup.csv")
  frame["project_type_specific"] = [
    lowercase(value) if not is_missing_cell(value) else None for value in frame["project_type_specific"]
  ]
  frame = nulls_to_none(frame, ["project_type_specific"])
  frame = attach_descriptions(
    frame,
    load_reference_frame(reference_dir / "intervention_descriptions.csv"),
    on="intervention_type"
  )
  return ReferenceTable(
    name="project_intervention_lookup",
    frame=frame,
    key_columns=["project_type_specific"],
    standardized_column="intervention_type",
    required_columns=["intervention_type", "description"]
  )


def load_delivery_reference(reference_dir: Path) -> ReferenceTable:
  return ReferenceTable(
    name="delivery_type_lookup",
    frame=load_reference_frame(reference_dir / "delivery_type_lookup.csv"),
    key_columns=["raw_delivery_type"],
    standardized_column="standardized_delivery_type",
    required_columns=["standardized_delivery_type"]
  )


def load_program_reference(reference_dir: Path) -> ReferenceTable:
  return ReferenceTable(
    name="offset_program_lookup",
    frame=load_reference_frame(reference_dir / "offset_program_lookup.csv"),
    key_columns=["original_name"],
    standardized_column="standardized_name",
    required_columns=["standardized_name", "program_type", "mechanism_type", "status", "scope_level", "scope_location"]
  )


def load_policy_reference(reference_dir: Path) -> ReferenceTable:
  frame = derive_policy_classifications(load_reference_frame(reference_dir / "offset_policy_lookup.csv"))
  return ReferenceTable(
    name="offset_policy_lookup",
    frame=frame,
    key_columns=["original_name"],
    standardized_column="standardized_name",
    required_columns=[
      "standardized_name",
      "policy_type",
      "jurisdiction_level",
      "jurisdiction_location",
      "status",
      "year_adopted",
      "description"
    ]
  )


def load_permanence_reference(reference_dir: Path) -> ReferenceTable:
  return ReferenceTable(
    name="permanence_risk_typology",
    frame=load_reference_frame(reference_dir / "permanence_risk_typology.csv"),
    key_columns=["sub_risk"],
    standardized_column="specific",
    required_columns=["broad", "specific"]
  )


FIELDS: "OrderedDict[str, FieldSpec]" = OrderedDict()


def register(spec: FieldSpec) -> FieldSpec:
  if spec.name in FIELDS:
    raise RuntimeError(f"Duplicate field spec: {spec.name}")
  FIELDS[spec.name] = spec
  return spec


register(FieldSpec(
  name="geography",
  columns=["country", "subnational_region", "subnational_region_type"],
  optional_columns=["continent"],
  reference_loader=load_geography_reference,
  key_columns=GEOGRAPHY_COLUMNS[:3],
  matcher=MATCH_GEOGRAPHY,
  aliases={
    "country": "country_aliases.csv",
    "subnational_region": "region_aliases.csv",
    "continent": "continent_aliases.csv"
  },
  hierarchy=[("subnational_region", "country")],
  published={
    "country": "country",
    "subnational_region": "subnational_region",
    "subnational_region_type": "subnational_region_type",
    "continent": "continent"
  }
))

register(FieldSpec(
  name="species",
  columns=["focal_species"],
  reference_loader=load_species_reference,
  key_columns=["focal_species"],
  aliases={"focal_species": "species_aliases.csv"},
  published={
    "standard_common_name": "species_common_name",
    "standard_scientific_name": "species_scientific_name",
    "taxonomic_group": "species_taxonomic_group"
  }
))

register(FieldSpec(
  name="ecosystem",
  columns=["ecosystem_type_specific"],
  reference_loader=load_ecosystem_reference,
  key_columns=["ecosystem_type_specific"],
  aliases={"ecosystem_type_specific": "ecosystem_aliases.csv"},
  hierarchy=[("ecosystem_type_specific", "broad_ecosystem")],
  published={
    "ecosystem_type_specific": "ecosystem_type",
    "broad_ecosystem": "ecosystem_broad_type"
  }
))

register(FieldSpec(
  name="project",
  columns=["project_type_specific"],
  reference_loader=load_project_reference,
  key_columns=["project_type_specific"],
  aliases={"project_type_specific": "project_type_aliases.csv"},
  normalizer=lowercase,
  paired_columns=[("project_type_broad", "project_type_specific")],
  published={
    "project_type_specific": "project_type",
    "intervention_type": "project_intervention_type"
  }
))

register(FieldSpec(
  name="delivery",
  columns=["offset_delivery_type"],
  reference_loader=load_delivery_reference,
  key_columns=["offset_delivery_type"],
  aliases={"offset_delivery_type": "delivery_type_aliases.csv"},
  published={"standardized_delivery_type": "delivery_type"}
))

register(FieldSpec(
  name="program",
  columns=["offset_program_name"],
  reference_loader=load_program_reference,
  key_columns=["offset_program_name"],
  aliases={"offset_program_name": "program_aliases.csv"},
  published={
    "standardized_name": "program_name",
    "program_type": "program_type",
    "status": "program_status",
    "mechanism_type": "program_mechanism_type",
    "scope_level": "program_scope_level",
    "scope_location": "program_scope_location",
    "related_program": "program_related"
  }
))

register(FieldSpec(
  name="policy",
  columns=["policy_legal_instrument_name", "year_of_policy_adoption", "policy_jurisdiction"],
  require="policy_legal_instrument_name",
  reference_loader=load_policy_reference,
  key_columns=["policy_legal_instrument_name"],
  aliases={"policy_legal_instrument_name": "policy_aliases.csv"},
  published={
    "standardized_name": "policy_name",
    "policy_type_standardized": "policy_type",
    "policy_type_notes": "policy_note",
    "jurisdiction_level_standardized": "policy_jurisdiction_level",
    "jurisdiction_level_notes": "policy_jurisdiction_note",
    "jurisdiction_location": "policy_jurisdiction_location",
    "status_standardized": "policy_status",
    "year_adopted": "policy_year_adopted",
    "description": "policy_description"
  }
))

register(FieldSpec(
  name="permanence",
  columns=["permanence_risk_subcategory"],
  reference_loader=load_permanence_reference,
  key_columns=["permanence_risk_subcategory"],
  aliases={"permanence_risk_subcategory": "permanence_risk_aliases.csv"},
  hierarchy=[("sub_risk", "specific"), ("specific", "broad")],
  published={
    "broad": "permanence_risk_domain",
    "specific": "permanence_risk_category",
    "permanence_risk_subcategory": "permanence_risk_type"
  }
))


def resolve_fields(names: Optional[List[str]] = None) -> List[FieldSpec]:
  if not names or names == ["all"]:
    return list(FIELDS.values())
  unknown = [name for name in names if name not in FIELDS]
  if unknown:
    raise RuntimeError(f"Unknown fields {unknown}; choose from {list(FIELDS)}")
  return [FIELDS[name] for name in names]
