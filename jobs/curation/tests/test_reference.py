"""Tests for curation.reference - reference tables and their consistency checks."""

import pandas as pd
import pytest

from curation.fields import FIELDS
from curation.reference import (
    ReferenceTable,
    attach_descriptions,
    derive_policy_classifications,
    load_reference_frame,
    merge_reference,
)
from curation.utils import DEFAULT_REFERENCE_DIR


GEOGRAPHY_KEY = ["country", "subnational_region", "subnational_region_type"]


class TestReferenceTable:
    def test_missing_column_raises(self):
        with pytest.raises(RuntimeError, match="missing columns"):
            ReferenceTable("species", pd.DataFrame({"focal_species": ["koala"]}), ["focal_species"], "standard_name")

    def test_lookup_with_null_key_parts(self, geography_reference):
        assert geography_reference.has_key(("European Union", None, "Supranational"))
        assert geography_reference.has_key(("France", None, None))
        assert not geography_reference.has_key(("France", "Bretagne", None))

    def test_lookup_returns_row(self, geography_reference):
        row = geography_reference.lookup(("Canada", "British Columbia", "Province"))
        assert row["continent"] == "North America"

    def test_first_row_wins_on_duplicate_key(self):
        frame = pd.DataFrame({"focal_species": ["koala", "koala"], "standard_name": ["Koala", "Koala bear"]})
        table = ReferenceTable("species", frame, ["focal_species"], "standard_name")
        assert table.lookup(("koala",))["standard_name"] == "Koala"
        assert len(table.key_conflicts()) == 2

    def test_exact_duplicate_rows_collapse(self):
        frame = pd.DataFrame({"focal_species": ["koala", "koala "], "standard_name": ["Koala", "Koala"]})
        table = ReferenceTable("species", frame, ["focal_species"], "standard_name")
        assert len(table) == 1
        assert table.key_conflicts().empty

    def test_values_skip_nulls(self, geography_reference):
        assert geography_reference.values("subnational_region") == {"California", "British Columbia"}

    def test_attribute_columns_exclude_key(self, geography_reference):
        assert geography_reference.attribute_columns == ["continent"]


class TestIncompleteEntries:
    def test_entry_with_missing_policy_type_flagged(self, policy_reference):
        incomplete = policy_reference.incomplete_entries()
        assert incomplete["original_name"].tolist() == ["Habitat Rule (2005)"]

    def test_no_required_columns_means_nothing_flagged(self):
        table = ReferenceTable("delivery", pd.DataFrame({"raw": ["a"], "std": [None]}), ["raw"], "std")
        assert table.incomplete_entries().empty


class TestHierarchyConflicts:
    def test_child_with_two_parents_reported(self):
        frame = pd.DataFrame(
            [
                ["United States of America", "Georgia", "State", "North America"],
                ["Georgia", "Georgia", "Country", "Asia"],
                ["Canada", "Ontario", "Province", "North America"],
            ],
            columns=GEOGRAPHY_KEY + ["continent"],
        )
        table = ReferenceTable("geography", frame, GEOGRAPHY_KEY, "country")
        conflicts = table.hierarchy_conflicts("subnational_region", "country")
        assert conflicts.columns.tolist() == ["child_column", "child_value", "parent_column", "parent_value"]
        assert conflicts["child_value"].tolist() == ["Georgia", "Georgia"]
        assert conflicts["parent_value"].tolist() == ["Georgia", "United States of America"]

    def test_consistent_hierarchy_is_clean(self, geography_reference):
        assert geography_reference.hierarchy_conflicts("subnational_region", "country").empty


class TestMergeReference:
    def test_curated_rows_replace_authoritative(self):
        authoritative = pd.DataFrame(
            [["United Kingdom", "England", "Country", "Europe"], ["France", None, None, "Europe"]],
            columns=GEOGRAPHY_KEY + ["continent"],
        )
        curated = pd.DataFrame(
            [["United Kingdom", "England", "Country", "Europe (UK)"], ["European Union", None, "Supranational", "Europe"]],
            columns=GEOGRAPHY_KEY + ["continent"],
        )
        merged = merge_reference(authoritative, curated, GEOGRAPHY_KEY)
        table = ReferenceTable("geography", merged, GEOGRAPHY_KEY, "country")
        assert len(merged) == 3
        assert table.lookup(("United Kingdom", "England", "Country"))["continent"] == "Europe (UK)"
        assert table.has_key(("European Union", None, "Supranational"))
        assert table.key_conflicts().empty


class TestDerivations:
    def test_policy_classifications(self):
        frame = pd.DataFrame(
            {
                "status": ["Active", "repealed", None],
                "policy_type": ["model rule", "Legislation", "pamphlet"],
                "jurisdiction_level": ["multi-jurisdiction", "national", None],
            }
        )
        out = derive_policy_classifications(frame)
        assert out["status_standardized"].tolist() == ["active", "inactive", None]
        assert out["policy_type_standardized"].tolist() == ["model_rule", "legislation", None]
        assert out["policy_type_notes"].iloc[2] is None
        assert out["jurisdiction_level_standardized"].tolist() == ["regional", "national", None]

    def test_attach_descriptions(self):
        frame = pd.DataFrame({"specific": ["bog"], "broad": ["Wetland"]})
        descriptions = pd.DataFrame({"broad": ["Wetland", "Forest"], "description": ["Wet", "Trees"]})
        out = attach_descriptions(frame, descriptions, on="broad")
        assert out["description"].tolist() == ["Wet"]


class TestBundledReferenceData:
    def test_load_reference_frame_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_reference_frame(tmp_path / "missing.csv")

    @pytest.mark.parametrize("field_name", list(FIELDS))
    def test_every_field_reference_loads(self, field_name):
        table = FIELDS[field_name].load_reference(DEFAULT_REFERENCE_DIR)
        assert len(table) > 0
        assert table.key_conflicts().empty

    @pytest.mark.parametrize("field_name", ["geography", "ecosystem", "permanence"])
    def test_declared_hierarchies_are_checked(self, field_name):
        assert FIELDS[field_name].hierarchy

    @pytest.mark.parametrize("field_name", ["ecosystem", "permanence"])
    def test_bundled_hierarchies_consistent(self, field_name):
        spec = FIELDS[field_name]
        table = spec.load_reference(DEFAULT_REFERENCE_DIR)
        for child, parent in spec.hierarchy:
            assert table.hierarchy_conflicts(child, parent).empty

    def test_geography_includes_curated_rows(self):
        table = FIELDS["geography"].load_reference(DEFAULT_REFERENCE_DIR)
        assert table.has_key(("European Union", None, "Supranational"))
        assert table.has_key(("United Kingdom", "England", "Constituent Country"))
        assert table.has_key(("France", None, None))

    def test_unmapped_species_row_kept_and_flagged(self):
        table = FIELDS["species"].load_reference(DEFAULT_REFERENCE_DIR)
        assert table.has_key(("threatened woodland birds",))
        assert "threatened woodland birds" in table.incomplete_entries()["focal_species"].tolist()
