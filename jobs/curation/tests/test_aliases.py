"""Tests for curation.aliases - canonical spelling rewrites."""

import pytest

from curation.aliases import AliasMap, alias_columns, alias_map_from_frame, load_alias_map
from curation.fields import FIELDS
from curation.utils import DEFAULT_REFERENCE_DIR


@pytest.fixture
def countries():
    return AliasMap([("USA", "United States of America"), ("UK", "United Kingdom")], name="country_aliases")


class TestAliasMap:
    def test_resolves_known_alias(self, countries):
        assert countries.resolve("USA") == "United States of America"

    def test_unknown_values_pass_through(self, countries):
        assert countries.resolve("France") == "France"
        assert countries.resolve(None) is None

    def test_matching_is_case_sensitive(self, countries):
        assert countries.resolve("usa") == "usa"

    def test_resolve_is_idempotent(self, countries):
        for value in ["USA", "UK", "France", "United States of America", None]:
            once = countries.resolve(value)
            assert countries.resolve(once) == once

    def test_duplicate_key_rejected(self):
        with pytest.raises(RuntimeError, match="duplicate alias key"):
            AliasMap([("USA", "United States of America"), ("USA", "America")])

    def test_chained_alias_rejected(self):
        with pytest.raises(RuntimeError, match="points at another alias"):
            AliasMap([("US", "USA"), ("USA", "United States of America")])

    def test_incomplete_row_rejected(self):
        with pytest.raises(RuntimeError, match="both a raw and a standard value"):
            AliasMap([("Americas", "")])

    def test_merged_with_overrides_existing(self, countries):
        merged = countries.merged_with({"UK": "Great Britain", "Viet Nam": "Vietnam"})
        assert merged.resolve("UK") == "Great Britain"
        assert merged.resolve("Viet Nam") == "Vietnam"
        assert countries.resolve("UK") == "United Kingdom"
        assert len(merged) == 3

    def test_to_frame_sorted_by_raw(self, countries):
        df = countries.to_frame("raw_country", "standard_country")
        assert df.columns.tolist() == ["raw_country", "standard_country"]
        assert df["raw_country"].tolist() == ["UK", "USA"]

    def test_frame_round_trip(self, countries):
        rebuilt = alias_map_from_frame(countries.to_frame(), name="copy")
        assert dict(rebuilt.items()) == dict(countries.items())


class TestAliasFiles:
    def test_load_bundled_country_aliases(self):
        countries = load_alias_map(DEFAULT_REFERENCE_DIR / "country_aliases.csv")
        assert countries.resolve("USA") == "United States of America"
        assert "UK" in countries

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_alias_map(tmp_path / "missing.csv")

    def test_header_only_file_is_empty(self):
        assert len(load_alias_map(DEFAULT_REFERENCE_DIR / "policy_aliases.csv")) == 0

    def test_alias_columns(self):
        assert alias_columns(DEFAULT_REFERENCE_DIR / "region_aliases.csv") == (
            "raw_subnational_region",
            "standard_subnational_region",
        )

    @pytest.mark.parametrize("field_name", list(FIELDS))
    def test_bundled_alias_tables_are_valid(self, field_name):
        aliases = FIELDS[field_name].load_aliases(DEFAULT_REFERENCE_DIR)
        assert set(aliases) == set(FIELDS[field_name].aliases)
