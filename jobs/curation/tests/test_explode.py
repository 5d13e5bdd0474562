"""Tests for curation.explode - splitting multi-valued cells into entries."""

import pytest

from curation.explode import explode_record, explode_records, split_tokens


def make_record(**values):
    record = {"row_id": 1, "study_id": "S1", "study_title": "T1"}
    record.update(values)
    return record


class TestSplitTokens:
    def test_splits_on_semicolon(self):
        assert split_tokens("France; Germany ;Spain") == ["France", "Germany", "Spain"]

    def test_missing_cell_has_no_tokens(self):
        assert split_tokens(None) == []
        assert split_tokens("NA") == []
        assert split_tokens("  ") == []

    def test_blank_positions_kept_as_none(self):
        assert split_tokens("a;; b") == ["a", None, "b"]

    def test_missing_markers_inside_a_list_are_values(self):
        assert split_tokens("France; NA") == ["France", "NA"]
        assert split_tokens("none; n/a") == ["none", "n/a"]


class TestExplodeRecord:
    def test_one_entry_per_token(self):
        record = make_record(country="France;  Germany; Spain")
        entries = list(explode_record(record, "geography", ["country"]))
        assert len(entries) == 3
        assert [entry.position for entry in entries] == [1, 2, 3]
        assert "; ".join(entry.raw_value for entry in entries) == "France; Germany; Spain"

    def test_entries_carry_record_identity(self):
        entry = next(explode_record(make_record(country="France"), "geography", ["country"]))
        assert (entry.row_id, entry.study_id, entry.study_title) == (1, "S1", "T1")
        assert entry.field_name == "geography"

    def test_empty_cell_yields_nothing(self):
        assert list(explode_record(make_record(country=None), "geography", ["country"])) == []

    def test_missing_marker_token_still_yields_an_entry(self):
        entries = list(explode_record(make_record(country="France; NA"), "geography", ["country"]))
        assert [entry.values for entry in entries] == [{"country": "France"}, {"country": "NA"}]

    def test_lockstep_columns_share_positions(self):
        record = make_record(country="USA; Canada", subnational_region="California; Quebec")
        entries = list(explode_record(record, "geography", ["country", "subnational_region"]))
        assert [entry.values for entry in entries] == [
            {"country": "USA", "subnational_region": "California"},
            {"country": "Canada", "subnational_region": "Quebec"},
        ]

    def test_mismatched_counts_padded_and_noted(self):
        notes = []
        record = make_record(country="USA; Canada", subnational_region="California")
        entries = list(explode_record(record, "geography", ["country", "subnational_region"], notes=notes))
        assert len(entries) == 2
        assert entries[1].values == {"country": "Canada", "subnational_region": None}
        assert len(notes) == 1
        assert "mismatched value counts" in notes[0]
        assert "row_id=1" in notes[0]

    def test_empty_companion_column_is_not_a_mismatch(self):
        notes = []
        record = make_record(country="USA; Canada", subnational_region=None)
        entries = list(explode_record(record, "geography", ["country", "subnational_region"], notes=notes))
        assert len(entries) == 2
        assert notes == []

    def test_required_column_filters_entries(self):
        record = make_record(name="Act A;; Act C", year="2000; 2001; 2002")
        entries = list(explode_record(record, "policy", ["name", "year"], require="name"))
        assert [entry.values["name"] for entry in entries] == ["Act A", "Act C"]
        assert [entry.position for entry in entries] == [1, 3]


class TestExplodeRecords:
    def test_counts_entries_across_records(self, records):
        entries = list(explode_records(records, "geography", ["country"]))
        assert len(entries) == 4
        assert [entry.row_id for entry in entries] == [1, 1, 2, 3]

    def test_missing_column_raises(self, records):
        with pytest.raises(ValueError, match="missing columns"):
            list(explode_records(records, "species", ["focal_species"]))
