"""Tests for curation.export - writing field outputs to storage and reading them back."""

import json
from pathlib import Path

import pandas as pd
import pytest

from curation.export import collapse_by_record, export_field, read_long_table, triage_sheet
from curation.fields import FIELDS
from curation.pipeline import run_field
from curation.utils import DEFAULT_REFERENCE_DIR, download_bytes


def stored_keys(client, prefix):
    root = Path(client["root"])
    return sorted(path.relative_to(root).as_posix() for path in (root / prefix).rglob("*") if path.is_file())


@pytest.fixture
def geography(records):
    return run_field(records, FIELDS["geography"], DEFAULT_REFERENCE_DIR)


class TestExportField:
    def test_long_table_round_trip(self, local_storage, geography):
        output, diagnostics = geography
        export_field(local_storage, "__local__", "curated/v1", output, diagnostics)
        raw = download_bytes(local_storage, "__local__", "curated/v1/geography/standardized_long.csv")
        restored = read_long_table(raw)
        pd.testing.assert_frame_equal(restored, output.table)

    def test_writes_every_output(self, local_storage, geography):
        output, diagnostics = geography
        result = export_field(local_storage, "__local__", "curated/v1", output, diagnostics)
        keys = stored_keys(local_storage, "curated/v1")
        for name in [
            "standardized_long",
            "unmatched",
            "unmatched_counts",
            "incomplete_reference",
            "key_conflicts",
            "hierarchy_conflicts",
            "records_lost",
            "triage",
            "collapsed",
        ]:
            assert f"curated/v1/geography/{name}.csv" in keys
        assert "curated/v1/reference/geography.csv" in keys
        assert "curated/v1/reference/country_aliases.csv" in keys
        assert result["manifest"] == "curated/v1/geography/manifest.json"

    def test_manifest_contents(self, local_storage, geography):
        output, diagnostics = geography
        export_field(local_storage, "__local__", "curated/v1", output, diagnostics)
        manifest = json.loads(download_bytes(local_storage, "__local__", "curated/v1/geography/manifest.json"))
        assert manifest["field"] == "geography"
        assert manifest["diagnostics"]["entries"] == 4
        assert manifest["files"]["standardized_long"]["rows"] == 4
        assert len(manifest["files"]["standardized_long"]["sha256"]) == 64
        assert manifest["reference_sha256"] == output.reference.content_hash()

    def test_rerun_overwrites(self, local_storage, geography):
        output, diagnostics = geography
        export_field(local_storage, "__local__", "curated/v1", output, diagnostics)
        smaller = output.table.iloc[:2].copy()
        output.table = smaller
        export_field(local_storage, "__local__", "curated/v1", output, diagnostics)
        raw = download_bytes(local_storage, "__local__", "curated/v1/geography/standardized_long.csv")
        assert len(read_long_table(raw)) == 2


class TestTriageSheet:
    def test_lists_bad_country_for_alias_curation(self, geography):
        output, diagnostics = geography
        sheet = triage_sheet(output, diagnostics)
        assert sheet["raw_value"].tolist() == ["Atlantis"]
        assert sheet["column"].tolist() == ["country"]
        assert sheet["standard_value"].tolist() == [None]
        assert sheet["approved"].tolist() == [0]

    def test_strict_field_counts(self, records, policy_dir):
        output, diagnostics = run_field(records, FIELDS["policy"], policy_dir)
        sheet = triage_sheet(output, diagnostics)
        assert sheet["raw_value"].tolist() == ["Invented Act (2099)"]
        assert sheet["count"].tolist() == [4]


class TestCollapseByRecord:
    def test_one_row_per_record_with_matches(self, geography):
        output = geography[0]
        collapsed = collapse_by_record(output.table, ["country", "continent"])
        assert collapsed["row_id"].tolist() == [1, 2]
        assert collapsed.loc[0, "country"] == "United States of America; Canada"
        assert collapsed.loc[0, "continent"] == "North America"
        assert collapsed.loc[1, "country"] == "France"
