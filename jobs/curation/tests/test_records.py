"""Tests for curation.records - loading the coded-study table."""

import pandas as pd
import pytest

from curation.records import (
    dedupe_headers,
    load_records_file,
    load_records_from_storage,
    prepare_records,
    read_table_bytes,
    resolve_source_key,
)
from curation.utils import upload_bytes


class TestPrepareRecords:
    def test_headers_are_snake_case(self, records):
        assert "study_title" in records.columns
        assert "offset_category_general" in records.columns
        assert "year_of_policy_adoption" in records.columns

    def test_id_columns_come_first(self, records):
        assert list(records.columns[:3]) == ["study_id", "study_title", "row_id"]

    def test_row_ids_are_one_based(self, records):
        assert records["row_id"].tolist() == [1, 2, 3]
        assert str(records["row_id"].dtype) == "Int64"

    def test_missing_tokens_become_none(self, records):
        assert records.loc[0, "continent"] is None
        assert records.loc[1, "continent"] == "Europe"

    def test_all_empty_rows_dropped(self):
        df = pd.DataFrame({"Study Title": ["A", "", "B"], "Country": ["France", "NA", ""]})
        out = prepare_records(df)
        assert out["study_title"].tolist() == ["A", "B"]
        assert out["row_id"].tolist() == [1, 2]
        assert out["study_id"].tolist() == [None, None]

    def test_duplicate_titles_raise(self):
        df = pd.DataFrame({"Study Title": ["A", "A"], "Country": ["France", "Spain"]})
        with pytest.raises(ValueError, match="Duplicate"):
            prepare_records(df)

    def test_missing_title_raises(self):
        df = pd.DataFrame({"Study Title": ["A", None], "Country": ["France", "Spain"]})
        with pytest.raises(ValueError, match="without study_title"):
            prepare_records(df)

    def test_missing_title_column_raises(self):
        with pytest.raises(ValueError, match="no study_title column"):
            prepare_records(pd.DataFrame({"Country": ["France"]}))


class TestDedupeHeaders:
    def test_repeated_headers_get_suffix(self):
        assert dedupe_headers(["Country", "country", "Notes"]) == ["country", "country_2", "notes"]

    def test_blank_header_named(self):
        assert dedupe_headers([""]) == ["column"]


class TestReadTable:
    def test_reads_csv_as_text(self):
        df = read_table_bytes(b"study_title,publication_year\nA,2019\n", "dataset.csv")
        assert df["publication_year"].tolist() == ["2019"]

    def test_reads_xlsx(self, tmp_path):
        path = tmp_path / "dataset.xlsx"
        pd.DataFrame({"Study Title": ["A"], "Country": ["France"]}).to_excel(path, index=False)
        out = load_records_file(path)
        assert out["country"].tolist() == ["France"]

    def test_unsupported_format_raises(self):
        with pytest.raises(RuntimeError, match="Unsupported"):
            read_table_bytes(b"", "dataset.json")

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_records_file(tmp_path / "missing.csv")


class TestStorageSource:
    def test_resolves_versioned_key(self, local_storage):
        upload_bytes(local_storage, "__local__", "raw/v1/dataset.csv", b"study_title\nA\n", "text/csv")
        key = resolve_source_key(local_storage, "__local__", "v1")
        assert key == "raw/v1/dataset.csv"
        out = load_records_from_storage(local_storage, "__local__", key)
        assert out["study_title"].tolist() == ["A"]

    def test_missing_version_raises(self, local_storage):
        with pytest.raises(FileNotFoundError):
            resolve_source_key(local_storage, "__local__", "v404")
