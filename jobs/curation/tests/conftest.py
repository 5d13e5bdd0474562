"""Shared fixtures for the curation job tests."""

import pandas as pd
import pytest

from curation.reference import ReferenceTable, derive_policy_classifications
from curation.records import prepare_records
from curation.utils import build_s3_client


@pytest.fixture
def geography_reference():
    frame = pd.DataFrame(
        [
            ["United States of America", None, None, "North America"],
            ["United States of America", "California", "State", "North America"],
            ["Canada", None, None, "North America"],
            ["Canada", "British Columbia", "Province", "North America"],
            ["France", None, None, "Europe"],
            ["European Union", None, "Supranational", "Europe"],
        ],
        columns=["country", "subnational_region", "subnational_region_type", "continent"],
    )
    return ReferenceTable(
        name="geography",
        frame=frame,
        key_columns=["country", "subnational_region", "subnational_region_type"],
        standardized_column="country",
        required_columns=["country", "continent"],
    )


@pytest.fixture
def policy_frame():
    frame = pd.DataFrame(
        [
            {
                "original_name": "Clean Water Act (1972)",
                "standardized_name": "US Clean Water Act",
                "policy_type": "legislation",
                "jurisdiction_level": "national",
                "jurisdiction_location": "USA",
                "status": "active",
                "year_adopted": "1972",
                "description": "Federal water quality law.",
            },
            {
                "original_name": "Habitat Rule (2005)",
                "standardized_name": "Habitat Rule",
                "policy_type": None,
                "jurisdiction_level": "subnational",
                "jurisdiction_location": "Victoria",
                "status": "repealed",
                "year_adopted": "2005",
                "description": "Never referenced by any study.",
            },
        ]
    )
    return derive_policy_classifications(frame)


@pytest.fixture
def policy_reference(policy_frame):
    return ReferenceTable(
        name="offset_policy_lookup",
        frame=policy_frame,
        key_columns=["original_name"],
        standardized_column="standardized_name",
        required_columns=["standardized_name", "policy_type", "jurisdiction_level", "status", "year_adopted"],
    )


@pytest.fixture
def records():
    raw = pd.DataFrame(
        [
            {
                "Study ID": "S1",
                "Study Title": "Wetland offsets in California",
                "Publication Year": "2019",
                "Evidence Type": "Peer-reviewed",
                "Offset Category General": "Biodiversity",
                "Continent": "",
                "Country": "USA; Canada",
                "Subnational Region": "California; British Colombia",
                "Subnational Region Type": "",
                "Policy Legal Instrument Name": "Clean Water Act (1972); Invented Act (2099)",
                "Year of Policy Adoption": "1972; 2099",
                "Policy Jurisdiction": "USA",
            },
            {
                "Study ID": "S2",
                "Study Title": "French biodiversity offsets",
                "Publication Year": "2021",
                "Evidence Type": "Grey literature",
                "Offset Category General": "Biodiversity",
                "Continent": "Europe",
                "Country": "France",
                "Subnational Region": "",
                "Subnational Region Type": "",
                "Policy Legal Instrument Name": "Invented Act (2099)",
                "Year of Policy Adoption": "2099",
                "Policy Jurisdiction": "",
            },
            {
                "Study ID": "S3",
                "Study Title": "Offsets on the lost continent",
                "Publication Year": "2021",
                "Evidence Type": "Peer-reviewed",
                "Offset Category General": "Carbon",
                "Continent": "",
                "Country": "Atlantis",
                "Subnational Region": "Nowhere",
                "Subnational Region Type": "Province",
                "Policy Legal Instrument Name": "Invented Act (2099); Invented Act (2099)",
                "Year of Policy Adoption": "",
                "Policy Jurisdiction": "",
            },
        ]
    )
    return prepare_records(raw)


@pytest.fixture
def local_storage(monkeypatch, tmp_path):
    root = tmp_path / "storage"
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(root))
    monkeypatch.delenv("R2_BUCKET", raising=False)
    return build_s3_client()


POLICY_COLUMNS = [
    "original_name",
    "standardized_name",
    "policy_type",
    "jurisdiction_level",
    "jurisdiction_location",
    "status",
    "year_adopted",
    "description",
]


@pytest.fixture
def policy_dir(tmp_path, policy_frame):
    ref_dir = tmp_path / "reference"
    ref_dir.mkdir()
    policy_frame[POLICY_COLUMNS].to_csv(ref_dir / "offset_policy_lookup.csv", index=False)
    (ref_dir / "policy_aliases.csv").write_text(
        "raw_policy_legal_instrument_name,standard_policy_legal_instrument_name\n", encoding="utf-8"
    )
    return ref_dir
