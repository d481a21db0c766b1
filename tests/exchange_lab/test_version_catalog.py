# === NAVMAP v1 ===
# {
#   "module": "tests.exchange_lab.test_version_catalog",
#   "purpose": "Covers catalog ordering, resolution, latest-per-line lookup, and catalog loading.",
#   "sections": [
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Covers catalog ordering, resolution, latest-per-line lookup, and catalog loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from ExchangeLab.CumulativeUpdate.catalog import (
    UNAVAILABLE,
    LookupStatus,
    VersionCatalog,
    catalog_from_config,
    load_catalog,
    load_default_catalog,
    product_line_for,
)
from ExchangeLab.errors import CatalogError, DetectionUnavailable
from ExchangeLab.settings import build_resolved_config


def test_resolve_is_stable_for_every_key(sample_catalog):
    for key in sample_catalog.keys():
        assert sample_catalog.resolve(key) == sample_catalog.resolve(key)


def test_resolve_returns_sentinel_for_unknown_and_retracted(sample_catalog):
    assert sample_catalog.resolve("2013_CU9") == UNAVAILABLE
    assert sample_catalog.resolve("2019_CU1") == UNAVAILABLE
    assert sample_catalog.resolve("2013_CU18").endswith("/Exchange2013-x64-cu18.exe")


def test_lookup_distinguishes_unknown_from_retracted(sample_catalog):
    assert sample_catalog.lookup("2013_CU9").status is LookupStatus.RETRACTED
    assert sample_catalog.lookup("2019_CU1").status is LookupStatus.UNKNOWN
    found = sample_catalog.lookup("2016_CU6")
    assert found.available
    assert found.locator == sample_catalog.resolve("2016_CU6")


def test_latest_for_line_ignores_availability(sample_catalog):
    assert sample_catalog.latest_for_line("2016") == "2016_CU7"
    assert sample_catalog.latest_for_line("2013") == "2013_CU18"


def test_latest_for_line_uses_definition_order_not_numbers():
    catalog = VersionCatalog(
        [
            ("2016_CU9", "https://example.com/a/cu9.exe"),
            ("2016_CU10", "https://example.com/a/cu10.exe"),
            ("2016_CU2a", "https://example.com/a/cu2a.exe"),
        ]
    )
    assert catalog.latest_for_line("2016") == "2016_CU2a"


def test_latest_for_line_requires_full_prefix(sample_catalog):
    assert sample_catalog.latest_for_line("201") == UNAVAILABLE
    assert sample_catalog.latest_for_line("2019") == UNAVAILABLE


def test_entries_and_product_lines_keep_order(sample_catalog):
    assert sample_catalog.product_lines() == ["2013", "2016"]
    assert [entry.key for entry in sample_catalog.entries_for_line("2016")] == ["2016_CU6", "2016_CU7"]
    assert len(sample_catalog) == 4
    assert "2013_CU18" in sample_catalog


@pytest.mark.parametrize(
    "entries, message",
    [
        ([("2016_CU1", "N/A"), ("2016_CU1", "N/A")], "Duplicate"),
        ([("CU1", "N/A")], "malformed key"),
        ([("2016_CU1", "ftp://example.com/cu1.exe")], "absolute http"),
        ([("2016_CU1", "cu1.exe")], "absolute http"),
    ],
)
def test_invalid_catalogs_are_rejected(entries, message):
    with pytest.raises(CatalogError, match=message):
        VersionCatalog(entries)


def test_packaged_catalog_loads_in_order():
    catalog = load_default_catalog()
    assert catalog.product_lines() == ["2013", "2016"]
    assert catalog.resolve("2013_CU9") == UNAVAILABLE
    assert catalog.latest_for_line("2013") == "2013_CU23"
    assert catalog.latest_for_line("2016") == "2016_CU23"


def test_packaged_catalog_ships_no_download_locations():
    catalog = load_default_catalog()
    assert len(catalog) == 46
    assert all(catalog.resolve(key) == UNAVAILABLE for key in catalog.keys())
    assert catalog.lookup("2013_CU23").status is LookupStatus.RETRACTED


def test_load_catalog_from_yaml(tmp_path: Path):
    path = tmp_path / "catalog.yaml"
    path.write_text(
        "entries:\n"
        "  - key: 2016_CU22\n"
        "    locator: https://example.com/ExchangeServer2016-x64-cu22.iso\n"
        "  - key: 2016_CU23\n"
        "    locator: N/A\n",
        encoding="utf-8",
    )
    catalog = load_catalog(path)
    assert catalog.keys() == ["2016_CU22", "2016_CU23"]
    assert catalog.latest_for_line("2016") == "2016_CU23"


def test_load_catalog_rejects_schema_violations(tmp_path: Path):
    path = tmp_path / "catalog.yaml"
    path.write_text("entries:\n  - key: 2016_CU22\n", encoding="utf-8")
    with pytest.raises(CatalogError, match="locator"):
        load_catalog(path)


def test_load_catalog_missing_file(tmp_path: Path):
    with pytest.raises(CatalogError, match="not found"):
        load_catalog(tmp_path / "missing.yaml")


def test_catalog_from_config_prefers_embedded_section():
    config = build_resolved_config(
        {"catalog": [{"key": "2013_CU23", "locator": "https://example.com/cu23.exe"}]}
    )
    assert catalog_from_config(config).keys() == ["2013_CU23"]
    assert len(catalog_from_config(build_resolved_config({}))) == len(load_default_catalog())


def test_product_line_mapping():
    assert product_line_for(15, 0) == "2013"
    assert product_line_for(15, 1) == "2016"
    with pytest.raises(DetectionUnavailable):
        product_line_for(15, 2)


def test_about_reports_latest_per_line():
    from ExchangeLab import about

    info = about()
    assert info["product_lines"] == {"15.0": "2013", "15.1": "2016"}
    assert info["catalog"] == {"2013": "2013_CU23", "2016": "2016_CU23"}
