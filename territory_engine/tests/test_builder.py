"""Catalog builder: city parsing, assignment order, tiering, and ZIP index construction."""

import json
import logging

import pytest

from territory_engine.builder import CatalogBuilder, load_sources, write_catalog
from territory_engine.catalog import TerritoryCatalog
from territory_engine.config import Config


@pytest.fixture(scope="module")
def sources():
    return load_sources(Config().source_dir)


@pytest.fixture
def builder(sources):
    return CatalogBuilder(sources["territories"], sources["municipal_utilities"], sources["tiers"])


def test_parse_city_lines_skips_malformed(builder, caplog):
    lines = [
        "### North Texas",
        "Some prose about the list.",
        "- Dallas",
        "- ",
        "- Add more cities here: see the ERCOT list",
        "- 12345",
        "- " + "A" * 60,
        "* Houston",
    ]
    with caplog.at_level(logging.WARNING, logger="territory_engine.builder"):
        names = builder.parse_city_lines(lines)
    assert names == ["Dallas", "Houston"]
    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 4


def test_known_city_assignment(builder):
    m = builder.assign_city("dallas-tx")
    assert m.territory_id == "oncor"
    assert m.method == "known_city"
    assert m.tier == 1
    assert m.priority == 0.8


def test_municipal_exclusion(builder):
    m = builder.assign_city("austin-tx")
    assert m.excluded
    assert m.territory_id is None
    assert m.priority == 0.0


def test_known_list_beats_municipal(sources):
    municipal = sources["municipal_utilities"] + [{"key": "x", "name": "X", "cities": ["Dallas"]}]
    builder = CatalogBuilder(sources["territories"], municipal, sources["tiers"])
    assert builder.assign_city("dallas-tx").territory_id == "oncor"


def test_keyword_assignment(builder):
    m = builder.assign_city("rio-grande-city-tx")
    assert m.territory_id == "aep_central"
    assert m.method == "keyword"


@pytest.mark.parametrize("slug,territory", [
    ("brenham-tx", "centerpoint"),
    ("nacogdoches-tx", "oncor"),
    ("weatherford-tx", "aep_central"),
    ("7-oaks-tx", "oncor"),
])
def test_alphabetic_fallback(builder, slug, territory):
    m = builder.assign_city(slug)
    assert m.territory_id == territory
    assert m.method == "alphabetic"


def test_tier_priorities(builder):
    assert builder.assign_city("houston-tx").priority == 0.9
    assert builder.assign_city("mckinney-tx").priority == 0.64
    assert builder.assign_city("azle-tx").priority == 0.48
    assert builder.assign_city("lubbock-tx").priority == 0.6


def test_build_keeps_split_zips_out_of_direct_index(builder, sources):
    catalog = builder.build(sources["city_lines"], sources["zip_cities"], sources["split_zips"])
    assert "75001" in catalog["split_zips"]
    assert "75001" not in catalog["zip_index"]
    assert not set(catalog["zip_index"]) & set(catalog["split_zips"])
    assert catalog["municipal_zips"]["78701"] == "austin_energy"
    assert "78701" not in catalog["zip_index"]


def test_build_drops_invalid_entries(builder):
    zip_cities = {"75201": "Dallas", "7520A": "Dallas", "75202": ""}
    split_zips = {
        "75001": {"candidates": ["oncor", "tnmp"]},
        "75019": {"candidates": ["oncor"]},
        "75034": {"candidates": ["oncor", "mystery"]},
    }
    catalog = builder.build(["- Dallas"], zip_cities, split_zips, version="test")
    assert catalog["zip_index"] == {"75201": "oncor"}
    assert list(catalog["split_zips"]) == ["75001"]
    assert catalog["version"] == "test"


def test_build_matches_shipped_catalog(builder, sources):
    built = builder.build(sources["city_lines"], sources["zip_cities"], sources["split_zips"])
    with open(Config().catalog_file) as f:
        shipped = json.load(f)
    for key in ("zip_index", "zip_cities", "split_zips", "municipal_zips", "cities"):
        assert built[key] == shipped[key], key


def test_written_catalog_loads(builder, sources, tmp_path):
    catalog = builder.build(sources["city_lines"], sources["zip_cities"], sources["split_zips"], version="t1")
    path = tmp_path / "catalog.json"
    write_catalog(catalog, path)
    loaded = TerritoryCatalog.load(path)
    assert loaded.version == "t1"
    assert loaded.zip_index.direct_count == len(catalog["zip_index"])
