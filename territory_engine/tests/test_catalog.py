"""Catalog loading, ZIP index lookups, and slug helpers."""

import json

import pytest

from territory_engine.catalog import (
    DirectHit,
    NotFound,
    SplitHit,
    TerritoryCatalog,
    ZipIndex,
    city_redirect_path,
    format_city_name,
    slugify_city,
)
from territory_engine.config import Config
from territory_engine.errors import CatalogError
from territory_engine.models import SplitZipEntry


@pytest.mark.parametrize("name,slug", [
    ("Dallas", "dallas-tx"),
    ("Fort Worth", "fort-worth-tx"),
    ("  The   Colony ", "the-colony-tx"),
    ("O'Donnell", "odonnell-tx"),
    ("St. Hedwig", "st-hedwig-tx"),
    ("Winchester -- Bay", "winchester-bay-tx"),
    ("", ""),
])
def test_slugify_city(name, slug):
    assert slugify_city(name) == slug


def test_slugify_is_deterministic():
    assert slugify_city("Corpus Christi") == slugify_city("Corpus Christi")


def test_format_city_name():
    assert format_city_name("fort-worth-tx") == "Fort Worth, TX"
    assert format_city_name("dallas-tx") == "Dallas, TX"


def test_city_redirect_path():
    assert city_redirect_path("dallas-tx") == "/electricity-plans/dallas-tx/"


def test_catalog_loads(catalog):
    stats = catalog.stats()
    assert stats["territories"] == 6
    assert stats["direct_zips"] > 300
    assert stats["split_zips"] >= 10
    assert stats["municipal_zips"] > 0


def test_direct_hit(catalog):
    assert catalog.zip_index.resolve_direct("75201") == DirectHit("oncor")
    assert catalog.zip_index.resolve_direct("77001") == DirectHit("centerpoint")
    assert catalog.zip_index.resolve_direct("79410") == DirectHit("lubbock")


def test_split_hit(catalog):
    hit = catalog.zip_index.resolve_direct("75001")
    assert isinstance(hit, SplitHit)
    assert set(hit.candidate_ids) == {"oncor", "tnmp"}


def test_unknown_zip_is_not_found(catalog):
    # The index does not validate; it simply has no entry
    assert isinstance(catalog.zip_index.resolve_direct("90210"), NotFound)


def test_no_zip_in_both_direct_and_split(catalog):
    raw = json.loads(Config().catalog_file.read_text())
    for zip_code in raw["zip_index"]:
        assert catalog.split_entry(zip_code) is None, zip_code


def test_every_split_zip_has_two_known_candidates(catalog):
    for zip_code in ["75001", "75019", "76020", "77494", "77573"]:
        entry = catalog.split_entry(zip_code)
        assert len(entry.candidate_territory_ids) >= 2
        assert all(catalog.territory(t) for t in entry.candidate_territory_ids)


def test_municipal_zip_lookup(catalog):
    assert catalog.municipal_utility_for_zip("78701")["name"] == "Austin Energy"
    assert catalog.municipal_utility_for_zip("78205")["name"] == "CPS Energy"
    assert catalog.municipal_utility_for_zip("75201") is None


def test_territory_by_duns(catalog):
    assert catalog.territory_by_duns("1039940674000").id == "oncor"
    assert catalog.territory_by_duns("957877905").id == "centerpoint"
    assert catalog.territory_by_duns("000") is None


def test_cities_by_priority_excludes_municipal(catalog):
    ranked = catalog.cities_by_priority()
    assert ranked[0].city_slug == "houston-tx"
    assert all(not c.excluded for c in ranked)
    assert "austin-tx" not in {c.city_slug for c in ranked}


def test_zip_index_rejects_overlap():
    split = SplitZipEntry("75001", ("oncor", "tnmp"))
    with pytest.raises(CatalogError):
        ZipIndex({"75001": "oncor"}, {"75001": split})


def test_split_with_single_candidate_rejected():
    data = {
        "territories": [{"id": "oncor", "name": "Oncor"}],
        "split_zips": {"75001": {"candidates": ["oncor"]}},
    }
    with pytest.raises(CatalogError):
        TerritoryCatalog.from_dict(data)


def test_zip_index_unknown_territory_rejected():
    data = {"territories": [{"id": "oncor", "name": "Oncor"}], "zip_index": {"75201": "nope"}}
    with pytest.raises(CatalogError):
        TerritoryCatalog.from_dict(data)


def test_missing_catalog_file(tmp_path):
    with pytest.raises(CatalogError):
        TerritoryCatalog.load(tmp_path / "missing.json")


def test_corrupt_catalog_file(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text("{not json")
    with pytest.raises(CatalogError):
        TerritoryCatalog.load(path)


def test_catalog_file_is_versioned(catalog):
    from territory_engine.config import Config

    with open(Config().catalog_file) as f:
        raw = json.load(f)
    assert raw["version"] == catalog.version
    assert raw["generated_at"]
