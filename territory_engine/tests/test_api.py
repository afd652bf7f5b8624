"""HTTP contracts served by api.py."""

import pytest
from fastapi.testclient import TestClient

import api
from territory_engine.rate_limiter import RateLimiter

from .conftest import FakeClock


@pytest.fixture
def client(engine):
    api.engine = engine
    yield TestClient(api.app)
    api.engine = None


@pytest.fixture
def limited_client(make_engine):
    api.engine = make_engine(
        rate_limiter=RateLimiter({"zip": (100, 60), "address": (2, 60)}, clock=FakeClock())
    )
    yield TestClient(api.app)
    api.engine = None


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["engine_loaded"]
    assert body["catalog_version"]
    assert body["registry_ok"] is True


def test_engine_not_loaded():
    api.engine = None
    resp = TestClient(api.app).get("/api/zip-lookup", params={"zip": "75201"})
    assert resp.status_code == 503


def test_zip_lookup_direct(client):
    resp = client.get("/api/zip-lookup", params={"zip": "75201"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"]
    assert body["zipCode"] == "75201"
    assert body["territoryId"] == "oncor"
    assert body["citySlug"] == "dallas-tx"
    assert body["redirectPath"] == "/electricity-plans/dallas-tx/"
    assert resp.headers["cache-control"] == "public, max-age=300"


def test_zip_lookup_invalid(client):
    resp = client.get("/api/zip-lookup", params={"zip": "90210"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["errorType"] == "validation"
    assert resp.headers["cache-control"] == "no-cache"


def test_zip_lookup_missing_param(client):
    resp = client.get("/api/zip-lookup")
    assert resp.status_code == 400
    assert resp.json()["errorType"] == "validation"


def test_zip_lookup_municipal(client):
    resp = client.get("/api/zip-lookup", params={"zip": "78701"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["errorType"] == "non_deregulated"
    assert body["utilityName"] == "Austin Energy"
    assert body["redirectPath"] == "/electricity-plans/austin-tx/municipal-utility/"


def test_zip_lookup_not_found(client):
    resp = client.get("/api/zip-lookup", params={"zip": "79901"})
    assert resp.status_code == 404
    assert resp.json()["errorType"] == "not_found"


def test_navigate(client):
    resp = client.post("/api/zip/navigate", json={"zipCode": "77001", "validatePlansAvailable": True})
    assert resp.status_code == 200
    body = resp.json()
    assert body["redirectPath"] == "/electricity-plans/houston-tx/"
    assert body["territoryName"] == "CenterPoint Energy Houston Electric"
    assert "planCount" in body
    assert "validationTimeMs" in body


def test_search_plans_split_zip_needs_address(client):
    resp = client.post("/api/search-plans", json={"zipCode": "75001"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert body["errorType"] == "address_required"
    assert body["splitZipInfo"]["isMultiTdsp"]


def test_search_plans_with_address(client):
    resp = client.post("/api/search-plans", json={"zipCode": "75001", "address": "123 Main St", "usageKwh": 1000})
    body = resp.json()
    assert body["success"]
    assert body["searchMethod"] == "split_zip_resolved"
    assert body["territoryInfo"]["territoryId"] == "oncor"


def test_lookup_esiid_single_match(client):
    resp = client.post("/api/lookup-esiid", json={"address": "123 Main St", "zipCode": "75001"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"]
    assert body["resolution"]["method"] == "address_lookup"
    assert body["resolution"]["confidence"] == "high"
    assert body["resolution"]["territory"]["id"] == "oncor"
    assert body["resolution"]["normalizedAddress"] == "123 Main Street"
    assert resp.headers["cache-control"] == "public, max-age=1800"


def test_lookup_esiid_ambiguous(client):
    resp = client.post("/api/lookup-esiid", json={"address": "200 Boundary Ln", "zipCode": "75001"})
    assert resp.status_code == 409
    body = resp.json()
    assert body["errorType"] == "ambiguous"
    assert len(body["candidateTerritories"]) == 2


def test_lookup_esiid_short_address(client):
    resp = client.post("/api/lookup-esiid", json={"address": "12", "zipCode": "75001"})
    assert resp.status_code == 400


def test_rate_limit_returns_429(limited_client):
    payload = {"address": "123 Main St", "zipCode": "75001"}
    first = limited_client.post("/api/lookup-esiid", json=payload)
    assert first.status_code == 200
    assert first.headers["x-ratelimit-remaining"] == "1"
    limited_client.post("/api/lookup-esiid", json=payload)

    resp = limited_client.post("/api/lookup-esiid", json=payload)
    assert resp.status_code == 429
    assert int(resp.headers["retry-after"]) > 0
    body = resp.json()
    assert body["errorType"] == "rate_limited"
    assert body["retryAfter"] > 0

    # ZIP-only lookups use their own bucket
    assert limited_client.get("/api/zip-lookup", params={"zip": "75201"}).status_code == 200


def test_lookup_esiid_on_direct_zip_normalizes_address(client):
    resp = client.post("/api/lookup-esiid", json={"address": "1500 marilla st", "zipCode": "75201"})
    assert resp.status_code == 200
    resolution = resp.json()["resolution"]
    assert resolution["territory"]["id"] == "oncor"
    assert resolution["normalizedAddress"] == "1500 Marilla Street"


def test_startup_warms_cache(monkeypatch):
    monkeypatch.setenv("CACHE_DB", ":memory:")
    monkeypatch.setenv("WARM_CACHE_LIMIT", "2")
    monkeypatch.setenv("COMPAREPOWER_API_URL", "")
    with TestClient(api.app):
        assert api.engine is not None
        assert api.engine.cache.size > 0
    assert api.engine is None
