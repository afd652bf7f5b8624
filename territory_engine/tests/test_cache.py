"""Resolution cache TTLs and in-flight request collapsing."""

import threading
import time

import pytest

from territory_engine.cache import InFlightRequests, ResolutionCache, cache_key
from territory_engine.models import CandidateTerritory, Confidence, ResolutionMethod, ResolutionResult

from .conftest import FakeClock


def _result(zip_code="75201"):
    return ResolutionResult(
        method=ResolutionMethod.SPLIT_ZIP_CANDIDATE,
        confidence=Confidence.LOW,
        source_zip=zip_code,
        requires_address=True,
        candidate_territories=(CandidateTerritory("oncor", "Oncor Electric Delivery", "North"),
                               CandidateTerritory("tnmp", "Texas-New Mexico Power Company", "North")),
        city_slug="addison-tx",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    c = ResolutionCache(":memory:", clock=clock)
    yield c
    c.close()


def test_cache_key():
    assert cache_key("75001") == "75001"
    assert cache_key("75001", "123 Main Street") == "75001|123 main street"


def test_put_then_get_returns_equal_result(cache):
    result = _result()
    cache.put("75001", result, ttl_seconds=300)
    assert cache.get("75001") == result


def test_entries_expire(cache, clock):
    cache.put("75001", _result(), ttl_seconds=300)
    clock.advance(299)
    assert cache.get("75001") is not None
    clock.advance(2)
    assert cache.get("75001") is None


def test_invalidate_and_clear_expired(cache, clock):
    cache.put("a", _result(), ttl_seconds=10)
    cache.put("b", _result(), ttl_seconds=1000)
    cache.invalidate("b")
    assert cache.get("b") is None
    clock.advance(20)
    assert cache.clear_expired() == 1
    assert cache.size == 0


def test_file_backed_cache(tmp_path):
    path = tmp_path / "sub" / "cache.db"
    cache = ResolutionCache(path)
    cache.put("75201", _result(), ttl_seconds=60)
    cache.close()
    reopened = ResolutionCache(path)
    assert reopened.get("75201") is not None
    reopened.close()


def _run_concurrently(n, target):
    threads = [threading.Thread(target=target) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)


def test_in_flight_collapses_duplicates():
    in_flight = InFlightRequests(wait_timeout=5)
    calls = []
    results = []
    lock = threading.Lock()

    def work():
        with lock:
            calls.append(1)
        time.sleep(0.3)
        return _result()

    def caller():
        r = in_flight.run("75001|123 main street", work)
        with lock:
            results.append(r)

    _run_concurrently(6, caller)
    assert len(calls) == 1
    assert len(results) == 6
    assert all(r == results[0] for r in results)
    assert len(in_flight) == 0


def test_in_flight_shares_leader_exception():
    in_flight = InFlightRequests(wait_timeout=5)
    errors = []
    lock = threading.Lock()

    def work():
        time.sleep(0.3)
        raise RuntimeError("registry exploded")

    def caller():
        try:
            in_flight.run("k", work)
        except RuntimeError as e:
            with lock:
                errors.append(e)

    _run_concurrently(4, caller)
    assert len(errors) == 4
    assert len(in_flight) == 0


def test_expired_rows_are_swept_on_write(clock):
    cache = ResolutionCache(":memory:", clock=clock, sweep_every=10)
    for i in range(100):
        cache.put(f"75001|{i} main street", _result(), ttl_seconds=10)
        clock.advance(1)
    assert cache.size <= 20
    cache.close()
