"""Shared fixtures: the shipped catalog, a scripted registry, and an engine wired to both."""

import sys
import threading
import time
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from territory_engine.cache import ResolutionCache
from territory_engine.catalog import TerritoryCatalog
from territory_engine.config import Config
from territory_engine.engine import ResolutionEngine
from territory_engine.errors import RegistryError
from territory_engine.models import ServicePointRecord
from territory_engine.plans import PlanCatalogClient
from territory_engine.registry import InMemoryRegistry


def sp(esiid, address, territory, zip_code="75001", name=""):
    return ServicePointRecord(
        id=esiid, matched_address=address, territory_id=territory, territory_name=name or territory, zip=zip_code,
    )


REGISTRY_RECORDS = [
    # single meter, Oncor side of Addison
    sp("10443720000000001", "123 MAIN ST", "oncor"),
    # two meters, same utility
    sp("10400510000000002", "4500 BELT LINE RD", "tnmp"),
    sp("10400510000000003", "4500 BELT LINE RD", "tnmp"),
    # building straddling the boundary
    sp("10443720000000004", "200 BOUNDARY LN", "oncor"),
    sp("10400510000000005", "200 BOUNDARY LN", "tnmp"),
    sp("10400510000000006", "200 BOUNDARY LN", "tnmp"),
    # registry reports utilities by DUNS
    sp("10089010000000007", "100 LEAGUE CITY PKWY", "957877905", "77573", "CENTERPOINT ENERGY HOUSTON ELECTRIC"),
    # utility the catalog does not know about
    sp("10000000000000008", "9 UNKNOWN CT", "999999999", "75019", "SOME CO-OP"),
]


class ScriptedRegistry(InMemoryRegistry):
    """InMemoryRegistry that can fail its first N calls or stall each call."""

    def __init__(self, records=REGISTRY_RECORDS, fail_first: int = 0, always_fail: bool = False, delay: float = 0.0):
        super().__init__(records)
        self.fail_first = fail_first
        self.always_fail = always_fail
        self.delay = delay
        self._count_lock = threading.Lock()
        self._attempts = 0

    def search(self, address, zip_code):
        with self._count_lock:
            self._attempts += 1
            attempt = self._attempts
        if self.delay:
            time.sleep(self.delay)
        if self.always_fail or attempt <= self.fail_first:
            with self._lock:
                self.calls += 1
            raise RegistryError("simulated registry timeout")
        return super().search(address, zip_code)


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture(scope="session")
def catalog():
    return TerritoryCatalog.load(Config().catalog_file)


@pytest.fixture
def config():
    return Config(cache_db=":memory:", rate_limits_enabled=False, plans_api_url="")


@pytest.fixture
def registry():
    return ScriptedRegistry()


@pytest.fixture
def make_engine(catalog, config):
    engines = []

    def _make(registry=None, rate_limiter=None, cfg=None, cache=None):
        eng = ResolutionEngine(
            cfg or config,
            catalog=catalog,
            registry=registry or ScriptedRegistry(),
            cache=cache or ResolutionCache(":memory:"),
            rate_limiter=rate_limiter,
            plans=PlanCatalogClient(""),
        )
        engines.append(eng)
        return eng

    yield _make
    for eng in engines:
        eng.close()


@pytest.fixture
def engine(make_engine, registry):
    return make_engine(registry=registry)
