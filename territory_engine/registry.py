"""Service-point (ESIID) registry clients.

The registry maps a street address to the meters (ESIIDs) at that address and
the distribution utility that owns each one. Records report the utility by
DUNS number; the disambiguator maps that back to a catalog territory.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

import requests

from .address import normalize_address
from .errors import RegistryError
from .models import ServicePointRecord

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("esiid", "address", "zip_code", "tdsp_duns", "tdsp_name")


class ServicePointRegistry(ABC):
    @abstractmethod
    def search(self, address: str, zip_code: str) -> List[ServicePointRecord]:
        """Return service points matching a normalized address in a ZIP.

        Raises RegistryError on timeout, transport failure, or malformed data.
        """
        ...

    def health_check(self) -> bool:
        return True

    def close(self):
        pass


class ErcotRegistryClient(ServicePointRegistry):
    """HTTP client for the ERCOT ESIID lookup API. ~200-800ms per call."""

    DEFAULT_URL = "https://ercot.api.comparepower.com"
    USER_AGENT = "territory-resolver/1.0"

    def __init__(self, base_url: str = DEFAULT_URL, api_key: str = "", timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or self.DEFAULT_URL).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json", "User-Agent": self.USER_AGENT})
        if api_key:
            self.session.headers["X-API-Key"] = api_key

    def search(self, address: str, zip_code: str) -> List[ServicePointRecord]:
        url = f"{self.base_url}/api/esiids"
        try:
            t0 = time.time()
            resp = self.session.get(url, params={"address": address, "zip_code": zip_code}, timeout=self.timeout)
            elapsed_ms = int((time.time() - t0) * 1000)
            resp.raise_for_status()
            data = resp.json()
        except requests.Timeout as e:
            raise RegistryError(f"ESIID search timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise RegistryError(f"ESIID search failed: {e}") from e
        except ValueError as e:
            raise RegistryError(f"ESIID search returned invalid JSON: {e}") from e

        if not isinstance(data, list):
            raise RegistryError("ESIID search returned a non-array response")

        records = []
        for item in data:
            record = self._parse_record(item)
            if record is None:
                logger.warning(f"ESIID search: skipping malformed record {str(item)[:120]}")
                continue
            records.append(record)
        logger.debug(f"ESIID search: '{address}' {zip_code} -> {len(records)} records ({elapsed_ms}ms)")
        return records

    def health_check(self) -> bool:
        try:
            resp = self.session.get(f"{self.base_url}/health", timeout=min(self.timeout, 5))
            return resp.ok
        except requests.RequestException as e:
            logger.warning(f"ESIID registry health check failed: {e}")
            return False

    def close(self):
        self.session.close()

    @staticmethod
    def _parse_record(item) -> Optional[ServicePointRecord]:
        if not isinstance(item, dict):
            return None
        if not all(isinstance(item.get(k), str) and item.get(k).strip() for k in _REQUIRED_FIELDS):
            return None
        city = item.get("city")
        return ServicePointRecord(
            id=item["esiid"].strip(),
            matched_address=" ".join(item["address"].split()),
            territory_id=item["tdsp_duns"].strip(),
            territory_name=item["tdsp_name"].strip(),
            city=city.strip() if isinstance(city, str) else "",
            zip=item["zip_code"].strip(),
        )


class InMemoryRegistry(ServicePointRegistry):
    """Registry backed by a fixed record list. Matches on ZIP and street line."""

    def __init__(self, records: Iterable[ServicePointRecord] = ()):
        self._records = list(records)
        self._lock = threading.Lock()
        self.calls = 0

    @staticmethod
    def _street(address: str) -> str:
        return normalize_address(address).split(",")[0].lower()

    def search(self, address: str, zip_code: str) -> List[ServicePointRecord]:
        with self._lock:
            self.calls += 1
        street = self._street(address)
        return [r for r in self._records if r.zip == zip_code and self._street(r.matched_address) == street]
