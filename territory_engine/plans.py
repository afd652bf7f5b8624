"""Plan-count lookup against the retail plan catalog API.

Counts are advisory: they decorate navigation responses and never decide a
territory. Any failure is logged and reported as ``None``.
"""

import logging
from typing import Optional

import requests

from .models import Territory

logger = logging.getLogger(__name__)

# Filters the plan API accepts as query parameters
PLAN_FILTERS = ("term", "percent_green", "is_pre_pay", "is_time_of_use", "requires_auto_pay", "brand_id")


class PlanCatalogClient:
    def __init__(self, base_url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def count_plans(self, territory: Territory, usage_kwh: int = 1000, filters: Optional[dict] = None) -> Optional[int]:
        if not self.enabled or not territory.duns:
            return None
        params = {"group": "default", "tdsp_duns": territory.duns, "display_usage": str(usage_kwh)}
        for key, value in (filters or {}).items():
            if key in PLAN_FILTERS and value is not None:
                params[key] = str(value).lower() if isinstance(value, bool) else str(value)
        try:
            resp = self.session.get(f"{self.base_url}/api/plans/current", params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Plan count unavailable for {territory.name}: {e}")
            return None
        if not isinstance(data, list):
            logger.warning(f"Plan API returned unexpected payload for {territory.name}")
            return None
        return len(data)

    def close(self):
        self.session.close()
