"""Configuration for the territory resolution engine."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union


_ROOT = Path(__file__).parent.parent


@dataclass
class Config:
    # Data files
    catalog_file: Path = _ROOT / "data" / "territory_catalog.json"
    source_dir: Path = _ROOT / "data" / "source"

    # Cache (":memory:" keeps it process-local)
    cache_db: Union[Path, str] = _ROOT / "data" / "resolution_cache.db"
    direct_ttl_s: int = 1800        # stable direct mappings
    address_ttl_s: int = 3600       # registry-resolved addresses
    split_ttl_s: int = 300          # split-ZIP intermediate results
    heuristic_ttl_s: int = 300
    warm_cache_limit: int = 50      # top-priority cities preloaded at startup; 0 disables

    # Service-point registry (ESIID)
    registry_url: str = "https://ercot.api.comparepower.com"
    registry_api_key: str = ""
    registry_timeout_s: float = 10.0
    registry_max_retries: int = 1

    # Plan catalog (advisory plan counts only)
    plans_api_url: str = "https://pricing.api.comparepower.com"
    plans_timeout_s: float = 5.0

    # Rate limits: (max requests, window seconds)
    rate_limits_enabled: bool = True
    rate_limits: dict = field(default_factory=lambda: {
        "zip": (100, 60),
        "address": (50, 60),
        "burst": (20, 10),
    })

    # HTTP Cache-Control max-age per response kind
    cache_max_age: dict = field(default_factory=lambda: {
        "zip": 300,
        "address": 1800,
        "non_deregulated": 86400,
    })

    @classmethod
    def from_env(cls) -> "Config":
        """Build a Config with environment overrides applied."""
        config = cls()
        env = os.environ
        if env.get("CATALOG_FILE"):
            config.catalog_file = Path(env["CATALOG_FILE"])
        if env.get("CACHE_DB"):
            config.cache_db = env["CACHE_DB"] if env["CACHE_DB"] == ":memory:" else Path(env["CACHE_DB"])
        if env.get("ERCOT_API_URL"):
            config.registry_url = env["ERCOT_API_URL"].rstrip("/")
        if env.get("ERCOT_API_KEY"):
            config.registry_api_key = env["ERCOT_API_KEY"]
        if "COMPAREPOWER_API_URL" in env:
            config.plans_api_url = env["COMPAREPOWER_API_URL"].rstrip("/")
        if env.get("RATE_LIMITS_ENABLED"):
            config.rate_limits_enabled = env["RATE_LIMITS_ENABLED"].lower() in ("1", "true", "yes")
        if env.get("WARM_CACHE_LIMIT"):
            config.warm_cache_limit = int(env["WARM_CACHE_LIMIT"])
        return config
