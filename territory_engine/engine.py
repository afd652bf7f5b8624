"""Main ResolutionEngine. Orchestrates validation, catalog lookup, address disambiguation and caching."""

import logging
import time
from typing import Optional, Union

from .address import parse_address, validate_zip
from .cache import InFlightRequests, ResolutionCache, cache_key
from .catalog import (
    DirectHit,
    SplitHit,
    TerritoryCatalog,
    city_redirect_path,
    format_city_name,
    municipal_redirect_path,
)
from .config import Config
from .disambiguator import AddressDisambiguator
from .errors import AmbiguousAddressError, NotFoundError, ValidationError
from .heuristics import alphabetic_territory, keyword_territory, region_city_for_zip
from .models import (
    Address,
    Confidence,
    NonDeregulatedOutcome,
    ResolutionMethod,
    ResolutionResult,
)
from .plans import PlanCatalogClient
from .rate_limiter import RateLimitDecision, RateLimiter
from .registry import ErcotRegistryClient, ServicePointRegistry

logger = logging.getLogger(__name__)

Outcome = Union[ResolutionResult, NonDeregulatedOutcome]

MIN_USAGE_KWH = 100
MAX_USAGE_KWH = 5000


class ResolutionEngine:
    """
    Texas utility-territory resolution engine.

    Takes a ZIP code (and optionally a street address) and determines which
    distribution utility serves it. Direct catalog hits are answered from
    memory; split ZIPs need an address, which is checked against the ESIID
    registry. Unmapped ZIPs fall back to a low-confidence regional guess.
    Collaborators are injected so tests and the API can share or replace them.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        catalog: Optional[TerritoryCatalog] = None,
        registry: Optional[ServicePointRegistry] = None,
        cache: Optional[ResolutionCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        plans: Optional[PlanCatalogClient] = None,
    ):
        self.config = config or Config()
        cfg = self.config

        logger.info("Initializing ResolutionEngine...")
        t0 = time.time()

        self.catalog = catalog or TerritoryCatalog.load(cfg.catalog_file)
        self.registry = registry or ErcotRegistryClient(
            cfg.registry_url, api_key=cfg.registry_api_key, timeout=cfg.registry_timeout_s
        )
        self.cache = cache or ResolutionCache(cfg.cache_db)
        if rate_limiter is None and cfg.rate_limits_enabled:
            rate_limiter = RateLimiter(cfg.rate_limits)
        self.rate_limiter = rate_limiter
        self.plans = plans or PlanCatalogClient(cfg.plans_api_url, timeout=cfg.plans_timeout_s)

        self.disambiguator = AddressDisambiguator(self.catalog, self.registry, cfg.registry_max_retries)
        self.in_flight = InFlightRequests(
            wait_timeout=cfg.registry_timeout_s * (cfg.registry_max_retries + 1) + 1
        )

        elapsed = time.time() - t0
        logger.info(f"ResolutionEngine ready in {elapsed:.2f}s (catalog {self.catalog.version})")

    # ------------------------------------------------------------------
    # Core pipeline
    # ------------------------------------------------------------------

    def resolve(
        self,
        zip_code: str,
        address: Optional[str] = None,
        usage_hint: Optional[int] = None,
        client_id: Optional[str] = None,
    ) -> Outcome:
        """
        Resolve a ZIP (and optional address) to a territory.

        Returns a ResolutionResult, or a NonDeregulatedOutcome for municipal
        ZIPs. Raises ResolutionError subclasses for validation, rate-limit,
        not-found, and upstream failures. ``usage_hint`` is carried for plan
        queries and does not influence resolution.
        """
        if client_id:
            self.check_rate_limit(client_id, "address" if address else "zip")

        zip_code = validate_zip(zip_code)

        municipal = self._municipal_outcome(zip_code)
        if municipal:
            logger.info(f"{zip_code}: non-deregulated ({municipal.utility_name})")
            return municipal

        parsed = parse_address(address, zip_code) if address is not None else None
        lookup = self.catalog.zip_index.resolve_direct(zip_code)

        # Direct hits do not depend on the address
        if isinstance(lookup, DirectHit):
            key = cache_key(zip_code)
            cached = self._cached(key)
            if cached:
                return cached
            result = self._direct_result(zip_code, lookup.territory_id)
            self.cache.put(key, result, self.config.direct_ttl_s)
            logger.info(f"{zip_code}: {result.territory_name} [direct_mapping]")
            return result

        if parsed is None:
            key = cache_key(zip_code)
            cached = self._cached(key)
            if cached:
                return cached
            if isinstance(lookup, SplitHit):
                result = self._split_result(zip_code, lookup.candidate_ids)
                self.cache.put(key, result, self.config.split_ttl_s)
                logger.info(f"{zip_code}: split ZIP {list(lookup.candidate_ids)}, address required")
                return result
            result = self._heuristic_result(zip_code)
            self.cache.put(key, result, self.config.heuristic_ttl_s)
            return result

        key = cache_key(zip_code, parsed.normalized)
        cached = self._cached(key)
        if cached:
            return cached
        try:
            return self.in_flight.run(key, lambda: self._resolve_address(key, parsed, zip_code))
        except NotFoundError:
            if isinstance(lookup, SplitHit):
                raise
            logger.info(f"{zip_code}: address not in registry, using regional fallback")
            result = self._heuristic_result(zip_code)
            self.cache.put(key, result, self.config.heuristic_ttl_s)
            return result

    def check_rate_limit(self, client_id: str, bucket: str) -> Optional[RateLimitDecision]:
        """Count a request for client_id; raises RateLimitedError when over the ceiling."""
        if self.rate_limiter is None:
            return None
        return self.rate_limiter.enforce(client_id, bucket)

    def _cached(self, key: str) -> Optional[ResolutionResult]:
        result = self.cache.get(key)
        if result:
            logger.debug(f"Cache hit: {key}")
        return result

    def _resolve_address(self, key: str, address: Address, zip_code: str) -> ResolutionResult:
        # A previous leader may have finished between our cache miss and now
        cached = self.cache.get(key)
        if cached:
            return cached
        result = self.disambiguator.disambiguate(address, zip_code)
        ttl = self.config.address_ttl_s if result.confidence != Confidence.LOW else self.config.split_ttl_s
        self.cache.put(key, result, ttl)
        return result

    def _municipal_outcome(self, zip_code: str) -> Optional[NonDeregulatedOutcome]:
        utility = self.catalog.municipal_utility_for_zip(zip_code)
        if utility is None:
            return None
        city_slug = self.catalog.city_for_zip(zip_code)
        name = utility.get("name", "a municipal utility")
        explanation = utility.get("description") or (
            f"This area is served by {name}, a municipally owned utility. "
            f"Residents cannot choose a retail electricity provider."
        )
        return NonDeregulatedOutcome(
            zip=zip_code,
            city_slug=city_slug,
            utility_name=name,
            explanation=explanation,
            redirect_path=municipal_redirect_path(city_slug) if city_slug else None,
        )

    def _direct_result(self, zip_code: str, territory_id: str) -> ResolutionResult:
        territory = self.catalog.territory(territory_id)
        return ResolutionResult(
            method=ResolutionMethod.DIRECT_MAPPING,
            confidence=Confidence.HIGH,
            source_zip=zip_code,
            territory_id=territory.id,
            territory_name=territory.name,
            city_slug=self.catalog.city_for_zip(zip_code),
        )

    def _split_result(self, zip_code: str, candidate_ids) -> ResolutionResult:
        return ResolutionResult(
            method=ResolutionMethod.SPLIT_ZIP_CANDIDATE,
            confidence=Confidence.LOW,
            source_zip=zip_code,
            requires_address=True,
            candidate_territories=self.catalog.candidates(candidate_ids),
            city_slug=self.catalog.city_for_zip(zip_code),
        )

    def _heuristic_result(self, zip_code: str) -> ResolutionResult:
        city_slug = self.catalog.city_for_zip(zip_code) or region_city_for_zip(zip_code)
        if not city_slug:
            raise NotFoundError(context={"zip": zip_code})
        mapping = self.catalog.city_mapping(city_slug)
        if mapping and mapping.excluded:
            raise NotFoundError(context={"zip": zip_code, "city": city_slug})
        if mapping and mapping.territory_id:
            territory_id = mapping.territory_id
        else:
            territory_id = keyword_territory(city_slug, self.catalog.keywords) or alphabetic_territory(city_slug)
        territory = self.catalog.territory(territory_id)
        if territory is None:
            raise NotFoundError(context={"zip": zip_code, "city": city_slug})
        logger.info(f"{zip_code}: heuristic guess {territory.name} via {city_slug}")
        return ResolutionResult(
            method=ResolutionMethod.GEOGRAPHIC_HEURISTIC,
            confidence=Confidence.LOW,
            source_zip=zip_code,
            territory_id=territory.id,
            territory_name=territory.name,
            candidate_territories=self.catalog.candidates([territory.id]),
            city_slug=city_slug,
        )

    # ------------------------------------------------------------------
    # Request contracts
    # ------------------------------------------------------------------

    def _location_payload(self, result: ResolutionResult) -> dict:
        slug = result.city_slug
        return {
            "success": True,
            "zipCode": result.source_zip,
            "territoryId": result.territory_id,
            "territoryName": result.territory_name,
            "citySlug": slug,
            "cityDisplayName": format_city_name(slug) if slug else None,
            "redirectPath": city_redirect_path(slug) if slug else None,
            "method": result.method.value,
            "confidence": result.confidence.value,
            "requiresAddress": result.requires_address,
            "candidateTerritories": [c.to_dict() for c in result.candidate_territories],
        }

    def _split_info(self, zip_code: str) -> Optional[dict]:
        entry = self.catalog.split_entry(zip_code)
        if entry is None:
            return None
        return {
            "isMultiTdsp": True,
            "alternativeTerritories": [c.to_dict() for c in self.catalog.candidates(entry.candidate_territory_ids)],
            "boundaryType": entry.boundary_type,
            "notes": entry.notes,
        }

    def lookup_zip(self, zip_code: str, client_id: Optional[str] = None) -> dict:
        """ZIP-only navigation lookup."""
        outcome = self.resolve(zip_code, client_id=client_id)
        if isinstance(outcome, NonDeregulatedOutcome):
            return outcome.to_dict()
        return self._location_payload(outcome)

    def navigate(self, zip_code: str, validate_plans_available: bool = False,
                 client_id: Optional[str] = None) -> dict:
        t0 = time.time()
        outcome = self.resolve(zip_code, client_id=client_id)
        if isinstance(outcome, NonDeregulatedOutcome):
            return outcome.to_dict()
        payload = self._location_payload(outcome)
        payload["planCount"] = None
        if validate_plans_available and outcome.territory_id:
            payload["planCount"] = self.plans.count_plans(self.catalog.territory(outcome.territory_id))
        payload["validationTimeMs"] = int((time.time() - t0) * 1000)
        return payload

    def search_plans(
        self,
        zip_code: str,
        address: Optional[str] = None,
        usage_kwh: int = 1000,
        filters: Optional[dict] = None,
        client_id: Optional[str] = None,
    ) -> dict:
        if usage_kwh is None:
            usage_kwh = 1000
        if not MIN_USAGE_KWH <= usage_kwh <= MAX_USAGE_KWH:
            raise ValidationError(f"Usage must be between {MIN_USAGE_KWH} and {MAX_USAGE_KWH} kWh.")

        outcome = self.resolve(zip_code, address=address or None, usage_hint=usage_kwh, client_id=client_id)
        if isinstance(outcome, NonDeregulatedOutcome):
            return outcome.to_dict()

        split_info = self._split_info(outcome.source_zip)
        if outcome.territory_id is None:
            if outcome.is_ambiguous:
                raise AmbiguousAddressError(candidates=[c.to_dict() for c in outcome.candidate_territories])
            return {
                "success": False,
                "errorType": "address_required",
                "error": "This ZIP code is served by more than one utility. Please enter your street address.",
                "zipCode": outcome.source_zip,
                "splitZipInfo": split_info,
            }

        if outcome.method == ResolutionMethod.ADDRESS_LOOKUP:
            search_method = "split_zip_resolved" if split_info else "address_lookup"
        else:
            search_method = outcome.method.value

        territory = self.catalog.territory(outcome.territory_id)
        response = {
            "success": True,
            "zipCode": outcome.source_zip,
            "territoryInfo": {
                "territoryId": territory.id,
                "name": territory.name,
                "duns": territory.duns,
                "zone": territory.zone,
                "confidence": outcome.confidence.value,
            },
            "searchMethod": search_method,
            "usageKwh": usage_kwh,
            "planCount": self.plans.count_plans(territory, usage_kwh, filters),
        }
        if split_info:
            response["splitZipInfo"] = split_info
        return response

    def resolve_address(self, address: str, zip_code: str, client_id: Optional[str] = None) -> dict:
        """Address-level (ESIID) resolution."""
        if address is None or not str(address).strip():
            raise ValidationError("Street address is required.")
        outcome = self.resolve(zip_code, address=address, client_id=client_id)
        if isinstance(outcome, NonDeregulatedOutcome):
            return outcome.to_dict()
        if outcome.is_ambiguous:
            raise AmbiguousAddressError(candidates=[c.to_dict() for c in outcome.candidate_territories])

        territory = self.catalog.territory(outcome.territory_id) if outcome.territory_id else None
        # Direct ZIPs resolve without the address, so normalize it here
        normalized = outcome.normalized_address or parse_address(address, outcome.source_zip).normalized
        response = {
            "success": territory is not None,
            "resolution": {
                "method": outcome.method.value,
                "confidence": outcome.confidence.value,
                "territory": territory.to_dict() if territory else None,
                "normalizedAddress": normalized,
                "servicePointId": outcome.service_point_id,
                "candidateTerritories": [c.to_dict() for c in outcome.candidate_territories],
            },
        }
        split_info = self._split_info(outcome.source_zip)
        if split_info:
            response["splitZipInfo"] = split_info
        return response

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def warm_cache(self, limit: int = 50) -> int:
        """Pre-populate direct results for the highest-priority cities."""
        warmed = 0
        for city in self.catalog.cities_by_priority()[:limit]:
            for zip_code in self.catalog.zips_for_city(city.city_slug):
                lookup = self.catalog.zip_index.resolve_direct(zip_code)
                if not isinstance(lookup, DirectHit):
                    continue
                key = cache_key(zip_code)
                if self.cache.get(key):
                    continue
                self.cache.put(key, self._direct_result(zip_code, lookup.territory_id), self.config.direct_ttl_s)
                warmed += 1
        logger.info(f"Cache warm: {warmed} ZIPs across top {limit} cities")
        return warmed

    def stats(self) -> dict:
        stats = self.catalog.stats()
        stats["cache_entries"] = self.cache.size
        stats["in_flight"] = len(self.in_flight)
        return stats

    def close(self):
        self.cache.close()
        self.registry.close()
        self.plans.close()
