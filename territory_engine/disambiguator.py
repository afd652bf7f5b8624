"""Resolve split ZIPs to a single territory using the service-point registry."""

import logging
from collections import Counter
from typing import List, Optional, Tuple

from rapidfuzz import fuzz

from .address import normalize_address
from .catalog import TerritoryCatalog
from .errors import NotFoundError, RegistryError, UpstreamFailureError
from .models import (
    Address,
    Confidence,
    ResolutionMethod,
    ResolutionResult,
    ServicePointRecord,
    Territory,
)
from .registry import ServicePointRegistry

logger = logging.getLogger(__name__)


class AddressDisambiguator:
    """
    Address -> territory via the ESIID registry.

    One match is authoritative (high). Several matches in one territory are a
    multi-meter premise (medium). Matches that disagree are ambiguous: low
    confidence, no territory, all candidates listed. If the registry has
    nothing or is down, a split ZIP degrades to its candidate list; any
    other ZIP is an error. A territory is never guessed.
    """

    def __init__(self, catalog: TerritoryCatalog, registry: ServicePointRegistry, max_retries: int = 1):
        self.catalog = catalog
        self.registry = registry
        self.max_retries = max_retries

    def disambiguate(self, address: Address, zip_code: str) -> ResolutionResult:
        try:
            records = self._search(address.normalized, zip_code)
        except RegistryError as e:
            logger.warning(f"Registry unavailable for {zip_code} '{address.normalized}': {e}")
            fallback = self._split_fallback(address, zip_code)
            if fallback:
                return fallback
            raise UpstreamFailureError(context={"zip": zip_code, "reason": str(e)}) from e

        matches = self._attach_territories(records)
        if not matches:
            fallback = self._split_fallback(address, zip_code)
            if fallback:
                logger.info(f"No service points for '{address.normalized}' in {zip_code}; returning split candidates")
                return fallback
            raise NotFoundError(
                "We couldn't find that address. Please check the street address and ZIP code.",
                {"zip": zip_code, "address": address.normalized},
            )

        return self._score(address, zip_code, matches)

    def _search(self, normalized: str, zip_code: str) -> List[ServicePointRecord]:
        attempts = self.max_retries + 1
        last_error: Optional[RegistryError] = None
        for attempt in range(1, attempts + 1):
            try:
                return self.registry.search(normalized, zip_code)
            except RegistryError as e:
                last_error = e
                if attempt < attempts:
                    logger.info(f"Registry attempt {attempt}/{attempts} failed, retrying: {e}")
        raise last_error

    def _attach_territories(self, records: List[ServicePointRecord]) -> List[Tuple[ServicePointRecord, Territory]]:
        out = []
        for rec in records:
            territory = self.catalog.territory(rec.territory_id) or self.catalog.territory_by_duns(rec.territory_id)
            if territory is None:
                logger.warning(f"Service point {rec.id} names unknown utility {rec.territory_id} ({rec.territory_name})")
                continue
            out.append((rec, territory))
        return out

    def _score(self, address: Address, zip_code: str, matches) -> ResolutionResult:
        target = address.normalized.lower()
        scored = sorted(
            matches,
            key=lambda m: fuzz.token_sort_ratio(target, normalize_address(m[0].matched_address).lower()),
            reverse=True,
        )
        best_record, best_territory = scored[0]
        counts = Counter(t.id for _, t in scored)
        city_slug = self.catalog.city_for_zip(zip_code)

        if len(counts) == 1:
            confidence = Confidence.HIGH if len(scored) == 1 else Confidence.MEDIUM
            logger.info(
                f"Address {address.normalized!r} ({zip_code}) -> {best_territory.name} "
                f"[{confidence.value}, {len(scored)} service point(s)]"
            )
            return ResolutionResult(
                method=ResolutionMethod.ADDRESS_LOOKUP,
                confidence=confidence,
                source_zip=zip_code,
                territory_id=best_territory.id,
                territory_name=best_territory.name,
                source_address=address.raw,
                normalized_address=address.normalized,
                city_slug=city_slug,
                service_point_id=best_record.id,
            )

        # Most frequent first; ties keep best-match order
        first_seen = {}
        for _, t in scored:
            first_seen.setdefault(t.id, len(first_seen))
        ranked = sorted(counts, key=lambda tid: (-counts[tid], first_seen[tid]))
        logger.info(f"Address {address.normalized!r} ({zip_code}) spans territories {ranked}")
        return ResolutionResult(
            method=ResolutionMethod.ADDRESS_LOOKUP,
            confidence=Confidence.LOW,
            source_zip=zip_code,
            candidate_territories=self.catalog.candidates(ranked),
            source_address=address.raw,
            normalized_address=address.normalized,
            city_slug=city_slug,
        )

    def _split_fallback(self, address: Address, zip_code: str) -> Optional[ResolutionResult]:
        entry = self.catalog.split_entry(zip_code)
        if entry is None:
            return None
        return ResolutionResult(
            method=ResolutionMethod.SPLIT_ZIP_CANDIDATE,
            confidence=Confidence.LOW,
            source_zip=zip_code,
            requires_address=False,
            candidate_territories=self.catalog.candidates(entry.candidate_territory_ids),
            source_address=address.raw,
            normalized_address=address.normalized,
            city_slug=self.catalog.city_for_zip(zip_code),
        )
