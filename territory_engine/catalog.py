"""Territory catalog and ZIP index.

The catalog is generated offline by ``build_catalog.py`` and loaded once at
startup. After loading nothing here is mutated, so lookups need no locking.
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Optional, Tuple, Union

from .errors import CatalogError
from .models import CandidateTerritory, CityMapping, SplitZipEntry, Territory

logger = logging.getLogger(__name__)


def slugify_city(name: str) -> str:
    """'Fort Worth' -> 'fort-worth-tx'. Deterministic."""
    slug = name.lower().strip()
    slug = slug.replace("'", "")
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")
    if not slug:
        return ""
    return f"{slug}-tx"


def format_city_name(city_slug: str) -> str:
    """'fort-worth-tx' -> 'Fort Worth, TX'."""
    base = city_slug[:-3] if city_slug.endswith("-tx") else city_slug
    words = [w.capitalize() for w in base.split("-") if w]
    return f"{' '.join(words)}, TX"


def city_redirect_path(city_slug: str) -> str:
    return f"/electricity-plans/{city_slug}/"


def municipal_redirect_path(city_slug: str) -> str:
    return f"/electricity-plans/{city_slug}/municipal-utility/"


@dataclass(frozen=True)
class DirectHit:
    territory_id: str


@dataclass(frozen=True)
class SplitHit:
    candidate_ids: Tuple[str, ...]


@dataclass(frozen=True)
class NotFound:
    pass


DirectLookup = Union[DirectHit, SplitHit, NotFound]


class ZipIndex:
    """O(1) ZIP -> territory, with split ZIPs kept in a separate registry."""

    def __init__(self, direct: Dict[str, str], splits: Dict[str, SplitZipEntry]):
        overlap = set(direct) & set(splits)
        if overlap:
            raise CatalogError(f"ZIPs present in both direct index and split registry: {sorted(overlap)[:10]}")
        self._direct = MappingProxyType(dict(direct))
        self._splits = MappingProxyType(dict(splits))

    def resolve_direct(self, zip_code: str) -> DirectLookup:
        territory_id = self._direct.get(zip_code)
        if territory_id:
            return DirectHit(territory_id)
        entry = self._splits.get(zip_code)
        if entry:
            return SplitHit(entry.candidate_territory_ids)
        return NotFound()

    def split_entry(self, zip_code: str) -> Optional[SplitZipEntry]:
        return self._splits.get(zip_code)

    @property
    def direct_count(self) -> int:
        return len(self._direct)

    @property
    def split_count(self) -> int:
        return len(self._splits)


class TerritoryCatalog:
    """Read-only view over the generated territory catalog."""

    def __init__(
        self,
        version: str,
        territories: Dict[str, Territory],
        cities: Dict[str, CityMapping],
        zip_index: ZipIndex,
        zip_cities: Dict[str, str],
        municipal_zips: Dict[str, str],
        municipal_utilities: Dict[str, dict],
        keywords: Optional[List[Tuple[str, Tuple[str, ...]]]] = None,
        generated_at: str = "",
    ):
        self.version = version
        self.generated_at = generated_at
        self._territories = MappingProxyType(dict(territories))
        self._by_duns = MappingProxyType({t.duns: t for t in territories.values() if t.duns})
        self._cities = MappingProxyType(dict(cities))
        self.zip_index = zip_index
        self._zip_cities = MappingProxyType(dict(zip_cities))
        self._municipal_zips = MappingProxyType(dict(municipal_zips))
        self._municipal_utilities = MappingProxyType(dict(municipal_utilities))
        self.keywords = tuple(keywords or ())

        for zip_code in municipal_zips:
            if not isinstance(zip_index.resolve_direct(zip_code), NotFound):
                raise CatalogError(f"Municipal ZIP {zip_code} is also mapped to a territory")

    @classmethod
    def load(cls, path: Path) -> "TerritoryCatalog":
        path = Path(path)
        if not path.exists():
            raise CatalogError(f"Territory catalog not found: {path}")
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CatalogError(f"Failed to read territory catalog {path}: {e}") from e
        catalog = cls.from_dict(data)
        logger.info(
            f"Territory catalog {catalog.version}: {len(catalog._territories)} territories, "
            f"{len(catalog._cities)} cities, {catalog.zip_index.direct_count} direct ZIPs, "
            f"{catalog.zip_index.split_count} split ZIPs, {len(catalog._municipal_zips)} municipal ZIPs"
        )
        return catalog

    @classmethod
    def from_dict(cls, data: dict) -> "TerritoryCatalog":
        try:
            territories = {}
            keywords = []
            for t in data["territories"]:
                territories[t["id"]] = Territory(
                    id=t["id"],
                    name=t["name"],
                    zone=t.get("zone", ""),
                    duns=t.get("duns", ""),
                    counties=frozenset(t.get("counties", [])),
                    city_slugs=frozenset(t.get("city_slugs", [])),
                )
                keywords.append((t["id"], tuple(t.get("keywords", []))))

            cities = {
                slug: CityMapping(
                    city_slug=slug,
                    territory_id=c.get("territory_id"),
                    tier=c.get("tier", 3),
                    priority=c.get("priority", 0.0),
                    excluded=c.get("excluded", False),
                    method=c.get("method", "alphabetic"),
                )
                for slug, c in data.get("cities", {}).items()
            }

            splits = {}
            for zip_code, s in data.get("split_zips", {}).items():
                candidates = tuple(s["candidates"])
                unknown = [c for c in candidates if c not in territories]
                if unknown or len(candidates) < 2:
                    raise CatalogError(f"Split ZIP {zip_code} has invalid candidates {list(candidates)}")
                splits[zip_code] = SplitZipEntry(
                    zip=zip_code,
                    candidate_territory_ids=candidates,
                    boundary_type=s.get("boundary_type", "street-level"),
                    notes=s.get("notes", ""),
                )

            direct = data.get("zip_index", {})
            unknown = {t for t in direct.values() if t not in territories}
            if unknown:
                raise CatalogError(f"ZIP index references unknown territories: {sorted(unknown)}")

            return cls(
                version=str(data.get("version", "")),
                generated_at=data.get("generated_at", ""),
                territories=territories,
                cities=cities,
                zip_index=ZipIndex(direct, splits),
                zip_cities=data.get("zip_cities", {}),
                municipal_zips=data.get("municipal_zips", {}),
                municipal_utilities=data.get("municipal_utilities", {}),
                keywords=keywords,
            )
        except KeyError as e:
            raise CatalogError(f"Territory catalog missing field {e}") from e

    # -- queries ---------------------------------------------------------

    def territory(self, territory_id: str) -> Optional[Territory]:
        return self._territories.get(territory_id)

    def territory_by_duns(self, duns: str) -> Optional[Territory]:
        return self._by_duns.get(duns)

    @property
    def territories(self) -> List[Territory]:
        return list(self._territories.values())

    def candidates(self, territory_ids) -> Tuple[CandidateTerritory, ...]:
        out = []
        for tid in territory_ids:
            t = self._territories.get(tid)
            if t:
                out.append(CandidateTerritory(t.id, t.name, t.zone))
        return tuple(out)

    def city_for_zip(self, zip_code: str) -> Optional[str]:
        return self._zip_cities.get(zip_code)

    def city_mapping(self, city_slug: str) -> Optional[CityMapping]:
        return self._cities.get(city_slug)

    def municipal_utility_for_zip(self, zip_code: str) -> Optional[dict]:
        key = self._municipal_zips.get(zip_code)
        if not key:
            return None
        return self._municipal_utilities.get(key, {"name": key})

    def split_entry(self, zip_code: str) -> Optional[SplitZipEntry]:
        return self.zip_index.split_entry(zip_code)

    def cities_by_priority(self) -> List[CityMapping]:
        """Non-excluded cities, highest priority first (used for cache warming)."""
        cities = [c for c in self._cities.values() if not c.excluded and c.territory_id]
        return sorted(cities, key=lambda c: (-c.priority, c.tier, c.city_slug))

    def zips_for_city(self, city_slug: str) -> List[str]:
        return sorted(z for z, s in self._zip_cities.items() if s == city_slug)

    def stats(self) -> dict:
        return {
            "version": self.version,
            "territories": len(self._territories),
            "cities": len(self._cities),
            "direct_zips": self.zip_index.direct_count,
            "split_zips": self.zip_index.split_count,
            "municipal_zips": len(self._municipal_zips),
        }
