"""Offline builder for the territory catalog.

Reads the raw city list, territory definitions, ZIP->city source, split-ZIP
registry, and municipal utility list, and produces the versioned JSON catalog
that ``TerritoryCatalog`` loads at runtime.
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .catalog import slugify_city
from .heuristics import alphabetic_territory, keyword_territory
from .models import CityMapping

logger = logging.getLogger(__name__)

TIER_MULTIPLIERS = {1: 1.0, 2: 0.8, 3: 0.6}
MAX_CITY_NAME_LENGTH = 50

_CITY_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z .'\-]*$")
_BULLET_RE = re.compile(r"^\s*[-*]\s+(.*)$")
_ZIP_RE = re.compile(r"^\d{5}$")


class CatalogBuilder:
    def __init__(self, territory_defs: List[dict], municipal_utilities: List[dict],
                 tiers: Optional[Dict[str, List[str]]] = None):
        self.territory_defs = territory_defs
        self.territory_ids = [t["id"] for t in territory_defs]
        self._base_priority = {t["id"]: float(t.get("base_priority", 0.5)) for t in territory_defs}
        self._known = {
            t["id"]: {slugify_city(name) for name in t.get("known_cities", [])}
            for t in territory_defs
        }
        self._keywords = [(t["id"], tuple(t.get("keywords", []))) for t in territory_defs]

        self.municipal_utilities = {}
        self._municipal_by_slug: Dict[str, str] = {}
        for m in municipal_utilities:
            slugs = [slugify_city(c) for c in m.get("cities", [])]
            self.municipal_utilities[m["key"]] = {
                "name": m["name"],
                "description": m.get("description", ""),
                "cities": slugs,
            }
            for slug in slugs:
                self._municipal_by_slug[slug] = m["key"]

        self._tiers: Dict[str, int] = {}
        for tier, names in (tiers or {}).items():
            for name in names:
                self._tiers[slugify_city(name)] = int(tier)

    # -- city list -------------------------------------------------------

    def parse_city_lines(self, lines: Iterable[str]) -> List[str]:
        """City names from markdown bullet lines; malformed entries are skipped."""
        names = []
        skipped = 0
        for lineno, line in enumerate(lines, 1):
            m = _BULLET_RE.match(line)
            if not m:
                continue
            name = m.group(1).strip()
            if not name or len(name) > MAX_CITY_NAME_LENGTH or not _CITY_NAME_RE.match(name):
                logger.warning(f"City list line {lineno}: skipping malformed entry {line.strip()[:60]!r}")
                skipped += 1
                continue
            names.append(name)
        logger.info(f"City list: {len(names)} cities, {skipped} malformed lines skipped")
        return names

    def assign_city(self, city_slug: str) -> CityMapping:
        """Known list, then municipal exclusion, then keyword, then alphabetic."""
        tier = self._tiers.get(city_slug, 3)

        for territory_id in self.territory_ids:
            if city_slug in self._known[territory_id]:
                return self._mapping(city_slug, territory_id, tier, "known_city")

        if city_slug in self._municipal_by_slug:
            return CityMapping(city_slug, None, tier=tier, priority=0.0, excluded=True, method="municipal")

        territory_id = keyword_territory(city_slug, self._keywords)
        if territory_id:
            return self._mapping(city_slug, territory_id, tier, "keyword")

        return self._mapping(city_slug, alphabetic_territory(city_slug), tier, "alphabetic")

    def _mapping(self, city_slug: str, territory_id: str, tier: int, method: str) -> CityMapping:
        priority = round(self._base_priority.get(territory_id, 0.5) * TIER_MULTIPLIERS[tier], 2)
        return CityMapping(city_slug, territory_id, tier=tier, priority=priority, method=method)

    # -- full build ------------------------------------------------------

    def build(self, city_lines: Iterable[str], zip_cities: Dict[str, str], split_zips: Dict[str, dict],
              version: Optional[str] = None) -> dict:
        now = datetime.now(timezone.utc)

        cities: Dict[str, CityMapping] = {}
        for name in self.parse_city_lines(city_lines):
            slug = slugify_city(name)
            if slug and slug not in cities:
                cities[slug] = self.assign_city(slug)

        splits = {}
        for zip_code, entry in sorted(split_zips.items()):
            candidates = list(dict.fromkeys(entry.get("candidates", [])))
            unknown = [c for c in candidates if c not in self.territory_ids]
            if not _ZIP_RE.match(zip_code) or unknown or len(candidates) < 2:
                logger.warning(f"Split ZIP {zip_code}: invalid entry (candidates={candidates}), skipped")
                continue
            splits[zip_code] = {
                "candidates": candidates,
                "boundary_type": entry.get("boundary_type", "street-level"),
                "notes": entry.get("notes", ""),
            }

        zip_index: Dict[str, str] = {}
        zip_city_slugs: Dict[str, str] = {}
        municipal_zips: Dict[str, str] = {}
        kept_out = 0
        for zip_code, city_name in sorted(zip_cities.items()):
            if not _ZIP_RE.match(zip_code):
                logger.warning(f"ZIP source: skipping malformed ZIP {zip_code!r}")
                continue
            slug = slugify_city(city_name or "")
            if not slug:
                logger.warning(f"ZIP source: {zip_code} has no city name, skipped")
                continue
            zip_city_slugs[zip_code] = slug
            if slug not in cities:
                cities[slug] = self.assign_city(slug)
            mapping = cities[slug]

            if mapping.excluded:
                municipal_zips[zip_code] = self._municipal_by_slug[slug]
                if zip_code in splits:
                    logger.warning(f"Split ZIP {zip_code} is inside municipal {slug}; dropping split entry")
                    del splits[zip_code]
                continue
            if zip_code in splits:
                kept_out += 1
                continue
            zip_index[zip_code] = mapping.territory_id

        if kept_out:
            logger.info(f"ZIP index: {kept_out} split ZIPs kept out of the direct index")

        territories = []
        for t in self.territory_defs:
            territories.append({
                "id": t["id"],
                "name": t["name"],
                "zone": t.get("zone", ""),
                "duns": t.get("duns", ""),
                "counties": sorted(t.get("counties", [])),
                "keywords": list(t.get("keywords", [])),
                "base_priority": self._base_priority[t["id"]],
                "city_slugs": sorted(s for s, c in cities.items() if c.territory_id == t["id"]),
            })

        methods: Dict[str, int] = {}
        for c in cities.values():
            methods[c.method] = methods.get(c.method, 0) + 1
        logger.info(
            f"Catalog: {len(cities)} cities {methods}, {len(zip_index)} direct ZIPs, "
            f"{len(splits)} split ZIPs, {len(municipal_zips)} municipal ZIPs"
        )

        return {
            "version": version or now.strftime("%Y.%m.%d"),
            "generated_at": now.isoformat(),
            "territories": territories,
            "cities": {
                slug: {
                    "territory_id": c.territory_id,
                    "tier": c.tier,
                    "priority": c.priority,
                    "excluded": c.excluded,
                    "method": c.method,
                }
                for slug, c in sorted(cities.items())
            },
            "zip_index": zip_index,
            "zip_cities": zip_city_slugs,
            "split_zips": splits,
            "municipal_zips": municipal_zips,
            "municipal_utilities": self.municipal_utilities,
        }


def load_sources(source_dir: Path) -> dict:
    """Read the raw inputs from a source directory."""
    source_dir = Path(source_dir)
    with open(source_dir / "territories.json") as f:
        territories = json.load(f)
    with open(source_dir / "municipal_utilities.json") as f:
        municipal = json.load(f)
    with open(source_dir / "zip_cities.json") as f:
        zip_cities = json.load(f)
    with open(source_dir / "split_zips.json") as f:
        split_zips = json.load(f)
    city_lines = (source_dir / "texas_cities.md").read_text().splitlines()
    return {
        "territories": territories["territories"],
        "tiers": territories.get("tiers", {}),
        "municipal_utilities": municipal,
        "zip_cities": zip_cities,
        "split_zips": split_zips,
        "city_lines": city_lines,
    }


def write_catalog(catalog: dict, path: Path):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(catalog, f, indent=2)
        f.write("\n")
    logger.info(f"Wrote catalog {catalog['version']} to {path}")
