"""Geographic heuristics shared by the catalog builder and the engine fallback.

None of these are authoritative. Anything assigned here is a best guess and the
engine always reports it at low confidence.
"""

from typing import Dict, Iterable, Optional, Tuple

# Largest territory by customer count; catch-all for anything unclassifiable
DEFAULT_TERRITORY = "oncor"

# First-letter ranges of the city slug -> territory (placeholder distribution)
ALPHABETIC_RANGES = [
    ("a", "c", "centerpoint"),
    ("d", "r", "oncor"),
    ("s", "z", "aep_central"),
]

# ZIP3 prefix -> representative deregulated city. Prefixes dominated by
# municipal utilities or non-ERCOT utilities (Austin, San Antonio, El Paso,
# Amarillo, Beaumont, Bryan, Greenville, Longview/Texarkana) are left out.
ZIP3_REGION_CITIES: Dict[str, str] = {
    "750": "dallas-tx",
    "751": "dallas-tx",
    "752": "dallas-tx",
    "753": "dallas-tx",
    "757": "tyler-tx",
    "760": "fort-worth-tx",
    "761": "fort-worth-tx",
    "762": "fort-worth-tx",
    "763": "wichita-falls-tx",
    "765": "killeen-tx",
    "766": "waco-tx",
    "767": "waco-tx",
    "769": "san-angelo-tx",
    "770": "houston-tx",
    "771": "houston-tx",
    "772": "houston-tx",
    "773": "houston-tx",
    "774": "houston-tx",
    "775": "houston-tx",
    "779": "victoria-tx",
    "783": "corpus-christi-tx",
    "784": "corpus-christi-tx",
    "785": "mcallen-tx",
    "793": "lubbock-tx",
    "794": "lubbock-tx",
    "795": "abilene-tx",
    "796": "abilene-tx",
    "797": "midland-tx",
}


def keyword_territory(city_slug: str, keywords: Iterable[Tuple[str, Iterable[str]]]) -> Optional[str]:
    """First territory whose keyword appears in the slug, in definition order."""
    for territory_id, words in keywords:
        for word in words:
            if word and word in city_slug:
                return territory_id
    return None


def alphabetic_territory(city_slug: str) -> str:
    first = city_slug[:1].lower()
    if not first.isalpha():
        return DEFAULT_TERRITORY
    for lo, hi, territory_id in ALPHABETIC_RANGES:
        if lo <= first <= hi:
            return territory_id
    return DEFAULT_TERRITORY


def region_city_for_zip(zip_code: str) -> Optional[str]:
    return ZIP3_REGION_CITIES.get(zip_code[:3])
