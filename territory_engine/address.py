"""Input validation and street-address normalization."""

import re

from .errors import ValidationError
from .models import Address

# Texas ZIP code ranges (inclusive)
TEXAS_ZIP_RANGES = [
    (73301, 73399),
    (75001, 79999),
    (88510, 88589),
]

MIN_ADDRESS_CHARS = 5
MAX_ADDRESS_LENGTH = 200

STREET_SUFFIXES = {
    "st": "Street",
    "ave": "Avenue",
    "av": "Avenue",
    "rd": "Road",
    "blvd": "Boulevard",
    "dr": "Drive",
    "ln": "Lane",
    "ct": "Court",
    "pl": "Place",
    "pkwy": "Parkway",
    "hwy": "Highway",
    "cir": "Circle",
    "trl": "Trail",
}

UNIT_DESIGNATORS = {"apt", "apartment", "unit", "suite", "ste"}

UPPERCASE_TOKENS = {"N", "S", "E", "W", "NE", "NW", "SE", "SW", "TX"}

_ZIP_RE = re.compile(r"^\d{5}$")


def is_texas_zip(zip_code: str) -> bool:
    if not _ZIP_RE.match(zip_code or ""):
        return False
    n = int(zip_code)
    return any(lo <= n <= hi for lo, hi in TEXAS_ZIP_RANGES)


def validate_zip(zip_code) -> str:
    """Return the cleaned ZIP or raise ValidationError."""
    if zip_code is None:
        raise ValidationError("ZIP code is required.")
    cleaned = str(zip_code).strip()
    if not _ZIP_RE.match(cleaned):
        raise ValidationError("Please enter a valid 5-digit ZIP code.", {"zip": cleaned})
    if not is_texas_zip(cleaned):
        raise ValidationError("This ZIP code is not in Texas.", {"zip": cleaned})
    return cleaned


def validate_address(address) -> str:
    if address is None or not str(address).strip():
        raise ValidationError("Street address is required.")
    cleaned = str(address).strip()
    if len(cleaned) > MAX_ADDRESS_LENGTH:
        raise ValidationError("Street address is too long.")
    if sum(ch.isalnum() for ch in cleaned) < MIN_ADDRESS_CHARS:
        raise ValidationError("Please enter a complete street address.", {"address": cleaned})
    return cleaned


def _normalize_token(token: str) -> str:
    core = token.rstrip(",")
    trailing = token[len(core):]
    lower = core.lower()
    if lower in STREET_SUFFIXES:
        core = STREET_SUFFIXES[lower]
    elif lower in UNIT_DESIGNATORS:
        core = "Apt"
    elif core.upper() in UPPERCASE_TOKENS:
        core = core.upper()
    elif core[:1].isalpha():
        core = core.capitalize()
    else:
        core = lower
    return core + trailing


def normalize_address(address: str) -> str:
    """
    Canonical form used for registry queries and cache keys.

    "123 main st.,  dallas" -> "123 Main Street, Dallas". Applying it twice
    gives the same string as applying it once.
    """
    if not address:
        return ""
    s = address.replace(".", " ")
    s = re.sub(r"\b(?:apt|apartment|unit|suite|ste)\s*#\s*", "Apt ", s, flags=re.IGNORECASE)
    s = re.sub(r"\s*#\s*", " Apt ", s)
    s = re.sub(r"(\s*,\s*)+", ", ", s)
    s = re.sub(r"\s+", " ", s).strip(" ,")
    if not s:
        return ""
    return " ".join(_normalize_token(t) for t in s.split(" "))


def parse_address(raw: str, zip_code: str) -> Address:
    cleaned = validate_address(raw)
    return Address(raw=raw, normalized=normalize_address(cleaned), zip=zip_code)
