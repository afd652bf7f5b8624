"""Data models for the territory resolution engine."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from .errors import ErrorCode


class ResolutionMethod(str, Enum):
    DIRECT_MAPPING = "direct_mapping"
    SPLIT_ZIP_CANDIDATE = "split_zip_candidate"
    ADDRESS_LOOKUP = "address_lookup"
    GEOGRAPHIC_HEURISTIC = "geographic_heuristic"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Territory:
    id: str
    name: str
    zone: str
    duns: str = ""
    counties: frozenset = frozenset()
    city_slugs: frozenset = frozenset()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "zone": self.zone,
            "duns": self.duns,
            "counties": sorted(self.counties),
            "citySlugs": sorted(self.city_slugs),
        }


@dataclass(frozen=True)
class CityMapping:
    city_slug: str
    territory_id: Optional[str]
    tier: int = 3
    priority: float = 0.0
    excluded: bool = False
    method: str = "alphabetic"

    def to_dict(self) -> dict:
        return {
            "citySlug": self.city_slug,
            "territoryId": self.territory_id,
            "tier": self.tier,
            "priority": self.priority,
            "excluded": self.excluded,
            "method": self.method,
        }


@dataclass(frozen=True)
class ZipEntry:
    zip: str
    territory_id: Optional[str]


@dataclass(frozen=True)
class SplitZipEntry:
    zip: str
    candidate_territory_ids: Tuple[str, ...]
    boundary_type: str = "street-level"
    notes: str = ""

    def to_dict(self) -> dict:
        return {
            "zip": self.zip,
            "candidates": list(self.candidate_territory_ids),
            "boundaryType": self.boundary_type,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class Address:
    raw: str
    normalized: str
    zip: str


@dataclass(frozen=True)
class ServicePointRecord:
    id: str
    matched_address: str
    territory_id: str
    territory_name: str
    city: str = ""
    zip: str = ""


@dataclass(frozen=True)
class CandidateTerritory:
    territory_id: str
    name: str
    zone: str = ""

    def to_dict(self) -> dict:
        return {"territoryId": self.territory_id, "name": self.name, "zone": self.zone}


@dataclass(frozen=True)
class ResolutionResult:
    method: ResolutionMethod
    confidence: Confidence
    source_zip: str
    territory_id: Optional[str] = None
    territory_name: Optional[str] = None
    requires_address: bool = False
    candidate_territories: Tuple[CandidateTerritory, ...] = ()
    source_address: Optional[str] = None
    normalized_address: Optional[str] = None
    city_slug: Optional[str] = None
    service_point_id: Optional[str] = None
    resolved_at: str = field(default_factory=_utc_now)

    def __post_init__(self):
        if self.confidence == Confidence.HIGH and (self.territory_id is None or self.requires_address):
            raise ValueError("high-confidence result must name a territory and not require an address")

    @property
    def is_ambiguous(self) -> bool:
        """Registry matched the address but the matches disagree on territory."""
        return (
            self.method == ResolutionMethod.ADDRESS_LOOKUP
            and self.territory_id is None
            and len(self.candidate_territories) > 1
        )

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output."""
        return {
            "method": self.method.value,
            "confidence": self.confidence.value,
            "territoryId": self.territory_id,
            "territoryName": self.territory_name,
            "requiresAddress": self.requires_address,
            "candidateTerritories": [c.to_dict() for c in self.candidate_territories],
            "sourceZip": self.source_zip,
            "sourceAddress": self.source_address,
            "normalizedAddress": self.normalized_address,
            "citySlug": self.city_slug,
            "servicePointId": self.service_point_id,
            "resolvedAt": self.resolved_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResolutionResult":
        """Reconstruct a result from its serialized dict (cache rows)."""
        return cls(
            method=ResolutionMethod(data["method"]),
            confidence=Confidence(data["confidence"]),
            source_zip=data["sourceZip"],
            territory_id=data.get("territoryId"),
            territory_name=data.get("territoryName"),
            requires_address=data.get("requiresAddress", False),
            candidate_territories=tuple(
                CandidateTerritory(c["territoryId"], c.get("name", ""), c.get("zone", ""))
                for c in data.get("candidateTerritories", [])
            ),
            source_address=data.get("sourceAddress"),
            normalized_address=data.get("normalizedAddress"),
            city_slug=data.get("citySlug"),
            service_point_id=data.get("servicePointId"),
            resolved_at=data.get("resolvedAt") or _utc_now(),
        )


@dataclass(frozen=True)
class NonDeregulatedOutcome:
    """A municipal or co-op ZIP: no retail choice, so no territory result."""

    zip: str
    city_slug: Optional[str]
    utility_name: str
    explanation: str
    redirect_path: Optional[str] = None
    code: ErrorCode = ErrorCode.NON_DEREGULATED

    def to_dict(self) -> dict:
        return {
            "success": False,
            "errorType": "non_deregulated",
            "errorCode": self.code.value,
            "zipCode": self.zip,
            "citySlug": self.city_slug,
            "utilityName": self.utility_name,
            "error": self.explanation,
            "redirectPath": self.redirect_path,
        }
