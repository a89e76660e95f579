"""
Pydantic models used across the pipeline for validation and serialization.
These are pure data objects, no network or storage coupling.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

POSTAL_CODE_SENTINEL = "00000"
UNKNOWN_LOCATION_NAME = "Unknown"


# ── Enums ──────────────────────────────────────────────────────────────

class Tier(str, Enum):
    CLOSE = "close"
    MEDIUM = "medium"
    FAR = "far"
    UNKNOWN = "unknown"


class ResolutionState(str, Enum):
    PENDING = "pending"
    EXTRACTED_LOW_CONFIDENCE = "extracted_low_confidence"
    FULL_TEXT_FETCHED = "full_text_fetched"
    SKIPPED_FULL_TEXT = "skipped_full_text"
    GEOCODED = "geocoded"
    FALLBACK_GEOCODED = "fallback_geocoded"
    UNRESOLVED = "unresolved"


# ── Coordinates & thresholds ──────────────────────────────────────────

class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)


class TierThresholds(BaseModel):
    """Inclusive upper bounds (km) for the close and medium tiers."""
    model_config = ConfigDict(frozen=True)

    close_km: float = Field(240.0, gt=0)
    medium_km: float = Field(1600.0, gt=0)

    @model_validator(mode="after")
    def check_order(self) -> "TierThresholds":
        if self.medium_km < self.close_km:
            raise ValueError("medium_km must be >= close_km")
        return self


# ── Extraction & geocoding models ─────────────────────────────────────

class CandidateLocation(BaseModel):
    """A place mention pulled from article text, not yet geocoded."""
    model_config = ConfigDict(frozen=True)

    name: str
    mentions: int = Field(..., ge=1)
    confidence: float = Field(..., ge=0.0, le=1.0)
    is_domestic: bool = False


class ResolvedLocation(BaseModel):
    """A geocoded place with coordinates and administrative metadata."""
    model_config = ConfigDict(frozen=True)

    name: str
    latitude: float
    longitude: float
    postal_code: str = POSTAL_CODE_SENTINEL
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    formatted_address: Optional[str] = None
    is_domestic: bool = False

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(latitude=self.latitude, longitude=self.longitude)


class ProviderResult(BaseModel):
    """One raw match as returned by a geocoding provider."""
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    formatted_address: Optional[str] = None


class DistanceResult(BaseModel):
    meters: float
    kilometers: float
    miles: float
    tier: Tier
    origin: Optional[ResolvedLocation] = None
    destination: Optional[ResolvedLocation] = None


# ── Article location (tagged union) ───────────────────────────────────

class LocationHint(BaseModel):
    """Bare display string as supplied by a content source (pre-resolution)."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["hint"] = "hint"
    name: str = ""


class StructuredLocation(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: Literal["structured"] = "structured"
    display_name: str = Field(..., alias="displayName")
    latitude: float
    longitude: float
    postal_code: str = Field(POSTAL_CODE_SENTINEL, alias="postalCode")


class UnresolvedLocation(BaseModel):
    """The canonical zero-coordinate location meaning "could not determine"."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: Literal["unresolved"] = "unresolved"
    display_name: str = Field(UNKNOWN_LOCATION_NAME, alias="displayName")
    latitude: float = 0.0
    longitude: float = 0.0
    postal_code: str = Field(POSTAL_CODE_SENTINEL, alias="postalCode")

    @field_validator("latitude", "longitude")
    @classmethod
    def must_be_zero(cls, v: float) -> float:
        if v != 0:
            raise ValueError("unresolved locations carry zero coordinates")
        return v


ArticleLocation = Annotated[
    Union[LocationHint, StructuredLocation, UnresolvedLocation],
    Field(discriminator="kind"),
]


def is_unresolved(location: Optional[ArticleLocation]) -> bool:
    """True when a location carries no usable coordinates."""
    if location is None or isinstance(location, (LocationHint, UnresolvedLocation)):
        return True
    return location.latitude == 0 and location.longitude == 0


# ── Articles ──────────────────────────────────────────────────────────

class Article(BaseModel):
    """An article as supplied by the content-fetch layer."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    title: str
    content: Optional[str] = None
    source_url: Optional[str] = Field(None, alias="sourceUrl")
    source: str = "unknown"
    location: ArticleLocation = Field(default_factory=LocationHint)

    @field_validator("location", mode="before")
    @classmethod
    def coerce_location(cls, v):
        """location can arrive as a bare string, a legacy dict, or a model."""
        if v is None:
            return {"kind": "hint", "name": ""}
        if isinstance(v, str):
            return {"kind": "hint", "name": v.strip()}
        if isinstance(v, dict) and "kind" not in v:
            data = dict(v)
            # Older records stored the display name under "location"
            if "displayName" not in data and "display_name" not in data:
                data["displayName"] = data.pop("location", UNKNOWN_LOCATION_NAME)
            lat = data.get("latitude") or 0
            lon = data.get("longitude") or 0
            data["latitude"], data["longitude"] = lat, lon
            data["kind"] = "unresolved" if lat == 0 and lon == 0 else "structured"
            return data
        return v

    @property
    def location_hint(self) -> str:
        """The best display name currently attached to the article."""
        if isinstance(self.location, LocationHint):
            return self.location.name
        return self.location.display_name


class ExtractionOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_confidence: float = Field(0.3, ge=0.0, le=1.0)
    fetch_full_content_allowed: bool = True
    default_postal_code: str = POSTAL_CODE_SENTINEL
    # Place domestic names from gazetteer coordinates when geocoding fails
    offline_fallback: bool = False


class ArticleResolution(BaseModel):
    """How the orchestrator resolved one article."""
    article: Article
    state: ResolutionState
    candidate: Optional[CandidateLocation] = None
    used_full_text: bool = False
    # Every state passed through, terminal state last
    path: list[ResolutionState] = Field(default_factory=list)


class TieredArticle(BaseModel):
    """Request-time view of an article relative to the current reader."""
    article: Article
    tier: Tier = Tier.UNKNOWN
    distance: Optional[DistanceResult] = None
