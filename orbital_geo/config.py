"""
Central configuration loaded from environment variables with sensible defaults.
All secrets come from env vars; no hardcoded credentials.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class GeocodingConfig:
    provider: str = os.getenv("GEOCODER_PROVIDER", "nominatim")  # nominatim | google | arcgis
    nominatim_url: str = os.getenv("NOMINATIM_URL", "https://nominatim.openstreetmap.org")
    nominatim_user_agent: str = os.getenv("NOMINATIM_USER_AGENT", "orbital-geo/0.1")
    google_api_key: str = os.getenv("GOOGLE_GEOCODING_KEY", "")
    arcgis_client_id: str = os.getenv("ARCGIS_CLIENT_ID", "")
    arcgis_client_secret: str = os.getenv("ARCGIS_CLIENT_SECRET", "")
    arcgis_token_url: str = os.getenv(
        "ARCGIS_TOKEN_URL", "https://www.arcgis.com/sharing/rest/oauth2/token"
    )
    arcgis_geocode_url: str = os.getenv(
        "ARCGIS_GEOCODE_URL",
        "https://geocode-api.arcgis.com/arcgis/rest/services/World/GeocodeServer/findAddressCandidates",
    )
    # Rate limiting (0 disables)
    rate_limit_rps: float = float(os.getenv("GEOCODER_RATE_LIMIT", "1.0"))  # Nominatim wants <=1/s
    max_retries: int = int(os.getenv("GEOCODER_MAX_RETRIES", "3"))
    backoff_base: float = float(os.getenv("GEOCODER_BACKOFF_BASE", "2.0"))
    # Upper bound on a single geocode call, retries included
    timeout_seconds: float = float(os.getenv("GEOCODER_TIMEOUT", "10"))
    max_results: int = int(os.getenv("GEOCODER_MAX_RESULTS", "5"))
    prefer_domestic: bool = _env_bool("GEOCODER_PREFER_DOMESTIC", "true")
    # Refresh provider tokens this many seconds before they expire
    token_expiry_skew: float = float(os.getenv("GEOCODER_TOKEN_SKEW", "60"))


@dataclass(frozen=True)
class TierConfig:
    close_km: float = float(os.getenv("TIER_CLOSE_KM", "240"))  # ~150 mi
    medium_km: float = float(os.getenv("TIER_MEDIUM_KM", "1600"))  # ~1000 mi


@dataclass(frozen=True)
class ReaderConfig:
    # Oklahoma City (central US)
    latitude: float = float(os.getenv("READER_LATITUDE", "35.4676"))
    longitude: float = float(os.getenv("READER_LONGITUDE", "-97.5164"))
    postal_code: str = os.getenv("READER_POSTAL_CODE", "00000")


@dataclass(frozen=True)
class ExtractionConfig:
    tagger: str = os.getenv("PLACE_TAGGER", "spacy")  # spacy | gazetteer
    spacy_model: str = os.getenv("SPACY_MODEL", "en_core_web_sm")
    min_confidence: float = float(os.getenv("EXTRACT_MIN_CONFIDENCE", "0.3"))
    fetch_full_content: bool = _env_bool("EXTRACT_FETCH_FULL_CONTENT", "true")
    default_postal_code: str = os.getenv("EXTRACT_DEFAULT_POSTAL_CODE", "00000")
    # Confidence heuristics. These are tunables, not derived constants.
    mention_weight: float = float(os.getenv("SCORE_MENTION_WEIGHT", "0.7"))
    country_bonus: float = float(os.getenv("SCORE_COUNTRY_BONUS", "0.1"))
    length_divisor: float = float(os.getenv("SCORE_LENGTH_DIVISOR", "20"))
    length_cap: float = float(os.getenv("SCORE_LENGTH_CAP", "0.2"))
    domestic_bonus: float = float(os.getenv("SCORE_DOMESTIC_BONUS", "0.3"))


@dataclass(frozen=True)
class FetchConfig:
    timeout_seconds: float = float(os.getenv("FETCH_TIMEOUT", "5"))
    user_agent: str = os.getenv(
        "FETCH_USER_AGENT",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    )


@dataclass(frozen=True)
class PipelineConfig:
    max_concurrency: int = int(os.getenv("PIPELINE_MAX_CONCURRENCY", "8"))


@dataclass(frozen=True)
class Settings:
    geocoding: GeocodingConfig = field(default_factory=GeocodingConfig)
    tiers: TierConfig = field(default_factory=TierConfig)
    reader: ReaderConfig = field(default_factory=ReaderConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    env: str = os.getenv("APP_ENV", "development")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
