"""
Geocoding client with provider fallback policy, rate limiting and distances.

Strategy:
  1. Reject empty names and the reserved "global" sentinel without a call
  2. Query the configured provider (Nominatim, Google or ArcGIS), retrying
     with exponential backoff on rate limits and transport errors
  3. Prefer a domestic (US) match when the provider returns several
  4. Convert to a ResolvedLocation; the postal code defaults to "00000"

lookup() raises GeocodingUnavailable when the provider errors and returns
None when it simply has no match. geocode() folds both into None.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Protocol

import httpx

from orbital_geo.config import GeocodingConfig, Settings, get_settings
from orbital_geo.distance import TierClassifier, build_distance_result, haversine_meters
from orbital_geo.errors import GeocodingUnavailable
from orbital_geo.gazetteer import DomesticGazetteer
from orbital_geo.models import (
    POSTAL_CODE_SENTINEL,
    Coordinates,
    DistanceResult,
    ProviderResult,
    ResolvedLocation,
    Tier,
    TierThresholds,
)

logger = logging.getLogger(__name__)

GLOBAL_SENTINEL = "global"
DOMESTIC_COUNTRIES = frozenset({"United States", "USA", "US"})
DEFAULT_READER_LOCATION = Coordinates(latitude=35.4676, longitude=-97.5164)  # Oklahoma City


def is_domestic_country(country: Optional[str]) -> bool:
    return country in DOMESTIC_COUNTRIES


# ── Rate Limiter ───────────────────────────────────────────────────────

class RateLimiter:
    """Minimum-interval rate limiter for provider calls. rate <= 0 disables it."""

    def __init__(self, rate_per_second: float = 1.0):
        self._interval = 1.0 / rate_per_second if rate_per_second > 0 else 0.0
        self._lock = asyncio.Lock()
        self._last_call = 0.0

    async def acquire(self):
        if self._interval <= 0:
            return
        async with self._lock:
            loop = asyncio.get_running_loop()
            elapsed = loop.time() - self._last_call
            if elapsed < self._interval:
                await asyncio.sleep(self._interval - elapsed)
            self._last_call = loop.time()


# ── Token Cache ────────────────────────────────────────────────────────

class TokenCache:
    """
    Access token with an expiry deadline.

    Refresh is single-flight: concurrent callers that find the token stale
    queue on one lock, the first performs the refresh and the rest reuse it.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[tuple[str, float]]],
        skew_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self._skew = skew_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._token: Optional[str] = None
        self._expires_at = 0.0

    def _is_fresh(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    async def get(self) -> str:
        if self._is_fresh():
            return self._token
        async with self._lock:
            if not self._is_fresh():
                token, ttl = await self._fetch()
                self._token = token
                self._expires_at = self._clock() + max(ttl - self._skew, ttl / 2)
                logger.debug("Provider token refreshed (ttl=%.0fs)", ttl)
        return self._token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0


# ── Providers ──────────────────────────────────────────────────────────

class GeocodingProvider(Protocol):
    name: str

    async def search(self, query: str) -> list[ProviderResult]:
        """All matches for a free-text query. Raises GeocodingUnavailable."""

    async def aclose(self) -> None:
        ...


class _HTTPProvider:
    """Shared HTTP plumbing: rate limiting, retries, backoff, error mapping."""

    name = "http"

    def __init__(self, settings: GeocodingConfig, http_client: Optional[httpx.AsyncClient] = None,
                 rate_limit_rps: Optional[float] = None):
        self.settings = settings
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=settings.timeout_seconds)
        rps = settings.rate_limit_rps if rate_limit_rps is None else rate_limit_rps
        self.rate_limiter = RateLimiter(rps)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _request_json(self, query: str, method: str, url: str, **kwargs):
        attempts = max(1, self.settings.max_retries)
        for attempt in range(attempts):
            await self.rate_limiter.acquire()
            try:
                resp = await self._http.request(method, url, **kwargs)
                resp.raise_for_status()
                return resp.json()

            except httpx.HTTPStatusError as e:
                if e.response.status_code == 429 and attempt + 1 < attempts:
                    wait = self.settings.backoff_base ** (attempt + 1)
                    logger.warning("%s rate limited, backing off %.1fs", self.name, wait)
                    await asyncio.sleep(wait)
                    continue
                raise GeocodingUnavailable(query, f"HTTP {e.response.status_code}") from e

            except httpx.RequestError as e:
                if attempt + 1 < attempts:
                    wait = self.settings.backoff_base ** (attempt + 1)
                    logger.warning("%s request error (attempt %d/%d): %s, backing off %.1fs",
                                   self.name, attempt + 1, attempts, e, wait)
                    await asyncio.sleep(wait)
                    continue
                raise GeocodingUnavailable(query, f"transport error: {e!r}") from e

            except ValueError as e:
                raise GeocodingUnavailable(query, "response is not JSON") from e

        raise GeocodingUnavailable(query, f"all {attempts} attempts exhausted")


class NominatimProvider(_HTTPProvider):
    """OpenStreetMap Nominatim (free, 1 req/sec limit)."""

    name = "nominatim"

    async def search(self, query: str) -> list[ProviderResult]:
        payload = await self._request_json(
            query,
            "GET",
            f"{self.settings.nominatim_url}/search",
            params={
                "q": query,
                "format": "jsonv2",
                "limit": self.settings.max_results,
                "addressdetails": 1,
                "accept-language": "en",
            },
            headers={"User-Agent": self.settings.nominatim_user_agent},
        )
        if not isinstance(payload, list):
            raise GeocodingUnavailable(query, "malformed Nominatim payload")

        try:
            results = []
            for row in payload:
                address = row.get("address") or {}
                results.append(ProviderResult(
                    lat=float(row["lat"]),
                    lng=float(row["lon"]),
                    country=address.get("country"),
                    state=address.get("state"),
                    city=(address.get("city") or address.get("town")
                          or address.get("village") or address.get("hamlet")),
                    postal_code=address.get("postcode"),
                    formatted_address=row.get("display_name"),
                ))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise GeocodingUnavailable(query, "malformed Nominatim result") from e
        return results


class GoogleProvider(_HTTPProvider):
    """Google Maps Geocoding API (paid, high rate limits)."""

    name = "google"
    URL = "https://maps.googleapis.com/maps/api/geocode/json"

    def __init__(self, settings: GeocodingConfig, http_client: Optional[httpx.AsyncClient] = None):
        if not settings.google_api_key:
            raise ValueError("GOOGLE_GEOCODING_KEY is not set")
        super().__init__(settings, http_client, rate_limit_rps=0)

    async def search(self, query: str) -> list[ProviderResult]:
        data = await self._request_json(
            query, "GET", self.URL,
            params={"address": query, "key": self.settings.google_api_key},
        )
        if not isinstance(data, dict):
            raise GeocodingUnavailable(query, "malformed Google payload")

        status = data.get("status")
        if status == "ZERO_RESULTS":
            return []
        if status != "OK":
            raise GeocodingUnavailable(query, f"Google status {status}")

        try:
            results = []
            for row in data.get("results", []):
                parts: dict[str, str] = {}
                for comp in row.get("address_components", []):
                    for kind in comp.get("types", []):
                        parts.setdefault(kind, comp.get("long_name"))
                loc = row["geometry"]["location"]
                results.append(ProviderResult(
                    lat=float(loc["lat"]),
                    lng=float(loc["lng"]),
                    country=parts.get("country"),
                    state=parts.get("administrative_area_level_1"),
                    city=parts.get("locality") or parts.get("postal_town"),
                    postal_code=parts.get("postal_code"),
                    formatted_address=row.get("formatted_address"),
                ))
        except (KeyError, TypeError, ValueError) as e:
            raise GeocodingUnavailable(query, "malformed Google result") from e
        return results


class ArcGISProvider(_HTTPProvider):
    """ArcGIS World Geocoding Service, authenticated with an OAuth app token."""

    name = "arcgis"
    OUT_FIELDS = "PlaceName,City,Region,Postal,CntryName,Country,LongLabel"

    def __init__(self, settings: GeocodingConfig, http_client: Optional[httpx.AsyncClient] = None,
                 clock: Callable[[], float] = time.monotonic):
        if not (settings.arcgis_client_id and settings.arcgis_client_secret):
            raise ValueError("ARCGIS_CLIENT_ID and ARCGIS_CLIENT_SECRET must be set")
        super().__init__(settings, http_client, rate_limit_rps=0)
        self.tokens = TokenCache(self._fetch_token, settings.token_expiry_skew, clock)

    async def _fetch_token(self) -> tuple[str, float]:
        data = await self._request_json(
            "<token>", "POST", self.settings.arcgis_token_url,
            data={
                "client_id": self.settings.arcgis_client_id,
                "client_secret": self.settings.arcgis_client_secret,
                "grant_type": "client_credentials",
                "f": "json",
            },
        )
        if not isinstance(data, dict) or "access_token" not in data:
            raise GeocodingUnavailable("<token>", "token request rejected")
        return data["access_token"], float(data.get("expires_in", 7200))

    async def search(self, query: str) -> list[ProviderResult]:
        token = await self.tokens.get()
        data = await self._request_json(
            query, "GET", self.settings.arcgis_geocode_url,
            params={
                "SingleLine": query,
                "f": "json",
                "outFields": self.OUT_FIELDS,
                "maxLocations": self.settings.max_results,
                "token": token,
            },
        )
        if not isinstance(data, dict):
            raise GeocodingUnavailable(query, "malformed ArcGIS payload")
        if "error" in data:
            code = (data.get("error") or {}).get("code")
            if code in (498, 499):
                self.tokens.invalidate()
            raise GeocodingUnavailable(query, f"ArcGIS error {code}")

        try:
            results = []
            for row in data.get("candidates", []):
                attrs = row.get("attributes") or {}
                results.append(ProviderResult(
                    lat=float(row["location"]["y"]),
                    lng=float(row["location"]["x"]),
                    country=attrs.get("CntryName") or attrs.get("Country"),
                    state=attrs.get("Region") or None,
                    city=attrs.get("City") or None,
                    postal_code=attrs.get("Postal") or None,
                    formatted_address=attrs.get("LongLabel") or row.get("address"),
                ))
        except (KeyError, TypeError, ValueError) as e:
            raise GeocodingUnavailable(query, "malformed ArcGIS result") from e
        return results


def get_provider(settings: GeocodingConfig | None = None,
                 http_client: Optional[httpx.AsyncClient] = None) -> GeocodingProvider:
    """Factory: return the configured provider instance."""
    settings = settings or get_settings().geocoding
    if settings.provider == "google":
        return GoogleProvider(settings, http_client)
    if settings.provider == "arcgis":
        return ArcGISProvider(settings, http_client)
    return NominatimProvider(settings, http_client)


# ── Client ─────────────────────────────────────────────────────────────

class GeocodingClient:
    """Resolves place names and measures distances from the reader."""

    def __init__(
        self,
        provider: GeocodingProvider,
        classifier: Optional[TierClassifier] = None,
        reader_location: Coordinates = DEFAULT_READER_LOCATION,
        reader_postal_code: str = POSTAL_CODE_SENTINEL,
        prefer_domestic: bool = True,
        timeout_seconds: float = 10.0,
        gazetteer: Optional[DomesticGazetteer] = None,
    ):
        self.provider = provider
        self.classifier = classifier or TierClassifier()
        self.prefer_domestic = prefer_domestic
        self.timeout_seconds = timeout_seconds
        self.gazetteer = gazetteer
        self._reader_location = reader_location
        self._reader_postal_code = reader_postal_code

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        http_client: Optional[httpx.AsyncClient] = None,
        gazetteer: Optional[DomesticGazetteer] = None,
    ) -> "GeocodingClient":
        settings = settings or get_settings()
        thresholds = TierThresholds(close_km=settings.tiers.close_km,
                                    medium_km=settings.tiers.medium_km)
        return cls(
            provider=get_provider(settings.geocoding, http_client),
            classifier=TierClassifier(thresholds),
            reader_location=Coordinates(latitude=settings.reader.latitude,
                                        longitude=settings.reader.longitude),
            reader_postal_code=settings.reader.postal_code,
            prefer_domestic=settings.geocoding.prefer_domestic,
            timeout_seconds=settings.geocoding.timeout_seconds,
            gazetteer=gazetteer,
        )

    async def aclose(self) -> None:
        await self.provider.aclose()

    # ── Geocoding ──────────────────────────────────────────────────────

    async def lookup(self, name: str) -> Optional[ResolvedLocation]:
        """
        Resolve a name. None means the provider had no match; provider
        failures raise GeocodingUnavailable.
        """
        query = " ".join((name or "").split())
        if not query or query.lower() == GLOBAL_SENTINEL:
            return None

        try:
            results = await asyncio.wait_for(self.provider.search(query), self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise GeocodingUnavailable(query, f"timed out after {self.timeout_seconds}s") from e

        if not results:
            logger.debug("%s: no results for '%s'", self.provider.name, query)
            return None

        chosen = self._choose(results)
        if chosen is not results[0]:
            logger.debug("Preferring domestic result for '%s'", query)
        return ResolvedLocation(
            name=query,
            latitude=chosen.lat,
            longitude=chosen.lng,
            postal_code=chosen.postal_code or POSTAL_CODE_SENTINEL,
            city=chosen.city,
            region=chosen.state,
            country=chosen.country,
            formatted_address=chosen.formatted_address,
            is_domestic=is_domestic_country(chosen.country),
        )

    async def geocode(self, name: str) -> Optional[ResolvedLocation]:
        """Resolve a name; any failure is logged and returned as None."""
        try:
            return await self.lookup(name)
        except GeocodingUnavailable as e:
            logger.warning("%s", e)
            return None
        except Exception as e:
            logger.error("Unexpected geocoding error for '%s': %s", name, e, exc_info=True)
            return None

    def _choose(self, results: list[ProviderResult]) -> ProviderResult:
        if self.prefer_domestic and len(results) > 1:
            for result in results:
                if is_domestic_country(result.country):
                    return result
        return results[0]

    def set_prefer_domestic(self, enabled: bool) -> None:
        self.prefer_domestic = enabled
        logger.info("Domestic result preference %s", "enabled" if enabled else "disabled")

    # ── Reader location ────────────────────────────────────────────────

    @property
    def reader_location(self) -> Coordinates:
        return self._reader_location

    @property
    def reader_postal_code(self) -> str:
        return self._reader_postal_code

    def set_reader_location(self, coordinates: Coordinates) -> None:
        self._reader_location = coordinates
        logger.info("Reader location set to %.4f, %.4f",
                    coordinates.latitude, coordinates.longitude)

    async def set_reader_postal_code(self, postal_code: str) -> bool:
        """Point the reader at a postal code. Returns False if it cannot be placed."""
        resolved = await self.geocode(postal_code)
        if resolved is not None and not (resolved.latitude == 0 and resolved.longitude == 0):
            coords, label = resolved.coordinates, resolved.formatted_address or resolved.name
        else:
            place = self.gazetteer.lookup_by_postal_code(postal_code) if self.gazetteer else None
            if place is None:
                logger.warning("Could not resolve reader postal code %s", postal_code)
                return False
            coords = Coordinates(latitude=place.latitude, longitude=place.longitude)
            label = place.display_name

        self._reader_location = coords
        self._reader_postal_code = postal_code
        logger.info("Reader location set to %s by postal code %s", label, postal_code)
        return True

    # ── Distances ──────────────────────────────────────────────────────

    @staticmethod
    def distance(a: Coordinates, b: Coordinates) -> float:
        """Great-circle distance in meters."""
        return haversine_meters(a, b)

    def determine_tier_from_distance(self, km: float) -> Tier:
        return self.classifier.classify(km)

    async def distance_from(self, name: str,
                            origin: Optional[Coordinates] = None) -> Optional[DistanceResult]:
        destination = await self.geocode(name)
        if destination is None:
            return None
        meters = self.distance(origin or self._reader_location, destination.coordinates)
        return build_distance_result(meters, self.classifier, destination=destination)

    async def distance_between(self, from_postal_code: str,
                               to_postal_code: str) -> Optional[DistanceResult]:
        origin = await self.geocode(from_postal_code)
        destination = await self.geocode(to_postal_code)
        if origin is None or destination is None:
            return None
        meters = self.distance(origin.coordinates, destination.coordinates)
        return build_distance_result(meters, self.classifier, origin=origin, destination=destination)
