"""
Shared fixtures. Everything here is in-memory: no network, no spaCy model.
"""

from __future__ import annotations

import pytest

from orbital_geo.errors import GeocodingUnavailable
from orbital_geo.extract import GazetteerPlaceTagger, PlaceExtractor
from orbital_geo.gazetteer import DomesticGazetteer
from orbital_geo.geocode import GeocodingClient
from orbital_geo.models import ProviderResult
from orbital_geo.pipeline import ExtractionOrchestrator


def _us(lat, lng, state, city=None, postal_code=None):
    label = ", ".join(p for p in (city, state, "United States") if p)
    return ProviderResult(lat=lat, lng=lng, country="United States", state=state,
                          city=city, postal_code=postal_code, formatted_address=label)


KNOWN_PLACES = {
    "florida": [_us(27.7663, -81.6868, "Florida")],
    "oklahoma city": [_us(35.4676, -97.5164, "Oklahoma", "Oklahoma City", "73102")],
    "tulsa": [_us(36.1540, -95.9928, "Oklahoma", "Tulsa", "74103")],
    "norman": [_us(35.2226, -97.4395, "Oklahoma", "Norman")],
    "dallas": [_us(32.7767, -96.7970, "Texas", "Dallas", "75201")],
    "73102": [_us(35.4676, -97.5164, "Oklahoma", "Oklahoma City", "73102")],
    "75201": [_us(32.7767, -96.7970, "Texas", "Dallas", "75201")],
    "london": [ProviderResult(lat=51.5074, lng=-0.1278, country="United Kingdom",
                              city="London", formatted_address="London, United Kingdom")],
    "paris": [
        ProviderResult(lat=48.8566, lng=2.3522, country="France", city="Paris",
                       formatted_address="Paris, France"),
        _us(33.6609, -95.5555, "Texas", "Paris", "75460"),
    ],
}


class FakeProvider:
    """Dictionary-backed provider. Names in `errors` fail like a dead network."""

    name = "fake"

    def __init__(self, results=None, errors=()):
        self.results = {k.lower(): v for k, v in (results or {}).items()}
        self.errors = {e.lower() for e in errors}
        self.calls: list[str] = []

    async def search(self, query):
        self.calls.append(query)
        if query.lower() in self.errors:
            raise GeocodingUnavailable(query, "transport error: simulated")
        return list(self.results.get(query.lower(), []))

    async def aclose(self):
        pass


class FakeTagger:
    """Yields a fixed list of mentions regardless of the text."""

    def __init__(self, mentions=(), error=None):
        self.mentions = list(mentions)
        self.error = error

    def tag(self, text):
        if self.error is not None:
            raise self.error
        return iter(self.mentions)


class FakeFetcher:
    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.calls: list[str] = []

    async def fetch(self, url):
        self.calls.append(url)
        return self.pages.get(url, "")

    async def aclose(self):
        pass


@pytest.fixture(scope="session")
def gazetteer():
    return DomesticGazetteer.from_file()


@pytest.fixture
def extractor(gazetteer):
    return PlaceExtractor(GazetteerPlaceTagger.from_gazetteer(gazetteer), gazetteer)


@pytest.fixture
def provider():
    return FakeProvider(KNOWN_PLACES)


@pytest.fixture
def geocoder(provider, gazetteer):
    return GeocodingClient(provider, gazetteer=gazetteer, timeout_seconds=2.0)


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def orchestrator(extractor, geocoder, fetcher, gazetteer):
    return ExtractionOrchestrator(extractor, geocoder, fetcher, gazetteer, max_concurrency=2)
