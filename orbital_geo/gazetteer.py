"""
Domestic (US) gazetteer used to validate and normalize candidate place names.

Design:
  - Loaded once from data/us_locations.json (states, cities, aliases).
  - Four lookup indexes: state-by-name, state-by-code, city-by-"city, state",
    alias-by-name. All keys are lowercase.
  - Pure lookups after load: no network, no mutation.

validate() resolution order:
  1. alias table (target validated recursively)
  2. exact "city, state" key
  3. exact state name
  4. "City, ST" / "City, State" parse with state cross-reference
  5. city name alone (first city in dataset order)
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional

from orbital_geo.models import POSTAL_CODE_SENTINEL, ResolvedLocation

logger = logging.getLogger(__name__)

DATA_PATH = Path(__file__).parent / "data" / "us_locations.json"

DOMESTIC_COUNTRY_NAME = "United States"

# Names for the country itself. Domestic, but not a place validate() can pin down.
NATIONAL_NAMES = frozenset({
    "united states", "united states of america", "usa", "u.s.", "u.s.a.", "us", "america",
})


@dataclass(frozen=True)
class Place:
    name: str
    latitude: float
    longitude: float
    state: Optional[str] = None        # full state name; equals name for states
    state_code: Optional[str] = None
    capital: Optional[str] = None
    population: Optional[int] = None
    postal_codes: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_state(self) -> bool:
        return self.state == self.name and self.capital is not None

    @property
    def display_name(self) -> str:
        if not self.state or self.is_state:
            return self.name
        return f"{self.name}, {self.state}"


def _normalize(name: str) -> str:
    return re.sub(r"\s+", " ", name.strip().lower())


class DomesticGazetteer:
    """In-memory lookup of US states, cities and aliases."""

    def __init__(self, data: dict):
        self._states_by_name: dict[str, Place] = {}
        self._states_by_code: dict[str, Place] = {}
        self._cities: dict[str, Place] = {}
        self._aliases: dict[str, str] = {}

        for row in data.get("states", []):
            place = Place(
                name=row["name"],
                latitude=float(row["latitude"]),
                longitude=float(row["longitude"]),
                state=row["name"],
                state_code=row.get("code"),
                capital=row.get("capital"),
            )
            self._states_by_name[_normalize(place.name)] = place
            if place.state_code:
                self._states_by_code[place.state_code.upper()] = place

        for row in data.get("cities", []):
            state = row.get("state")
            if not state:
                logger.warning("Skipping city without state: %s", row.get("name"))
                continue
            place = Place(
                name=row["name"],
                latitude=float(row["latitude"]),
                longitude=float(row["longitude"]),
                state=state,
                state_code=row.get("stateCode"),
                population=row.get("population"),
                postal_codes=tuple(row.get("zipCodes", ())),
            )
            self._cities[f"{_normalize(place.name)}, {_normalize(state)}"] = place

        for alias, target in data.get("aliases", {}).items():
            self._aliases[_normalize(alias)] = _normalize(target)

        logger.info("Loaded gazetteer: %d states, %d cities, %d aliases",
                    len(self._states_by_name), len(self._cities), len(self._aliases))

    @classmethod
    def from_file(cls, path: Path = DATA_PATH) -> "DomesticGazetteer":
        with path.open("r", encoding="utf-8") as f:
            return cls(json.load(f))

    # ── Lookups ───────────────────────────────────────────────────────

    def validate(self, name: str) -> Optional[Place]:
        """Validate and normalize a US place name. Returns None if unknown."""
        if not name or not name.strip():
            return None
        return self._validate(_normalize(name), depth=0)

    def _validate(self, key: str, depth: int) -> Optional[Place]:
        alias_target = self._aliases.get(key)
        if alias_target is not None and depth < 3:
            return self._validate(alias_target, depth + 1)

        if key in self._cities:
            return self._cities[key]

        if key in self._states_by_name:
            return self._states_by_name[key]

        parts = [p.strip() for p in key.split(",")]
        if len(parts) == 2 and parts[0] and parts[1]:
            city_name, state_part = parts
            state = self._states_by_name.get(state_part)
            if state is None and len(state_part) == 2:
                state = self._states_by_code.get(state_part.upper())
            if state is not None:
                city = self._cities.get(f"{city_name}, {_normalize(state.name)}")
                if city is not None:
                    return city

        for city_key, city in self._cities.items():
            if city_key.split(",")[0] == key:
                return city

        return None

    def lookup_by_postal_code(self, code: str) -> Optional[Place]:
        code = (code or "").strip()
        if not code:
            return None
        for city in self._cities.values():
            if code in city.postal_codes:
                return city
        return None

    def is_domestic(self, name: str) -> bool:
        if not name:
            return False
        return _normalize(name) in NATIONAL_NAMES or self.validate(name) is not None

    def to_resolved(self, name: str) -> Optional[ResolvedLocation]:
        """Offline resolution of a domestic name from gazetteer coordinates."""
        place = self.validate(name)
        if place is None:
            return None
        return ResolvedLocation(
            name=place.display_name,
            latitude=place.latitude,
            longitude=place.longitude,
            postal_code=place.postal_codes[0] if place.postal_codes else POSTAL_CODE_SENTINEL,
            city=None if place.is_state else place.name,
            region=place.state,
            country=DOMESTIC_COUNTRY_NAME,
            formatted_address=f"{place.display_name}, USA",
            is_domestic=True,
        )

    # ── Listing ───────────────────────────────────────────────────────

    def all_states(self) -> list[Place]:
        return list(self._states_by_name.values())

    def cities_in_state(self, state_name_or_code: str) -> list[Place]:
        key = _normalize(state_name_or_code or "")
        state = self._states_by_name.get(key) or self._states_by_code.get(key.upper())
        if state is None:
            return []
        return [c for c in self._cities.values() if c.state_code == state.state_code]

    def surface_forms(self) -> set[str]:
        """Every lowercase name a text tagger should recognise as domestic."""
        forms: set[str] = set(self._states_by_name) | set(self._aliases)
        forms.update(c.name.lower() for c in self._cities.values())
        return forms


@lru_cache(maxsize=1)
def get_gazetteer() -> DomesticGazetteer:
    """Process-wide, load-once gazetteer."""
    return DomesticGazetteer.from_file()
