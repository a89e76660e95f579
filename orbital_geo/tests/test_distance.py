"""
Tests for great-circle distance and tier classification.
"""

from __future__ import annotations

import math

import pytest

from orbital_geo.distance import TierClassifier, build_distance_result, haversine_meters
from orbital_geo.errors import InvalidDistance
from orbital_geo.models import Coordinates, Tier, TierThresholds

OKC = Coordinates(latitude=35.4676, longitude=-97.5164)
TULSA = Coordinates(latitude=36.1540, longitude=-95.9928)
DALLAS = Coordinates(latitude=32.7767, longitude=-96.7970)
FLORIDA = Coordinates(latitude=27.7663, longitude=-81.6868)


class TestHaversine:
    def test_zero(self):
        assert haversine_meters(OKC, OKC) == 0

    def test_symmetric(self):
        assert haversine_meters(OKC, DALLAS) == pytest.approx(haversine_meters(DALLAS, OKC))

    def test_known_distances(self):
        assert haversine_meters(OKC, TULSA) / 1000 == pytest.approx(157, abs=5)
        assert haversine_meters(OKC, DALLAS) / 1000 == pytest.approx(306, abs=5)

    def test_antipodes(self):
        a = Coordinates(latitude=0, longitude=0)
        b = Coordinates(latitude=0, longitude=180)
        assert haversine_meters(a, b) == pytest.approx(math.pi * 6_371_008.8)


class TestTierClassifier:
    def test_boundaries_are_inclusive(self):
        classifier = TierClassifier()
        assert classifier.classify(0) == Tier.CLOSE
        assert classifier.classify(240) == Tier.CLOSE
        assert classifier.classify(240.0001) == Tier.MEDIUM
        assert classifier.classify(1600) == Tier.MEDIUM
        assert classifier.classify(1600.0001) == Tier.FAR
        assert classifier.classify(20_000) == Tier.FAR

    @pytest.mark.parametrize("km", [float("nan"), float("inf"), -1, -0.001, None])
    def test_invalid(self, km):
        with pytest.raises(InvalidDistance):
            TierClassifier().classify(km)

    def test_invalid_distance_is_a_value_error(self):
        with pytest.raises(ValueError):
            TierClassifier().classify(-5)

    def test_custom_thresholds(self):
        classifier = TierClassifier(TierThresholds(close_km=10, medium_km=10))
        assert classifier.classify(10) == Tier.CLOSE
        assert classifier.classify(10.5) == Tier.FAR


class TestDistanceResult:
    def test_units_and_tier(self):
        result = build_distance_result(306_000, TierClassifier())
        assert result.kilometers == pytest.approx(306)
        assert result.miles == pytest.approx(190.14, abs=0.01)
        assert result.tier == Tier.MEDIUM

    def test_reader_scenarios(self):
        classifier = TierClassifier()
        assert classifier.classify(haversine_meters(OKC, TULSA) / 1000) == Tier.CLOSE
        # Dallas sits just outside the 240 km close radius
        assert classifier.classify(haversine_meters(OKC, DALLAS) / 1000) == Tier.MEDIUM
        assert classifier.classify(haversine_meters(OKC, FLORIDA) / 1000) == Tier.FAR
