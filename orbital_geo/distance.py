"""Great-circle distance and distance-to-tier classification."""

from __future__ import annotations

import math
from typing import Optional

from orbital_geo.errors import InvalidDistance
from orbital_geo.models import Coordinates, DistanceResult, ResolvedLocation, Tier, TierThresholds

EARTH_RADIUS_M = 6_371_008.8
MILES_PER_KM = 0.621371


def haversine_meters(a: Coordinates, b: Coordinates) -> float:
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    delta_phi = math.radians(b.latitude - a.latitude)
    delta_lambda = math.radians(b.longitude - a.longitude)

    h = (math.sin(delta_phi / 2.0) ** 2
         + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2.0) ** 2)
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


class TierClassifier:
    """Maps kilometers to a tier. Thresholds are inclusive upper bounds."""

    def __init__(self, thresholds: TierThresholds | None = None):
        self.thresholds = thresholds or TierThresholds()

    def classify(self, km: float) -> Tier:
        if km is None or math.isnan(km) or math.isinf(km) or km < 0:
            raise InvalidDistance(km)
        if km <= self.thresholds.close_km:
            return Tier.CLOSE
        if km <= self.thresholds.medium_km:
            return Tier.MEDIUM
        return Tier.FAR


def build_distance_result(
    meters: float,
    classifier: TierClassifier,
    origin: Optional[ResolvedLocation] = None,
    destination: Optional[ResolvedLocation] = None,
) -> DistanceResult:
    km = meters / 1000.0
    return DistanceResult(
        meters=meters,
        kilometers=km,
        miles=km * MILES_PER_KM,
        tier=classifier.classify(km),
        origin=origin,
        destination=destination,
    )
