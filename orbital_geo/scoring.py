"""Confidence scoring and ordering for extracted place mentions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from orbital_geo.config import ExtractionConfig
from orbital_geo.models import CandidateLocation

KNOWN_COUNTRIES = frozenset({
    "united states", "usa", "u.s.", "u.s.a.", "america",
    "canada", "mexico", "uk", "united kingdom", "england", "britain",
    "france", "germany", "italy", "spain", "portugal", "ireland",
    "china", "japan", "india", "pakistan", "australia", "russia", "ukraine",
    "brazil", "argentina", "colombia", "venezuela", "cuba", "haiti",
    "israel", "iran", "iraq", "syria", "egypt", "turkey", "saudi arabia",
    "south africa", "nigeria", "kenya", "north korea", "south korea",
    "taiwan", "philippines", "indonesia", "vietnam", "poland", "greece",
})


@dataclass(frozen=True)
class ScoringWeights:
    mention_weight: float = 0.7
    country_bonus: float = 0.1
    length_divisor: float = 20.0
    length_cap: float = 0.2
    domestic_bonus: float = 0.3

    @classmethod
    def from_config(cls, cfg: ExtractionConfig) -> "ScoringWeights":
        return cls(
            mention_weight=cfg.mention_weight,
            country_bonus=cfg.country_bonus,
            length_divisor=cfg.length_divisor,
            length_cap=cfg.length_cap,
            domestic_bonus=cfg.domestic_bonus,
        )


class ConfidenceScorer:
    """
    confidence = min(1, w_m * mentions/total + country + length + domestic)

    The weights are heuristics with no documented derivation; keep them
    configurable rather than treating them as optimal.
    """

    def __init__(self, weights: ScoringWeights | None = None):
        self.weights = weights or ScoringWeights()

    def score(self, name: str, mentions: int, total_mentions: int, is_domestic: bool) -> float:
        w = self.weights
        key = name.strip().lower()
        mention_score = mentions / total_mentions if total_mentions > 0 else 0.0
        country = w.country_bonus if key in KNOWN_COUNTRIES else 0.0
        length = min(len(key) / w.length_divisor, w.length_cap) if w.length_divisor > 0 else 0.0
        domestic = w.domestic_bonus if is_domestic else 0.0

        raw = mention_score * w.mention_weight + country + length + domestic
        return round(max(0.0, min(raw, 1.0)), 2)

    @staticmethod
    def rank(candidates: Iterable[CandidateLocation]) -> list[CandidateLocation]:
        """Domestic first, then confidence descending. Stable on ties."""
        return sorted(candidates, key=lambda c: (not c.is_domestic, -c.confidence))
