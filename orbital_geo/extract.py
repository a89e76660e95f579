"""
Place extraction from free article text.

A tagger finds raw place mentions; the extractor tallies them per normalized
name, drops non-geographic words, scores each name and returns candidates
ordered domestic-first, then by confidence.

Taggers:
  - SpacyPlaceTagger: spaCy GPE/LOC entities (default).
  - GazetteerPlaceTagger: word-boundary regex over known place names. Works
    without a spaCy model; used when the model cannot be loaded.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from functools import lru_cache
from typing import Iterable, Optional, Protocol

import spacy

from orbital_geo.config import Settings, get_settings
from orbital_geo.gazetteer import DomesticGazetteer, get_gazetteer
from orbital_geo.models import CandidateLocation
from orbital_geo.scoring import KNOWN_COUNTRIES, ConfidenceScorer, ScoringWeights

logger = logging.getLogger(__name__)

# Words taggers sometimes label as places but which carry no geography
STOP_WORDS = frozenset({
    "here", "there", "everywhere", "nowhere", "somewhere",
    "home", "house", "building", "office", "headquarters",
    "online", "internet", "web", "website", "platform",
    "world", "earth", "globe", "universe", "space",
})

# Kept lowercase in display names unless they lead the name
LOWERCASE_WORDS = frozenset({"of", "the", "and", "in", "on", "at", "by", "for", "with"})

SPACY_PLACE_LABELS = frozenset({"GPE", "LOC"})

# Major non-US places recognised by the gazetteer tagger
WORLD_PLACES = frozenset({
    "london", "paris", "berlin", "madrid", "rome", "moscow", "kyiv", "beijing",
    "shanghai", "hong kong", "tokyo", "seoul", "delhi", "new delhi", "mumbai",
    "sydney", "melbourne", "toronto", "vancouver", "montreal", "mexico city",
    "jerusalem", "gaza", "tel aviv", "tehran", "baghdad", "cairo", "istanbul",
    "dubai", "lagos", "nairobi", "johannesburg", "rio de janeiro", "sao paulo",
    "buenos aires", "europe", "africa", "asia", "middle east", "latin america",
    "scotland", "wales", "northern ireland", "greenland", "puerto rico",
})

_POSSESSIVE = re.compile(r"(?:'s|’s|')$")


def normalize_mention(text: str) -> str:
    """Lowercase, trim, collapse whitespace, drop a leading 'the' and possessives."""
    name = re.sub(r"\s+", " ", text.strip().lower())
    name = _POSSESSIVE.sub("", name)
    if name.startswith("the "):
        name = name[4:]
    return name.strip(" ,;:!?\"()[]")


def capitalize_location(name: str) -> str:
    words = name.split(" ")
    out = []
    for i, word in enumerate(words):
        if i > 0 and word in LOWERCASE_WORDS:
            out.append(word)
        else:
            out.append(word[:1].upper() + word[1:])
    return " ".join(out)


# ── Taggers ────────────────────────────────────────────────────────────

class PlaceTagger(Protocol):
    def tag(self, text: str) -> Iterable[str]:
        """Yield every place mention found in text, one item per mention."""


@lru_cache(maxsize=4)
def get_nlp(model_name: str) -> "spacy.language.Language":
    """Load a spaCy pipeline once per model name."""
    logger.info("Loading spaCy model '%s'", model_name)
    return spacy.load(model_name, disable=["lemmatizer"])


class SpacyPlaceTagger:
    def __init__(self, nlp):
        self.nlp = nlp

    def tag(self, text: str) -> Iterable[str]:
        doc = self.nlp(text)
        for ent in doc.ents:
            if ent.label_ in SPACY_PLACE_LABELS:
                yield ent.text


class GazetteerPlaceTagger:
    """Match known place names. Only capitalized occurrences count as mentions."""

    MIN_FORM_LENGTH = 3

    def __init__(self, forms: Iterable[str]):
        usable = sorted(
            {f for f in forms if len(f) >= self.MIN_FORM_LENGTH},
            key=len,
            reverse=True,
        )
        alternation = "|".join(re.escape(f) for f in usable)
        self._pattern = re.compile(rf"(?<!\w)(?:{alternation})(?!\w)", re.IGNORECASE)

    @classmethod
    def from_gazetteer(cls, gazetteer: DomesticGazetteer) -> "GazetteerPlaceTagger":
        return cls(gazetteer.surface_forms() | KNOWN_COUNTRIES | WORLD_PLACES)

    def tag(self, text: str) -> Iterable[str]:
        for match in self._pattern.finditer(text):
            mention = match.group(0)
            if mention[0].isupper():
                yield mention


def build_tagger(settings: Settings | None = None,
                 gazetteer: DomesticGazetteer | None = None) -> PlaceTagger:
    """Return the configured tagger, falling back to the gazetteer tagger."""
    settings = settings or get_settings()
    gazetteer = gazetteer or get_gazetteer()

    if settings.extraction.tagger == "gazetteer":
        return GazetteerPlaceTagger.from_gazetteer(gazetteer)

    try:
        return SpacyPlaceTagger(get_nlp(settings.extraction.spacy_model))
    except OSError as e:
        logger.warning("spaCy model '%s' unavailable (%s); using gazetteer tagger",
                       settings.extraction.spacy_model, e)
        return GazetteerPlaceTagger.from_gazetteer(gazetteer)


# ── Extractor ──────────────────────────────────────────────────────────

class PlaceExtractor:
    def __init__(
        self,
        tagger: PlaceTagger,
        gazetteer: DomesticGazetteer,
        scorer: Optional[ConfidenceScorer] = None,
    ):
        self.tagger = tagger
        self.gazetteer = gazetteer
        self.scorer = scorer or ConfidenceScorer()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PlaceExtractor":
        settings = settings or get_settings()
        gazetteer = get_gazetteer()
        return cls(
            tagger=build_tagger(settings, gazetteer),
            gazetteer=gazetteer,
            scorer=ConfidenceScorer(ScoringWeights.from_config(settings.extraction)),
        )

    def extract(self, text: Optional[str]) -> list[CandidateLocation]:
        """Candidate places in text, domestic first then by confidence."""
        if not text or not text.strip():
            return []

        try:
            mentions = Counter(
                name
                for name in (normalize_mention(m) for m in self.tagger.tag(text))
                if name and name not in STOP_WORDS
            )
        except Exception as e:
            logger.warning("Place tagger failed on %d chars of text: %s", len(text), e)
            return []

        total = sum(mentions.values())
        candidates = []
        for name, count in mentions.items():
            domestic = self.gazetteer.is_domestic(name)
            candidates.append(
                CandidateLocation(
                    name=capitalize_location(name),
                    mentions=count,
                    confidence=self.scorer.score(name, count, total, domestic),
                    is_domestic=domestic,
                )
            )

        ranked = self.scorer.rank(candidates)
        logger.debug("Extracted %d candidates: %s", len(ranked),
                     [(c.name, c.confidence) for c in ranked[:5]])
        return ranked
