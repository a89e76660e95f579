"""
Extraction orchestrator.
Ties together extract -> (full-text escalation) -> geocode -> fallbacks so
every article leaves with a structured location or the unresolved sentinel.

Per article, strictly in order:
  1. Extract candidates from title + content
  2. Low confidence: fetch full text (unless paywalled or disallowed) and
     re-extract; the new top candidate wins only if it is no worse
  3. Geocode the winning candidate
  4. On failure: keep an existing structured location, else geocode the hint
  5. Optionally place a domestic name from gazetteer coordinates
  6. Otherwise the zero-coordinate "Unknown" sentinel
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from typing import Optional

import httpx

from orbital_geo.config import Settings, get_settings
from orbital_geo.extract import PlaceExtractor
from orbital_geo.fetch import FullTextFetcher, is_paywalled
from orbital_geo.gazetteer import DomesticGazetteer, get_gazetteer
from orbital_geo.geocode import GeocodingClient
from orbital_geo.models import (
    POSTAL_CODE_SENTINEL,
    UNKNOWN_LOCATION_NAME,
    Article,
    ArticleResolution,
    CandidateLocation,
    ExtractionOptions,
    LocationHint,
    ResolutionState,
    ResolvedLocation,
    StructuredLocation,
    UnresolvedLocation,
    is_unresolved,
)

logger = logging.getLogger(__name__)


def options_from_settings(settings: Settings | None = None) -> ExtractionOptions:
    cfg = (settings or get_settings()).extraction
    return ExtractionOptions(
        min_confidence=cfg.min_confidence,
        fetch_full_content_allowed=cfg.fetch_full_content,
        default_postal_code=cfg.default_postal_code,
    )


class ExtractionOrchestrator:
    def __init__(
        self,
        extractor: PlaceExtractor,
        geocoder: GeocodingClient,
        fetcher: FullTextFetcher,
        gazetteer: Optional[DomesticGazetteer] = None,
        max_concurrency: int = 8,
    ):
        self.extractor = extractor
        self.geocoder = geocoder
        self.fetcher = fetcher
        self.gazetteer = gazetteer or extractor.gazetteer
        self.max_concurrency = max(1, max_concurrency)
        self._http: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ExtractionOrchestrator":
        """Wire every component from env config around one shared HTTP client."""
        settings = settings or get_settings()
        gazetteer = get_gazetteer()
        http = httpx.AsyncClient(follow_redirects=True)
        orchestrator = cls(
            extractor=PlaceExtractor.from_settings(settings),
            geocoder=GeocodingClient.from_settings(settings, http_client=http, gazetteer=gazetteer),
            fetcher=FullTextFetcher(http, settings.fetch),
            gazetteer=gazetteer,
            max_concurrency=settings.pipeline.max_concurrency,
        )
        orchestrator._http = http
        return orchestrator

    async def aclose(self) -> None:
        await self.geocoder.aclose()
        await self.fetcher.aclose()
        if self._http is not None:
            await self._http.aclose()

    # ── Single article ─────────────────────────────────────────────────

    async def resolve_article_location(self, article: Article,
                                       options: ExtractionOptions | None = None) -> Article:
        """The article with its location resolved. Never raises."""
        return (await self.resolve(article, options)).article

    async def resolve(self, article: Article,
                      options: ExtractionOptions | None = None) -> ArticleResolution:
        options = options or ExtractionOptions()
        try:
            return await self._resolve(article, options)
        except Exception as e:
            logger.error("Location resolution failed for article %s: %s", article.id, e, exc_info=True)
            return ArticleResolution(
                article=article.model_copy(update={"location": self._sentinel(article, None, options)}),
                state=ResolutionState.UNRESOLVED,
                path=[ResolutionState.UNRESOLVED],
            )

    async def _resolve(self, article: Article, options: ExtractionOptions) -> ArticleResolution:
        path = [ResolutionState.PENDING]
        used_full_text = False

        # ── 1. Extract ─────────────────────────────────────────────────
        text = f"{article.title} {article.content or ''}".strip()
        candidates = self.extractor.extract(text)
        best = candidates[0] if candidates else None

        # ── 2. Escalate to full text ───────────────────────────────────
        if best is None or best.confidence < options.min_confidence:
            path.append(ResolutionState.EXTRACTED_LOW_CONFIDENCE)
            if options.fetch_full_content_allowed and article.source_url \
                    and not is_paywalled(article.source_url):
                full_text = await self.fetcher.fetch(article.source_url)
                if full_text:
                    path.append(ResolutionState.FULL_TEXT_FETCHED)
                else:
                    logger.info("Article %s: no full text from %s", article.id, article.source_url)
                rescored = self.extractor.extract(full_text) if full_text else []
                top = rescored[0] if rescored else None
                if top is not None and top.confidence >= options.min_confidence \
                        and (best is None or top.confidence >= best.confidence):
                    logger.debug("Article %s: full text improved candidate %s -> %s (%.2f)",
                                 article.id, best.name if best else None, top.name, top.confidence)
                    best = top
                    used_full_text = True
            else:
                path.append(ResolutionState.SKIPPED_FULL_TEXT)

        def done(location, state: ResolutionState) -> ArticleResolution:
            path.append(state)
            return ArticleResolution(
                article=article.model_copy(update={"location": location}),
                state=state,
                candidate=best,
                used_full_text=used_full_text,
                path=path,
            )

        # ── 3. Geocode the winner ──────────────────────────────────────
        if best is not None:
            resolved = await self.geocoder.geocode(best.name)
            if _has_coordinates(resolved):
                return done(self._structured(best.name, resolved, options), ResolutionState.GEOCODED)
            logger.info("Article %s: could not geocode candidate '%s'", article.id, best.name)

        # ── 4. Fall back to what the article came with ─────────────────
        original = article.location
        if isinstance(original, StructuredLocation) and not is_unresolved(original):
            return done(original, ResolutionState.FALLBACK_GEOCODED)

        hint = _usable_hint(article, best)
        if hint:
            resolved = await self.geocoder.geocode(hint)
            if _has_coordinates(resolved):
                return done(self._structured(hint, resolved, options), ResolutionState.FALLBACK_GEOCODED)

        # ── 5. Offline gazetteer placement ─────────────────────────────
        if options.offline_fallback:
            for name in (best.name if best else None, hint):
                resolved = self.gazetteer.to_resolved(name) if name else None
                if resolved is not None:
                    logger.info("Article %s: placed '%s' from gazetteer", article.id, name)
                    return done(self._structured(name, resolved, options),
                                ResolutionState.FALLBACK_GEOCODED)

        # ── 6. Sentinel ────────────────────────────────────────────────
        return done(self._sentinel(article, best, options), ResolutionState.UNRESOLVED)

    @staticmethod
    def _structured(name: str, resolved: ResolvedLocation,
                    options: ExtractionOptions) -> StructuredLocation:
        postal = resolved.postal_code
        if not postal or postal == POSTAL_CODE_SENTINEL:
            postal = options.default_postal_code
        return StructuredLocation(
            display_name=name,
            latitude=resolved.latitude,
            longitude=resolved.longitude,
            postal_code=postal,
        )

    @staticmethod
    def _sentinel(article: Article, best: Optional[CandidateLocation],
                  options: ExtractionOptions) -> UnresolvedLocation:
        name = (best.name if best else "") or article.location_hint or UNKNOWN_LOCATION_NAME
        return UnresolvedLocation(display_name=name, postal_code=options.default_postal_code)

    # ── Batch ──────────────────────────────────────────────────────────

    async def resolve_batch(self, articles: list[Article],
                            options: ExtractionOptions | None = None) -> list[ArticleResolution]:
        """
        Resolve many articles concurrently, at most max_concurrency at a time.
        Results come back in input order.
        """
        if not articles:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)
        start_time = time.monotonic()

        async def run(article: Article) -> ArticleResolution:
            async with semaphore:
                return await self.resolve(article, options)

        logger.info("=== Resolving %d articles (concurrency=%d) ===",
                    len(articles), self.max_concurrency)
        results = await asyncio.gather(*(run(a) for a in articles))

        counts = Counter(r.state.value for r in results)
        elapsed = time.monotonic() - start_time
        logger.info("=== Resolution complete in %.1fs: %s ===", elapsed, dict(counts))
        return list(results)


def _has_coordinates(resolved: Optional[ResolvedLocation]) -> bool:
    return resolved is not None and not (resolved.latitude == 0 and resolved.longitude == 0)


def _usable_hint(article: Article, best: Optional[CandidateLocation]) -> str:
    """The article's own location string, unless empty, "Unknown" or already tried."""
    if not isinstance(article.location, (LocationHint, UnresolvedLocation)):
        return ""
    hint = article.location_hint.strip()
    if not hint or hint.lower() == UNKNOWN_LOCATION_NAME.lower():
        return ""
    if best is not None and hint.lower() == best.name.lower():
        return ""
    return hint
