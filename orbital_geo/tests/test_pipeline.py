"""
Tests for the extraction orchestrator.
Uses the in-memory provider, fetcher and gazetteer tagger from conftest.
"""

from __future__ import annotations

import pytest

from orbital_geo.annotate import add_tier_to_article
from orbital_geo.models import (
    Article,
    ExtractionOptions,
    ResolutionState,
    StructuredLocation,
    Tier,
    UnresolvedLocation,
)
from orbital_geo.pipeline import ExtractionOrchestrator


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_breaking_news_from_florida(self, orchestrator):
        article = Article(id="a1", title="Breaking news from Florida: Hurricane warning issued")
        resolution = await orchestrator.resolve(article)

        assert resolution.state == ResolutionState.GEOCODED
        assert resolution.candidate.name == "Florida"
        location = resolution.article.location
        assert isinstance(location, StructuredLocation)
        assert location.display_name == "Florida"
        assert location.latitude == pytest.approx(27.7663)
        # Provider gave no postal code for a state
        assert location.postal_code == "00000"

    @pytest.mark.asyncio
    async def test_provider_postal_code_is_kept(self, orchestrator):
        article = Article(id="a1", title="Storm damage reported in Tulsa")
        location = (await orchestrator.resolve_article_location(article)).location
        assert location.postal_code == "74103"

    @pytest.mark.asyncio
    async def test_default_postal_code_option(self, orchestrator):
        article = Article(id="a1", title="Flooding closes roads in Norman")
        options = ExtractionOptions(default_postal_code="73019")
        location = (await orchestrator.resolve_article_location(article, options)).location
        assert location.postal_code == "73019"

    @pytest.mark.asyncio
    async def test_other_fields_untouched(self, orchestrator):
        article = Article.model_validate({
            "id": "a1", "title": "Storm damage reported in Tulsa", "content": "Roofs torn off.",
            "sourceUrl": "https://kfor.com/a1", "source": "kfor", "imageUrl": "a1.png",
        })
        resolved = await orchestrator.resolve_article_location(article)
        assert resolved.model_dump(exclude={"location"}) == article.model_dump(exclude={"location"})


class TestEscalation:
    @pytest.mark.asyncio
    async def test_full_text_supplies_candidate(self, orchestrator, fetcher):
        url = "https://kfor.com/news/policy"
        fetcher.pages[url] = "The new rules take effect in Tulsa next week."
        article = Article(id="a1", title="Officials announce new policy", source_url=url)

        resolution = await orchestrator.resolve(article)

        assert fetcher.calls == [url]
        assert resolution.used_full_text
        assert resolution.state == ResolutionState.GEOCODED
        assert resolution.candidate.name == "Tulsa"
        assert resolution.path == [
            ResolutionState.PENDING,
            ResolutionState.EXTRACTED_LOW_CONFIDENCE,
            ResolutionState.FULL_TEXT_FETCHED,
            ResolutionState.GEOCODED,
        ]

    @pytest.mark.asyncio
    async def test_weaker_full_text_candidate_is_ignored(self, orchestrator, fetcher):
        url = "https://kfor.com/news/london"
        fetcher.pages[url] = "London and Paris and Berlin and Madrid and Rome."
        article = Article(id="a1", title="Markets rally in London", source_url=url)
        options = ExtractionOptions(min_confidence=0.95)

        resolution = await orchestrator.resolve(article, options)

        assert fetcher.calls == [url]
        assert not resolution.used_full_text
        assert resolution.candidate.name == "London"
        # Low confidence candidates are still geocoded
        assert resolution.state == ResolutionState.GEOCODED

    @pytest.mark.asyncio
    async def test_empty_fetch_is_not_recorded_as_fetched(self, orchestrator, fetcher):
        url = "https://kfor.com/news/gone"
        article = Article(id="a1", title="Officials announce new policy", source_url=url)

        resolution = await orchestrator.resolve(article)

        assert fetcher.calls == [url]
        assert not resolution.used_full_text
        assert resolution.path == [
            ResolutionState.PENDING,
            ResolutionState.EXTRACTED_LOW_CONFIDENCE,
            ResolutionState.UNRESOLVED,
        ]

    @pytest.mark.asyncio
    async def test_paywalled_source_is_not_fetched(self, orchestrator, fetcher):
        article = Article(id="a1", title="Officials announce new policy",
                          source_url="https://www.nytimes.com/2024/policy.html")
        resolution = await orchestrator.resolve(article)

        assert fetcher.calls == []
        assert ResolutionState.SKIPPED_FULL_TEXT in resolution.path
        assert resolution.state == ResolutionState.UNRESOLVED

    @pytest.mark.asyncio
    async def test_fetch_disallowed(self, orchestrator, fetcher):
        article = Article(id="a1", title="Officials announce new policy",
                          source_url="https://kfor.com/policy")
        options = ExtractionOptions(fetch_full_content_allowed=False)
        resolution = await orchestrator.resolve(article, options)

        assert fetcher.calls == []
        assert ResolutionState.SKIPPED_FULL_TEXT in resolution.path

    @pytest.mark.asyncio
    async def test_confident_candidate_skips_fetch(self, orchestrator, fetcher):
        article = Article(id="a1", title="Storm damage reported in Tulsa",
                          source_url="https://kfor.com/tulsa")
        await orchestrator.resolve(article)
        assert fetcher.calls == []


class TestFallbacks:
    @pytest.mark.asyncio
    async def test_hint_used_when_candidate_fails(self, orchestrator, provider):
        provider.errors.add("tulsa")
        article = Article(id="a1", title="Flooding in Tulsa", location="Norman")

        resolution = await orchestrator.resolve(article)

        assert resolution.state == ResolutionState.FALLBACK_GEOCODED
        location = resolution.article.location
        assert location.display_name == "Norman"
        assert location.latitude == pytest.approx(35.2226)

    @pytest.mark.asyncio
    async def test_everything_fails_gives_sentinel(self, orchestrator, provider):
        provider.errors.update({"tulsa", "norman"})
        article = Article(id="a1", title="Flooding in Tulsa", location="Norman")
        options = ExtractionOptions(default_postal_code="12345")

        resolution = await orchestrator.resolve(article, options)

        assert resolution.state == ResolutionState.UNRESOLVED
        location = resolution.article.location
        assert isinstance(location, UnresolvedLocation)
        assert (location.latitude, location.longitude) == (0, 0)
        assert location.postal_code == "12345"
        assert location.display_name == "Tulsa"

    @pytest.mark.asyncio
    async def test_hint_matching_failed_candidate_is_not_retried(self, orchestrator, provider):
        provider.errors.add("tulsa")
        article = Article(id="a1", title="Flooding in Tulsa", location="tulsa")
        await orchestrator.resolve(article)
        assert provider.calls == ["Tulsa"]

    @pytest.mark.asyncio
    async def test_unknown_hint_is_not_geocoded(self, orchestrator, provider):
        article = Article(id="a1", title="Officials announce new policy", location="Unknown")
        resolution = await orchestrator.resolve(article)
        assert provider.calls == []
        assert resolution.article.location.display_name == "Unknown"

    @pytest.mark.asyncio
    async def test_structured_location_is_not_regressed(self, orchestrator, provider):
        original = StructuredLocation(display_name="Oklahoma City", latitude=35.4676,
                                      longitude=-97.5164, postal_code="73102")
        article = Article(id="a1", title="Officials announce new policy", location=original)

        resolution = await orchestrator.resolve(article)

        assert resolution.article.location == original
        assert resolution.state == ResolutionState.FALLBACK_GEOCODED
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_structured_location_survives_provider_outage(self, orchestrator, provider):
        provider.errors.add("tulsa")
        original = StructuredLocation(display_name="Oklahoma City", latitude=35.4676,
                                      longitude=-97.5164, postal_code="73102")
        article = Article(id="a1", title="Flooding in Tulsa", location=original)
        assert (await orchestrator.resolve_article_location(article)).location == original

    @pytest.mark.asyncio
    async def test_offline_fallback_uses_gazetteer(self, orchestrator, provider):
        provider.errors.add("tulsa")
        article = Article(id="a1", title="Flooding in Tulsa")
        options = ExtractionOptions(offline_fallback=True)

        resolution = await orchestrator.resolve(article, options)

        assert resolution.state == ResolutionState.FALLBACK_GEOCODED
        assert resolution.article.location.postal_code == "74103"
        assert resolution.article.location.latitude == pytest.approx(36.154)

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_sentinel(self, geocoder, fetcher, gazetteer):
        class BrokenExtractor:
            def extract(self, text):
                raise RuntimeError("boom")

        orchestrator = ExtractionOrchestrator(BrokenExtractor(), geocoder, fetcher, gazetteer)
        article = Article(id="a1", title="Flooding in Tulsa", location="Norman")
        resolution = await orchestrator.resolve(article)

        assert resolution.state == ResolutionState.UNRESOLVED
        assert resolution.article.location.display_name == "Norman"
        assert resolution.article.location.latitude == 0


class TestBatch:
    @pytest.mark.asyncio
    async def test_results_in_input_order(self, orchestrator, provider):
        provider.errors.add("dallas")
        articles = [
            Article(id="a1", title="Storm damage reported in Tulsa"),
            Article(id="a2", title="Traffic jams in Dallas"),
            Article(id="a3", title="Breaking news from Florida"),
            Article(id="a4", title="Officials announce new policy"),
        ]

        results = await orchestrator.resolve_batch(articles)

        assert [r.article.id for r in results] == ["a1", "a2", "a3", "a4"]
        assert [r.state for r in results] == [
            ResolutionState.GEOCODED,
            ResolutionState.UNRESOLVED,
            ResolutionState.GEOCODED,
            ResolutionState.UNRESOLVED,
        ]

    @pytest.mark.asyncio
    async def test_empty_batch(self, orchestrator):
        assert await orchestrator.resolve_batch([]) == []


class TestResolveThenTier:
    @pytest.mark.asyncio
    async def test_florida_is_far_from_oklahoma_city(self, orchestrator, geocoder):
        article = Article(id="a1", title="Breaking news from Florida: Hurricane warning issued")
        resolved = await orchestrator.resolve_article_location(article)
        tiered = await add_tier_to_article(resolved, geocoder)

        assert tiered.tier == Tier.FAR
        assert tiered.distance.kilometers == pytest.approx(1723, abs=15)

    @pytest.mark.asyncio
    async def test_unresolvable_article_is_unknown(self, orchestrator, geocoder, provider):
        provider.errors.update({"tulsa", "norman"})
        article = Article(id="a1", title="Flooding in Tulsa", location="Norman")
        options = ExtractionOptions(default_postal_code="12345")

        resolved = await orchestrator.resolve_article_location(article, options)
        calls_before = len(provider.calls)
        tiered = await add_tier_to_article(resolved, geocoder)

        assert isinstance(resolved.location, UnresolvedLocation)
        assert resolved.location.postal_code == "12345"
        assert tiered.tier == Tier.UNKNOWN
        assert tiered.distance is None
        assert len(provider.calls) == calls_before
