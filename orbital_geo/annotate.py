"""Request-time tiering of resolved articles against the reader's location."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from orbital_geo.distance import build_distance_result
from orbital_geo.geocode import GeocodingClient
from orbital_geo.models import (
    UNKNOWN_LOCATION_NAME,
    Article,
    Coordinates,
    LocationHint,
    StructuredLocation,
    Tier,
    TieredArticle,
    is_unresolved,
)

logger = logging.getLogger(__name__)


async def add_tier_to_article(article: Article, client: GeocodingClient) -> TieredArticle:
    """
    Attach distance and tier relative to client.reader_location.

    Structured locations are measured directly; a bare hint is geocoded first.
    The sentinel, empty hints and any failure come back as Tier.UNKNOWN.
    """
    try:
        location = article.location
        if isinstance(location, StructuredLocation) and not is_unresolved(location):
            meters = client.distance(
                client.reader_location,
                Coordinates(latitude=location.latitude, longitude=location.longitude),
            )
            result = build_distance_result(meters, client.classifier)
            return TieredArticle(article=article, tier=result.tier, distance=result)

        if isinstance(location, LocationHint):
            hint = location.name.strip()
            if hint and hint.lower() != UNKNOWN_LOCATION_NAME.lower():
                result = await client.distance_from(hint)
                if result is not None:
                    return TieredArticle(article=article, tier=result.tier, distance=result)

    except Exception as e:
        logger.error("Tiering failed for article %s: %s", article.id, e, exc_info=True)

    return TieredArticle(article=article, tier=Tier.UNKNOWN)


async def add_tiers(articles: Iterable[Article], client: GeocodingClient) -> list[TieredArticle]:
    return list(await asyncio.gather(*(add_tier_to_article(a, client) for a in articles)))


def group_by_tier(tiered: Iterable[TieredArticle]) -> dict[Tier, list[TieredArticle]]:
    groups: dict[Tier, list[TieredArticle]] = {tier: [] for tier in Tier}
    for item in tiered:
        groups[item.tier].append(item)
    return groups
