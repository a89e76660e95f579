"""CLI entrypoint for orbital_geo."""

from __future__ import annotations

import argparse
import asyncio
import json

from orbital_geo.logging_config import setup_logging


def main(argv: list[str] | None = None) -> None:
    setup_logging()

    parser = argparse.ArgumentParser(prog="orbital-geo")
    sub = parser.add_subparsers(dest="command", required=True)

    extract_parser = sub.add_parser("extract", help="List candidate places in text")
    extract_parser.add_argument("text")

    geocode_parser = sub.add_parser("geocode", help="Resolve a place name")
    geocode_parser.add_argument("name")

    tier_parser = sub.add_parser("tier", help="Classify a distance in km")
    tier_parser.add_argument("km", type=float)

    distance_parser = sub.add_parser("distance", help="Distance between two postal codes")
    distance_parser.add_argument("from_postal_code")
    distance_parser.add_argument("to_postal_code")

    resolve_parser = sub.add_parser("resolve", help="Resolve and tier one article")
    resolve_parser.add_argument("--title", required=True)
    resolve_parser.add_argument("--content", default=None)
    resolve_parser.add_argument("--url", default=None)
    resolve_parser.add_argument("--hint", default="")
    reader = resolve_parser.add_mutually_exclusive_group()
    reader.add_argument("--reader-postal-code", default=None)
    reader.add_argument("--reader-lat", type=float, default=None)
    resolve_parser.add_argument("--reader-lon", type=float, default=None)
    resolve_parser.add_argument("--min-confidence", type=float, default=None)
    resolve_parser.add_argument("--no-fetch", action="store_true")
    resolve_parser.add_argument("--offline", action="store_true",
                                help="Place domestic names from the gazetteer if geocoding fails")

    args = parser.parse_args(argv)

    if args.command == "extract":
        _extract(args.text)
    elif args.command == "geocode":
        asyncio.run(_geocode(args.name))
    elif args.command == "tier":
        _tier(parser, args.km)
    elif args.command == "distance":
        asyncio.run(_distance(args.from_postal_code, args.to_postal_code))
    elif args.command == "resolve":
        if (args.reader_lat is None) != (args.reader_lon is None):
            parser.error("--reader-lat and --reader-lon must be given together")
        asyncio.run(_resolve(args))


def _print(payload) -> None:
    print(json.dumps(payload, ensure_ascii=True, indent=2))


def _extract(text: str) -> None:
    from orbital_geo.extract import PlaceExtractor

    extractor = PlaceExtractor.from_settings()
    _print([c.model_dump() for c in extractor.extract(text)])


async def _geocode(name: str) -> None:
    from orbital_geo.geocode import GeocodingClient

    client = GeocodingClient.from_settings()
    try:
        resolved = await client.geocode(name)
    finally:
        await client.aclose()
    _print(resolved.model_dump() if resolved else None)


def _tier(parser: argparse.ArgumentParser, km: float) -> None:
    from orbital_geo.config import get_settings
    from orbital_geo.distance import TierClassifier
    from orbital_geo.errors import InvalidDistance
    from orbital_geo.models import TierThresholds

    tiers = get_settings().tiers
    classifier = TierClassifier(TierThresholds(close_km=tiers.close_km, medium_km=tiers.medium_km))
    try:
        tier = classifier.classify(km)
    except InvalidDistance as e:
        parser.error(str(e))
    _print({"kilometers": km, "tier": tier.value})


async def _distance(from_postal_code: str, to_postal_code: str) -> None:
    from orbital_geo.geocode import GeocodingClient

    client = GeocodingClient.from_settings()
    try:
        result = await client.distance_between(from_postal_code, to_postal_code)
    finally:
        await client.aclose()
    _print(result.model_dump(mode="json") if result else None)


async def _resolve(args: argparse.Namespace) -> None:
    from orbital_geo.annotate import add_tier_to_article
    from orbital_geo.models import Article, Coordinates
    from orbital_geo.pipeline import ExtractionOrchestrator, options_from_settings

    orchestrator = ExtractionOrchestrator.from_settings()
    try:
        geocoder = orchestrator.geocoder
        if args.reader_postal_code:
            await geocoder.set_reader_postal_code(args.reader_postal_code)
        elif args.reader_lat is not None:
            geocoder.set_reader_location(Coordinates(latitude=args.reader_lat,
                                                     longitude=args.reader_lon))

        updates = {"offline_fallback": args.offline}
        if args.min_confidence is not None:
            updates["min_confidence"] = args.min_confidence
        if args.no_fetch:
            updates["fetch_full_content_allowed"] = False
        options = options_from_settings().model_copy(update=updates)

        article = Article(id="cli", title=args.title, content=args.content,
                          source_url=args.url, source="cli", location=args.hint)
        resolution = await orchestrator.resolve(article, options)
        tiered = await add_tier_to_article(resolution.article, geocoder)
    finally:
        await orchestrator.aclose()

    _print({
        "state": resolution.state.value,
        "path": [s.value for s in resolution.path],
        "candidate": resolution.candidate.model_dump() if resolution.candidate else None,
        "used_full_text": resolution.used_full_text,
        "location": resolution.article.location.model_dump(by_alias=True),
        "tier": tiered.tier.value,
        "distance": tiered.distance.model_dump(mode="json", exclude={"origin", "destination"})
        if tiered.distance else None,
        "reader": geocoder.reader_location.model_dump(),
    })


if __name__ == "__main__":
    main()
