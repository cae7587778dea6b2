"""
Command line entry point.

    python -m hopchain cloudnestra --tmdb 550
    python -m hopchain packed-embed --url https://filemoon.sx/e/abc123
    python -m hopchain all --tmdb 1396 --type tv --season 1 --episode 2
"""
import argparse
import asyncio
import json
import sys

from hopchain.core.config import configure_logging, get_settings
from hopchain.providers.base import ContentRef
from hopchain.providers.runner import ResolutionEngine, list_targets


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hopchain", description="Resolve an embed chain to a playlist URL")
    parser.add_argument("target", help="target id, 'all' to try every target, or 'list'")
    parser.add_argument("--tmdb", type=int, dest="tmdb_id")
    parser.add_argument("--imdb", dest="imdb_id")
    parser.add_argument("--type", dest="media_type", default="movie", choices=["movie", "tv", "show", "live"])
    parser.add_argument("--season", type=int, default=1)
    parser.add_argument("--episode", type=int, default=1)
    parser.add_argument("--channel")
    parser.add_argument("--url", dest="embed_url")
    return parser


async def _run(args) -> dict:
    ref = ContentRef(tmdb_id=args.tmdb_id, imdb_id=args.imdb_id, media_type=args.media_type,
                     season=args.season, episode=args.episode, channel=args.channel,
                     embed_url=args.embed_url)
    engine = ResolutionEngine(settings=get_settings())
    try:
        if args.target == "all":
            outcome = await engine.run_all(ref)
        else:
            outcome = await engine.resolve_target(args.target, ref)
    finally:
        await engine.close()
    return outcome.to_dict()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    if args.target == "list":
        print(json.dumps(list_targets(), indent=2))
        return 0
    try:
        out = asyncio.run(_run(args))
    except KeyError:
        print(f"unknown target: {args.target}", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"bad request: {e}", file=sys.stderr)
        return 2
    print(json.dumps(out, indent=2))
    return 0 if out["ok"] else 1


if __name__ == "__main__":
    sys.exit(main())
