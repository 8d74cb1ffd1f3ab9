"""Command-line entry point: ``chapterbridge <command> [options]``."""

from __future__ import annotations

from typing import List, Optional
import argparse
import asyncio
import json
import logging
import sys

from chapterbridge.config import settings
from chapterbridge.context import open_context
from chapterbridge.services.alignment import commands
from chapterbridge.services.alignment.errors import EditionNotFoundError, SegmentNotFoundError
from chapterbridge.services.alignment.ordinals import to_ordinal
from chapterbridge.services.retrieval.embedding_client import EmbeddingConfigError
from chapterbridge.utils.openai_helper import LLMConfigError

logger = logging.getLogger("uvicorn.error")

FATAL_ERRORS = (EditionNotFoundError, SegmentNotFoundError, EmbeddingConfigError, LLMConfigError)


def _ordinal(value: str):
    try:
        return to_ordinal(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _pair(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--from-edition-id", type=int, required=True, help="Source edition id")
    parser.add_argument("--to-edition-id", type=int, required=True, help="Target edition id")


def _limit(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--limit", type=int, default=0, help="Process at most N source units (0 = all)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chapterbridge", description="Cross-edition chapter alignment")
    parser.add_argument("--database-url", default=None, help=f"Override DATABASE_URL (default {settings.DATABASE_URL})")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create tables")

    for name, help_text in (
        ("embed", "Embed summary/events/entities channels of an edition"),
        ("embed-events", "Embed per-event fingerprints of an edition"),
    ):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("--edition-id", type=int, required=True)
        p.add_argument("--limit", type=int, default=0, help="Process at most N segments (0 = all)")

    align = subparsers.add_parser("match-align", help="Multi-channel monotonic alignment")
    _pair(align)
    align.add_argument("--window", type=int, default=None, help=f"Search width after the checkpoint (default {settings.WINDOW})")
    align.add_argument("--backtrack", type=int, default=None, help=f"Allowed regression (default {settings.BACKTRACK})")
    align.add_argument("--top-k", type=int, default=None, help=f"Candidates per channel (default {settings.TOP_K})")
    align.add_argument("--restart", action="store_true", help="Ignore existing mappings and scan from the start")
    _limit(align)

    events = subparsers.add_parser("match-events", help="Event voting alignment")
    _pair(events)
    events.add_argument("--window", type=int, default=None, help=f"Search width after the checkpoint (default {settings.WINDOW})")
    events.add_argument("--backtrack", type=int, default=None, help=f"Allowed regression (default {settings.BACKTRACK})")
    events.add_argument("--top-k", type=int, default=None, help=f"Candidates per event (default {settings.TOP_K})")
    events.add_argument("--max-range-width", type=int, default=15)
    events.add_argument("--max-forward-jump", type=int, default=30)
    events.add_argument("--min-confidence", type=float, default=0.4)
    events.add_argument("--restart", action="store_true", help="Ignore existing mappings and scan from the start")
    _limit(events)

    greedy = subparsers.add_parser("match-events-greedy", help="Greedy strictly-forward event alignment")
    _pair(greedy)
    greedy.add_argument("--search-window", type=int, default=30)
    greedy.add_argument("--similarity-threshold", type=float, default=0.3)
    greedy.add_argument("--max-range-width", type=int, default=10)
    greedy.add_argument("--max-per-unit-jump", type=int, default=8)
    greedy.add_argument("--restart", action="store_true", help="Ignore existing mappings and scan from the start")
    _limit(greedy)

    inc = subparsers.add_parser("match-incremental", help="LLM checkpoint alignment")
    _pair(inc)
    inc.add_argument("--window-before", type=int, default=None, help=f"default {settings.WINDOW_BEFORE}")
    inc.add_argument("--window-after", type=int, default=None, help=f"default {settings.WINDOW_AFTER}")
    inc.add_argument("--window-size", type=int, default=None, help=f"Minimum window width (default {settings.WINDOW_SIZE})")
    inc.add_argument("--max-window-size", type=int, default=None, help=f"default {settings.MAX_WINDOW_SIZE}")
    inc.add_argument("--backtrack", type=int, default=None, help=f"default {settings.BACKTRACK}")
    _limit(inc)

    full = subparsers.add_parser("match-all", help="LLM one-shot alignment of explicit ranges")
    _pair(full)
    full.add_argument("--from-start", type=_ordinal, required=True)
    full.add_argument("--from-end", type=_ordinal, required=True)
    full.add_argument("--to-start", type=_ordinal, required=True)
    full.add_argument("--to-end", type=_ordinal, required=True)
    full.add_argument(
        "--fallback",
        dest="enable_fallback",
        action=argparse.BooleanOptionalAction,
        default=None,
        help=f"Per-unit fallback on persistence failures (default {settings.ENABLE_FALLBACK})",
    )

    derive = subparsers.add_parser("derive", help="Derive mappings through a pivot edition")
    _pair(derive)
    derive.add_argument("--pivot-edition-id", type=int, required=True)
    derive.add_argument("--epsilon", type=float, default=0.05)
    _limit(derive)

    report = subparsers.add_parser("report", help="Mapping quality report for an edition pair")
    _pair(report)
    return parser


async def dispatch(args: argparse.Namespace) -> dict:
    cfg = settings
    if args.database_url:
        cfg = settings.model_copy(update={"DATABASE_URL": args.database_url})
    if args.command == "init-db":
        async with open_context(cfg, create_tables=True):
            return {"status": "ok", "database_url": cfg.DATABASE_URL}

    params = {k: v for k, v in vars(args).items() if k not in ("command", "database_url")}
    operations = {
        "embed": commands.embed_segments,
        "embed-events": commands.embed_events,
        "match-align": commands.match_align,
        "match-events": commands.match_events,
        "match-events-greedy": commands.match_events_greedy,
        "match-incremental": commands.match_incremental,
        "match-all": commands.match_all,
        "derive": commands.derive,
        "report": commands.mapping_report,
    }
    async with open_context(cfg) as ctx:
        return await operations[args.command](ctx, **params)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    try:
        result = asyncio.run(dispatch(args))
    except FATAL_ERRORS as exc:
        logger.error("align-fatal command=%s error=%s", args.command, exc)
        print(json.dumps({"error": str(exc)}, ensure_ascii=False), file=sys.stderr)
        return 1
    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
