"""CLI entry point for the R/HOOD matchmaking core."""

import argparse
import asyncio
import json
import logging
import sqlite3
import sys
from contextlib import closing

from rhood.ai.matcher import AIMatchmaker
from rhood.core.config import Settings
from rhood.core.db import init_db
from rhood.core.errors import RhoodError
from rhood.core.schemas import AIMatchOptions
from rhood.core.seed import SeedData, load_seed
from rhood.features.embeddings import rebuild_all_embeddings
from rhood.pipeline.application_limiter import ApplicationLimiter
from rhood.pipeline.matchmaking import (
    apply_to_opportunity,
    generate_matches,
    get_matchmaking_analytics,
)
from rhood.pipeline.recommendations import get_recommendations
from rhood.tracking.behavior import get_user_listening_stats


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="R/HOOD matchmaking core - recommendations, matches and applications",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Create the database tables")
    _add_common(init_parser)

    seed_parser = subparsers.add_parser("seed", help="Load profiles, mixes and gigs from YAML")
    seed_parser.add_argument("--file", required=True, help="Path to seed YAML file")
    _add_common(seed_parser)

    recommend_parser = subparsers.add_parser("recommend", help="Recommend mixes to a user")
    recommend_parser.add_argument("--user", required=True, help="User ID")
    recommend_parser.add_argument("--limit", type=int, default=None, help="Max results")
    recommend_parser.add_argument(
        "--include-liked",
        action="store_true",
        help="Keep mixes the user already liked",
    )
    _add_common(recommend_parser)

    match_parser = subparsers.add_parser("match", help="Score open opportunities for a DJ")
    match_parser.add_argument("--user", required=True, help="User ID")
    match_parser.add_argument("--limit", type=int, default=None, help="Max results")
    _add_common(match_parser)

    ai_parser = subparsers.add_parser("ai-match", help="Rank opportunities with the LLM")
    ai_parser.add_argument("--user", required=True, help="User ID")
    ai_parser.add_argument("--limit", type=int, default=None, help="Max results")
    ai_parser.add_argument("--scenario", default=None, help="Prompt scenario (default: config)")
    ai_parser.add_argument("--json", action="store_true", help="Print results as JSON")
    _add_common(ai_parser)

    apply_parser = subparsers.add_parser("apply", help="Apply a DJ to an opportunity")
    apply_parser.add_argument("--user", required=True, help="User ID")
    apply_parser.add_argument("--opportunity", required=True, help="Opportunity ID")
    apply_parser.add_argument("--message", default="", help="Message to the organizer")
    _add_common(apply_parser)

    rebuild_parser = subparsers.add_parser(
        "rebuild-embeddings", help="Recompute all user and mix embeddings",
    )
    _add_common(rebuild_parser)

    stats_parser = subparsers.add_parser("stats", help="Listening and matchmaking stats")
    stats_parser.add_argument("--user", required=True, help="User ID")
    _add_common(stats_parser)

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def cmd_seed(conn: sqlite3.Connection, settings: Settings, args: argparse.Namespace) -> None:
    counts = load_seed(conn, SeedData.from_yaml(args.file))
    print("Seeded " + ", ".join(f"{v} {k}" for k, v in counts.items()))


def cmd_recommend(conn: sqlite3.Connection, settings: Settings, args: argparse.Namespace) -> None:
    recs = get_recommendations(
        conn, args.user, args.limit, args.include_liked, settings.recommendations,
    )
    print(f"{len(recs)} recommendations for {args.user}:")
    for i, rec in enumerate(recs, start=1):
        print(f"  {i:>2}. {rec.mix.title or rec.mix.id} [{rec.mix.genre or '-'}] "
              f"weight={rec.recommendation_weight:.3f}")


def cmd_match(conn: sqlite3.Connection, settings: Settings, args: argparse.Namespace) -> None:
    matches = generate_matches(conn, args.user, settings.matching, args.limit)
    print(f"{len(matches)} matches for {args.user}:")
    for m in matches:
        title = m.opportunity.title if m.opportunity else m.opportunity_id
        print(f"  {m.match_score:6.2f}  {title} ({m.status.value})")
        for reason in m.match_reasons:
            print(f"          - {reason}")


async def cmd_ai_match(
    conn: sqlite3.Connection, settings: Settings, args: argparse.Namespace,
) -> None:
    matchmaker = AIMatchmaker(conn, settings.ai, settings.matching)
    options = AIMatchOptions(
        limit=args.limit or settings.ai.max_matches,
        scenario=args.scenario or settings.ai.scenario,
    )
    matches = await matchmaker.generate_ai_matches(args.user, options)
    if args.json:
        print(json.dumps([m.model_dump(mode="json") for m in matches], indent=2))
    else:
        for m in matches:
            title = m.opportunity.title if m.opportunity else m.opportunity_id
            print(f"  #{m.ranking} {m.compatibility_score:5.1f} {title} "
                  f"[{m.match_type.value}, confidence {m.confidence:.2f}]")
            print(f"      {m.reasoning}")


def cmd_apply(conn: sqlite3.Connection, settings: Settings, args: argparse.Namespace) -> None:
    application = apply_to_opportunity(
        conn, args.user, args.opportunity, settings.applications, args.message,
    )
    remaining = ApplicationLimiter(conn, settings.applications).remaining(args.user)
    print(f"Applied to {application.opportunity_id} (application #{application.id}). "
          f"{remaining} applications left today.")


def cmd_rebuild_embeddings(
    conn: sqlite3.Connection, settings: Settings, args: argparse.Namespace,
) -> None:
    users, mixes = rebuild_all_embeddings(conn, settings.recommendations)
    print(f"Rebuilt embeddings for {users} users and {mixes} mixes")


def cmd_stats(conn: sqlite3.Connection, settings: Settings, args: argparse.Namespace) -> None:
    listening = get_user_listening_stats(conn, args.user)
    analytics = get_matchmaking_analytics(conn, args.user)
    print(json.dumps(
        {"listening": listening.model_dump(), "matchmaking": analytics.model_dump()},
        indent=2,
    ))


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        with closing(init_db(settings.database.path)) as conn:
            if args.command == "init-db":
                print(f"Database ready at {settings.database.path}")
            elif args.command == "seed":
                cmd_seed(conn, settings, args)
            elif args.command == "recommend":
                cmd_recommend(conn, settings, args)
            elif args.command == "match":
                cmd_match(conn, settings, args)
            elif args.command == "ai-match":
                asyncio.run(cmd_ai_match(conn, settings, args))
            elif args.command == "apply":
                cmd_apply(conn, settings, args)
            elif args.command == "rebuild-embeddings":
                cmd_rebuild_embeddings(conn, settings, args)
            elif args.command == "stats":
                cmd_stats(conn, settings, args)
    except (FileNotFoundError, ValueError, RhoodError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
