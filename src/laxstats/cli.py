#!/usr/bin/env python3
"""
Command-line interface for the lacrosse statistics pipeline.

Usage:
    laxstats init                                  # Create the store schema
    laxstats ingest                                # One ingestion pass over all sources
    laxstats ingest --source PLL --source NLL
    laxstats ingest --active-only --follow         # Poll in-season sources forever
    laxstats ingest --dry-run --max-batches 1      # In-memory store, nothing persisted
    laxstats recompute                             # Rebuild aggregates from the store
    laxstats leaderboard --season 2025 --stat goals --limit 10
    laxstats player 42 --season 2025
    laxstats team 7
    laxstats link player PLL 1234 --canonical-id 42
    laxstats link player PLL 1234 --new "Lyle Thompson"
    laxstats pending --source WLA
    laxstats status
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from typing import Optional

from .core.config import Settings, get_settings
from .core.errors import AlreadyLinkedError, QueryError, StoreError
from .core.types import EntityKind, SourceId, get_source_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("laxstats.cli")


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _open_store(settings: Settings, dry_run: bool = False):
    from .repositories import get_store

    return await get_store(settings, memory=dry_run)


async def _open_identity(store):
    from .normalizer import IdentityMap

    identity = IdentityMap(store)
    await identity.load()
    return identity


def _build_engine(store, identity, settings: Settings):
    from .aggregators import AggregationEngine

    return AggregationEngine(store, identity, box_score_tolerance=settings.box_score_tolerance)


def _build_service(store, identity, settings: Settings):
    from .services import StatsQueryService

    engine = _build_engine(store, identity, settings)
    return StatsQueryService(engine, max_limit=settings.leaderboard_max_limit)


def _build_orchestrators(
    store,
    identity,
    settings: Settings,
    sources: list[SourceId],
    season: Optional[int] = None,
    engine=None,
):
    from .ingestion import Orchestrator, RetryPolicy
    from .normalizer import Normalizer
    from .providers import get_adapter

    normalizer = Normalizer(identity)
    policy = RetryPolicy(
        max_attempts=settings.max_fetch_attempts,
        base_delay=settings.backoff_base_seconds,
        max_delay=settings.backoff_max_seconds,
    )
    on_persisted = engine.apply_incremental if engine is not None else None
    orchestrators = []
    for source in sources:
        adapter = get_adapter(source, season=season, settings=settings)
        if not adapter.is_configured():
            logger.warning(f"{source.value}: no credentials configured, skipping")
            continue
        orchestrators.append(
            Orchestrator(
                adapter,
                store,
                normalizer,
                policy=policy,
                fetch_timeout=settings.request_timeout_seconds,
                on_persisted=on_persisted,
            )
        )
    return orchestrators


# =============================================================================
# Commands
# =============================================================================


async def cmd_init_async(args: argparse.Namespace) -> int:
    """Initialize the store schema."""
    from .pg_async import AsyncPostgresDB
    from .schema import init_database

    settings = get_settings()
    if not settings.database_url:
        logger.error("DATABASE_URL is not set")
        return 1

    db = AsyncPostgresDB(settings.database_url, max_pool_size=settings.database_pool_size)
    try:
        await db.open()
        await init_database(db)
        logger.info("Canonical store initialized")
        return 0
    finally:
        await db.close()


def cmd_init(args: argparse.Namespace) -> int:
    return asyncio.run(cmd_init_async(args))


async def cmd_ingest_async(args: argparse.Namespace) -> int:
    """Run ingestion for the selected sources, folding new data into the aggregates."""
    from .ingestion import IngestionScheduler

    settings = get_settings()
    sources = [SourceId(s) for s in args.source] if args.source else list(SourceId)

    store = await _open_store(settings, dry_run=args.dry_run)
    try:
        identity = await _open_identity(store)
        engine = _build_engine(store, identity, settings)
        orchestrators = _build_orchestrators(store, identity, settings, sources, season=args.season, engine=engine)
        if not orchestrators:
            logger.error("No configured sources to ingest")
            return 1

        await engine.ensure_fresh()
        scheduler = IngestionScheduler(orchestrators, poll_interval=settings.poll_interval_seconds)
        try:
            if args.follow:
                await scheduler.run_forever(active_only=args.active_only)
                return 0
            result = await scheduler.run_once(active_only=args.active_only, max_batches=args.max_batches)
        finally:
            await scheduler.close()

        summary = result.to_dict()
        summary["aggregated_seasons"] = engine.seasons()
        _print_json(summary)
        failed = result.errors or any(not r.ok for r in result.results.values())
        return 1 if failed else 0
    finally:
        await store.close()



def cmd_ingest(args: argparse.Namespace) -> int:
    try:
        return asyncio.run(cmd_ingest_async(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


async def cmd_recompute_async(args: argparse.Namespace) -> int:
    """Rebuild all aggregates from the store."""
    from .core.types import Scope

    settings = get_settings()
    store = await _open_store(settings)
    try:
        identity = await _open_identity(store)
        engine = _build_engine(store, identity, settings)
        stats = await engine.recompute_all(Scope(args.scope))
        flagged = [s for s in stats if s.flags]
        print(f"\nRecomputed {len(stats):,} {args.scope} aggregates over seasons {engine.seasons()}")
        print(f"Flagged (box score mismatch): {len(flagged):,}")
        for stat in flagged[: args.show_flags]:
            print(f"  {stat.subject_ref.display_name:<25} {stat.stat_name:<16} {', '.join(stat.flags)}")
        return 0
    finally:
        await store.close()


def cmd_recompute(args: argparse.Namespace) -> int:
    return asyncio.run(cmd_recompute_async(args))


async def cmd_leaderboard_async(args: argparse.Namespace) -> int:
    """Print a stat leaderboard."""
    settings = get_settings()
    store = await _open_store(settings)
    try:
        identity = await _open_identity(store)
        service = _build_service(store, identity, settings)
        board = await service.get_leaderboard(args.season, args.stat, args.limit)

        if board.season is not None:
            label = " / ".join(sorted({get_source_config(s).get_season_label(board.season) for s in SourceId}))
        else:
            label = "Career"
        print(f"\n{label} - Top {args.limit} {board.stat_name}")
        print("=" * 60)
        for entry in board.entries:
            flag = "  *" if entry.flags else ""
            print(
                f"{entry.rank:3}. {entry.subject_ref.display_name:<25} "
                f"{entry.value:>8g}  ({entry.games_played} GP){flag}"
            )
        return 0
    except QueryError as e:
        _print_json(e.to_dict())
        return 1
    finally:
        await store.close()


def cmd_leaderboard(args: argparse.Namespace) -> int:
    return asyncio.run(cmd_leaderboard_async(args))


async def _subject_command(args: argparse.Namespace, kind: EntityKind) -> int:
    settings = get_settings()
    store = await _open_store(settings)
    try:
        identity = await _open_identity(store)
        service = _build_service(store, identity, settings)
        if kind is EntityKind.player:
            response = await service.get_player_stats(args.id, args.season)
        else:
            response = await service.get_team_stats(args.id, args.season)
        _print_json(response.model_dump(mode="json"))
        return 0
    except QueryError as e:
        _print_json(e.to_dict())
        return 1
    finally:
        await store.close()


def cmd_player(args: argparse.Namespace) -> int:
    return asyncio.run(_subject_command(args, EntityKind.player))


def cmd_team(args: argparse.Namespace) -> int:
    return asyncio.run(_subject_command(args, EntityKind.team))


async def cmd_link_async(args: argparse.Namespace) -> int:
    """Link a source id to a canonical entity, then replay pending records."""
    from .ingestion import Orchestrator
    from .normalizer import Normalizer
    from .providers import get_adapter

    settings = get_settings()
    kind = EntityKind(args.kind)
    source = SourceId(args.source)

    store = await _open_store(settings)
    try:
        identity = await _open_identity(store)
        if args.new:
            entity = await identity.add_entity(kind, args.new)
            canonical_id = entity.canonical_id
        else:
            canonical_id = args.canonical_id

        try:
            await identity.link(kind, source, args.local_id, canonical_id)
        except AlreadyLinkedError as e:
            logger.error(f"{e} (existing canonical id {e.existing_canonical_id})")
            return 1
        except StoreError as e:
            logger.error(f"Link failed: {e.message}")
            return 1

        if args.no_replay:
            return 0

        engine = _build_engine(store, identity, settings)
        await engine.ensure_fresh()
        adapter = get_adapter(source, settings=settings)
        orchestrator = Orchestrator(adapter, store, Normalizer(identity), on_persisted=engine.apply_incremental)
        try:
            replay = await orchestrator.replay_pending()
        finally:
            await adapter.close()

        output = replay.to_dict()
        output["career"] = {s.stat_name: s.value for s in engine.subject_stats(kind, canonical_id)}
        _print_json(output)
        return 0

    finally:
        await store.close()


def cmd_link(args: argparse.Namespace) -> int:
    return asyncio.run(cmd_link_async(args))


async def cmd_pending_async(args: argparse.Namespace) -> int:
    """List pending-review records with exact-name candidates."""
    settings = get_settings()
    source = SourceId(args.source) if args.source else None

    store = await _open_store(settings)
    try:
        identity = await _open_identity(store)
        items = await store.list_pending(source)
        print(f"\nPending review: {len(items):,} records")
        print("=" * 60)
        for item in items[: args.limit]:
            candidates = identity.candidates(item.kind, item.display_name)
            suggestion = ", ".join(f"{c.canonical_id} ({c.display_name})" for c in candidates) or "-"
            print(
                f"{item.source_id.value} {item.source_local_id:<28} "
                f"{item.kind.value} {item.unresolved_local_id} "
                f"{item.display_name or '?':<22} candidates: {suggestion}"
            )
        return 0
    finally:
        await store.close()


def cmd_pending(args: argparse.Namespace) -> int:
    return asyncio.run(cmd_pending_async(args))


async def cmd_status_async(args: argparse.Namespace) -> int:
    """Show schema, checkpoints and recent ingest runs."""
    from .core.seasons import active_sources, season_year
    from .pg_async import AsyncPostgresDB
    from .repositories.postgres import PostgresStore
    from .schema import get_schema_version, get_table_counts

    settings = get_settings()
    if not settings.database_url:
        logger.error("DATABASE_URL is not set")
        return 1

    db = AsyncPostgresDB(settings.database_url, max_pool_size=settings.database_pool_size)
    store = PostgresStore(db)
    try:
        await store.initialize()
        version = await get_schema_version(db)
        if version == "0":
            logger.info("Store is not initialized (run `laxstats init`)")
            return 1
        counts = await get_table_counts(db)

        print("\nCanonical Store Status")
        print("=" * 50)
        print(f"Schema Version: {version}")
        in_season = active_sources()
        print()
        print("Sources:")
        for source in SourceId:
            config = get_source_config(source)
            label = config.get_season_label(season_year(source, date.today()))
            state = "in season" if source in in_season else "off season"
            print(f"  {source.value}: {config.name} {label} ({state})")
        print()
        print("Table Counts:")
        for table, count in sorted(counts.items()):
            print(f"  {table}: {count:,}")

        print()
        print("Checkpoints:")
        for checkpoint in await store.list_checkpoints():
            print(
                f"  {checkpoint.source_id.value}: cursor={checkpoint.last_cursor!r} "
                f"last_success={checkpoint.last_success_at or 'never'}"
            )

        print()
        print("Recent Ingest Runs:")
        for run in await store.list_runs(limit=args.runs):
            print(
                f"  {run['started_at']} {run['source_id']} {run['status']:<12} "
                f"batches={run['batches']} inserted={run['inserted']} "
                f"pending={run['pending']} {run['error'] or ''}"
            )
        return 0
    finally:
        await store.close()


def cmd_status(args: argparse.Namespace) -> int:
    return asyncio.run(cmd_status_async(args))


# =============================================================================
# Entry point
# =============================================================================


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {value}")
    return number


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Lacrosse statistics pipeline CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sources = [s.value for s in SourceId]

    # init command
    subparsers.add_parser("init", help="Create the canonical store schema")

    # ingest command
    ingest_parser = subparsers.add_parser("ingest", help="Ingest new data from league sources")
    ingest_parser.add_argument("--source", action="append", choices=sources, help="Source to ingest (repeatable)")
    ingest_parser.add_argument("--active-only", action="store_true", help="Only sources currently in season")
    ingest_parser.add_argument("--follow", action="store_true", help="Keep polling every POLL_INTERVAL_SECONDS")
    ingest_parser.add_argument("--max-batches", type=_positive_int, help="Batch cap per source per pass")
    ingest_parser.add_argument("--season", type=int, help="Season start year (default: CURRENT_SEASON)")
    ingest_parser.add_argument("--dry-run", action="store_true", help="Use an in-memory store")

    # recompute command
    recompute_parser = subparsers.add_parser("recompute", help="Rebuild aggregates from the store")
    recompute_parser.add_argument("--scope", choices=["season", "career"], default="season")
    recompute_parser.add_argument("--show-flags", type=int, default=20, help="Flagged aggregates to print")

    # leaderboard command
    board_parser = subparsers.add_parser("leaderboard", help="Show a stat leaderboard")
    board_parser.add_argument("--season", type=int, help="Season start year (omit for career)")
    board_parser.add_argument("--stat", default="points", help="Stat name (default: points)")
    board_parser.add_argument("--limit", type=int, default=25, help="Result limit")

    # player / team commands
    for name, help_text in (("player", "Show player stats"), ("team", "Show team stats")):
        subject_parser = subparsers.add_parser(name, help=help_text)
        subject_parser.add_argument("id", type=int, help="Canonical id")
        subject_parser.add_argument("--season", type=int, help="Season start year (omit for career)")

    # link command
    link_parser = subparsers.add_parser("link", help="Link a source id to a canonical entity")
    link_parser.add_argument("kind", choices=["player", "team"])
    link_parser.add_argument("source", choices=sources)
    link_parser.add_argument("local_id", help="Source-local id")
    target = link_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--canonical-id", type=_positive_int, help="Existing canonical id")
    target.add_argument("--new", metavar="NAME", help="Create a new canonical entity with this name")
    link_parser.add_argument("--no-replay", action="store_true", help="Skip replaying pending records")

    # pending command
    pending_parser = subparsers.add_parser("pending", help="List pending-review records")
    pending_parser.add_argument("--source", choices=sources)
    pending_parser.add_argument("--limit", type=int, default=50)

    # status command
    status_parser = subparsers.add_parser("status", help="Show store status")
    status_parser.add_argument("--runs", type=int, default=10, help="Recent ingest runs to show")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    logging.getLogger().setLevel(get_settings().log_level.upper())

    commands = {
        "init": cmd_init,
        "ingest": cmd_ingest,
        "recompute": cmd_recompute,
        "leaderboard": cmd_leaderboard,
        "player": cmd_player,
        "team": cmd_team,
        "link": cmd_link,
        "pending": cmd_pending,
        "status": cmd_status,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        try:
            return cmd_func(args)
        except (StoreError, ValueError) as e:
            logger.error(f"{args.command} failed: {e}")
            return 1
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
