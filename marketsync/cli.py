"""Command-line entry points for cron-driven syncs and safety-cache maintenance."""
import argparse
import sys

import structlog

from .config import settings, validate_settings
from .logging import setup_logging
from .models import BatchResult
from .pipeline.symbols import normalize_symbols, resolve_symbols
from .runtime import Runtime, build_runtime

log = structlog.get_logger()


def _fetch_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="marketsync-fetch",
        description="Fetch fresh market data for every symbol currently held in a portfolio.",
    )
    p.add_argument("--force", action="store_true", help="Update even if cached data is fresh")
    p.add_argument("--stats", action="store_true", help="Show data freshness statistics before fetching")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--historical", action="store_true", help="Fetch historical price data instead of quotes")
    mode.add_argument("--dividends", action="store_true", help="Fetch dividend data instead of quotes")
    p.add_argument(
        "--days",
        type=int,
        default=None,
        help=f"Days of historical/dividend data (default: {settings.historical_data_days})",
    )
    p.add_argument("--symbols", default=None, help="Comma-separated symbols instead of current holdings")
    return p


def _print_stats(rt: Runtime, out):
    stats = rt.orchestrator.get_freshness_stats()
    print("Current data freshness statistics:", file=out)
    print(f"   Total stocks in portfolios: {stats.total_stocks}", file=out)
    print(f"   Fresh data: {stats.fresh_data}", file=out)
    print(f"   Stale data: {stats.stale_data}", file=out)
    print(f"   Missing data: {stats.missing_data}", file=out)
    if stats.oldest_data_timestamp:
        print(f"   Oldest data: {stats.oldest_data_timestamp.isoformat()}", file=out)
    if stats.newest_data_timestamp:
        print(f"   Newest data: {stats.newest_data_timestamp.isoformat()}", file=out)
    print("", file=out)


def _print_results(result: BatchResult, label: str, out):
    print(f"{label} results:", file=out)
    print(f"   Total symbols: {result.total}", file=out)
    print(f"   Updated: {result.updated}", file=out)
    print(f"   Skipped (fresh): {result.skipped}", file=out)
    print(f"   Failed: {result.failed}", file=out)
    if result.errors:
        print("", file=out)
        print("Errors encountered:", file=out)
        for err in result.errors:
            print(f"   - {err}", file=out)
    print("", file=out)
    if result.failed > 0:
        print("Some updates failed. Check logs for details.", file=out)
    elif result.updated > 0:
        print("All updates completed successfully.", file=out)
    else:
        print("No updates needed - all data is fresh.", file=out)


def fetch_main(argv=None, runtime: Runtime | None = None, out=None) -> int:
    """Run one sync batch. Exit code 1 when any symbol failed or on a fatal error."""
    out = out or sys.stdout
    try:
        args = _fetch_parser().parse_args(argv)
    except SystemExit as exc:
        return int(exc.code or 0)

    if args.days is not None and args.days < 1:
        print("--days must be a positive integer", file=sys.stderr)
        return 1

    rt = runtime
    try:
        if rt is None:
            problems = validate_settings(settings)
            if problems:
                for problem in problems:
                    print(f"Configuration error: {problem}", file=sys.stderr)
                return 1
            rt = build_runtime(settings)
        symbols = normalize_symbols(args.symbols.split(",")) if args.symbols else None

        if args.stats:
            _print_stats(rt, out)

        if args.historical:
            days = args.days or rt.settings.historical_data_days
            print(f"Fetching historical price data ({days} days)...", file=out)
            result = rt.orchestrator.sync_historical_prices(days=days, force=args.force, symbols=symbols)
            _print_results(result, "Historical Data", out)
        elif args.dividends:
            days = args.days or rt.settings.historical_data_days
            print(f"Fetching dividend data ({days} days)...", file=out)
            result = rt.orchestrator.sync_dividends(days=days, force=args.force, symbols=symbols)
            _print_results(result, "Dividend Data", out)
        else:
            result = rt.orchestrator.sync_quotes(force=args.force, symbols=symbols)
            _print_results(result, "Quote Data", out)
    except Exception as exc:
        log.exception("fetch_fatal_error", err=str(exc))
        print(f"Fatal error: {exc}", file=sys.stderr)
        return 1
    finally:
        if runtime is None and rt is not None:
            rt.close()
    return 1 if result.failed > 0 else 0


def _safety_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="marketsync-safety", description="Dividend safety cache management.")
    sub = p.add_subparsers(dest="command")
    sub.add_parser("update", help="Update cache for all held stocks (only stale entries)")
    sub.add_parser("stats", help="Show cache statistics and recent entries")
    cleanup = sub.add_parser("cleanup", help="Remove old cache entries")
    cleanup.add_argument("--days", type=int, default=None, help="Maximum entry age in days (default: 30)")
    refresh = sub.add_parser("refresh", help="Force refresh specific symbols (comma-separated)")
    refresh.add_argument("symbols", help="e.g. AAPL,MSFT,JNJ")
    return p


def _print_safety_results(results: dict, out) -> int:
    failed = 0
    for symbol, result in results.items():
        if result.score > 0 or not result.warnings:
            print(f"OK   {symbol}: Score {result.score} ({result.grade})", file=out)
        else:
            failed += 1
            print(f"FAIL {symbol}: " + ", ".join(result.warnings), file=out)
    return failed


def safety_cache_main(argv=None, runtime: Runtime | None = None, out=None) -> int:
    out = out or sys.stdout
    parser = _safety_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return int(exc.code or 0)
    if not args.command:
        parser.print_help(file=out)
        return 0

    rt = runtime
    try:
        if rt is None:
            rt = build_runtime(settings)
        cache = rt.safety_cache

        if args.command == "update":
            symbols = resolve_symbols(rt.conn)
            if not symbols:
                print("No active holdings found. Nothing to update.", file=out)
                return 0
            print(f"Found {len(symbols)} unique stocks in portfolios: {', '.join(symbols)}", file=out)
            pending = cache.symbols_needing_update(symbols)
            if not pending:
                print("All cached data is fresh. No updates needed.", file=out)
                return 0
            print(f"Updating {len(pending)} symbols: {', '.join(pending)}", file=out)
            failed = _print_safety_results(cache.bulk_update(pending), out)
            print(f"\nUpdate complete: {len(pending) - failed} successful, {failed} failed", file=out)
            return 1 if failed else 0

        if args.command == "stats":
            stats = cache.stats()
            print("Dividend Safety Cache Statistics:", file=out)
            print(f"Total cached entries: {stats['total_cached']}", file=out)
            print(f"Fresh entries (< 24h): {stats['fresh_entries']}", file=out)
            print(f"Stale entries (> 24h): {stats['stale_entries']}", file=out)
            print(f"Cache hit rate: {stats['cache_hit_rate']}%", file=out)
            if stats["recent"]:
                print("\nRecent cache entries:", file=out)
                for row in stats["recent"]:
                    print(f"  {row['symbol']}: Score {row['score']} ({row['grade']}) - {row['age_hours']}h ago", file=out)
            return 0

        if args.command == "cleanup":
            deleted = cache.cleanup(args.days)
            if deleted:
                print(f"Deleted {deleted} old cache entries", file=out)
            else:
                print("No old entries found to clean up", file=out)
            return 0

        symbols = normalize_symbols(args.symbols.split(","))
        if not symbols:
            print("No symbols provided", file=out)
            return 1
        print(f"Force refreshing dividend safety data for: {', '.join(symbols)}", file=out)
        failed = _print_safety_results(cache.bulk_update(symbols), out)
        return 1 if failed else 0
    except Exception as exc:
        log.exception("safety_cache_fatal_error", err=str(exc))
        print(f"Fatal error: {exc}", file=sys.stderr)
        return 1
    finally:
        if runtime is None and rt is not None:
            rt.close()


def fetch_entry():
    setup_logging()
    sys.exit(fetch_main())


def safety_entry():
    setup_logging()
    sys.exit(safety_cache_main())
