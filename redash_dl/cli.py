"""Download Redash query results to CSV, optionally split into pages or date ranges."""

from __future__ import annotations

import argparse
import json
import logging
import re
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .client import DEFAULT_QUERY_TIMEOUT_SECONDS, DEFAULT_TIMEOUT_SECONDS, RedashClient, RedashError
from .config import config_to_parser_defaults, load_config_file, parse_params
from .credentials import clear_cached_path, load_cached_path, resolve_credentials, store_cached_path
from .dispatch import direct_query, paginated_query, period_query
from .progress import LogProgress, NullProgress, ProgressReporter, TqdmProgress
from .results import write_csv

SUBCOMMANDS = ("query", "safe", "period", "config")

logger = logging.getLogger("redash_dl")


def _log_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if value is None:
        return "null"
    text = str(value)
    if re.fullmatch(r"[A-Za-z0-9._:/+\-]+", text):
        return text
    return json.dumps(text, ensure_ascii=True)


def log_event(event: str, **fields: object) -> None:
    parts = [event]
    for key, value in fields.items():
        parts.append(f"{key}={_log_value(value)}")
    print(" ".join(parts), file=sys.stderr)


def format_exception_message(exc: BaseException) -> str:
    text = str(exc).strip()
    if text:
        return text
    rep = repr(exc).strip()
    if rep and rep != f"{type(exc).__name__}()":
        return rep
    return type(exc).__name__


def _common_options() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Path to YAML/JSON config file with option defaults.")
    common.add_argument("-E", "--endpoint", help="Redash endpoint, e.g. https://redash.example.com")
    common.add_argument("-k", "--apikey", help="API key for Redash.")
    common.add_argument(
        "-c",
        "--credentials",
        help='Path to credentials JSON/YAML {"endpoint": ..., "apikey": ...}.',
    )
    common.add_argument("-o", "--output", help="Output CSV path.")
    common.add_argument(
        "--timeout-seconds",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help="HTTP timeout per request in seconds.",
    )
    common.add_argument(
        "--query-timeout-seconds",
        type=float,
        default=DEFAULT_QUERY_TIMEOUT_SECONDS,
        help="Maximum time to wait for one query job to finish.",
    )
    common.add_argument("--max-age", type=int, default=0, help="Accept cached results up to this age (0 = fresh).")
    common.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return common


def _segment_options() -> argparse.ArgumentParser:
    segmented = argparse.ArgumentParser(add_help=False)
    segmented.add_argument(
        "--concurrency",
        type=int,
        default=1,
        help="Segments to run at once (1-5, larger values are clamped to 5).",
    )
    segmented.add_argument("--no-progress", action="store_true", help="Disable progress display.")
    return segmented


def build_parser(config_defaults: Optional[Dict[str, Any]] = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="redash-dl", description=__doc__)
    subparsers = parser.add_subparsers(dest="command", required=True)
    common = _common_options()
    segmented = _segment_options()

    query = subparsers.add_parser("query", parents=[common], help="Run a query and download its result.")
    query.add_argument("-i", "--id", type=int, required=True, help="Query ID.")
    query.add_argument("-p", "--params", help="Query parameters as a JSON object string.")

    safe = subparsers.add_parser(
        "safe",
        parents=[common, segmented],
        help="Run a paginated query (offset_rows/limit_rows parameters).",
    )
    safe.add_argument("-i", "--id", type=int, required=True, help="Query ID.")
    safe.add_argument("-l", "--limit", type=int, default=10000, help="Rows per page (<= 0 disables paging).")
    safe.add_argument("-n", "--maxiter", type=int, default=100, help="Maximum number of pages.")
    safe.add_argument("-p", "--params", help="Query parameters as a JSON object string.")

    period = subparsers.add_parser(
        "period",
        parents=[common, segmented],
        help="Run a query once per date range (start_date/end_date parameters).",
    )
    period.add_argument("-i", "--id", type=int, required=True, help="Query ID.")
    period.add_argument("-s", "--start", required=True, help="Start date yyyy-MM-dd (inclusive).")
    period.add_argument("-e", "--end", required=True, help="End date yyyy-MM-dd (inclusive).")
    period.add_argument("-t", "--interval", required=True, help="Interval: day/week/month/quarter/year (d/w/m/q/y).")
    period.add_argument("-m", "--mult", type=int, default=1, help="Interval multiple.")
    period.add_argument("-p", "--params", help="Query parameters as a JSON object string.")

    config = subparsers.add_parser("config", help="Manage cached credentials.")
    config.add_argument("action", choices=("show", "clear"), help="Show or clear the cached credentials path.")

    if config_defaults:
        for sub in (query, safe, period):
            sub.set_defaults(**config_defaults)
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    tokens: List[str] = list(sys.argv[1:] if argv is None else argv)
    if tokens and tokens[0] not in SUBCOMMANDS and tokens[0] not in ("-h", "--help"):
        tokens.insert(0, "query")

    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument("--config")
    pre_args, _ = pre_parser.parse_known_args(tokens)
    config_defaults: Dict[str, Any] = {}
    if pre_args.config:
        config_defaults = config_to_parser_defaults(load_config_file(Path(pre_args.config)))

    return build_parser(config_defaults).parse_args(tokens)


def default_output(args: argparse.Namespace) -> str:
    suffix = {"query": "", "safe": "_safe", "period": "_period"}[args.command]
    return f"redash_{args.id}{suffix}.csv"


def make_reporter(args: argparse.Namespace) -> ProgressReporter:
    if args.no_progress:
        return NullProgress()
    if sys.stderr.isatty():
        return TqdmProgress(desc=f"Query {args.id}")
    return LogProgress()


def run_config_command(action: str) -> int:
    if action == "show":
        cached = load_cached_path()
        print(cached if cached else "No cached credentials")
        return 0
    clear_cached_path()
    print("Cached credentials cleared", file=sys.stderr)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    verbose = getattr(args, "verbose", False)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    if args.command == "config":
        return run_config_command(args.action)

    creds = resolve_credentials(args.credentials, args.endpoint, args.apikey)
    run_started = time.monotonic()
    client = RedashClient(
        creds.endpoint,
        creds.apikey,
        timeout_seconds=args.timeout_seconds,
        query_timeout_seconds=args.query_timeout_seconds,
    )
    log_event("RUN_START", command=args.command, query_id=args.id, endpoint=client.endpoint)
    try:
        params = parse_params(args.params)
        if args.command == "query":
            table = direct_query(client, args.id, params=params, max_age=args.max_age)
        elif args.command == "safe":
            table = paginated_query(
                client,
                args.id,
                params=params,
                max_age=args.max_age,
                limit=args.limit,
                max_iterations=args.maxiter,
                concurrency=args.concurrency,
                reporter=make_reporter(args),
            )
        else:
            table = period_query(
                client,
                args.id,
                start_date=args.start,
                end_date=args.end,
                interval=args.interval,
                interval_multiple=args.mult,
                params=params,
                max_age=args.max_age,
                concurrency=args.concurrency,
                reporter=make_reporter(args),
            )
    except RedashError as exc:
        logger.error("Query %s failed: %s", args.id, format_exception_message(exc))
        log_event("RUN_FAILED", command=args.command, query_id=args.id, error=format_exception_message(exc))
        return 1
    finally:
        client.close()

    out_path = write_csv(table, args.output or default_output(args))
    log_event(
        "RUN_DONE",
        command=args.command,
        query_id=args.id,
        rows=len(table.rows),
        seconds=round(time.monotonic() - run_started, 2),
    )
    print(f"Wrote {len(table.rows)} rows to {out_path}", file=sys.stderr)
    if args.credentials:
        store_cached_path(args.credentials)
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
