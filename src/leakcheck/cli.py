"""Command line interface for leakcheck."""

import argparse
import logging
import sys
import time

import psutil

from leakcheck.config import Config
from leakcheck.introspect import SystemIntrospector
from leakcheck.models import Snapshot
from leakcheck.policy import ToleranceEvaluator
from leakcheck.report import format_snapshot


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="leakcheck",
        description="Snapshot process resources and watch them for leaks.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    snapshot = commands.add_parser("snapshot", help="print one snapshot of a process")
    snapshot.add_argument("--pid", type=int, help="process to inspect (default: this one)")
    snapshot.add_argument(
        "--diff-after",
        type=float,
        metavar="SECONDS",
        help="take a second snapshot after SECONDS and print the diff",
    )
    snapshot.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="GLOB",
        help="ignore descriptors whose target matches GLOB (repeatable)",
    )

    watch = commands.add_parser("watch", help="watch a process in a terminal UI")
    watch.add_argument("--pid", type=int, required=True, help="process to watch")
    watch.add_argument("--interval", type=float, default=2.0, help="seconds between polls")
    watch.add_argument("--exclude", action="append", default=[], metavar="GLOB")
    return parser


def _introspector(args: argparse.Namespace, config: Config) -> SystemIntrospector:
    if args.pid is not None and not psutil.pid_exists(args.pid):
        raise SystemExit(f"leakcheck: no such process: {args.pid}")
    return SystemIntrospector(
        pid=args.pid,
        exclude_patterns=config.exclude_patterns + tuple(args.exclude),
    )


def run_snapshot(args: argparse.Namespace, config: Config) -> int:
    introspector = _introspector(args, config)
    before = Snapshot.collect(introspector)
    print(format_snapshot(before))
    if args.diff_after is None:
        return 0

    time.sleep(args.diff_after)
    after = Snapshot.collect(introspector)
    print(format_snapshot(after))
    print(format_snapshot(after.subtract(before), "Diff"))
    verdict = ToleranceEvaluator(config.memory_threshold).evaluate(after.subtract(before))
    return 0 if verdict.passed else 2


def run_watch(args: argparse.Namespace, config: Config) -> int:
    from leakcheck.app import LeakcheckApp

    app = LeakcheckApp(
        introspector=_introspector(args, config),
        poll_rate=args.interval,
        evaluator=ToleranceEvaluator(config.memory_threshold),
    )
    app.run()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point for the leakcheck command."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="[leakcheck] %(levelname)s: %(message)s",
    )
    config = Config.from_env()
    if args.command == "snapshot":
        return run_snapshot(args, config)
    return run_watch(args, config)


if __name__ == "__main__":
    sys.exit(main())
