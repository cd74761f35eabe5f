#!/usr/bin/env python3
"""Watch a markdown checklist and report items that flip state.

Re-scans on every (debounced) filesystem change. Each scan that changes
something prints the outline with changed items marked ``*``; changed keys
are also logged. With ``--ack-on-print`` printed changes count as seen and
are acknowledged immediately, otherwise they stay marked until the process
exits.

Usage:
    python3 scripts/todo_watch.py TODO.md
    python3 scripts/todo_watch.py notes/ --poll --debounce-sec 1.0
    python3 scripts/todo_watch.py TODO.md --output /tmp/todo_snapshot.json
"""
from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from todowatch.config import WatchConfig
from todowatch.io_utils import dump_json, save_json
from todowatch.outline import default_collapsed, flatten, render_text, snapshot_to_dict
from todowatch.todo_types import ScanStatus
from todowatch.watcher import WatchOrchestrator, WatchSnapshot

log = logging.getLogger("todo_watch")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Watch a markdown checklist and report items that flip state."
    )
    parser.add_argument("target", type=Path, help="Markdown file or directory of *.md files")
    parser.add_argument(
        "--poll",
        action="store_true",
        default=None,
        help="Poll for changes instead of native filesystem events.",
    )
    parser.add_argument("--poll-interval-sec", type=float, default=None)
    parser.add_argument(
        "--debounce-sec",
        type=float,
        default=None,
        help="Coalesce change notifications arriving within this window.",
    )
    parser.add_argument("--read-timeout-sec", type=float, default=None)
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Also write the JSON snapshot here after every scan.",
    )
    parser.add_argument("--json", action="store_true", help="Print JSON snapshots, not outlines.")
    parser.add_argument(
        "--ack-on-print",
        action="store_true",
        help="Acknowledge changed items once they have been printed.",
    )
    parser.add_argument("--once", action="store_true", help="Run one scan and exit.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging.")
    return parser


def _print_snapshot(snapshot: WatchSnapshot, *, as_json: bool) -> None:
    if as_json:
        dump_json(snapshot_to_dict(snapshot), pretty=False)
        return
    rows = flatten(
        snapshot.documents,
        default_collapsed(snapshot.documents),
        snapshot.changed,
    )
    print(render_text(rows, show_documents=len(snapshot.documents) > 1), flush=True)


def main() -> None:
    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    logging.getLogger("watchdog").setLevel(logging.WARNING)

    try:
        config = WatchConfig.from_env().with_overrides(
            poll=args.poll,
            poll_interval_sec=args.poll_interval_sec,
            debounce_sec=args.debounce_sec,
            read_timeout_sec=args.read_timeout_sec,
        )
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)

    watcher = WatchOrchestrator(config, filesystem_events=not args.once)

    def on_scan(snapshot: WatchSnapshot, newly_changed: frozenset[str]) -> None:
        if args.output is not None:
            save_json(snapshot_to_dict(snapshot), args.output)
        if snapshot.status is ScanStatus.FAILED:
            return
        if newly_changed:
            log.info("%d item(s) changed", len(newly_changed))
            _print_snapshot(snapshot, as_json=args.json)
            if args.ack_on_print:
                watcher.acknowledge(newly_changed)

    first = watcher.watch(args.target)
    if args.output is not None:
        save_json(snapshot_to_dict(first), args.output)
    if first.status is ScanStatus.FAILED:
        for err in first.errors:
            log.warning("%s", err)
    else:
        _print_snapshot(first, as_json=args.json)

    if args.once:
        watcher.stop()
        sys.exit(1 if first.status is ScanStatus.FAILED else 0)

    watcher.add_listener(on_scan)
    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    try:
        while not stop.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        watcher.stop()
        log.info("Stopped watching %s", args.target)


if __name__ == "__main__":
    main()
