#!/usr/bin/env python3
"""Print the checklist outline of a markdown file or directory once.

Runs a single scan (no change tracking, no file events) and prints either an
indented text outline or the JSON snapshot.

Usage:
    # Text outline, all-completed sections folded
    python3 scripts/todo_snapshot.py TODO.md

    # Every section expanded
    python3 scripts/todo_snapshot.py TODO.md --expand-all

    # JSON snapshot of every *.md file in a directory
    python3 scripts/todo_snapshot.py notes/ --json
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from todowatch.config import WatchConfig
from todowatch.io_utils import dump_json
from todowatch.outline import default_collapsed, flatten, render_text, snapshot_to_dict
from todowatch.todo_types import ScanStatus
from todowatch.watcher import WatchOrchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Print the checklist outline of a markdown file or directory."
    )
    parser.add_argument("target", type=Path, help="Markdown file or directory of *.md files")
    parser.add_argument("--json", action="store_true", help="Emit the JSON snapshot.")
    parser.add_argument("--compact", action="store_true", help="Compact JSON (with --json).")
    parser.add_argument(
        "--expand-all",
        action="store_true",
        help="Do not fold sections whose items are all completed.",
    )
    parser.add_argument(
        "--read-timeout-sec",
        type=float,
        default=None,
        help="Abandon a stalled read after this many seconds.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging.")
    return parser


def main() -> None:
    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    try:
        config = WatchConfig.from_env().with_overrides(read_timeout_sec=args.read_timeout_sec)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)

    watcher = WatchOrchestrator(config, filesystem_events=False)
    snapshot = watcher.watch(args.target)
    watcher.stop()

    if snapshot.status is ScanStatus.FAILED:
        for err in snapshot.errors:
            print(f"Error: {err}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        dump_json(snapshot_to_dict(snapshot), pretty=not args.compact)
    else:
        collapsed = set() if args.expand_all else default_collapsed(snapshot.documents)
        rows = flatten(snapshot.documents, collapsed, snapshot.changed)
        text = render_text(rows, show_documents=len(snapshot.documents) > 1)
        if text:
            print(text)

    for err in snapshot.errors:
        print(f"Warning: {err}", file=sys.stderr)


if __name__ == "__main__":
    main()
