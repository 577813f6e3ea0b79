"""Command line entry point.

Usage examples:

    # Replay a recorded ski day and write an Excel report
    python -m activity_tracker replay --csv fixes.csv --sport ski

    # Print the summary only
    python -m activity_tracker replay --csv fixes.csv --sport hike --no-file
"""

from __future__ import annotations

import argparse
from datetime import datetime
import logging
from pathlib import Path
from typing import Sequence

from .config import REPLAY_OUTPUT_FILE, REPLAY_OUTPUT_TIMESTAMP_ENABLED
from .errors import TrackingError
from .replay import load_fixes_csv, replay_fixes, summary_rows, write_replay_workbook
from .sport_types import SportType

LOGGER = logging.getLogger("activity_tracker")


def _setup_logging(level: str = "INFO") -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=getattr(logging, level),
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


def _resolve_output_path(explicit: str | None) -> Path:
    if explicit:
        return Path(explicit)
    if REPLAY_OUTPUT_TIMESTAMP_ENABLED:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return Path(f"{REPLAY_OUTPUT_FILE}_{timestamp}.xlsx")
    return Path(f"{REPLAY_OUTPUT_FILE}.xlsx")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="activity_tracker",
        description="Live GPS track processing tools",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Python logging level",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    replay = sub.add_parser("replay", help="Replay a CSV of recorded fixes")
    replay.add_argument("--csv", required=True, help="CSV with timestamp/latitude/longitude columns")
    replay.add_argument(
        "--sport",
        required=True,
        help=f"Sport type ({', '.join(s.value for s in SportType)})",
    )
    replay.add_argument("--output", help="Output .xlsx path (default: timestamped name)")
    replay.add_argument(
        "--no-file",
        action="store_true",
        help="Print the summary without writing a workbook",
    )
    replay.add_argument(
        "--share-live",
        action="store_true",
        help="Also publish accepted fixes to an in-memory live channel",
    )
    return parser


def _cmd_replay(args: argparse.Namespace) -> int:
    fixes = load_fixes_csv(args.csv)
    if not fixes:
        LOGGER.error("No usable fixes found in %s", args.csv)
        return 1
    result = replay_fixes(fixes, args.sport, share_live=args.share_live)

    width = max(len(row["Metric"]) for row in summary_rows(result))
    for row in summary_rows(result):
        print(f"{row['Metric']:<{width}}  {row['Value']}")

    if not args.no_file:
        write_replay_workbook(result, _resolve_output_path(args.output))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.log_level)
    try:
        if args.command == "replay":
            return _cmd_replay(args)
    except (TrackingError, ValueError, FileNotFoundError) as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return 1
    parser.error(f"Unknown command {args.command!r}")
    return 2
