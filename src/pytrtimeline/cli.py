"""``tr-timeline``: download the full timeline into a JSON file."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pytrtimeline import __version__
from pytrtimeline.client import TradeRepublicClient
from pytrtimeline.config import TrConfig
from pytrtimeline.exceptions import TrError
from pytrtimeline.models.timeline import TimelineResult

_logger = logging.getLogger(__name__)

OUTPUT_FILE = "timeline.json"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tr-timeline",
        description="Fetch the Trade Republic timeline with details and write it as JSON",
    )
    parser.add_argument("output_dir", type=Path, metavar="OUTPUT_DIR", help="Directory for timeline.json")
    parser.add_argument("-n", "--phone-no", required=True, help="Phone number in international format, e.g. +4912345678")
    parser.add_argument("-p", "--pin", required=True, help="4-digit PIN")
    parser.add_argument(
        "--last-days",
        type=int,
        default=0,
        help="Only fetch events from the last N days (0 = full history)",
    )
    parser.add_argument("--concurrency", type=int, default=None, help="Maximum detail lookups in flight")
    parser.add_argument("--timeout", type=float, default=None, help="Seconds to wait for each subscription")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable info logging")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging (frames are redacted)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _since(last_days: int) -> datetime | None:
    if last_days <= 0:
        return None
    return datetime.now(UTC) - timedelta(days=last_days)


def _prompt_code() -> str:
    return input("Enter the 4-digit code from your Trade Republic app: ")


def write_timeline(result: TimelineResult, output_dir: Path) -> Path:
    """Write the ordered events to ``OUTPUT_DIR/timeline.json``."""
    output_dir.mkdir(parents=True, exist_ok=True)
    target = output_dir / OUTPUT_FILE
    events = [event.model_dump(mode="json") for event in result.events]
    target.write_text(json.dumps(events, indent=2, ensure_ascii=False), encoding="utf-8")
    return target


async def _run(args: argparse.Namespace) -> TimelineResult:
    overrides: dict[str, object] = {}
    if args.concurrency is not None:
        overrides["detail_concurrency"] = args.concurrency
    if args.timeout is not None:
        overrides["subscription_timeout"] = args.timeout
    config = TrConfig.from_env(**overrides)

    async with TradeRepublicClient(config) as client:
        auth = await client.login(args.phone_no, args.pin, _prompt_code)
        await client.connect(auth)
        return await client.fetch_timeline(since=_since(args.last_days))


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    if args.debug:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    elif args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    if args.last_days < 0:
        print("error: --last-days must not be negative", file=sys.stderr)
        return 1

    try:
        result = asyncio.run(_run(args))
        target = write_timeline(result, args.output_dir)
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130
    except TrError as exc:
        _logger.debug("Run failed", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except OSError as exc:
        print(f"error: cannot write output: {exc}", file=sys.stderr)
        return 1

    print(f"Wrote {len(result.events)} events to {target}")
    print(f"{result.summary()}; {len(result.incomplete_events)} event(s) with incomplete details")
    for stats in result.failed_feeds:
        print(f"warning: feed {stats.feed} failed and is missing from the output: {stats.error}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
