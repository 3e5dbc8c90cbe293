#!/usr/bin/env python3
"""
Demo: watch an asyncio loop and block it on purpose.

The loop runs a ticker task that periodically blocks the whole loop
with time.sleep(). While it is blocked the heartbeat cannot run, and
the watchdog thread logs a ui_blocked record on every poll.

Usage:
    python scripts/run_watchdog_demo.py
    python scripts/run_watchdog_demo.py --block-ms 1200 --duration 10
    python scripts/run_watchdog_demo.py --config config/watchdog.yaml --log-level DEBUG

Settings come from the YAML file, then UI_WATCHDOG_* environment
variables (a .env file is honored), then the command line.
"""

import argparse
import asyncio
import sys
import time
from dataclasses import asdict, replace
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import structlog
from dotenv import load_dotenv

from ui_watchdog import WatchdogController, WatchdogSettings


def setup_logging(log_level: str = "INFO", log_file: str = None) -> None:
    """Configure structured logging for the demo."""
    import logging

    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        handlers=handlers,
    )


async def busy_app(block_ms: int, every_s: float, duration_s: float) -> int:
    """Yield to the loop normally, but block it every ``every_s`` seconds."""
    logger = structlog.get_logger("demo")
    deadline = time.monotonic() + duration_s
    blocks = 0

    while time.monotonic() < deadline:
        await asyncio.sleep(every_s)
        logger.info("blocking_event_loop", block_ms=block_ms)
        time.sleep(block_ms / 1000.0)
        blocks += 1

    return blocks


async def run(settings: WatchdogSettings, args) -> None:
    # settings.debug_break selects WatchdogOption.DEBUG_BREAK
    with WatchdogController(settings=settings) as watchdog:
        blocks = await busy_app(args.block_ms, args.every, args.duration)

    logger = structlog.get_logger("demo")
    logger.info(
        "demo_finished",
        blocks=blocks,
        joined=watchdog.last_shutdown.joined if watchdog.last_shutdown else None,
    )


def main():
    parser = argparse.ArgumentParser(
        description="UI watchdog demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", type=str, default="config/watchdog.yaml", help="Path to settings YAML")
    parser.add_argument("--heartbeat-ms", type=int, default=None, help="Heartbeat interval")
    parser.add_argument("--poll-ms", type=int, default=None, help="Detector poll interval")
    parser.add_argument("--threshold-ms", type=int, default=None, help="Stall threshold")
    parser.add_argument("--block-ms", type=int, default=800, help="How long each block lasts")
    parser.add_argument("--every", type=float, default=2.0, help="Seconds between blocks")
    parser.add_argument("--duration", type=float, default=8.0, help="Demo length in seconds")
    parser.add_argument("--debug-break", action="store_true", help="Break into the debugger on alert")
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument("--log-file", type=str, default=None, help="Path to log file")

    args = parser.parse_args()

    # Load environment variables
    load_dotenv()

    setup_logging(args.log_level, args.log_file)
    logger = structlog.get_logger(__name__)

    try:
        settings = WatchdogSettings.from_env(WatchdogSettings.from_yaml(args.config))

        overrides = {
            "heartbeat_interval_ms": args.heartbeat_ms,
            "poll_interval_ms": args.poll_ms,
            "stall_threshold_ms": args.threshold_ms,
        }
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if args.debug_break:
            overrides["debug_break"] = True
        settings = replace(settings, **overrides).validate()

        logger.info("starting_demo", **asdict(settings))
        asyncio.run(run(settings, args))

    except KeyboardInterrupt:
        logger.info("demo_stopped")
    except Exception as e:
        logger.exception("demo_crashed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
