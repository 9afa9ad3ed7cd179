#!/usr/bin/env python3
"""Main entry point for devcheck.

Runs a headless diagnostic pass over the local host's devices and prints
the recorded results.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent))

from constants import ALL_TESTS, DEFAULT_HARNESS_CONFIG
from devices.platform import LocalEventSource
from exceptions import ConfigurationError
from harness.config import HarnessConfig, load_config
from harness.suite import DeviceTestSuite
from utils.logger import get_logger, set_log_level

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Headless device diagnostics (camera, audio, battery, input)"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=DEFAULT_HARNESS_CONFIG,
        help="Path to harness config file"
    )
    parser.add_argument(
        "--tests",
        nargs="+",
        choices=list(ALL_TESTS),
        help="Tests to run (default: tests listed in the config)"
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=1.0,
        help="Seconds each test runs before it is judged"
    )
    parser.add_argument(
        "--request-permissions",
        action="store_true",
        help="Request missing permissions instead of reporting them"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print results as JSON"
    )

    return parser.parse_args(argv)


def load_settings(config_path: str) -> HarnessConfig:
    """Load the config file, falling back to defaults when it is absent."""
    if not Path(config_path).exists():
        logger.info(f"Config not found at {config_path}, using defaults")
        return HarnessConfig()
    return load_config(config_path)


def format_rows(rows: list[dict]) -> str:
    """Render report rows as a plain-text table."""
    lines = []
    for row in rows:
        result = row["result"]
        if result is not None:
            status = result["outcome"].upper()
            detail = result.get("reason") or result.get("error") or ""
            duration = f"{result['duration_ms']:.0f}ms"
        else:
            status = row["state"].upper()
            detail = row["error"]["message"] if row["error"] else ""
            duration = "-"
        lines.append(f"{row['test_name']:<12} {status:<20} {duration:>8}  {detail}")
    return "\n".join(lines)


async def run(args: argparse.Namespace, config: HarnessConfig) -> list[dict]:
    """Run the selected tests against the host platform."""
    from devices.system import SystemPlatform

    platform = SystemPlatform()
    async with DeviceTestSuite(platform, LocalEventSource(), config) as suite:
        return await suite.run_all(
            args.tests or config.tests,
            duration_s=args.duration,
            request_permission=args.request_permissions,
        )


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        config = load_settings(args.config)
    except ConfigurationError as e:
        e.log()
        return 2

    set_log_level(args.log_level or config.log_level)

    try:
        rows = asyncio.run(run(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130

    if args.json:
        print(json.dumps(rows, indent=2, default=str))
    else:
        print(format_rows(rows))

    failed = [
        row for row in rows
        if row["result"] is not None and row["result"]["outcome"] == "failed"
    ]
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
