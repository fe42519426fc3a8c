#!/usr/bin/env python3
# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Pagecast CLI.

Usage:
    pagecast URL STREAM_KEY [OPTIONS]

Examples:
    # Broadcast a dashboard to YouTube Live
    pagecast https://example.com/dashboard xxxx-xxxx-xxxx-xxxx

    # Same, configured from the environment
    WEBSITE_URL=https://example.com/dashboard YOUTUBE_STREAM_KEY=xxxx pagecast

    # 1080p with background music, rotating every 2 hours
    pagecast https://example.com xxxx --width 1920 --height 1080 \\
        --audio --audio-source https://example.com/track.mp3 \\
        --rotation-interval 7200
"""

from __future__ import annotations

import argparse
import asyncio
import os
import signal
import sys
from typing import List, Optional

from pagecast.config import RunConfiguration
from pagecast.core.supervisor import Supervisor
from pagecast.exceptions import ConfigurationError
from pagecast.utils.logger import configure_logging, logger, redact

USAGE = (
    "Usage: pagecast <website-url> <youtube-stream-key>\n"
    "Or set environment variables: WEBSITE_URL and YOUTUBE_STREAM_KEY"
)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="pagecast",
        description="Broadcast a live web page to an RTMP endpoint, unattended.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("url", nargs="?", help="Page to broadcast (env: WEBSITE_URL)")
    parser.add_argument(
        "stream_key", nargs="?", help="Stream key (env: YOUTUBE_STREAM_KEY)"
    )
    parser.add_argument("--ingest-url", help="RTMP ingest endpoint")
    parser.add_argument("--width", type=int, help="Capture width (default: 1280)")
    parser.add_argument("--height", type=int, help="Capture height (default: 720)")
    parser.add_argument(
        "--retry-delay", type=float, help="Seconds between restarts (default: 5)"
    )
    parser.add_argument(
        "--max-retries", type=int, help="Failures tolerated before exiting (default: 3)"
    )
    parser.add_argument(
        "--rotation-interval",
        type=float,
        help="Seconds between planned restarts, 0 disables (default: 21600)",
    )
    parser.add_argument(
        "--audio",
        dest="audio_enabled",
        action="store_true",
        default=None,
        help="Mix background audio into the stream",
    )
    parser.add_argument(
        "--no-audio",
        dest="audio_enabled",
        action="store_false",
        help="Stream silence",
    )
    parser.add_argument(
        "--audio-source",
        dest="audio_sources",
        action="append",
        help="Audio file path or URL (repeatable)",
    )
    parser.add_argument("--ready-selector", help="CSS selector to wait for after load")
    parser.add_argument(
        "--health-period", type=float, help="Seconds between health samples (default: 60)"
    )
    parser.add_argument(
        "--stale-threshold",
        type=int,
        help="Unchanged samples before a forced reload (default: 2)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("PAGECAST_LOG_LEVEL", "INFO"),
        help="Set logging level (default: INFO)",
    )
    return parser


def build_config(args: argparse.Namespace) -> RunConfiguration:
    """Resolve the run configuration from parsed arguments and the environment."""
    return RunConfiguration.from_sources(
        url=args.url,
        stream_key=args.stream_key,
        ingest_url=args.ingest_url,
        width=args.width,
        height=args.height,
        retry_delay=args.retry_delay,
        max_retries=args.max_retries,
        rotation_interval=args.rotation_interval,
        audio_enabled=args.audio_enabled,
        audio_sources=args.audio_sources,
        ready_selector=args.ready_selector,
        health_period=args.health_period,
        stale_threshold=args.stale_threshold,
    )


async def run_supervisor(config: RunConfiguration) -> int:
    """Run a supervisor with SIGINT/SIGTERM wired to a graceful shutdown."""
    supervisor = Supervisor(config)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(
                sig, supervisor.request_shutdown, f"received {sig.name}"
            )
        except NotImplementedError:
            pass
    return await supervisor.run()


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if not (args.url or os.environ.get("WEBSITE_URL") or os.environ.get("PAGECAST_URL")):
        print(USAGE, file=sys.stderr)
        sys.exit(1)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        print(USAGE, file=sys.stderr)
        sys.exit(1)

    redact(config.stream_key)
    logger.info(
        f"Broadcasting {config.url} at {config.resolution.as_size()} "
        f"(max retries {config.max_retries}, retry delay {config.retry_delay:.1f}s)"
    )
    sys.exit(asyncio.run(run_supervisor(config)))


if __name__ == "__main__":
    main()
