#!/usr/bin/env python3
"""
Curator's Desk Sync Scheduler Runner
====================================

Entry point for running batch syncs once (cron/systemd timer) or as a
continuous service (Docker/systemd service).
"""

import argparse
import asyncio
import signal
import sys

from curatorsdesk.config.settings import get_settings
from curatorsdesk.scheduler.sync_scheduler import SyncScheduler
from curatorsdesk.utils.logging import configure_application_logging, get_logger_for_component


async def main() -> int:
    """Main entry point for the scheduler."""
    parser = argparse.ArgumentParser(description="Curator's Desk Sync Scheduler")
    parser.add_argument('--service', action='store_true',
                        help='Run continuously, syncing every scheduler.sync_interval_minutes')
    parser.add_argument('--user', help='Only sync sources of this user (one-shot mode)')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    args = parser.parse_args()

    settings = get_settings()
    configure_application_logging(
        settings.logging,
        level="DEBUG" if args.debug else settings.get_effective_log_level(),
    )
    logger = get_logger_for_component("scheduler_runner")

    scheduler = SyncScheduler(settings)

    if args.service:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                logger.debug(f"Signal handler for {sig.name} not supported on this platform")

        print(f"Curator's Desk sync service starting, every {settings.scheduler.sync_interval_minutes} min")
        print("Press Ctrl+C to stop.")
        await scheduler.run_forever(stop_event)
        return 0

    result = await scheduler.run_once(user_id=args.user)
    print(SyncScheduler.format_summary(result))
    return 0 if result["success"] else 1


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nScheduler stopped by user")
