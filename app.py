#!/usr/bin/env python3
"""
Flagboard portal server.
Scores flag submissions over a JSON web API and a TCP socket, and serves
global and per-event leaderboards.
"""

import argparse
import asyncio
import logging
import os
from pathlib import Path

from flagboard.config import FlagboardConfig
from flagboard.logging_config import configure_logging
from flagboard.portal import PortalSystem
from flagboard.seed import load_seed

logger = logging.getLogger("flagboard")


async def main():
    """Main function with command line interface."""

    parser = argparse.ArgumentParser(
        description="Flagboard CTF portal with web API and TCP socket interfaces",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "flagboard_config.json"),
        help="Configuration file path (env: CONFIG_PATH)"
    )
    parser.add_argument(
        "--db",
        default=None,
        help="SQLite database file path (overrides storage.db_path)"
    )
    parser.add_argument(
        "--seed",
        default=None,
        help="JSON file with events, users and challenges to load before starting"
    )
    parser.add_argument(
        "--recalculate",
        action="store_true",
        help="Rebuild user totals from the submission ledger and exit"
    )

    args = parser.parse_args()

    config_path = Path(args.config)

    if config_path.exists() and not config_path.is_file():
        print(f"Error: {args.config} exists but is not a file")
        return

    config = FlagboardConfig(args.config)
    configure_logging(config.get("logging", "level"))

    system = PortalSystem(config=config, db_path=args.db)
    await system.init_db()

    if args.seed:
        await load_seed(system.catalog, args.seed)

    if args.recalculate:
        summary = await system.leaderboard.recalculate_user_totals()
        print(
            f"Recalculated {summary.total_users} users from "
            f"{summary.correct_submissions} correct submissions ({summary.total_points} points)"
        )
        for entry in summary.top_users:
            print(f"{entry.rank:2d}. {entry.username:<20} {entry.score:6d} pts")
        return

    try:
        await system.run_both_servers()
    except KeyboardInterrupt:
        logger.info("Server interrupted")


if __name__ == "__main__":
    asyncio.run(main())
