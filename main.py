"""
Spinner Bot Backend: Main Entry Point
======================================
Running this file:
1. Loads your configuration from .env
2. Sets up logging
3. Starts the REST API (which opens the database, resumes running bots
   and starts the token feed refresh loop)

Usage:
    python main.py                       # Run the API server
    python main.py --refresh-tokens      # Pull the newest tokens into the catalog once and exit
    python main.py --log-level DEBUG     # Override LOG_LEVEL
"""

import asyncio
import argparse

import aiohttp

from config.settings import settings
from database.db import Database
from discovery.pumpfun_client import PumpFunClient
from discovery.token_feed import TokenFeed
from discovery.token_filter import TokenFilter
from utils.logger import setup_logging, get_logger

logger = get_logger(__name__)


async def refresh_tokens() -> None:
    """One feed refresh without starting the API."""
    db = Database(settings.db_path)
    await db.initialize()
    try:
        async with aiohttp.ClientSession() as session:
            client = PumpFunClient(
                settings.pumpfun_api_url,
                session,
                timeout=settings.feed_timeout_seconds,
                coin_timeout=settings.coin_timeout_seconds,
            )
            feed = TokenFeed(settings, db, client, TokenFilter(settings))
            count = await feed.refresh_once()
            logger.info("refresh_complete", tokens=count, catalog_size=await db.count_tokens())
    finally:
        await db.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Spinner Bot backend")
    parser.add_argument("--refresh-tokens", action="store_true", help="Refresh the token catalog once and exit")
    parser.add_argument("--log-level", help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ERROR)")
    args = parser.parse_args()

    if args.log_level:
        settings.log_level = args.log_level

    setup_logging(log_level=settings.log_level, log_dir="logs", log_format=settings.log_format)

    if args.refresh_tokens:
        logger.info("mode_refresh_tokens")
        asyncio.run(refresh_tokens())
        return

    # Imported here so --refresh-tokens doesn't load the web stack
    from api.app import run_server

    logger.info("api_starting", host=settings.api_host, port=settings.api_port)
    run_server(settings)


if __name__ == "__main__":
    main()
