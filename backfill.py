#!/usr/bin/env python3
"""
Manual backfill for anilistwatched.

Pushes progress for every series in a Jellyfin library that the user has
already watched, e.g. after first installing the webhook. Uses the same
configuration as the webhook service (AW_ env vars / config.yml).

Usage:
    python backfill.py USERNAME [--library Anime] [--jellyfin-url URL] [--dry-run]
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger('anilistwatched.backfill')


async def run_backfill(username, library, jellyfin_url, dry_run):
    """Backfill one user's library. Returns the process exit code."""
    # Import here to allow script to show help without dependencies
    from reconciliation.backfill import BackfillRunner
    from shared_lib.client_registry import ClientRegistry
    from webhook.config import get_settings
    from webhook.main import build_engine

    settings = get_settings()
    library = library or settings.jellyfin_library
    if not library:
        logger.error("No library given. Use --library or set AW_JELLYFIN_LIBRARY.")
        return 1

    registry = ClientRegistry(timeout=settings.request_timeout)
    try:
        engine = build_engine(settings, registry)
        try:
            jellyfin = engine.jellyfin_for(jellyfin_url)
        except ValueError:
            logger.error("No Jellyfin URL. Use --jellyfin-url or set AW_JELLYFIN_URL.")
            return 1

        logger.info(f"Backfilling library '{library}' for {username} from {jellyfin.base_url}")
        result = await BackfillRunner(engine, jellyfin).run(username, library, dry_run=dry_run)
    finally:
        await registry.aclose()

    logger.info(
        f"Backfill complete. Series: {result.series_checked}, "
        f"Scrobbled: {result.scrobbled}, Skipped: {result.skipped}, "
        f"Errors: {len(result.errors)}"
    )
    for error in result.errors:
        logger.error(f"✗ {error}")
    print(json.dumps(asdict(result), indent=2))

    return 0 if not result.errors else 1


def main():
    parser = argparse.ArgumentParser(description='Backfill AniList progress from a Jellyfin library')
    parser.add_argument('username', help='Jellyfin username (also selects the AniList token)')
    parser.add_argument('--library', '-l', help='Jellyfin library name (or set AW_JELLYFIN_LIBRARY)')
    parser.add_argument('--jellyfin-url', help='Jellyfin server URL (or set AW_JELLYFIN_URL)')
    parser.add_argument('--dry-run', '-n', action='store_true', help='Only log what would be scrobbled')

    args = parser.parse_args()
    return asyncio.run(run_backfill(args.username, args.library, args.jellyfin_url, args.dry_run))


if __name__ == '__main__':
    sys.exit(main())
