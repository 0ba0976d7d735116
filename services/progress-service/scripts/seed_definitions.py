#!/usr/bin/env python3
"""
Seed the default achievement and leaderboard catalogue

Creates the DynamoDB tables when missing (LocalStack), then upserts the
default definitions. Earned counters of existing achievements are kept.

This script is IDEMPOTENT - safe to run multiple times.

Usage:
    python scripts/seed_definitions.py [--skip-tables] [--recompute]
"""
import argparse
import logging
import sys

from progress_engine import dynamo
from progress_engine.config import get_settings
from progress_engine.logic import achievement_service, leaderboard_service

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)
settings = get_settings()


def main() -> int:
    parser = argparse.ArgumentParser(description='Seed default achievements and leaderboards')
    parser.add_argument('--skip-tables', action='store_true', help='Do not try to create the tables')
    parser.add_argument('--recompute', action='store_true', help='Recompute every leaderboard after seeding')
    args = parser.parse_args()

    if not args.skip_tables:
        created = dynamo.create_tables_if_not_exist()
        logger.info(f"Tables created: {created or 'none (already present)'}")

    achievements = achievement_service.seed_default_achievements()
    leaderboards = leaderboard_service.seed_default_leaderboards()
    logger.info(f"Seeded {achievements} achievements and {leaderboards} leaderboards "
                f"into {settings.DYNAMODB_GAMIFICATION_TABLE}")

    if args.recompute:
        refreshed = leaderboard_service.recompute_all()
        logger.info(f"Recomputed {refreshed} leaderboards")

    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as e:
        logger.error(f"Seeding failed: {e}", exc_info=True)
        sys.exit(1)
