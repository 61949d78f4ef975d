#!/usr/bin/env python3
"""
Feydar historical backfill
Walks the chain backwards from head (or from the last stored block + 1 with --from-latest)
down to the factory deployment block and stores every deployment it finds.

Usage:
  python backfill.py [--from-latest] [--from-block N] [--to-block N]

Do not run at the same time as data_integrity.py: both write the same records.
"""

import argparse
import asyncio
import logging
import sys
import time
from typing import List, Optional

from feydar.bootstrap import Pipeline, print_summary
from feydar.config import load_settings
from feydar.errors import ConfigError, ContractNotFoundError
from feydar.ingestion import backfill_policy, plan_backfill, traverse_descending
from feydar.log_setup import setup_logging


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill FEY token deployments")
    parser.add_argument('--from-latest', action='store_true',
                        help="start from the latest block in the database + 1 (or BACKFILL_FROM_LATEST=true)")
    parser.add_argument('--from-block', type=int, help="start block (defaults to chain head)")
    parser.add_argument('--to-block', type=int, help="lowest block (defaults to the factory deployment block)")
    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"❌ Configuration error: {e}")
        return 1

    setup_logging('logs/backfill.log', settings.log_level)
    logger = logging.getLogger('feydar')
    from_latest = args.from_latest or settings.backfill_from_latest

    print("=" * 60)
    print("📚 FEYDAR BACKFILL")
    print("=" * 60)
    print(f"🏭 Factory: {settings.factory_address} (deployed at block {settings.factory_deployment_block})")
    print(f"📦 {settings.max_blocks_per_query} blocks per query, {settings.request_delay * 1000:.0f}ms between queries")

    pipeline = Pipeline(settings, backfill_policy)
    started = time.monotonic()
    try:
        await pipeline.start()
        start, end = await plan_backfill(pipeline.chain, pipeline.db, settings, from_latest,
                                         args.from_block, args.to_block)
        logger.info(f"🚀 Backfilling blocks {start} down to {end}")
        summary = await traverse_descending(pipeline.reconciler, start, end,
                                            settings.max_blocks_per_query, settings.request_delay)
    except ContractNotFoundError as e:
        logger.error(f"❌ {e}")
        return 1
    except Exception as e:
        logger.error(f"❌ Backfill aborted: {e}", exc_info=True)
        return 1
    finally:
        await pipeline.close()

    print_summary("BACKFILL", summary, time.monotonic() - started)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
