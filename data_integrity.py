#!/usr/bin/env python3
"""
Feydar data integrity repair
Re-derives every deployment from chain head down to the factory deployment block and fixes
whatever the store has wrong or missing. Safe to run repeatedly: unchanged records are not written.

Block timestamps and receipts are required here; lookups for them retry until they succeed.

Usage:
  python data_integrity.py [--no-limit]

  --no-limit   premium RPC mode: 1000 blocks per query, no delay between queries

Do not run at the same time as backfill.py: both write the same records.
"""

import asyncio
import logging
import sys
import time
from typing import List, Optional

from feydar.bootstrap import Pipeline, print_summary
from feydar.config import load_settings
from feydar.errors import ConfigError, ContractNotFoundError
from feydar.ingestion import integrity_policy, plan_integrity, traverse_descending
from feydar.log_setup import setup_logging


async def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"❌ Configuration error: {e}")
        return 1

    no_limit = '--no-limit' in argv
    if no_limit:
        settings = settings.unlimited()

    setup_logging('logs/integrity.log', settings.log_level)
    logger = logging.getLogger('feydar')

    print("=" * 60)
    print("🩺 FEYDAR DATA INTEGRITY CHECK")
    print("=" * 60)
    print(f"🏭 Factory: {settings.factory_address} (deployed at block {settings.factory_deployment_block})")
    mode = 'no-limit' if no_limit else 'rate-limited'
    print(f"📦 Mode: {mode}, {settings.max_blocks_per_query} blocks per query")

    pipeline = Pipeline(settings, integrity_policy)
    started = time.monotonic()
    try:
        await pipeline.start()
        start, end = await plan_integrity(pipeline.chain, settings)
        logger.info(f"🔍 Checking blocks {start} down to {end}")
        summary = await traverse_descending(pipeline.reconciler, start, end,
                                            settings.max_blocks_per_query, settings.request_delay)
    except ContractNotFoundError as e:
        logger.error(f"❌ {e}")
        return 1
    except Exception as e:
        logger.error(f"❌ Integrity check aborted: {e}", exc_info=True)
        return 1
    finally:
        await pipeline.close()

    print_summary("INTEGRITY", summary, time.monotonic() - started)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
