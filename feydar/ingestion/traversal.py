"""
Historical traversal for backfill and integrity repair: newest chunk first, one committed chunk at a time
"""

import asyncio
import logging
import time
from typing import Optional, Tuple

from feydar.chain.client import ChainClient
from feydar.config import Settings
from feydar.database import DeploymentDatabase
from feydar.ingestion.reconciler import ReconcileSummary, Reconciler
from feydar.ingestion.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

PROGRESS_EVERY_CHUNKS = 100


async def traverse_descending(reconciler: Reconciler, start_block: int, end_block: int,
                              chunk_size: int, delay: float = 0.0,
                              summary: Optional[ReconcileSummary] = None) -> ReconcileSummary:
    """Reconcile [end_block, start_block] in chunks from the top down"""
    summary = summary if summary is not None else ReconcileSummary()
    if start_block < end_block:
        logger.info(f"Nothing to do: start block {start_block} is below end block {end_block}")
        return summary

    total_blocks = start_block - end_block + 1
    processed_blocks = 0
    chunks = 0
    started = time.monotonic()
    current = start_block

    while current >= end_block:
        low = max(current - chunk_size + 1, end_block)
        await reconciler.reconcile_range(low, current, summary)

        processed_blocks += current - low + 1
        chunks += 1
        if chunks % PROGRESS_EVERY_CHUNKS == 0 or low == end_block:
            percent = processed_blocks / total_blocks * 100
            elapsed = time.monotonic() - started
            logger.info(f"⏳ Progress: {percent:.1f}% ({processed_blocks}/{total_blocks} blocks, "
                        f"at {low}-{current}, {elapsed:.0f}s elapsed, {summary.writes} writes)")

        current = low - 1
        if current >= end_block and delay:
            await asyncio.sleep(delay)

    return summary


async def chain_head(chain: ChainClient, settings: Settings) -> int:
    policy = RetryPolicy(settings.max_retries, settings.retry_base_delay, settings.retry_max_delay)
    return await retry_async(chain.get_block_number, policy, label='eth_blockNumber')


async def plan_backfill(chain: ChainClient, db: DeploymentDatabase, settings: Settings,
                        from_latest: bool = False, from_block: Optional[int] = None,
                        to_block: Optional[int] = None) -> Tuple[int, int]:
    """(start, end) blocks for a backfill run, start >= end when there is work"""
    head = await chain_head(chain, settings)
    latest_in_db = db.get_latest_block_number()

    logger.info(f"Latest block on chain: {head}")
    logger.info(f"Latest block in DB: {latest_in_db if latest_in_db is not None else 'none'}")
    if latest_in_db is not None and latest_in_db < head:
        logger.info(f"⚠️ DB is {head - latest_in_db} blocks behind chain")

    if from_block is not None:
        start = from_block
    elif from_latest and latest_in_db is not None:
        start = latest_in_db + 1
    else:
        start = head
    end = to_block if to_block is not None else settings.factory_deployment_block
    return min(start, head), end


async def plan_integrity(chain: ChainClient, settings: Settings) -> Tuple[int, int]:
    """Integrity repair always covers chain head down to the factory deployment block"""
    head = await chain_head(chain, settings)
    return head, settings.factory_deployment_block
