"""
Reconciliation engine: block range -> decoded, enriched, diffed and persisted deployments.

One engine serves the live listener, backfill and integrity repair. What differs
between them is carried by an IngestionPolicy rather than separate code paths.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from feydar.chain.client import ChainClient
from feydar.chain.contracts import TOKEN_CREATED_TOPIC
from feydar.chain.decoder import decode_token_created
from feydar.chain.fee_split import extract_fee_split
from feydar.chain.purchase import extract_initial_purchase
from feydar.chain.token_state import TokenStateReader
from feydar.config import Settings
from feydar.database import DeploymentDatabase, WriteOperation
from feydar.errors import (
    CriticalDataUnavailable,
    DecodeError,
    PersistenceError,
    RangeProcessingError,
    RangeTooWideError,
    RateLimitError,
    classify_provider_error,
    is_retryable,
)
from feydar.ingestion.diff import describe_changes, diff_records
from feydar.ingestion.retry import RetryPolicy, retry_async
from feydar.models import (
    DeploymentRecord,
    FeeSplit,
    NameResolution,
    RawLog,
    TokenCreationEvent,
    TokenState,
    TransactionReceipt,
)
from feydar.models.deployment import blank_to_none
from feydar.services.name_resolver import NameResolver
from feydar.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

STATE_FIELDS = (
    'current_admin_address', 'current_image_uri', 'current_metadata',
    'current_context', 'is_verified', 'total_supply',
)


class ReconcileState(Enum):
    IDLE = 'idle'
    FETCHING_LOGS = 'fetching_logs'
    RATE_LIMITED = 'rate_limited'
    RANGE_TOO_LARGE = 'range_too_large'
    DECODING = 'decoding'
    ENRICHING = 'enriching'
    DIFFING = 'diffing'
    PERSISTING = 'persisting'


def _always_retry(error: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class IngestionPolicy:
    """How strict an entry point is about auxiliary data"""
    name: str
    timestamp_retry: RetryPolicy
    receipt_retry: RetryPolicy
    refresh_existing_state: bool  # re-read contract state for records already stored
    notify: bool
    state_refresh_delay: Optional[float] = None  # background re-read when a new record has no state
    receipt_required: bool = False  # every receipt error is retried and never leaves the fee split empty


def live_policy(settings: Settings) -> IngestionPolicy:
    return IngestionPolicy(
        name='live',
        timestamp_retry=RetryPolicy(settings.max_retries, settings.retry_base_delay, settings.retry_max_delay),
        receipt_retry=RetryPolicy(3, 0.5, settings.retry_max_delay, linear=True),
        refresh_existing_state=True,
        notify=True,
        state_refresh_delay=30.0,
    )


def backfill_policy(settings: Settings) -> IngestionPolicy:
    retry = RetryPolicy(settings.max_retries, settings.retry_base_delay, settings.retry_max_delay)
    return IngestionPolicy(
        name='backfill',
        timestamp_retry=retry,
        receipt_retry=retry,
        refresh_existing_state=False,
        notify=False,
    )


def integrity_policy(settings: Settings) -> IngestionPolicy:
    # Never give up on timestamps or receipts; growth capped at 32x the base delay
    forever = RetryPolicy(None, settings.retry_base_delay, max(settings.retry_base_delay * 32, 1.0))
    return IngestionPolicy(
        name='integrity',
        timestamp_retry=forever,
        receipt_retry=forever,
        refresh_existing_state=True,
        notify=False,
        receipt_required=True,
    )


@dataclass
class ReconcileSummary:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errored: int = 0
    retries: int = 0
    bisections: int = 0
    ranges_processed: int = 0
    errors: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def writes(self) -> int:
        return self.created + self.updated

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.unchanged + self.skipped + self.errored

    def record_error(self, where: str, message: str, events: int = 1):
        self.errored += events
        self.errors.append((where, message))

    def lines(self) -> List[str]:
        lines = [
            f"✅ Added: {self.created}",
            f"🔄 Updated: {self.updated}",
            f"✓ Already accurate: {self.unchanged}",
            f"⏭️ Skipped (undecodable): {self.skipped}",
            f"❌ Errors: {self.errored}",
            f"🔁 Retries: {self.retries}",
            f"✂️ Range splits: {self.bisections}",
        ]
        for where, message in self.errors:
            lines.append(f"   - {where}: {message}")
        return lines


@dataclass
class _StagedWrite:
    operation: WriteOperation
    extras: Dict[str, Any]
    state_missing: bool = False


class Reconciler:
    """Fetches, decodes, enriches, diffs and persists factory deployments"""

    def __init__(self, chain: ChainClient, db: DeploymentDatabase, resolver: NameResolver,
                 settings: Settings, policy: IngestionPolicy,
                 state_reader: Optional[TokenStateReader] = None,
                 dispatcher: Optional[NotificationDispatcher] = None):
        self.chain = chain
        self.db = db
        self.resolver = resolver
        self.settings = settings
        self.policy = policy
        self.state_reader = state_reader or TokenStateReader(chain)
        self.dispatcher = dispatcher
        self.factory_address = settings.factory_address
        self.log_retry = RetryPolicy(settings.max_retries, settings.retry_base_delay, settings.retry_max_delay)
        self.state = ReconcileState.IDLE
        self._block_times: Dict[int, datetime] = {}
        self._background: Set[asyncio.Task] = set()

    # Range processing

    async def reconcile_range(self, from_block: int, to_block: int,
                              summary: Optional[ReconcileSummary] = None) -> ReconcileSummary:
        """Reconcile every creation event in [from_block, to_block] as one atomic chunk"""
        summary = summary if summary is not None else ReconcileSummary()
        try:
            logs = await self._fetch_logs(from_block, to_block, summary)
        except RangeTooWideError as e:
            if from_block >= to_block:
                summary.record_error(f"block {from_block}", f"provider rejected single-block range: {e}")
                self.state = ReconcileState.IDLE
                return summary
            middle = (from_block + to_block) // 2
            summary.bisections += 1
            logger.warning(f"✂️ Block range {from_block}-{to_block} too wide, splitting at {middle}")
            await self.reconcile_range(from_block, middle, summary)
            await self.reconcile_range(middle + 1, to_block, summary)
            return summary
        except RangeProcessingError as e:
            logger.error(f"❌ {e}")
            summary.record_error(f"blocks {from_block}-{to_block}", str(e), events=0)
            self.state = ReconcileState.IDLE
            return summary

        if logs:
            logger.info(f"📦 Blocks {from_block}-{to_block}: {len(logs)} event(s)")
        await self._reconcile_logs(logs, summary)
        summary.ranges_processed += 1
        return summary

    async def process_log(self, log: RawLog) -> ReconcileSummary:
        """Live path: one subscription log reconciled as its own chunk"""
        summary = ReconcileSummary()
        await self._reconcile_logs([log], summary)
        return summary

    def _retry_counter(self, summary: ReconcileSummary):
        def on_retry(attempt: int, error: BaseException, delay: float):
            summary.retries += 1
            if isinstance(classify_provider_error(error), RateLimitError) and self.state == ReconcileState.FETCHING_LOGS:
                self.state = ReconcileState.RATE_LIMITED
        return on_retry

    async def _fetch_logs(self, from_block: int, to_block: int, summary: ReconcileSummary) -> List[RawLog]:
        self.state = ReconcileState.FETCHING_LOGS

        async def query():
            self.state = ReconcileState.FETCHING_LOGS
            return await self.chain.get_logs(self.factory_address, [TOKEN_CREATED_TOPIC], from_block, to_block)

        try:
            return await retry_async(query, self.log_retry, on_retry=self._retry_counter(summary),
                                     label=f"getLogs {from_block}-{to_block}")
        except Exception as e:
            classified = classify_provider_error(e)
            if isinstance(classified, RangeTooWideError):
                self.state = ReconcileState.RANGE_TOO_LARGE
                raise classified from e
            raise RangeProcessingError(from_block, to_block, str(e)) from e

    async def _reconcile_logs(self, logs: List[RawLog], summary: ReconcileSummary):
        staged: List[_StagedWrite] = []
        seen: Set[str] = set()
        self._block_times.clear()

        for log in sorted(logs, key=lambda entry: (entry.block_number, entry.log_index)):
            self.state = ReconcileState.DECODING
            try:
                event = decode_token_created(log)
            except DecodeError as e:
                summary.skipped += 1
                logger.warning(f"⏭️ Skipping undecodable log: {e}")
                continue

            keys = {event.transaction_hash, event.token_address.lower()}
            if keys & seen:
                # Same deployment twice in one chunk (provider duplicate)
                summary.unchanged += 1
                continue
            seen |= keys

            try:
                write = await self._reconcile_event(event, summary)
            except Exception as e:
                logger.error(f"❌ Failed to reconcile {event.symbol} in {event.transaction_hash}: {e}")
                summary.record_error(event.transaction_hash, str(e))
                continue
            if write is not None:
                staged.append(write)

        await self._persist(staged, summary)
        self.state = ReconcileState.IDLE

    async def _persist(self, staged: List[_StagedWrite], summary: ReconcileSummary):
        if not staged:
            return
        self.state = ReconcileState.PERSISTING
        try:
            self.db.run_atomic([write.operation for write in staged])
        except PersistenceError as e:
            logger.error(f"❌ Chunk write failed, nothing persisted: {e}")
            where = ', '.join(write.operation.record.transaction_hash for write in staged)
            summary.record_error(where, str(e), events=len(staged))
            return

        for write in staged:
            op = write.operation
            if op.kind == 'create':
                summary.created += 1
                logger.info(f"✅ Added {op.record.name} ({op.record.symbol}) {op.record.token_address}")
            else:
                summary.updated += 1

            if self.policy.notify and self.dispatcher is not None:
                if op.kind == 'create':
                    self.dispatcher.notify_created(op.record, write.extras)
                else:
                    self.dispatcher.notify_updated(op.record, op.changes)
            if write.state_missing and self.policy.state_refresh_delay is not None:
                self._schedule_state_refresh(op.record.token_address, self.policy.state_refresh_delay)

    # Single event

    async def _reconcile_event(self, event: TokenCreationEvent, summary: ReconcileSummary) -> Optional[_StagedWrite]:
        existing = (self.db.find_by_transaction_hash(event.transaction_hash)
                    or self.db.find_by_token_address(event.token_address))

        self.state = ReconcileState.ENRICHING
        read_state = existing is None or self.policy.refresh_existing_state
        receipt_data, names, token_state, created_at = await asyncio.gather(
            self._fetch_receipt_data(event, summary),
            self.resolver.resolve(event.admin_address),
            self._read_state(event.token_address, read_state),
            self._fetch_block_time(event.block_number, summary),
            return_exceptions=True,
        )
        # Only the block timestamp is allowed to fail the event
        if isinstance(created_at, BaseException):
            raise created_at
        for result in (receipt_data, names, token_state):
            if isinstance(result, BaseException):
                raise result

        fee_split, receipt = receipt_data
        record = self._build_record(event, created_at, names, fee_split, token_state)
        extras = self._extras(event, receipt, fee_split)

        self.state = ReconcileState.DIFFING
        if existing is None:
            state_missing = read_state and all(getattr(record, name) is None for name in STATE_FIELDS)
            return _StagedWrite(WriteOperation.create(record), extras, state_missing)

        changes = diff_records(existing, record)
        if not changes:
            summary.unchanged += 1
            logger.debug(f"✓ {existing.symbol} {existing.token_address} already accurate")
            return None
        logger.info(f"🔄 Updating {existing.symbol} {existing.token_address}: {describe_changes(existing, changes)}")
        return _StagedWrite(WriteOperation.update(existing, changes), extras)

    async def _fetch_receipt_data(self, event: TokenCreationEvent,
                                  summary: ReconcileSummary) -> Tuple[Optional[FeeSplit], Optional[TransactionReceipt]]:
        tx_hash = event.transaction_hash

        async def fetch() -> TransactionReceipt:
            receipt = await self.chain.get_transaction_receipt(tx_hash)
            if receipt is None:
                raise CriticalDataUnavailable(f"receipt for {tx_hash} not indexed yet")
            return receipt

        retryable = _always_retry if self.policy.receipt_required else is_retryable
        try:
            receipt = await retry_async(fetch, self.policy.receipt_retry, is_retryable=retryable,
                                        on_retry=self._retry_counter(summary), label=f"receipt {tx_hash[:10]}")
        except Exception as e:
            if self.policy.receipt_required:
                raise
            logger.warning(f"⚠️ No receipt for {tx_hash} ({e}); fee split left empty")
            return None, None

        fee_split = extract_fee_split(receipt)
        if fee_split is None:
            logger.debug(f"No fee split recovered for {tx_hash}")
        elif fee_split.source == 'manual':
            logger.info(f"🧮 Fee split for {tx_hash[:10]} decoded manually "
                        f"({fee_split.creator_bps}/{fee_split.staker_bps}, confidence {fee_split.confidence})")
        return fee_split, receipt

    async def _read_state(self, token_address: str, enabled: bool) -> TokenState:
        if not enabled:
            return TokenState()
        return await self.state_reader.read(token_address)

    async def _fetch_block_time(self, block_number: int, summary: ReconcileSummary) -> datetime:
        """Block header timestamp; never substituted with local time"""
        if block_number in self._block_times:
            return self._block_times[block_number]

        async def fetch():
            block = await self.chain.get_block(block_number)
            if block is None:
                raise CriticalDataUnavailable(f"block {block_number} not available")
            return block

        block = await retry_async(fetch, self.policy.timestamp_retry, on_retry=self._retry_counter(summary),
                                  label=f"block {block_number}")
        created_at = datetime.fromtimestamp(block.timestamp, tz=timezone.utc)
        self._block_times[block_number] = created_at
        return created_at

    @staticmethod
    def _build_record(event: TokenCreationEvent, created_at: datetime, names: NameResolution,
                      fee_split: Optional[FeeSplit], token_state: TokenState) -> DeploymentRecord:
        return DeploymentRecord(
            token_address=event.token_address,
            transaction_hash=event.transaction_hash,
            name=event.name,
            symbol=event.symbol,
            deployer_address=event.admin_address,
            block_number=event.block_number,
            created_at=created_at,
            token_image_uri=blank_to_none(event.image_uri),
            deployer_alias_primary=names.primary,
            deployer_alias_secondary=names.secondary,
            creator_fee_bps=fee_split.creator_bps if fee_split else None,
            staker_fee_bps=fee_split.staker_bps if fee_split else None,
            pool_identifier=event.pool_id,
            paired_token_address=event.paired_token,
            current_admin_address=token_state.current_admin_address,
            current_image_uri=token_state.current_image_uri,
            current_metadata=token_state.current_metadata,
            current_context=token_state.current_context,
            is_verified=token_state.is_verified,
            total_supply=token_state.total_supply,
        )

    def _extras(self, event: TokenCreationEvent, receipt: Optional[TransactionReceipt],
                fee_split: Optional[FeeSplit]) -> Dict[str, Any]:
        extras: Dict[str, Any] = {'fee_split': fee_split}
        if receipt is not None and self.policy.notify:
            purchase = extract_initial_purchase(receipt, event.token_address, event.paired_token, event.admin_address)
            if purchase is not None:
                extras['initial_purchase'] = purchase.describe(event.symbol)
        return extras

    # Background enrichment

    def _schedule_state_refresh(self, token_address: str, delay: float):
        async def later():
            await asyncio.sleep(delay)
            await self.refresh_contract_state(token_address)

        task = asyncio.create_task(later())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def refresh_contract_state(self, token_address: str) -> bool:
        """Re-read live contract state for a stored record; True when something changed"""
        try:
            existing = self.db.find_by_token_address(token_address)
            if existing is None:
                return False
            token_state = await self.state_reader.read(token_address)
            changes = {
                name: getattr(token_state, name) for name in STATE_FIELDS
                if getattr(token_state, name) is not None
            }
            candidate = DeploymentRecord(**{**existing.values(), **changes})
            changes = diff_records(existing, candidate)
            if not changes:
                return False
            self.db.run_atomic([WriteOperation.update(existing, changes)])
        except PersistenceError as e:
            logger.error(f"❌ State refresh for {token_address} failed: {e}")
            return False

        logger.info(f"🔄 Refreshed contract state for {token_address}: {', '.join(changes)}")
        if self.policy.notify and self.dispatcher is not None:
            self.dispatcher.notify_updated(existing, changes)
        return True

    async def drain(self, cancel: bool = False):
        """Wait for (or cancel) background enrichment tasks"""
        tasks = list(self._background)
        if cancel:
            for task in tasks:
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
