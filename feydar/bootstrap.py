"""
Wiring shared by the entry scripts: clients, resolver, database and reconciler
"""

import logging
from typing import Callable, Optional

from feydar.chain.client import Web3ChainClient, ensure_contract_code
from feydar.chain.rate_limit import RateLimiter
from feydar.config import Settings
from feydar.database import DeploymentDatabase
from feydar.ingestion.reconciler import IngestionPolicy, ReconcileSummary, Reconciler
from feydar.ingestion.retry import RetryPolicy, retry_async
from feydar.services.cache import TTLCache
from feydar.services.name_resolver import NameResolver
from feydar.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


class Pipeline:
    """Everything a reconciler needs, with one place to open and close it"""

    def __init__(self, settings: Settings, policy_factory: Callable[[Settings], IngestionPolicy],
                 dispatcher: Optional[NotificationDispatcher] = None):
        self.settings = settings
        self.db = DeploymentDatabase(settings.database_path)
        self.chain = Web3ChainClient(
            settings.rpc_http_url,
            RateLimiter(settings.rpc_max_concurrency, settings.rpc_min_interval),
            label='base',
        )
        self.secondary_chain = None
        if settings.mainnet_rpc_url:
            self.secondary_chain = Web3ChainClient(
                settings.mainnet_rpc_url,
                RateLimiter(settings.rpc_max_concurrency, settings.rpc_min_interval),
                label='mainnet',
            )
        self.resolver = NameResolver(
            self.chain,
            self.secondary_chain,
            timeout=settings.name_timeout,
            cache=TTLCache(maxsize=settings.name_cache_size, ttl=settings.name_cache_ttl),
            chain_id=settings.chain_id,
        )
        self.dispatcher = dispatcher
        self.reconciler = Reconciler(
            self.chain, self.db, self.resolver, settings, policy_factory(settings), dispatcher=dispatcher
        )

    async def start(self):
        """Connect (with retry) and make sure the factory exists"""
        policy = RetryPolicy(self.settings.max_retries, self.settings.retry_base_delay, self.settings.retry_max_delay)
        await retry_async(self.chain.connect, policy, label='connect base RPC')

        if self.secondary_chain is not None:
            try:
                await self.secondary_chain.connect()
            except Exception as e:
                logger.warning(f"⚠️ Mainnet RPC unavailable, ENS lookups disabled: {e}")
                self.resolver.secondary_chain = None

        size = await retry_async(
            lambda: ensure_contract_code(self.chain, self.settings.factory_address), policy, label='factory code check'
        )
        logger.info(f"🏭 Using FEY factory {self.settings.factory_address} ({size} bytes of code)")

    async def close(self):
        await self.reconciler.drain(cancel=True)
        if self.dispatcher is not None:
            await self.dispatcher.close()
        for client in (self.chain, self.secondary_chain):
            if client is None:
                continue
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"⚠️ Error closing {client.label} client: {e}")


def print_summary(title: str, summary: ReconcileSummary, elapsed: float):
    print("\n" + "=" * 60)
    print(f"📊 {title} SUMMARY ({elapsed:.1f}s)")
    print("=" * 60)
    for line in summary.lines():
        print(f"   {line}")
    print("=" * 60)
