#!/usr/bin/env python3
"""
Feydar live listener
Watches the FEY factory for new token deployments, stores them and announces them on
Discord, the web API broadcast and Farcaster push notifications.

Usage:
  python feydar_bot.py
"""

import asyncio
import logging
import sys

from feydar.bootstrap import Pipeline
from feydar.chain import RateLimiter, Web3ChainClient
from feydar.config import LIVE_REQUIRED_VARS, load_settings
from feydar.errors import ConfigError, ContractNotFoundError, TransientProviderError
from feydar.ingestion import ConnectionSupervisor, ReconnectLimitExceeded, live_policy
from feydar.log_setup import setup_logging
from feydar.services import BroadcastNotifier, DiscordWebhookNotifier, NotificationDispatcher, PushNotifier

# Startup connection retries: min(1s * 2^n, 30s), 5 attempts
MAX_RETRIES = 5
BACKOFF_BASE = 1.0
BACKOFF_MAX = 30.0


class FeydarBot:
    """Live FEY deployment listener"""

    def __init__(self):
        """Load config and wire up the pipeline"""
        self.settings = load_settings(required=LIVE_REQUIRED_VARS)
        self.logger = setup_logging('logs/bot.log', self.settings.log_level)

        sinks = [
            DiscordWebhookNotifier(self.settings.discord_webhook_url),
            BroadcastNotifier(self.settings.api_url),
        ]
        self.pipeline = Pipeline(self.settings, live_policy, dispatcher=NotificationDispatcher(sinks))
        if self.settings.push_notifications_enabled:
            self.pipeline.dispatcher.sinks.append(PushNotifier(self.pipeline.db, self.settings.app_url))

        ws_limiter = RateLimiter(self.settings.rpc_max_concurrency, self.settings.rpc_min_interval)
        self.supervisor = ConnectionSupervisor(
            client_factory=lambda: Web3ChainClient(self.settings.rpc_ws_url, ws_limiter, label='base-ws'),
            reconciler=self.pipeline.reconciler,
            factory_address=self.settings.factory_address,
            dispatcher=self.pipeline.dispatcher,
            max_connect_attempts=MAX_RETRIES,
            max_reconnect_attempts=MAX_RETRIES,
            backoff_base=BACKOFF_BASE,
            backoff_max=BACKOFF_MAX,
        )

    async def start(self):
        print("=" * 60)
        print("🛰️  FEYDAR - live FEY deployment listener")
        print("=" * 60)
        print(f"🏭 Factory: {self.settings.factory_address}")
        print(f"💾 Database: {self.settings.database_path}")
        print(f"📡 Sinks: {', '.join(sink.name for sink in self.pipeline.dispatcher.sinks)}")

        try:
            await self.pipeline.start()
            await self.supervisor.run()
        finally:
            await self.pipeline.close()


async def main() -> int:
    try:
        bot = FeydarBot()
    except ConfigError as e:
        print(f"❌ Configuration error: {e}")
        return 1

    logger = logging.getLogger('feydar')
    try:
        await bot.start()
    except (ConfigError, ContractNotFoundError, ReconnectLimitExceeded, TransientProviderError) as e:
        logger.error(f"❌ Fatal: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
