"""
Outbound notification sinks: Discord webhook, API broadcast and Farcaster push.

Sinks are fired after a chunk has committed. Their failures are logged and
never reach the ingestion pipeline.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

import aiohttp
from eth_utils import to_checksum_address

from feydar.models import DeploymentRecord

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = aiohttp.ClientTimeout(total=10)
PUSH_TITLE = 'New FEY Token!'
EMBED_COLOR = 0x0099ff


class NotificationError(Exception):
    """A sink got a non-success response"""


def gateway_url(uri: Optional[str]) -> Optional[str]:
    """ipfs:// -> public gateway, for display only"""
    if uri and uri.startswith('ipfs://'):
        return uri.replace('ipfs://', 'https://ipfs.io/ipfs/', 1)
    return uri


def trade_links(token_address: str) -> Dict[str, str]:
    return {
        'FEY': f"https://www.fey.money/tokens/{token_address}",
        'Matcha': f"https://matcha.xyz/markets/base/{token_address}",
        'Uniswap': f"https://app.uniswap.org/#/swap?inputCurrency=ETH&outputCurrency={token_address}&chain=base",
    }


class NotificationSink:
    """Base sink; subclasses override what they care about"""
    name = 'sink'

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=HTTP_TIMEOUT)
            self._owns_session = True
        return self._session

    async def _post_json(self, url: str, payload: Any):
        async with self._get_session().post(url, json=payload) as response:
            if response.status >= 300:
                body = await response.text()
                raise NotificationError(f"{self.name}: HTTP {response.status} from {url}: {body[:200]}")

    async def on_created(self, record: DeploymentRecord, extras: Optional[Dict[str, Any]] = None):
        pass

    async def on_updated(self, record: DeploymentRecord, changes: Dict[str, Any]):
        pass

    async def is_ready(self) -> bool:
        return True

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class DiscordWebhookNotifier(NotificationSink):
    """Posts a deployment embed to a Discord channel webhook"""
    name = 'discord'

    def __init__(self, webhook_url: str, session: Optional[aiohttp.ClientSession] = None):
        super().__init__(session)
        self.webhook_url = webhook_url

    @staticmethod
    def _deployer_field(record: DeploymentRecord) -> str:
        address = to_checksum_address(record.deployer_address)
        lines = []
        if record.deployer_alias_primary:
            lines.append(f"**{record.deployer_alias_primary}.base.eth**")
        if record.deployer_alias_secondary:
            lines.append(f"**{record.deployer_alias_secondary}**")
        lines.append(f"`{address}`")
        lines.append(f"**[Basescan](https://basescan.org/address/{address})**")
        return '\n'.join(lines)

    def build_embed(self, record: DeploymentRecord, extras: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        extras = extras or {}
        token = record.token_address
        links = ' | '.join(f"**[{label}]({url})**" for label, url in trade_links(token).items())
        explorers = ' | '.join([
            f"**[Basescan](https://basescan.org/token/{token})**",
            f"**[Dexscreener](https://dexscreener.com/base/{token})**",
            f"**[GeckoTerminal](https://www.geckoterminal.com/base/pools/{token})**",
        ])

        fields = [
            {'name': 'Token Name', 'value': record.name or '-', 'inline': True},
            {'name': 'Ticker', 'value': record.symbol or '-', 'inline': True},
            {'name': 'Trade', 'value': links, 'inline': False},
            {'name': 'Contract Address', 'value': f"{token}\n{explorers}", 'inline': False},
            {'name': 'Deployer', 'value': self._deployer_field(record), 'inline': False},
        ]
        if record.total_supply:
            fields.append({'name': 'Total Supply', 'value': record.total_supply, 'inline': False})
        if extras.get('initial_purchase'):
            fields.append({'name': 'Initial Purchase', 'value': extras['initial_purchase'], 'inline': False})
        if record.creator_fee_bps is not None and record.staker_fee_bps is not None:
            fields.append({
                'name': 'Fee Split',
                'value': f"Creator {record.creator_fee_bps / 100:.2f}% | FEY Stakers {record.staker_fee_bps / 100:.2f}%",
                'inline': False,
            })
        fields.append({
            'name': 'Transaction',
            'value': f"**[View on Basescan](https://basescan.org/tx/{record.transaction_hash})**",
            'inline': False,
        })

        embed = {
            'title': '🚀 New FEY Token Deployed',
            'color': EMBED_COLOR,
            'fields': fields,
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }
        image = gateway_url(record.token_image_uri)
        if image and image.strip():
            embed['image'] = {'url': image}
        return embed

    async def on_created(self, record: DeploymentRecord, extras: Optional[Dict[str, Any]] = None):
        await self._post_json(self.webhook_url, {'embeds': [self.build_embed(record, extras)]})
        logger.info(f"📨 Discord message sent for {record.symbol} ({record.token_address})")

    async def is_ready(self) -> bool:
        """Webhook GET returns 200 while the webhook token is still valid"""
        try:
            async with self._get_session().get(self.webhook_url) as response:
                return response.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"⚠️ Discord webhook check failed: {e}")
            return False


class BroadcastNotifier(NotificationSink):
    """Pushes deployments to the API so websocket clients see them live"""
    name = 'broadcast'

    def __init__(self, api_url: str, session: Optional[aiohttp.ClientSession] = None):
        super().__init__(session)
        self.endpoint = f"{api_url.rstrip('/')}/api/broadcast"

    async def on_created(self, record: DeploymentRecord, extras: Optional[Dict[str, Any]] = None):
        await self._post_json(self.endpoint, record.to_api_payload())
        logger.debug(f"📡 Broadcast sent for {record.token_address}")

    async def on_updated(self, record: DeploymentRecord, changes: Dict[str, Any]):
        await self._post_json(self.endpoint, record.to_api_payload())


class PushNotifier(NotificationSink):
    """Farcaster mini-app push notifications for every enabled subscription"""
    name = 'push'

    def __init__(self, db, app_url: str, session: Optional[aiohttp.ClientSession] = None):
        super().__init__(session)
        self.db = db
        self.app_url = app_url.rstrip('/')

    def build_payload(self, record: DeploymentRecord, token: str) -> Dict[str, Any]:
        body = f"{record.name} (${record.symbol}) by {record.deployer_display}"
        return {
            'notificationId': f"deployment-{record.token_address}-{int(time.time() * 1000)}",
            'title': PUSH_TITLE,
            'body': body[:128],
            'targetUrl': f"{self.app_url}/token/{record.token_address}?buy=true",
            'tokens': [token],
        }

    async def on_created(self, record: DeploymentRecord, extras: Optional[Dict[str, Any]] = None):
        subscriptions = self.db.get_enabled_subscriptions()
        if not subscriptions:
            return
        results = await asyncio.gather(
            *(self._post_json(sub['url'], self.build_payload(record, sub['token'])) for sub in subscriptions),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, Exception)]
        for failure in failures:
            logger.warning(f"⚠️ Push notification failed: {failure}")
        logger.info(f"🔔 Push sent to {len(subscriptions) - len(failures)}/{len(subscriptions)} subscribers")


class NotificationDispatcher:
    """Fire-and-forget fan-out to all sinks"""

    def __init__(self, sinks: Optional[List[NotificationSink]] = None):
        self.sinks = list(sinks or [])
        self._tasks: Set[asyncio.Task] = set()
        self.failures = 0

    def _spawn(self, sink: NotificationSink, coro):
        task = asyncio.create_task(self._guard(sink, coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guard(self, sink: NotificationSink, coro):
        try:
            await coro
        except Exception as e:
            self.failures += 1
            logger.warning(f"⚠️ {sink.name} notification failed: {e}")

    def notify_created(self, record: DeploymentRecord, extras: Optional[Dict[str, Any]] = None):
        for sink in self.sinks:
            self._spawn(sink, sink.on_created(record, extras))

    def notify_updated(self, record: DeploymentRecord, changes: Dict[str, Any]):
        for sink in self.sinks:
            self._spawn(sink, sink.on_updated(record, changes))

    async def is_ready(self) -> bool:
        for sink in self.sinks:
            if not await sink.is_ready():
                logger.warning(f"⚠️ Notification sink {sink.name} is not ready")
                return False
        return True

    async def drain(self):
        """Wait for in-flight notifications"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self):
        await self.drain()
        for sink in self.sinks:
            await sink.close()
