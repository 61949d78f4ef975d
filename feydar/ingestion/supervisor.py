"""
Live listener lifecycle: connect, verify the factory, listen, health-check and reconnect with backoff
"""

import asyncio
import logging
import signal
from enum import Enum
from typing import Callable, List, Optional

from feydar.chain.client import ChainClient, ensure_contract_code
from feydar.chain.contracts import TOKEN_CREATED_TOPIC
from feydar.errors import ConnectionLost, FeydarError, TransientProviderError
from feydar.ingestion.reconciler import Reconciler
from feydar.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


class SupervisorState(Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    VERIFYING = 'verifying'
    LISTENING = 'listening'
    RECONNECTING = 'reconnecting'
    STOPPED = 'stopped'


class ReconnectLimitExceeded(FeydarError):
    """Too many consecutive reconnects; the process should exit"""


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    return min(base * (2 ** attempt), cap)


class ConnectionSupervisor:
    """Owns the live subscription client and keeps it alive"""

    def __init__(self, client_factory: Callable[[], ChainClient], reconciler: Reconciler,
                 factory_address: str, dispatcher: Optional[NotificationDispatcher] = None,
                 max_connect_attempts: int = 5, max_reconnect_attempts: int = 5,
                 backoff_base: float = 1.0, backoff_max: float = 30.0,
                 health_interval: float = 30.0, heartbeat_interval: float = 30.0,
                 idle_threshold: float = 300.0, probe_timeout: float = 10.0):
        self.client_factory = client_factory
        self.reconciler = reconciler
        self.factory_address = factory_address
        self.dispatcher = dispatcher
        self.max_connect_attempts = max_connect_attempts
        self.max_reconnect_attempts = max_reconnect_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.health_interval = health_interval
        self.heartbeat_interval = heartbeat_interval
        self.idle_threshold = idle_threshold
        self.probe_timeout = probe_timeout

        self.state = SupervisorState.DISCONNECTED
        self.client: Optional[ChainClient] = None
        self.reconnect_attempts = 0
        self.events_seen = 0
        self.last_event_time = 0.0
        self._stopping = asyncio.Event()
        self._signals: List[int] = []
        self._shut_down = False

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()

    # Lifecycle

    async def run(self):
        """Run until stopped by a signal or a fatal condition"""
        self._install_signal_handlers()
        try:
            while not self._stopping.is_set():
                await self._connect()
                if self._stopping.is_set():
                    break
                try:
                    await self._verify_factory()
                    await self._listen()
                except ConnectionLost as e:
                    if self._stopping.is_set():
                        break
                    await self._handle_disconnect(e)
        finally:
            await self.shutdown()

    async def _connect(self):
        self.state = SupervisorState.CONNECTING
        attempt = 0
        while not self._stopping.is_set():
            client = self.client_factory()
            try:
                await client.connect()
                self.client = client
                return
            except Exception as e:
                attempt += 1
                await self._close_client(client)
                if attempt >= self.max_connect_attempts:
                    logger.error(f"❌ Could not connect after {attempt} attempts: {e}")
                    raise
                delay = backoff_delay(attempt, self.backoff_base, self.backoff_max)
                logger.warning(f"🔌 Connect attempt {attempt}/{self.max_connect_attempts} failed: {e} - retrying in {delay:.1f}s")
                await self._sleep_unless_stopped(delay)

    async def _verify_factory(self):
        self.state = SupervisorState.VERIFYING
        try:
            size = await ensure_contract_code(self.client, self.factory_address)
        except TransientProviderError as e:
            raise ConnectionLost(f"factory code check failed: {e}") from e
        logger.info(f"🏭 Factory verified at {self.factory_address} ({size} bytes of code)")

    async def _listen(self):
        self.state = SupervisorState.LISTENING
        self.last_event_time = self._now()
        logger.info("👂 Listening for new FEY token deployments...")

        tasks = [
            asyncio.create_task(self._consume(), name='consume'),
            asyncio.create_task(self._health_loop(), name='health'),
            asyncio.create_task(self._heartbeat_loop(), name='heartbeat'),
            asyncio.create_task(self._stopping.wait(), name='stop'),
        ]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._stopping.is_set():
            return
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
        raise ConnectionLost("listener stopped unexpectedly")

    async def _consume(self):
        async for log in self.client.subscribe_to_logs(self.factory_address, [TOKEN_CREATED_TOPIC]):
            self.last_event_time = self._now()
            self.events_seen += 1
            if self.reconnect_attempts:
                logger.info(f"🔗 Connection restored after {self.reconnect_attempts} reconnect attempt(s)")
                self.reconnect_attempts = 0
            logger.info(f"🎉 New deployment event in block {log.block_number} ({log.transaction_hash})")
            try:
                summary = await self.reconciler.process_log(log)
            except Exception as e:
                logger.error(f"❌ Error processing {log.transaction_hash}: {e}", exc_info=True)
                continue
            for where, message in summary.errors:
                logger.error(f"❌ {where}: {message}")
        raise ConnectionLost("log subscription ended")

    async def _health_loop(self):
        while True:
            await asyncio.sleep(self.health_interval)
            await self.check_health()

    async def check_health(self):
        """Raise ConnectionLost when the transport or the notifier looks dead"""
        if self.client is None or not await self.client.is_connected():
            raise ConnectionLost("transport is not connected")

        if self.dispatcher is not None and not await self.dispatcher.is_ready():
            raise ConnectionLost("notification client is not ready")

        idle = self._now() - self.last_event_time
        if idle > self.idle_threshold:
            # Silence is normal between deployments; ask the chain before assuming failure
            try:
                head = await asyncio.wait_for(self.client.get_block_number(), timeout=self.probe_timeout)
            except Exception as e:
                raise ConnectionLost(f"no events for {idle:.0f}s and liveness poll failed: {e}") from e
            logger.info(f"💤 No events for {idle:.0f}s, chain head is {head} - connection alive")

        self.reconnect_attempts = 0

    async def _heartbeat_loop(self):
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await asyncio.wait_for(self.client.get_block_number(), timeout=self.probe_timeout)
            except Exception as e:
                raise ConnectionLost(f"heartbeat failed: {e}") from e
            logger.debug(f"💓 Heartbeat ok ({self.events_seen} events this session)")

    async def _handle_disconnect(self, error: ConnectionLost):
        logger.warning(f"⚠️ Connection lost: {error}")
        self.state = SupervisorState.RECONNECTING
        await self._close_client(self.client)
        self.client = None

        self.reconnect_attempts += 1
        if self.reconnect_attempts > self.max_reconnect_attempts:
            raise ReconnectLimitExceeded(
                f"Giving up after {self.max_reconnect_attempts} reconnect attempts (last error: {error})"
            )
        delay = backoff_delay(self.reconnect_attempts, self.backoff_base, self.backoff_max)
        logger.info(f"🔄 Reconnecting in {delay:.1f}s (attempt {self.reconnect_attempts}/{self.max_reconnect_attempts})")
        await self._sleep_unless_stopped(delay)

    # Shutdown

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for name in ('SIGINT', 'SIGTERM', 'SIGQUIT'):
            sig = getattr(signal, name, None)
            if sig is None:
                continue
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
                self._signals.append(sig)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform / not the main thread
                pass

    def _remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals.clear()

    def _on_signal(self, sig: int):
        # Handlers go first so a second signal can't re-enter shutdown
        self._remove_signal_handlers()
        logger.info(f"🛑 Received {signal.Signals(sig).name}, shutting down...")
        self.stop()

    def stop(self):
        self._stopping.set()

    async def _sleep_unless_stopped(self, delay: float):
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _close_client(self, client: Optional[ChainClient]):
        if client is None:
            return
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"⚠️ Error closing chain client: {e}")

    async def shutdown(self):
        """Tear down transport and external clients once"""
        if self._shut_down:
            return
        self._shut_down = True
        self._remove_signal_handlers()
        self.state = SupervisorState.STOPPED

        await self._close_client(self.client)
        self.client = None
        await self.reconciler.drain(cancel=True)
        if self.dispatcher is not None:
            await self.dispatcher.close()
        logger.info("👋 Listener stopped")
