import asyncio

import pytest

from feydar.errors import ConnectionLost, ContractNotFoundError, TransientProviderError
from feydar.ingestion.reconciler import ReconcileSummary
from feydar.ingestion.supervisor import (
    ConnectionSupervisor,
    ReconnectLimitExceeded,
    SupervisorState,
    backoff_delay,
)
from feydar.services.notifications import NotificationDispatcher, NotificationSink

from fakes import FACTORY, FakeChainClient, token_address, token_created_log, tx_hash


class RecordingReconciler:
    def __init__(self):
        self.logs = []
        self.drained = False

    async def process_log(self, log):
        self.logs.append(log)
        return ReconcileSummary()

    async def drain(self, cancel=False):
        self.drained = True


class ClientFactory:
    """Hands out the prepared clients in order"""

    def __init__(self, *clients):
        self.clients = list(clients)
        self.created = []

    def __call__(self):
        client = self.clients.pop(0) if self.clients else FakeChainClient()
        self.created.append(client)
        return client


class UnreadySink(NotificationSink):
    name = 'unready'

    async def is_ready(self):
        return False


def make_supervisor(factory, reconciler=None, **overrides):
    options = dict(
        max_connect_attempts=3,
        max_reconnect_attempts=3,
        backoff_base=0.0,
        backoff_max=0.0,
        health_interval=60,
        heartbeat_interval=60,
    )
    options.update(overrides)
    return ConnectionSupervisor(factory, reconciler or RecordingReconciler(), FACTORY, **options)


def test_backoff_delay():
    assert backoff_delay(1, 1.0, 30.0) == 2.0
    assert backoff_delay(3, 1.0, 30.0) == 8.0
    assert backoff_delay(10, 1.0, 30.0) == 30.0


def test_reconnects_after_connection_loss():
    first_log = token_created_log(token_address(0x51), tx=tx_hash(0x51))
    second_log = token_created_log(token_address(0x52), tx=tx_hash(0x52))
    reconciler = RecordingReconciler()

    first = FakeChainClient()
    first.stream = [first_log, ConnectionLost("socket closed")]
    second = FakeChainClient()
    second.hold_open = True
    factory = ClientFactory(first, second)
    supervisor = make_supervisor(factory, reconciler)
    second.stream = [second_log, supervisor.stop]

    asyncio.run(supervisor.run())

    assert reconciler.logs == [first_log, second_log]
    assert len(factory.created) == 2
    # The event on the restored connection clears the counter
    assert supervisor.reconnect_attempts == 0
    assert supervisor.events_seen == 2
    assert supervisor.state == SupervisorState.STOPPED
    assert first.closed and second.closed
    assert reconciler.drained


def test_gives_up_after_reconnect_limit():
    factory = ClientFactory()
    supervisor = make_supervisor(factory, max_reconnect_attempts=2)

    with pytest.raises(ReconnectLimitExceeded):
        asyncio.run(supervisor.run())

    assert len(factory.created) == 3
    assert supervisor.state == SupervisorState.STOPPED


def test_productive_connections_never_reach_the_reconnect_cap():
    reconciler = RecordingReconciler()
    flapping = []
    for n in range(5):
        client = FakeChainClient()
        log = token_created_log(token_address(0x60 + n), tx=tx_hash(0x60 + n))
        client.stream = [log, ConnectionLost("socket closed")]
        flapping.append(client)
    last = FakeChainClient()
    last.hold_open = True
    factory = ClientFactory(*flapping, last)
    supervisor = make_supervisor(factory, reconciler, max_reconnect_attempts=2)
    last.stream = [supervisor.stop]

    asyncio.run(supervisor.run())

    assert len(reconciler.logs) == 5
    assert len(factory.created) == 6
    assert supervisor.state == SupervisorState.STOPPED


def test_gives_up_after_connect_attempts():
    clients = [FakeChainClient() for _ in range(3)]
    for client in clients:
        client.fail("connect", TransientProviderError("ECONNREFUSED"))
    factory = ClientFactory(*clients)

    with pytest.raises(TransientProviderError):
        asyncio.run(make_supervisor(factory).run())

    assert len(factory.created) == 3


def test_missing_factory_code_is_fatal():
    client = FakeChainClient()
    client.code = b""
    factory = ClientFactory(client)

    with pytest.raises(ContractNotFoundError):
        asyncio.run(make_supervisor(factory).run())

    assert len(factory.created) == 1


def test_failed_code_check_triggers_reconnect():
    flaky = FakeChainClient()
    flaky.fail("get_code", TransientProviderError("timeout"))
    healthy = FakeChainClient()
    healthy.hold_open = True
    factory = ClientFactory(flaky, healthy)
    supervisor = make_supervisor(factory)
    healthy.stream = [supervisor.stop]

    asyncio.run(supervisor.run())

    assert supervisor.reconnect_attempts == 1
    assert len(factory.created) == 2


def test_health_check_detects_dead_transport():
    supervisor = make_supervisor(ClientFactory())
    client = FakeChainClient()
    supervisor.client = client

    with pytest.raises(ConnectionLost):
        asyncio.run(supervisor.check_health())


def test_health_check_detects_unready_notifier():
    client = FakeChainClient()
    client.connected = True
    supervisor = make_supervisor(ClientFactory(), dispatcher=NotificationDispatcher([UnreadySink()]))
    supervisor.client = client

    with pytest.raises(ConnectionLost, match="notification"):
        asyncio.run(supervisor.check_health())


def test_idle_connection_is_probed():
    client = FakeChainClient()
    client.connected = True
    supervisor = make_supervisor(ClientFactory(), idle_threshold=1)
    supervisor.client = client
    supervisor.reconnect_attempts = 2

    # last_event_time of zero makes the connection look idle
    asyncio.run(supervisor.check_health())
    assert supervisor.reconnect_attempts == 0

    client.fail("get_block_number", TransientProviderError("timeout"))
    with pytest.raises(ConnectionLost, match="liveness"):
        asyncio.run(supervisor.check_health())


def test_shutdown_is_idempotent():
    reconciler = RecordingReconciler()
    supervisor = make_supervisor(ClientFactory(), reconciler)
    client = FakeChainClient()
    supervisor.client = client

    async def twice():
        await supervisor.shutdown()
        await supervisor.shutdown()

    asyncio.run(twice())
    assert client.closed
    assert supervisor.client is None
    assert supervisor.state == SupervisorState.STOPPED
