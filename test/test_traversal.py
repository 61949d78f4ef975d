import asyncio

from feydar.database import DeploymentDatabase
from feydar.ingestion.traversal import plan_backfill, plan_integrity, traverse_descending

from fakes import (
    FakeChainClient,
    make_reconciler,
    make_settings,
    reward_payload,
    token_address,
    token_created_log,
    tx_hash,
)


def test_traverses_newest_chunk_first(tmp_path):
    chain = FakeChainClient()
    db = DeploymentDatabase(str(tmp_path / "deployments.db"))

    summary = asyncio.run(traverse_descending(make_reconciler(chain, db), 1020, 1000, chunk_size=9))

    assert chain.get_logs_calls == [(1012, 1020), (1003, 1011), (1000, 1002)]
    assert summary.ranges_processed == 3


def test_traversal_stores_every_chunk(tmp_path):
    chain = FakeChainClient()
    for n, block in enumerate((1001, 1009, 1015), start=1):
        token = token_address(0x30 + n)
        chain.add_deployment(token_created_log(token, tx=tx_hash(0x30 + n), block_number=block),
                             reward_payload(token, [5000, 5000]))
    db = DeploymentDatabase(str(tmp_path / "deployments.db"))

    summary = asyncio.run(traverse_descending(make_reconciler(chain, db), 1020, 1000, chunk_size=5))

    assert summary.created == 3
    assert db.count() == 3
    assert db.get_latest_block_number() == 1015


def test_empty_window_does_nothing(tmp_path):
    chain = FakeChainClient()
    db = DeploymentDatabase(str(tmp_path / "deployments.db"))

    summary = asyncio.run(traverse_descending(make_reconciler(chain, db), 999, 1000, chunk_size=9))

    assert chain.get_logs_calls == []
    assert summary.processed == 0


def test_plan_backfill_defaults_to_chain_head(tmp_path):
    chain = FakeChainClient(head=5000)
    db = DeploymentDatabase(str(tmp_path / "deployments.db"))
    settings = make_settings(factory_deployment_block=1000)

    assert asyncio.run(plan_backfill(chain, db, settings)) == (5000, 1000)
    assert asyncio.run(plan_backfill(chain, db, settings, from_block=9000, to_block=4000)) == (5000, 4000)
    assert asyncio.run(plan_backfill(chain, db, settings, from_block=3000)) == (3000, 1000)


def test_plan_backfill_from_latest(tmp_path):
    chain = FakeChainClient(head=5000)
    chain.add_deployment(token_created_log(token_address(0x41), tx=tx_hash(0x41), block_number=1200),
                         reward_payload(token_address(0x41), [5000, 5000]))
    db = DeploymentDatabase(str(tmp_path / "deployments.db"))
    settings = make_settings(factory_deployment_block=1000)

    # Empty store: nothing to resume from
    assert asyncio.run(plan_backfill(chain, db, settings, from_latest=True)) == (5000, 1000)

    asyncio.run(make_reconciler(chain, db, settings=settings).reconcile_range(1195, 1205))
    assert asyncio.run(plan_backfill(chain, db, settings, from_latest=True)) == (1201, 1000)


def test_plan_integrity_covers_full_history():
    chain = FakeChainClient(head=7000)
    assert asyncio.run(plan_integrity(chain, make_settings(factory_deployment_block=1000))) == (7000, 1000)
