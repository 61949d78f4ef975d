import pytest

from feydar.chain.contracts import TRANSFER_TOPIC
from feydar.chain.decoder import decode_token_created
from feydar.errors import DecodeError
from feydar.models import RawLog

from fakes import DEPLOYER, WETH, token_address, token_created_log, tx_hash

TOKEN = token_address(0xA1)


def test_decode_token_created():
    log = token_created_log(TOKEN, tx=tx_hash(0x21), block_number=1234, log_index=7,
                            name="Feydar Test", symbol="FTEST")
    event = decode_token_created(log)

    assert event.token_address.lower() == TOKEN
    assert event.admin_address.lower() == DEPLOYER
    assert event.sender.lower() == DEPLOYER
    assert event.name == "Feydar Test"
    assert event.symbol == "FTEST"
    assert event.image_uri == "ipfs://bafytestimage"
    assert event.starting_tick == -230400
    assert event.pool_id == "0x" + "ee" * 32
    assert event.paired_token.lower() == WETH
    assert event.extensions == []
    assert event.transaction_hash == tx_hash(0x21)
    assert event.block_number == 1234
    assert event.log_index == 7


def test_decode_rejects_other_events():
    log = token_created_log(TOKEN)
    log.topics[0] = TRANSFER_TOPIC
    with pytest.raises(DecodeError):
        decode_token_created(log)


def test_decode_rejects_missing_topics():
    log = token_created_log(TOKEN)
    log.topics = log.topics[:2]
    with pytest.raises(DecodeError):
        decode_token_created(log)


def test_decode_rejects_dirty_address_padding():
    log = token_created_log(TOKEN)
    log.topics[1] = b"\x01" + log.topics[1][1:]
    with pytest.raises(DecodeError):
        decode_token_created(log)


def test_decode_rejects_truncated_payload():
    log = token_created_log(TOKEN)
    log.data = log.data[:100]
    with pytest.raises(DecodeError):
        decode_token_created(log)


def test_raw_log_from_rpc():
    log = RawLog.from_rpc({
        "address": "0x1111111111111111111111111111111111111111",
        "topics": ["0x" + "ab" * 32],
        "data": "0x" + "00" * 31 + "05",
        "blockNumber": "0x10",
        "transactionHash": "0x" + "CD" * 32,
        "logIndex": 3,
    })
    assert log.topic0 == bytes.fromhex("ab" * 32)
    assert log.data[-1] == 5
    assert log.block_number == 16
    assert log.transaction_hash == "0x" + "cd" * 32
    assert log.log_index == 3
