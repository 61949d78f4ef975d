import asyncio

from feydar.chain.purchase import extract_initial_purchase, format_units
from feydar.chain.token_state import TokenStateReader
from feydar.models import TransactionReceipt

from fakes import DEPLOYER, POOL_HOOK, WETH, FakeChainClient, standard_state, token_address, transfer_log, tx_hash

TOKEN = token_address(0x71)
TX = tx_hash(0x71)


def scripted_chain(state) -> FakeChainClient:
    chain = FakeChainClient()
    for getter, value in state.items():
        chain.calls[(TOKEN, getter)] = value
    return chain


def test_reads_full_state():
    state = asyncio.run(TokenStateReader(scripted_chain(standard_state())).read(TOKEN))

    assert state.current_admin_address == DEPLOYER
    assert state.current_image_uri == "ipfs://bafytestimage"
    assert state.current_metadata == '{"description":"test"}'
    assert state.is_verified is True
    assert state.total_supply == "100000000000"


def test_blank_strings_and_bad_admin_become_missing():
    values = standard_state()
    values.update(admin="not-an-address", imageUrl="   ", context="", isVerified=0)
    state = asyncio.run(TokenStateReader(scripted_chain(values)).read(TOKEN))

    assert state.current_admin_address is None
    assert state.current_image_uri is None
    assert state.current_context is None
    assert state.is_verified is False
    assert state.current_metadata == '{"description":"test"}'


def test_every_getter_can_fail():
    state = asyncio.run(TokenStateReader(FakeChainClient()).read(TOKEN))
    assert state.current_admin_address is None
    assert state.is_verified is None
    assert state.total_supply is None


def test_total_supply_uses_token_decimals():
    values = standard_state()
    values.update(totalSupply=123_456_789, decimals=6)
    state = asyncio.run(TokenStateReader(scripted_chain(values)).read(TOKEN))
    assert state.total_supply == "123.4567"


def test_format_units():
    assert format_units(0, 18) == "0"
    assert format_units(1_234_567 * 10 ** 18 + 5 * 10 ** 17, 18) == "1,234,567.5"
    assert format_units(42, 0) == "42"


def test_initial_purchase_from_transfers():
    bought = 2_500_000 * 10 ** 18
    paid = 10 ** 17
    receipt = TransactionReceipt(transaction_hash=TX, block_number=1, logs=[
        transfer_log(TOKEN, POOL_HOOK, DEPLOYER, bought, TX),
        transfer_log(WETH, DEPLOYER, POOL_HOOK, paid, TX),
        # Transfers into the pool are not purchases
        transfer_log(TOKEN, DEPLOYER, POOL_HOOK, 10 ** 18, TX),
    ])

    purchase = extract_initial_purchase(receipt, TOKEN, WETH, DEPLOYER)

    assert purchase.tokens_received == bought
    assert purchase.paired_spent == paid
    assert purchase.describe("ALPHA") == "2,500,000 ALPHA for 0.1 paired token"


def test_no_purchase_without_incoming_transfer():
    receipt = TransactionReceipt(transaction_hash=TX, block_number=1, logs=[
        transfer_log(WETH, DEPLOYER, POOL_HOOK, 10 ** 17, TX),
    ])
    assert extract_initial_purchase(receipt, TOKEN, WETH, DEPLOYER) is None
