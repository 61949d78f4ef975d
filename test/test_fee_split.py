from eth_abi import encode as abi_encode

from feydar.chain.fee_split import (
    HEAD_SIZE,
    REWARD_BPS_OFFSET_POSITION,
    decode_reward_bps_manually,
    decode_reward_payload,
    extract_fee_split,
    split_from_values,
)
from feydar.models import TransactionReceipt

from fakes import (
    DEPLOYER,
    POOL_HOOK,
    WETH,
    manual_reward_payload,
    reward_log,
    reward_payload,
    token_address,
    tx_hash,
)

TOKEN = token_address(0xA1)


def test_structured_decode_two_values():
    split = decode_reward_payload(reward_payload(TOKEN, [6000, 4000]))
    assert split.creator_bps == 6000
    assert split.staker_bps == 4000
    assert split.source == "structured:pool_key_5"
    assert split.confidence == 1.0


def test_structured_decode_single_value_is_staker_share():
    split = decode_reward_payload(reward_payload(TOKEN, [2500]))
    assert split.staker_bps == 2500
    assert split.creator_bps == 7500


def test_structured_decode_four_field_pool_key():
    types = [
        "address", "(address,address,uint24,int24)", "uint256", "uint256", "uint256",
        "uint16[]", "address[]", "address[]", "int24[]", "int24[]", "uint16[]",
    ]
    data = abi_encode(types, [
        TOKEN, (WETH, TOKEN, 10000, 200), 10 ** 23, 1, 1,
        [7000, 3000], [DEPLOYER, DEPLOYER], [DEPLOYER, DEPLOYER], [-230400], [887200], [10000],
    ])
    split = decode_reward_payload(data)
    assert (split.creator_bps, split.staker_bps) == (7000, 3000)
    assert split.source == "structured:pool_key_4"


def test_structured_out_of_range_does_not_fall_back_to_manual():
    assert decode_reward_payload(reward_payload(TOKEN, [20000, 4000])) is None


def test_manual_decode_recovers_single_value():
    data = manual_reward_payload(TOKEN, [3000])
    assert decode_reward_bps_manually(data) == [3000]

    split = decode_reward_payload(data)
    assert split.staker_bps == 3000
    assert split.creator_bps == 7000
    assert split.source == "manual"
    assert split.confidence == 0.75


def test_manual_decode_confidence_depends_on_balance():
    balanced = decode_reward_payload(manual_reward_payload(TOKEN, [8000, 2000]))
    assert (balanced.creator_bps, balanced.staker_bps) == (8000, 2000)
    assert balanced.confidence == 0.9

    unbalanced = decode_reward_payload(manual_reward_payload(TOKEN, [8000, 1000]))
    assert (unbalanced.creator_bps, unbalanced.staker_bps) == (8000, 1000)
    assert unbalanced.confidence == 0.5


def test_manual_decode_reads_only_first_two_entries():
    data = manual_reward_payload(TOKEN, [5000, 4000, 1000])
    assert decode_reward_bps_manually(data) == [5000, 4000]


def test_manual_decode_rejects_bad_offsets():
    # Unaligned
    assert decode_reward_bps_manually(manual_reward_payload(TOKEN, [3000], offset=HEAD_SIZE + 1)) is None
    # Points back into the head
    assert decode_reward_bps_manually(manual_reward_payload(TOKEN, [3000], offset=HEAD_SIZE - 32)) is None
    # Past the end of the payload
    assert decode_reward_bps_manually(manual_reward_payload(TOKEN, [3000], offset=HEAD_SIZE * 4)) is None


def test_manual_decode_rejects_bad_lengths_and_values():
    assert decode_reward_bps_manually(manual_reward_payload(TOKEN, [], length=0)) is None
    assert decode_reward_bps_manually(manual_reward_payload(TOKEN, [3000], length=101)) is None
    # Claims two entries but only one is present
    assert decode_reward_bps_manually(manual_reward_payload(TOKEN, [3000], length=2)) is None
    assert decode_reward_bps_manually(manual_reward_payload(TOKEN, [12000])) is None


def test_manual_decode_rejects_short_payloads():
    assert decode_reward_bps_manually(b"") is None
    assert decode_reward_bps_manually(bytes(REWARD_BPS_OFFSET_POSITION)) is None


def test_single_value_complement():
    for value in (0, 1, 2500, 5000, 9999, 10000):
        split = split_from_values([value], "manual", 0.75)
        assert split.staker_bps == value
        assert split.creator_bps + split.staker_bps == 10000


def test_split_rejects_out_of_range():
    assert split_from_values([], "manual", 0.75) is None
    assert split_from_values([10001], "manual", 0.75) is None
    assert split_from_values([-1, 5000], "manual", 0.9) is None


def test_extract_fee_split_from_receipt():
    tx = tx_hash(0x11)
    receipt = TransactionReceipt(
        transaction_hash=tx,
        block_number=1,
        logs=[
            # Same topic from another contract is ignored
            reward_log(reward_payload(TOKEN, [1000, 9000]), tx, address=POOL_HOOK),
            reward_log(reward_payload(TOKEN, [6000, 4000]), tx),
        ],
    )
    split = extract_fee_split(receipt)
    assert (split.creator_bps, split.staker_bps) == (6000, 4000)


def test_extract_fee_split_without_reward_log():
    receipt = TransactionReceipt(transaction_hash=tx_hash(0x12), block_number=1, logs=[])
    assert extract_fee_split(receipt) is None
