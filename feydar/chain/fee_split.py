"""
Fee split recovery from the reward configuration event in a deployment receipt.

The reward contract emits one event per deployment whose topic-0 does not hash
from any signature we know. The parameter list we believe it carries is:

    (address token,
     PoolKey poolKey,
     uint256 poolSupply, uint256 positionId, uint256 numPositions,
     uint16[] rewardBps, address[] rewardAdmins, address[] rewardRecipients,
     int24[] tickLower, int24[] tickUpper, uint16[] positionBps)

PoolKey has been seen both as a 4 field and as a 5 field static tuple, and the
currencies may be plain addresses or a wrapped 32 byte type. We first try a
structured decode for each shape, then fall back to reading the rewardBps array
by hand at a fixed offset.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from eth_abi.abi import decode as abi_decode
from eth_abi.exceptions import DecodingError

from feydar.chain.contracts import TOKEN_REWARD_ADDED_TOPIC, TOKEN_REWARD_CONTRACT
from feydar.models import FeeSplit, TransactionReceipt
from feydar.models.deployment import BPS_TOTAL

logger = logging.getLogger(__name__)

WORD = 32
MAX_REWARD_ENTRIES = 100

_TAIL_TYPES = ['uint256', 'uint256', 'uint256', 'uint16[]', 'address[]', 'address[]', 'int24[]', 'int24[]', 'uint16[]']
REWARD_BPS_INDEX = 5  # position of rewardBps in the decoded tuple

# Tried in order; the first that decodes with a plausible rewardBps array wins
REWARD_EVENT_CANDIDATES = (
    ('pool_key_5', ['address', '(address,address,uint24,int24,address)'] + _TAIL_TYPES),
    ('pool_key_5_wrapped', ['address', '(bytes32,bytes32,uint24,int24,address)'] + _TAIL_TYPES),
    ('pool_key_4', ['address', '(address,address,uint24,int24)'] + _TAIL_TYPES),
    ('pool_key_4_wrapped', ['address', '(bytes32,bytes32,uint24,int24)'] + _TAIL_TYPES),
)

# Manual layout, assuming the 5 field pool key:
#   word 0       token address
#   words 1-5    pool key tuple (static, encoded inline)
#   words 6-8    poolSupply, positionId, numPositions
#   word 9       offset of rewardBps  <- byte 288
#   words 10-14  offsets of the other five arrays
# so the head is 15 words and every array body starts at or after byte 480.
REWARD_BPS_OFFSET_POSITION = 9 * WORD
HEAD_SIZE = 15 * WORD

CONFIDENCE_STRUCTURED = 1.0
CONFIDENCE_MANUAL_PAIR = 0.9
CONFIDENCE_MANUAL_SINGLE = 0.75
CONFIDENCE_MANUAL_UNBALANCED = 0.5


def _read_word(data: bytes, position: int) -> int:
    return int.from_bytes(data[position:position + WORD], 'big')


def decode_reward_bps_manually(data: bytes) -> Optional[List[int]]:
    """Read rewardBps straight out of the raw ABI payload.

    Returns the first one or two array entries, or None when anything about the
    payload looks wrong. This trusts the 5 field pool key layout documented
    above; the bounds below are what stop a different layout from silently
    producing numbers.
    """
    # The offset word itself must be present
    if len(data) < REWARD_BPS_OFFSET_POSITION + WORD:
        return None

    # Offsets are relative to the start of the payload, word aligned, and
    # must point past the head; anything else means the layout is not ours
    offset = _read_word(data, REWARD_BPS_OFFSET_POSITION)
    if offset % WORD or offset < HEAD_SIZE or offset + WORD > len(data):
        return None

    # Array length word, then the elements one word each
    length = _read_word(data, offset)
    if length < 1 or length > MAX_REWARD_ENTRIES:
        return None

    count = min(length, 2)
    end = offset + WORD + count * WORD
    if end > len(data):
        return None

    values = [_read_word(data, offset + WORD + i * WORD) for i in range(count)]
    if any(value > BPS_TOTAL for value in values):
        return None
    return values


def split_from_values(values: Sequence[int], source: str, confidence: float) -> Optional[FeeSplit]:
    """Two values are (creator, stakers); one value is the stakers share"""
    if not values:
        return None
    if any(value < 0 or value > BPS_TOTAL for value in values):
        return None
    if len(values) >= 2:
        return FeeSplit(creator_bps=int(values[0]), staker_bps=int(values[1]), source=source, confidence=confidence)
    staker_bps = int(values[0])
    return FeeSplit(creator_bps=BPS_TOTAL - staker_bps, staker_bps=staker_bps, source=source, confidence=confidence)


def _decode_structured(data: bytes) -> Tuple[bool, Optional[FeeSplit]]:
    """Returns (matched, split); a matched shape with out-of-range values yields (True, None)"""
    for label, types in REWARD_EVENT_CANDIDATES:
        try:
            decoded = abi_decode(types, data)
        except (DecodingError, ValueError, TypeError, OverflowError) as e:
            logger.debug(f"Reward event shape {label} did not decode: {e}")
            continue

        reward_bps = list(decoded[REWARD_BPS_INDEX])
        if not 1 <= len(reward_bps) <= MAX_REWARD_ENTRIES:
            logger.debug(f"Reward event shape {label} gave implausible rewardBps length {len(reward_bps)}")
            continue

        split = split_from_values(reward_bps[:2], f"structured:{label}", CONFIDENCE_STRUCTURED)
        if split is None:
            logger.warning(f"Reward event shape {label} decoded out-of-range bps {reward_bps[:2]}")
        return True, split
    return False, None


def decode_reward_payload(data: bytes) -> Optional[FeeSplit]:
    """Structured decode first, manual offset decode second"""
    matched, split = _decode_structured(data)
    if matched:
        return split

    values = decode_reward_bps_manually(data)
    if values is None:
        return None

    if len(values) == 1:
        confidence = CONFIDENCE_MANUAL_SINGLE
    elif values[0] + values[1] == BPS_TOTAL:
        confidence = CONFIDENCE_MANUAL_PAIR
    else:
        confidence = CONFIDENCE_MANUAL_UNBALANCED
    logger.debug(f"Reward event decoded manually: {values} (confidence {confidence})")
    return split_from_values(values, 'manual', confidence)


def extract_fee_split(receipt: TransactionReceipt) -> Optional[FeeSplit]:
    """Find the reward configuration log in a receipt and recover the fee split"""
    reward_contract = TOKEN_REWARD_CONTRACT.lower()
    for log in receipt.logs:
        if log.address.lower() != reward_contract or log.topic0 != TOKEN_REWARD_ADDED_TOPIC:
            continue
        split = decode_reward_payload(log.data)
        if split is not None:
            return split
        logger.warning(f"⚠️ Reward event in {receipt.transaction_hash} could not be decoded")
    return None
