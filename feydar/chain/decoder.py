"""
TokenCreated log decoding
"""

from typing import List

from eth_abi.abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from feydar.chain.contracts import TOKEN_CREATED_DATA_FIELDS, TOKEN_CREATED_TOPIC
from feydar.errors import DecodeError
from feydar.models import RawLog, TokenCreationEvent

DATA_TYPES = [abi_type for _, abi_type in TOKEN_CREATED_DATA_FIELDS]


def _topic_address(topic: bytes) -> str:
    if len(topic) != 32:
        raise DecodeError(f"Indexed address topic must be 32 bytes, got {len(topic)}")
    if any(topic[:12]):
        raise DecodeError("Indexed address topic has non-zero padding")
    return to_checksum_address(topic[12:])


def decode_token_created(log: RawLog) -> TokenCreationEvent:
    """Decode a factory TokenCreated log, raising DecodeError on any mismatch"""
    if log.topic0 != TOKEN_CREATED_TOPIC:
        topic = log.topic0.hex() if log.topic0 else 'none'
        raise DecodeError(f"Unexpected topic0 0x{topic} in tx {log.transaction_hash}")
    if len(log.topics) != 3:
        raise DecodeError(f"TokenCreated expects 3 topics, got {len(log.topics)} in tx {log.transaction_hash}")

    token_address = _topic_address(log.topics[1])
    admin_address = _topic_address(log.topics[2])

    try:
        values = abi_decode(DATA_TYPES, log.data)
    except (DecodingError, ValueError, TypeError, OverflowError) as e:
        raise DecodeError(f"Malformed TokenCreated payload in tx {log.transaction_hash}: {e}") from e

    decoded = dict(zip((name for name, _ in TOKEN_CREATED_DATA_FIELDS), values))
    extensions: List[str] = [to_checksum_address(ext) for ext in decoded['extensions']]

    return TokenCreationEvent(
        sender=to_checksum_address(decoded['msgSender']),
        token_address=token_address,
        admin_address=admin_address,
        image_uri=decoded['tokenImage'],
        name=decoded['tokenName'],
        symbol=decoded['tokenSymbol'],
        metadata=decoded['tokenMetadata'],
        context=decoded['tokenContext'],
        starting_tick=int(decoded['startingTick']),
        pool_hook=to_checksum_address(decoded['poolHook']),
        pool_id='0x' + bytes(decoded['poolId']).hex().rjust(64, '0'),
        paired_token=to_checksum_address(decoded['pairedToken']),
        locker=to_checksum_address(decoded['locker']),
        mev_module=to_checksum_address(decoded['mevModule']),
        extensions_supply=int(decoded['extensionsSupply']),
        extensions=extensions,
        transaction_hash=log.transaction_hash.lower(),
        block_number=log.block_number,
        log_index=log.log_index,
    )
