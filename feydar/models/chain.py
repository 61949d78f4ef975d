"""
Normalized chain data passed between the chain client and the pipeline
"""

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional


def to_bytes(value: Any) -> bytes:
    """HexBytes / bytes / 0x-hex string -> bytes"""
    if value is None:
        return b''
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        text = value[2:] if value.startswith(('0x', '0X')) else value
        if len(text) % 2:
            text = '0' + text
        return bytes.fromhex(text)
    raise TypeError(f"Cannot convert {type(value).__name__} to bytes")


def to_hex(value: Any) -> str:
    """Lowercase 0x-prefixed hex for hashes"""
    if isinstance(value, str):
        return value.lower() if value.startswith('0x') else '0x' + value.lower()
    return '0x' + to_bytes(value).hex()


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith('0x') else int(value)
    return int(value or 0)


@dataclass
class RawLog:
    """A single log entry as returned by eth_getLogs or a receipt"""
    address: str
    topics: List[bytes]
    data: bytes
    block_number: int
    transaction_hash: str
    log_index: int = 0

    @property
    def topic0(self) -> Optional[bytes]:
        return self.topics[0] if self.topics else None

    @classmethod
    def from_rpc(cls, entry: Mapping[str, Any]) -> 'RawLog':
        return cls(
            address=str(entry['address']),
            topics=[to_bytes(topic) for topic in entry.get('topics', [])],
            data=to_bytes(entry.get('data')),
            block_number=_to_int(entry.get('blockNumber')),
            transaction_hash=to_hex(entry.get('transactionHash')),
            log_index=_to_int(entry.get('logIndex')),
        )


@dataclass
class TransactionReceipt:
    transaction_hash: str
    block_number: int
    status: int = 1
    logs: List[RawLog] = field(default_factory=list)

    @classmethod
    def from_rpc(cls, receipt: Mapping[str, Any]) -> 'TransactionReceipt':
        return cls(
            transaction_hash=to_hex(receipt['transactionHash']),
            block_number=_to_int(receipt.get('blockNumber')),
            status=_to_int(receipt.get('status', 1)),
            logs=[RawLog.from_rpc(entry) for entry in receipt.get('logs', [])],
        )


@dataclass
class Block:
    number: int
    timestamp: int  # unix seconds from the block header

    @classmethod
    def from_rpc(cls, block: Mapping[str, Any]) -> 'Block':
        return cls(number=_to_int(block['number']), timestamp=_to_int(block['timestamp']))
