"""
Chain client: the RPC surface the ingestion pipeline depends on, and its web3.py implementation
"""

import logging
from typing import Any, AsyncIterator, List, Optional, Sequence

import websockets
from eth_utils import to_checksum_address
from web3 import AsyncWeb3, AsyncHTTPProvider, WebSocketProvider
from web3.exceptions import BlockNotFound, TransactionNotFound

from feydar.chain.rate_limit import RateLimiter
from feydar.errors import (
    ConnectionLost,
    ContractNotFoundError,
    FeydarError,
    TransientProviderError,
    classify_provider_error,
)
from feydar.models import Block, RawLog, TransactionReceipt

logger = logging.getLogger(__name__)


class ChainClient:
    """Interface consumed by the decoder, enrichment steps and supervisor"""

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def is_connected(self) -> bool:
        return True

    async def get_logs(self, address: str, topics: Sequence[bytes], from_block: int, to_block: int) -> List[RawLog]:
        raise NotImplementedError

    async def get_block(self, number: int) -> Optional[Block]:
        raise NotImplementedError

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        raise NotImplementedError

    async def call(self, address: str, abi_fragment: dict, args: Sequence[Any] = ()) -> Any:
        raise NotImplementedError

    def subscribe_to_logs(self, address: str, topics: Sequence[bytes]) -> AsyncIterator[RawLog]:
        raise NotImplementedError

    async def get_code(self, address: str) -> bytes:
        raise NotImplementedError

    async def get_block_number(self) -> int:
        raise NotImplementedError

    async def reverse_lookup(self, address: str) -> Optional[str]:
        """Generic reverse name lookup offered by the provider, if any"""
        return None

    async def resolve_name(self, name: str) -> Optional[str]:
        return None


class Web3ChainClient(ChainClient):
    """AsyncWeb3 client over HTTP (batch work) or WebSocket (live subscriptions)"""

    def __init__(self, url: str, limiter: Optional[RateLimiter] = None, label: str = 'base',
                 request_timeout: int = 30):
        self.url = url
        self.label = label
        self.limiter = limiter or RateLimiter()
        self.request_timeout = request_timeout
        self.is_websocket = url.startswith(('ws://', 'wss://'))
        self.w3: Optional[AsyncWeb3] = None

    async def connect(self) -> None:
        """Open the provider and confirm it answers"""
        if self.is_websocket:
            self.w3 = AsyncWeb3(WebSocketProvider(self.url, request_timeout=self.request_timeout))
            try:
                await self.w3.provider.connect()
            except Exception as e:
                raise TransientProviderError(f"{self.label}: websocket connect failed: {e}") from e
        else:
            self.w3 = AsyncWeb3(AsyncHTTPProvider(self.url, request_kwargs={'timeout': self.request_timeout}))

        if not await self.w3.is_connected():
            raise TransientProviderError(f"{self.label}: provider is not reachable")
        logger.info(f"✅ Connected to {self.label} RPC ({'websocket' if self.is_websocket else 'http'})")

    async def close(self) -> None:
        if self.w3 is None:
            return
        disconnect = getattr(self.w3.provider, 'disconnect', None)
        try:
            if disconnect is not None:
                await disconnect()
        finally:
            self.w3 = None

    async def is_connected(self) -> bool:
        if self.w3 is None:
            return False
        try:
            return bool(await self.w3.is_connected())
        except Exception as e:
            logger.debug(f"{self.label}: liveness probe failed: {e}")
            return False

    def _require_w3(self) -> AsyncWeb3:
        if self.w3 is None:
            raise ConnectionLost(f"{self.label}: client is not connected")
        return self.w3

    async def _request(self, label: str, request):
        """Run one RPC call inside the provider limiter, mapping errors onto the taxonomy"""
        async with self.limiter:
            try:
                return await request()
            except FeydarError:
                raise
            except Exception as e:
                classified = classify_provider_error(e)
                if classified is None:
                    raise
                logger.debug(f"{self.label}: {label} failed: {e}")
                raise classified from e

    async def get_logs(self, address: str, topics: Sequence[bytes], from_block: int, to_block: int) -> List[RawLog]:
        w3 = self._require_w3()
        params = {
            'address': to_checksum_address(address),
            'topics': ['0x' + bytes(topic).hex() for topic in topics],
            'fromBlock': from_block,
            'toBlock': to_block,
        }
        entries = await self._request('eth_getLogs', lambda: w3.eth.get_logs(params))
        return [RawLog.from_rpc(entry) for entry in entries]

    async def get_block(self, number: int) -> Optional[Block]:
        w3 = self._require_w3()

        async def fetch():
            try:
                return await w3.eth.get_block(number)
            except BlockNotFound:
                return None

        block = await self._request('eth_getBlockByNumber', fetch)
        return Block.from_rpc(block) if block is not None else None

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        w3 = self._require_w3()

        async def fetch():
            try:
                return await w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return None

        receipt = await self._request('eth_getTransactionReceipt', fetch)
        return TransactionReceipt.from_rpc(receipt) if receipt is not None else None

    async def call(self, address: str, abi_fragment: dict, args: Sequence[Any] = ()) -> Any:
        w3 = self._require_w3()
        contract = w3.eth.contract(address=to_checksum_address(address), abi=[abi_fragment])
        function = getattr(contract.functions, abi_fragment['name'])(*args)
        return await self._request(f"eth_call {abi_fragment['name']}", function.call)

    async def get_code(self, address: str) -> bytes:
        w3 = self._require_w3()
        code = await self._request('eth_getCode', lambda: w3.eth.get_code(to_checksum_address(address)))
        return bytes(code)

    async def get_block_number(self) -> int:
        w3 = self._require_w3()
        return int(await self._request('eth_blockNumber', lambda: w3.eth.block_number))

    async def reverse_lookup(self, address: str) -> Optional[str]:
        w3 = self._require_w3()
        async with self.limiter:
            return await w3.ens.name(to_checksum_address(address))

    async def resolve_name(self, name: str) -> Optional[str]:
        w3 = self._require_w3()
        async with self.limiter:
            resolved = await w3.ens.address(name)
        return str(resolved) if resolved else None

    async def subscribe_to_logs(self, address: str, topics: Sequence[bytes]) -> AsyncIterator[RawLog]:
        """Yield matching logs as they arrive; raises ConnectionLost when the stream dies"""
        if not self.is_websocket:
            raise ValueError("Log subscriptions need a websocket endpoint")
        w3 = self._require_w3()
        log_filter = {
            'address': to_checksum_address(address),
            'topics': ['0x' + bytes(topic).hex() for topic in topics],
        }
        try:
            subscription_id = await w3.eth.subscribe('logs', log_filter)
            logger.info(f"👂 Subscribed to factory logs (subscription {subscription_id})")
            async for payload in w3.socket.process_subscriptions():
                result = payload.get('result') if hasattr(payload, 'get') else None
                if not result:
                    continue
                yield RawLog.from_rpc(result)
        except websockets.exceptions.ConnectionClosed as e:
            raise ConnectionLost(f"{self.label}: websocket closed ({e})") from e
        except ConnectionLost:
            raise
        except Exception as e:
            if isinstance(classify_provider_error(e), TransientProviderError):
                raise ConnectionLost(f"{self.label}: subscription failed ({e})") from e
            raise
        raise ConnectionLost(f"{self.label}: subscription stream ended")


MIN_CODE_HEX_LENGTH = 10  # '0x' plus at least four bytes of code


async def ensure_contract_code(chain: ChainClient, address: str) -> int:
    """Raise ContractNotFoundError unless there is bytecode at address; returns its size"""
    code = bytes(await chain.get_code(address))
    code_hex = '0x' + code.hex()
    if code_hex == '0x' or len(code_hex) < MIN_CODE_HEX_LENGTH:
        raise ContractNotFoundError(f"No contract code at factory address {address}")
    return len(code)
