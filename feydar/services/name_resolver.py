"""
Deployer name resolution: Basenames on Base first, ENS on Ethereum mainnet second.

Every lookup path runs under its own timeout and failures collapse to None, so
resolve() always returns a NameResolution and never raises.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Tuple

from eth_hash.auto import keccak
from eth_utils import is_address, to_checksum_address

from feydar.chain.client import ChainClient
from feydar.chain.contracts import (
    BASENAME_L2_RESOLVER,
    BASENAME_REGISTRY,
    BASENAME_REVERSE_RESOLVER,
    REGISTRY_RESOLVER_ABI,
    RESOLVER_ADDR_ABI,
    RESOLVER_NAME_ABI,
)
from feydar.config import BASE_CHAIN_ID
from feydar.models import NameResolution
from feydar.services.cache import TTLCache

logger = logging.getLogger(__name__)

BASENAME_SUFFIX = '.base.eth'
ENS_SUFFIX = '.eth'
ZERO_ADDRESS = '0x' + '00' * 20


def namehash(name: str) -> bytes:
    """EIP-137 namehash"""
    node = b'\x00' * 32
    if name:
        for label in reversed(name.split('.')):
            node = keccak(node + keccak(label.encode('utf-8')))
    return node


def coin_type(chain_id: int) -> int:
    """ENSIP-11 coin type for an EVM chain"""
    return 0x80000000 | chain_id


def reverse_nodes(address: str, chain_id: int = BASE_CHAIN_ID) -> List[Tuple[str, bytes]]:
    """Reverse nodes to try, newest encoding first"""
    label = address.lower()[2:]
    return [
        ('coin_type', namehash(f"{label}.{coin_type(chain_id):x}.reverse")),
        ('addr_reverse', namehash(f"{label}.addr.reverse")),
    ]


def clean_basename(name: Optional[str]) -> Optional[str]:
    """Strip the .base.eth suffix and reject anything that looks like an address"""
    if not name:
        return None
    name = name.strip()
    if name.lower().endswith(BASENAME_SUFFIX):
        name = name[:-len(BASENAME_SUFFIX)]
    if not name or is_address(name) or '0x' in name.lower():
        return None
    return name


def _same_address(a: Optional[str], b: str) -> bool:
    return bool(a) and str(a).lower() == b.lower()


class NameResolver:
    """Resolves a wallet address to its basename and ENS name"""

    def __init__(self, chain: ChainClient, secondary_chain: Optional[ChainClient] = None,
                 timeout: float = 2.0, cache: Optional[TTLCache] = None,
                 chain_id: int = BASE_CHAIN_ID, negative_ttl: Optional[float] = 300.0):
        self.chain = chain
        self.secondary_chain = secondary_chain
        self.timeout = timeout
        self.cache = cache if cache is not None else TTLCache()
        self.chain_id = chain_id
        self.negative_ttl = negative_ttl
        self.timeouts = 0

    async def _with_timeout(self, label: str, address: str,
                            lookup: Callable[[str], Awaitable[Optional[str]]]) -> Optional[str]:
        try:
            return await asyncio.wait_for(lookup(address), timeout=self.timeout)
        except asyncio.TimeoutError:
            self.timeouts += 1
            logger.debug(f"⏱️ {label} lookup for {address} timed out after {self.timeout}s")
        except Exception as e:
            logger.debug(f"{label} lookup for {address} failed: {e}")
        return None

    async def resolve(self, address: str) -> NameResolution:
        key = address.lower()
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        try:
            primary, secondary = await asyncio.gather(
                self._resolve_primary(address),
                self._with_timeout('ENS', address, self._lookup_secondary),
            )
        except Exception as e:
            logger.warning(f"⚠️ Name resolution for {address} failed: {e}")
            return NameResolution(address=key)

        result = NameResolution(address=key, primary=primary, secondary=secondary)
        ttl = None if (primary or secondary) else self.negative_ttl
        self.cache.set(key, result, ttl=ttl)
        return result

    async def _resolve_primary(self, address: str) -> Optional[str]:
        name = await self._with_timeout('reverse', address, self._lookup_generic)
        if name:
            return name
        return await self._with_timeout('basename resolver', address, self._lookup_resolvers)

    async def _lookup_generic(self, address: str) -> Optional[str]:
        """Provider-level reverse lookup, forward-verified"""
        name = await self.chain.reverse_lookup(address)
        if not name or not name.lower().endswith(BASENAME_SUFFIX):
            return None
        cleaned = clean_basename(name)
        if not cleaned:
            return None
        try:
            forward = await self.chain.resolve_name(name)
        except Exception as e:
            logger.debug(f"Forward check of {name} failed, keeping unverified: {e}")
            return cleaned
        return cleaned if _same_address(forward, address) else None

    async def _candidate_resolvers(self, node: bytes) -> List[str]:
        resolvers = []
        try:
            registered = await self.chain.call(BASENAME_REGISTRY, REGISTRY_RESOLVER_ABI, [node])
            if registered and str(registered).lower() != ZERO_ADDRESS:
                resolvers.append(to_checksum_address(registered))
        except Exception as e:
            logger.debug(f"Registry resolver lookup failed: {e}")
        for resolver in (BASENAME_L2_RESOLVER, BASENAME_REVERSE_RESOLVER):
            if resolver.lower() not in (r.lower() for r in resolvers):
                resolvers.append(resolver)
        return resolvers

    async def _forward_matches(self, name: str, address: str) -> Optional[bool]:
        """True/False when the L2 resolver answers, None when it can't be asked"""
        try:
            forward = await self.chain.call(BASENAME_L2_RESOLVER, RESOLVER_ADDR_ABI, [namehash(name.lower())])
        except Exception as e:
            logger.debug(f"Forward check of {name} failed: {e}")
            return None
        return _same_address(forward, address)

    async def _lookup_resolvers(self, address: str) -> Optional[str]:
        """name(bytes32) against the known resolvers for each reverse node encoding"""
        for encoding, node in reverse_nodes(address, self.chain_id):
            for resolver in await self._candidate_resolvers(node):
                try:
                    name = await self.chain.call(resolver, RESOLVER_NAME_ABI, [node])
                except Exception as e:
                    logger.debug(f"name() on {resolver} ({encoding}) failed: {e}")
                    continue
                cleaned = clean_basename(name)
                if not cleaned:
                    continue
                if await self._forward_matches(cleaned + BASENAME_SUFFIX, address) is False:
                    logger.debug(f"Basename {cleaned} does not resolve back to {address}")
                    continue
                return cleaned
        return None

    async def _lookup_secondary(self, address: str) -> Optional[str]:
        """ENS reverse record on mainnet, forward-verified"""
        if self.secondary_chain is None:
            return None
        name = await self.secondary_chain.reverse_lookup(address)
        if not name:
            return None
        name = name.strip()
        lowered = name.lower()
        if not lowered.endswith(ENS_SUFFIX) or lowered.endswith(BASENAME_SUFFIX) or '0x' in lowered:
            return None
        forward = await self.secondary_chain.resolve_name(name)
        return name if _same_address(forward, address) else None
