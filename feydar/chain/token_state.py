"""
Live token contract state reads
"""

import asyncio
import logging
from typing import Any, Optional

from eth_utils import is_address, to_checksum_address

from feydar.chain.client import ChainClient
from feydar.chain.contracts import abi_fragment
from feydar.chain.purchase import format_units
from feydar.models import TokenState
from feydar.models.deployment import blank_to_none

logger = logging.getLogger(__name__)

STATE_GETTERS = ('admin', 'imageUrl', 'metadata', 'context', 'isVerified', 'totalSupply', 'decimals')


class TokenStateReader:
    """Reads mutable token state; every getter fails independently"""

    def __init__(self, chain: ChainClient):
        self.chain = chain

    async def _read(self, token_address: str, getter: str) -> Any:
        try:
            return await self.chain.call(token_address, abi_fragment(getter))
        except Exception as e:
            # Reverts and missing getters are normal for older tokens
            logger.debug(f"{getter}() on {token_address} failed: {e}")
            return None

    async def read(self, token_address: str) -> TokenState:
        results = await asyncio.gather(*(self._read(token_address, getter) for getter in STATE_GETTERS))
        values = dict(zip(STATE_GETTERS, results))

        admin: Optional[str] = None
        if values['admin'] and is_address(values['admin']):
            admin = to_checksum_address(values['admin']).lower()

        total_supply = None
        if values['totalSupply'] is not None:
            decimals = values['decimals'] if values['decimals'] is not None else 18
            total_supply = format_units(values['totalSupply'], int(decimals)).replace(',', '')

        return TokenState(
            current_admin_address=admin,
            current_image_uri=blank_to_none(values['imageUrl']),
            current_metadata=blank_to_none(values['metadata']),
            current_context=blank_to_none(values['context']),
            is_verified=bool(values['isVerified']) if values['isVerified'] is not None else None,
            total_supply=total_supply,
        )
