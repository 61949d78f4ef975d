"""
Deployment record model and the enrichment results that feed it
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from eth_utils import to_checksum_address

# Storage caps
NAME_MAX_LENGTH = 500
SYMBOL_MAX_LENGTH = 100
ALIAS_MAX_LENGTH = 255

BPS_TOTAL = 10000


@dataclass
class TokenCreationEvent:
    """Decoded TokenCreated log from the factory"""
    sender: str
    token_address: str
    admin_address: str
    image_uri: str
    name: str
    symbol: str
    metadata: str
    context: str
    starting_tick: int
    pool_hook: str
    pool_id: str  # 0x + 64 hex chars
    paired_token: str
    locker: str
    mev_module: str
    extensions_supply: int
    extensions: List[str] = field(default_factory=list)
    # Provenance from the log itself
    transaction_hash: str = ''
    block_number: int = 0
    log_index: int = 0


@dataclass
class FeeSplit:
    """Creator / stakers basis point split recovered from the reward event"""
    creator_bps: int
    staker_bps: int
    source: str  # structured:<candidate> or manual
    confidence: float


@dataclass
class NameResolution:
    """Result of reverse name resolution for one address"""
    address: str
    primary: Optional[str] = None    # basename without .base.eth
    secondary: Optional[str] = None  # ENS name on mainnet

    @property
    def display(self) -> str:
        if self.primary:
            return f"{self.primary}.base.eth"
        if self.secondary:
            return self.secondary
        return to_checksum_address(self.address)


@dataclass
class TokenState:
    """Live snapshot of mutable token contract state; any field may be missing"""
    current_admin_address: Optional[str] = None
    current_image_uri: Optional[str] = None
    current_metadata: Optional[str] = None
    current_context: Optional[str] = None
    is_verified: Optional[bool] = None
    total_supply: Optional[str] = None


@dataclass
class DeploymentRecord:
    """Canonical stored deployment"""
    token_address: str
    transaction_hash: str
    name: str
    symbol: str
    deployer_address: str
    block_number: int
    created_at: datetime
    token_image_uri: Optional[str] = None
    deployer_alias_primary: Optional[str] = None
    deployer_alias_secondary: Optional[str] = None
    creator_fee_bps: Optional[int] = None
    staker_fee_bps: Optional[int] = None
    pool_identifier: Optional[str] = None
    paired_token_address: Optional[str] = None
    current_admin_address: Optional[str] = None
    current_image_uri: Optional[str] = None
    current_metadata: Optional[str] = None
    current_context: Optional[str] = None
    is_verified: Optional[bool] = None
    total_supply: Optional[str] = None
    id: Optional[int] = None

    def __post_init__(self):
        self.token_address = self.token_address.lower()
        self.transaction_hash = self.transaction_hash.lower()
        self.deployer_address = self.deployer_address.lower()
        if self.paired_token_address:
            self.paired_token_address = self.paired_token_address.lower()
        if self.current_admin_address:
            self.current_admin_address = self.current_admin_address.lower()
        self.name = truncate(self.name, NAME_MAX_LENGTH) or ''
        self.symbol = truncate(self.symbol, SYMBOL_MAX_LENGTH) or ''
        self.deployer_alias_primary = truncate(self.deployer_alias_primary, ALIAS_MAX_LENGTH)
        self.deployer_alias_secondary = truncate(self.deployer_alias_secondary, ALIAS_MAX_LENGTH)

    @property
    def deployer_display(self) -> str:
        return NameResolution(
            address=self.deployer_address,
            primary=self.deployer_alias_primary,
            secondary=self.deployer_alias_secondary,
        ).display

    def values(self) -> Dict[str, Any]:
        """Column -> value for every stored field except the row id"""
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != 'id'}

    def to_api_payload(self) -> Dict[str, Any]:
        """camelCase payload understood by the presentation API"""
        created_at = self.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return {
            'id': self.id,
            'tokenAddress': self.token_address,
            'name': self.name,
            'symbol': self.symbol,
            'totalSupply': self.total_supply,
            'deployer': self.deployer_address,
            'deployerBasename': self.deployer_alias_primary,
            'deployerENS': self.deployer_alias_secondary,
            'transactionHash': self.transaction_hash,
            'tokenImage': self.token_image_uri,
            'currentAdmin': self.current_admin_address,
            'currentImageUrl': self.current_image_uri,
            'metadata': self.current_metadata,
            'context': self.current_context,
            'isVerified': self.is_verified,
            'creatorBps': self.creator_fee_bps,
            'feyStakersBps': self.staker_fee_bps,
            'poolId': self.pool_identifier,
            'pairedToken': self.paired_token_address,
            'blockNumber': self.block_number,
            'createdAt': created_at.isoformat(),
        }


def truncate(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    return value[:limit]


def blank_to_none(value: Any) -> Optional[str]:
    """Empty or whitespace-only strings count as missing"""
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None
