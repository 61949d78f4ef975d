"""
Environment configuration for the bot and the batch scripts
"""

import os
from dataclasses import dataclass, replace
from typing import Iterable, Optional

from dotenv import find_dotenv, load_dotenv
from eth_utils import is_address, to_checksum_address

from feydar.errors import ConfigError

BASE_CHAIN_ID = 8453
DEFAULT_FACTORY_DEPLOYMENT_BLOCK = 38141030

# Required by every entry point
CORE_REQUIRED_VARS = ('FEY_FACTORY_ADDRESS',)
# Live listener also needs somewhere to post
LIVE_REQUIRED_VARS = CORE_REQUIRED_VARS + ('DISCORD_WEBHOOK_URL',)


@dataclass
class Settings:
    """Runtime settings, loaded once at startup"""
    factory_address: str
    rpc_http_url: str
    rpc_ws_url: str
    mainnet_rpc_url: Optional[str] = None
    chain_id: int = BASE_CHAIN_ID
    factory_deployment_block: int = DEFAULT_FACTORY_DEPLOYMENT_BLOCK

    # Traversal and retry
    max_blocks_per_query: int = 9
    request_delay: float = 0.1  # seconds between chunks
    max_retries: int = 5
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    backfill_from_latest: bool = False

    # Provider rate limiting
    rpc_max_concurrency: int = 4
    rpc_min_interval: float = 0.05

    # Name resolution
    name_timeout: float = 2.0
    name_cache_ttl: float = 3600.0
    name_cache_size: int = 2048

    # Storage and sinks
    database_path: str = 'deployments.db'
    discord_webhook_url: Optional[str] = None
    api_url: str = 'http://localhost:3001'
    app_url: str = 'https://feydar.app'
    push_notifications_enabled: bool = True
    log_level: str = 'INFO'

    def unlimited(self) -> 'Settings':
        """Settings for premium providers (data_integrity.py --no-limit)"""
        return replace(self, max_blocks_per_query=1000, request_delay=0.0, retry_base_delay=0.1)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def _env_ms(name: str, default_ms: int) -> float:
    return _env_int(name, default_ms) / 1000.0


def load_settings(required: Iterable[str] = CORE_REQUIRED_VARS) -> Settings:
    """Load configuration from environment (and .env)"""
    load_dotenv(find_dotenv(usecwd=True))

    missing = [var for var in required if not os.getenv(var)]

    api_key = os.getenv('ALCHEMY_API_KEY')
    rpc_http_url = os.getenv('BASE_RPC_URL')
    rpc_ws_url = os.getenv('BASE_WS_URL')
    if not (rpc_http_url and rpc_ws_url) and not api_key:
        missing.append('ALCHEMY_API_KEY')

    if missing:
        raise ConfigError(f"Missing required environment variables: {missing}")

    rpc_http_url = rpc_http_url or f"https://base-mainnet.g.alchemy.com/v2/{api_key}"
    rpc_ws_url = rpc_ws_url or f"wss://base-mainnet.g.alchemy.com/v2/{api_key}"
    mainnet_rpc_url = os.getenv('MAINNET_RPC_URL')
    if not mainnet_rpc_url and api_key:
        mainnet_rpc_url = f"https://eth-mainnet.g.alchemy.com/v2/{api_key}"

    factory_address = os.getenv('FEY_FACTORY_ADDRESS', '').strip()
    if not is_address(factory_address):
        raise ConfigError(f"FEY_FACTORY_ADDRESS is not a valid address: {factory_address!r}")

    max_blocks = _env_int('MAX_BLOCKS_PER_QUERY', 9)
    if max_blocks < 1:
        raise ConfigError("MAX_BLOCKS_PER_QUERY must be at least 1")

    return Settings(
        factory_address=to_checksum_address(factory_address),
        rpc_http_url=rpc_http_url,
        rpc_ws_url=rpc_ws_url,
        mainnet_rpc_url=mainnet_rpc_url,
        factory_deployment_block=_env_int('FEY_FACTORY_DEPLOYMENT_BLOCK', DEFAULT_FACTORY_DEPLOYMENT_BLOCK),
        max_blocks_per_query=max_blocks,
        request_delay=_env_ms('REQUEST_DELAY_MS', 100),
        max_retries=_env_int('MAX_RETRIES', 5),
        retry_base_delay=_env_ms('RETRY_DELAY_BASE_MS', 1000),
        backfill_from_latest=_env_bool('BACKFILL_FROM_LATEST', False),
        rpc_max_concurrency=_env_int('RPC_MAX_CONCURRENCY', 4),
        rpc_min_interval=_env_ms('RPC_MIN_INTERVAL_MS', 50),
        name_timeout=_env_ms('NAME_RESOLUTION_TIMEOUT_MS', 2000),
        name_cache_ttl=float(_env_int('NAME_CACHE_TTL_SECONDS', 3600)),
        name_cache_size=_env_int('NAME_CACHE_SIZE', 2048),
        database_path=os.getenv('DATABASE_PATH', 'deployments.db'),
        discord_webhook_url=os.getenv('DISCORD_WEBHOOK_URL'),
        api_url=os.getenv('API_URL', 'http://localhost:3001').rstrip('/'),
        app_url=os.getenv('APP_URL', 'https://feydar.app').rstrip('/'),
        push_notifications_enabled=_env_bool('PUSH_NOTIFICATIONS_ENABLED', True),
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    )
