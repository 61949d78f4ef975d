"""
Error taxonomy for the ingestion pipeline and the provider error classifier
"""

import asyncio
from typing import Optional

import aiohttp
import websockets


class FeydarError(Exception):
    """Base class for all ingestion errors"""


class ConfigError(FeydarError):
    """Required configuration is missing or invalid"""


class ContractNotFoundError(FeydarError):
    """No bytecode at the configured factory address"""


class DecodeError(FeydarError):
    """A log did not match the expected event shape"""


class TransientProviderError(FeydarError):
    """Timeout, transport drop or other provider hiccup worth retrying"""


class RateLimitError(TransientProviderError):
    """Provider rejected the request for throughput reasons (429 / compute units)"""


class RangeTooWideError(FeydarError):
    """Provider rejected the block range width of a log query"""


class RangeProcessingError(FeydarError):
    """A block range could not be processed after exhausting retries"""

    def __init__(self, from_block: int, to_block: int, message: str):
        super().__init__(f"blocks {from_block}-{to_block}: {message}")
        self.from_block = from_block
        self.to_block = to_block


class CriticalDataUnavailable(FeydarError):
    """Block timestamp or receipt that must exist could not be fetched yet"""


class PersistenceError(FeydarError):
    """Database write or read failed"""


class ConnectionLost(FeydarError):
    """Live transport is gone; the supervisor reconnects"""


RATE_LIMIT_PATTERNS = ('429', 'exceeded its compute units', 'throughput', 'rate limit', 'too many requests')
RANGE_TOO_WIDE_PATTERNS = (
    '10 block range',
    'block range should work',
    'block range is too wide',
    'query returned more than',
    'range too large',
)
NETWORK_PATTERNS = (
    'network', 'connection', 'timeout', 'timed out',
    'etimedout', 'econnrefused', 'econnreset', 'enetunreach',
)
NETWORK_CODES = ('NETWORK_ERROR', 'SERVER_ERROR')


def classify_provider_error(error: BaseException) -> Optional[FeydarError]:
    """Map a raw provider exception onto the taxonomy.

    Returns None when the error is not one we know how to handle, in which
    case callers should treat it as fatal for the current operation.
    """
    if isinstance(error, FeydarError):
        return error

    message = str(error).lower()
    if any(pattern in message for pattern in RATE_LIMIT_PATTERNS):
        return RateLimitError(str(error))
    if any(pattern in message for pattern in RANGE_TOO_WIDE_PATTERNS):
        return RangeTooWideError(str(error))

    if isinstance(error, (asyncio.TimeoutError, aiohttp.ClientError, ConnectionError,
                          websockets.exceptions.ConnectionClosed)):
        return TransientProviderError(str(error) or type(error).__name__)

    code = getattr(error, 'code', None)
    if isinstance(code, str) and code in NETWORK_CODES:
        return TransientProviderError(str(error))
    if any(pattern in message for pattern in NETWORK_PATTERNS):
        return TransientProviderError(str(error))
    return None


def is_retryable(error: BaseException) -> bool:
    """Shared retryable-vs-fatal classifier used by retry_async"""
    classified = classify_provider_error(error)
    return isinstance(classified, (TransientProviderError, CriticalDataUnavailable))
