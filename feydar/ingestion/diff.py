"""
Field-by-field comparison between a stored deployment and a freshly derived one
"""

from datetime import datetime
from typing import Any, Dict

from feydar.database.deployment_db import RECORD_COLUMNS
from feydar.models import DeploymentRecord

ADDRESS_FIELDS = ('token_address', 'deployer_address', 'current_admin_address', 'paired_token_address')
MISSING = '(missing)'


def _epoch_seconds(value: Any) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp())
    return int(datetime.fromisoformat(str(value)).timestamp())


def values_equal(field: str, old: Any, new: Any) -> bool:
    """Type-aware equality used to decide whether a column changed"""
    if old is None or new is None:
        return old is None and new is None
    if field == 'created_at':
        # Sub-second jitter from storage round trips is not a change
        return _epoch_seconds(old) == _epoch_seconds(new)
    if field == 'is_verified':
        return bool(old) == bool(new)
    if field in ADDRESS_FIELDS or field in ('transaction_hash', 'pool_identifier'):
        return str(old).lower() == str(new).lower()
    return str(old) == str(new)


def diff_records(existing: DeploymentRecord, candidate: DeploymentRecord) -> Dict[str, Any]:
    """Columns whose candidate value should replace the stored one.

    A None in the candidate never replaces a stored value: refinement only.
    """
    changes = {}
    for field in RECORD_COLUMNS:
        new = getattr(candidate, field)
        if new is None:
            continue
        old = getattr(existing, field)
        if not values_equal(field, old, new):
            changes[field] = new
    return changes


def display_value(value: Any) -> str:
    if value is None:
        return MISSING
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def describe_changes(existing: DeploymentRecord, changes: Dict[str, Any]) -> str:
    return ', '.join(
        f"{field}: {display_value(getattr(existing, field))} -> {display_value(value)}"
        for field, value in changes.items()
    )
