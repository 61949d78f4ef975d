from feydar.ingestion.reconciler import (
    IngestionPolicy,
    ReconcileState,
    ReconcileSummary,
    Reconciler,
    backfill_policy,
    integrity_policy,
    live_policy,
)
from feydar.ingestion.retry import RetryPolicy, retry_async
from feydar.ingestion.supervisor import ConnectionSupervisor, ReconnectLimitExceeded, SupervisorState
from feydar.ingestion.traversal import plan_backfill, plan_integrity, traverse_descending
