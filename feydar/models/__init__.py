from feydar.models.chain import Block, RawLog, TransactionReceipt
from feydar.models.deployment import (
    DeploymentRecord,
    FeeSplit,
    NameResolution,
    TokenCreationEvent,
    TokenState,
)
