"""Partition ownership records, stores and checkpointing."""

from eventprocessor.ownership.checkpoint import CheckpointManager, PartitionContext
from eventprocessor.ownership.models import (
    Checkpoint,
    EventPosition,
    OwnershipClaimRequest,
    OwnershipClaimResponse,
    PartitionOwnership,
)
from eventprocessor.ownership.store import InMemoryPartitionManager, PartitionManager

__all__ = [
    "Checkpoint",
    "CheckpointManager",
    "EventPosition",
    "InMemoryPartitionManager",
    "OwnershipClaimRequest",
    "OwnershipClaimResponse",
    "PartitionContext",
    "PartitionManager",
    "PartitionOwnership",
]
