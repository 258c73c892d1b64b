"""
eventprocessor - cooperative partition ownership for event stream consumers.

Instances of a consumer group share a partition manager and each run a load
balancer that:
- Claims partitions nobody actively owns
- Takes partitions over from overloaded instances
- Lets ownership lapse when an instance stops renewing it
- Resumes processing from the last recorded sequence number
"""

__version__ = "0.1.0"

from eventprocessor.balancer import (
    EXPIRATION_SECONDS,
    BalancerScheduler,
    LoadBalancer,
    OwnedPartitionCache,
)
from eventprocessor.exceptions import (
    BalancerConfigurationError,
    EventProcessorError,
    OwnershipNotFoundError,
    PartitionManagerError,
)
from eventprocessor.ownership import (
    Checkpoint,
    CheckpointManager,
    EventPosition,
    InMemoryPartitionManager,
    OwnershipClaimRequest,
    OwnershipClaimResponse,
    PartitionContext,
    PartitionManager,
    PartitionOwnership,
)

__all__ = [
    "BalancerConfigurationError",
    "BalancerScheduler",
    "Checkpoint",
    "CheckpointManager",
    "EXPIRATION_SECONDS",
    "EventPosition",
    "EventProcessorError",
    "InMemoryPartitionManager",
    "LoadBalancer",
    "OwnedPartitionCache",
    "OwnershipClaimRequest",
    "OwnershipClaimResponse",
    "OwnershipNotFoundError",
    "PartitionContext",
    "PartitionManager",
    "PartitionManagerError",
    "PartitionOwnership",
]
