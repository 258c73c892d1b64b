"""
Ownership and checkpoint records exchanged with the partition manager.

All records are immutable; updated copies are produced with
``dataclasses.replace``.
"""

from dataclasses import dataclass
from typing import Optional


class EventPosition:
    """Well-known sequence positions."""

    EARLIEST = -1  # Start of the partition


@dataclass(frozen=True)
class PartitionOwnership:
    """
    Ownership claim of a single partition.

    Attributes:
        event_hub_name: Stream the partition belongs to
        consumer_group_name: Consumer group the claim is made in
        partition_id: Partition identifier
        owner_id: Instance currently owning the partition (None if unowned)
        version: Concurrency token, changes on every successful write
        sequence_number: Last known read position in the partition
        owner_level: Owner priority, reserved for preemption
        last_modified_time: Epoch seconds of the last write
        seconds_since_last_modified: Age of the record when it was listed
    """
    event_hub_name: str
    consumer_group_name: str
    partition_id: str
    owner_id: Optional[str] = None
    version: Optional[str] = None
    sequence_number: int = EventPosition.EARLIEST
    owner_level: int = 0
    last_modified_time: Optional[float] = None
    seconds_since_last_modified: float = 0.0

    def is_expired(self, expiration_seconds: float) -> bool:
        """
        Check whether the record is stale.

        Args:
            expiration_seconds: Age at which ownership lapses

        Returns:
            True if the record no longer represents live ownership
        """
        return self.seconds_since_last_modified >= expiration_seconds

    def is_owned_by(self, instance_id: str) -> bool:
        return self.owner_id is not None and self.owner_id == instance_id

    def __str__(self) -> str:
        return (
            f"{{pid:{self.partition_id}, owner:{self.owner_id}, "
            f"version:{self.version}}}"
        )


@dataclass(frozen=True)
class OwnershipClaimRequest:
    """
    Request to take (or renew) ownership of a partition.

    Attributes:
        event_hub_name: Stream the partition belongs to
        consumer_group_name: Consumer group the claim is made in
        partition_id: Partition to claim
        owner_id: Claiming instance
        sequence_number: Position to resume reading from
        version: Version the claimant last observed, None for a first claim
        owner_level: Owner priority
    """
    event_hub_name: str
    consumer_group_name: str
    partition_id: str
    owner_id: str
    sequence_number: int = EventPosition.EARLIEST
    version: Optional[str] = None
    owner_level: int = 0


@dataclass(frozen=True)
class OwnershipClaimResponse:
    """
    Outcome of an ownership claim.

    Attributes:
        success: Whether the claim was accepted
        new_version: Version of the written record
        seconds_since_last_modified: Age of the written record
    """
    success: bool
    new_version: Optional[str] = None
    seconds_since_last_modified: float = 0.0

    @classmethod
    def succeeded(
        cls,
        new_version: str,
        seconds_since_last_modified: float = 0.0,
    ) -> "OwnershipClaimResponse":
        return cls(
            success=True,
            new_version=new_version,
            seconds_since_last_modified=seconds_since_last_modified,
        )

    @classmethod
    def rejected(cls) -> "OwnershipClaimResponse":
        return cls(success=False)


@dataclass(frozen=True)
class Checkpoint:
    """
    Last processed position within a partition.

    Attributes:
        event_hub_name: Stream the partition belongs to
        consumer_group_name: Consumer group that processed the events
        partition_id: Partition identifier
        sequence_number: Sequence number of the last processed event
    """
    event_hub_name: str
    consumer_group_name: str
    partition_id: str
    sequence_number: int
