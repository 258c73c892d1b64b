"""
Checkpointing for partition processors.

A processor receives a CheckpointManager bound to its partition and calls it
whenever it wants its progress made durable.
"""

from dataclasses import dataclass

from eventprocessor.ownership.models import Checkpoint, EventPosition
from eventprocessor.ownership.store import PartitionManager
from eventprocessor.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PartitionContext:
    """
    Identifies the partition a processor is working on.

    Attributes:
        event_hub_name: Stream name
        consumer_group_name: Consumer group name
        partition_id: Partition identifier
    """
    event_hub_name: str
    consumer_group_name: str
    partition_id: str


class CheckpointManager:
    """Writes checkpoints for a single partition."""

    def __init__(
        self,
        partition_context: PartitionContext,
        partition_manager: PartitionManager,
    ):
        """
        Initialize checkpoint manager.

        Args:
            partition_context: Partition checkpoints are written for
            partition_manager: Store the checkpoints go to
        """
        self._partition_context = partition_context
        self._partition_manager = partition_manager

    @property
    def partition_context(self) -> PartitionContext:
        return self._partition_context

    def update_checkpoint(self, sequence_number: int) -> str:
        """
        Record the sequence number of the last processed event.

        Args:
            sequence_number: Sequence number of the last processed event

        Returns:
            New version of the partition's record
        """
        if sequence_number < EventPosition.EARLIEST:
            raise ValueError(f"Invalid sequence number: {sequence_number}")

        checkpoint = Checkpoint(
            event_hub_name=self._partition_context.event_hub_name,
            consumer_group_name=self._partition_context.consumer_group_name,
            partition_id=self._partition_context.partition_id,
            sequence_number=sequence_number,
        )

        new_version = self._partition_manager.update_checkpoint(checkpoint)

        logger.info(
            "Checkpoint written",
            partition_id=checkpoint.partition_id,
            sequence_number=sequence_number,
        )

        return new_version
