"""
Partition ownership store.

Defines the interface the load balancer and checkpoint managers talk to, and
an in-memory implementation for single-process runs and tests.
"""

import dataclasses
import threading
import time
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Tuple

from eventprocessor.exceptions import OwnershipNotFoundError
from eventprocessor.ownership.models import (
    Checkpoint,
    OwnershipClaimRequest,
    OwnershipClaimResponse,
    PartitionOwnership,
)
from eventprocessor.utils.logging import get_logger

logger = get_logger(__name__)

OwnershipKey = Tuple[str, str, str]


class PartitionManager(ABC):
    """Durable, shared storage of partition ownership and checkpoints."""

    @abstractmethod
    def list_ownership(
        self,
        event_hub_name: str,
        consumer_group_name: str,
    ) -> List[PartitionOwnership]:
        """
        List every ownership record of a consumer group.

        Args:
            event_hub_name: Stream name
            consumer_group_name: Consumer group name

        Returns:
            Ownership records, empty if no partition was ever claimed
        """
        pass

    @abstractmethod
    def claim_ownership(self, request: OwnershipClaimRequest) -> OwnershipClaimResponse:
        """
        Write an ownership record for the requested partition.

        Implementations backed by shared storage must reject a claim whose
        version does not match the stored version.

        Args:
            request: Claim request

        Returns:
            Claim outcome
        """
        pass

    @abstractmethod
    def update_checkpoint(self, checkpoint: Checkpoint) -> str:
        """
        Persist the last processed position of a partition.

        Args:
            checkpoint: Checkpoint to store

        Returns:
            New version of the partition's record
        """
        pass


class InMemoryPartitionManager(PartitionManager):
    """
    Partition manager keeping records in process memory.

    Only balances instances running inside this process. By default every
    claim is accepted and overwrites the stored record. With
    ``enforce_versions`` the claim becomes a compare-and-swap: it succeeds
    when no record exists yet or when the request carries the stored version.
    """

    def __init__(
        self,
        enforce_versions: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize in-memory partition manager.

        Args:
            enforce_versions: Reject claims carrying a stale or missing version
            clock: Source of epoch seconds used to age records
        """
        self._records: Dict[OwnershipKey, PartitionOwnership] = {}
        self._enforce_versions = enforce_versions
        self._clock = clock
        self._lock = threading.RLock()

        logger.info(
            "InMemoryPartitionManager initialized",
            enforce_versions=enforce_versions,
        )

    @staticmethod
    def _key(event_hub_name: str, consumer_group_name: str, partition_id: str) -> OwnershipKey:
        return (event_hub_name, consumer_group_name, partition_id)

    def list_ownership(
        self,
        event_hub_name: str,
        consumer_group_name: str,
    ) -> List[PartitionOwnership]:
        with self._lock:
            now = self._clock()
            records = [
                dataclasses.replace(
                    record,
                    seconds_since_last_modified=max(0.0, now - record.last_modified_time),
                )
                for (hub, group, _), record in self._records.items()
                if hub == event_hub_name and group == consumer_group_name
            ]

        logger.debug(
            "Listed partition ownership",
            event_hub=event_hub_name,
            consumer_group=consumer_group_name,
            count=len(records),
        )

        return records

    def claim_ownership(self, request: OwnershipClaimRequest) -> OwnershipClaimResponse:
        key = self._key(
            request.event_hub_name,
            request.consumer_group_name,
            request.partition_id,
        )

        with self._lock:
            current = self._records.get(key)

            if (
                self._enforce_versions
                and current is not None
                and current.version != request.version
            ):
                logger.info(
                    "Ownership claim rejected",
                    partition_id=request.partition_id,
                    owner_id=request.owner_id,
                    current_owner=current.owner_id,
                    expected_version=request.version,
                    stored_version=current.version,
                )
                return OwnershipClaimResponse.rejected()

            new_version = str(uuid.uuid4())
            self._records[key] = PartitionOwnership(
                event_hub_name=request.event_hub_name,
                consumer_group_name=request.consumer_group_name,
                partition_id=request.partition_id,
                owner_id=request.owner_id,
                version=new_version,
                sequence_number=request.sequence_number,
                owner_level=request.owner_level,
                last_modified_time=self._clock(),
            )

        logger.info(
            "Ownership claimed",
            partition_id=request.partition_id,
            owner_id=request.owner_id,
            sequence_number=request.sequence_number,
        )

        return OwnershipClaimResponse.succeeded(new_version, 0.0)

    def update_checkpoint(self, checkpoint: Checkpoint) -> str:
        key = self._key(
            checkpoint.event_hub_name,
            checkpoint.consumer_group_name,
            checkpoint.partition_id,
        )

        with self._lock:
            current = self._records.get(key)
            if current is None:
                raise OwnershipNotFoundError(
                    checkpoint.event_hub_name,
                    checkpoint.consumer_group_name,
                    checkpoint.partition_id,
                )

            new_version = str(uuid.uuid4())
            self._records[key] = dataclasses.replace(
                current,
                sequence_number=checkpoint.sequence_number,
                version=new_version,
            )

        logger.info(
            "Updated checkpoint",
            partition_id=checkpoint.partition_id,
            sequence_number=checkpoint.sequence_number,
        )

        return new_version
