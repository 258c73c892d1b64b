"""
Partition ownership load balancing.

Every instance of a consumer group runs its own LoadBalancer against a shared
partition manager. There is no coordinator: each balance cycle reads the full
ownership snapshot, works out whether this instance holds less than its fair
share, and if so claims at most one partition. Repeated cycles across all
instances converge to an even split.

Fair share for P partitions and N active instances:
  min_share = P // N
  max_share = min_share + 1 (held by at most P % N instances)
"""

import random
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set

from eventprocessor.balancer.cache import OwnedPartitionCache
from eventprocessor.exceptions import BalancerConfigurationError
from eventprocessor.ownership.models import (
    EventPosition,
    OwnershipClaimRequest,
    PartitionOwnership,
)
from eventprocessor.ownership.store import PartitionManager
from eventprocessor.utils.logging import get_logger

logger = get_logger(__name__)

EXPIRATION_SECONDS = 30


class LoadBalancer:
    """
    Claims partitions for one instance of a consumer group.

    Responsibilities:
    - Bootstrap ownership when no partition was ever claimed
    - Claim partitions without a live owner
    - Take partitions over from overloaded instances
    - Renew ownership of partitions this instance holds
    """

    def __init__(
        self,
        instance_id: str,
        event_hub_name: str,
        consumer_group_name: str,
        partition_ids: Iterable[str],
        partition_manager: PartitionManager,
        owned_partitions: Optional[OwnedPartitionCache] = None,
        expiration_seconds: float = EXPIRATION_SECONDS,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize load balancer.

        Args:
            instance_id: Identity of this instance
            event_hub_name: Stream whose partitions are balanced
            consumer_group_name: Consumer group the instance belongs to
            partition_ids: Every partition of the stream
            partition_manager: Shared ownership store
            owned_partitions: Cache of partitions this instance owns
            expiration_seconds: Age after which ownership is considered lapsed
            rng: Random source for tie-breaking
        """
        self._partition_ids = frozenset(str(pid) for pid in partition_ids)
        if not self._partition_ids:
            raise BalancerConfigurationError(
                f"No partitions to balance for {event_hub_name}/{consumer_group_name}"
            )
        if not instance_id:
            raise BalancerConfigurationError("instance_id must not be empty")

        self.instance_id = instance_id
        self.event_hub_name = event_hub_name
        self.consumer_group_name = consumer_group_name
        self._partition_manager = partition_manager
        self._owned_partitions = (
            owned_partitions if owned_partitions is not None else OwnedPartitionCache()
        )
        self._expiration_seconds = expiration_seconds
        self._rng = rng or random.Random()

        self._logger = logger.bind(
            instance_id=instance_id,
            event_hub=event_hub_name,
            consumer_group=consumer_group_name,
        )

        self._logger.info(
            "LoadBalancer initialized",
            partitions=len(self._partition_ids),
            expiration_seconds=expiration_seconds,
        )

    @property
    def expiration_seconds(self) -> float:
        return self._expiration_seconds

    @property
    def partition_ids(self) -> frozenset:
        return self._partition_ids

    @property
    def owned_partitions(self) -> Dict[str, PartitionOwnership]:
        """Snapshot of partitions this instance owns."""
        return self._owned_partitions.snapshot()

    def balance(self) -> Optional[PartitionOwnership]:
        """
        Run one load balancing cycle.

        Errors listing ownership propagate and abort the cycle. Failed claims
        are dropped; the next cycle re-evaluates.

        Returns:
            Ownership claimed during this cycle, or None
        """
        all_ownerships = self._partition_manager.list_ownership(
            self.event_hub_name,
            self.consumer_group_name,
        )

        if not all_ownerships:
            # First instance ever for this consumer group.
            partition_id = self._rng.choice(sorted(self._partition_ids))
            self._logger.info("Bootstrapping ownership", partition_id=partition_id)
            return self._claim(partition_id, EventPosition.EARLIEST, None)

        all_owners = {
            ownership.partition_id: ownership
            for ownership in all_ownerships
            if ownership.partition_id in self._partition_ids
        }
        active_owners = {
            partition_id: ownership
            for partition_id, ownership in all_owners.items()
            if ownership.owner_id is not None
            and not ownership.is_expired(self._expiration_seconds)
        }

        owners_by_instance = self._group_by_owner(active_owners.values())
        owned_by_me = len(owners_by_instance[self.instance_id])

        num_partitions = len(self._partition_ids)
        num_instances = len(owners_by_instance)
        min_share = num_partitions // num_instances
        max_share = min_share + 1
        max_share_slots = num_partitions % num_instances
        count_at_max_share = sum(
            1 for owned in owners_by_instance.values() if len(owned) == max_share
        )

        if (
            self._is_balanced(owners_by_instance, min_share, max_share, max_share_slots, count_at_max_share)
            or owned_by_me >= max_share
        ):
            self._logger.debug(
                "No ownership change needed",
                owned=owned_by_me,
                instances=num_instances,
                min_share=min_share,
                max_share=max_share,
            )
            return None

        if len(active_owners) < num_partitions:
            if owned_by_me < min_share or count_at_max_share < max_share_slots:
                unowned = sorted(self._partition_ids - set(active_owners))
                partition_id = self._rng.choice(unowned)
                previous = all_owners.get(partition_id)

                self._logger.info(
                    "Claiming unowned partition",
                    partition_id=partition_id,
                    unowned=len(unowned),
                    owned=owned_by_me,
                )

                if previous is None:
                    return self._claim(partition_id, EventPosition.EARLIEST, None)
                return self._claim(partition_id, previous.sequence_number, previous.version)
            return None

        # Every partition is actively owned and the split is uneven.
        victim_id = self._find_overloaded_instance(owners_by_instance, max_share)
        if victim_id is None:
            return None

        target = self._rng.choice(
            sorted(owners_by_instance[victim_id], key=lambda o: o.partition_id)
        )

        self._logger.info(
            "Taking over partition",
            partition_id=target.partition_id,
            previous_owner=victim_id,
            previous_owner_count=len(owners_by_instance[victim_id]),
            owned=owned_by_me,
        )

        return self._claim(target.partition_id, target.sequence_number, target.version)

    def renew_ownership(self) -> Set[str]:
        """
        Renew ownership of every cached partition still owned by this instance.

        Partitions that were taken over, or whose renewal fails, are dropped
        from the cache.

        Returns:
            Ids of partitions whose ownership was renewed
        """
        cached = self._owned_partitions.partition_ids()
        if not cached:
            return set()

        current = {
            ownership.partition_id: ownership
            for ownership in self._partition_manager.list_ownership(
                self.event_hub_name,
                self.consumer_group_name,
            )
        }

        renewed = set()
        for partition_id in sorted(cached):
            record = current.get(partition_id)

            if record is None or not record.is_owned_by(self.instance_id):
                self._owned_partitions.remove(partition_id)
                self._logger.info(
                    "Ownership lost",
                    partition_id=partition_id,
                    new_owner=record.owner_id if record else None,
                )
                continue

            if self._claim(partition_id, record.sequence_number, record.version) is None:
                self._owned_partitions.remove(partition_id)
                self._logger.warning("Ownership renewal failed", partition_id=partition_id)
                continue

            renewed.add(partition_id)

        self._logger.debug("Renewed ownership", renewed=len(renewed), cached=len(cached))

        return renewed

    def _claim(
        self,
        partition_id: str,
        sequence_number: int,
        version: Optional[str],
    ) -> Optional[PartitionOwnership]:
        """
        Claim a partition and cache it on success.

        Args:
            partition_id: Partition to claim
            sequence_number: Position to resume from
            version: Last observed version of the partition's record

        Returns:
            New ownership, or None if the claim did not succeed
        """
        request = OwnershipClaimRequest(
            event_hub_name=self.event_hub_name,
            consumer_group_name=self.consumer_group_name,
            partition_id=partition_id,
            owner_id=self.instance_id,
            sequence_number=sequence_number,
            version=version,
            owner_level=0,
        )

        try:
            response = self._partition_manager.claim_ownership(request)
        except Exception as e:
            self._logger.warning(
                "Ownership claim failed",
                partition_id=partition_id,
                error=str(e),
            )
            return None

        if not response.success:
            self._logger.info("Ownership claim not accepted", partition_id=partition_id)
            return None

        ownership = PartitionOwnership(
            event_hub_name=self.event_hub_name,
            consumer_group_name=self.consumer_group_name,
            partition_id=partition_id,
            owner_id=self.instance_id,
            version=response.new_version,
            sequence_number=sequence_number,
            seconds_since_last_modified=response.seconds_since_last_modified,
        )
        self._owned_partitions.put(ownership)

        return ownership

    def _group_by_owner(
        self,
        active_ownerships: Iterable[PartitionOwnership],
    ) -> Dict[str, List[PartitionOwnership]]:
        """Map every active instance, this one included, to the partitions it owns."""
        owners: Dict[str, List[PartitionOwnership]] = defaultdict(list)
        for ownership in active_ownerships:
            owners[ownership.owner_id].append(ownership)
        owners.setdefault(self.instance_id, [])
        return owners

    @staticmethod
    def _is_balanced(
        owners_by_instance: Dict[str, List[PartitionOwnership]],
        min_share: int,
        max_share: int,
        max_share_slots: int,
        count_at_max_share: int,
    ) -> bool:
        if count_at_max_share > max_share_slots:
            return False

        return all(
            min_share <= len(owned) <= max_share
            for owned in owners_by_instance.values()
        )

    def _find_overloaded_instance(
        self,
        owners_by_instance: Dict[str, List[PartitionOwnership]],
        max_share: int,
    ) -> Optional[str]:
        """Pick an instance above max share, falling back to one at max share."""
        others = {
            instance_id: len(owned)
            for instance_id, owned in owners_by_instance.items()
            if instance_id != self.instance_id
        }

        candidates = sorted(i for i, count in others.items() if count > max_share)
        if not candidates:
            candidates = sorted(i for i, count in others.items() if count == max_share)
        if not candidates:
            return None

        return self._rng.choice(candidates)
