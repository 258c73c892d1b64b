"""Thread-safe cache of the partitions an instance believes it owns."""

import threading
from typing import Dict, Iterator, Optional, Set

from eventprocessor.ownership.models import PartitionOwnership


class OwnedPartitionCache:
    """
    Local view of owned partitions.

    Written by the balance loop after successful claims and read concurrently
    by partition processors.
    """

    def __init__(self):
        self._ownerships: Dict[str, PartitionOwnership] = {}
        self._lock = threading.RLock()

    def put(self, ownership: PartitionOwnership) -> None:
        with self._lock:
            self._ownerships[ownership.partition_id] = ownership

    def get(self, partition_id: str) -> Optional[PartitionOwnership]:
        with self._lock:
            return self._ownerships.get(partition_id)

    def remove(self, partition_id: str) -> Optional[PartitionOwnership]:
        with self._lock:
            return self._ownerships.pop(partition_id, None)

    def clear(self) -> None:
        with self._lock:
            self._ownerships.clear()

    def snapshot(self) -> Dict[str, PartitionOwnership]:
        """Return a copy of partition id -> ownership."""
        with self._lock:
            return dict(self._ownerships)

    def partition_ids(self) -> Set[str]:
        with self._lock:
            return set(self._ownerships)

    def __contains__(self, partition_id: object) -> bool:
        with self._lock:
            return partition_id in self._ownerships

    def __len__(self) -> int:
        with self._lock:
            return len(self._ownerships)

    def __iter__(self) -> Iterator[str]:
        return iter(self.partition_ids())
