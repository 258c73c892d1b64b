"""Partition ownership load balancing."""

from eventprocessor.balancer.cache import OwnedPartitionCache
from eventprocessor.balancer.load_balancer import EXPIRATION_SECONDS, LoadBalancer
from eventprocessor.balancer.scheduler import BalancerScheduler

__all__ = [
    "BalancerScheduler",
    "EXPIRATION_SECONDS",
    "LoadBalancer",
    "OwnedPartitionCache",
]
