"""Exceptions raised by the event processor."""


class EventProcessorError(Exception):
    """Base class for event processor errors."""
    pass


class BalancerConfigurationError(EventProcessorError, ValueError):
    """Load balancer was configured with unusable settings."""
    pass


class PartitionManagerError(EventProcessorError):
    """Ownership store failed to serve a request."""
    pass


class OwnershipNotFoundError(PartitionManagerError, KeyError):
    """No ownership record exists for the requested partition."""

    def __init__(self, event_hub_name: str, consumer_group_name: str, partition_id: str):
        self.event_hub_name = event_hub_name
        self.consumer_group_name = consumer_group_name
        self.partition_id = partition_id
        super().__init__(
            f"No ownership record for partition {partition_id} "
            f"of {event_hub_name}/{consumer_group_name}"
        )

    def __str__(self) -> str:
        return self.args[0]
