"""
Periodic driver for a load balancer.

Runs renew + balance cycles on a background thread at a fixed interval.
"""

import threading
from typing import Optional

from eventprocessor.balancer.load_balancer import LoadBalancer
from eventprocessor.exceptions import BalancerConfigurationError
from eventprocessor.ownership.models import PartitionOwnership
from eventprocessor.utils.config import BalancerSettings
from eventprocessor.utils.logging import get_logger

logger = get_logger(__name__)


class BalancerScheduler:
    """
    Invokes a LoadBalancer periodically.

    Cycles of one instance never overlap. A failing cycle is logged and the
    next one runs on schedule.
    """

    def __init__(
        self,
        load_balancer: LoadBalancer,
        interval_seconds: float = 10.0,
    ):
        """
        Initialize scheduler.

        Args:
            load_balancer: Balancer to drive
            interval_seconds: Delay between cycles, shorter than ownership expiration
        """
        if interval_seconds <= 0:
            raise BalancerConfigurationError(
                f"interval_seconds must be positive, got {interval_seconds}"
            )
        # Owned partitions must be renewed before their records go stale.
        if interval_seconds >= load_balancer.expiration_seconds:
            raise BalancerConfigurationError(
                f"interval_seconds ({interval_seconds}) must be shorter than "
                f"expiration_seconds ({load_balancer.expiration_seconds})"
            )

        self.load_balancer = load_balancer
        self.interval_seconds = interval_seconds

        self._cycle_lock = threading.Lock()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._cycles = 0

        logger.info(
            "Initialized balancer scheduler",
            instance_id=load_balancer.instance_id,
            interval_seconds=interval_seconds,
        )

    @classmethod
    def from_settings(
        cls,
        load_balancer: LoadBalancer,
        settings: BalancerSettings,
    ) -> "BalancerScheduler":
        """
        Create a scheduler using the configured cycle interval.

        Args:
            load_balancer: Balancer to drive
            settings: Balancer settings

        Returns:
            Scheduler
        """
        return cls(load_balancer, interval_seconds=settings.interval_seconds)

    @property
    def cycles(self) -> int:
        """Number of completed cycles, failed ones included."""
        return self._cycles

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Optional[PartitionOwnership]:
        """
        Run one renew + balance cycle on the calling thread.

        Blocks while another cycle of this scheduler is in progress.

        Returns:
            Ownership claimed by the balance step, or None
        """
        with self._cycle_lock:
            try:
                self.load_balancer.renew_ownership()
                return self.load_balancer.balance()
            finally:
                self._cycles += 1

    def start(self) -> None:
        """Start the balancing thread."""
        if self.is_running:
            return

        # Each thread gets its own stop event; a thread still finishing a
        # cycle after a timed-out stop() keeps seeing its event set.
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._balance_loop,
            args=(self._stop_event,),
            name=f"load-balancer-{self.load_balancer.instance_id}",
            daemon=True,
        )
        self._thread.start()

        logger.info("Started balancer thread", instance_id=self.load_balancer.instance_id)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the balancing thread."""
        if self._thread is None:
            return

        self._stop_event.set()
        self._thread.join(timeout=timeout)

        if self._thread.is_alive():
            logger.warning(
                "Balancer thread still finishing its cycle",
                instance_id=self.load_balancer.instance_id,
                timeout=timeout,
            )

        self._thread = None
        self._stop_event = None

        logger.info("Stopped balancer thread", instance_id=self.load_balancer.instance_id)

    def _balance_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                claimed = self.run_once()
                if claimed is not None:
                    logger.debug(
                        "Balance cycle claimed partition",
                        instance_id=self.load_balancer.instance_id,
                        partition_id=claimed.partition_id,
                    )
            except Exception as e:
                logger.error(
                    "Balance cycle error",
                    instance_id=self.load_balancer.instance_id,
                    error=str(e),
                )

            stop_event.wait(self.interval_seconds)

    def __enter__(self) -> "BalancerScheduler":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
