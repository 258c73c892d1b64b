"""Tests for partition ownership load balancing."""

import random
from collections import Counter

import pytest

from eventprocessor.balancer.cache import OwnedPartitionCache
from eventprocessor.balancer.load_balancer import LoadBalancer
from eventprocessor.exceptions import BalancerConfigurationError, PartitionManagerError
from eventprocessor.ownership.models import (
    Checkpoint,
    EventPosition,
    OwnershipClaimRequest,
    OwnershipClaimResponse,
)
from eventprocessor.ownership.store import InMemoryPartitionManager, PartitionManager

HUB = "event-hub-name"
GROUP = "consumer-group"
PARTITIONS = {"0", "1", "2", "3", "4", "5"}


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingPartitionManager(PartitionManager):
    """Partition manager recording claim requests, optionally failing them."""

    def __init__(self, delegate: PartitionManager):
        self.delegate = delegate
        self.claims = []
        self.reject_claims = False
        self.claim_error = None
        self.list_error = None

    def list_ownership(self, event_hub_name, consumer_group_name):
        if self.list_error:
            raise self.list_error
        return self.delegate.list_ownership(event_hub_name, consumer_group_name)

    def claim_ownership(self, request):
        self.claims.append(request)
        if self.claim_error:
            raise self.claim_error
        if self.reject_claims:
            return OwnershipClaimResponse.rejected()
        return self.delegate.claim_ownership(request)

    def update_checkpoint(self, checkpoint):
        return self.delegate.update_checkpoint(checkpoint)


class SnapshotPartitionManager(PartitionManager):
    """Serves a fixed ownership snapshot, as seen by a slow reader."""

    def __init__(self, delegate: PartitionManager):
        self.delegate = delegate
        self.snapshot = delegate.list_ownership(HUB, GROUP)

    def list_ownership(self, event_hub_name, consumer_group_name):
        return list(self.snapshot)

    def claim_ownership(self, request):
        return self.delegate.claim_ownership(request)

    def update_checkpoint(self, checkpoint):
        return self.delegate.update_checkpoint(checkpoint)


def own(store, owner_id, *partition_ids):
    """Claim partitions directly in the store."""
    for partition_id in partition_ids:
        store.claim_ownership(OwnershipClaimRequest(HUB, GROUP, partition_id, owner_id))


def owners(store):
    """Map partition id to owner id."""
    return {o.partition_id: o.owner_id for o in store.list_ownership(HUB, GROUP)}


class TestLoadBalancer:
    """Test LoadBalancer decisions."""

    @pytest.fixture
    def clock(self):
        """Create fake clock."""
        return FakeClock()

    @pytest.fixture
    def store(self, clock):
        """Create in-memory partition manager."""
        return InMemoryPartitionManager(clock=clock)

    @pytest.fixture
    def recorder(self, store):
        """Wrap store to record claims."""
        return RecordingPartitionManager(store)

    def create_balancer(self, instance_id, manager, partitions=PARTITIONS, seed=7):
        return LoadBalancer(
            instance_id=instance_id,
            event_hub_name=HUB,
            consumer_group_name=GROUP,
            partition_ids=partitions,
            partition_manager=manager,
            rng=random.Random(seed),
        )

    def test_empty_partition_set_rejected(self, store):
        """Test balancing zero partitions fails fast."""
        with pytest.raises(BalancerConfigurationError):
            self.create_balancer("a", store, partitions=set())

    def test_empty_instance_id_rejected(self, store):
        """Test an instance needs an identity."""
        with pytest.raises(ValueError):
            self.create_balancer("", store)

    def test_bootstrap_claims_one_partition(self, recorder):
        """Test first cycle of a new consumer group claims exactly one partition."""
        balancer = self.create_balancer("a", recorder)

        claimed = balancer.balance()

        assert len(recorder.claims) == 1
        assert recorder.claims[0].sequence_number == EventPosition.EARLIEST
        assert recorder.claims[0].version is None
        assert claimed is not None
        assert claimed.partition_id in PARTITIONS
        assert claimed.owner_id == "a"
        assert set(balancer.owned_partitions) == {claimed.partition_id}
        assert owners(recorder.delegate) == {claimed.partition_id: "a"}

    def test_bootstrap_seeded_choice_is_deterministic(self, clock):
        """Test the injected random source drives partition choice."""
        first = self.create_balancer("a", InMemoryPartitionManager(clock=clock), seed=3)
        second = self.create_balancer("a", InMemoryPartitionManager(clock=clock), seed=3)

        assert first.balance().partition_id == second.balance().partition_id

    def test_no_claim_when_balanced(self, store, recorder):
        """Test a balanced group performs zero claims."""
        own(store, "a", "0", "1")
        own(store, "b", "2", "3")
        own(store, "c", "4", "5")

        for instance_id in ("a", "b", "c"):
            assert self.create_balancer(instance_id, recorder).balance() is None

        assert recorder.claims == []

    def test_no_claim_when_balanced_with_extra_slots(self, store, recorder):
        """Test max share holders within the allowed slots count as balanced."""
        partitions = {str(i) for i in range(7)}
        own(store, "a", "0", "1", "2")
        own(store, "b", "3", "4")
        own(store, "c", "5", "6")

        assert self.create_balancer("b", recorder, partitions=partitions).balance() is None
        assert recorder.claims == []

    def test_no_claim_when_at_max_share(self, store, recorder):
        """Test an instance at max share does not claim even if unbalanced."""
        partitions = {"0", "1", "2", "3"}
        own(store, "a", "0", "1", "2")
        own(store, "b", "3")

        assert self.create_balancer("a", recorder, partitions=partitions).balance() is None
        assert recorder.claims == []

    def test_claims_unowned_partition(self, store, recorder):
        """Test an instance under its share claims a partition without owner."""
        partitions = {"0", "1", "2", "3"}
        own(store, "a", "0")

        claimed = self.create_balancer("b", recorder, partitions=partitions).balance()

        assert claimed.partition_id in {"1", "2", "3"}
        assert recorder.claims[0].sequence_number == EventPosition.EARLIEST
        assert owners(store)[claimed.partition_id] == "b"
        assert owners(store)["0"] == "a"

    def test_no_unowned_claim_above_fair_share(self, store, recorder):
        """Test unowned partitions are left alone once fair share is reached."""
        partitions = {str(i) for i in range(9)}
        own(store, "a", "0", "1", "2")
        own(store, "b", "3", "4")
        own(store, "c", "5", "6")
        own(store, "d", "7")

        # min 2, max 3, the single max share slot is taken; d is the one short
        assert self.create_balancer("c", recorder, partitions=partitions).balance() is None
        assert recorder.claims == []

        claimed = self.create_balancer("d", recorder, partitions=partitions).balance()
        assert claimed.partition_id == "8"

    def test_stale_ownership_is_claimable(self, store, recorder, clock):
        """Test a record past expiration is treated as unowned."""
        own(store, "x", "0")
        clock.advance(31)

        claimed = self.create_balancer("a", recorder, partitions={"0"}).balance()

        assert claimed is not None
        assert owners(store) == {"0": "a"}

    def test_fresh_ownership_is_not_claimable(self, store, recorder, clock):
        """Test a record younger than expiration keeps its owner."""
        own(store, "x", "0")
        clock.advance(29)

        # x holds max share (1) so nothing can be taken over
        assert self.create_balancer("a", recorder, partitions={"0"}).balance() is None
        assert owners(store) == {"0": "x"}

    def test_resumes_from_previous_sequence_number(self, clock):
        """Test claiming a previously owned partition resumes from its checkpoint."""
        store = InMemoryPartitionManager(enforce_versions=True, clock=clock)
        recorder = RecordingPartitionManager(store)
        own(store, "x", "1")
        version = store.update_checkpoint(Checkpoint(HUB, GROUP, "1", 500))
        clock.advance(60)

        claimed = self.create_balancer("a", recorder, partitions={"1"}).balance()

        assert recorder.claims[0].sequence_number == 500
        assert recorder.claims[0].version == version
        assert claimed.sequence_number == 500
        assert store.list_ownership(HUB, GROUP)[0].sequence_number == 500

    def test_takes_over_from_overloaded_instance(self, store, recorder):
        """Test stealing when every partition is actively owned."""
        own(store, "a", *sorted(PARTITIONS))
        for partition_id in PARTITIONS:
            store.update_checkpoint(Checkpoint(HUB, GROUP, partition_id, 100 + int(partition_id)))

        claimed = self.create_balancer("b", recorder).balance()

        assert claimed is not None
        assert claimed.owner_id == "b"
        assert recorder.claims[0].sequence_number == 100 + int(claimed.partition_id)
        assert Counter(owners(store).values()) == {"a": 5, "b": 1}

    def test_takeover_prefers_instance_above_max_share(self, store, recorder):
        """Test instances above max share are robbed before those at max share."""
        partitions = {str(i) for i in range(7)}
        own(store, "a", "0", "1", "2", "3")
        own(store, "b", "4", "5", "6")

        for seed in range(10):
            balancer = self.create_balancer("c", recorder, partitions=partitions, seed=seed)
            recorder.reject_claims = True
            balancer.balance()

        assert {claim.partition_id for claim in recorder.claims} <= {"0", "1", "2", "3"}

    def test_takeover_falls_back_to_max_share_holder(self, store, recorder):
        """Test an instance at max share is robbed when none is above it."""
        own(store, "a", "0", "1")
        own(store, "b", "2", "3")
        own(store, "c", "4", "5")

        claimed = self.create_balancer("d", recorder).balance()

        assert claimed is not None
        assert Counter(owners(store).values())["d"] == 1

    def test_rejected_claim_not_cached(self, recorder):
        """Test a rejected claim leaves the cache untouched."""
        recorder.reject_claims = True
        balancer = self.create_balancer("a", recorder)

        assert balancer.balance() is None
        assert len(recorder.claims) == 1
        assert balancer.owned_partitions == {}

    def test_failing_claim_not_cached(self, recorder):
        """Test a claim raising is treated as not acquired."""
        recorder.claim_error = PartitionManagerError("store unavailable")
        balancer = self.create_balancer("a", recorder)

        assert balancer.balance() is None
        assert balancer.owned_partitions == {}

    def test_list_failure_propagates(self, recorder):
        """Test a listing failure aborts the cycle."""
        recorder.list_error = PartitionManagerError("store unavailable")
        balancer = self.create_balancer("a", recorder)

        with pytest.raises(PartitionManagerError):
            balancer.balance()

        assert recorder.claims == []

    def test_unknown_partitions_ignored(self, store, recorder):
        """Test records of partitions outside the stream do not count."""
        own(store, "x", "99")

        claimed = self.create_balancer("a", recorder, partitions={"0"}).balance()

        assert claimed.partition_id == "0"

    def test_shared_cache(self, store):
        """Test an injected cache receives claimed partitions."""
        cache = OwnedPartitionCache()
        balancer = LoadBalancer("a", HUB, GROUP, PARTITIONS, store, owned_partitions=cache)

        claimed = balancer.balance()

        assert claimed.partition_id in cache

    def test_custom_expiration(self, store, recorder, clock):
        """Test expiration threshold is configurable."""
        own(store, "x", "0")
        clock.advance(6)

        balancer = LoadBalancer(
            "a", HUB, GROUP, {"0"}, recorder,
            expiration_seconds=5,
            rng=random.Random(1),
        )

        assert balancer.balance() is not None


class TestLoadBalancerConvergence:
    """Test a group of balancers sharing a store."""

    def test_seven_instances_six_partitions(self):
        """Test 7 instances over 6 partitions end with one partition each."""
        store = InMemoryPartitionManager()
        balancers = {
            instance_id: LoadBalancer(
                instance_id, HUB, GROUP, PARTITIONS, store,
                rng=random.Random(seed),
            )
            for seed, instance_id in enumerate("abcdefg")
        }

        for instance_id in "abcdefg":
            for _ in range(6):
                balancers[instance_id].balance()

        final = owners(store)
        counts = Counter(final.values())

        assert set(final) == PARTITIONS
        assert len(counts) == 6
        assert all(count == 1 for count in counts.values())
        assert "g" not in counts

    def test_first_instance_takes_everything(self):
        """Test a lone instance ends up owning every partition."""
        store = InMemoryPartitionManager()
        balancer = LoadBalancer("a", HUB, GROUP, PARTITIONS, store, rng=random.Random(0))

        for _ in range(6):
            balancer.balance()

        assert set(balancer.owned_partitions) == PARTITIONS
        assert set(owners(store).values()) == {"a"}
        assert balancer.balance() is None

    def test_departed_instance_partitions_redistributed(self):
        """Test partitions of an instance that stopped renewing are picked up."""
        clock = FakeClock()
        store = InMemoryPartitionManager(clock=clock)
        a = LoadBalancer("a", HUB, GROUP, PARTITIONS, store, rng=random.Random(1))
        b = LoadBalancer("b", HUB, GROUP, PARTITIONS, store, rng=random.Random(2))

        for _ in range(6):
            a.balance()
        for _ in range(6):
            b.balance()
        assert Counter(owners(store).values()) == {"a": 3, "b": 3}

        # a dies; b keeps renewing
        for _ in range(8):
            clock.advance(10)
            b.renew_ownership()
            b.balance()

        assert set(owners(store).values()) == {"b"}
        assert set(b.owned_partitions) == PARTITIONS


class TestConcurrentClaims:
    """Test claim races under a version-enforcing store."""

    def test_racing_instances_single_winner(self):
        """Test two instances acting on the same snapshot cannot both win."""
        clock = FakeClock()
        store = InMemoryPartitionManager(enforce_versions=True, clock=clock)
        own(store, "x", "0")
        clock.advance(31)

        a = LoadBalancer("a", HUB, GROUP, {"0"}, SnapshotPartitionManager(store), rng=random.Random(1))
        b = LoadBalancer("b", HUB, GROUP, {"0"}, SnapshotPartitionManager(store), rng=random.Random(2))

        results = [a.balance(), b.balance()]

        assert sum(1 for r in results if r is not None) == 1
        assert owners(store) == {"0": "a"}
        assert b.owned_partitions == {}


class TestRenewOwnership:
    """Test ownership renewal."""

    @pytest.fixture
    def clock(self):
        """Create fake clock."""
        return FakeClock()

    def test_renew_nothing_owned(self, clock):
        """Test renewal without owned partitions makes no store calls."""
        recorder = RecordingPartitionManager(InMemoryPartitionManager(clock=clock))
        recorder.list_error = PartitionManagerError("should not be called")
        balancer = LoadBalancer("a", HUB, GROUP, PARTITIONS, recorder)

        assert balancer.renew_ownership() == set()

    def test_renew_refreshes_ownership(self, clock):
        """Test renewal keeps records from going stale."""
        store = InMemoryPartitionManager(enforce_versions=True, clock=clock)
        balancer = LoadBalancer("a", HUB, GROUP, {"0"}, store)
        claimed = balancer.balance()

        clock.advance(25)
        store.update_checkpoint(Checkpoint(HUB, GROUP, "0", 42))
        renewed = balancer.renew_ownership()
        clock.advance(25)

        record = store.list_ownership(HUB, GROUP)[0]
        assert renewed == {"0"}
        assert not record.is_expired(30)
        assert record.sequence_number == 42
        assert balancer.owned_partitions["0"].version != claimed.version
        assert balancer.owned_partitions["0"].version == record.version

    def test_renew_drops_lost_partitions(self, clock):
        """Test partitions taken over by another instance leave the cache."""
        store = InMemoryPartitionManager(clock=clock)
        balancer = LoadBalancer("a", HUB, GROUP, {"0"}, store)
        balancer.balance()
        own(store, "b", "0")

        assert balancer.renew_ownership() == set()
        assert balancer.owned_partitions == {}
        assert owners(store) == {"0": "b"}

    def test_renew_drops_rejected_partitions(self, clock):
        """Test a failed renewal drops the partition."""
        recorder = RecordingPartitionManager(InMemoryPartitionManager(clock=clock))
        balancer = LoadBalancer("a", HUB, GROUP, {"0"}, recorder)
        balancer.balance()

        recorder.reject_claims = True

        assert balancer.renew_ownership() == set()
        assert balancer.owned_partitions == {}
