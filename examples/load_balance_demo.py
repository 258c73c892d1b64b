#!/usr/bin/env python3
"""
Simulate a consumer group balancing partitions through a shared store.

Every instance runs its own LoadBalancer against one in-memory partition
manager; the demo runs balance cycles round by round and prints who owns what.
"""

import argparse
import random
from collections import Counter

from eventprocessor import InMemoryPartitionManager, LoadBalancer
from eventprocessor.utils.config import BalancerSettings, get_config
from eventprocessor.utils.logging import configure_logging


def main():
    parser = argparse.ArgumentParser(description='Partition load balancing demo')
    parser.add_argument('--partitions', type=int, default=6, help='Number of partitions')
    parser.add_argument('--instances', type=int, default=7, help='Number of instances')
    parser.add_argument('--rounds', type=int, default=6, help='Balance cycles per instance')
    parser.add_argument('--seed', type=int, default=None, help='Random seed')
    parser.add_argument('--config', default=None, help='YAML configuration file')
    parser.add_argument('--log-format', choices=['json', 'console'], default=None,
                        help='Log format, overrides logging.format from config')
    args = parser.parse_args()

    config = get_config(args.config)
    configure_logging(
        log_level=config.get('logging.level'),
        log_format=args.log_format or config.get('logging.format'),
    )
    settings = BalancerSettings.from_config(config)

    rng = random.Random(args.seed)
    partition_ids = {str(i) for i in range(args.partitions)}
    store = InMemoryPartitionManager()

    balancers = [
        LoadBalancer(
            instance_id=f"{settings.instance_id}-{n}",
            event_hub_name='demo-hub',
            consumer_group_name='demo-group',
            partition_ids=partition_ids,
            partition_manager=store,
            expiration_seconds=settings.expiration_seconds,
            rng=random.Random(rng.random()),
        )
        for n in range(args.instances)
    ]

    print(f"Balancing {args.partitions} partitions across {args.instances} instances\n")

    for balancer in balancers:
        for _ in range(args.rounds):
            balancer.balance()

    ownership = {o.partition_id: o.owner_id for o in store.list_ownership('demo-hub', 'demo-group')}
    counts = Counter(ownership.values())

    for partition_id in sorted(ownership, key=int):
        print(f"  partition {partition_id}: {ownership[partition_id]}")

    print()
    for balancer in balancers:
        print(f"  {balancer.instance_id}: {counts.get(balancer.instance_id, 0)} partition(s)")


if __name__ == '__main__':
    main()
