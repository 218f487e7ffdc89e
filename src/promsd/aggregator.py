"""Aggregation loop: merge discovered services, expire stale ones, publish."""

import queue
import sys
import time
from typing import Callable, List

from .publisher import SnapshotPublisher
from .registry import RegisteredService, ServiceRecord, ServiceRegistry


def _describe(service: RegisteredService) -> str:
    return f"{service.name}@{service.target}"


class Aggregator:
    """Owns the registry and decides when to publish a new snapshot.

    Change detection compares registry sizes before and after each step,
    so replacing an entry in place (same address, new name or port) does
    not trigger a publication.
    """

    def __init__(
        self,
        channel: "queue.Queue[ServiceRecord]",
        publisher: SnapshotPublisher,
        timeout: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = ServiceRegistry()
        self.timeout = timeout
        self._channel = channel
        self._publisher = publisher
        self._clock = clock

    def drain(self) -> List[ServiceRecord]:
        """Take everything queued right now without waiting for more."""
        drained = []
        while True:
            try:
                drained.append(self._channel.get_nowait())
            except queue.Empty:
                return drained

    def cycle(self) -> bool:
        """Run one aggregation step. Returns True if a snapshot was published."""
        start_count = len(self.registry)

        for record in self.drain():
            previous = self.registry.upsert(record, self._clock())
            current = self.registry.get(record.address)
            if previous is None:
                print(f"[registry] {record.address}: init -> {_describe(current)}", file=sys.stderr)
            elif (previous.name, previous.port) != (current.name, current.port):
                print(
                    f"[registry] {record.address}: {_describe(previous)} -> {_describe(current)}",
                    file=sys.stderr,
                )

        added_count = len(self.registry)

        for service in self.registry.expire(self._clock(), self.timeout):
            print(f"[registry] {service.address}: {_describe(service)} -> expired", file=sys.stderr)

        removed_count = len(self.registry)

        if start_count != added_count or added_count != removed_count:
            self._publisher.publish(self.registry.snapshot())
            return True
        return False


def run_aggregator(
    aggregator: Aggregator,
    interval: float = 15,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Run aggregation cycles every *interval* seconds, forever."""
    while True:
        aggregator.cycle()
        sleep(interval)
