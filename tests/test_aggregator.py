"""Tests for the aggregation loop: drain, expiry and change detection."""

import io
import json
import socket
from ipaddress import ip_address

import pytest
from zeroconf import DNSAddress, DNSPointer, DNSText
from zeroconf.const import _CLASS_IN, _TYPE_A, _TYPE_PTR, _TYPE_TXT

from promsd.aggregator import Aggregator, run_aggregator
from promsd.config import DEFAULT_SERVICE_TYPE
from promsd.discovery import DiscoveryProducer
from promsd.publisher import SnapshotPublisher
from promsd.registry import ServiceRecord


def _record(addr="10.0.0.5", port=9100, name="node1"):
    return ServiceRecord(address=ip_address(addr), port=port, name=name)


class RecordingPublisher:
    def __init__(self):
        self.snapshots = []

    def publish(self, groups):
        self.snapshots.append(sorted((g["targets"][0], g["labels"]["name"]) for g in groups))
        return True


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def aggregator(channel, publisher, clock):
    return Aggregator(channel, publisher, timeout=60, clock=clock)


# ── Drain ─────────────────────────────────────────────────────────


class TestDrain:
    def test_drains_everything_in_order(self, aggregator, channel):
        for i in range(3):
            channel.put(_record(addr=f"10.0.0.{i}"))
        drained = aggregator.drain()
        assert [str(r.address) for r in drained] == ["10.0.0.0", "10.0.0.1", "10.0.0.2"]
        assert channel.empty()

    def test_empty_channel_returns_immediately(self, aggregator):
        assert aggregator.drain() == []


# ── Cycle ─────────────────────────────────────────────────────────


class TestCycle:
    def test_no_observations_never_publishes(self, aggregator, publisher):
        for _ in range(5):
            assert aggregator.cycle() is False
        assert publisher.snapshots == []

    def test_single_service_published_then_expired(self, channel, clock):
        stream = io.StringIO()
        agg = Aggregator(channel, SnapshotPublisher(stream=stream), timeout=60, clock=clock)

        channel.put(_record())
        assert agg.cycle() is True

        for _ in range(3):
            clock.advance(15)
            assert agg.cycle() is False

        clock.advance(15)
        assert agg.cycle() is True
        assert len(agg.registry) == 0

        lines = stream.getvalue().splitlines()
        assert [json.loads(line) for line in lines] == [
            [{"targets": ["10.0.0.5:9100"], "labels": {"name": "node1"}}],
            [],
        ]

    def test_batch_in_one_drain_publishes_once(self, aggregator, channel, publisher):
        channel.put(_record(addr="10.0.0.1", name="a"))
        channel.put(_record(addr="10.0.0.2", name="b"))
        aggregator.cycle()
        assert publisher.snapshots == [[("10.0.0.1:9100", "a"), ("10.0.0.2:9100", "b")]]

    def test_refresh_prevents_expiry(self, aggregator, channel, clock):
        channel.put(_record())
        aggregator.cycle()

        clock.advance(59)
        channel.put(_record())
        aggregator.cycle()

        clock.advance(2)
        aggregator.cycle()
        assert ip_address("10.0.0.5") in aggregator.registry

    def test_refresh_without_size_change_does_not_publish(self, aggregator, channel, publisher):
        channel.put(_record())
        aggregator.cycle()
        channel.put(_record())
        assert aggregator.cycle() is False
        assert len(publisher.snapshots) == 1

    def test_in_place_replacement_is_not_published(self, aggregator, channel, publisher, capsys):
        channel.put(_record(name="node1"))
        aggregator.cycle()
        channel.put(_record(name="renamed", port=9200))
        assert aggregator.cycle() is False
        assert aggregator.registry.get(ip_address("10.0.0.5")).name == "renamed"
        assert len(publisher.snapshots) == 1
        assert "node1@10.0.0.5:9100 -> renamed@10.0.0.5:9200" in capsys.readouterr().err

    def test_add_and_expire_in_same_cycle(self, aggregator, channel, clock, publisher):
        channel.put(_record(addr="10.0.0.1", name="old"))
        aggregator.cycle()

        clock.advance(60)
        channel.put(_record(addr="10.0.0.2", name="new"))
        assert aggregator.cycle() is True
        assert publisher.snapshots[-1] == [("10.0.0.2:9100", "new")]

    def test_decode_miss_changes_nothing(self, aggregator, channel, publisher):
        instance = f"node1.{DEFAULT_SERVICE_TYPE}"
        producer = DiscoveryProducer(DEFAULT_SERVICE_TYPE, channel)
        producer.handle_response([
            DNSPointer(DEFAULT_SERVICE_TYPE, _TYPE_PTR, _CLASS_IN, 4500, instance),
            DNSText(instance, _TYPE_TXT, _CLASS_IN, 4500, b"\x0aname=node1"),
            DNSAddress("node1.local.", _TYPE_A, _CLASS_IN, 120, socket.inet_aton("10.0.0.5")),
        ])

        assert channel.empty()
        assert aggregator.cycle() is False
        assert len(aggregator.registry) == 0
        assert publisher.snapshots == []

    def test_publish_failure_does_not_break_cycle(self, channel, clock, tmp_path):
        publisher = SnapshotPublisher(tmp_path / "missing" / "targets.json")
        agg = Aggregator(channel, publisher, timeout=60, clock=clock)
        channel.put(_record())
        assert agg.cycle() is True
        assert publisher.failures == 1
        assert len(agg.registry) == 1

    def test_membership_changes_are_logged(self, aggregator, channel, clock, capsys):
        channel.put(_record())
        aggregator.cycle()
        clock.advance(60)
        aggregator.cycle()
        err = capsys.readouterr().err
        assert "[registry] 10.0.0.5: init -> node1@10.0.0.5:9100" in err
        assert "[registry] 10.0.0.5: node1@10.0.0.5:9100 -> expired" in err


# ── Loop ──────────────────────────────────────────────────────────


class TestRunAggregator:
    def test_sleeps_between_cycles(self, aggregator, channel):
        sleeps = []

        def fake_sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) == 3:
                raise KeyboardInterrupt

        channel.put(_record())
        with pytest.raises(KeyboardInterrupt):
            run_aggregator(aggregator, interval=15, sleep=fake_sleep)
        assert sleeps == [15, 15, 15]
        assert len(aggregator.registry) == 1
