"""CLI entry point for prometheus-mdns-sd."""

import argparse
import queue
import sys

from .aggregator import Aggregator, run_aggregator
from .config import ConfigError, SdConfig, load_config, merge_cli_args, validate_config
from .discovery import DiscoveryProducer
from .publisher import SnapshotPublisher


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prometheus-mdns-sd",
        description="Publish mDNS-announced services as a Prometheus file_sd target list",
    )
    parser.add_argument(
        "output", nargs="?", default=None,
        help="Target file to write atomically (default: print each snapshot to stdout)",
    )
    parser.add_argument("--config", type=str, help="Path to YAML config file")
    parser.add_argument(
        "--service-type", type=str, dest="service_type",
        help="mDNS service type to browse for (default: _prometheus-http._tcp.local.)",
    )
    parser.add_argument(
        "--interval", type=float,
        help="Seconds between discovery queries and registry updates (default: 15)",
    )
    parser.add_argument(
        "--timeout", type=float,
        help="Seconds without an announcement before a service is dropped (default: 60)",
    )
    return parser


def _build_config(args) -> SdConfig:
    """Build an SdConfig from a config file + CLI overrides."""
    if args.config:
        config = load_config(args.config)
    else:
        config = SdConfig()
    merge_cli_args(config, args)
    validate_config(config)
    return config


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)

    try:
        config = _build_config(args)
    except (ConfigError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    channel: queue.Queue = queue.Queue()
    producer = DiscoveryProducer(config.service_type, channel, interval=config.interval)
    try:
        producer.start()
    except OSError as e:
        print(f"Error: cannot start mDNS discovery: {e}", file=sys.stderr)
        sys.exit(1)

    publisher = SnapshotPublisher(config.output)
    aggregator = Aggregator(channel, publisher, timeout=config.timeout)

    try:
        run_aggregator(aggregator, interval=config.interval)
    except KeyboardInterrupt:
        pass
    finally:
        producer.stop()
