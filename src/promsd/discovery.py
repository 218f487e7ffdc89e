"""mDNS discovery: query for a service type and decode the responses.

The producer owns a Zeroconf instance. A daemon thread sends a PTR query
for the service type every *interval* seconds, and a record listener
receives the records of every response zeroconf reads off the wire. Each
batch goes through :func:`decode_response`; hits are put on the channel
the aggregation loop drains.
"""

import queue
import sys
import threading
from ipaddress import ip_address
from typing import Callable, Iterable, List, Optional

from zeroconf import (
    DNSAddress,
    DNSOutgoing,
    DNSQuestion,
    DNSRecord,
    DNSService,
    DNSText,
    RecordUpdate,
    RecordUpdateListener,
    Zeroconf,
)
from zeroconf.const import _CLASS_IN, _FLAGS_QR_QUERY, _TYPE_PTR

from .registry import IPAddress, ServiceRecord


def normalize_service_type(name: str) -> str:
    """Return *name* fully qualified, with the trailing dot zeroconf uses."""
    return name if name.endswith(".") else f"{name}."


def parse_txt(payload: bytes) -> List[str]:
    """Split a TXT rdata payload into its length-prefixed strings."""
    strings = []
    offset = 0
    while offset < len(payload):
        length = payload[offset]
        offset += 1
        chunk = payload[offset:offset + length]
        if len(chunk) < length:
            break  # truncated
        strings.append(chunk.decode("utf-8", errors="replace"))
        offset += length
    return strings


def _to_address(record: DNSRecord) -> Optional[IPAddress]:
    if isinstance(record, DNSAddress):
        try:
            return ip_address(record.address)
        except ValueError:
            return None
    return None


def _to_port(record: DNSRecord, service_type: str) -> Optional[int]:
    if isinstance(record, DNSService) and service_type in record.name:
        return record.port
    return None


def _to_name(record: DNSRecord) -> Optional[str]:
    if isinstance(record, DNSText):
        for pair in parse_txt(record.text):
            parts = pair.split("=")
            if len(parts) >= 2 and parts[0] == "name":
                return parts[1]
    return None


def _first(values: Iterable):
    return next((v for v in values if v is not None), None)


def decode_response(records: List[DNSRecord], service_type: str) -> Optional[ServiceRecord]:
    """Extract a service from the records of one mDNS response.

    Returns ``None`` unless the response names *service_type* and carries
    an address, a matching SRV port and a ``name=`` TXT entry.
    """
    if not any(record.name == service_type for record in records):
        return None

    address = _first(_to_address(r) for r in records)
    port = _first(_to_port(r, service_type) for r in records)
    name = _first(_to_name(r) for r in records)

    if address is None or port is None or name is None:
        return None
    return ServiceRecord(address=address, port=port, name=name)


class _ResponseListener(RecordUpdateListener):
    """Hands each response's record batch to a callback."""

    def __init__(self, callback: Callable[[List[DNSRecord]], None]) -> None:
        super().__init__()
        self._callback = callback

    def async_update_records(self, zc: Zeroconf, now: float, records: List[RecordUpdate]) -> None:
        self._callback([update.new for update in records])

    def async_update_records_complete(self) -> None:
        pass


class DiscoveryProducer:
    """Background mDNS query loop feeding decoded services into *channel*."""

    def __init__(
        self,
        service_type: str,
        channel: "queue.Queue[ServiceRecord]",
        interval: float = 15,
        zeroconf_factory: Callable[[], Zeroconf] = Zeroconf,
    ):
        self.service_type = normalize_service_type(service_type)
        self.interval = interval
        self._channel = channel
        self._zeroconf_factory = zeroconf_factory
        self._zeroconf: Optional[Zeroconf] = None
        self._listener: Optional[_ResponseListener] = None
        self._thread: Optional[threading.Thread] = None
        self._stopped = threading.Event()

    def _question(self) -> DNSQuestion:
        return DNSQuestion(self.service_type, _TYPE_PTR, _CLASS_IN)

    def start(self) -> None:
        """Bind the mDNS socket and start querying.

        Socket errors from creating the Zeroconf instance propagate.
        """
        self._zeroconf = self._zeroconf_factory()
        self._listener = _ResponseListener(self.handle_response)
        self._zeroconf.add_listener(self._listener, self._question())

        self._thread = threading.Thread(
            target=self._query_loop, name="mdns-query", daemon=True,
        )
        self._thread.start()
        print(
            f"[discovery] browsing for {self.service_type} every {self.interval}s",
            file=sys.stderr,
        )

    def stop(self) -> None:
        self._stopped.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        if self._zeroconf is not None:
            self._zeroconf.close()
            self._zeroconf = None

    def handle_response(self, records: List[DNSRecord]) -> None:
        """Decode one response and forward a hit to the aggregator."""
        if self._stopped.is_set():
            return  # consumer is gone
        service = decode_response(records, self.service_type)
        if service is not None:
            self._channel.put(service)

    def query(self) -> None:
        out = DNSOutgoing(_FLAGS_QR_QUERY)
        out.add_question(self._question())
        self._zeroconf.send(out)

    def _query_loop(self) -> None:
        while not self._stopped.is_set():
            try:
                self.query()
            except OSError as e:
                print(f"[discovery] query failed: {e}", file=sys.stderr)
            self._stopped.wait(self.interval)
