#!/usr/bin/env python3
"""
In-process Service Registry with Liveness Tracking

This module provides:
- ServiceRecord: one decoded announcement (address, port, name)
- RegisteredService: a registry entry stamped with its last observation
- ServiceRegistry: an address-keyed registry owned by the aggregation loop
"""

from dataclasses import dataclass
from ipaddress import IPv4Address, IPv6Address
from typing import Dict, List, Optional, Any, Union

IPAddress = Union[IPv4Address, IPv6Address]


@dataclass(frozen=True)
class ServiceRecord:
    """Decoded announcement, before it enters the registry"""
    address: IPAddress
    port: int
    name: str


@dataclass
class RegisteredService:
    """Service believed to be live"""
    address: IPAddress
    port: int
    name: str
    last_seen: float

    @classmethod
    def from_record(cls, record: ServiceRecord, now: float) -> 'RegisteredService':
        return cls(
            address=record.address,
            port=record.port,
            name=record.name,
            last_seen=now,
        )

    @property
    def target(self) -> str:
        """``address:port`` as written into the target file."""
        return f"{self.address}:{self.port}"

    def to_target_group(self) -> Dict[str, Any]:
        """Convert to a file-based discovery target group."""
        return {
            "targets": [self.target],
            "labels": {"name": self.name},
        }


# ---------------------------------------------------------------------------
# Registry (lives inside the aggregation loop, never shared across threads)
# ---------------------------------------------------------------------------

class ServiceRegistry:
    """Dict-backed registry keyed by network address.

    Only the aggregation loop touches it, so there is no lock.
    """

    def __init__(self):
        self._services: Dict[IPAddress, RegisteredService] = {}

    def __len__(self) -> int:
        return len(self._services)

    def __contains__(self, address: IPAddress) -> bool:
        return address in self._services

    def upsert(self, record: ServiceRecord, now: float) -> Optional[RegisteredService]:
        """Insert or replace the entry for ``record.address``.

        Returns the entry that was replaced, if any.
        """
        previous = self._services.get(record.address)
        self._services[record.address] = RegisteredService.from_record(record, now)
        return previous

    def expire(self, now: float, timeout: float) -> List[RegisteredService]:
        """Drop every entry not seen for ``timeout`` seconds and return them."""
        expired = [
            s for s in self._services.values()
            if (now - s.last_seen) >= timeout
        ]
        for s in expired:
            del self._services[s.address]
        return expired

    def get(self, address: IPAddress) -> Optional[RegisteredService]:
        return self._services.get(address)

    def list_services(self) -> List[RegisteredService]:
        return list(self._services.values())

    def snapshot(self) -> List[Dict[str, Any]]:
        """Project the registry into target groups, computed fresh each call."""
        return [s.to_target_group() for s in self._services.values()]
