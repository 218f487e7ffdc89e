"""
In-process Service Registry

This package provides:
1. ServiceRecord — a decoded announcement
2. RegisteredService — a registry entry with its last-seen timestamp
3. ServiceRegistry — dict-backed registry owned by the aggregation loop
"""

from .service_registry import (
    IPAddress,
    RegisteredService,
    ServiceRecord,
    ServiceRegistry,
)

__all__ = [
    'IPAddress',
    'RegisteredService',
    'ServiceRecord',
    'ServiceRegistry',
]
