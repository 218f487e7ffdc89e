"""Prometheus file-based service discovery fed by mDNS announcements."""

__version__ = '0.1.0'
