"""
Distributed ban coordinator.

Tracks infractions per source address in a shared Redis store so that
every instance of a fleet sees the same failure history, and drives a
local ipset to block addresses that cross the threshold.

Main Components:
- InfractionStore: Redis list primitives used by the jail
- IpSet: packet-filter address set (enforcement point)
- BanEngine: append-and-evaluate, ban/unban dispatch
- MaintenanceScanner: periodic garbage collection and unban detection
- ServiceJailer: startup reconciliation, scheduling and shutdown

Usage:
    from jailer import ServiceJailer

    jailer = await ServiceJailer.create(settings)
    await jailer.add_infraction("203.0.113.7")
    ...
    await jailer.close()
"""

from .core.exceptions import (
    ConfigurationError,
    EnforcementError,
    InfractionParseError,
    JailerError,
    StoreOperationError,
    StoreUnreachableError,
)
from .integration.redis_store import InfractionStore
from .ip.ipset import IpSet
from .jail.ban_engine import BanEngine
from .jail.lifecycle import ServiceJailer
from .jail.scanner import MaintenanceScanner, ScanSummary

__version__ = "1.0.0"

__all__ = [
    'BanEngine',
    'ConfigurationError',
    'EnforcementError',
    'InfractionParseError',
    'InfractionStore',
    'IpSet',
    'JailerError',
    'MaintenanceScanner',
    'ScanSummary',
    'ServiceJailer',
    'StoreOperationError',
    'StoreUnreachableError',
]
