"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True, slots=True)
class Reading:
    """A single energy-usage sample reported by a device."""

    device_id: int
    value: float
    timestamp: datetime


@dataclass(slots=True)
class DeviceEnergyUsage:
    """Summed usage of one device within an aggregation window.

    ``user_id`` is attached once during enrichment; records that never
    receive an owner are dropped before grouping.
    """

    device_id: int
    energy_usage: float
    user_id: Optional[int] = None


@dataclass(frozen=True, slots=True)
class UserThreshold:
    """Alerting preferences of a user with alerts enabled."""

    user_id: int
    threshold: float
    email: Optional[str]
