"""Pydantic schemas for the HTTP API and bus payloads."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.records import Reading

ALERT_MESSAGE = "ALERT: Energy usage exceeded threshold"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ReadingEvent(_CamelModel):
    """Raw reading as carried on the usage topic and accepted by intake."""

    device_id: int = Field(..., alias="deviceId")
    energy_usage: float = Field(..., alias="energyUsage", allow_inf_nan=False)
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def to_reading(self) -> Reading:
        return Reading(
            device_id=self.device_id,
            value=self.energy_usage,
            timestamp=self.timestamp,
        )


class AlertEvent(_CamelModel):
    """Threshold breach published to the alerts topic."""

    user_id: int = Field(..., alias="userId")
    message: str = ALERT_MESSAGE
    threshold: float
    total_energy_usage: float = Field(..., alias="totalEnergyUsage")
    email: Optional[str] = None


class DeviceRecord(_CamelModel):
    """Device metadata returned by the device directory."""

    id: Optional[int] = None
    name: Optional[str] = None
    type: Optional[str] = None
    location: Optional[str] = None
    user_id: Optional[int] = Field(default=None, alias="userId")


class UserRecord(_CamelModel):
    """User profile returned by the user directory."""

    id: Optional[int] = None
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    email: Optional[str] = None
    address: Optional[str] = None
    alert_enabled: Optional[bool] = Field(default=None, alias="alertEnabled")
    energy_alert_threshold: Optional[float] = Field(
        default=None, alias="energyAlertThreshold"
    )


class DeviceUsage(_CamelModel):
    """A device of the report together with its consumption in the window."""

    id: int
    name: Optional[str] = None
    type: Optional[str] = None
    location: Optional[str] = None
    user_id: Optional[int] = Field(default=None, alias="userId")
    energy_consumed: float = Field(default=0.0, alias="energyConsumed")


class UsageReport(_CamelModel):
    """Per-device usage of a user over a day range."""

    user_id: int = Field(..., alias="userId")
    devices: List[DeviceUsage] = Field(default_factory=list)


class IngestAccepted(_CamelModel):
    """Acknowledgement returned once a reading is handed to the bus."""

    topic: str
    device_id: int = Field(..., alias="deviceId")


class CycleSummary(_CamelModel):
    """Outcome of a manually triggered aggregation cycle."""

    skipped: bool = False
    device_rows: int = Field(default=0, alias="deviceRows")
    devices_retained: int = Field(default=0, alias="devicesRetained")
    users_evaluated: int = Field(default=0, alias="usersEvaluated")
    alerts_published: int = Field(default=0, alias="alertsPublished")
