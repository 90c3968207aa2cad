"""Hourly usage aggregation and threshold alerting."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from app.schemas import AlertEvent
from clients.directory import DeviceDirectoryClient, UserDirectoryClient
from messaging.bus import MessageBus
from models.records import DeviceEnergyUsage, UserThreshold
from storage.timeseries import RangeQuery, SumRow, TimeSeriesStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_sum_rows(rows: Iterable[SumRow]) -> List[Tuple[int, float]]:
    """Convert raw store rows to ``(device_id, total)``, skipping bad ids."""
    parsed: List[Tuple[int, float]] = []
    for raw_id, raw_value in rows:
        if raw_id is None:
            logger.warning("Skipping row without a device id", extra={"reason": "missing id"})
            continue
        try:
            device_id = int(str(raw_id).strip())
        except ValueError:
            logger.warning(
                "Skipping row with unparseable device id %r",
                raw_id,
                extra={"reason": "invalid id"},
            )
            continue
        if isinstance(raw_value, (int, float)) and not isinstance(raw_value, bool):
            value = float(raw_value)
        else:
            value = 0.0
        parsed.append((device_id, value))
    return parsed


@dataclass
class CycleReport:
    """What one aggregation cycle saw and did."""

    device_rows: int = 0
    devices_retained: int = 0
    users_evaluated: int = 0
    alerts_published: int = 0


class UsageAggregator:
    """Sums the last window of readings per user and publishes breaches.

    Each cycle is self-contained: query, enrich, group, resolve thresholds,
    evaluate. A failure for one device or user is logged and skipped; the
    cycle itself never raises.
    """

    def __init__(
        self,
        store: TimeSeriesStore,
        devices: DeviceDirectoryClient,
        users: UserDirectoryClient,
        bus: MessageBus,
        alert_topic: str = "energy-alerts",
        window: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.devices = devices
        self.users = users
        self.bus = bus
        self.alert_topic = alert_topic
        self.window = window
        self.clock = clock

    def run_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        report = CycleReport()
        usages = self.fetch_device_usage(now or self.clock())
        report.device_rows = len(usages)
        if not usages:
            return report

        usages = self.enrich_with_owner(usages)
        report.devices_retained = len(usages)

        by_user = self.group_by_user(usages)
        thresholds = self.resolve_thresholds(by_user.keys())
        report.users_evaluated = len(thresholds)
        report.alerts_published = self.evaluate_and_alert(by_user, thresholds)
        logger.info(
            "Aggregation cycle finished",
            extra={"row_count": report.device_rows, "alert_count": report.alerts_published},
        )
        return report

    def fetch_device_usage(self, now: datetime) -> List[DeviceEnergyUsage]:
        query = RangeQuery(bucket=self.store.bucket, start=now - self.window, stop=now)
        try:
            rows = self.store.query_sum(query)
        except Exception:
            logger.exception("Usage query failed; skipping this cycle")
            return []
        return [
            DeviceEnergyUsage(device_id=device_id, energy_usage=value)
            for device_id, value in parse_sum_rows(rows)
        ]

    def enrich_with_owner(self, usages: List[DeviceEnergyUsage]) -> List[DeviceEnergyUsage]:
        for usage in usages:
            try:
                device = self.devices.get_device(usage.device_id)
            except Exception as exc:
                logger.warning(
                    "Error fetching device: %s",
                    exc,
                    extra={"device_id": usage.device_id},
                )
                continue
            if device is None:
                logger.warning("Device not found", extra={"device_id": usage.device_id})
                continue
            usage.user_id = device.user_id

        return [usage for usage in usages if usage.user_id is not None]

    @staticmethod
    def group_by_user(usages: Iterable[DeviceEnergyUsage]) -> Dict[int, List[DeviceEnergyUsage]]:
        grouped: Dict[int, List[DeviceEnergyUsage]] = {}
        for usage in usages:
            assert usage.user_id is not None
            grouped.setdefault(usage.user_id, []).append(usage)
        return grouped

    def resolve_thresholds(self, user_ids: Iterable[int]) -> Dict[int, UserThreshold]:
        thresholds: Dict[int, UserThreshold] = {}
        for user_id in user_ids:
            try:
                user = self.users.get_user(user_id)
            except Exception as exc:
                logger.warning(
                    "Error fetching user threshold: %s", exc, extra={"user_id": user_id}
                )
                continue
            if user is None or not user.alert_enabled:
                logger.warning(
                    "User not found or alert not enabled", extra={"user_id": user_id}
                )
                continue
            if user.energy_alert_threshold is None:
                logger.warning("User has no alert threshold", extra={"user_id": user_id})
                continue
            thresholds[user_id] = UserThreshold(
                user_id=user_id,
                threshold=user.energy_alert_threshold,
                email=user.email,
            )
        return thresholds

    def evaluate_and_alert(
        self,
        by_user: Dict[int, List[DeviceEnergyUsage]],
        thresholds: Dict[int, UserThreshold],
    ) -> int:
        published = 0
        for user_id, limit in thresholds.items():
            devices = by_user.get(user_id)
            if not devices:
                continue
            total = sum(device.energy_usage for device in devices)
            context = {
                "user_id": user_id,
                "total_energy_usage": total,
                "threshold": limit.threshold,
            }
            if not total > limit.threshold:
                logger.info("Energy usage within threshold", extra=context)
                continue

            logger.info("Energy usage exceeded threshold", extra=context)
            alert = AlertEvent(
                user_id=user_id,
                threshold=limit.threshold,
                total_energy_usage=total,
                email=limit.email,
            )
            try:
                self.bus.publish(self.alert_topic, alert.model_dump(by_alias=True))
            except Exception:
                logger.exception("Failed to publish alert", extra=context)
                continue
            published += 1
        return published
