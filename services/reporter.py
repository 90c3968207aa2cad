"""On-demand per-device usage reports over a day range."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from app.schemas import DeviceRecord, DeviceUsage, UsageReport
from clients.directory import DeviceDirectoryClient
from services.aggregator import parse_sum_rows, utcnow
from storage.timeseries import RangeQuery, TimeSeriesStore, batched

logger = logging.getLogger(__name__)


class UsageReporter:

    def __init__(
        self,
        store: TimeSeriesStore,
        devices: DeviceDirectoryClient,
        batch_size: int = 50,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.devices = devices
        self.batch_size = batch_size
        self.clock = clock

    def get_usage_for_user(
        self, user_id: int, days: int, now: Optional[datetime] = None
    ) -> UsageReport:
        """Build a report of every device the user owns.

        Directory failures propagate as ``DirectoryError``; store failures
        leave the affected devices at zero usage.
        """
        if days < 1:
            raise ValueError("days must be a positive integer.")
        logger.info("Building usage report", extra={"user_id": user_id, "days": days})

        devices = self._resolve_devices(user_id)
        if not devices:
            logger.warning("No devices found", extra={"user_id": user_id})
            return UsageReport(user_id=user_id, devices=[])

        stop = now or self.clock()
        start = stop - timedelta(days=days)
        totals = self._query_totals([device.id for device in devices], start, stop)

        return UsageReport(
            user_id=user_id,
            devices=[
                DeviceUsage(
                    id=device.id,
                    name=device.name,
                    type=device.type,
                    location=device.location,
                    user_id=device.user_id,
                    energy_consumed=totals.get(device.id, 0.0),
                )
                for device in devices
            ],
        )

    def _resolve_devices(self, user_id: int) -> List[DeviceRecord]:
        resolved: List[DeviceRecord] = []
        for device in self.devices.get_devices_for_user(user_id):
            if device.id is None:
                logger.warning("Skipping device with null id", extra={"user_id": user_id})
                continue
            resolved.append(device)
        return resolved

    def _query_totals(self, device_ids: List[int], start: datetime, stop: datetime) -> Dict[int, float]:
        totals: Dict[int, float] = {}
        tags = list(dict.fromkeys(str(device_id) for device_id in device_ids))
        for chunk in batched(tags, self.batch_size):
            query = RangeQuery(
                bucket=self.store.bucket, start=start, stop=stop, device_ids=chunk
            )
            try:
                rows = self.store.query_sum(query)
            except Exception:
                logger.exception(
                    "Usage query failed; devices default to zero",
                    extra={"device_count": len(chunk)},
                )
                continue
            for device_id, value in parse_sum_rows(rows):
                totals[device_id] = totals.get(device_id, 0.0) + value
        return totals
