"""Wires the store, bus, directories and jobs into one service."""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache
from typing import Optional

from app.schemas import ReadingEvent, UsageReport
from clients.directory import DeviceDirectoryClient, UserDirectoryClient
from messaging.bus import MessageBus, build_default_bus
from services.aggregator import CycleReport, UsageAggregator
from services.ingest import ReadingWriter
from services.reporter import UsageReporter
from services.scheduler import IntervalScheduler
from settings import get_settings
from storage.timeseries import TimeSeriesStore, build_default_store

logger = logging.getLogger(__name__)


class UsageService:
    """Entry point used by the HTTP layer and the application lifespan."""

    def __init__(
        self,
        store: TimeSeriesStore,
        bus: MessageBus,
        devices: DeviceDirectoryClient,
        users: UserDirectoryClient,
        usage_topic: str = "energy-usage",
        alert_topic: str = "energy-alerts",
        interval: float = 10.0,
        window: timedelta = timedelta(hours=1),
        batch_size: int = 50,
    ) -> None:
        self.store = store
        self.bus = bus
        self.devices = devices
        self.users = users
        self.usage_topic = usage_topic
        self.writer = ReadingWriter(store)
        self.aggregator = UsageAggregator(
            store, devices, users, bus, alert_topic=alert_topic, window=window
        )
        self.reporter = UsageReporter(store, devices, batch_size=batch_size)
        self.scheduler: IntervalScheduler[CycleReport] = IntervalScheduler(
            self.aggregator.run_cycle, interval=interval, name="usage-aggregation"
        )
        self._subscribed = False

    def start(self, schedule: bool = True) -> None:
        if not self._subscribed:
            self.bus.subscribe(self.usage_topic, self.writer.handle_message)
            self._subscribed = True
        if schedule:
            self.scheduler.start()

    def ingest(self, event: ReadingEvent) -> None:
        self.bus.publish(self.usage_topic, event.model_dump(mode="json", by_alias=True))
        logger.debug(
            "Ingested reading", extra={"device_id": event.device_id, "topic": self.usage_topic}
        )

    def usage_for_user(self, user_id: int, days: int) -> UsageReport:
        return self.reporter.get_usage_for_user(user_id, days)

    def run_aggregation_now(self) -> Optional[CycleReport]:
        return self.scheduler.trigger()

    def shutdown(self) -> None:
        """Stop the scheduler and release network resources."""
        self.scheduler.shutdown()
        self.bus.close()
        self.devices.close()
        self.users.close()
        self.store.close()


@lru_cache
def build_default_service() -> UsageService:
    settings = get_settings()
    return UsageService(
        store=build_default_store(),
        bus=build_default_bus(),
        devices=DeviceDirectoryClient(
            settings.device_service_url, timeout=settings.directory_timeout
        ),
        users=UserDirectoryClient(settings.user_service_url, timeout=settings.directory_timeout),
        usage_topic=settings.usage_topic,
        alert_topic=settings.alert_topic,
        interval=settings.aggregation_interval,
        window=timedelta(seconds=settings.aggregation_window_seconds),
        batch_size=settings.report_batch_size,
    )
