"""Unit tests for the hourly aggregation cycle."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from app.schemas import ALERT_MESSAGE, DeviceRecord, UserRecord
from clients.directory import DirectoryError
from messaging.bus import MockMessageBus
from models.records import Reading
from services.aggregator import UsageAggregator, parse_sum_rows
from services.ingest import ReadingWriter
from storage.timeseries import MockTimeSeriesStore, StoreError

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
ALERTS = "energy-alerts"


class StubDevices:
    def __init__(self, owners: Dict[int, int], failing: tuple[int, ...] = ()) -> None:
        self.owners = owners
        self.failing = failing
        self.calls: List[int] = []

    def get_device(self, device_id: int) -> Optional[DeviceRecord]:
        self.calls.append(device_id)
        if device_id in self.failing:
            raise DirectoryError("device-service unavailable")
        owner = self.owners.get(device_id)
        if owner is None:
            return None
        return DeviceRecord(id=device_id, name=f"device-{device_id}", user_id=owner)


class StubUsers:
    def __init__(self, users: Dict[int, UserRecord], failing: tuple[int, ...] = ()) -> None:
        self.users = users
        self.failing = failing
        self.calls: List[int] = []

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        self.calls.append(user_id)
        if user_id in self.failing:
            raise DirectoryError("user-service unavailable")
        return self.users.get(user_id)


class FailingStore(MockTimeSeriesStore):
    def query_sum(self, query):
        raise StoreError("influx is down")


def _user(user_id: int, threshold: float, enabled: bool = True) -> UserRecord:
    return UserRecord(
        id=user_id,
        email=f"user{user_id}@example.com",
        alert_enabled=enabled,
        energy_alert_threshold=threshold,
    )


def _write(store: MockTimeSeriesStore, device_id: int, value: float, minutes_ago: int = 10) -> None:
    ReadingWriter(store).write(
        Reading(device_id=device_id, value=value, timestamp=NOW - timedelta(minutes=minutes_ago))
    )


def _aggregator(store, devices, users, bus) -> UsageAggregator:
    return UsageAggregator(store, devices, users, bus, alert_topic=ALERTS)


def test_breach_publishes_single_alert() -> None:
    store = MockTimeSeriesStore(bucket="test")
    _write(store, 7, 2.0, minutes_ago=30)
    _write(store, 7, 3.0, minutes_ago=5)
    bus = MockMessageBus()
    aggregator = _aggregator(store, StubDevices({7: 42}), StubUsers({42: _user(42, 4.0)}), bus)

    report = aggregator.run_cycle(now=NOW)

    alerts = bus.published(ALERTS)
    assert report.alerts_published == 1
    assert alerts == [
        {
            "userId": 42,
            "message": ALERT_MESSAGE,
            "threshold": 4.0,
            "totalEnergyUsage": 5.0,
            "email": "user42@example.com",
        }
    ]


def test_total_equal_to_threshold_does_not_alert() -> None:
    store = MockTimeSeriesStore(bucket="test")
    _write(store, 7, 2.0)
    _write(store, 7, 3.0)
    bus = MockMessageBus()
    aggregator = _aggregator(store, StubDevices({7: 42}), StubUsers({42: _user(42, 5.0)}), bus)

    report = aggregator.run_cycle(now=NOW)

    assert report.users_evaluated == 1
    assert report.alerts_published == 0
    assert bus.published(ALERTS) == []


def test_undefined_total_does_not_alert() -> None:
    store = MockTimeSeriesStore(bucket="test")
    _write(store, 7, 10.0)
    _write(store, 7, float("nan"))
    bus = MockMessageBus()
    aggregator = _aggregator(store, StubDevices({7: 42}), StubUsers({42: _user(42, 4.0)}), bus)

    report = aggregator.run_cycle(now=NOW)

    assert report.users_evaluated == 1
    assert report.alerts_published == 0
    assert bus.published(ALERTS) == []


def test_user_total_sums_all_owned_devices() -> None:
    store = MockTimeSeriesStore(bucket="test")
    _write(store, 1, 1.5)
    _write(store, 2, 2.5)
    _write(store, 3, 9.0)
    bus = MockMessageBus()
    devices = StubDevices({1: 10, 2: 10, 3: 20})
    users = StubUsers({10: _user(10, 3.9), 20: _user(20, 100.0)})

    _aggregator(store, devices, users, bus).run_cycle(now=NOW)

    alerts = bus.published(ALERTS)
    assert [alert["userId"] for alert in alerts] == [10]
    assert alerts[0]["totalEnergyUsage"] == 4.0


def test_readings_outside_window_are_ignored() -> None:
    store = MockTimeSeriesStore(bucket="test")
    _write(store, 7, 100.0, minutes_ago=61)
    _write(store, 7, 1.0, minutes_ago=1)
    bus = MockMessageBus()
    aggregator = _aggregator(store, StubDevices({7: 42}), StubUsers({42: _user(42, 4.0)}), bus)

    report = aggregator.run_cycle(now=NOW)

    assert report.device_rows == 1
    assert bus.published(ALERTS) == []


def test_disabled_alerting_never_alerts() -> None:
    store = MockTimeSeriesStore(bucket="test")
    _write(store, 7, 50.0)
    bus = MockMessageBus()
    users = StubUsers({42: _user(42, 1.0, enabled=False)})
    aggregator = _aggregator(store, StubDevices({7: 42}), users, bus)

    report = aggregator.run_cycle(now=NOW)

    assert report.users_evaluated == 0
    assert bus.published(ALERTS) == []


def test_unresolvable_devices_are_dropped() -> None:
    store = MockTimeSeriesStore(bucket="test")
    _write(store, 1, 3.0)
    _write(store, 2, 30.0)
    _write(store, 3, 30.0)
    bus = MockMessageBus()
    devices = StubDevices({1: 42, 3: 42}, failing=(3,))
    aggregator = _aggregator(store, devices, StubUsers({42: _user(42, 4.0)}), bus)

    report = aggregator.run_cycle(now=NOW)

    assert sorted(devices.calls) == [1, 2, 3]
    assert report.device_rows == 3
    assert report.devices_retained == 1
    assert bus.published(ALERTS) == []


def test_user_lookup_failure_is_isolated() -> None:
    store = MockTimeSeriesStore(bucket="test")
    _write(store, 1, 10.0)
    _write(store, 2, 10.0)
    _write(store, 3, 10.0)
    bus = MockMessageBus()
    devices = StubDevices({1: 10, 2: 20, 3: 30})
    users = StubUsers({20: _user(20, 1.0), 30: _user(30, 1.0)}, failing=(10,))

    report = _aggregator(store, devices, users, bus).run_cycle(now=NOW)

    assert sorted(users.calls) == [10, 20, 30]
    assert report.users_evaluated == 2
    assert sorted(alert["userId"] for alert in bus.published(ALERTS)) == [20, 30]


def test_missing_user_is_skipped() -> None:
    store = MockTimeSeriesStore(bucket="test")
    _write(store, 1, 10.0)
    bus = MockMessageBus()

    report = _aggregator(store, StubDevices({1: 99}), StubUsers({}), bus).run_cycle(now=NOW)

    assert report.devices_retained == 1
    assert report.users_evaluated == 0
    assert bus.published(ALERTS) == []


def test_store_failure_aborts_cycle_quietly() -> None:
    store = FailingStore(bucket="test")
    devices = StubDevices({7: 42})
    bus = MockMessageBus()

    report = _aggregator(store, devices, StubUsers({42: _user(42, 0.1)}), bus).run_cycle(now=NOW)

    assert report.device_rows == 0
    assert devices.calls == []
    assert bus.published(ALERTS) == []


def test_repeated_breach_alerts_every_cycle() -> None:
    store = MockTimeSeriesStore(bucket="test")
    _write(store, 7, 10.0)
    bus = MockMessageBus()
    aggregator = _aggregator(store, StubDevices({7: 42}), StubUsers({42: _user(42, 4.0)}), bus)

    aggregator.run_cycle(now=NOW)
    aggregator.run_cycle(now=NOW + timedelta(seconds=10))

    assert len(bus.published(ALERTS)) == 2


def test_publish_failure_does_not_stop_other_users() -> None:
    class FlakyBus(MockMessageBus):
        def publish(self, topic, payload):
            if payload["userId"] == 10:
                raise RuntimeError("broker unavailable")
            super().publish(topic, payload)

    store = MockTimeSeriesStore(bucket="test")
    _write(store, 1, 10.0)
    _write(store, 2, 10.0)
    bus = FlakyBus()
    devices = StubDevices({1: 10, 2: 20})
    users = StubUsers({10: _user(10, 1.0), 20: _user(20, 1.0)})

    report = _aggregator(store, devices, users, bus).run_cycle(now=NOW)

    assert report.alerts_published == 1
    assert [alert["userId"] for alert in bus.published(ALERTS)] == [20]


def test_parse_sum_rows_skips_malformed_ids() -> None:
    rows = [("7", 2.5), ("oven", 1.0), (None, 3.0), ("8", "n/a"), (" 9 ", 4)]

    assert parse_sum_rows(rows) == [(7, 2.5), (8, 0.0), (9, 4.0)]


def test_group_by_user_keeps_first_seen_order() -> None:
    from models.records import DeviceEnergyUsage

    usages = [
        DeviceEnergyUsage(device_id=1, energy_usage=1.0, user_id=5),
        DeviceEnergyUsage(device_id=2, energy_usage=2.0, user_id=3),
        DeviceEnergyUsage(device_id=3, energy_usage=3.0, user_id=5),
    ]

    grouped = UsageAggregator.group_by_user(usages)

    assert list(grouped) == [5, 3]
    assert [usage.device_id for usage in grouped[5]] == [1, 3]
