"""Time-series storage: range queries and an in-process store."""

from __future__ import annotations

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from settings import get_settings

logger = logging.getLogger(__name__)

MEASUREMENT = "energy_usage"
DEVICE_TAG = "deviceId"
USAGE_FIELD = "energyUsage"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

SumRow = Tuple[Optional[str], object]


class StoreError(RuntimeError):
    """Raised when the time-series store cannot complete a read or write."""


def to_epoch_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // timedelta(milliseconds=1)


def format_instant(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


@dataclass(frozen=True)
class RangeQuery:
    """Sum of one field per device tag over ``[start, stop)``."""

    bucket: str
    start: datetime
    stop: datetime
    measurement: str = MEASUREMENT
    field: str = USAGE_FIELD
    device_ids: Optional[Tuple[str, ...]] = None

    def to_flux(self) -> str:
        lines = [
            f'from(bucket: "{self.bucket}")',
            f'  |> range(start: time(v: "{format_instant(self.start)}"), '
            f'stop: time(v: "{format_instant(self.stop)}"))',
            f'  |> filter(fn: (r) => r["_measurement"] == "{self.measurement}")',
            f'  |> filter(fn: (r) => r["_field"] == "{self.field}")',
        ]
        if self.device_ids:
            disjunction = " or ".join(
                f'r["{DEVICE_TAG}"] == "{device_id}"' for device_id in self.device_ids
            )
            lines.append(f"  |> filter(fn: (r) => {disjunction})")
        lines.append(f'  |> group(columns: ["{DEVICE_TAG}"])')
        lines.append('  |> sum(column: "_value")')
        return "\n".join(lines)


class TimeSeriesStore:
    """Append-only point storage with a grouped range-sum query."""

    bucket: str

    def write_point(
        self,
        measurement: str,
        tags: Mapping[str, str],
        fields: Mapping[str, float],
        timestamp: datetime,
    ) -> None:
        raise NotImplementedError

    def query_sum(self, query: RangeQuery) -> List[SumRow]:
        """Return ``(device tag, summed value)`` rows, one per device group."""
        raise NotImplementedError

    def close(self) -> None:
        return None


@dataclass(frozen=True)
class _Point:
    measurement: str
    tags: Dict[str, str]
    fields: Dict[str, float]
    time_ms: int


class MockTimeSeriesStore(TimeSeriesStore):

    def __init__(self, bucket: str, persistence_path: Optional[Path] = None) -> None:
        self.bucket = bucket
        self.persistence_path = persistence_path
        self._points: List[_Point] = []
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def write_point(
        self,
        measurement: str,
        tags: Mapping[str, str],
        fields: Mapping[str, float],
        timestamp: datetime,
    ) -> None:
        if not fields:
            raise StoreError("A point needs at least one field.")
        point = _Point(
            measurement=measurement,
            tags={str(key): str(value) for key, value in tags.items()},
            fields={str(key): float(value) for key, value in fields.items()},
            time_ms=to_epoch_ms(timestamp),
        )
        with self._lock:
            self._points.append(point)
            self._persist()

    def query_sum(self, query: RangeQuery) -> List[SumRow]:
        start_ms = to_epoch_ms(query.start)
        stop_ms = to_epoch_ms(query.stop)
        wanted = set(query.device_ids) if query.device_ids is not None else None

        totals: "OrderedDict[Optional[str], float]" = OrderedDict()
        with self._lock:
            points = list(self._points)

        for point in points:
            if point.measurement != query.measurement:
                continue
            if query.field not in point.fields:
                continue
            if not start_ms <= point.time_ms < stop_ms:
                continue
            device_tag = point.tags.get(DEVICE_TAG)
            if wanted is not None and device_tag not in wanted:
                continue
            totals[device_tag] = totals.get(device_tag, 0.0) + point.fields[query.field]

        return sorted(totals.items(), key=lambda row: (row[0] is None, row[0] or ""))

    def point_count(self) -> int:
        with self._lock:
            return len(self._points)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = [
            {
                "measurement": point.measurement,
                "tags": point.tags,
                "fields": point.fields,
                "time_ms": point.time_ms,
            }
            for point in self._points
        ]
        self.persistence_path.write_text(json.dumps(payload))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "[]"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            logger.warning(
                "Ignoring unreadable time-series file %s", self.persistence_path
            )
            data = []

        for item in data:
            self._points.append(
                _Point(
                    measurement=item["measurement"],
                    tags=dict(item.get("tags") or {}),
                    fields={k: float(v) for k, v in (item.get("fields") or {}).items()},
                    time_ms=int(item["time_ms"]),
                )
            )


def batched(values: Sequence[str], size: int) -> List[Tuple[str, ...]]:
    if size <= 0:
        raise ValueError("Batch size must be positive.")
    return [tuple(values[index : index + size]) for index in range(0, len(values), size)]


@lru_cache
def build_default_store() -> TimeSeriesStore:
    settings = get_settings()
    if settings.influx_url:
        from storage.influx import InfluxTimeSeriesStore

        return InfluxTimeSeriesStore(
            url=settings.influx_url,
            token=settings.influx_token,
            org=settings.influx_org,
            bucket=settings.influx_bucket,
            timeout=settings.store_timeout,
        )
    path = settings.timeseries_persistence_path
    return MockTimeSeriesStore(
        bucket=settings.influx_bucket,
        persistence_path=Path(path) if path else None,
    )
