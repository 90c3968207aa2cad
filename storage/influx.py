"""InfluxDB v2 adapter speaking the HTTP API through httpx."""

from __future__ import annotations

import csv
import io
import logging
from datetime import datetime
from typing import List, Mapping, Optional

import httpx

from storage.timeseries import (
    DEVICE_TAG,
    RangeQuery,
    StoreError,
    SumRow,
    TimeSeriesStore,
    to_epoch_ms,
)

logger = logging.getLogger(__name__)


def _escape_key(value: str) -> str:
    return value.replace("\\", "\\\\").replace(",", "\\,").replace("=", "\\=").replace(" ", "\\ ")


def _escape_measurement(value: str) -> str:
    return value.replace("\\", "\\\\").replace(",", "\\,").replace(" ", "\\ ")


def to_line_protocol(
    measurement: str,
    tags: Mapping[str, str],
    fields: Mapping[str, float],
    timestamp: datetime,
) -> str:
    """Render one point in line protocol with a millisecond timestamp."""
    parts = [_escape_measurement(measurement)]
    for key in sorted(tags):
        parts.append(f"{_escape_key(key)}={_escape_key(str(tags[key]))}")
    series = ",".join(parts)
    field_text = ",".join(
        f"{_escape_key(key)}={float(value)!r}" for key, value in fields.items()
    )
    return f"{series} {field_text} {to_epoch_ms(timestamp)}"


def parse_sum_csv(text: str, value_column: str = "_value") -> List[SumRow]:
    """Extract ``(deviceId, _value)`` rows from an annotated CSV response.

    InfluxDB reports failures that happen mid-query as a table with ``error``
    and ``reference`` columns inside a 200 response; those raise StoreError.
    """
    rows: List[SumRow] = []
    header: Optional[List[str]] = None
    for record in csv.reader(io.StringIO(text)):
        if not record or all(not cell.strip() for cell in record):
            header = None
            continue
        if record[0].startswith("#"):
            continue
        if header is None:
            header = record
            continue
        values = dict(zip(header, record))
        if values.get("error"):
            reference = values.get("reference")
            suffix = f" (reference {reference})" if reference else ""
            raise StoreError(f"InfluxDB query failed: {values['error']}{suffix}")
        raw_value = values.get(value_column)
        try:
            value: object = float(raw_value) if raw_value not in (None, "") else None
        except ValueError:
            value = raw_value
        rows.append((values.get(DEVICE_TAG) or None, value))
    return rows


class InfluxTimeSeriesStore(TimeSeriesStore):

    def __init__(
        self,
        url: str,
        token: Optional[str],
        org: str,
        bucket: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.bucket = bucket
        self.org = org
        headers = {"Accept": "application/csv"}
        if token:
            headers["Authorization"] = f"Token {token}"
        self._client = httpx.Client(
            base_url=url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def write_point(
        self,
        measurement: str,
        tags: Mapping[str, str],
        fields: Mapping[str, float],
        timestamp: datetime,
    ) -> None:
        line = to_line_protocol(measurement, tags, fields, timestamp)
        try:
            response = self._client.post(
                "/api/v2/write",
                params={"org": self.org, "bucket": self.bucket, "precision": "ms"},
                content=line.encode("utf-8"),
                headers={"Content-Type": "text/plain; charset=utf-8"},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StoreError(f"Failed to write point to InfluxDB: {exc}") from exc

    def query_sum(self, query: RangeQuery) -> List[SumRow]:
        flux = query.to_flux()
        logger.debug("Running Flux query:\n%s", flux)
        try:
            response = self._client.post(
                "/api/v2/query",
                params={"org": self.org},
                json={"query": flux, "type": "flux"},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StoreError(f"InfluxDB query failed: {exc}") from exc
        return parse_sum_csv(response.text)

    def close(self) -> None:
        self._client.close()
