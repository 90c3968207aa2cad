"""Persists raw readings consumed from the usage topic."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import ValidationError

from app.schemas import ReadingEvent
from models.records import Reading
from storage.timeseries import DEVICE_TAG, MEASUREMENT, USAGE_FIELD, TimeSeriesStore

logger = logging.getLogger(__name__)


class ReadingWriter:
    """Writes one point per reading; duplicates are stored as delivered."""

    def __init__(self, store: TimeSeriesStore) -> None:
        self.store = store

    def write(self, reading: Reading) -> None:
        self.store.write_point(
            MEASUREMENT,
            tags={DEVICE_TAG: str(reading.device_id)},
            fields={USAGE_FIELD: reading.value},
            timestamp=reading.timestamp,
        )

    def handle_message(self, payload: Mapping[str, Any]) -> None:
        """Bus handler. Store errors propagate so the bus can redeliver."""
        try:
            event = ReadingEvent.model_validate(payload)
        except ValidationError as exc:
            logger.warning(
                "Discarding malformed reading: %s",
                exc.errors()[0].get("msg") if exc.errors() else exc,
                extra={"reason": "invalid payload"},
            )
            return
        self.write(event.to_reading())
