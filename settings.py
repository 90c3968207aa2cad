from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_INFLUX_URL_ENV = "INFLUX_URL"
_INFLUX_TOKEN_ENV = "INFLUX_TOKEN"
_INFLUX_ORG_ENV = "INFLUX_ORG"
_INFLUX_BUCKET_ENV = "INFLUX_BUCKET"
_TIMESERIES_PATH_ENV = "TIMESERIES_PERSISTENCE_PATH"
_MQTT_HOST_ENV = "MQTT_HOST"
_MQTT_PORT_ENV = "MQTT_PORT"
_MQTT_CLIENT_ID_ENV = "MQTT_CLIENT_ID"
_USAGE_TOPIC_ENV = "USAGE_TOPIC"
_ALERT_TOPIC_ENV = "ALERT_TOPIC"
_DEVICE_URL_ENV = "DEVICE_SERVICE_URL"
_USER_URL_ENV = "USER_SERVICE_URL"
_DIRECTORY_TIMEOUT_ENV = "DIRECTORY_TIMEOUT_SECONDS"
_STORE_TIMEOUT_ENV = "STORE_TIMEOUT_SECONDS"
_INTERVAL_ENV = "AGGREGATION_INTERVAL_SECONDS"
_WINDOW_ENV = "AGGREGATION_WINDOW_SECONDS"
_AGGREGATION_ENABLED_ENV = "AGGREGATION_ENABLED"
_BATCH_SIZE_ENV = "REPORT_QUERY_BATCH_SIZE"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    influx_url: Optional[str]
    influx_token: Optional[str]
    influx_org: str
    influx_bucket: str
    timeseries_persistence_path: Optional[str]
    mqtt_host: Optional[str]
    mqtt_port: int
    mqtt_client_id: str
    usage_topic: str
    alert_topic: str
    device_service_url: str
    user_service_url: str
    directory_timeout: float
    store_timeout: float
    aggregation_interval: float
    aggregation_window_seconds: int
    aggregation_enabled: bool
    report_batch_size: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in {"1", "true", "yes", "on"}:
        return True
    if candidate in {"0", "false", "no", "off"}:
        return False
    return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        influx_url=_read_optional_env(_INFLUX_URL_ENV, None),
        influx_token=_read_optional_env(_INFLUX_TOKEN_ENV, None),
        influx_org=_read_str_env(_INFLUX_ORG_ENV, "energy"),
        influx_bucket=_read_str_env(_INFLUX_BUCKET_ENV, "energy_usage"),
        timeseries_persistence_path=_read_optional_env(_TIMESERIES_PATH_ENV, None),
        mqtt_host=_read_optional_env(_MQTT_HOST_ENV, None),
        mqtt_port=_read_positive_int(_MQTT_PORT_ENV, 1883),
        mqtt_client_id=_read_str_env(_MQTT_CLIENT_ID_ENV, "usage-service"),
        usage_topic=_read_str_env(_USAGE_TOPIC_ENV, "energy-usage"),
        alert_topic=_read_str_env(_ALERT_TOPIC_ENV, "energy-alerts"),
        device_service_url=_read_str_env(_DEVICE_URL_ENV, "http://localhost:8081"),
        user_service_url=_read_str_env(_USER_URL_ENV, "http://localhost:8080"),
        directory_timeout=_read_positive_float(_DIRECTORY_TIMEOUT_ENV, 5.0),
        store_timeout=_read_positive_float(_STORE_TIMEOUT_ENV, 10.0),
        aggregation_interval=_read_positive_float(_INTERVAL_ENV, 10.0),
        aggregation_window_seconds=_read_positive_int(_WINDOW_ENV, 3600),
        aggregation_enabled=_read_bool(_AGGREGATION_ENABLED_ENV, True),
        report_batch_size=_read_positive_int(_BATCH_SIZE_ENV, 50),
        log_level=_read_log_level("INFO"),
    )
