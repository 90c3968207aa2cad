from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the usage service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def post_reading(self, device_id: int, energy_usage: float, timestamp: datetime) -> Dict[str, Any]:
        payload = {
            "deviceId": device_id,
            "energyUsage": energy_usage,
            "timestamp": timestamp.isoformat(),
        }
        try:
            response = self._client.post("/api/v1/ingestion", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def get_usage(self, user_id: int, days: int) -> Dict[str, Any]:
        try:
            response = self._client.get(f"/api/v1/usage/{user_id}", params={"days": days})
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
