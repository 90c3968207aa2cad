from __future__ import annotations

from typing import Any, Dict, Iterable

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_usage(payload: Dict[str, Any], days: int) -> None:
    echo_heading("Usage Report")
    echo_key_values([("userId", payload.get("userId")), ("days", days)])

    devices = payload.get("devices") or []
    typer.echo()
    echo_heading("Devices")
    if not devices:
        typer.echo("No devices registered.")
        return

    total = 0.0
    for device in devices:
        consumed = float(device.get("energyConsumed") or 0.0)
        total += consumed
        label = device.get("name") or f"device {device.get('id')}"
        details = ", ".join(
            str(value) for value in (device.get("type"), device.get("location")) if value
        )
        suffix = f" ({details})" if details else ""
        typer.echo(f"  - [{device.get('id')}] {label}{suffix}: {consumed:.2f} kWh")
    typer.echo()
    typer.echo(f"total: {total:.2f} kWh")
