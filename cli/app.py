from __future__ import annotations

import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_usage


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the energy usage service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


def _parse_timestamp(value: Optional[str]) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    candidate = value.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid ISO-8601 timestamp: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Per-request timeout in seconds.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("usage")
def usage_command(
    ctx: typer.Context,
    user_id: int = typer.Argument(..., help="User whose devices to report on."),
    days: int = typer.Option(3, "--days", "-d", min=1, help="Number of days to look back."),
) -> None:
    """Show per-device energy usage for a user."""
    state = _get_state(ctx)
    payload = state.client.get_usage(user_id, days)
    render_usage(payload, days)


@app.command("ingest")
def ingest_command(
    ctx: typer.Context,
    device_id: int = typer.Argument(..., help="Reporting device."),
    energy_usage: float = typer.Argument(..., help="Energy used, in kWh."),
    timestamp: Optional[str] = typer.Option(
        None, "--timestamp", "-t", help="ISO-8601 reading time (defaults to now)."
    ),
) -> None:
    """Submit a single reading."""
    state = _get_state(ctx)
    moment = _parse_timestamp(timestamp)
    state.client.post_reading(device_id, energy_usage, moment)
    typer.secho(
        f"Reading accepted. deviceId={device_id} energyUsage={energy_usage}",
        fg=typer.colors.GREEN,
    )


@app.command("simulate")
def simulate_command(
    ctx: typer.Context,
    count: int = typer.Option(10, "--count", "-n", min=1, help="Readings to send."),
    devices: int = typer.Option(9, "--devices", min=1, help="Device ids are drawn from 1..N."),
    delay: float = typer.Option(0.0, "--delay", min=0.0, help="Seconds between readings."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed for repeatable runs."),
) -> None:
    """Send randomly generated readings."""
    state = _get_state(ctx)
    rng = random.Random(seed)
    for index in range(count):
        device_id = rng.randint(1, devices)
        value = round(rng.uniform(0.0, 5.0), 2)
        state.client.post_reading(device_id, value, datetime.now(timezone.utc))
        typer.echo(f"sent deviceId={device_id} energyUsage={value}")
        if delay and index < count - 1:
            time.sleep(delay)
    typer.secho(f"Sent {count} readings.", fg=typer.colors.GREEN)
