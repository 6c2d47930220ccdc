from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_evaluation


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for feeding readings to the water-quality alert listener.",
    context_settings={"help_option_names": ["-h", "--help"]},
)

SiteOption = typer.Option(..., "--site", "-s", help="Pond or tank identifier.")
PhOption = typer.Option(None, "--ph", help="pH.")
TemperatureOption = typer.Option(None, "--temperature", "-t", help="Water temperature in °C.")
OxygenOption = typer.Option(None, "--oxygen", "-o", help="Dissolved oxygen in mg/L.")
SolidsOption = typer.Option(None, "--solids", help="Dissolved solids in ppm.")
TurbidityOption = typer.Option(None, "--turbidity", help="Turbidity in NTU.")


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


def _reading(
    site: str,
    ph: Optional[float],
    temperature: Optional[float],
    oxygen: Optional[float],
    solids: Optional[float],
    turbidity: Optional[float],
) -> Dict[str, Any]:
    return {
        "site_id": site,
        "observed_at": datetime.now(timezone.utc).isoformat(),
        "sensor_values": {
            "ph": ph,
            "temperature": temperature,
            "dissolved_oxygen": oxygen,
            "dissolved_solids": solids,
            "turbidity": turbidity,
        },
    }


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Listener API base URL (defaults to API_BASE_URL env or http://localhost:8080).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each API request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("send")
def send_command(
    ctx: typer.Context,
    site: str = SiteOption,
    ph: Optional[float] = PhOption,
    temperature: Optional[float] = TemperatureOption,
    oxygen: Optional[float] = OxygenOption,
    solids: Optional[float] = SolidsOption,
    turbidity: Optional[float] = TurbidityOption,
) -> None:
    """Append a reading to the feed; the listener alerts recipients if needed."""
    state = _get_state(ctx)
    reading = _reading(site, ph, temperature, oxygen, solids, turbidity)
    reading_id = state.client.submit_reading(reading)
    typer.secho(f"Reading accepted. reading_id={reading_id}", fg=typer.colors.GREEN)


@app.command("evaluate")
def evaluate_command(
    ctx: typer.Context,
    site: str = SiteOption,
    ph: Optional[float] = PhOption,
    temperature: Optional[float] = TemperatureOption,
    oxygen: Optional[float] = OxygenOption,
    solids: Optional[float] = SolidsOption,
    turbidity: Optional[float] = TurbidityOption,
) -> None:
    """Preview the risk score and alert for a reading without sending anything."""
    state = _get_state(ctx)
    reading = _reading(site, ph, temperature, oxygen, solids, turbidity)
    render_evaluation(state.client.evaluate_reading(reading))


@app.command("register")
def register_command(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User the token belongs to."),
    token: str = typer.Argument(..., help="Push delivery token."),
) -> None:
    """Register a push token so the user receives alerts."""
    state = _get_state(ctx)
    count = state.client.register_recipient(user_id, token)
    typer.secho(f"Registered {user_id}. {count} recipient token(s) on file.", fg=typer.colors.GREEN)
