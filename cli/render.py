from __future__ import annotations

from typing import Any, Dict, Iterable

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_evaluation(payload: Dict[str, Any]) -> None:
    echo_heading("Evaluation")
    risk = payload.get("risk_score")
    echo_key_values(
        [
            ("site_id", payload.get("site_id")),
            ("risk_score", f"{risk:.3f}" if isinstance(risk, (int, float)) else risk),
        ]
    )

    violations = payload.get("violations") or []
    typer.echo()
    echo_heading("Violations")
    if violations:
        for violation in violations:
            typer.secho(f"  - {violation}", fg=typer.colors.YELLOW)
    else:
        typer.secho("All readings within range; no alert would be sent.", fg=typer.colors.GREEN)

    alert = payload.get("alert")
    if alert:
        typer.echo()
        echo_heading("Alert")
        echo_key_values([("title", alert.get("title")), ("body", alert.get("body"))])
