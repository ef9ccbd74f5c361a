from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

from cli.client import EXPORT_FORMATS, ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_batch, render_feed, render_hourly
from models.records import CO2_TAG, ValueBounds
from services.exporter import build_csv
from services.processor import BatchInputError, BatchProcessor
from settings import get_settings


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the CO₂ uplink dashboard service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Dashboard API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="HTTP timeout in seconds.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("feed")
def feed_command(ctx: typer.Context) -> None:
    """Show the current feed source, counters and statistics."""
    state = _get_state(ctx)
    render_feed(state.client.get_feed())


@app.command("refresh")
def refresh_command(ctx: typer.Context) -> None:
    """Force the service to reload data from the uplink endpoint."""
    state = _get_state(ctx)
    typer.echo(f"Refreshing feed at {state.config.base_url} ...")
    render_feed(state.client.refresh_feed())


@app.command("hourly")
def hourly_command(
    ctx: typer.Context,
    start: Optional[datetime] = typer.Option(None, "--start", help="Inclusive lower bound."),
    end: Optional[datetime] = typer.Option(None, "--end", help="Inclusive upper bound."),
) -> None:
    """Print hourly CO₂ averages."""
    state = _get_state(ctx)
    render_hourly(state.client.get_hourly_averages(start, end))


@app.command("export")
def export_command(
    ctx: typer.Context,
    output: Path = typer.Argument(..., dir_okay=False, writable=True, help="Destination file."),
    export_format: str = typer.Option(
        "csv",
        "--format",
        "-f",
        help=f"Export format: {', '.join(EXPORT_FORMATS)}.",
    ),
    start: Optional[datetime] = typer.Option(None, "--start", help="Inclusive lower bound."),
    end: Optional[datetime] = typer.Option(None, "--end", help="Inclusive upper bound."),
) -> None:
    """Download the current feed as CSV or XLSX."""
    state = _get_state(ctx)
    content = state.client.download_export(export_format.lower(), start, end)
    output.write_bytes(content)
    typer.secho(f"Wrote {len(content)} bytes to {output}", fg=typer.colors.GREEN)


@app.command("decode")
def decode_command(
    file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True, help="JSON file with an array of uplink records."
    ),
    csv_output: Optional[Path] = typer.Option(
        None, "--csv", dir_okay=False, help="Also write the semicolon-separated export here."
    ),
) -> None:
    """Decode a local batch of uplink records without contacting the service."""
    try:
        records = json.loads(file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        typer.secho(f"{file} is not valid JSON: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    settings = get_settings()
    processor = BatchProcessor(
        bounds={CO2_TAG: ValueBounds(minimum=settings.co2_min_ppm, maximum=settings.co2_max_ppm)}
    )
    try:
        result = processor.process_batch(records)
    except BatchInputError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    summary = result.summary
    render_batch(
        {
            "total": summary.total_count,
            "errors": summary.error_count,
            "valid": summary.valid_count,
            "filtered": summary.filtered_count,
        },
        [
            {"index": r.index, "reason": r.reason.value, "detail": r.detail}
            for r in result.rejections
        ],
    )

    if csv_output is not None:
        csv_output.write_text(build_csv(result.measurements, summary), encoding="utf-8")
        typer.secho(f"Wrote CSV export to {csv_output}", fg=typer.colors.GREEN)
