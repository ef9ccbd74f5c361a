from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def echo_counters(summary: Dict[str, Any]) -> None:
    echo_key_values(
        [
            ("total", summary.get("total")),
            ("errors", summary.get("errors")),
            ("valid", summary.get("valid")),
            ("filtered", summary.get("filtered", 0)),
        ]
    )


def render_feed(payload: Dict[str, Any]) -> None:
    echo_heading("Sensor Feed")
    if payload.get("is_demo"):
        typer.secho(
            "DEMONSTRATION DATA - these readings are generated, not live.",
            fg=typer.colors.YELLOW,
            bold=True,
        )
        reason = payload.get("fallback_reason")
        if reason:
            typer.echo(f"reason: {reason}")
    echo_key_values(
        [
            ("snapshot_id", payload.get("snapshot_id")),
            ("source", payload.get("source")),
            ("fetched_at", payload.get("fetched_at")),
        ]
    )

    typer.echo()
    echo_heading("Counters")
    echo_counters(payload.get("summary") or {})

    statistics = payload.get("statistics") or {}
    typer.echo()
    echo_heading("Statistics")
    if statistics.get("count"):
        echo_key_values(
            [
                ("count", statistics.get("count")),
                ("min_value", statistics.get("min_value")),
                ("max_value", statistics.get("max_value")),
                ("mean_value", statistics.get("mean_value")),
                ("latest_value", statistics.get("latest_value")),
                ("latest_at", statistics.get("latest_at")),
                ("level", "HIGH" if statistics.get("latest_is_high") else "normal"),
            ]
        )
    else:
        typer.echo("No readings available.")


def render_hourly(rows: List[Dict[str, Any]]) -> None:
    echo_heading("Hourly Averages")
    if not rows:
        typer.echo("No readings available.")
        return
    for row in rows:
        typer.echo(
            f"  {row.get('hour_bucket')}  {row.get('average'):.2f} ppm  ({row.get('sample_count')} samples)"
        )


def render_batch(summary: Dict[str, Any], rejections: Iterable[Dict[str, Any]]) -> None:
    echo_heading("Batch Summary")
    echo_counters(summary)

    rejections = list(rejections)
    typer.echo()
    echo_heading("Skipped Records")
    if rejections:
        for rejection in rejections:
            typer.echo(
                f"  - record {rejection.get('index')}: {rejection.get('reason')} ({rejection.get('detail')})"
            )
    else:
        typer.echo("No records skipped.")
