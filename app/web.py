from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from app.api import get_dashboard
from services.dashboard import DashboardService


templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))

_LATEST_ROWS = 50


router = APIRouter(include_in_schema=False)


def _parse_bound(name: str, value: Optional[str]) -> Optional[datetime]:
    """Blank form fields mean an open range."""
    if value is None or not value.strip():
        return None
    candidate = value.strip()
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise HTTPException(
            status_code=422,
            detail=f"Invalid {name} datetime: {value!r}",
        ) from exc


def _export_query(start: Optional[datetime], end: Optional[datetime]) -> str:
    params = {
        key: moment.isoformat()
        for key, moment in (("start", start), ("end", end))
        if moment is not None
    }
    return f"?{urlencode(params)}" if params else ""


@router.get("/ui", name="ui_index", response_class=HTMLResponse)
def ui_index(
    request: Request,
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    dashboard: DashboardService = Depends(get_dashboard),
) -> HTMLResponse:
    start_at = _parse_bound("start", start)
    end_at = _parse_bound("end", end)
    view = dashboard.view(start_at, end_at)
    return templates.TemplateResponse(
        request,
        "ui/dashboard.html",
        {
            "snapshot": view.snapshot,
            "statistics": view.statistics,
            "high_threshold": dashboard.aggregator.high_threshold,
            "hourly": view.hourly,
            "latest": list(reversed(view.series[-_LATEST_ROWS:])),
            "start": start_at,
            "end": end_at,
            "export_query": _export_query(start_at, end_at),
            "refresh_seconds": int(dashboard.refresh_interval) or 60,
        },
    )
