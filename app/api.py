"""HTTP route definitions for the service."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response, status

from app.schemas import (
    BatchCounters,
    BatchResponse,
    FeedResponse,
    FeedSnapshot,
    HourlyAverageOut,
    MeasurementOut,
    RejectionOut,
    StatisticsOut,
)
from services.dashboard import DashboardService
from services.exporter import CSV_MEDIA_TYPE, XLSX_MEDIA_TYPE
from services.processor import BatchInputError

router = APIRouter()


def get_dashboard(request: Request) -> DashboardService:
    return request.app.state.dashboard


StartQuery = Query(None, description="Inclusive lower bound (ISO-8601).")
EndQuery = Query(None, description="Inclusive upper bound (ISO-8601).")


def _feed_response(dashboard: DashboardService, snapshot: FeedSnapshot) -> FeedResponse:
    stats = dashboard.aggregator.statistics(item.to_measurement() for item in snapshot.measurements)
    return FeedResponse(
        snapshot_id=snapshot.snapshot_id,
        source=snapshot.source,
        is_demo=snapshot.is_demo,
        fallback_reason=snapshot.fallback_reason,
        fetched_at=snapshot.fetched_at,
        summary=snapshot.summary,
        statistics=StatisticsOut.from_statistics(stats, dashboard.aggregator.high_threshold),
    )


def _export_filename(extension: str) -> str:
    return f"co2-readings-{datetime.now():%Y%m%d-%H%M%S}.{extension}"


@router.get(
    "/feed",
    response_model=FeedResponse,
    summary="Current feed source, counters and statistics.",
)
def get_feed(dashboard: DashboardService = Depends(get_dashboard)) -> FeedResponse:
    return _feed_response(dashboard, dashboard.current_snapshot())


@router.post(
    "/feed/refresh",
    response_model=FeedResponse,
    summary="Reload the feed from the uplink endpoint.",
)
def refresh_feed(dashboard: DashboardService = Depends(get_dashboard)) -> FeedResponse:
    return _feed_response(dashboard, dashboard.refresh())


@router.get(
    "/measurements",
    response_model=List[MeasurementOut],
    summary="Time-ordered CO₂ measurements, optionally limited to a date range.",
)
def list_measurements(
    start: Optional[datetime] = StartQuery,
    end: Optional[datetime] = EndQuery,
    dashboard: DashboardService = Depends(get_dashboard),
) -> List[MeasurementOut]:
    return [MeasurementOut.from_measurement(m) for m in dashboard.measurements(start, end)]


@router.get(
    "/hourly-averages",
    response_model=List[HourlyAverageOut],
    summary="Hourly CO₂ averages, optionally limited to a date range.",
)
def list_hourly_averages(
    start: Optional[datetime] = StartQuery,
    end: Optional[datetime] = EndQuery,
    dashboard: DashboardService = Depends(get_dashboard),
) -> List[HourlyAverageOut]:
    return [HourlyAverageOut.from_average(a) for a in dashboard.hourly_averages(start, end)]


@router.post(
    "/batches",
    response_model=BatchResponse,
    summary="Decode an ad-hoc batch of raw uplink records.",
)
def process_batch(
    records: Any = Body(..., description="JSON array of raw uplink records."),
    dashboard: DashboardService = Depends(get_dashboard),
) -> BatchResponse:
    try:
        result = dashboard.ingest(records)
    except BatchInputError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return BatchResponse(
        summary=BatchCounters.from_summary(result.summary),
        measurements=[MeasurementOut.from_measurement(m) for m in result.measurements],
        rejections=[RejectionOut.from_rejection(r) for r in result.rejections],
    )


@router.get("/export.csv", summary="Download the current feed as semicolon-separated CSV.")
def export_csv(
    start: Optional[datetime] = StartQuery,
    end: Optional[datetime] = EndQuery,
    dashboard: DashboardService = Depends(get_dashboard),
) -> Response:
    return Response(
        content=dashboard.export_csv(start, end),
        media_type=CSV_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{_export_filename("csv")}"'},
    )


@router.get("/export.xlsx", summary="Download the current feed as an Excel workbook.")
def export_xlsx(
    start: Optional[datetime] = StartQuery,
    end: Optional[datetime] = EndQuery,
    dashboard: DashboardService = Depends(get_dashboard),
) -> Response:
    return Response(
        content=dashboard.export_xlsx(start, end),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{_export_filename("xlsx")}"'},
    )


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status and /ui for the dashboard."}
