"""Dashboard orchestration: loading, caching and querying the sensor feed."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, tzinfo
from pathlib import Path
from threading import Lock
from typing import Any, Callable, List, Optional

from app.schemas import BatchCounters, FeedSnapshot, MeasurementOut, RejectionOut
from datastore.feed_store import FeedStore
from models.records import (
    CO2_TAG,
    DecodedMeasurement,
    HourlyAverage,
    MeasurementStatistics,
    ValueBounds,
)
from services.aggregator import Aggregator
from services.exporter import build_csv, build_xlsx
from services.processor import BatchProcessor, BatchResult
from services.sources import SensorFeed, SensorFeedLoader, UplinkClient
from settings import Settings

logger = logging.getLogger(__name__)


def snapshot_from_feed(feed: SensorFeed) -> FeedSnapshot:
    stamp = feed.fetched_at.strftime("%Y%m%dT%H%M%S%f")
    return FeedSnapshot(
        snapshot_id=f"{feed.source.value}-{stamp}",
        source=feed.source,
        fetched_at=feed.fetched_at,
        fallback_reason=feed.fallback_reason,
        summary=BatchCounters.from_summary(feed.summary),
        measurements=[MeasurementOut.from_measurement(m) for m in feed.measurements],
        rejections=[RejectionOut.from_rejection(r) for r in feed.rejections],
    )


@dataclass(frozen=True)
class DashboardView:
    """Everything the dashboard page shows, derived from a single snapshot."""

    snapshot: FeedSnapshot
    series: List[DecodedMeasurement]
    statistics: MeasurementStatistics
    hourly: List[HourlyAverage]


class DashboardService:
    """Serves filtered views over the most recently loaded feed.

    A feed is reloaded when none has been loaded yet or the last one is older
    than ``refresh_interval`` seconds.
    """

    def __init__(
        self,
        loader: SensorFeedLoader,
        store: FeedStore,
        aggregator: Aggregator,
        refresh_interval: float = 60.0,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.loader = loader
        self.store = store
        self.aggregator = aggregator
        self.refresh_interval = refresh_interval
        self._monotonic = monotonic
        self._loaded_at: Optional[float] = None
        self._refresh_lock = Lock()

    def refresh(self) -> FeedSnapshot:
        with self._refresh_lock:
            return self._reload()

    def current_snapshot(self) -> FeedSnapshot:
        with self._refresh_lock:
            snapshot = self.store.latest()
            if snapshot is None or self._is_stale():
                return self._reload()
            return snapshot

    def measurements(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[DecodedMeasurement]:
        """Time-ordered measurements of the current feed within ``[start, end]``."""
        snapshot = self.current_snapshot()
        return self._select(snapshot, start, end)

    def hourly_averages(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        tz: Optional[tzinfo] = None,
    ) -> List[HourlyAverage]:
        return self.aggregator.hourly_averages(self.measurements(start, end), tz=tz)

    def view(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        tz: Optional[tzinfo] = None,
    ) -> DashboardView:
        snapshot = self.current_snapshot()
        series = self._select(snapshot, start, end)
        return DashboardView(
            snapshot=snapshot,
            series=series,
            statistics=self.aggregator.statistics(series),
            hourly=self.aggregator.hourly_averages(series, tz=tz),
        )

    def export_csv(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> str:
        snapshot = self.current_snapshot()
        return build_csv(self._select(snapshot, start, end), snapshot.summary.to_summary())

    def export_xlsx(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> bytes:
        snapshot = self.current_snapshot()
        return build_xlsx(self._select(snapshot, start, end), snapshot.summary.to_summary())

    def ingest(self, records: Any) -> BatchResult:
        """Process an ad-hoc batch without replacing the current feed."""
        return self.loader.processor.process_batch(records)

    def close(self) -> None:
        self.loader.close()

    def _select(
        self,
        snapshot: FeedSnapshot,
        start: Optional[datetime],
        end: Optional[datetime],
    ) -> List[DecodedMeasurement]:
        series = self.aggregator.time_series(item.to_measurement() for item in snapshot.measurements)
        return self.aggregator.filter_by_date_range(series, start, end)

    def _is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return self._monotonic() - self._loaded_at >= self.refresh_interval

    def _reload(self) -> FeedSnapshot:
        feed = self.loader.load()
        snapshot = snapshot_from_feed(feed)
        self.store.put(snapshot)
        self._loaded_at = self._monotonic()
        logger.info(
            "Loaded sensor feed",
            extra={
                "snapshot_id": snapshot.snapshot_id,
                "source": snapshot.source.value,
                "total_count": feed.summary.total_count,
                "error_count": feed.summary.error_count,
                "valid_count": feed.summary.valid_count,
            },
        )
        return snapshot


def build_dashboard(settings: Settings) -> DashboardService:
    """Wire a dashboard service from configuration."""
    bounds = {CO2_TAG: ValueBounds(minimum=settings.co2_min_ppm, maximum=settings.co2_max_ppm)}
    processor = BatchProcessor(bounds=bounds)
    client = (
        UplinkClient(settings.uplink_endpoint_url, timeout=settings.uplink_timeout)
        if settings.uplink_endpoint_url
        else None
    )
    rng = random.Random(settings.mock_seed) if settings.mock_seed is not None else None
    loader = SensorFeedLoader(
        processor=processor,
        client=client,
        mock_days=settings.mock_days,
        use_mock=settings.use_mock_data,
        rng=rng,
    )
    store_path = Path(settings.store_path) if settings.store_path else None
    store = FeedStore(name="feed", persistence_path=store_path)
    return DashboardService(
        loader=loader,
        store=store,
        aggregator=Aggregator(high_threshold=settings.co2_high_ppm),
        refresh_interval=settings.refresh_interval,
    )
