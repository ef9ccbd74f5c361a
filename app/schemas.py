"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from models.records import (
    BatchSummary,
    DecodedMeasurement,
    HourlyAverage,
    MeasurementStatistics,
)
from services.processor import RecordRejection
from services.sources import FeedSource


class MeasurementOut(BaseModel):
    """A decoded reading as exposed to API consumers."""

    id: str
    timestamp: str = Field(..., description="ISO-8601 timestamp with millisecond precision.")
    date: datetime
    sensor_tag: int = Field(..., ge=0, le=255)
    sensor_id: str
    sensor_type: str
    value: float
    raw_data: str = ""
    payload_hex: str = ""
    source: FeedSource

    @classmethod
    def from_measurement(cls, measurement: DecodedMeasurement) -> "MeasurementOut":
        return cls(
            id=measurement.id,
            timestamp=measurement.timestamp,
            date=measurement.date_obj,
            sensor_tag=measurement.sensor_tag,
            sensor_id=measurement.sensor_id,
            sensor_type=measurement.sensor_type,
            value=measurement.value,
            raw_data=measurement.raw_data,
            payload_hex=measurement.payload_hex,
            source=FeedSource(measurement.source),
        )

    def to_measurement(self) -> DecodedMeasurement:
        return DecodedMeasurement(
            id=self.id,
            timestamp=self.timestamp,
            sensor_tag=self.sensor_tag,
            value=self.value,
            date_obj=self.date,
            raw_data=self.raw_data,
            payload_hex=self.payload_hex,
            source=self.source.value,
        )


class HourlyAverageOut(BaseModel):
    hour_bucket: datetime
    average: float
    sample_count: int = Field(..., ge=1)

    @classmethod
    def from_average(cls, average: HourlyAverage) -> "HourlyAverageOut":
        return cls(
            hour_bucket=average.hour_bucket,
            average=average.average,
            sample_count=average.sample_count,
        )


class BatchCounters(BaseModel):
    """Summary counters; ``total == errors + valid + filtered``."""

    total: int = Field(..., ge=0)
    errors: int = Field(..., ge=0)
    valid: int = Field(..., ge=0)
    filtered: int = Field(default=0, ge=0)

    @classmethod
    def from_summary(cls, summary: BatchSummary) -> "BatchCounters":
        return cls(
            total=summary.total_count,
            errors=summary.error_count,
            valid=summary.valid_count,
            filtered=summary.filtered_count,
        )

    def to_summary(self) -> BatchSummary:
        return BatchSummary(
            total_count=self.total,
            error_count=self.errors,
            valid_count=self.valid,
            filtered_count=self.filtered,
        )


class StatisticsOut(BaseModel):
    count: int = Field(default=0, ge=0)
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    mean_value: Optional[float] = None
    latest_value: Optional[float] = None
    latest_at: Optional[datetime] = None
    latest_is_high: Optional[bool] = Field(
        default=None, description="True when the latest reading is above the high CO₂ level."
    )
    high_threshold: Optional[float] = None

    @classmethod
    def from_statistics(
        cls, stats: MeasurementStatistics, high_threshold: Optional[float] = None
    ) -> "StatisticsOut":
        return cls(
            count=stats.count,
            min_value=stats.min_value,
            max_value=stats.max_value,
            mean_value=stats.mean_value,
            latest_value=stats.latest_value,
            latest_at=stats.latest_at,
            latest_is_high=stats.latest_is_high,
            high_threshold=high_threshold,
        )


class RejectionOut(BaseModel):
    """Details about a record that was skipped."""

    index: int = Field(..., ge=0)
    reason: str
    detail: str

    @classmethod
    def from_rejection(cls, rejection: RecordRejection) -> "RejectionOut":
        return cls(
            index=rejection.index,
            reason=rejection.reason.value,
            detail=rejection.detail,
        )


class FeedSnapshot(BaseModel):
    """A loaded feed as kept by the feed store."""

    snapshot_id: str
    source: FeedSource
    fetched_at: datetime
    fallback_reason: Optional[str] = None
    summary: BatchCounters
    measurements: List[MeasurementOut] = Field(default_factory=list)
    rejections: List[RejectionOut] = Field(default_factory=list)

    @property
    def is_demo(self) -> bool:
        return self.source is FeedSource.mock


class FeedResponse(BaseModel):
    """Feed metadata returned by ``/feed``."""

    snapshot_id: str
    source: FeedSource
    is_demo: bool = Field(..., description="True when the readings are generated demonstration data.")
    fallback_reason: Optional[str] = None
    fetched_at: datetime
    summary: BatchCounters
    statistics: StatisticsOut


class BatchResponse(BaseModel):
    """Result of processing an ad-hoc batch of raw uplink records."""

    summary: BatchCounters
    measurements: List[MeasurementOut] = Field(default_factory=list)
    rejections: List[RejectionOut] = Field(default_factory=list)
