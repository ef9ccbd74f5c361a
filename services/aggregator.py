"""Aggregation logic for decoded measurements."""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from models.records import DecodedMeasurement, HourlyAverage, MeasurementStatistics

_TWO_PLACES = Decimal("0.01")

DEFAULT_HIGH_THRESHOLD = 1000.0


def round_half_away(value: float, places: Decimal = _TWO_PLACES) -> float:
    """Round using half-away-from-zero on the shortest decimal repr of ``value``.

    ``round()`` is banker's rounding on the binary value, so 2.675 becomes
    2.67 there but 2.68 here.
    """
    return float(Decimal(repr(value)).quantize(places, rounding=ROUND_HALF_UP))


def _as_aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class Aggregator:
    """Pure aggregation component that can be unit tested in isolation.

    Nothing here mutates its input; every method builds a new list.
    A latest reading strictly above ``high_threshold`` is flagged as high.
    """

    def __init__(self, high_threshold: float = DEFAULT_HIGH_THRESHOLD) -> None:
        self.high_threshold = high_threshold

    def time_series(self, measurements: Iterable[DecodedMeasurement]) -> List[DecodedMeasurement]:
        return sorted(measurements, key=lambda measurement: measurement.date_obj)

    def hourly_averages(
        self,
        measurements: Iterable[DecodedMeasurement],
        tz: Optional[tzinfo] = None,
    ) -> List[HourlyAverage]:
        """Average values per calendar hour, in ``tz`` or the local zone."""
        buckets: Dict[datetime, Tuple[float, int]] = {}
        for measurement in measurements:
            bucket = measurement.date_obj.astimezone(tz).replace(
                minute=0, second=0, microsecond=0
            )
            total, count = buckets.get(bucket, (0.0, 0))
            buckets[bucket] = (total + measurement.value, count + 1)

        return [
            HourlyAverage(
                hour_bucket=bucket,
                average=round_half_away(total / count),
                sample_count=count,
            )
            for bucket, (total, count) in sorted(buckets.items())
        ]

    def filter_by_date_range(
        self,
        measurements: Sequence[DecodedMeasurement],
        start: Optional[datetime],
        end: Optional[datetime],
    ) -> List[DecodedMeasurement]:
        """Keep measurements in ``[start, end]``; an open bound disables filtering."""
        if start is None or end is None:
            return list(measurements)

        lower = _as_aware(start)
        upper = _as_aware(end)
        return [
            measurement
            for measurement in measurements
            if lower <= measurement.date_obj <= upper
        ]

    def statistics(self, measurements: Iterable[DecodedMeasurement]) -> MeasurementStatistics:
        count = 0
        total = 0.0
        min_value: float | None = None
        max_value: float | None = None
        latest: DecodedMeasurement | None = None

        for measurement in measurements:
            count += 1
            value = measurement.value
            total += value
            if min_value is None or value < min_value:
                min_value = value
            if max_value is None or value > max_value:
                max_value = value
            if latest is None or measurement.date_obj >= latest.date_obj:
                latest = measurement

        if not count or latest is None:
            return MeasurementStatistics()

        return MeasurementStatistics(
            count=count,
            min_value=min_value,
            max_value=max_value,
            mean_value=round_half_away(total / count),
            latest_value=latest.value,
            latest_at=latest.date_obj,
            latest_is_high=latest.value > self.high_threshold,
        )
