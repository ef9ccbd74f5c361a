"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional


SOURCE_LIVE = "live"
SOURCE_MOCK = "mock"


@dataclass(frozen=True, slots=True)
class ValueBounds:
    """Inclusive physical range accepted for a sensor type."""

    minimum: float
    maximum: float

    def contains(self, value: float) -> bool:
        return self.minimum <= value <= self.maximum


@dataclass(frozen=True, slots=True)
class SensorType:
    tag: int
    name: str
    unit: str


CO2_TAG = 1

SENSOR_TYPES: Dict[int, SensorType] = {
    1: SensorType(tag=1, name="CO₂", unit="ppm"),
    2: SensorType(tag=2, name="Temperature", unit="°C"),
    3: SensorType(tag=3, name="Humidity", unit="%RH"),
    4: SensorType(tag=4, name="PM2.5", unit="µg/m³"),
    5: SensorType(tag=5, name="PM10", unit="µg/m³"),
}

UNKNOWN_SENSOR_NAME = "Unknown"


def sensor_type_name(tag: int) -> str:
    sensor_type = SENSOR_TYPES.get(tag)
    return sensor_type.name if sensor_type else UNKNOWN_SENSOR_NAME


@dataclass(frozen=True, slots=True)
class DecodedMeasurement:
    """A validated reading decoded from a single uplink record.

    ``date_obj`` is always derived from ``timestamp`` by the producer and is
    never written back.
    """

    id: str
    timestamp: str
    sensor_tag: int
    value: float
    date_obj: datetime
    raw_data: str = ""
    payload_hex: str = ""
    source: str = SOURCE_LIVE

    @property
    def sensor_id(self) -> str:
        return f"0x{self.sensor_tag:02X}"

    @property
    def sensor_type(self) -> str:
        return sensor_type_name(self.sensor_tag)


@dataclass(frozen=True, slots=True)
class HourlyAverage:
    """Mean value of all measurements falling in one calendar hour."""

    hour_bucket: datetime
    average: float
    sample_count: int


@dataclass(frozen=True, slots=True)
class BatchSummary:
    """Counters for one processed batch.

    ``total_count == error_count + valid_count + filtered_count`` always holds.
    """

    total_count: int = 0
    error_count: int = 0
    valid_count: int = 0
    filtered_count: int = 0


@dataclass(frozen=True, slots=True)
class MeasurementStatistics:
    count: int = 0
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    mean_value: Optional[float] = None
    latest_value: Optional[float] = None
    latest_at: Optional[datetime] = None
    latest_is_high: Optional[bool] = None
