"""Synthetic CO₂ readings shown when no live uplink data is available."""

from __future__ import annotations

import base64
import random
import struct
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from models.records import CO2_TAG, SOURCE_MOCK, DecodedMeasurement, ValueBounds
from services.decoder import DEFAULT_BOUNDS, encode_payload, payload_to_hex

SAMPLE_HOURS = (0, 3, 6, 9, 12, 15, 18, 21)
JITTER_PPM = 60.0
SPIKE_PROBABILITY = 0.05
SPIKE_RANGE_PPM = (600.0, 1200.0)


def base_level(hour: int) -> float:
    """Typical indoor CO₂ level for an hour of the day."""
    if hour < 6:
        return 420.0
    if hour < 9:
        return 650.0
    if hour < 18:
        return 850.0
    return 600.0


def _as_binary32(value: float) -> float:
    (narrowed,) = struct.unpack(">f", struct.pack(">f", value))
    return narrowed


def generate_mock(
    days: int,
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None,
    bounds: ValueBounds = DEFAULT_BOUNDS[CO2_TAG],
) -> List[DecodedMeasurement]:
    """Generate ``len(SAMPLE_HOURS)`` samples for each of the last ``days`` full days.

    Samples are returned in time order and are tagged ``source="mock"``.
    """
    if days <= 0:
        return []

    generator = rng or random.Random()
    reference = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    today = reference.replace(hour=0, minute=0, second=0, microsecond=0)

    measurements: list[DecodedMeasurement] = []
    for day_offset in range(days, 0, -1):
        day_start = today - timedelta(days=day_offset)
        for hour in SAMPLE_HOURS:
            value = base_level(hour) + generator.uniform(-JITTER_PPM, JITTER_PPM)
            if generator.random() < SPIKE_PROBABILITY:
                value += generator.uniform(*SPIKE_RANGE_PPM)
            value = min(max(value, bounds.minimum), bounds.maximum)
            value = _as_binary32(round(value, 2))

            payload = encode_payload(CO2_TAG, value)
            moment = day_start + timedelta(hours=hour)
            measurements.append(
                DecodedMeasurement(
                    id=f"mock-{len(measurements)}",
                    timestamp=moment.isoformat(timespec="milliseconds"),
                    sensor_tag=CO2_TAG,
                    value=value,
                    date_obj=moment,
                    raw_data=base64.b64encode(payload).decode("ascii"),
                    payload_hex=payload_to_hex(payload),
                    source=SOURCE_MOCK,
                )
            )

    return measurements
