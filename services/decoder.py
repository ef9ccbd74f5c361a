"""Binary payload codec for sensor uplinks.

A payload is five bytes: a one-byte sensor type tag followed by the
measurement as a big-endian IEEE-754 binary32.
"""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass
from typing import Mapping

from models.records import CO2_TAG, ValueBounds

PAYLOAD_LENGTH = 5
_VALUE_FORMAT = ">f"
_VALUE_OFFSET = 1

DEFAULT_BOUNDS: Mapping[int, ValueBounds] = {
    CO2_TAG: ValueBounds(minimum=200.0, maximum=5000.0),
}


class DecodeError(ValueError):
    """Base class for payloads that cannot yield a usable measurement."""


class InsufficientLength(DecodeError):
    def __init__(self, length: int) -> None:
        super().__init__(
            f"Payload has {length} byte(s), expected at least {PAYLOAD_LENGTH}."
        )
        self.length = length


class OutOfRangeValue(DecodeError):
    def __init__(self, sensor_tag: int, value: float, bounds: ValueBounds | None = None) -> None:
        if bounds is None:
            message = f"Sensor 0x{sensor_tag:02X} value {value!r} is not finite."
        else:
            message = (
                f"Sensor 0x{sensor_tag:02X} value {value!r} outside "
                f"[{bounds.minimum:g}, {bounds.maximum:g}]."
            )
        super().__init__(message)
        self.sensor_tag = sensor_tag
        self.value = value


@dataclass(frozen=True, slots=True)
class DecodedPayload:
    sensor_tag: int
    value: float


def decode_payload(
    raw: bytes, bounds: Mapping[int, ValueBounds] = DEFAULT_BOUNDS
) -> DecodedPayload:
    """Decode a raw payload into its sensor tag and measurement.

    Bytes past the fifth are ignored. Finiteness and range are only checked
    for tags that have an entry in ``bounds``; other tags decode as-is and
    are left for the caller to filter.
    """
    if len(raw) < PAYLOAD_LENGTH:
        raise InsufficientLength(len(raw))

    sensor_tag = raw[0]
    (value,) = struct.unpack_from(_VALUE_FORMAT, raw, _VALUE_OFFSET)

    tag_bounds = bounds.get(sensor_tag)
    if tag_bounds is not None:
        if not math.isfinite(value):
            raise OutOfRangeValue(sensor_tag, value)
        if not tag_bounds.contains(value):
            raise OutOfRangeValue(sensor_tag, value, tag_bounds)

    return DecodedPayload(sensor_tag=sensor_tag, value=value)


def encode_payload(sensor_tag: int, value: float) -> bytes:
    """Build a payload in the same layout ``decode_payload`` reads."""
    if not 0 <= sensor_tag <= 0xFF:
        raise ValueError(f"Sensor tag {sensor_tag} does not fit in one byte.")
    return bytes([sensor_tag]) + struct.pack(_VALUE_FORMAT, value)


def payload_to_hex(raw: bytes) -> str:
    return " ".join(f"{byte:02X}" for byte in raw)
