"""Validation and decoding of raw uplink batches."""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Collection, List, Mapping, Optional, Set, Tuple

from models.records import (
    CO2_TAG,
    SOURCE_LIVE,
    BatchSummary,
    DecodedMeasurement,
    ValueBounds,
)
from services.decoder import (
    DEFAULT_BOUNDS,
    InsufficientLength,
    OutOfRangeValue,
    decode_payload,
    payload_to_hex,
)

logger = logging.getLogger(__name__)

UPLINK_CODEC_ERROR = "UPLINK_CODEC"

_FRACTION_PATTERN = re.compile(r"(\.\d{3})\d+")


def _pad_base64(encoded: str) -> str:
    # Some gateways strip the trailing "=" padding.
    stripped = encoded.rstrip("=")
    return stripped + "=" * (-len(stripped) % 4)


class RejectReason(str, Enum):
    """Why a raw record did not become a measurement."""

    malformed_record = "malformed_record"
    decode_failure = "decode_failure"
    out_of_range_value = "out_of_range_value"
    unparsable_timestamp = "unparsable_timestamp"
    unsupported_sensor_type = "unsupported_sensor_type"

    @property
    def is_error(self) -> bool:
        return self is not RejectReason.unsupported_sensor_type


class BatchInputError(ValueError):
    """Raised when a batch as a whole cannot be processed."""


@dataclass(frozen=True, slots=True)
class RecordRejection:
    index: int
    reason: RejectReason
    detail: str


@dataclass(frozen=True)
class BatchResult:
    measurements: List[DecodedMeasurement] = field(default_factory=list)
    summary: BatchSummary = field(default_factory=BatchSummary)
    rejections: List[RecordRejection] = field(default_factory=list)


class _Rejected(Exception):
    def __init__(self, reason: RejectReason, detail: str) -> None:
        super().__init__(detail)
        self.reason = reason
        self.detail = detail


class BatchProcessor:
    """Turns untrusted uplink records into validated measurements.

    Per-record failures are counted and logged, never raised. Only a batch
    that is not a list at all raises ``BatchInputError``.
    """

    def __init__(
        self,
        bounds: Mapping[int, ValueBounds] = DEFAULT_BOUNDS,
        accepted_tags: Collection[int] = (CO2_TAG,),
    ) -> None:
        self.bounds = dict(bounds)
        self.accepted_tags = frozenset(accepted_tags)

    def process_batch(
        self,
        records: Any,
        batch_started_at: Optional[datetime] = None,
        source: str = SOURCE_LIVE,
    ) -> BatchResult:
        if not isinstance(records, list):
            raise BatchInputError(
                f"Expected a JSON array of records, got {type(records).__name__}."
            )

        started_at = batch_started_at or datetime.now(timezone.utc)
        batch_stamp = started_at.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")

        measurements: list[DecodedMeasurement] = []
        rejections: list[RecordRejection] = []
        seen_ids: Set[str] = set()

        for index, record in enumerate(records):
            try:
                measurement = self._process_record(index, record, batch_stamp, seen_ids, source)
            except _Rejected as rejected:
                rejections.append(
                    RecordRejection(index=index, reason=rejected.reason, detail=rejected.detail)
                )
                log = logger.warning if rejected.reason.is_error else logger.debug
                log(
                    "Skipping record: %s",
                    rejected.detail,
                    extra={"record_index": index, "reason": rejected.reason.value},
                )
                continue

            seen_ids.add(measurement.id)
            measurements.append(measurement)

        error_count = sum(1 for rejection in rejections if rejection.reason.is_error)
        summary = BatchSummary(
            total_count=len(records),
            error_count=error_count,
            valid_count=len(measurements),
            filtered_count=len(rejections) - error_count,
        )
        logger.info(
            "Processed uplink batch",
            extra={
                "source": source,
                "total_count": summary.total_count,
                "error_count": summary.error_count,
                "valid_count": summary.valid_count,
                "filtered_count": summary.filtered_count,
            },
        )
        return BatchResult(measurements=measurements, summary=summary, rejections=rejections)

    def _process_record(
        self,
        index: int,
        record: Any,
        batch_stamp: str,
        seen_ids: Set[str],
        source: str,
    ) -> DecodedMeasurement:
        encoded, timestamp_raw = self._validate_record(record)

        try:
            raw = base64.b64decode(_pad_base64(encoded), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise _Rejected(RejectReason.decode_failure, "invalid base64 payload") from exc

        try:
            date_obj = self._parse_timestamp(timestamp_raw)
        except ValueError as exc:
            raise _Rejected(RejectReason.unparsable_timestamp, "invalid timestamp") from exc

        try:
            decoded = decode_payload(raw, self.bounds)
        except InsufficientLength as exc:
            raise _Rejected(RejectReason.decode_failure, str(exc)) from exc
        except OutOfRangeValue as exc:
            raise _Rejected(RejectReason.out_of_range_value, str(exc)) from exc

        if decoded.sensor_tag not in self.accepted_tags:
            raise _Rejected(
                RejectReason.unsupported_sensor_type,
                f"sensor type 0x{decoded.sensor_tag:02X} not displayed",
            )

        return DecodedMeasurement(
            id=self._assign_id(record, index, batch_stamp, seen_ids),
            timestamp=date_obj.isoformat(timespec="milliseconds"),
            sensor_tag=decoded.sensor_tag,
            value=decoded.value,
            date_obj=date_obj,
            raw_data=encoded,
            payload_hex=payload_to_hex(raw),
            source=source,
        )

    @staticmethod
    def _validate_record(record: Any) -> Tuple[str, Any]:
        if not isinstance(record, dict):
            raise _Rejected(RejectReason.malformed_record, "record is not an object")

        if record.get("code") == UPLINK_CODEC_ERROR:
            raise _Rejected(RejectReason.malformed_record, "upstream codec failure")

        encoded = record.get("data")
        if not isinstance(encoded, str) or not encoded.strip():
            raise _Rejected(RejectReason.malformed_record, "missing data field")

        timestamp_raw = record.get("time")
        if timestamp_raw is None:
            timestamp_raw = record.get("timestamp")
        return encoded.strip(), timestamp_raw

    @staticmethod
    def _assign_id(record: dict, index: int, batch_stamp: str, seen_ids: Set[str]) -> str:
        for key in ("deduplicationId", "id"):
            candidate = record.get(key)
            if isinstance(candidate, (str, int)) and not isinstance(candidate, bool):
                upstream_id = str(candidate).strip()
                if upstream_id and upstream_id not in seen_ids:
                    return upstream_id
        return f"{batch_stamp}-{index}"

    @staticmethod
    def _parse_timestamp(value: Any) -> datetime:
        if not isinstance(value, str):
            raise ValueError("Timestamp is not a string.")

        candidate = value.strip()
        if not candidate:
            raise ValueError("Timestamp is empty.")

        # Gateways emit nanosecond fractions; keep millisecond precision.
        candidate = _FRACTION_PATTERN.sub(r"\1", candidate, count=1)
        if candidate.endswith(("Z", "z")):
            candidate = candidate[:-1] + "+00:00"

        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError as exc:
            raise ValueError("Invalid timestamp format") from exc

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)

        return parsed.astimezone(timezone.utc)
