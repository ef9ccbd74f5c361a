import base64
import logging
from datetime import datetime, timezone

import pytest

from models.records import SOURCE_LIVE
from services.decoder import encode_payload
from services.processor import BatchInputError, BatchProcessor, RejectReason

BATCH_STARTED_AT = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _payload(tag: int, value: float) -> str:
    return base64.b64encode(encode_payload(tag, value)).decode("ascii")


def _record(tag: int = 1, value: float = 450.5, time: str = "2024-01-01T10:15:30Z", **extra) -> dict:
    record = {"data": _payload(tag, value), "time": time}
    record.update(extra)
    return record


@pytest.fixture()
def processor() -> BatchProcessor:
    return BatchProcessor()


def test_valid_filtered_and_malformed_records(processor: BatchProcessor) -> None:
    records = [
        _record(tag=1, value=450.5),
        _record(tag=2, value=21.0),
        {"time": "2024-01-01T10:20:00Z"},
    ]

    result = processor.process_batch(records, batch_started_at=BATCH_STARTED_AT)

    assert len(result.measurements) == 1
    assert result.summary.total_count == 3
    assert result.summary.error_count == 1
    assert result.summary.valid_count == 1
    assert result.summary.filtered_count == 1

    measurement = result.measurements[0]
    assert measurement.value == 450.5
    assert measurement.sensor_tag == 1
    assert measurement.source == SOURCE_LIVE
    assert measurement.raw_data == "AUPhQAA="
    assert measurement.payload_hex == "01 43 E1 40 00"

    reasons = [(r.index, r.reason) for r in result.rejections]
    assert reasons == [
        (1, RejectReason.unsupported_sensor_type),
        (2, RejectReason.malformed_record),
    ]
    assert [r.index for r in result.rejections if r.reason.is_error] == [2]


def test_empty_batch_has_zero_counters(processor: BatchProcessor) -> None:
    result = processor.process_batch([])

    assert result.measurements == []
    assert result.summary.total_count == 0
    assert result.summary.error_count == 0
    assert result.summary.valid_count == 0


@pytest.mark.parametrize(
    "record, reason",
    [
        ("not-an-object", RejectReason.malformed_record),
        ({"data": 12345, "time": "2024-01-01T00:00:00Z"}, RejectReason.malformed_record),
        ({"data": "", "time": "2024-01-01T00:00:00Z"}, RejectReason.malformed_record),
        (
            {"data": "AUPhQAA=", "time": "2024-01-01T00:00:00Z", "code": "UPLINK_CODEC"},
            RejectReason.malformed_record,
        ),
        ({"data": "!!not base64!!", "time": "2024-01-01T00:00:00Z"}, RejectReason.decode_failure),
        ({"data": "AUM=", "time": "2024-01-01T00:00:00Z"}, RejectReason.decode_failure),
        ({"data": "AUPhQAA=", "time": "yesterday"}, RejectReason.unparsable_timestamp),
        ({"data": "AUPhQAA="}, RejectReason.unparsable_timestamp),
        (_record(value=150.0), RejectReason.out_of_range_value),
        (_record(value=float("nan")), RejectReason.out_of_range_value),
    ],
)
def test_rejected_records_are_counted_as_errors(
    processor: BatchProcessor, record, reason: RejectReason
) -> None:
    result = processor.process_batch([record, _record()])

    assert result.summary.total_count == 2
    assert result.summary.error_count == 1
    assert result.summary.valid_count == 1
    assert result.summary.filtered_count == 0
    assert result.rejections[0].reason is reason
    assert result.rejections[0].index == 0


def test_counters_always_add_up(processor: BatchProcessor) -> None:
    records = [
        _record(),
        _record(tag=4, value=12.0),
        {"data": "AUM="},
        _record(value=9000.0),
        None,
        _record(time="2024-01-01T11:00:00+02:00"),
    ]

    summary = processor.process_batch(records).summary

    assert summary.total_count == len(records)
    assert summary.total_count == summary.error_count + summary.valid_count + summary.filtered_count
    assert summary.valid_count == 2
    assert summary.filtered_count == 1


def test_unpadded_base64_payload_is_accepted(processor: BatchProcessor) -> None:
    result = processor.process_batch([{"data": "AUPhQAA", "time": "2024-01-01T10:15:30Z"}])

    assert result.summary.error_count == 0
    measurement = result.measurements[0]
    assert measurement.value == 450.5
    assert measurement.raw_data == "AUPhQAA"
    assert measurement.payload_hex == "01 43 E1 40 00"


def test_nanosecond_timestamp_truncated_to_milliseconds(processor: BatchProcessor) -> None:
    result = processor.process_batch([_record(time="2024-01-01T10:15:30.123456789Z")])

    assert result.summary.error_count == 0
    measurement = result.measurements[0]
    assert measurement.date_obj == datetime(2024, 1, 1, 10, 15, 30, 123000, tzinfo=timezone.utc)
    assert measurement.timestamp == "2024-01-01T10:15:30.123+00:00"


def test_timestamp_field_used_when_time_missing(processor: BatchProcessor) -> None:
    record = {"data": _payload(1, 600.0), "timestamp": "2024-02-03T04:05:06+01:00"}

    measurement = processor.process_batch([record]).measurements[0]

    assert measurement.date_obj == datetime(2024, 2, 3, 3, 5, 6, tzinfo=timezone.utc)


def test_naive_timestamp_treated_as_utc(processor: BatchProcessor) -> None:
    measurement = processor.process_batch([_record(time="2024-01-01 08:00:00")]).measurements[0]

    assert measurement.date_obj == datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)


def test_output_preserves_input_order(processor: BatchProcessor) -> None:
    records = [
        _record(value=700.0, time="2024-01-01T12:00:00Z"),
        _record(value=500.0, time="2024-01-01T08:00:00Z"),
        _record(value=600.0, time="2024-01-01T10:00:00Z"),
    ]

    values = [m.value for m in processor.process_batch(records).measurements]

    assert values == [700.0, 500.0, 600.0]


def test_ids_prefer_upstream_and_stay_unique(processor: BatchProcessor) -> None:
    records = [
        _record(deduplicationId="dedup-1", id="ignored"),
        _record(id="abc"),
        _record(id="abc"),
        _record(),
    ]

    result = processor.process_batch(records, batch_started_at=BATCH_STARTED_AT)
    ids = [m.id for m in result.measurements]

    assert ids == [
        "dedup-1",
        "abc",
        "20240101T120000000000Z-2",
        "20240101T120000000000Z-3",
    ]
    assert len(set(ids)) == len(ids)


def test_synthetic_ids_are_reproducible(processor: BatchProcessor) -> None:
    records = [_record(), _record()]

    first = processor.process_batch(records, batch_started_at=BATCH_STARTED_AT)
    second = processor.process_batch(records, batch_started_at=BATCH_STARTED_AT)

    assert [m.id for m in first.measurements] == [m.id for m in second.measurements]


def test_accepted_tags_can_be_widened() -> None:
    processor = BatchProcessor(accepted_tags=(1, 2))

    result = processor.process_batch([_record(tag=2, value=21.0)])

    assert result.summary.valid_count == 1
    assert result.measurements[0].sensor_type == "Temperature"


@pytest.mark.parametrize("payload", [{"data": "AUPhQAA="}, "records", None, 42])
def test_non_list_batch_raises(processor: BatchProcessor, payload) -> None:
    with pytest.raises(BatchInputError):
        processor.process_batch(payload)


def test_processor_logs_skipped_records(processor: BatchProcessor, caplog) -> None:
    records = [_record(), {"data": "AUM=", "time": "2024-01-01T00:00:00Z"}]

    with caplog.at_level(logging.WARNING, logger="services.processor"):
        processor.process_batch(records)

    warnings = [r for r in caplog.records if r.name == "services.processor" and r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "Skipping record" in warnings[0].getMessage()
    assert getattr(warnings[0], "record_index", None) == 1
    assert getattr(warnings[0], "reason", None) == "decode_failure"


def test_filtered_records_are_not_logged_as_warnings(processor: BatchProcessor, caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="services.processor"):
        processor.process_batch([_record(tag=5, value=30.0)])

    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


def test_input_records_are_not_mutated(processor: BatchProcessor) -> None:
    record = _record(id="keep")
    snapshot = dict(record)

    processor.process_batch([record])

    assert record == snapshot
