"""CSV and XLSX exports of decoded measurements."""

from __future__ import annotations

import csv
import io
from typing import Iterable, List, Sequence

from openpyxl import Workbook
from openpyxl.styles import Font

from models.records import BatchSummary, DecodedMeasurement

CSV_DELIMITER = ";"
COLUMNS = (
    "Sensor ID",
    "Type",
    "Raw Data",
    "Preprocessed Data (hex)",
    "Processed Value",
    "Date",
)
SUMMARY_LABELS = (
    "Total objects received",
    "Records with errors",
    "Records without errors",
)
CSV_MEDIA_TYPE = "text/csv; charset=utf-8"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def format_value(value: float) -> str:
    return f"{value:.6f}"


def _summary_rows(summary: BatchSummary, row_count: int) -> List[tuple[str, int]]:
    # The third line counts exported rows, not the batch's valid_count.
    counts = (summary.total_count, summary.error_count, row_count)
    return list(zip(SUMMARY_LABELS, counts))


def build_csv(measurements: Iterable[DecodedMeasurement], summary: BatchSummary) -> str:
    """Render the semicolon-separated export.

    Layout: three summary lines, a blank line, the column header, then one
    row per measurement.
    """
    rows = list(measurements)
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=CSV_DELIMITER, lineterminator="\n")
    for label, count in _summary_rows(summary, len(rows)):
        writer.writerow([label, count])
    writer.writerow([])
    writer.writerow(COLUMNS)
    for measurement in rows:
        writer.writerow(
            [
                measurement.sensor_id,
                measurement.sensor_type,
                measurement.raw_data,
                measurement.payload_hex,
                format_value(measurement.value),
                measurement.timestamp,
            ]
        )
    return buffer.getvalue()


def build_xlsx(measurements: Sequence[DecodedMeasurement], summary: BatchSummary) -> bytes:
    workbook = Workbook()
    summary_sheet = workbook.active
    summary_sheet.title = "Summary"
    for label, count in _summary_rows(summary, len(measurements)):
        summary_sheet.append([label, count])
    summary_sheet.column_dimensions["A"].width = 28

    data_sheet = workbook.create_sheet("Measurements")
    data_sheet.append(list(COLUMNS))
    for cell in data_sheet[1]:
        cell.font = Font(bold=True)
    for measurement in measurements:
        data_sheet.append(
            [
                measurement.sensor_id,
                measurement.sensor_type,
                measurement.raw_data,
                measurement.payload_hex,
                measurement.value,
                measurement.timestamp,
            ]
        )
    data_sheet.freeze_panes = "A2"

    output = io.BytesIO()
    workbook.save(output)
    return output.getvalue()
