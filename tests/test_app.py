import base64
import io
import random
from datetime import datetime, timezone
from typing import Iterator

import httpx
import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook

from app.main import create_app
from datastore.feed_store import FeedStore
from services.aggregator import Aggregator
from services.dashboard import DashboardService
from services.decoder import encode_payload
from services.processor import BatchProcessor
from services.sources import SensorFeedLoader, UplinkClient

NOW = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)


def _record(tag: int, value: float, time: str) -> dict:
    return {"data": base64.b64encode(encode_payload(tag, value)).decode("ascii"), "time": time}


def _build_dashboard(handler) -> DashboardService:
    loader = SensorFeedLoader(
        processor=BatchProcessor(),
        client=UplinkClient("https://gateway.example.test/todos", transport=httpx.MockTransport(handler)),
        mock_days=1,
        rng=random.Random(9),
        clock=lambda: NOW,
    )
    return DashboardService(loader=loader, store=FeedStore(), aggregator=Aggregator())


@pytest.fixture
def api_client() -> Iterator[TestClient]:
    records = [
        _record(1, 500.0, "2024-01-01T10:01:00Z"),
        _record(1, 600.0, "2024-01-01T10:14:00Z"),
        _record(2, 21.5, "2024-01-01T10:55:00Z"),
        _record(1, 700.0, "2024-01-01T11:30:00Z"),
        {"time": "2024-01-01T11:40:00Z"},
    ]
    dashboard = _build_dashboard(lambda request: httpx.Response(200, json=records))
    app = create_app(dashboard=dashboard)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def demo_client() -> Iterator[TestClient]:
    dashboard = _build_dashboard(lambda request: httpx.Response(502))
    app = create_app(dashboard=dashboard)
    with TestClient(app) as client:
        yield client


def test_lifespan_attaches_and_closes_dashboard() -> None:
    dashboard = _build_dashboard(lambda request: httpx.Response(200, json=[]))
    app = create_app(dashboard=dashboard)

    with TestClient(app):
        assert app.state.dashboard is dashboard

    assert not hasattr(app.state, "dashboard")
    assert dashboard.loader.client is not None
    assert dashboard.loader.client._client.is_closed


def test_health(api_client: TestClient) -> None:
    assert api_client.get("/health").json() == {"status": "ok"}
    assert api_client.get("/").json()["status"] == "ok"


def test_feed_reports_live_counters(api_client: TestClient) -> None:
    response = api_client.get("/feed")

    assert response.status_code == 200
    payload = response.json()
    assert payload["source"] == "live"
    assert payload["is_demo"] is False
    assert payload["summary"] == {"total": 5, "errors": 1, "valid": 3, "filtered": 1}
    assert payload["statistics"]["count"] == 3
    assert payload["statistics"]["mean_value"] == 600.0


def test_feed_flags_demo_data_when_uplink_fails(demo_client: TestClient) -> None:
    payload = demo_client.get("/feed").json()

    assert payload["source"] == "mock"
    assert payload["is_demo"] is True
    assert "502" in payload["fallback_reason"]

    measurements = demo_client.get("/measurements").json()
    assert measurements
    assert {item["source"] for item in measurements} == {"mock"}


def test_refresh_returns_new_feed(api_client: TestClient) -> None:
    response = api_client.post("/feed/refresh")

    assert response.status_code == 200
    assert response.json()["source"] == "live"


def test_measurements_are_sorted_and_filtered(api_client: TestClient) -> None:
    everything = api_client.get("/measurements").json()
    assert [item["value"] for item in everything] == [500.0, 600.0, 700.0]
    assert everything[0]["sensor_id"] == "0x01"
    assert everything[0]["sensor_type"] == "CO₂"

    ranged = api_client.get(
        "/measurements",
        params={"start": "2024-01-01T10:10:00Z", "end": "2024-01-01T11:30:00Z"},
    ).json()
    assert [item["value"] for item in ranged] == [600.0, 700.0]


def test_invalid_range_parameter_is_rejected(api_client: TestClient) -> None:
    response = api_client.get("/measurements", params={"start": "not-a-date"})

    assert response.status_code == 422


def test_hourly_averages(api_client: TestClient) -> None:
    rows = api_client.get("/hourly-averages").json()

    assert [row["average"] for row in rows] == [550.0, 700.0]
    assert [row["sample_count"] for row in rows] == [2, 1]


def test_process_batch_scenario(api_client: TestClient) -> None:
    batch = [
        _record(1, 450.5, "2024-01-01T10:15:30.123456789Z"),
        _record(2, 20.0, "2024-01-01T10:16:00Z"),
        {"time": "2024-01-01T10:17:00Z"},
    ]

    response = api_client.post("/batches", json=batch)

    assert response.status_code == 200
    payload = response.json()
    assert payload["summary"] == {"total": 3, "errors": 1, "valid": 1, "filtered": 1}
    assert len(payload["measurements"]) == 1
    assert payload["measurements"][0]["value"] == 450.5
    assert payload["measurements"][0]["timestamp"] == "2024-01-01T10:15:30.123+00:00"
    assert [r["reason"] for r in payload["rejections"]] == [
        "unsupported_sensor_type",
        "malformed_record",
    ]


def test_process_batch_rejects_non_array(api_client: TestClient) -> None:
    response = api_client.post("/batches", json={"data": "AUPhQAA="})

    assert response.status_code == 400
    assert "JSON array" in response.json()["detail"]


def test_export_csv(api_client: TestClient) -> None:
    response = api_client.get("/export.csv")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "attachment" in response.headers["content-disposition"]
    lines = response.text.splitlines()
    assert lines[0] == "Total objects received;5"
    assert lines[4] == "Sensor ID;Type;Raw Data;Preprocessed Data (hex);Processed Value;Date"
    assert lines[5].split(";")[4] == "500.000000"


def test_export_xlsx(api_client: TestClient) -> None:
    response = api_client.get("/export.xlsx")

    assert response.status_code == 200
    workbook = load_workbook(io.BytesIO(response.content))
    rows = list(workbook["Measurements"].iter_rows(values_only=True))
    assert len(rows) == 4


def test_dashboard_page_shows_live_data(api_client: TestClient) -> None:
    response = api_client.get("/ui")

    assert response.status_code == 200
    assert "CO₂ Sensor Dashboard" in response.text
    assert "Demonstration data" not in response.text
    assert "550.00" in response.text


def test_dashboard_page_flags_demo_data(demo_client: TestClient) -> None:
    response = demo_client.get("/ui")

    assert response.status_code == 200
    assert "Demonstration data" in response.text


def test_export_with_range_counts_only_exported_rows(api_client: TestClient) -> None:
    response = api_client.get(
        "/export.csv",
        params={"start": "2024-01-01T11:00:00Z", "end": "2024-01-01T12:00:00Z"},
    )

    lines = response.text.splitlines()
    assert lines[:3] == [
        "Total objects received;5",
        "Records with errors;1",
        "Records without errors;1",
    ]
    assert len(lines[5:]) == 1
    assert lines[5].split(";")[4] == "700.000000"


def test_dashboard_page_accepts_blank_filter_fields(api_client: TestClient) -> None:
    response = api_client.get("/ui", params={"start": "", "end": ""})

    assert response.status_code == 200
    assert "550.00" in response.text
    assert 'href="/export.csv"' in response.text


def test_dashboard_page_export_links_keep_active_range(api_client: TestClient) -> None:
    response = api_client.get("/ui", params={"start": "2024-01-01T11:00", "end": ""})

    assert response.status_code == 200
    assert 'href="/export.csv?start=2024-01-01T11%3A00%3A00"' in response.text
    assert 'href="/export.xlsx?start=2024-01-01T11%3A00%3A00"' in response.text


def test_dashboard_page_rejects_unparsable_filter(api_client: TestClient) -> None:
    response = api_client.get("/ui", params={"start": "yesterday"})

    assert response.status_code == 422


def test_feed_reports_normal_level(api_client: TestClient) -> None:
    statistics = api_client.get("/feed").json()["statistics"]

    assert statistics["latest_value"] == 700.0
    assert statistics["latest_is_high"] is False
    assert statistics["high_threshold"] == 1000.0
    assert "Normal level" in api_client.get("/ui").text


def test_feed_and_page_flag_high_latest_reading() -> None:
    records = [
        _record(1, 500.0, "2024-01-01T10:01:00Z"),
        _record(1, 1500.0, "2024-01-01T11:01:00Z"),
    ]
    dashboard = _build_dashboard(lambda request: httpx.Response(200, json=records))

    with TestClient(create_app(dashboard=dashboard)) as client:
        statistics = client.get("/feed").json()["statistics"]
        page = client.get("/ui").text

    assert statistics["latest_is_high"] is True
    assert "High level" in page
