"""Primary (HTTP uplink) and fallback (mock) data sources."""

from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Optional

import httpx

from models.records import CO2_TAG, SOURCE_LIVE, SOURCE_MOCK, BatchSummary, DecodedMeasurement
from services.decoder import DEFAULT_BOUNDS
from services.mock_data import generate_mock
from services.processor import BatchInputError, BatchProcessor, RecordRejection

logger = logging.getLogger(__name__)


class FeedSource(str, Enum):
    live = SOURCE_LIVE
    mock = SOURCE_MOCK


class UplinkFetchError(RuntimeError):
    """The uplink endpoint could not be reached or returned an unusable body."""


class UplinkClient:
    """Minimal HTTP client for the gateway's uplink listing."""

    def __init__(
        self,
        endpoint_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.endpoint_url = endpoint_url
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def fetch_records(self) -> Any:
        try:
            response = self._client.get(self.endpoint_url, headers={"Accept": "application/json"})
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise UplinkFetchError(
                f"Uplink endpoint returned HTTP {exc.response.status_code}."
            ) from exc
        except httpx.HTTPError as exc:
            raise UplinkFetchError(f"Uplink endpoint unreachable: {exc}") from exc

        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise UplinkFetchError("Uplink endpoint returned invalid JSON.") from exc

        logger.debug(
            "Fetched uplink records",
            extra={"endpoint": self.endpoint_url, "status_code": response.status_code},
        )
        return payload


@dataclass(frozen=True)
class SensorFeed:
    """One loaded batch together with where it came from."""

    source: FeedSource
    measurements: List[DecodedMeasurement]
    summary: BatchSummary
    fetched_at: datetime
    fallback_reason: Optional[str] = None
    rejections: List[RecordRejection] = field(default_factory=list)

    @property
    def is_demo(self) -> bool:
        return self.source is FeedSource.mock


class SensorFeedLoader:
    """Loads live uplink data, falling back to mock data when that is not possible.

    The fallback is never silent: the returned feed carries ``source=mock``
    and a ``fallback_reason``.
    """

    def __init__(
        self,
        processor: BatchProcessor,
        client: Optional[UplinkClient] = None,
        mock_days: int = 3,
        use_mock: bool = False,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.processor = processor
        self.client = client
        self.mock_days = mock_days
        self.use_mock = use_mock
        self.rng = rng or random.Random()
        self.clock = clock

    def load(self) -> SensorFeed:
        now = self.clock()
        if self.use_mock:
            return self._mock_feed(now, "Mock data enabled in configuration.", warn=False)
        if self.client is None:
            return self._mock_feed(now, "No uplink endpoint configured.")

        try:
            records = self.client.fetch_records()
            result = self.processor.process_batch(records, batch_started_at=now)
        except (UplinkFetchError, BatchInputError) as exc:
            return self._mock_feed(now, str(exc))

        if not result.measurements:
            return self._mock_feed(
                now,
                f"Uplink returned no valid readings ({result.summary.total_count} received, "
                f"{result.summary.error_count} with errors).",
            )

        return SensorFeed(
            source=FeedSource.live,
            measurements=result.measurements,
            summary=result.summary,
            fetched_at=now,
            rejections=list(result.rejections),
        )

    def close(self) -> None:
        if self.client is not None:
            self.client.close()

    def _mock_feed(self, now: datetime, reason: str, warn: bool = True) -> SensorFeed:
        bounds = self.processor.bounds.get(CO2_TAG, DEFAULT_BOUNDS[CO2_TAG])
        measurements = generate_mock(self.mock_days, rng=self.rng, now=now, bounds=bounds)
        if warn:
            logger.warning(
                "Falling back to mock data: %s",
                reason,
                extra={"source": FeedSource.mock.value, "valid_count": len(measurements)},
            )
        return SensorFeed(
            source=FeedSource.mock,
            measurements=measurements,
            summary=BatchSummary(
                total_count=len(measurements),
                error_count=0,
                valid_count=len(measurements),
            ),
            fetched_at=now,
            fallback_reason=reason,
        )
