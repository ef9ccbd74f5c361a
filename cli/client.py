from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
import typer

from cli.config import CLIConfig

EXPORT_FORMATS = ("csv", "xlsx")


def _range_params(start: Optional[datetime], end: Optional[datetime]) -> Dict[str, str]:
    params: Dict[str, str] = {}
    if start is not None:
        params["start"] = start.isoformat()
    if end is not None:
        params["end"] = end.isoformat()
    return params


class ApiClient:
    """Minimal HTTP client for the dashboard service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def get_feed(self) -> Dict[str, Any]:
        return self._request("GET", "/feed").json()

    def refresh_feed(self) -> Dict[str, Any]:
        return self._request("POST", "/feed/refresh").json()

    def get_hourly_averages(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        return self._request("GET", "/hourly-averages", params=_range_params(start, end)).json()

    def download_export(
        self,
        export_format: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> bytes:
        if export_format not in EXPORT_FORMATS:
            raise typer.BadParameter(
                f"Unsupported export format {export_format!r}; choose one of {', '.join(EXPORT_FORMATS)}."
            )
        response = self._request(
            "GET", f"/export.{export_format}", params=_range_params(start, end)
        )
        return response.content

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(
                f"Could not reach {self._config.base_url}: {exc}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(code=1)
        return response

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
