"""HTTP clients for the job and telemetry upstreams."""

from typing import Any, Optional

import httpx
import structlog

from dispatch_monitor.services.jobs.models import (
    FetchResult,
    JobRecord,
    VehiclePosition,
    record_job_id,
)
from dispatch_monitor.services.sources.base import (
    UpstreamTimeout,
    UpstreamUnavailable,
)

logger = structlog.get_logger(__name__)


def _unwrap(payload: Any, *keys: str) -> list[Any]:
    """Accept a bare list or an envelope such as {"data": [...]}."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return value
    raise ValueError(f"Unexpected payload shape: {type(payload).__name__}")


class _HttpSource:
    """Shared GET-and-decode logic with upstream error mapping."""

    source_name = "upstream"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            base_url: Upstream API base URL
            api_key: Optional bearer token
            timeout: Request timeout in seconds
            client: Pre-built client (tests inject one with a mock transport)
        """
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
        )

    async def _get_json(self, path: str, params: Optional[dict] = None) -> Any:
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(self.source_name, f"timeout on {path}") from e
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(
                self.source_name,
                f"{path} returned {e.response.status_code}",
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(self.source_name, f"{path}: {e}") from e
        except ValueError as e:
            raise UpstreamUnavailable(
                self.source_name, f"{path}: invalid JSON ({e})"
            ) from e

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class HttpJobSource(_HttpSource):
    """Fetches active jobs from the work-order API."""

    source_name = "job_source"

    async def fetch_active_jobs(self, limit: Optional[int] = None) -> FetchResult:
        """
        Fetch active jobs.

        Records that fail to parse are logged and left out of the batch.
        Their ids, when readable, are returned in invalid_ids so callers can
        tell a bad record from a removed job.

        Raises:
            UpstreamTimeout: Request timed out
            UpstreamUnavailable: Transport, status or decode failure
        """
        params: dict[str, Any] = {}
        if limit is not None:
            params["limit"] = limit
        payload = await self._get_json("/jobs", params=params)
        try:
            items = _unwrap(payload, "jobs", "data")
        except ValueError as e:
            raise UpstreamUnavailable(self.source_name, str(e)) from e

        result = FetchResult()
        for item in items:
            try:
                result.jobs.append(JobRecord.from_dict(item))
            except (TypeError, ValueError, AttributeError) as e:
                job_id = record_job_id(item)
                if job_id is not None:
                    result.invalid_ids.add(job_id)
                logger.warning("job_record_invalid", job_id=job_id, error=str(e))
        return result


class HttpTelemetrySource(_HttpSource):
    """Fetches the latest vehicle positions from the telemetry API."""

    source_name = "telemetry_source"

    @staticmethod
    def _flatten(item: dict[str, Any]) -> dict[str, Any]:
        # Provider shape: {"id": ..., "location": {"latitude", "longitude", "time"}}
        location = item.get("location") or item.get("gps")
        if isinstance(location, dict):
            return {**location, "vehicle_id": item.get("vehicle_id", item.get("id"))}
        return item

    async def fetch_latest_positions(self) -> dict[str, VehiclePosition]:
        """
        Fetch the latest position per vehicle, keyed by vehicle_id.

        Raises:
            UpstreamTimeout: Request timed out
            UpstreamUnavailable: Transport, status or decode failure
        """
        payload = await self._get_json("/vehicles/locations")
        try:
            items = _unwrap(payload, "vehicles", "data")
        except ValueError as e:
            raise UpstreamUnavailable(self.source_name, str(e)) from e

        positions: dict[str, VehiclePosition] = {}
        for item in items:
            try:
                position = VehiclePosition.from_dict(self._flatten(item))
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning("vehicle_position_invalid", error=str(e))
                continue
            positions[position.vehicle_id] = position
        return positions
