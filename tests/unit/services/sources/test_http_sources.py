"""Unit tests for the HTTP job and telemetry sources."""

import httpx
import pytest

from dispatch_monitor.services.jobs.models import JobStatus
from dispatch_monitor.services.sources.base import (
    UpstreamError,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from dispatch_monitor.services.sources.http import (
    HttpJobSource,
    HttpTelemetrySource,
)

JOB_PAYLOAD = {
    "jobId": "J-1",
    "status": "InProgress",
    "scheduledDate": "2024-06-03",
    "vehicleId": "T-1",
}


def client_for(handler) -> httpx.AsyncClient:
    """AsyncClient that routes every request to handler."""
    return httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="http://upstream.test"
    )


# =============================================================================
# Job source
# =============================================================================


class TestHttpJobSource:
    """Tests for HttpJobSource."""

    @pytest.mark.asyncio
    async def test_fetch_bare_list(self):
        """A JSON array of jobs is parsed."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["limit"] = request.url.params.get("limit")
            return httpx.Response(200, json=[JOB_PAYLOAD])

        source = HttpJobSource("http://upstream.test", client=client_for(handler))
        fetched = await source.fetch_active_jobs(limit=50)

        assert seen == {"path": "/jobs", "limit": "50"}
        assert len(fetched.jobs) == 1
        assert fetched.jobs[0].job_id == "J-1"
        assert fetched.jobs[0].status == JobStatus.IN_PROGRESS
        assert fetched.invalid_ids == set()

    @pytest.mark.asyncio
    async def test_fetch_enveloped_list(self):
        """{"data": [...]} envelopes are unwrapped."""

        def handler(request):
            return httpx.Response(200, json={"data": [JOB_PAYLOAD], "total": 1})

        source = HttpJobSource("http://upstream.test", client=client_for(handler))
        fetched = await source.fetch_active_jobs()

        assert [j.job_id for j in fetched.jobs] == ["J-1"]

    @pytest.mark.asyncio
    async def test_invalid_records_skipped(self):
        """Unparseable records are dropped and their readable ids reported."""

        def handler(request):
            return httpx.Response(
                200,
                json=[
                    JOB_PAYLOAD,
                    {"jobId": "J-2", "status": "Teleported", "scheduledDate": "2024-06-03"},
                    {"status": "Entered"},
                    "not-an-object",
                ],
            )

        source = HttpJobSource("http://upstream.test", client=client_for(handler))
        fetched = await source.fetch_active_jobs()

        assert [j.job_id for j in fetched.jobs] == ["J-1"]
        assert fetched.invalid_ids == {"J-2"}

    @pytest.mark.asyncio
    async def test_free_text_driver_status_kept(self):
        """Unknown driver statuses are ignored instead of rejecting the job."""

        def handler(request):
            return httpx.Response(
                200,
                json=[
                    {**JOB_PAYLOAD, "driverReportedStatus": "En Route"},
                    {"jobId": "J-2", "status": "Scheduled", "scheduledDate": "2024-06-03"},
                ],
            )

        source = HttpJobSource("http://upstream.test", client=client_for(handler))
        fetched = await source.fetch_active_jobs()

        first, second = fetched.jobs
        assert first.job_id == "J-1"
        assert first.driver_reported_status is None
        assert second.status == JobStatus.ENTERED
        assert fetched.invalid_ids == set()

    @pytest.mark.asyncio
    async def test_server_error_maps_to_unavailable(self):
        def handler(request):
            return httpx.Response(503, text="maintenance")

        source = HttpJobSource("http://upstream.test", client=client_for(handler))

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await source.fetch_active_jobs()

        assert exc_info.value.source == "job_source"
        assert "503" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_maps_to_upstream_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        source = HttpJobSource("http://upstream.test", client=client_for(handler))

        with pytest.raises(UpstreamTimeout):
            await source.fetch_active_jobs()

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        source = HttpJobSource("http://upstream.test", client=client_for(handler))

        with pytest.raises(UpstreamUnavailable):
            await source.fetch_active_jobs()

    @pytest.mark.asyncio
    async def test_invalid_json_maps_to_unavailable(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>oops</html>")

        source = HttpJobSource("http://upstream.test", client=client_for(handler))

        with pytest.raises(UpstreamUnavailable, match="invalid JSON"):
            await source.fetch_active_jobs()

    @pytest.mark.asyncio
    async def test_unexpected_shape_maps_to_unavailable(self):
        def handler(request):
            return httpx.Response(200, json={"message": "ok"})

        source = HttpJobSource("http://upstream.test", client=client_for(handler))

        with pytest.raises(UpstreamError):
            await source.fetch_active_jobs()

    @pytest.mark.asyncio
    async def test_bearer_token_on_owned_client(self):
        """An API key becomes a bearer Authorization header."""
        source = HttpJobSource("http://upstream.test/", api_key="secret")

        assert source._client.headers["Authorization"] == "Bearer secret"
        assert str(source._client.base_url).rstrip("/") == "http://upstream.test"

        await source.close()
        assert source._client.is_closed

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self):
        client = client_for(lambda request: httpx.Response(200, json=[]))
        source = HttpJobSource("http://upstream.test", client=client)

        await source.close()

        assert client.is_closed is False
        await client.aclose()


# =============================================================================
# Telemetry source
# =============================================================================


class TestHttpTelemetrySource:
    """Tests for HttpTelemetrySource."""

    @pytest.mark.asyncio
    async def test_flat_positions(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            return httpx.Response(
                200,
                json={
                    "vehicles": [
                        {"vehicle_id": "T-1", "lat": 41.88, "lon": -87.63},
                        {"vehicleId": "T-2", "latitude": 41.9, "longitude": -87.7},
                    ]
                },
            )

        source = HttpTelemetrySource("http://upstream.test", client=client_for(handler))
        positions = await source.fetch_latest_positions()

        assert seen["path"] == "/vehicles/locations"
        assert set(positions) == {"T-1", "T-2"}
        assert positions["T-2"].lat == 41.9

    @pytest.mark.asyncio
    async def test_nested_location_flattened(self):
        """Provider-style nested location objects are supported."""

        def handler(request):
            return httpx.Response(
                200,
                json={
                    "data": [
                        {
                            "id": "T-7",
                            "name": "Truck 7",
                            "location": {
                                "latitude": 41.5,
                                "longitude": -87.5,
                                "time": "2024-06-03T14:59:00Z",
                            },
                        }
                    ]
                },
            )

        source = HttpTelemetrySource("http://upstream.test", client=client_for(handler))
        positions = await source.fetch_latest_positions()

        position = positions["T-7"]
        assert position.lat == 41.5
        assert position.lon == -87.5
        assert position.observed_at is not None

    @pytest.mark.asyncio
    async def test_invalid_positions_skipped(self):
        def handler(request):
            return httpx.Response(
                200,
                json=[
                    {"vehicle_id": "T-1", "lat": 41.88, "lon": -87.63},
                    {"vehicle_id": "T-2", "lat": "north", "lon": -87.63},
                    {"lat": 41.0, "lon": -87.0},
                ],
            )

        source = HttpTelemetrySource("http://upstream.test", client=client_for(handler))
        positions = await source.fetch_latest_positions()

        assert list(positions) == ["T-1"]

    @pytest.mark.asyncio
    async def test_server_error(self):
        def handler(request):
            return httpx.Response(500)

        source = HttpTelemetrySource("http://upstream.test", client=client_for(handler))

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await source.fetch_latest_positions()

        assert exc_info.value.source == "telemetry_source"
