"""Tests for health check and metrics HTTP server."""

import time
from unittest.mock import MagicMock

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase, unittest_run_loop

from lyon_transit.health import HealthServer
from lyon_transit.ingestion import IngestResult
from lyon_transit.metrics import _last_success_timestamps


class TestHealthServerEndpoints(AioHTTPTestCase):
    """Test health server HTTP endpoints using aiohttp test client."""

    async def get_application(self) -> web.Application:
        """Create application for testing."""
        self.health_server = HealthServer(port=8080, scheduler=None)
        return self.health_server.create_app()

    @unittest_run_loop
    async def test_health_endpoint_returns_healthy(self) -> None:
        """Test /health returns healthy status."""
        resp = await self.client.get("/health")
        assert resp.status == 200

        data = await resp.json()
        assert data["status"] == "healthy"
        assert "uptime_seconds" in data

    @unittest_run_loop
    async def test_health_endpoint_no_scheduler(self) -> None:
        """Test /health without scheduler doesn't include scheduler info."""
        resp = await self.client.get("/health")
        data = await resp.json()

        assert "scheduler" not in data
        assert "jobs" not in data

    @unittest_run_loop
    async def test_ready_endpoint_without_scheduler(self) -> None:
        """Test /ready returns ready when no scheduler configured."""
        resp = await self.client.get("/ready")
        assert resp.status == 200

        data = await resp.json()
        assert data["status"] == "ready"

    @unittest_run_loop
    async def test_metrics_endpoint_returns_prometheus_format(self) -> None:
        """Test /metrics returns OpenMetrics format."""
        resp = await self.client.get("/metrics")
        assert resp.status == 200
        assert "openmetrics" in resp.content_type or "text/plain" in resp.content_type

        text = await resp.text()
        assert "ingest_runs" in text
        assert "# UNIT ingest_duration_seconds seconds" in text


class TestHealthServerWithScheduler(AioHTTPTestCase):
    """Test health server with a mocked scheduler."""

    async def get_application(self) -> web.Application:
        """Create application with mocked scheduler."""
        self.mock_scheduler = MagicMock()
        self.mock_scheduler.is_running = True
        self.mock_scheduler.get_job_count.return_value = 2
        self.mock_scheduler.static_interval = 900
        self.mock_scheduler.realtime_interval = 5
        self.mock_scheduler.last_results = {
            "stops": IngestResult(fetched=10, written=9, skipped=1),
        }

        self.health_server = HealthServer(port=8080, scheduler=self.mock_scheduler)
        return self.health_server.create_app()

    @unittest_run_loop
    async def test_health_includes_scheduler_info(self) -> None:
        """Test /health includes scheduler information."""
        resp = await self.client.get("/health")
        data = await resp.json()

        assert data["scheduler"]["running"] is True
        assert data["scheduler"]["jobs_scheduled"] == 2
        assert data["scheduler"]["realtime_interval_seconds"] == 5

    @unittest_run_loop
    async def test_health_lists_every_job(self) -> None:
        """Test /health reports every static and realtime job."""
        resp = await self.client.get("/health")
        jobs = (await resp.json())["jobs"]

        assert set(jobs) >= {
            "alerts",
            "stations",
            "stops",
            "line_icons",
            "lines_bus",
            "lines_metro",
            "lines_tram",
            "lines_rhonexpress",
            "estimated_timetables",
            "vehicle_positions",
        }
        assert jobs["stops"]["skipped"] == 1
        assert jobs["stops"]["written"] == 9

    @unittest_run_loop
    async def test_health_shows_last_success_age(self) -> None:
        """Test /health includes seconds since last success."""
        _last_success_timestamps["stations"] = time.time() - 10.0

        try:
            resp = await self.client.get("/health")
            jobs = (await resp.json())["jobs"]

            assert 9.0 <= jobs["stations"]["last_success_seconds_ago"] <= 12.0
            assert jobs["line_icons"]["last_success_seconds_ago"] is None
        finally:
            _last_success_timestamps.pop("stations", None)

    @unittest_run_loop
    async def test_ready_when_scheduler_running(self) -> None:
        """Test /ready returns ready when scheduler is running."""
        resp = await self.client.get("/ready")
        assert resp.status == 200

    @unittest_run_loop
    async def test_ready_not_ready_when_scheduler_stopped(self) -> None:
        """Test /ready returns 503 when scheduler is not running."""
        self.mock_scheduler.is_running = False

        resp = await self.client.get("/ready")
        assert resp.status == 503

        data = await resp.json()
        assert data["status"] == "not_ready"
        assert data["reason"] == "scheduler_not_running"


class TestHealthServerLifecycle:
    """Tests for HealthServer start/stop lifecycle."""

    def test_initialization(self) -> None:
        """Test health server initialization."""
        server = HealthServer(port=9090)
        assert server.port == 9090
        assert server.scheduler is None
        assert server._app is None
        assert server._runner is None

    async def test_stop_without_start(self) -> None:
        """Test stop is a no-op when the server never started."""
        server = HealthServer(port=9090)
        await server.stop()
        assert server._runner is None
