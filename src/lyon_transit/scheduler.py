"""APScheduler-based orchestration of the static and realtime ingestion cycles."""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from apscheduler import AsyncScheduler, CoalescePolicy
from apscheduler.triggers.interval import IntervalTrigger

from lyon_transit.ingestion import IngestResult, Ingestor
from lyon_transit.logging import get_logger, job_context
from lyon_transit.metrics import record_overlap_skip

logger = get_logger(__name__)

STATIC_CYCLE = "static"
REALTIME_CYCLE = "realtime"

# Global registry to allow APScheduler to find scheduler instances
# APScheduler v4 requires serializable function references, so we use
# a module-level function with a scheduler lookup
_scheduler_registry: dict[str, "IngestionScheduler"] = {}


async def _execute_scheduled_cycle(scheduler_id: str, cycle: str) -> None:
    """Module-level function for APScheduler to call.

    Args:
        scheduler_id: Unique ID of the scheduler instance.
        cycle: Either "static" or "realtime".
    """
    scheduler = _scheduler_registry.get(scheduler_id)
    if scheduler is None:
        return
    if cycle == STATIC_CYCLE:
        await scheduler.run_static_cycle()
    elif cycle == REALTIME_CYCLE:
        await scheduler.run_realtime_cycle()


async def _in_job_context(cycle: str, name: str, job: Callable[[], Awaitable[Any]]) -> Any:
    with job_context(cycle=cycle, job=name):
        return await job()


class RunGuard:
    """Busy token for one job: a run is skipped while the previous one holds it."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def __aenter__(self) -> "RunGuard":
        await self._lock.acquire()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self._lock.release()


async def run_guarded(
    name: str,
    guard: RunGuard,
    job: Callable[[], Awaitable[Any]],
) -> Any:
    """Run a job unless its previous run is still in progress.

    Returns:
        The job's result, or None when the run was skipped.
    """
    if guard.busy:
        record_overlap_skip(name)
        logger.debug("job_skipped_overlap", job=name)
        return None
    async with guard:
        return await job()


class IngestionScheduler:
    """Periodic runner for the static reference data and the realtime feeds."""

    def __init__(
        self,
        ingestor: Ingestor,
        static_interval: float = 900,
        realtime_interval: float = 5,
        misfire_grace_time: float = 5.0,
    ) -> None:
        """Initialize the scheduler.

        Args:
            ingestor: Job implementations.
            static_interval: Seconds between static cycles.
            realtime_interval: Seconds between realtime cycles.
            misfire_grace_time: Seconds after scheduled time to still run a cycle.
        """
        self._id = str(uuid.uuid4())
        self.ingestor = ingestor
        self.static_interval = static_interval
        self.realtime_interval = realtime_interval
        self._misfire_grace_time = misfire_grace_time
        self._scheduler: AsyncScheduler | None = None
        self.timetables_guard = RunGuard()
        self.vehicles_guard = RunGuard()
        self.last_results: dict[str, IngestResult] = {}

    @property
    def is_running(self) -> bool:
        """Check if the scheduler is running."""
        return self._scheduler is not None and self._scheduler.state.name == "started"

    def static_jobs(self) -> dict[str, Callable[[], Awaitable[Any]]]:
        return {
            "alerts": self.ingestor.ingest_alerts,
            "stations": self.ingestor.ingest_stations,
            "lines": self.ingestor.ingest_all_lines,
            "stops": self.ingestor.ingest_stops,
            "line_icons": self.ingestor.ingest_line_icons,
        }

    def realtime_jobs(self) -> dict[str, Callable[[], Awaitable[Any]]]:
        return {
            "estimated_timetables": lambda: run_guarded(
                "estimated_timetables",
                self.timetables_guard,
                self.ingestor.ingest_estimated_timetables,
            ),
            "vehicle_positions": lambda: run_guarded(
                "vehicle_positions",
                self.vehicles_guard,
                self.ingestor.ingest_vehicle_positions,
            ),
        }

    async def _run_concurrently(
        self,
        cycle: str,
        jobs: dict[str, Callable[[], Awaitable[Any]]],
    ) -> dict[str, Any]:
        """Run jobs concurrently; a failing job is logged and never propagates."""
        outcomes = await asyncio.gather(
            *(_in_job_context(cycle, name, job) for name, job in jobs.items()),
            return_exceptions=True,
        )

        results: dict[str, Any] = {}
        for name, outcome in zip(jobs, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(
                    "job_failed",
                    cycle=cycle,
                    job=name,
                    error_type=type(outcome).__name__,
                    error_message=str(outcome),
                )
                continue
            results[name] = outcome
            if isinstance(outcome, IngestResult):
                self.last_results[name] = outcome
            elif isinstance(outcome, dict):
                for category, result in outcome.items():
                    self.last_results[f"lines_{category.value}"] = result
        return results

    async def run_static_cycle(self) -> dict[str, Any]:
        """Refresh alerts, stations, lines, stops and line icons."""
        logger.info("static_cycle_started")
        results = await self._run_concurrently(STATIC_CYCLE, self.static_jobs())
        logger.info("static_cycle_finished", succeeded=len(results))
        return results

    async def run_realtime_cycle(self) -> dict[str, Any]:
        """Refresh estimated timetables and vehicle positions."""
        return await self._run_concurrently(REALTIME_CYCLE, self.realtime_jobs())

    async def start(self) -> None:
        """Start the scheduler; both cycles run immediately, then on their interval."""
        _scheduler_registry[self._id] = self

        # Create and initialize scheduler (APScheduler v4 requires context manager)
        self._scheduler = AsyncScheduler()
        await self._scheduler.__aenter__()

        now = datetime.now(UTC)
        for cycle, interval in (
            (STATIC_CYCLE, self.static_interval),
            (REALTIME_CYCLE, self.realtime_interval),
        ):
            await self._scheduler.add_schedule(
                _execute_scheduled_cycle,
                trigger=IntervalTrigger(seconds=interval, start_time=now),
                id=f"cycle-{cycle}",
                kwargs={"scheduler_id": self._id, "cycle": cycle},
                misfire_grace_time=self._misfire_grace_time,
                coalesce=CoalescePolicy.latest,  # Skip missed, run latest only
            )

        await self._scheduler.start_in_background()

    async def stop(self, wait: bool = True) -> None:
        """Stop the scheduler.

        Args:
            wait: If True, wait for running jobs to complete.
        """
        if self._scheduler is not None:
            await self._scheduler.stop()
            if wait:
                await self._scheduler.wait_until_stopped()
            await self._scheduler.__aexit__(None, None, None)
            self._scheduler = None

        _scheduler_registry.pop(self._id, None)

    def get_job_count(self) -> int:
        """Get the number of scheduled cycles."""
        return 2 if self._scheduler is not None else 0
