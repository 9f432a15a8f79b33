"""Per-entity ingestion jobs: fetch, normalize, write."""

import time
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from functools import partial
from typing import Any, TypeVar

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from lyon_transit import repositories
from lyon_transit.client import FeedRejectedError, GrandLyonClient
from lyon_transit.database import Database
from lyon_transit.logging import get_logger
from lyon_transit.metrics import (
    record_error,
    record_feed_rejected,
    record_missing_fields,
    record_run,
    record_skipped,
    record_success,
)
from lyon_transit.models import LineCategory
from lyon_transit.normalizers import (
    normalize_alert,
    normalize_estimated_journey,
    normalize_line,
    normalize_line_icon,
    normalize_station,
    normalize_stop,
    normalize_vehicle_activity,
)
from lyon_transit.siri import MissingNaturalKeyError, RecordError

E = TypeVar("E")

logger = get_logger(__name__)

STATIC_JOBS = (
    "alerts",
    "stations",
    *(f"lines_{category.value}" for category in LineCategory),
    "stops",
    "line_icons",
)
REALTIME_JOBS = ("estimated_timetables", "vehicle_positions")


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one job run."""

    fetched: int = 0
    written: int = 0
    skipped: int = 0
    rejected: bool = False


def classify_error(exc: BaseException) -> str:
    """Short error type used as a metric label."""
    if isinstance(exc, httpx.TimeoutException):
        return "timeout"
    if isinstance(exc, httpx.TransportError):
        return "transport"
    if isinstance(exc, httpx.HTTPStatusError):
        return f"http_{exc.response.status_code}"
    if isinstance(exc, SQLAlchemyError):
        return "database"
    if isinstance(exc, ValueError):
        return "decode"
    return "unknown"


def _skip_reason(exc: Exception) -> str:
    if isinstance(exc, MissingNaturalKeyError):
        return "missing_key"
    if isinstance(exc, ValidationError):
        return "invalid_value"
    return "malformed"


def normalize_all(
    job: str,
    records: Iterable[Any],
    normalize: Callable[[Any], E],
    record_type: type = dict,
) -> tuple[list[E], int]:
    """Normalize records one by one, skipping those that cannot be mapped.

    Returns:
        (entities, number of skipped records)
    """
    entities: list[E] = []
    skipped = 0
    for index, record in enumerate(records):
        try:
            if not isinstance(record, record_type):
                raise RecordError(f"unexpected record type {type(record).__name__}")
            entities.append(normalize(record))
        except (RecordError, ValidationError) as e:
            skipped += 1
            reason = _skip_reason(e)
            record_skipped(job, reason)
            logger.warning(
                "record_skipped",
                job=job,
                index=index,
                reason=reason,
                error_message=str(e),
            )
    return entities, skipped


class Ingestor:
    """Runs one ingestion job per entity against the provider and the store."""

    def __init__(self, client: GrandLyonClient, db: Database) -> None:
        self.client = client
        self.db = db

    async def _run(
        self,
        job: str,
        fetch: Callable[[], Awaitable[list[Any]]],
        normalize: Callable[[Any], E],
        write: Callable[[list[E]], Awaitable[int]],
        record_type: type = dict,
        missing: Counter[str] | None = None,
    ) -> IngestResult:
        """Fetch, normalize and write one feed, recording metrics.

        Transport and persistence errors are logged and re-raised; a 4xx from
        the provider is logged and leaves the store untouched. ``missing`` is
        the counter the normalizer tallies absent fields into.
        """
        record_run(job)
        start = time.monotonic()

        try:
            records = await fetch()
        except FeedRejectedError as e:
            record_feed_rejected(job, e.status_code)
            logger.warning("feed_rejected", job=job, feed=e.feed, status_code=e.status_code)
            return IngestResult(rejected=True)
        except Exception as e:
            record_error(job, classify_error(e))
            logger.error(
                "fetch_error",
                job=job,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            raise

        entities, skipped = normalize_all(job, records, normalize, record_type)
        if missing:
            record_missing_fields(job, missing)
            logger.debug("missing_fields", job=job, fields=dict(missing))

        try:
            written = await write(entities)
        except Exception as e:
            record_error(job, classify_error(e))
            logger.error(
                "write_error",
                job=job,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            raise

        duration = time.monotonic() - start
        record_success(job, duration, written)
        logger.info(
            "ingest_success",
            job=job,
            fetched=len(records),
            written=written,
            skipped=skipped,
            duration_seconds=round(duration, 3),
        )
        return IngestResult(fetched=len(records), written=written, skipped=skipped)

    async def ingest_alerts(self) -> IngestResult:
        return await self._run(
            "alerts",
            self.client.get_alerts,
            normalize_alert,
            lambda items: repositories.upsert_alerts(self.db, items),
        )

    async def ingest_stations(self) -> IngestResult:
        return await self._run(
            "stations",
            self.client.get_stations,
            normalize_station,
            lambda items: repositories.upsert_stations(self.db, items),
        )

    async def ingest_stops(self) -> IngestResult:
        return await self._run(
            "stops",
            self.client.get_stops,
            normalize_stop,
            lambda items: repositories.upsert_stops(self.db, items),
        )

    async def ingest_lines(self, category: LineCategory) -> IngestResult:
        """Ingest the route traces of one line category (bus, metro, tram, rhônexpress)."""
        return await self._run(
            f"lines_{category.value}",
            lambda: self.client.get_lines(category),
            lambda feature: normalize_line(feature, category),
            lambda items: repositories.upsert_lines(self.db, items),
        )

    async def ingest_all_lines(self) -> dict[LineCategory, IngestResult]:
        """Ingest every line category in turn; a failing category does not stop the others."""
        results: dict[LineCategory, IngestResult] = {}
        for category in LineCategory:
            try:
                results[category] = await self.ingest_lines(category)
            except Exception as e:
                logger.error(
                    "line_category_failed",
                    category=category.value,
                    error_type=type(e).__name__,
                )
        return results

    async def ingest_line_icons(self) -> IngestResult:
        return await self._run(
            "line_icons",
            self.client.get_line_icons,
            normalize_line_icon,
            lambda items: repositories.upsert_line_icons(self.db, items),
            record_type=list,
        )

    async def ingest_vehicle_positions(self) -> IngestResult:
        """Replace the fleet snapshot with the latest vehicle monitoring delivery."""
        missing: Counter[str] = Counter()
        return await self._run(
            "vehicle_positions",
            self.client.get_vehicle_monitoring,
            partial(normalize_vehicle_activity, missing=missing),
            lambda items: repositories.replace_vehicle_positions(self.db, items),
            missing=missing,
        )

    async def ingest_estimated_timetables(self) -> IngestResult:
        """Replace every estimated journey and its calls with the latest delivery.

        The written count covers journeys and calls together.
        """
        missing: Counter[str] = Counter()

        async def write(items: list[Any]) -> int:
            journeys, calls = await repositories.replace_estimated_timetables(self.db, items)
            logger.debug("estimated_timetables_written", journeys=journeys, calls=calls)
            return journeys + calls

        return await self._run(
            "estimated_timetables",
            self.client.get_estimated_timetables,
            partial(normalize_estimated_journey, missing=missing),
            write,
            missing=missing,
        )
