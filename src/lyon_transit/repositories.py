"""Write side of the transit store: upserts and purge-then-reload snapshots."""

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Table, delete
from sqlalchemy.ext.asyncio import AsyncConnection

from lyon_transit.database import Database
from lyon_transit.entities import (
    Alert,
    EstimatedVehicleJourney,
    Line,
    LineIcon,
    Station,
    Stop,
    VehiclePosition,
)
from lyon_transit.schema import (
    alerts,
    estimated_calls,
    estimated_vehicle_journeys,
    line_icon_mapping,
    lines,
    stations,
    stops,
    vehicle_positions,
)


def last_wins(rows: Iterable[dict[str, Any]], *key: str) -> list[dict[str, Any]]:
    """Collapse rows sharing a natural key, keeping the last one seen.

    A single multi-row ``INSERT ... ON CONFLICT DO UPDATE`` may not touch the
    same row twice, so batches are deduplicated before they are written.
    """
    by_key: dict[tuple[Any, ...], dict[str, Any]] = {}
    for row in rows:
        by_key[tuple(row[k] for k in key)] = row
    return list(by_key.values())


async def upsert_rows(
    conn: AsyncConnection,
    db: Database,
    table: Table,
    rows: Sequence[dict[str, Any]],
    key: Sequence[str],
) -> int:
    """Insert rows; on natural-key conflict overwrite every other column.

    Incoming None values overwrite stored values: the latest record is the
    whole truth, not a patch.

    Args:
        conn: Connection inside the caller's transaction.
        db: Database handle, used to pick the dialect's INSERT construct.
        table: Target table.
        rows: Column values, all rows sharing the same keys.
        key: Columns of the unique constraint to resolve conflicts on.

    Returns:
        Number of rows written.
    """
    if not rows:
        return 0

    stmt = db.insert(table)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(key),
        set_={name: stmt.excluded[name] for name in rows[0] if name not in key},
    )
    await conn.execute(stmt, list(rows))
    return len(rows)


async def upsert_stops(db: Database, items: Iterable[Stop]) -> int:
    """Upsert stops; ``last_update`` records when the stop was ingested, not the feed value."""
    ingested_at = datetime.now(UTC)
    rows = last_wins(({**item.to_row(), "last_update": ingested_at} for item in items), "id")
    async with db.begin() as conn:
        return await upsert_rows(conn, db, stops, rows, ["id"])


async def upsert_stations(db: Database, items: Iterable[Station]) -> int:
    rows = last_wins((item.to_row() for item in items), "id")
    async with db.begin() as conn:
        return await upsert_rows(conn, db, stations, rows, ["id"])


async def upsert_lines(db: Database, items: Iterable[Line]) -> int:
    rows = last_wins((item.to_row() for item in items), "id")
    async with db.begin() as conn:
        return await upsert_rows(conn, db, lines, rows, ["id"])


async def upsert_line_icons(db: Database, items: Iterable[LineIcon]) -> int:
    rows = last_wins((item.to_row() for item in items), "code_ligne")
    async with db.begin() as conn:
        return await upsert_rows(conn, db, line_icon_mapping, rows, ["code_ligne"])


async def upsert_alerts(db: Database, items: Iterable[Alert]) -> int:
    """Upsert alerts on their external id.

    Most alerts arrive without an id. A null id never conflicts, so those rows
    are replaced by content instead: the stored null-id row with the same
    title, message and commercial line is deleted before the new one is
    inserted.
    """
    all_rows = [item.to_row() for item in items]
    keyed = last_wins((row for row in all_rows if row["alert_id"] is not None), "alert_id")
    unkeyed = last_wins(
        (row for row in all_rows if row["alert_id"] is None),
        "title",
        "message",
        "line_commercial_name",
    )

    async with db.begin() as conn:
        written = await upsert_rows(conn, db, alerts, keyed, ["alert_id"])

        for row in unkeyed:
            await conn.execute(
                delete(alerts).where(
                    alerts.c.alert_id.is_(None),
                    alerts.c.title.is_not_distinct_from(row["title"]),
                    alerts.c.message.is_not_distinct_from(row["message"]),
                    alerts.c.line_commercial_name.is_not_distinct_from(
                        row["line_commercial_name"]
                    ),
                )
            )
        if unkeyed:
            await conn.execute(alerts.insert(), unkeyed)

    return written + len(unkeyed)


async def replace_vehicle_positions(db: Database, items: Iterable[VehiclePosition]) -> int:
    """Replace the whole fleet snapshot in one transaction.

    Vehicles missing from the latest feed disappear; readers see either the
    previous snapshot or the new one, never an empty table in between.
    """
    rows = last_wins((item.to_row() for item in items), "vehicle_ref")
    async with db.begin() as conn:
        await conn.execute(delete(vehicle_positions))
        return await upsert_rows(conn, db, vehicle_positions, rows, ["vehicle_ref"])


async def _upsert_journey(
    conn: AsyncConnection,
    db: Database,
    journey: EstimatedVehicleJourney,
) -> int:
    row = journey.to_row()
    stmt = db.insert(estimated_vehicle_journeys).values(**row)
    stmt = stmt.on_conflict_do_update(
        index_elements=["dated_vehicle_journey_ref"],
        set_={
            name: stmt.excluded[name] for name in row if name != "dated_vehicle_journey_ref"
        },
    ).returning(estimated_vehicle_journeys.c.id)
    result = await conn.execute(stmt)
    journey_id: int = result.scalar_one()
    return journey_id


async def replace_estimated_timetables(
    db: Database,
    journeys: Iterable[EstimatedVehicleJourney],
) -> tuple[int, int]:
    """Replace every estimated journey and call in one transaction.

    Calls are keyed by (journey, stop order); a second call for an order
    already recorded in this reload is ignored.

    Returns:
        (journeys written, calls written)
    """
    journey_count = 0
    call_count = 0

    async with db.begin() as conn:
        await conn.execute(delete(estimated_calls))
        await conn.execute(delete(estimated_vehicle_journeys))

        calls_insert = db.insert(estimated_calls).on_conflict_do_nothing(
            index_elements=["estimated_vehicle_journey_id", "stop_order"],
        )

        for journey in journeys:
            journey_id = await _upsert_journey(conn, db, journey)
            journey_count += 1

            call_rows = [
                {**call.to_row(), "estimated_vehicle_journey_id": journey_id}
                for call in journey.calls
            ]
            if call_rows:
                await conn.execute(calls_insert, call_rows)
                call_count += len(call_rows)

    return journey_count, call_count
