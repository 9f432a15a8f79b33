"""Tests for the write side of the transit store."""

from datetime import UTC, datetime
from typing import Any
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select

from lyon_transit.database import Database
from lyon_transit.entities import (
    Alert,
    EstimatedCall,
    EstimatedVehicleJourney,
    LineIcon,
    Stop,
    VehiclePosition,
)
from lyon_transit.repositories import (
    last_wins,
    replace_estimated_timetables,
    replace_vehicle_positions,
    upsert_alerts,
    upsert_line_icons,
    upsert_stops,
)
from lyon_transit.schema import (
    alerts,
    estimated_calls,
    estimated_vehicle_journeys,
    line_icon_mapping,
    stops,
    vehicle_positions,
)


async def fetch_all(db: Database, stmt: Any) -> list[dict[str, Any]]:
    async with db.connect() as conn:
        return [dict(row) for row in (await conn.execute(stmt)).mappings()]


async def count(db: Database, table: Any) -> int:
    async with db.connect() as conn:
        return int(await conn.scalar(select(func.count()).select_from(table)) or 0)


class TestDatabaseInsert:
    """Tests for the dialect-aware INSERT construct."""

    def test_sqlite_insert_supports_on_conflict(self, db: Database) -> None:
        assert hasattr(db.insert(stops), "on_conflict_do_update")

    def test_unsupported_dialect_rejected(self) -> None:
        engine = MagicMock()
        engine.dialect.name = "mysql"

        with pytest.raises(ValueError, match="mysql"):
            Database(engine).insert(stops)


class TestLastWins:
    """Tests for last_wins deduplication."""

    def test_keeps_last_row_per_key(self) -> None:
        rows = [{"id": "a", "v": 1}, {"id": "b", "v": 2}, {"id": "a", "v": 3}]
        assert last_wins(rows, "id") == [{"id": "a", "v": 3}, {"id": "b", "v": 2}]

    def test_composite_key(self) -> None:
        rows = [{"a": 1, "b": 1}, {"a": 1, "b": 2}]
        assert len(last_wins(rows, "a", "b")) == 2


class TestUpsertStops:
    """Tests for upsert_stops."""

    async def test_idempotent(self, db: Database) -> None:
        items = [Stop(id="tclarret.1", name="Cordeliers"), Stop(id="tclarret.2", name="Bellecour")]

        await upsert_stops(db, items)
        await upsert_stops(db, items)

        assert await count(db, stops) == 2

    async def test_overwrites_with_latest_values(self, db: Database) -> None:
        await upsert_stops(db, [Stop(id="tclarret.1", name="Old", zone="100")])
        await upsert_stops(db, [Stop(id="tclarret.1", name="New")])

        rows = await fetch_all(db, select(stops.c.name, stops.c.zone))
        assert rows == [{"name": "New", "zone": None}]

    async def test_last_update_is_ingestion_time(self, db: Database) -> None:
        before = datetime.now(UTC).replace(tzinfo=None)

        await upsert_stops(
            db, [Stop(id="tclarret.1", name="A", last_update=datetime(2020, 1, 1, tzinfo=UTC))]
        )

        rows = await fetch_all(db, select(stops.c.last_update))
        stored = rows[0]["last_update"].replace(tzinfo=None)
        assert stored >= before

    async def test_duplicate_keys_in_batch(self, db: Database) -> None:
        written = await upsert_stops(
            db, [Stop(id="tclarret.1", name="First"), Stop(id="tclarret.1", name="Second")]
        )

        assert written == 1
        rows = await fetch_all(db, select(stops.c.name))
        assert rows == [{"name": "Second"}]

    async def test_empty_batch(self, db: Database) -> None:
        assert await upsert_stops(db, []) == 0


class TestUpsertLineIcons:
    """Tests for upsert_line_icons."""

    async def test_upsert_on_code(self, db: Database) -> None:
        await upsert_line_icons(db, [LineIcon(code_ligne="C3", picto_ligne="C3.png")])
        await upsert_line_icons(db, [LineIcon(code_ligne="C3", picto_ligne="C3b.png")])

        rows = await fetch_all(db, select(line_icon_mapping.c.picto_ligne))
        assert rows == [{"picto_ligne": "C3b.png"}]


class TestUpsertAlerts:
    """Tests for upsert_alerts."""

    async def test_keyed_alerts_upserted(self, db: Database) -> None:
        await upsert_alerts(db, [Alert(alert_id=1, title="Travaux", message="v1")])
        await upsert_alerts(db, [Alert(alert_id=1, title="Travaux", message="v2")])

        rows = await fetch_all(db, select(alerts.c.alert_id, alerts.c.message))
        assert rows == [{"alert_id": 1, "message": "v2"}]

    async def test_unkeyed_alerts_replaced_by_content(self, db: Database) -> None:
        items = [
            Alert(title="Travaux", message="Déviation", line_commercial_name="C3", severity_level=2),
            Alert(title="Travaux", message="Déviation", line_commercial_name="C14"),
        ]

        await upsert_alerts(db, items)
        await upsert_alerts(db, items)

        assert await count(db, alerts) == 2

    async def test_unkeyed_alert_update_replaces_row(self, db: Database) -> None:
        await upsert_alerts(
            db, [Alert(title="Travaux", message="Déviation", line_commercial_name="C3")]
        )
        await upsert_alerts(
            db,
            [
                Alert(
                    title="Travaux",
                    message="Déviation",
                    line_commercial_name="C3",
                    severity_level=1,
                )
            ],
        )

        rows = await fetch_all(db, select(alerts.c.severity_level))
        assert rows == [{"severity_level": 1}]


def make_vehicle(ref: str, delay: str = "PT0S") -> VehiclePosition:
    return VehiclePosition(vehicle_ref=ref, line_ref="TCL:Line::C3:LOC", delay=delay)


class TestReplaceVehiclePositions:
    """Tests for replace_vehicle_positions."""

    async def test_snapshot_replaced(self, db: Database) -> None:
        await replace_vehicle_positions(db, [make_vehicle("A"), make_vehicle("B")])
        await replace_vehicle_positions(db, [make_vehicle("B"), make_vehicle("C")])

        rows = await fetch_all(
            db, select(vehicle_positions.c.vehicle_ref).order_by(vehicle_positions.c.vehicle_ref)
        )
        assert [row["vehicle_ref"] for row in rows] == ["B", "C"]

    async def test_empty_snapshot_clears_table(self, db: Database) -> None:
        await replace_vehicle_positions(db, [make_vehicle("A")])
        await replace_vehicle_positions(db, [])

        assert await count(db, vehicle_positions) == 0

    async def test_duplicate_refs_collapse(self, db: Database) -> None:
        written = await replace_vehicle_positions(
            db, [make_vehicle("A", "PT1M"), make_vehicle("A", "PT2M")]
        )

        assert written == 1
        rows = await fetch_all(db, select(vehicle_positions.c.delay))
        assert rows == [{"delay": "PT2M"}]


def make_journey(ref: str, orders: list[int]) -> EstimatedVehicleJourney:
    return EstimatedVehicleJourney(
        dated_vehicle_journey_ref=ref,
        line_ref="TCL:Line::C3:LOC",
        calls=tuple(
            EstimatedCall(stop_point_ref=f"TCL:StopPoint:Q:{order}:LOC", stop_order=order)
            for order in orders
        ),
    )


class TestReplaceEstimatedTimetables:
    """Tests for replace_estimated_timetables."""

    async def test_writes_journeys_and_calls(self, db: Database) -> None:
        journeys, calls = await replace_estimated_timetables(
            db, [make_journey("J1", [1, 2, 3]), make_journey("J2", [1])]
        )

        assert (journeys, calls) == (2, 4)
        assert await count(db, estimated_vehicle_journeys) == 2
        assert await count(db, estimated_calls) == 4

    async def test_reload_replaces_previous_snapshot(self, db: Database) -> None:
        await replace_estimated_timetables(db, [make_journey("J1", [1, 2])])
        await replace_estimated_timetables(db, [make_journey("J2", [5])])

        journeys = await fetch_all(
            db, select(estimated_vehicle_journeys.c.dated_vehicle_journey_ref)
        )
        calls = await fetch_all(db, select(estimated_calls.c.stop_order))
        assert journeys == [{"dated_vehicle_journey_ref": "J2"}]
        assert calls == [{"stop_order": 5}]

    async def test_duplicate_stop_order_ignored(self, db: Database) -> None:
        await replace_estimated_timetables(db, [make_journey("J1", [1, 1, 2])])

        assert await count(db, estimated_calls) == 2

    async def test_calls_linked_to_journey(self, db: Database) -> None:
        await replace_estimated_timetables(db, [make_journey("J1", [1])])

        stmt = select(estimated_vehicle_journeys.c.dated_vehicle_journey_ref).join(
            estimated_calls,
            estimated_calls.c.estimated_vehicle_journey_id == estimated_vehicle_journeys.c.id,
        )
        assert await fetch_all(db, stmt) == [{"dated_vehicle_journey_ref": "J1"}]
