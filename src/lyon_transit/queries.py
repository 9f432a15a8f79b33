"""Read side of the transit store: re-aggregates normalized rows for the viewer."""

from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncConnection

from lyon_transit.database import Database
from lyon_transit.entities import AlertSummary, NextPassage, Page
from lyon_transit.models import Direction
from lyon_transit.normalizers import extract_line_sort_code
from lyon_transit.schema import (
    alerts,
    gtfs_calendar,
    gtfs_routes,
    gtfs_stop_times,
    gtfs_trips,
    line_icon_mapping,
    lines,
    stops,
    vehicle_positions,
)

NEXT_PASSAGES_LIMIT = 10

# datetime.weekday() order
_CALENDAR_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _page(data: list[Any], total: int, limit: int | None, offset: int | None) -> Page[Any]:
    return Page(
        data=data,
        total=total,
        limit=limit if limit is not None else total,
        offset=offset or 0,
        has_more=limit is not None and offset is not None and offset + limit < total,
    )


def _line_ref_contains(code: str) -> Any:
    return vehicle_positions.c.line_ref.contains(f"::{code}:", autoescape=True)


# Alerts


async def list_alerts(
    db: Database,
    limit: int | None = None,
    offset: int | None = None,
) -> list[AlertSummary]:
    """List alerts grouped by (title, message, severity type).

    The provider stores one row per affected line and often omits the alert
    id, so an alert is identified by its text. Each group carries the highest
    severity level, the latest update and the sorted set of affected lines.
    Most severe (lowest level) first, then most recent.
    """
    severity_level = func.max(alerts.c.severity_level).label("severity_level")
    last_update = func.max(alerts.c.last_update).label("last_update")

    grouped = (
        select(alerts.c.title, alerts.c.message, alerts.c.severity_type, severity_level, last_update)
        .where(alerts.c.title.is_not(None), alerts.c.message.is_not(None))
        .group_by(alerts.c.title, alerts.c.message, alerts.c.severity_type)
        .order_by(
            severity_level.asc().nulls_last(),
            last_update.desc().nulls_last(),
            alerts.c.title,
            alerts.c.message,
        )
    )
    if limit is not None:
        grouped = grouped.limit(limit)
    if offset is not None:
        grouped = grouped.offset(offset)

    async with db.connect() as conn:
        groups = (await conn.execute(grouped)).all()
        if not groups:
            return []

        titles = {row.title for row in groups}
        line_rows = await conn.execute(
            select(
                alerts.c.title,
                alerts.c.message,
                alerts.c.severity_type,
                alerts.c.line_commercial_name,
            )
            .where(alerts.c.title.in_(titles), alerts.c.line_commercial_name.is_not(None))
            .distinct()
        )
        affected: dict[tuple[Any, ...], set[str]] = defaultdict(set)
        for title, message, severity_type, line_name in line_rows:
            affected[(title, message, severity_type)].add(line_name)

    summaries = []
    for row in groups:
        affected_lines = sorted(affected.get((row.title, row.message, row.severity_type), ()))
        summaries.append(
            AlertSummary(
                title=row.title,
                message=row.message,
                severity_type=row.severity_type,
                severity_level=row.severity_level,
                last_update=row.last_update,
                line_commercial_name=affected_lines[0] if affected_lines else None,
                affected_lines=affected_lines,
                lines_count=len(affected_lines),
            )
        )
    return summaries


async def count_alerts(db: Database) -> int:
    """Number of distinct alerts, counted by (title, message)."""
    distinct_alerts = (
        select(alerts.c.title, alerts.c.message)
        .where(alerts.c.title.is_not(None), alerts.c.message.is_not(None))
        .distinct()
        .subquery()
    )
    async with db.connect() as conn:
        total = await conn.scalar(select(func.count()).select_from(distinct_alerts))
    return int(total or 0)


async def alerts_page(
    db: Database,
    limit: int | None = None,
    offset: int | None = None,
) -> Page[AlertSummary]:
    data = await list_alerts(db, limit, offset)
    return _page(data, await count_alerts(db), limit, offset)


# Stops


_STOP_COLUMNS = (
    stops.c.id,
    stops.c.name,
    stops.c.longitude,
    stops.c.latitude,
    stops.c.pmr_accessible,
    stops.c.service_info,
    stops.c.has_elevator,
    stops.c.has_escalator,
    stops.c.address,
    stops.c.municipality,
    stops.c.zone,
)


async def list_stops(
    db: Database,
    limit: int | None = None,
    offset: int | None = None,
) -> list[dict[str, Any]]:
    stmt = select(*_STOP_COLUMNS).order_by(stops.c.name, stops.c.id)
    if limit is not None:
        stmt = stmt.limit(limit)
    if offset is not None:
        stmt = stmt.offset(offset)
    async with db.connect() as conn:
        result = await conn.execute(stmt)
        return [dict(row) for row in result.mappings()]


async def count_stops(db: Database) -> int:
    async with db.connect() as conn:
        total = await conn.scalar(select(func.count()).select_from(stops))
    return int(total or 0)


async def stops_page(
    db: Database,
    limit: int | None = None,
    offset: int | None = None,
) -> Page[dict[str, Any]]:
    data = await list_stops(db, limit, offset)
    return _page(data, await count_stops(db), limit, offset)


async def get_stop(db: Database, stop_id: str) -> dict[str, Any] | None:
    stmt = select(
        stops.c.id, stops.c.name, stops.c.service_info, stops.c.longitude, stops.c.latitude
    ).where(stops.c.id == stop_id)
    async with db.connect() as conn:
        row = (await conn.execute(stmt)).mappings().first()
    return dict(row) if row is not None else None


async def latest_delays_by_line(
    conn: AsyncConnection,
    line_codes: Iterable[str],
) -> dict[str, str]:
    """Most recent live delay per line sort code.

    The sort code is embedded in the vehicle's composite LineRef, so rows are
    narrowed with a LIKE on ``::CODE:`` and matched exactly in Python.
    """
    wanted = set(line_codes)
    if not wanted:
        return {}

    stmt = (
        select(vehicle_positions.c.line_ref, vehicle_positions.c.delay)
        .where(
            vehicle_positions.c.delay.is_not(None),
            or_(*(_line_ref_contains(code) for code in sorted(wanted))),
        )
        .order_by(vehicle_positions.c.recorded_at_time.desc().nulls_last())
    )

    delays: dict[str, str] = {}
    for line_ref, delay in await conn.execute(stmt):
        code = extract_line_sort_code(line_ref)
        if code in wanted and code not in delays:
            delays[code] = delay
    return delays


async def next_passages(
    db: Database,
    stop_id: str,
    timezone: str | ZoneInfo = "Europe/Paris",
    now: datetime | None = None,
) -> list[NextPassage]:
    """Next scheduled passages at a stop, with the live delay of each line.

    The GTFS schedule is filtered to services running today (calendar day
    flag and date range) and departures at or after the current local time.
    Each (time, line, headsign) appears once. Lines without a known live
    delay are reported on time ("PT0S").

    Args:
        db: Database handle.
        stop_id: WFS stop id (e.g. ``tclarret.123456``).
        timezone: Timezone the schedule is expressed in.
        now: Current instant (timezone-aware); defaults to the wall clock.

    Returns:
        Up to ten passages ordered by scheduled arrival time.
    """
    tz = timezone if isinstance(timezone, ZoneInfo) else ZoneInfo(timezone)
    local_now = (now or datetime.now(tz)).astimezone(tz)
    current_time = local_now.strftime("%H:%M:%S")
    current_date = local_now.strftime("%Y%m%d")
    day_flag = gtfs_calendar.c[_CALENDAR_DAYS[local_now.weekday()]]

    async with db.connect() as conn:
        stop = (
            await conn.execute(
                select(stops.c.name, stops.c.gtfs_stop_id).where(
                    stops.c.id == stop_id, stops.c.gtfs_stop_id.is_not(None)
                )
            )
        ).first()
        if stop is None:
            return []

        active_services = select(gtfs_calendar.c.service_id).where(
            day_flag == 1,
            gtfs_calendar.c.start_date <= current_date,
            gtfs_calendar.c.end_date >= current_date,
        )
        scheduled = (
            select(
                gtfs_stop_times.c.arrival_time,
                gtfs_routes.c.route_short_name,
                gtfs_trips.c.trip_headsign,
                func.min(gtfs_trips.c.direction_id).label("direction_id"),
                func.min(gtfs_routes.c.route_color).label("route_color"),
                func.min(gtfs_routes.c.route_text_color).label("route_text_color"),
            )
            .select_from(
                gtfs_stop_times.join(
                    gtfs_trips, gtfs_stop_times.c.trip_id == gtfs_trips.c.trip_id
                ).join(gtfs_routes, gtfs_trips.c.route_id == gtfs_routes.c.route_id)
            )
            .where(
                gtfs_stop_times.c.stop_id == stop.gtfs_stop_id,
                gtfs_trips.c.service_id.in_(active_services),
                gtfs_stop_times.c.arrival_time >= current_time,
            )
            .group_by(
                gtfs_stop_times.c.arrival_time,
                gtfs_routes.c.route_short_name,
                gtfs_trips.c.trip_headsign,
            )
            .order_by(
                gtfs_stop_times.c.arrival_time,
                gtfs_routes.c.route_short_name,
                gtfs_trips.c.trip_headsign,
            )
            .limit(NEXT_PASSAGES_LIMIT)
        )
        passages = (await conn.execute(scheduled)).all()

        delays = await latest_delays_by_line(
            conn, {p.route_short_name for p in passages if p.route_short_name}
        )

    return [
        NextPassage(
            direction_ref="outbound" if p.direction_id == 0 else "inbound",
            destination_name=p.trip_headsign,
            delay=delays.get(p.route_short_name, "PT0S"),
            stop_point_name=stop.name,
            published_line_name=p.route_short_name,
            line_destination=p.trip_headsign,
            scheduled_arrival_time=p.arrival_time,
            route_color=p.route_color,
            route_text_color=p.route_text_color,
        )
        for p in passages
    ]


# Lines


async def list_lines(db: Database, category: str | None = None) -> list[dict[str, Any]]:
    """Every line trace; ``line_code`` is the sort code the viewer groups on."""
    stmt = select(
        lines.c.id,
        lines.c.line_name,
        lines.c.trace_code,
        lines.c.line_sort_code.label("line_code"),
        lines.c.category,
        lines.c.color,
        lines.c.line_sort_code,
        lines.c.destination_name,
        lines.c.direction,
        lines.c.line_type_name,
    ).order_by(lines.c.category, lines.c.line_sort_code, lines.c.id)
    if category is not None:
        stmt = stmt.where(lines.c.category == category)
    async with db.connect() as conn:
        result = await conn.execute(stmt)
        return [dict(row) for row in result.mappings()]


def lines_by_sort_code(rows: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    """One entry per commercial line: the first trace seen for each sort code."""
    seen: dict[Any, dict[str, Any]] = {}
    for row in rows:
        seen.setdefault(row.get("line_sort_code"), row)
    return list(seen.values())


async def list_line_icons(db: Database) -> list[dict[str, Any]]:
    stmt = select(
        line_icon_mapping.c.code_ligne,
        line_icon_mapping.c.picto_mode,
        line_icon_mapping.c.picto_ligne,
    ).order_by(line_icon_mapping.c.code_ligne)
    async with db.connect() as conn:
        result = await conn.execute(stmt)
        return [dict(row) for row in result.mappings()]


# Vehicles


async def list_vehicles(
    db: Database,
    line_sort_code: str | None = None,
    direction: Direction | str | None = None,
) -> list[dict[str, Any]]:
    """Live vehicle positions, optionally for one line and direction.

    Args:
        db: Database handle.
        line_sort_code: Sort code embedded in the vehicle LineRef (e.g. ``C3``).
        direction: ``Aller``/``Retour`` (or ``outbound``/``inbound``).

    Raises:
        ValueError: If the direction is not recognized.
    """
    stmt = select(
        vehicle_positions.c.vehicle_ref,
        vehicle_positions.c.longitude,
        vehicle_positions.c.latitude,
        vehicle_positions.c.bearing,
        vehicle_positions.c.delay,
        vehicle_positions.c.published_line_name,
        vehicle_positions.c.destination_name,
        vehicle_positions.c.line_ref,
        vehicle_positions.c.direction_ref,
        vehicle_positions.c.stop_point_name,
        vehicle_positions.c.expected_arrival_time,
        vehicle_positions.c.distance_from_stop,
    ).order_by(vehicle_positions.c.vehicle_ref)

    if line_sort_code:
        stmt = stmt.where(_line_ref_contains(line_sort_code))
    if direction:
        parsed = direction if isinstance(direction, Direction) else Direction.parse(direction)
        stmt = stmt.where(vehicle_positions.c.direction_ref == parsed.direction_ref)

    async with db.connect() as conn:
        result = await conn.execute(stmt)
        rows = [dict(row) for row in result.mappings()]

    if line_sort_code:
        rows = [row for row in rows if extract_line_sort_code(row["line_ref"]) == line_sort_code]
    return rows
