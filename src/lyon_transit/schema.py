"""Table definitions for the transit store.

The tables are created and migrated outside this service; these definitions
describe the columns and uniqueness constraints the pipeline relies on.
"""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

stops = Table(
    "stops",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255)),
    Column("service_info", Text),
    Column("pmr_accessible", Boolean),
    Column("has_elevator", Boolean),
    Column("has_escalator", Boolean),
    Column("last_update", DateTime(timezone=True)),
    Column("address", String(255)),
    Column("municipality", String(128)),
    Column("zone", String(32)),
    Column("longitude", Float),
    Column("latitude", Float),
    Column("gtfs_stop_id", String(32), index=True),
)

stations = Table(
    "stations",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("station_api_id", String(64)),
    Column("name", String(255)),
    Column("service_info", Text),
    Column("last_update", DateTime(timezone=True)),
    Column("longitude", Float),
    Column("latitude", Float),
    Column("station_id", String(64)),
)

lines = Table(
    "lines",
    metadata,
    Column("id", String(128), primary_key=True),
    Column("line_name", String(255)),
    Column("trace_code", Text),
    Column("line_code", String(32)),
    Column("trace_type", String(64)),
    Column("trace_name", String(255)),
    Column("direction", String(32)),
    Column("origin_id", String(64)),
    Column("destination_id", String(64)),
    Column("origin_name", String(255)),
    Column("destination_name", String(255)),
    Column("transport_family", String(64)),
    Column("start_date", Date),
    Column("end_date", Date),
    Column("line_type_code", String(32)),
    Column("line_type_name", String(128)),
    Column("pmr_accessible", Boolean),
    # Shared by every direction and trace version of one commercial line
    Column("line_sort_code", String(32), index=True),
    Column("version_name", String(128)),
    Column("last_update", DateTime(timezone=True)),
    Column("category", String(16), nullable=False),
    Column("color", String(32)),
)

alerts = Table(
    "alerts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("alert_id", Integer, unique=True),
    Column("type", String(64)),
    Column("cause", String(128)),
    Column("start_time", DateTime(timezone=True)),
    Column("end_time", DateTime(timezone=True)),
    Column("mode", String(64)),
    Column("line_commercial_name", String(64)),
    Column("line_customer_name", String(64)),
    Column("title", Text),
    Column("message", Text),
    Column("last_update", DateTime(timezone=True)),
    Column("severity_type", String(64)),
    Column("severity_level", Integer),
    Column("object_type", String(64)),
    Column("object_list", Text),
)

line_icon_mapping = Table(
    "line_icon_mapping",
    metadata,
    Column("code_ligne", String(32), primary_key=True),
    Column("picto_mode", String(128)),
    Column("picto_ligne", String(128)),
)

vehicle_positions = Table(
    "vehicle_positions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("vehicle_ref", String(128), nullable=False, unique=True),
    Column("recorded_at_time", DateTime(timezone=True)),
    Column("valid_until_time", DateTime(timezone=True)),
    Column("line_ref", String(128)),
    Column("direction_ref", String(32)),
    Column("dated_vehicle_journey_ref", String(128)),
    Column("published_line_name", String(64)),
    Column("direction_name", String(255)),
    Column("operator_ref", String(64)),
    Column("destination_ref", String(128)),
    Column("destination_name", String(255)),
    Column("longitude", Float),
    Column("latitude", Float),
    Column("bearing", Float),
    Column("delay", String(32)),
    Column("stop_point_ref", String(128)),
    Column("stop_point_name", String(255)),
    Column("aimed_arrival_time", DateTime(timezone=True)),
    Column("expected_arrival_time", DateTime(timezone=True)),
    Column("aimed_departure_time", DateTime(timezone=True)),
    Column("expected_departure_time", DateTime(timezone=True)),
    Column("distance_from_stop", Float),
    Column("stop_order", Integer),
)

estimated_vehicle_journeys = Table(
    "estimated_vehicle_journeys",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("dated_vehicle_journey_ref", String(128), nullable=False, unique=True),
    Column("line_ref", String(128)),
    Column("direction_ref", String(32)),
    Column("destination_ref", String(128)),
)

estimated_calls = Table(
    "estimated_calls",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "estimated_vehicle_journey_id",
        Integer,
        ForeignKey("estimated_vehicle_journeys.id"),
        nullable=False,
    ),
    Column("stop_point_ref", String(128)),
    Column("gtfs_stop_id", String(32), index=True),
    Column("stop_order", Integer),
    Column("aimed_arrival_time", DateTime(timezone=True)),
    Column("expected_arrival_time", DateTime(timezone=True)),
    Column("aimed_departure_time", DateTime(timezone=True)),
    Column("expected_departure_time", DateTime(timezone=True)),
    UniqueConstraint("estimated_vehicle_journey_id", "stop_order"),
)

# Static GTFS schedule, loaded by a separate import job
gtfs_calendar = Table(
    "gtfs_calendar",
    metadata,
    Column("service_id", String(64), primary_key=True),
    Column("monday", Integer, nullable=False),
    Column("tuesday", Integer, nullable=False),
    Column("wednesday", Integer, nullable=False),
    Column("thursday", Integer, nullable=False),
    Column("friday", Integer, nullable=False),
    Column("saturday", Integer, nullable=False),
    Column("sunday", Integer, nullable=False),
    Column("start_date", String(8), nullable=False),
    Column("end_date", String(8), nullable=False),
)

gtfs_routes = Table(
    "gtfs_routes",
    metadata,
    Column("route_id", String(64), primary_key=True),
    Column("route_short_name", String(32)),
    Column("route_long_name", String(255)),
    Column("route_type", Integer),
    Column("route_color", String(8)),
    Column("route_text_color", String(8)),
)

gtfs_trips = Table(
    "gtfs_trips",
    metadata,
    Column("trip_id", String(64), primary_key=True),
    Column("route_id", String(64), ForeignKey("gtfs_routes.route_id"), nullable=False),
    Column("service_id", String(64), nullable=False),
    Column("trip_headsign", String(255)),
    Column("direction_id", Integer),
)

gtfs_stop_times = Table(
    "gtfs_stop_times",
    metadata,
    Column("trip_id", String(64), ForeignKey("gtfs_trips.trip_id"), primary_key=True),
    Column("stop_sequence", Integer, primary_key=True),
    # HH:MM:SS, may exceed 24:00:00 for trips running past midnight
    Column("arrival_time", String(8)),
    Column("departure_time", String(8)),
    Column("stop_id", String(32), nullable=False, index=True),
)
