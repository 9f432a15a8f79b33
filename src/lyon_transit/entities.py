"""Internal entity shapes written to and read from the transit store."""

import re
from collections.abc import Callable
from datetime import date, datetime
from typing import Annotated, Any, Generic, TypeVar

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    ValidationInfo,
)

from lyon_transit.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)

# GeoServer writes dates as "2024-09-02Z"
_ZONED_DATE = re.compile(r"^(\d{4}-\d{2}-\d{2})Z$")
# Postgres-style hour-only offset: "2024-05-02 03:00:00+02"
_HOUR_OFFSET = re.compile(r"(\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?[+-]\d{2})$")

_DATETIME = TypeAdapter(datetime)
_DATE = TypeAdapter(date)


def _blank_to_none(value: Any) -> Any:
    """Coalesce empty strings to None (the provider uses both for 'absent')."""
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _parse_flag(value: Any) -> Any:
    """Accept the provider's French and numeric boolean spellings."""
    value = _blank_to_none(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("oui", "o"):
            return True
        if lowered in ("non", "n"):
            return False
    return value


def _tidy_datetime(text: str) -> str:
    return _HOUR_OFFSET.sub(r"\1:00", text)


def _tidy_date(text: str) -> str:
    return _ZONED_DATE.sub(r"\1", text)


def _lenient(
    adapter: TypeAdapter[Any], tidy: Callable[[str], str]
) -> Callable[[Any, ValidationInfo], Any]:
    """Parse a timestamp, or fall back to None so the rest of the record survives."""

    def parse(value: Any, info: ValidationInfo) -> Any:
        value = _blank_to_none(value)
        if value is None:
            return None
        try:
            return adapter.validate_python(tidy(value.strip()) if isinstance(value, str) else value)
        except ValidationError:
            logger.warning("unparseable_timestamp", field=info.field_name, value=str(value))
            return None

    return parse


OptionalStr = Annotated[str | None, BeforeValidator(_blank_to_none)]
OptionalInt = Annotated[int | None, BeforeValidator(_blank_to_none)]
OptionalFloat = Annotated[float | None, BeforeValidator(_blank_to_none)]
OptionalBool = Annotated[bool | None, BeforeValidator(_parse_flag)]
OptionalDatetime = Annotated[
    datetime | None, BeforeValidator(_lenient(_DATETIME, _tidy_datetime))
]
OptionalDate = Annotated[date | None, BeforeValidator(_lenient(_DATE, _tidy_date))]


class Entity(BaseModel):
    """Base for rows produced by the normalizers."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    def to_row(self) -> dict[str, Any]:
        """Column values for the store, every column present (None included)."""
        return self.model_dump()


class Stop(Entity):
    """A physical stop from the WFS tclarret layer."""

    id: str
    name: OptionalStr = None
    service_info: OptionalStr = None
    pmr_accessible: OptionalBool = None
    has_elevator: OptionalBool = None
    has_escalator: OptionalBool = None
    last_update: OptionalDatetime = None
    address: OptionalStr = None
    municipality: OptionalStr = None
    zone: OptionalStr = None
    longitude: OptionalFloat = None
    latitude: OptionalFloat = None
    gtfs_stop_id: OptionalStr = None


class Station(Entity):
    """A metro/tram station from the WFS tclstation layer."""

    id: str
    station_api_id: OptionalStr = None
    name: OptionalStr = None
    service_info: OptionalStr = None
    last_update: OptionalDatetime = None
    longitude: OptionalFloat = None
    latitude: OptionalFloat = None
    station_id: OptionalStr = None


class Line(Entity):
    """One direction/trace variant of a commercial line."""

    id: str
    line_name: OptionalStr = None
    trace_code: OptionalStr = None
    line_code: OptionalStr = None
    trace_type: OptionalStr = None
    trace_name: OptionalStr = None
    direction: OptionalStr = None
    origin_id: OptionalStr = None
    destination_id: OptionalStr = None
    origin_name: OptionalStr = None
    destination_name: OptionalStr = None
    transport_family: OptionalStr = None
    start_date: OptionalDate = None
    end_date: OptionalDate = None
    line_type_code: OptionalStr = None
    line_type_name: OptionalStr = None
    pmr_accessible: OptionalBool = None
    line_sort_code: OptionalStr = None
    version_name: OptionalStr = None
    last_update: OptionalDatetime = None
    category: str
    color: OptionalStr = None


class Alert(Entity):
    """A traffic alert row; one row per (alert, affected line)."""

    alert_id: OptionalInt = None
    type: OptionalStr = None
    cause: OptionalStr = None
    start_time: OptionalDatetime = None
    end_time: OptionalDatetime = None
    mode: OptionalStr = None
    line_commercial_name: OptionalStr = None
    line_customer_name: OptionalStr = None
    title: OptionalStr = None
    message: OptionalStr = None
    last_update: OptionalDatetime = None
    severity_type: OptionalStr = None
    severity_level: OptionalInt = None
    object_type: OptionalStr = None
    object_list: OptionalStr = None


class LineIcon(Entity):
    """Pictogram file names for a line code."""

    code_ligne: str
    picto_mode: OptionalStr = None
    picto_ligne: OptionalStr = None


class VehiclePosition(Entity):
    """Live position of a vehicle with its next monitored call."""

    vehicle_ref: str
    recorded_at_time: OptionalDatetime = None
    valid_until_time: OptionalDatetime = None
    line_ref: OptionalStr = None
    direction_ref: OptionalStr = None
    dated_vehicle_journey_ref: OptionalStr = None
    published_line_name: OptionalStr = None
    direction_name: OptionalStr = None
    operator_ref: OptionalStr = None
    destination_ref: OptionalStr = None
    destination_name: OptionalStr = None
    longitude: OptionalFloat = None
    latitude: OptionalFloat = None
    bearing: OptionalFloat = None
    delay: OptionalStr = None
    stop_point_ref: OptionalStr = None
    stop_point_name: OptionalStr = None
    aimed_arrival_time: OptionalDatetime = None
    expected_arrival_time: OptionalDatetime = None
    aimed_departure_time: OptionalDatetime = None
    expected_departure_time: OptionalDatetime = None
    distance_from_stop: OptionalFloat = None
    stop_order: OptionalInt = None


class EstimatedCall(Entity):
    """A predicted stop call; keyed by (journey, stop order) once stored."""

    stop_point_ref: OptionalStr = None
    gtfs_stop_id: OptionalStr = None
    stop_order: OptionalInt = None
    aimed_arrival_time: OptionalDatetime = None
    expected_arrival_time: OptionalDatetime = None
    aimed_departure_time: OptionalDatetime = None
    expected_departure_time: OptionalDatetime = None


class EstimatedVehicleJourney(Entity):
    """A dated vehicle journey and the calls the feed estimates for it."""

    dated_vehicle_journey_ref: str
    line_ref: OptionalStr = None
    direction_ref: OptionalStr = None
    destination_ref: OptionalStr = None
    calls: tuple[EstimatedCall, ...] = ()

    def to_row(self) -> dict[str, Any]:
        """Journey columns only; calls are written to their own table."""
        return self.model_dump(exclude={"calls"})


class AlertSummary(BaseModel):
    """One alert as served to clients, with every line it affects."""

    title: str
    message: str
    severity_type: str | None = None
    severity_level: int | None = None
    last_update: datetime | None = None
    line_commercial_name: str | None = None
    affected_lines: list[str] = Field(default_factory=list)
    lines_count: int = 0


class NextPassage(BaseModel):
    """A scheduled passage at a stop, annotated with the line's live delay."""

    vehicle_ref: str | None = None
    line_ref: str | None = None
    direction_ref: str
    destination_name: str | None = None
    delay: str = "PT0S"
    stop_point_name: str | None = None
    expected_arrival_time: str | None = None
    distance_from_stop: float | None = None
    published_line_name: str | None = None
    line_destination: str | None = None
    scheduled_arrival_time: str
    route_color: str | None = None
    route_text_color: str | None = None


class Page(BaseModel, Generic[T]):
    """A page of results with the metadata the viewer paginates on."""

    data: list[T]
    total: int
    limit: int
    offset: int
    has_more: bool
