"""Named extraction helpers for SIRI Lite 2.0 records.

SIRI Lite JSON wraps most scalars: references arrive as ``{"value": "..."}``
and human-readable names as ``[{"value": "...", "lang": "fr"}]``. Any level
may be missing. The helpers here read one field each and report which fields
were absent, so a record is rejected in exactly one place when its natural
key is missing.
"""

from dataclasses import dataclass, field
from typing import Any


class RecordError(ValueError):
    """A provider record that cannot be turned into an entity."""


class MissingNaturalKeyError(RecordError):
    """A provider record without the identifier it would be upserted on."""

    def __init__(self, entity: str, key: str) -> None:
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} record has no {key}")


@dataclass
class Extraction:
    """Fields extracted from one record plus the names of those that were absent."""

    fields: dict[str, Any] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)

    def put(self, name: str, value: Any) -> None:
        self.fields[name] = value
        if value is None:
            self.missing.append(name)

    def require(self, entity: str, name: str) -> Any:
        """Return a field that must be present, or reject the record."""
        value = self.fields.get(name)
        if value is None or value == "":
            raise MissingNaturalKeyError(entity, name)
        return value


def dig(record: Any, *path: str | int) -> Any:
    """Follow a path of keys/indexes, returning None at the first gap."""
    current = record
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or len(current) <= step:
                return None
            current = current[step]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(step)
        if current is None:
            return None
    return current


def ref_value(record: Any, *path: str | int) -> Any:
    """Read a ``{"value": x}`` reference (or a bare scalar) at ``path``."""
    node = dig(record, *path)
    if isinstance(node, dict):
        return node.get("value")
    return node


def first_text(record: Any, *path: str | int) -> Any:
    """Read the first entry of a ``[{"value": x}]`` natural-language list."""
    node = dig(record, *path)
    if isinstance(node, list):
        node = node[0] if node else None
    if isinstance(node, dict):
        return node.get("value")
    return node


def extract_vehicle_activity(activity: dict[str, Any]) -> Extraction:
    """Extract the vehicle-position fields from a VehicleActivity record."""
    journey = dig(activity, "MonitoredVehicleJourney") or {}
    call = dig(journey, "MonitoredCall") or {}
    extraction = Extraction()

    extraction.put("vehicle_ref", ref_value(journey, "VehicleRef"))
    extraction.put("recorded_at_time", dig(activity, "RecordedAtTime"))
    extraction.put("valid_until_time", dig(activity, "ValidUntilTime"))
    extraction.put("line_ref", ref_value(journey, "LineRef"))
    extraction.put("direction_ref", ref_value(journey, "DirectionRef"))
    extraction.put(
        "dated_vehicle_journey_ref",
        ref_value(journey, "FramedVehicleJourneyRef", "DatedVehicleJourneyRef"),
    )
    extraction.put("published_line_name", first_text(journey, "PublishedLineName"))
    extraction.put("direction_name", first_text(journey, "DirectionName"))
    extraction.put("operator_ref", ref_value(journey, "OperatorRef"))
    extraction.put("destination_ref", ref_value(journey, "DestinationRef"))
    extraction.put("destination_name", first_text(journey, "DestinationName"))
    extraction.put("longitude", dig(journey, "VehicleLocation", "Longitude"))
    extraction.put("latitude", dig(journey, "VehicleLocation", "Latitude"))
    extraction.put("bearing", dig(journey, "Bearing"))
    extraction.put("delay", dig(journey, "Delay"))
    extraction.put("stop_point_ref", ref_value(call, "StopPointRef"))
    extraction.put("stop_point_name", first_text(call, "StopPointName"))
    extraction.put("aimed_arrival_time", dig(call, "AimedArrivalTime"))
    extraction.put("expected_arrival_time", dig(call, "ExpectedArrivalTime"))
    extraction.put("aimed_departure_time", dig(call, "AimedDepartureTime"))
    extraction.put("expected_departure_time", dig(call, "ExpectedDepartureTime"))
    extraction.put("distance_from_stop", dig(call, "DistanceFromStop"))
    extraction.put("stop_order", dig(call, "Order"))

    return extraction


def extract_estimated_call(call: dict[str, Any]) -> Extraction:
    """Extract one EstimatedCall entry."""
    extraction = Extraction()
    extraction.put("stop_point_ref", ref_value(call, "StopPointRef"))
    extraction.put("stop_order", dig(call, "Order"))
    extraction.put("aimed_arrival_time", dig(call, "AimedArrivalTime"))
    extraction.put("expected_arrival_time", dig(call, "ExpectedArrivalTime"))
    extraction.put("aimed_departure_time", dig(call, "AimedDepartureTime"))
    extraction.put("expected_departure_time", dig(call, "ExpectedDepartureTime"))
    return extraction


def extract_estimated_journey(journey: dict[str, Any]) -> Extraction:
    """Extract an EstimatedVehicleJourney record; calls are left raw under ``calls``."""
    extraction = Extraction()
    extraction.put("dated_vehicle_journey_ref", ref_value(journey, "DatedVehicleJourneyRef"))
    extraction.put("line_ref", ref_value(journey, "LineRef"))
    extraction.put("direction_ref", ref_value(journey, "DirectionRef"))
    extraction.put("destination_ref", ref_value(journey, "DestinationRef"))

    calls = dig(journey, "EstimatedCalls", "EstimatedCall")
    extraction.fields["calls"] = calls if isinstance(calls, list) else []
    return extraction
