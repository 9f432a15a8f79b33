"""Map provider records onto internal entities.

Each normalizer takes one record in the provider's shape and returns one
entity. Optional fields are null-coalesced; only a missing natural key or a
value that cannot be coerced rejects the record. A timestamp that cannot be
parsed is nulled instead.

The SIRI normalizers accept an optional ``missing`` counter that tallies the
names of the fields each accepted record lacked.
"""

import json
import re
from collections import Counter
from typing import Any

from lyon_transit.entities import (
    Alert,
    EstimatedCall,
    EstimatedVehicleJourney,
    Line,
    LineIcon,
    Station,
    Stop,
    VehiclePosition,
)
from lyon_transit.models import LineCategory
from lyon_transit.siri import (
    MissingNaturalKeyError,
    Extraction,
    RecordError,
    extract_estimated_call,
    extract_estimated_journey,
    extract_vehicle_activity,
)

# LineRef values look like "TCL:Line::C3:LOC"; the sort code sits between "::" and the next ":"
_LINE_SORT_CODE = re.compile(r"::(.*?):")


def format_color(value: str | None) -> str | None:
    """Convert the provider's "R G B" triplet into CSS ``rgb(R, G, B)``."""
    if not isinstance(value, str) or not value.strip():
        return None
    return f"rgb({', '.join(value.split())})"


def gtfs_id_from_feature_id(feature_id: str) -> str:
    """GTFS stop id from a WFS feature id (``tclarret.123456`` -> ``123456``)."""
    return feature_id.split(".")[-1]


def gtfs_id_from_stop_point_ref(stop_point_ref: str | None) -> str | None:
    """GTFS stop id from a SIRI StopPointRef (``TCL:StopPoint:Q:789012:`` -> ``789012``)."""
    if not stop_point_ref:
        return None
    parts = stop_point_ref.split(":")
    if len(parts) < 4 or not parts[3]:
        return None
    return parts[3]


def png_icon_name(file_name: str | None) -> str | None:
    """Icons are published as PNG only; rewrite a trailing ``.svg``."""
    if file_name is None:
        return None
    return re.sub(r"\.svg$", ".png", file_name)


def extract_line_sort_code(line_ref: str | None) -> str | None:
    """Sort code embedded in a SIRI LineRef, or None when the ref has no ``::CODE:`` part."""
    if not line_ref:
        return None
    match = _LINE_SORT_CODE.search(line_ref)
    return match.group(1) if match else None


def _feature_parts(feature: dict[str, Any], entity: str) -> tuple[str, dict[str, Any], Any]:
    feature_id = feature.get("id")
    if not feature_id:
        raise MissingNaturalKeyError(entity, "id")
    properties = feature.get("properties") or {}
    if not isinstance(properties, dict):
        raise RecordError(f"{entity} {feature_id} has non-object properties")
    geometry = feature.get("geometry")
    return str(feature_id), properties, geometry


def _point(geometry: Any) -> tuple[Any, Any]:
    """(longitude, latitude) of a GeoJSON point, or (None, None)."""
    coordinates = geometry.get("coordinates") if isinstance(geometry, dict) else None
    if isinstance(coordinates, list) and len(coordinates) >= 2:
        return coordinates[0], coordinates[1]
    return None, None


def normalize_alert(record: dict[str, Any]) -> Alert:
    """Rename the French REST fields of a tclalertetrafic record."""
    return Alert(
        alert_id=record.get("n"),
        type=record.get("type"),
        cause=record.get("cause"),
        start_time=record.get("debut"),
        end_time=record.get("fin"),
        mode=record.get("mode"),
        line_commercial_name=record.get("ligne_com"),
        line_customer_name=record.get("ligne_cli"),
        title=record.get("titre"),
        message=record.get("message"),
        last_update=record.get("last_update_fme"),
        severity_type=record.get("typeseverite"),
        severity_level=record.get("niveauseverite"),
        object_type=record.get("typeobjet"),
        object_list=record.get("listeobjet"),
    )


def normalize_station(feature: dict[str, Any]) -> Station:
    feature_id, properties, geometry = _feature_parts(feature, "station")
    longitude, latitude = _point(geometry)
    station_api_id = properties.get("station_api_id")
    return Station(
        id=feature_id,
        station_api_id=station_api_id,
        name=properties.get("nom"),
        service_info=properties.get("desserte"),
        last_update=properties.get("last_update"),
        longitude=longitude,
        latitude=latitude,
        station_id=station_api_id,
    )


def normalize_stop(feature: dict[str, Any]) -> Stop:
    feature_id, properties, geometry = _feature_parts(feature, "stop")
    longitude, latitude = _point(geometry)
    return Stop(
        id=feature_id,
        name=properties.get("nom"),
        service_info=properties.get("desserte"),
        pmr_accessible=properties.get("pmr"),
        has_elevator=properties.get("ascenseur"),
        has_escalator=properties.get("escalier"),
        last_update=properties.get("last_update"),
        address=properties.get("adresse"),
        municipality=properties.get("commune"),
        zone=properties.get("zone"),
        longitude=longitude,
        latitude=latitude,
        gtfs_stop_id=gtfs_id_from_feature_id(feature_id),
    )


def normalize_line(feature: dict[str, Any], category: LineCategory) -> Line:
    """Map a WFS line trace; the geometry is kept as serialized GeoJSON."""
    feature_id, properties, geometry = _feature_parts(feature, "line")
    return Line(
        id=feature_id,
        line_name=properties.get("nom_trace"),
        trace_code=json.dumps(geometry) if geometry is not None else None,
        line_code=properties.get("code_ligne"),
        trace_type=properties.get("type_trace"),
        trace_name=properties.get("nom_trace"),
        direction=properties.get("sens"),
        origin_id=properties.get("origine"),
        destination_id=properties.get("destination"),
        origin_name=properties.get("nom_origine"),
        destination_name=properties.get("nom_destination"),
        transport_family=properties.get("famille_transport"),
        start_date=properties.get("date_debut"),
        end_date=properties.get("date_fin"),
        line_type_code=properties.get("code_type_ligne"),
        line_type_name=properties.get("nom_type_ligne"),
        pmr_accessible=properties.get("pmr"),
        line_sort_code=properties.get("ligne"),
        version_name=properties.get("nom_version"),
        last_update=properties.get("last_update"),
        category=category.value,
        color=format_color(properties.get("couleur")),
    )


def normalize_line_icon(row: list[str]) -> LineIcon:
    """Map one ``code_ligne;picto_mode;picto_ligne`` CSV row."""
    cells = [cell.strip() for cell in row] + [""] * 3
    code_ligne, picto_mode, picto_ligne = cells[:3]
    if not code_ligne:
        raise MissingNaturalKeyError("line icon", "code_ligne")
    return LineIcon(
        code_ligne=code_ligne,
        picto_mode=picto_mode,
        picto_ligne=png_icon_name(picto_ligne or None),
    )


def normalize_vehicle_activity(
    activity: dict[str, Any], missing: Counter[str] | None = None
) -> VehiclePosition:
    extraction = extract_vehicle_activity(activity)
    extraction.require("vehicle position", "vehicle_ref")
    vehicle = VehiclePosition(**extraction.fields)
    if missing is not None:
        missing.update(extraction.missing)
    return vehicle


def _estimated_call(extraction: Extraction) -> EstimatedCall:
    """Map an EstimatedCall; without a live deviation the feed omits the expected arrival."""
    fields = dict(extraction.fields)
    if fields["expected_arrival_time"] is None:
        fields["expected_arrival_time"] = fields["aimed_arrival_time"]
    return EstimatedCall(
        gtfs_stop_id=gtfs_id_from_stop_point_ref(fields["stop_point_ref"]),
        **fields,
    )


def normalize_estimated_journey(
    journey: dict[str, Any], missing: Counter[str] | None = None
) -> EstimatedVehicleJourney:
    """Map an EstimatedVehicleJourney and its calls.

    Fields absent from a call are tallied as ``call.<field>``.
    """
    extraction = extract_estimated_journey(journey)
    extraction.require("estimated journey", "dated_vehicle_journey_ref")
    fields = dict(extraction.fields)
    raw_calls = fields.pop("calls")
    call_extractions = [
        extract_estimated_call(call) for call in raw_calls if isinstance(call, dict)
    ]
    estimated = EstimatedVehicleJourney(
        calls=tuple(_estimated_call(call) for call in call_extractions),
        **fields,
    )
    if missing is not None:
        missing.update(extraction.missing)
        for call in call_extractions:
            missing.update(f"call.{name}" for name in call.missing)
    return estimated
