"""Tests for provider record normalizers."""

import json
from collections import Counter
from datetime import UTC, date, datetime, timedelta

import pytest
from pydantic import ValidationError

from lyon_transit.models import LineCategory
from lyon_transit.normalizers import (
    extract_line_sort_code,
    format_color,
    gtfs_id_from_feature_id,
    gtfs_id_from_stop_point_ref,
    normalize_alert,
    normalize_estimated_journey,
    normalize_line,
    normalize_line_icon,
    normalize_station,
    normalize_stop,
    normalize_vehicle_activity,
    png_icon_name,
)
from lyon_transit.siri import MissingNaturalKeyError
from payloads import (
    make_alert,
    make_estimated_journey,
    make_line_feature,
    make_stop_feature,
    make_vehicle_activity,
)


class TestDerivations:
    """Tests for the small derivation helpers."""

    def test_format_color(self) -> None:
        assert format_color("237 28 36") == "rgb(237, 28, 36)"

    def test_format_color_collapses_whitespace(self) -> None:
        assert format_color(" 0  100 200 ") == "rgb(0, 100, 200)"

    def test_format_color_absent(self) -> None:
        assert format_color(None) is None
        assert format_color("  ") is None

    def test_gtfs_id_from_feature_id(self) -> None:
        assert gtfs_id_from_feature_id("tclarret.30119") == "30119"

    def test_gtfs_id_from_feature_id_without_dot(self) -> None:
        assert gtfs_id_from_feature_id("30119") == "30119"

    def test_gtfs_id_from_stop_point_ref(self) -> None:
        assert gtfs_id_from_stop_point_ref("TCL:StopPoint:Q:30119:LOC") == "30119"

    def test_gtfs_id_from_short_stop_point_ref(self) -> None:
        assert gtfs_id_from_stop_point_ref("TCL:StopPoint") is None
        assert gtfs_id_from_stop_point_ref(None) is None

    def test_png_icon_name(self) -> None:
        assert png_icon_name("C3.svg") == "C3.png"
        assert png_icon_name("A.png") == "A.png"
        assert png_icon_name("svg.svg.png") == "svg.svg.png"

    def test_extract_line_sort_code(self) -> None:
        assert extract_line_sort_code("TCL:Line::C3:LOC") == "C3"
        assert extract_line_sort_code("TCL:Line:C3") is None
        assert extract_line_sort_code(None) is None


class TestNormalizeAlert:
    """Tests for normalize_alert."""

    def test_renames_fields(self) -> None:
        alert = normalize_alert(make_alert(42, "Travaux rue Garibaldi", "C3", niveau=1))

        assert alert.alert_id == 42
        assert alert.title == "Travaux rue Garibaldi"
        assert alert.line_commercial_name == "C3"
        assert alert.severity_level == 1
        assert alert.severity_type == "Perturbation majeure"
        assert alert.start_time is not None

    def test_missing_id_allowed(self) -> None:
        assert normalize_alert(make_alert(None, "Travaux", "C3")).alert_id is None

    def test_blank_values_become_null(self) -> None:
        record = make_alert(1, "Travaux", "C3")
        record["fin"] = ""
        record["cause"] = " "
        alert = normalize_alert(record)
        assert alert.end_time is None
        assert alert.cause is None

    def test_uncoercible_level_rejected(self) -> None:
        record = make_alert(1, "Travaux", "C3")
        record["niveauseverite"] = "high"
        with pytest.raises(ValidationError):
            normalize_alert(record)


class TestNormalizeStop:
    """Tests for normalize_stop."""

    def test_maps_properties_and_geometry(self) -> None:
        stop = normalize_stop(make_stop_feature("tclarret.30119", "Cordeliers"))

        assert stop.id == "tclarret.30119"
        assert stop.gtfs_stop_id == "30119"
        assert stop.name == "Cordeliers"
        assert stop.longitude == 4.8357
        assert stop.latitude == 45.7676
        assert stop.pmr_accessible is True
        assert stop.has_elevator is False
        assert stop.municipality == "Lyon 2e"

    def test_french_flags(self) -> None:
        feature = make_stop_feature("tclarret.1", "A")
        feature["properties"]["pmr"] = "Oui"
        feature["properties"]["ascenseur"] = "non"
        stop = normalize_stop(feature)
        assert stop.pmr_accessible is True
        assert stop.has_elevator is False

    def test_missing_geometry(self) -> None:
        feature = make_stop_feature("tclarret.1", "A")
        feature["geometry"] = None
        stop = normalize_stop(feature)
        assert stop.longitude is None
        assert stop.latitude is None

    def test_missing_id_rejected(self) -> None:
        feature = make_stop_feature("tclarret.1", "A")
        del feature["id"]
        with pytest.raises(MissingNaturalKeyError):
            normalize_stop(feature)

    def test_hour_offset_last_update(self) -> None:
        feature = make_stop_feature("tclarret.1", "A")
        feature["properties"]["last_update"] = "2024-05-02 03:00:00+02"

        stop = normalize_stop(feature)

        assert stop.last_update == datetime(2024, 5, 2, 1, 0, tzinfo=UTC)


class TestNormalizeStation:
    """Tests for normalize_station."""

    def test_station_id_mirrors_api_id(self) -> None:
        station = normalize_station(
            {
                "id": "tclstation.1",
                "geometry": {"type": "Point", "coordinates": [4.84, 45.76]},
                "properties": {"nom": "Bellecour", "station_api_id": 1234},
            }
        )
        assert station.station_api_id == "1234"
        assert station.station_id == "1234"
        assert station.name == "Bellecour"


class TestNormalizeLine:
    """Tests for normalize_line."""

    def test_maps_line_trace(self) -> None:
        feature = make_line_feature("tcllignebus_2_0_0.C3A", "C3")
        line = normalize_line(feature, LineCategory.BUS)

        assert line.id == "tcllignebus_2_0_0.C3A"
        assert line.category == "bus"
        assert line.line_sort_code == "C3"
        assert line.color == "rgb(237, 28, 36)"
        assert line.start_date == date(2024, 1, 1)
        assert json.loads(line.trace_code or "") == feature["geometry"]

    def test_no_geometry(self) -> None:
        feature = make_line_feature("x.1", "C3")
        feature["geometry"] = None
        assert normalize_line(feature, LineCategory.TRAM).trace_code is None

    def test_zoned_date_and_hour_offset_parsed(self) -> None:
        feature = make_line_feature("x.1", "C3")
        feature["properties"]["date_debut"] = "2024-09-02Z"
        feature["properties"]["last_update"] = "2024-05-02 03:00:00+02"

        line = normalize_line(feature, LineCategory.BUS)

        assert line.start_date == date(2024, 9, 2)
        assert line.last_update == datetime(2024, 5, 2, 1, 0, tzinfo=UTC)
        assert line.last_update.utcoffset() == timedelta(hours=2)

    def test_unparseable_dates_nulled_not_rejected(self) -> None:
        feature = make_line_feature("x.1", "C3")
        feature["properties"]["date_fin"] = "31/12/2024"
        feature["properties"]["last_update"] = "hier"

        line = normalize_line(feature, LineCategory.BUS)

        assert line.id == "x.1"
        assert line.end_date is None
        assert line.last_update is None
        assert line.line_sort_code == "C3"


class TestNormalizeLineIcon:
    """Tests for normalize_line_icon."""

    def test_rewrites_svg(self) -> None:
        icon = normalize_line_icon(["C3", "bus.png", "C3.svg"])
        assert icon.code_ligne == "C3"
        assert icon.picto_ligne == "C3.png"

    def test_short_row_padded(self) -> None:
        icon = normalize_line_icon(["C3"])
        assert icon.picto_mode is None
        assert icon.picto_ligne is None

    def test_missing_code_rejected(self) -> None:
        with pytest.raises(MissingNaturalKeyError):
            normalize_line_icon(["", "bus.png", "x.png"])


class TestNormalizeVehicleActivity:
    """Tests for normalize_vehicle_activity."""

    def test_maps_vehicle(self) -> None:
        vehicle = normalize_vehicle_activity(make_vehicle_activity("V1"))
        assert vehicle.vehicle_ref == "V1"
        assert vehicle.stop_order == 7
        assert vehicle.distance_from_stop == 250.0

    def test_missing_vehicle_ref_rejected(self) -> None:
        with pytest.raises(MissingNaturalKeyError):
            normalize_vehicle_activity(make_vehicle_activity(None))

    def test_missing_fields_tallied(self) -> None:
        missing: Counter[str] = Counter()

        normalize_vehicle_activity(make_vehicle_activity("V1", delay=None), missing)
        normalize_vehicle_activity(make_vehicle_activity("V2"), missing)

        assert missing["delay"] == 1
        assert missing["expected_departure_time"] == 2
        assert "vehicle_ref" not in missing

    def test_rejected_record_not_tallied(self) -> None:
        missing: Counter[str] = Counter()
        with pytest.raises(MissingNaturalKeyError):
            normalize_vehicle_activity(make_vehicle_activity(None), missing)
        assert not missing


class TestNormalizeEstimatedJourney:
    """Tests for normalize_estimated_journey."""

    def test_calls_normalized(self) -> None:
        journey = normalize_estimated_journey(make_estimated_journey("J1", [1, 2]))

        assert journey.dated_vehicle_journey_ref == "J1"
        assert [call.stop_order for call in journey.calls] == [1, 2]
        assert journey.calls[0].gtfs_stop_id == "9001"

    def test_expected_arrival_falls_back_to_aimed(self) -> None:
        journey = normalize_estimated_journey(make_estimated_journey("J1", [1]))
        call = journey.calls[0]
        assert call.expected_arrival_time == call.aimed_arrival_time

    def test_expected_arrival_kept_when_present(self) -> None:
        raw = make_estimated_journey("J1", [1])
        raw["EstimatedCalls"]["EstimatedCall"][0]["ExpectedArrivalTime"] = (
            "2024-05-02T08:12:00+02:00"
        )
        call = normalize_estimated_journey(raw).calls[0]
        assert call.expected_arrival_time != call.aimed_arrival_time

    def test_missing_ref_rejected(self) -> None:
        with pytest.raises(MissingNaturalKeyError):
            normalize_estimated_journey(make_estimated_journey(None, [1]))

    def test_missing_call_fields_tallied(self) -> None:
        missing: Counter[str] = Counter()

        normalize_estimated_journey(make_estimated_journey("J1", [1, 2]), missing)

        assert missing["call.expected_arrival_time"] == 2
        assert missing["call.expected_departure_time"] == 2
        assert "line_ref" not in missing

    def test_row_excludes_calls(self) -> None:
        row = normalize_estimated_journey(make_estimated_journey("J1", [1])).to_row()
        assert "calls" not in row
        assert row["dated_vehicle_journey_ref"] == "J1"
