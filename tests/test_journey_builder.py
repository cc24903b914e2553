from datetime import date, datetime
from zoneinfo import ZoneInfo

from conftest import wib_ms
from journey_builder import (
    JourneyListItemResponse,
    build_steps_from_rows,
    build_train_from_rows,
    find_leg,
    infer_reversed,
    normalize_schedule_rows,
    projected_for_route,
    validate_journey_rows,
)
from recurring_time import RecurringTimeConverter
from route_geometry import Coordinate, Route
from station_lookup import StationDirectory
from timetable_models import JourneyRow, Station


WIB = ZoneInfo("Asia/Jakarta")
CONVERTER = RecurringTimeConverter("Asia/Jakarta")

STATIONS = StationDirectory(
    [
        Station(code="AAA", name="Alpha", coordinate=Coordinate(0, 0), id="1"),
        Station(code="BBB", name="Bravo", coordinate=Coordinate(0, 1), id="2"),
        Station(code="CCC", name="Charlie", coordinate=Coordinate(0, 2), id="3"),
    ]
)


def _row(train_id, station_id, arrival=None, departure=None, route_id=None) -> JourneyRow:
    return JourneyRow(
        train_id=train_id,
        station_id=station_id,
        arrival_ms=arrival,
        departure_ms=departure,
        train_code=f"KA{train_id}",
        train_name="Argo",
        route_id=route_id,
    )


def _overnight_rows():
    return [
        _row("100", "1", departure=wib_ms(23, 50)),
        _row("100", "2", arrival=wib_ms(0, 10), departure=wib_ms(0, 15), route_id="10"),
        _row("100", "3", arrival=wib_ms(1, 0), route_id="11"),
    ]


class TestNormalizeScheduleRows:
    def test_rolls_over_midnight_once(self):
        rows = normalize_schedule_rows(_overnight_rows(), date(2024, 5, 1), CONVERTER)

        assert rows[0].departure_time == datetime(2024, 5, 1, 23, 50, tzinfo=WIB)
        assert rows[1].arrival_time == datetime(2024, 5, 2, 0, 10, tzinfo=WIB)
        assert rows[1].departure_time == datetime(2024, 5, 2, 0, 15, tzinfo=WIB)
        assert rows[2].arrival_time == datetime(2024, 5, 2, 1, 0, tzinfo=WIB)

    def test_times_are_monotonic(self):
        rows = normalize_schedule_rows(_overnight_rows(), date(2024, 5, 1), CONVERTER)
        times = [t for r in rows for t in (r.arrival_time, r.departure_time) if t is not None]
        assert times == sorted(times)

    def test_rows_without_times_are_kept(self):
        raw = [
            _row("100", "1", departure=wib_ms(8, 0)),
            _row("100", "2"),
            _row("100", "3", arrival=wib_ms(9, 0)),
        ]
        rows = normalize_schedule_rows(raw, date(2024, 5, 1), CONVERTER)
        assert rows[1].arrival_time is None and rows[1].departure_time is None
        assert rows[2].arrival_time == datetime(2024, 5, 1, 9, 0, tzinfo=WIB)

    def test_route_id_is_carried(self):
        rows = normalize_schedule_rows(_overnight_rows(), date(2024, 5, 1), CONVERTER)
        assert [r.route_id for r in rows] == [None, "10", "11"]


class TestBuildSteps:
    def test_route_is_taken_from_next_row(self):
        steps = build_steps_from_rows(_overnight_rows(), STATIONS, {})

        assert len(steps) == 2
        assert steps[0].origin_station_code == "1"
        assert steps[0].destination_station_code == "2"
        assert steps[0].route_id == "10"
        assert steps[0].start_ms == wib_ms(23, 50)
        assert steps[0].arrival_ms == wib_ms(0, 10)
        assert steps[0].departure_ms == wib_ms(0, 15)
        assert steps[1].route_id == "11"

    def test_terminal_departure_defaults_to_arrival(self):
        steps = build_steps_from_rows(_overnight_rows(), STATIONS, {})
        assert steps[1].departure_ms == steps[1].arrival_ms

    def test_reversed_is_inferred_from_geometry(self):
        backwards = Route.from_coordinates("10", [Coordinate(0, 1), Coordinate(0, 0)])
        forwards = Route.from_coordinates("11", [Coordinate(0, 1), Coordinate(0, 2)])
        steps = build_steps_from_rows(_overnight_rows(), STATIONS, {"10": backwards, "11": forwards})
        assert steps[0].reversed is True
        assert steps[1].reversed is False

    def test_segment_without_times_is_skipped(self):
        raw = [
            _row("100", "1"),
            _row("100", "2", arrival=wib_ms(9, 0), departure=wib_ms(9, 5)),
            _row("100", "3", arrival=wib_ms(10, 0)),
        ]
        steps = build_steps_from_rows(raw, STATIONS, {})
        assert [s.origin_station_code for s in steps] == ["2"]


def test_infer_reversed_without_data():
    route = Route.from_coordinates("10", [Coordinate(0, 0), Coordinate(0, 1)])
    assert infer_reversed(None, Coordinate(0, 0), Coordinate(0, 1)) is False
    assert infer_reversed(route, None, Coordinate(0, 1)) is False
    assert infer_reversed(route, Coordinate(0, 0), Coordinate(0, 1)) is False


class TestBuildTrain:
    def test_builds_train(self):
        train = build_train_from_rows("100", _overnight_rows(), STATIONS, {})
        assert train.id == "100"
        assert train.code == "KA100"
        assert len(train.steps) == 2
        assert train.overall_departure_ms == wib_ms(23, 50)
        assert train.overall_arrival_ms == wib_ms(1, 0)

    def test_single_row_gives_no_train(self):
        assert build_train_from_rows("100", _overnight_rows()[:1], STATIONS, {}) is None


class TestFindLeg:
    def test_indices_in_travel_order(self):
        assert find_leg(_overnight_rows(), "1", "3") == (0, 2)
        assert find_leg(_overnight_rows(), "2", "3") == (1, 2)

    def test_reverse_direction_is_not_a_leg(self):
        assert find_leg(_overnight_rows(), "3", "1") is None

    def test_unknown_station(self):
        assert find_leg(_overnight_rows(), "9", "3") is None

    def test_works_on_resolved_rows(self):
        rows = normalize_schedule_rows(_overnight_rows(), date(2024, 5, 1), CONVERTER)
        assert find_leg(rows, "1", "2") == (0, 1)


class TestProjectedForRoute:
    def _journeys(self):
        return {
            "100": _overnight_rows(),
            "200": [
                _row("200", "1", departure=wib_ms(6, 0)),
                _row("200", "3", arrival=wib_ms(7, 30), route_id="11"),
            ],
            "300": [
                _row("300", "3", departure=wib_ms(5, 0)),
                _row("300", "1", arrival=wib_ms(6, 0)),
            ],
        }

    def test_lists_trains_in_travel_order(self):
        items = projected_for_route(self._journeys(), "1", "3", date(2024, 5, 1), CONVERTER, STATIONS)

        assert [i.train_id for i in items] == ["200", "100"]
        assert items[0].duration_minutes == 90
        assert items[0].from_station_code == "AAA"
        assert items[0].to_station_name == "Charlie"
        assert items[0].route_id == "11"

    def test_overnight_leg_arrives_next_day(self):
        items = projected_for_route(self._journeys(), "1", "3", date(2024, 5, 1), CONVERTER)
        overnight = next(i for i in items if i.train_id == "100")

        assert overnight.segment_departure == datetime(2024, 5, 1, 23, 50, tzinfo=WIB)
        assert overnight.segment_arrival == datetime(2024, 5, 2, 1, 0, tzinfo=WIB)
        assert overnight.duration_minutes == 70
        assert overnight.from_station_name is None

    def test_response_model(self):
        items = projected_for_route(self._journeys(), "3", "1", date(2024, 5, 1), CONVERTER)
        response = JourneyListItemResponse.from_item(items[0])
        assert response.train_id == "300"
        assert response.duration_minutes == 60


class TestValidateJourneyRows:
    def test_matching_endpoints(self):
        rows = normalize_schedule_rows(_overnight_rows(), date(2024, 5, 1), CONVERTER)
        assert validate_journey_rows(rows, STATIONS.get("1"), STATIONS.get("CCC")) == []

    def test_mismatched_endpoints(self):
        rows = normalize_schedule_rows(_overnight_rows(), date(2024, 5, 1), CONVERTER)
        warnings = validate_journey_rows(rows, STATIONS.get("2"), STATIONS.get("1"))
        assert len(warnings) == 2

    def test_empty(self):
        assert validate_journey_rows([], STATIONS.get("1"), STATIONS.get("2")) == ["no journey rows provided"]
