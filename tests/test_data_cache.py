import json
from datetime import datetime, timezone

import pytest

from conftest import wib_ms
from data_cache import DataCache, SnapshotError


def _write_snapshot(data_dir, payload, include_gapeka=True):
    (data_dir / "stations.json").write_text(json.dumps(payload["stations"]), encoding="utf-8")
    (data_dir / "routes.json").write_text(json.dumps(payload["routes"]), encoding="utf-8")
    if include_gapeka:
        (data_dir / "gapeka.json").write_text(json.dumps(payload["gapeka"]), encoding="utf-8")


def test_load_all(tmp_path, snapshot_payload):
    _write_snapshot(tmp_path, snapshot_payload)
    cache = DataCache(tmp_path)
    cache.load_all()

    assert len(cache.stations) == 3
    assert cache.stations.get("1").code == "AAA"
    assert cache.stations.get("CCC").city is None
    assert set(cache.routes) == {"10", "11"}
    assert cache.routes["11"].name == "Bravo - Charlie"
    assert cache.last_updated_at == datetime(2024, 5, 1, tzinfo=timezone.utc)


def test_nested_route_paths_are_flattened(tmp_path, snapshot_payload):
    _write_snapshot(tmp_path, snapshot_payload)
    cache = DataCache(tmp_path)
    cache.load_all()

    route = cache.routes["10"]
    assert len(route.path) == 4
    assert route.path[0].longitude == 0.0
    assert route.path[-1].longitude == 1.0
    assert route.total_length_m == pytest.approx(111_195, rel=1e-4)


def test_trains_are_built_from_gapeka(tmp_path, snapshot_payload):
    _write_snapshot(tmp_path, snapshot_payload)
    cache = DataCache(tmp_path)
    cache.load_all()

    train = cache.get_train("100")
    assert train.code == "KA1"
    assert train.name == "Argo"
    assert [(s.origin_station_code, s.destination_station_code) for s in train.steps] == [
        ("1", "2"),
        ("2", "3"),
    ]
    assert train.steps[0].start_ms == wib_ms(8, 0)
    assert train.steps[0].route_id == "10"
    assert len(cache.get_journey("100")) == 3
    assert cache.get_journey("999") is None


def test_missing_gapeka_is_not_fatal(tmp_path, snapshot_payload):
    _write_snapshot(tmp_path, snapshot_payload, include_gapeka=False)
    cache = DataCache(tmp_path)
    cache.load_all()

    assert cache.trains == {}
    assert cache.last_updated_at is None


def test_missing_stations_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        DataCache(tmp_path).load_all()


class TestSnapshotErrors:
    def test_route_without_points(self, snapshot_payload):
        snapshot_payload["routes"]["data"].append({"route_id": 12, "paths": []})
        with pytest.raises(SnapshotError):
            DataCache(None).load_payload(**_as_kwargs(snapshot_payload))

    def test_station_without_position(self, snapshot_payload):
        snapshot_payload["stations"].append({"id": 4, "code": "DDD", "name": "Delta"})
        with pytest.raises(SnapshotError):
            DataCache(None).load_payload(**_as_kwargs(snapshot_payload))

    def test_train_without_rows(self, snapshot_payload):
        snapshot_payload["gapeka"]["data"].append({"tr_id": 200, "tr_cd": "KA2", "paths": []})
        with pytest.raises(SnapshotError):
            DataCache(None).load_payload(**_as_kwargs(snapshot_payload))

    def test_malformed_last_updated_at(self, snapshot_payload):
        snapshot_payload["gapeka"]["last_updated_at"] = "yesterday"
        with pytest.raises(SnapshotError, match="last_updated_at"):
            DataCache(None).load_payload(**_as_kwargs(snapshot_payload))

    def test_snapshot_error_is_value_error(self):
        assert issubclass(SnapshotError, ValueError)

    def test_failed_load_keeps_previous_snapshot(self, snapshot_payload):
        cache = DataCache(None)
        cache.load_payload(**_as_kwargs(snapshot_payload))

        snapshot_payload["routes"]["data"].append({"route_id": 12, "paths": []})
        with pytest.raises(SnapshotError):
            cache.load_payload(**_as_kwargs(snapshot_payload))

        assert set(cache.routes) == {"10", "11"}
        assert "100" in cache.trains


def test_malformed_rows_are_skipped(snapshot_payload):
    snapshot_payload["stations"].append({"id": 5, "name": "No code"})
    snapshot_payload["gapeka"]["data"][0]["paths"].insert(1, {"arriv_ms": 0, "depart_ms": 0})
    cache = DataCache(None)
    cache.load_payload(**_as_kwargs(snapshot_payload))

    assert len(cache.stations) == 3
    assert len(cache.get_journey("100")) == 3


def test_routes_keyed_by_id(snapshot_payload):
    routes = {
        "20": {"name": "Keyed", "path": [[0.0, 0.0], [0.0, 1.0]]},
    }
    cache = DataCache(None)
    cache.load_payload(snapshot_payload["stations"], routes)

    assert cache.routes["20"].name == "Keyed"
    assert cache.trains == {}


def _as_kwargs(payload):
    return {
        "raw_stations": payload["stations"],
        "raw_routes": payload["routes"],
        "raw_gapeka": payload["gapeka"],
    }
