# backend/data_cache.py
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from journey_builder import build_train_from_rows
from route_geometry import Coordinate, Route
from station_lookup import StationDirectory
from timetable_models import JourneyRow, Station, Train

logger = logging.getLogger(__name__)


class SnapshotError(ValueError):
    """参照データのスナップショットが壊れている（ロード時に即エラー）"""


STATIONS_FILE = "stations.json"
ROUTES_FILE = "routes.json"
GAPEKA_FILE = "gapeka.json"


# ============================================================================
# パーサー
# ============================================================================

def _parse_coordinate(raw: Any) -> Optional[Coordinate]:
    """
    {"latitude": .., "longitude": ..} または [lat, lon] を Coordinate に変換する。
    不正な形式なら None。
    """
    try:
        if isinstance(raw, dict):
            return Coordinate(float(raw["latitude"]), float(raw["longitude"]))
        if isinstance(raw, (list, tuple)) and len(raw) >= 2:
            return Coordinate(float(raw[0]), float(raw[1]))
    except (KeyError, TypeError, ValueError):
        return None
    return None


def _parse_ms(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def _parse_stations(raw_data: List[Dict[str, Any]]) -> List[Station]:
    """
    stations.json: [{"id", "code", "name", "position": {...}, "city"}, ...]

    code のない行は警告を出してスキップ。座標のない駅は SnapshotError。
    """
    stations: List[Station] = []
    skipped_count = 0

    for idx, row in enumerate(raw_data):
        code = row.get("code")
        if not code:
            logger.warning("Station at index %d has no 'code', skipping", idx)
            skipped_count += 1
            continue

        coordinate = _parse_coordinate(row.get("position"))
        if coordinate is None:
            raise SnapshotError(f"station {code} has no valid position")

        station_id = row.get("id")
        stations.append(
            Station(
                code=str(code),
                name=row.get("name") or str(code),
                coordinate=coordinate,
                id=str(station_id) if station_id is not None else None,
                city=row.get("city"),
            )
        )

    if skipped_count > 0:
        logger.warning("Skipped %d stations due to errors", skipped_count)

    return stations


def _route_points(row: Dict[str, Any]) -> List[Coordinate]:
    """
    - "path": 座標の配列（平坦）
    - "paths": 座標配列の配列、または {"pos": [[lat, lon], ...]} の配列（入れ子）
    どちらの形でも受け付け、入れ子は順番通りに連結する。
    """
    if "path" in row:
        raw_points = list(row.get("path") or [])
    else:
        raw_points = []
        for sub in row.get("paths") or []:
            if isinstance(sub, dict):
                raw_points.extend(sub.get("pos") or [])
            else:
                raw_points.extend(sub)

    points: List[Coordinate] = []
    for raw in raw_points:
        coord = _parse_coordinate(raw)
        if coord is not None:
            points.append(coord)
    return points


def _parse_routes(raw_data: Any) -> Dict[str, Route]:
    """
    routes.json: 配列、{"data": [...]}、または {route_id: {...}} の辞書。
    """
    if isinstance(raw_data, dict) and "data" in raw_data:
        rows = list(raw_data["data"])
    elif isinstance(raw_data, dict):
        rows = [dict(node, id=node.get("id", key)) for key, node in raw_data.items()]
    else:
        rows = list(raw_data)

    routes: Dict[str, Route] = {}
    for idx, row in enumerate(rows):
        raw_id = row.get("id", row.get("route_id"))
        if raw_id is None:
            logger.warning("Route at index %d has no id, skipping", idx)
            continue
        route_id = str(raw_id)

        points = _route_points(row)
        if not points:
            raise SnapshotError(f"route {route_id} has no points")

        if route_id in routes:
            logger.warning("Duplicate route id %s, keeping the first one", route_id)
            continue
        routes[route_id] = Route.from_coordinates(route_id, points, name=row.get("name"))

    return routes


def _parse_gapeka(raw_data: Any) -> Tuple[Dict[str, List[JourneyRow]], Optional[datetime]]:
    """
    gapeka.json: {"last_updated_at": ms, "data": [{"tr_id", "tr_cd", "tr_name", "paths": [...]}]}
    paths の各行: {"st_id", "arriv_ms", "depart_ms", "route_id"}

    行の順番（走行順）はそのまま保持する。
    """
    if isinstance(raw_data, dict):
        trains_raw = raw_data.get("data") or []
        updated_raw = raw_data.get("last_updated_at", raw_data.get("lastUpdatedAt"))
    else:
        trains_raw = raw_data
        updated_raw = None

    last_updated_at = None
    if updated_raw is not None:
        try:
            last_updated_at = datetime.fromtimestamp(float(updated_raw) / 1000, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError) as e:
            raise SnapshotError(f"Invalid gapeka last_updated_at: {updated_raw!r}") from e

    journeys: Dict[str, List[JourneyRow]] = {}
    skipped_rows = 0

    for idx, train in enumerate(trains_raw):
        raw_id = train.get("tr_id", train.get("id"))
        if raw_id is None:
            logger.warning("Train at index %d has no 'tr_id', skipping", idx)
            continue
        train_id = str(raw_id)
        code = str(train.get("tr_cd", train.get("code", train_id)))
        name = train.get("tr_name", train.get("name")) or code

        paths = train.get("paths") or []
        if not paths:
            raise SnapshotError(f"train {train_id} has no schedule rows")

        rows: List[JourneyRow] = []
        for i, path in enumerate(paths):
            station_id = path.get("st_id", path.get("station_id"))
            if station_id is None:
                logger.warning("Train %s row %d has no station id, skipping", train_id, i)
                skipped_rows += 1
                continue
            try:
                arrival = _parse_ms(path.get("arriv_ms", path.get("arrival_ms")))
                departure = _parse_ms(path.get("depart_ms", path.get("departure_ms")))
            except (TypeError, ValueError) as e:
                logger.warning("Train %s row %d has invalid time: %s", train_id, i, e)
                skipped_rows += 1
                continue

            route_id = path.get("route_id")
            rows.append(
                JourneyRow(
                    train_id=train_id,
                    station_id=str(station_id),
                    arrival_ms=arrival,
                    departure_ms=departure,
                    train_code=code,
                    train_name=name,
                    route_id=str(route_id) if route_id else None,
                )
            )

        if train_id in journeys:
            logger.warning("Duplicate train id %s, keeping the first one", train_id)
            continue
        journeys[train_id] = rows

    if skipped_rows > 0:
        logger.warning("Skipped %d gapeka rows due to errors", skipped_rows)

    return journeys, last_updated_at


# ============================================================================
# スナップショット
# ============================================================================

class DataCache:
    """
    駅・線路・列車の参照データ。

    load_payload は新しい値をすべて組み立ててから差し替える。
    参照中のデータをその場で書き換えることはない。
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir
        self.stations: StationDirectory = StationDirectory()
        self.routes: Dict[str, Route] = {}
        self.trains: Dict[str, Train] = {}
        self.journeys: Dict[str, List[JourneyRow]] = {}
        self.last_updated_at: Optional[datetime] = None

    def _load_json(self, rel_path: str) -> Any:
        path = self.data_dir / rel_path
        if not path.exists():
            raise FileNotFoundError(f"JSON file not found: {path}")
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def load_all(self) -> None:
        """data_dir の JSON を全て読み込む"""
        raw_stations = self._load_json(STATIONS_FILE)
        raw_routes = self._load_json(ROUTES_FILE)

        raw_gapeka = None
        try:
            raw_gapeka = self._load_json(GAPEKA_FILE)
        except FileNotFoundError:
            logger.error("Gapeka file not found. Expected at: %s", self.data_dir / GAPEKA_FILE)
            logger.warning("Continuing without train schedule data.")

        self.load_payload(raw_stations, raw_routes, raw_gapeka)

    def load_payload(self, raw_stations: Any, raw_routes: Any, raw_gapeka: Any = None) -> None:
        """
        デコード済みの JSON からスナップショットを組み立てる（ファイル・リモート共通）。
        """
        stations = StationDirectory(_parse_stations(raw_stations))
        routes = _parse_routes(raw_routes)

        journeys: Dict[str, List[JourneyRow]] = {}
        last_updated_at = None
        if raw_gapeka is not None:
            journeys, last_updated_at = _parse_gapeka(raw_gapeka)

        trains: Dict[str, Train] = {}
        for train_id, rows in journeys.items():
            train = build_train_from_rows(train_id, rows, stations, routes)
            if train is None:
                raise SnapshotError(f"train {train_id} has no usable schedule steps")
            trains[train_id] = train

        self._log_summary(stations, routes, journeys)

        self.stations = stations
        self.routes = routes
        self.journeys = journeys
        self.trains = trains
        self.last_updated_at = last_updated_at

    def _log_summary(
        self,
        stations: StationDirectory,
        routes: Dict[str, Route],
        journeys: Dict[str, List[JourneyRow]],
    ) -> None:
        logger.info("Loaded %d stations", len(stations))
        logger.info("Loaded %d routes", len(routes))
        logger.info("Loaded %d trains", len(journeys))

        missing_station_ids: set[str] = set()
        missing_route_ids: set[str] = set()
        for rows in journeys.values():
            for row in rows:
                if row.station_id not in stations:
                    missing_station_ids.add(row.station_id)
                if row.route_id and row.route_id not in routes:
                    missing_route_ids.add(row.route_id)

        if missing_station_ids:
            logger.warning(
                "Missing stations for %d station IDs used in gapeka (first 10): %s",
                len(missing_station_ids),
                sorted(missing_station_ids)[:10],
            )
        if missing_route_ids:
            logger.warning(
                "Missing geometry for %d route IDs used in gapeka (first 10): %s",
                len(missing_route_ids),
                sorted(missing_route_ids)[:10],
            )

    def get_train(self, train_id: str) -> Optional[Train]:
        return self.trains.get(train_id)

    def get_journey(self, train_id: str) -> Optional[List[JourneyRow]]:
        return self.journeys.get(train_id)
