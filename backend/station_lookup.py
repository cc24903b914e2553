# backend/station_lookup.py
"""
駅・線路の解決

駅は「ID → code」の順で引き、どちらでも見つからなければ not-found を返す。
結果は StationResolution として明示的に扱い、呼び出し側で分岐させる。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Literal, Mapping, Optional, Sequence

from route_geometry import Coordinate, Route
from timetable_models import Station

logger = logging.getLogger(__name__)

MatchedBy = Literal["id", "code"]


@dataclass(frozen=True)
class StationResolution:
    key: Optional[str]
    station: Optional[Station]
    matched_by: Optional[MatchedBy]

    @property
    def found(self) -> bool:
        return self.station is not None

    @property
    def coordinate(self) -> Optional[Coordinate]:
        return self.station.coordinate if self.station is not None else None

    @classmethod
    def not_found(cls, key: Optional[str]) -> "StationResolution":
        return cls(key=key, station=None, matched_by=None)


@dataclass(frozen=True)
class RouteResolution:
    key: Optional[str]
    route: Optional[Route]

    @property
    def found(self) -> bool:
        return self.route is not None

    @property
    def usable(self) -> bool:
        """補間に使える長さがあるか"""
        return self.route is not None and self.route.total_length_m > 0


class StationDirectory:
    """
    駅マスタのスナップショット。

    - 第1キー: station.id
    - 第2キー: station.code
    同じキーが重複した場合は先に登録された駅を優先する。
    """

    def __init__(self, stations: Iterable[Station] = ()) -> None:
        self._stations: List[Station] = []
        self._by_id: Dict[str, Station] = {}
        self._by_code: Dict[str, Station] = {}
        for station in stations:
            self._add(station)

    def _add(self, station: Station) -> None:
        self._stations.append(station)
        if station.id and station.id not in self._by_id:
            self._by_id[station.id] = station
        if station.code not in self._by_code:
            self._by_code[station.code] = station

    def __len__(self) -> int:
        return len(self._stations)

    def __iter__(self):
        return iter(self._stations)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.resolve(key).found

    def resolve(self, key: Optional[str]) -> StationResolution:
        if not key:
            return StationResolution.not_found(key)

        station = self._by_id.get(key)
        if station is not None:
            return StationResolution(key=key, station=station, matched_by="id")

        station = self._by_code.get(key)
        if station is not None:
            return StationResolution(key=key, station=station, matched_by="code")

        return StationResolution.not_found(key)

    def get(self, key: Optional[str]) -> Optional[Station]:
        return self.resolve(key).station

    def collect_journey_stations(self, station_keys: Sequence[str]) -> List[Station]:
        """
        経路上の駅を順番通りに重複なしで集める。

        解決できなかったキーはスキップし、件数だけ debug ログに出す。
        """
        result: List[Station] = []
        seen: set[str] = set()
        missing = 0

        for key in station_keys:
            station = self.get(key)
            if station is None:
                missing += 1
                continue
            if station.code in seen:
                continue
            seen.add(station.code)
            result.append(station)

        if missing:
            logger.debug("Could not resolve %d station keys in journey", missing)
        return result


def resolve_route(routes: Mapping[str, Route], route_id: Optional[str]) -> RouteResolution:
    if not route_id:
        return RouteResolution(key=route_id, route=None)
    return RouteResolution(key=route_id, route=routes.get(route_id))
