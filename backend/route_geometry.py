# backend/route_geometry.py
"""
線路形状（ポリライン）上の位置計算

ポリラインの累積距離から「起点からの距離 → 座標」を求める。
距離はすべてメートル、座標は (latitude, longitude)。
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

EARTH_RADIUS_M = 6371000

# 2点が同一とみなす許容誤差（度）
BEARING_EPSILON_DEG = 1e-12


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class RouteSegment:
    """ポリラインの1区間"""
    start: Coordinate
    end: Coordinate
    distance_from_start_m: float
    length_m: float

    @property
    def end_distance_m(self) -> float:
        return self.distance_from_start_m + self.length_m


# ============================================================================
# 幾何ユーティリティ
# ============================================================================

def haversine_m(a: Coordinate, b: Coordinate) -> float:
    """Haversine formula"""
    phi1, phi2 = math.radians(a.latitude), math.radians(b.latitude)
    dphi = math.radians(b.latitude - a.latitude)
    dlambda = math.radians(b.longitude - a.longitude)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_M * c


def interpolate(a: Coordinate, b: Coordinate, t: float) -> Coordinate:
    """緯度・経度それぞれの線形補間"""
    return Coordinate(
        latitude=a.latitude + (b.latitude - a.latitude) * t,
        longitude=a.longitude + (b.longitude - a.longitude) * t,
    )


def bearing_between(a: Coordinate, b: Coordinate) -> Optional[float]:
    """
    a → b の方位角（北=0, 時計回り, 0〜360）。

    2点がほぼ同じ場合は 0 ではなく None を返す（向きが決まらないため）。
    """
    if (
        abs(a.latitude - b.latitude) < BEARING_EPSILON_DEG
        and abs(a.longitude - b.longitude) < BEARING_EPSILON_DEG
    ):
        return None

    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlon = math.radians(b.longitude - a.longitude)

    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    angle = math.degrees(math.atan2(y, x))
    if angle < 0:
        angle += 360
    return angle


# ============================================================================
# Route
# ============================================================================

@dataclass(frozen=True)
class Route:
    """
    線路形状。segments と total_length_m は path から導出する。

    Route.from_coordinates() で構築すること。
    """
    id: str
    name: str
    path: Tuple[Coordinate, ...]
    segments: Tuple[RouteSegment, ...]
    total_length_m: float

    @classmethod
    def from_coordinates(
        cls,
        route_id: str,
        coordinates: Iterable[Coordinate],
        name: Optional[str] = None,
    ) -> "Route":
        path = tuple(coordinates)
        segments: list[RouteSegment] = []
        cumulative = 0.0

        for i in range(len(path) - 1):
            start = path[i]
            end = path[i + 1]
            length = haversine_m(start, end)
            segments.append(
                RouteSegment(
                    start=start,
                    end=end,
                    distance_from_start_m=cumulative,
                    length_m=length,
                )
            )
            cumulative += length

        return cls(
            id=route_id,
            name=name or route_id,
            path=path,
            segments=tuple(segments),
            total_length_m=cumulative,
        )

    @property
    def first(self) -> Optional[Coordinate]:
        return self.path[0] if self.path else None

    @property
    def last(self) -> Optional[Coordinate]:
        return self.path[-1] if self.path else None

    def clamp_distance(self, distance_m: float) -> float:
        return max(0.0, min(distance_m, self.total_length_m))

    def coordinate_at(self, distance_m: float) -> Optional[Coordinate]:
        """
        起点から distance_m 進んだ地点の座標。

        - 距離は [0, total_length_m] にクランプする。
        - 点が1つもなければ None、1点だけならその点を返す。
        """
        if not self.path:
            return None
        if not self.segments:
            return self.path[0]

        target = self.clamp_distance(distance_m)

        for seg in self.segments:
            if seg.distance_from_start_m <= target <= seg.end_distance_m:
                if seg.length_m <= 0:
                    return seg.start
                ratio = (target - seg.distance_from_start_m) / seg.length_m
                if ratio >= 1.0:
                    return seg.end
                return interpolate(seg.start, seg.end, ratio)

        return self.segments[-1].end

