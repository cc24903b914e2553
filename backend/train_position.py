"""
列車のライブ位置推定

繰り返しダイヤ（ScheduleStep の列）と現在時刻から、
列車の地図上の位置・向き・速度・区間進捗を求める。

- 走行中区間が見つからない（運行時間外）場合は None を返す。例外ではない。
- 駅座標や線路形状が解決できない場合も None、または直線補間にフォールバックする。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Mapping, Optional, Tuple
import logging

from pydantic import BaseModel

from config import DAY_MS, DEFAULT_BEARING_SAMPLE_M
from route_geometry import Coordinate, Route, bearing_between, haversine_m, interpolate
from station_lookup import StationDirectory, StationResolution, resolve_route
from time_window import NormalizedWindow, is_within, normalize_time_window
from timetable_models import ScheduleStep, Station, Train

logger = logging.getLogger(__name__)


# ============================================================================
# Dataclass 定義
# ============================================================================

@dataclass(frozen=True)
class ProjectedTrainState:
    """
    ある時刻における列車の推定状態（評価ごとに作り直す。変更しない）
    """
    train_id: str
    code: str
    name: str

    position: Coordinate
    moving: bool
    bearing: Optional[float]      # 度。向きが決まらない場合は None
    route_id: Optional[str]       # 線路形状に沿って補間した場合のみ
    speed_kph: Optional[float]    # 停車中は None

    from_station: Optional[Station]
    to_station: Optional[Station]

    segment_departure: datetime   # 出発駅の発車
    segment_arrival: datetime     # 到着駅の到着
    progress: Optional[float]     # 0.0〜1.0（停車中は 0.0 固定）

    journey_departure: datetime
    journey_arrival: datetime


@dataclass(frozen=True)
class SegmentInstants:
    start: datetime
    arrival: datetime
    departure: datetime


# ============================================================================
# API レスポンス
# ============================================================================

class PositionModel(BaseModel):
    latitude: float
    longitude: float


class StationModel(BaseModel):
    code: str
    name: str
    id: Optional[str] = None
    city: Optional[str] = None
    position: Optional[PositionModel] = None

    @classmethod
    def from_station(cls, station: Station) -> "StationModel":
        position = None
        if station.coordinate is not None:
            position = PositionModel(
                latitude=station.coordinate.latitude,
                longitude=station.coordinate.longitude,
            )
        return cls(
            code=station.code,
            name=station.name,
            id=station.id,
            city=station.city,
            position=position,
        )


class TrainPositionResponse(BaseModel):
    train_id: str
    code: str
    name: str

    position: PositionModel
    moving: bool
    bearing: Optional[float]
    route_id: Optional[str]
    speed_kph: Optional[float]

    from_station: Optional[StationModel]
    to_station: Optional[StationModel]

    segment_departure: datetime
    segment_arrival: datetime
    progress: Optional[float]

    journey_departure: datetime
    journey_arrival: datetime

    @classmethod
    def from_state(cls, state: ProjectedTrainState) -> "TrainPositionResponse":
        """
        内部の dataclass を API レスポンスに変換するヘルパー
        """
        return cls(
            train_id=state.train_id,
            code=state.code,
            name=state.name,
            position=PositionModel(
                latitude=state.position.latitude,
                longitude=state.position.longitude,
            ),
            moving=state.moving,
            bearing=state.bearing,
            route_id=state.route_id,
            speed_kph=state.speed_kph,
            from_station=StationModel.from_station(state.from_station) if state.from_station else None,
            to_station=StationModel.from_station(state.to_station) if state.to_station else None,
            segment_departure=state.segment_departure,
            segment_arrival=state.segment_arrival,
            progress=state.progress,
            journey_departure=state.journey_departure,
            journey_arrival=state.journey_arrival,
        )


class TrainPositionsResponse(BaseModel):
    """/api/trains/positions のレスポンスラッパー"""
    positions: List[TrainPositionResponse]
    count: int
    timestamp: str  # 評価時刻（基準タイムゾーン, ISO8601文字列）


# ============================================================================
# 時間系ユーティリティ
# ============================================================================

def to_epoch_ms(dt: datetime) -> float:
    """naive な datetime は UTC とみなす"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp() * 1000


def from_epoch_ms(ms: float) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def pick_active_step(time_ms: float, steps: Iterable[ScheduleStep]) -> Optional[ScheduleStep]:
    """
    time_ms が [start_ms, departure_ms]（走行＋停車）に含まれる最初の区間を返す。
    """
    for step in steps:
        if is_within(time_ms, step.start_ms, step.departure_ms):
            return step
    return None


def resolve_segment_instants(
    step: ScheduleStep,
    now_ms: float,
    time_ms: float,
    cycle: float,
) -> SegmentInstants:
    """
    区間の各時刻を絶対時刻に戻す。

    base = now - time_ms を起点にし、前の時刻より前になる場合は cycle を足して
    日跨ぎでも順序を保つ。
    """
    base = now_ms - time_ms
    start = base + step.start_ms

    arrival = base + step.arrival_ms
    if arrival < start:
        arrival += cycle

    departure = base + step.departure_ms
    if departure < arrival:
        departure += cycle

    return SegmentInstants(
        start=from_epoch_ms(start),
        arrival=from_epoch_ms(arrival),
        departure=from_epoch_ms(departure),
    )


def resolve_journey_instants(window: NormalizedWindow, now_ms: float) -> Tuple[datetime, datetime]:
    base = now_ms - window.time_ms
    departure = base + window.start_ms
    arrival = base + window.end_ms
    if arrival < departure:
        arrival += window.cycle
    return from_epoch_ms(departure), from_epoch_ms(arrival)


def movement_progress(time_ms: float, step: ScheduleStep) -> float:
    """
    出発駅の発車〜到着駅の到着 の走行窓における進捗（0.0〜1.0）。
    """
    window = normalize_time_window(time_ms, step.start_ms, step.arrival_ms)
    duration = max(window.end_ms - window.start_ms, 1)
    elapsed = max(0.0, window.time_ms - window.start_ms)
    return max(0.0, min(1.0, elapsed / duration))


def _speed_kph(distance_m: float, instants: SegmentInstants) -> float:
    duration_sec = max((instants.arrival - instants.start).total_seconds(), 1)
    return (distance_m / 1000) / (duration_sec / 3600)


# ============================================================================
# 位置計算（停車 / 線路追従 / 直線補間）
# ============================================================================

def _project_stopped(
    train: Train,
    origin: StationResolution,
    destination: StationResolution,
    instants: SegmentInstants,
    journey: Tuple[datetime, datetime],
) -> Optional[ProjectedTrainState]:
    """停車中: 到着駅（解決できなければ出発駅）の上に置く"""
    coord = destination.coordinate or origin.coordinate
    if coord is None:
        return None

    bearing = None
    if origin.coordinate is not None and destination.coordinate is not None:
        bearing = bearing_between(origin.coordinate, destination.coordinate)

    return ProjectedTrainState(
        train_id=train.id,
        code=train.code,
        name=train.name,
        position=coord,
        moving=False,
        bearing=bearing,
        route_id=None,
        speed_kph=None,
        from_station=origin.station,
        to_station=destination.station,
        segment_departure=instants.start,
        segment_arrival=instants.arrival,
        progress=0.0,
        journey_departure=journey[0],
        journey_arrival=journey[1],
    )


def _heading_on_route(
    route: Route,
    distance_m: float,
    current: Coordinate,
    reversed_: bool,
    sample_m: float,
) -> Optional[float]:
    """
    進行方向に少し進んだ点をサンプリングして向きを推定する。

    線路の端でサンプル点が現在地と重なる場合は、後ろ側の点から現在地への向きを使う。
    """
    delta = min(sample_m, route.total_length_m)
    if reversed_:
        ahead = route.clamp_distance(distance_m - delta)
        behind = route.clamp_distance(distance_m + delta)
    else:
        ahead = route.clamp_distance(distance_m + delta)
        behind = route.clamp_distance(distance_m - delta)

    if ahead != distance_m:
        neighbor = route.coordinate_at(ahead)
        return bearing_between(current, neighbor) if neighbor is not None else None

    previous = route.coordinate_at(behind)
    return bearing_between(previous, current) if previous is not None else None


def _project_on_route(
    train: Train,
    step: ScheduleStep,
    route: Route,
    progress: float,
    origin: StationResolution,
    destination: StationResolution,
    instants: SegmentInstants,
    journey: Tuple[datetime, datetime],
    bearing_sample_m: float,
) -> Optional[ProjectedTrainState]:
    forward = route.total_length_m * progress
    distance = route.total_length_m - forward if step.reversed else forward

    coordinate = route.coordinate_at(distance)
    if coordinate is None:
        return None

    return ProjectedTrainState(
        train_id=train.id,
        code=train.code,
        name=train.name,
        position=coordinate,
        moving=True,
        bearing=_heading_on_route(route, distance, coordinate, step.reversed, bearing_sample_m),
        route_id=route.id,
        speed_kph=_speed_kph(route.total_length_m, instants),
        from_station=origin.station,
        to_station=destination.station,
        segment_departure=instants.start,
        segment_arrival=instants.arrival,
        progress=progress,
        journey_departure=journey[0],
        journey_arrival=journey[1],
    )


def _project_straight_line(
    train: Train,
    progress: float,
    origin: StationResolution,
    destination: StationResolution,
    instants: SegmentInstants,
    journey: Tuple[datetime, datetime],
) -> Optional[ProjectedTrainState]:
    """線路形状がない場合: 2駅間の直線補間"""
    if origin.coordinate is None or destination.coordinate is None:
        return None

    start, end = origin.coordinate, destination.coordinate

    return ProjectedTrainState(
        train_id=train.id,
        code=train.code,
        name=train.name,
        position=interpolate(start, end, progress),
        moving=True,
        bearing=bearing_between(start, end),
        route_id=None,
        speed_kph=_speed_kph(haversine_m(start, end), instants),
        from_station=origin.station,
        to_station=destination.station,
        segment_departure=instants.start,
        segment_arrival=instants.arrival,
        progress=progress,
        journey_departure=journey[0],
        journey_arrival=journey[1],
    )


# ============================================================================
# メイン関数
# ============================================================================

def project_train(
    now: datetime,
    train: Train,
    stations: StationDirectory,
    routes: Mapping[str, Route],
    bearing_sample_m: float = DEFAULT_BEARING_SAMPLE_M,
) -> Optional[ProjectedTrainState]:
    """
    指定時刻における1本の列車の状態を返す。運行中でなければ None。

    1. 全行程（最初の区間の発車〜最後の区間の到着）で時刻を正規化する
    2. [start, departure] に現在時刻を含む最初の区間を選ぶ
    3. 区間・全行程の時刻を絶対時刻に戻す
    4. 停車中 / 線路追従 / 直線補間 のいずれかで位置を決める

    NOTE: 周期は UTC の日付境界（WIB 07:00）から数える。UTC 0時を跨ぐ列車は
      周期が2日になり、エポック日の偶奇によって1日おきにしか投影されない。
    """
    if not train.steps:
        return None

    now_ms = to_epoch_ms(now)
    journey_window = normalize_time_window(
        now_ms,
        train.overall_departure_ms,
        train.overall_arrival_ms,
        DAY_MS,
    )
    time_ms = journey_window.time_ms

    step = pick_active_step(time_ms, train.steps)
    if step is None:
        return None

    instants = resolve_segment_instants(step, now_ms, time_ms, journey_window.cycle)
    journey = resolve_journey_instants(journey_window, now_ms)

    origin = stations.resolve(step.origin_station_code)
    destination = stations.resolve(step.destination_station_code)

    if is_within(time_ms, step.arrival_ms, step.departure_ms):
        return _project_stopped(train, origin, destination, instants, journey)

    progress = movement_progress(time_ms, step)

    route_resolution = resolve_route(routes, step.route_id)
    if route_resolution.usable:
        state = _project_on_route(
            train,
            step,
            route_resolution.route,
            progress,
            origin,
            destination,
            instants,
            journey,
            bearing_sample_m,
        )
        if state is not None:
            return state

    if step.route_id:
        logger.debug(
            "Route %s unavailable for train %s (%s→%s), fallback to straight line",
            step.route_id,
            train.code,
            step.origin_station_code,
            step.destination_station_code,
        )

    return _project_straight_line(train, progress, origin, destination, instants, journey)


def project_all(
    now: datetime,
    trains: Iterable[Train],
    stations: StationDirectory,
    routes: Mapping[str, Route],
    bearing_sample_m: float = DEFAULT_BEARING_SAMPLE_M,
) -> List[ProjectedTrainState]:
    """
    複数列車の状態をまとめて計算する。運行中の列車だけを返す。

    全列車で同じ now を使う。
    """
    results: List[ProjectedTrainState] = []
    failed = 0

    for train in trains:
        try:
            state = project_train(now, train, stations, routes, bearing_sample_m)
        except Exception as e:
            logger.error("Failed to project train %s: %s", train.id, e)
            failed += 1
            continue
        if state is not None:
            results.append(state)

    if failed:
        logger.info("Skipped %d trains due to errors", failed)

    return results
