# backend/journey_builder.py
"""
Journey data builders.

サーバーの trainJourneys 行（日付未解決の繰り返し時刻）から
- 選択日に解決した ScheduleRow 列（タイムライン用）
- ScheduleStep 列 / Train（ライブ位置計算用）
- 出発駅→到着駅 の列車一覧
を組み立てる。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel

from recurring_time import DateLike, RecurringTimeConverter
from route_geometry import Coordinate, Route, haversine_m
from station_lookup import StationDirectory, resolve_route
from timetable_models import JourneyRow, ScheduleRow, ScheduleStep, Station, Train

logger = logging.getLogger(__name__)


# ============================================================================
# Data Models
# ============================================================================

@dataclass(frozen=True)
class JourneyListItem:
    """出発駅→到着駅 を結ぶ列車1本分の要約"""
    id: str
    train_id: str
    code: str
    name: str
    from_station_id: str
    to_station_id: str
    segment_departure: datetime
    segment_arrival: datetime
    route_id: Optional[str]
    from_station_name: Optional[str] = None
    to_station_name: Optional[str] = None
    from_station_code: Optional[str] = None
    to_station_code: Optional[str] = None
    duration_minutes: Optional[int] = None


class JourneyListItemResponse(BaseModel):
    id: str
    train_id: str
    code: str
    name: str
    from_station_id: str
    to_station_id: str
    segment_departure: datetime
    segment_arrival: datetime
    route_id: Optional[str] = None
    from_station_name: Optional[str] = None
    to_station_name: Optional[str] = None
    from_station_code: Optional[str] = None
    to_station_code: Optional[str] = None
    duration_minutes: Optional[int] = None

    @classmethod
    def from_item(cls, item: JourneyListItem) -> "JourneyListItemResponse":
        return cls(**item.__dict__)


class ScheduleRowResponse(BaseModel):
    station_id: str
    arrival_time: Optional[datetime]
    departure_time: Optional[datetime]
    train_code: str
    train_name: str
    route_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: ScheduleRow) -> "ScheduleRowResponse":
        return cls(
            station_id=row.station_id,
            arrival_time=row.arrival_time,
            departure_time=row.departure_time,
            train_code=row.train_code,
            train_name=row.train_name,
            route_id=row.route_id,
        )


# ============================================================================
# 日付解決
# ============================================================================

def normalize_schedule_rows(
    raw_rows: Sequence[JourneyRow],
    selected_date: DateLike,
    converter: RecurringTimeConverter,
) -> List[ScheduleRow]:
    """
    日付未解決の行を selected_date に解決する。

    NOTE:
      - 到着 → 発車 → 次駅の到着 … の順に時刻を並べ、
        前の時刻より小さくなったら日付を跨いだとみなして翌日に繰り上げる。
      - 時刻情報が両方ない行は None のまま残す（日跨ぎ判定の起点にはならない）。
    """
    running_date = converter.local_date(selected_date)
    previous: Optional[datetime] = None

    def resolve(ms: Optional[float]) -> Optional[datetime]:
        nonlocal running_date, previous
        if ms is None:
            return None
        if previous is None:
            instant = converter.to_instant(ms, running_date)
        else:
            instant = converter.normalize_arrival(previous, ms, running_date)
            running_date = converter.local_date(instant)
        previous = instant
        return instant

    result: List[ScheduleRow] = []
    for row in raw_rows:
        arrival = resolve(row.arrival_ms)
        departure = resolve(row.departure_ms)
        result.append(
            ScheduleRow(
                station_id=row.station_id,
                arrival_time=arrival,
                departure_time=departure,
                train_code=row.train_code,
                train_name=row.train_name,
                route_id=row.route_id,
            )
        )
    return result


# ============================================================================
# ライブ位置計算用の区間構築
# ============================================================================

def infer_reversed(
    route: Optional[Route],
    origin: Optional[Coordinate],
    destination: Optional[Coordinate],
) -> bool:
    """
    線路形状の起点が到着駅の方に近ければ、逆向きに走るとみなす。
    """
    if route is None or route.first is None or origin is None or destination is None:
        return False
    return haversine_m(route.first, destination) < haversine_m(route.first, origin)


def build_steps_from_rows(
    rows: Sequence[JourneyRow],
    stations: StationDirectory,
    routes: Mapping[str, Route],
) -> List[ScheduleStep]:
    """
    連続する2行から1区間を作る。

    - 線路は「次の駅に到着する」区間のものなので next.route_id を使う。
    - 時刻が欠けている区間はスキップする。
    """
    steps: List[ScheduleStep] = []

    for current, nxt in zip(rows, rows[1:]):
        start = current.departure_ms if current.departure_ms is not None else current.arrival_ms
        arrival = nxt.arrival_ms if nxt.arrival_ms is not None else nxt.departure_ms
        departure = nxt.departure_ms if nxt.departure_ms is not None else nxt.arrival_ms

        if start is None or arrival is None or departure is None:
            logger.warning(
                "Train %s: missing times between %s and %s, skipping segment",
                current.train_id,
                current.station_id,
                nxt.station_id,
            )
            continue

        route = resolve_route(routes, nxt.route_id).route
        reversed_ = infer_reversed(
            route,
            stations.resolve(current.station_id).coordinate,
            stations.resolve(nxt.station_id).coordinate,
        )

        steps.append(
            ScheduleStep(
                start_ms=start,
                arrival_ms=arrival,
                departure_ms=departure,
                origin_station_code=current.station_id,
                destination_station_code=nxt.station_id,
                route_id=nxt.route_id,
                reversed=reversed_,
            )
        )

    return steps


def build_train_from_rows(
    train_id: str,
    rows: Sequence[JourneyRow],
    stations: StationDirectory,
    routes: Mapping[str, Route],
) -> Optional[Train]:
    if len(rows) < 2:
        logger.warning("Insufficient rows to build journey segments for %s: %d", train_id, len(rows))
        return None

    steps = build_steps_from_rows(rows, stations, routes)
    if not steps:
        return None

    first = rows[0]
    return Train(id=train_id, code=first.train_code, name=first.train_name, steps=steps)


# ============================================================================
# 出発駅→到着駅 の列車一覧
# ============================================================================

def find_leg(
    rows: Sequence[Union[JourneyRow, ScheduleRow]],
    departure_station_id: str,
    arrival_station_id: str,
) -> Optional[Tuple[int, int]]:
    """
    departure_station_id の最初の行と、それより後の arrival_station_id の行の
    (開始, 終了) インデックス。順番が逆、またはどちらかがなければ None。
    """
    from_idx = next((i for i, r in enumerate(rows) if r.station_id == departure_station_id), -1)
    if from_idx < 0:
        return None
    to_idx = next(
        (j for j in range(from_idx + 1, len(rows)) if rows[j].station_id == arrival_station_id),
        -1,
    )
    if to_idx < 0:
        return None
    return from_idx, to_idx


def projected_for_route(
    journeys: Mapping[str, Sequence[JourneyRow]],
    departure_station_id: str,
    arrival_station_id: str,
    selected_date: DateLike,
    converter: RecurringTimeConverter,
    stations: Optional[StationDirectory] = None,
) -> List[JourneyListItem]:
    """
    departure_station_id → arrival_station_id の順に停車する列車の一覧を返す。

    時刻は selected_date に解決し、到着が発車より前なら翌日扱いにする。
    """
    from_station: Optional[Station] = stations.get(departure_station_id) if stations else None
    to_station: Optional[Station] = stations.get(arrival_station_id) if stations else None

    results: List[JourneyListItem] = []
    for train_id, rows in journeys.items():
        leg = find_leg(rows, departure_station_id, arrival_station_id)
        if leg is None:
            continue
        from_row, to_row = rows[leg[0]], rows[leg[1]]

        departure_ms = from_row.departure_ms if from_row.departure_ms is not None else from_row.arrival_ms
        arrival_ms = to_row.arrival_ms if to_row.arrival_ms is not None else to_row.departure_ms
        if departure_ms is None or arrival_ms is None:
            logger.warning("Train %s has no times for requested leg, skipping", train_id)
            continue

        departure = converter.to_instant(departure_ms, selected_date)
        arrival = converter.normalize_arrival(departure, arrival_ms, selected_date)
        duration = max(0, round((arrival - departure).total_seconds() / 60))

        results.append(
            JourneyListItem(
                id=train_id,
                train_id=train_id,
                code=from_row.train_code,
                name=from_row.train_name,
                from_station_id=from_row.station_id,
                to_station_id=to_row.station_id,
                segment_departure=departure,
                segment_arrival=arrival,
                # 到着駅の route_id = その駅に到着する線路
                route_id=to_row.route_id,
                from_station_name=from_station.name if from_station else None,
                to_station_name=to_station.name if to_station else None,
                from_station_code=from_station.code if from_station else None,
                to_station_code=to_station.code if to_station else None,
                duration_minutes=duration,
            )
        )

    results.sort(key=lambda item: item.segment_departure)
    return results


def validate_journey_rows(
    rows: Sequence[ScheduleRow],
    from_station: Station,
    to_station: Station,
) -> List[str]:
    """
    行データの簡易妥当性チェック。
    問題があれば warning メッセージのリストを返す。
    """
    warnings: List[str] = []
    if not rows:
        return ["no journey rows provided"]

    first_id = rows[0].station_id
    last_id = rows[-1].station_id

    if first_id not in (from_station.id, from_station.code):
        warnings.append(f"first station {first_id} does not match departure {from_station.code}")
    if last_id not in (to_station.id, to_station.code):
        warnings.append(f"last station {last_id} does not match arrival {to_station.code}")

    prev: Optional[datetime] = None
    for i, row in enumerate(rows):
        t = row.effective_departure
        if t is None:
            continue
        if prev is not None and t < prev:
            warnings.append(f"non-monotonic time at row {i} ({row.station_id})")
            break
        prev = t

    return warnings

