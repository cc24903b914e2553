# backend/station_timeline.py
"""
停車駅タイムライン

選択日に解決済みの ScheduleRow 列と現在時刻から、各駅を
completed / current / upcoming に分類し、次の駅までの進捗を計算する。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel

from recurring_time import DateLike, RecurringTimeConverter
from station_lookup import StationDirectory
from timetable_models import ScheduleRow, Station
from train_position import StationModel

logger = logging.getLogger(__name__)

StopState = Literal["completed", "current", "upcoming"]


# ============================================================================
# Dataclass 定義
# ============================================================================

@dataclass(frozen=True)
class TimelineStop:
    station: Station
    arrival_time: Optional[datetime]
    departure_time: Optional[datetime]
    state: StopState
    is_actual_stop: bool
    # 次の駅までの進捗。最後の駅は次がないので 0.0
    progress_to_next: float


@dataclass(frozen=True)
class DepartureStatus:
    """
    始発駅の発車判定の結果（デバッグ・テスト用に公開）
    """
    is_future_day: bool
    crosses_midnight: bool
    effective_departure: Optional[datetime]  # 日跨ぎ補正後の始発発車時刻
    has_departed: bool


class TimelineStopResponse(BaseModel):
    station: StationModel
    arrival_time: Optional[datetime]
    departure_time: Optional[datetime]
    state: StopState
    is_actual_stop: bool
    progress_to_next: float

    @classmethod
    def from_stop(cls, stop: TimelineStop) -> "TimelineStopResponse":
        return cls(
            station=StationModel.from_station(stop.station),
            arrival_time=stop.arrival_time,
            departure_time=stop.departure_time,
            state=stop.state,
            is_actual_stop=stop.is_actual_stop,
            progress_to_next=stop.progress_to_next,
        )


class TimelineResponse(BaseModel):
    train_id: str
    service_date: date
    current_station_id: Optional[str]
    stops: List[TimelineStopResponse]


# ============================================================================
# 判定ロジック
# ============================================================================

def is_future_day(
    selected_date: DateLike,
    now: datetime,
    converter: RecurringTimeConverter,
) -> bool:
    return converter.start_of_day(selected_date) > converter.start_of_day(now)


def evaluate_departure(
    rows: Sequence[ScheduleRow],
    now: datetime,
    selected_date: DateLike,
    converter: RecurringTimeConverter,
) -> DepartureStatus:
    """
    列車が始発駅を発車済みかを判定する。

    最終駅の到着（時刻部分）が始発駅の発車（時刻部分）より早い場合は日跨ぎの列車。
    現在時刻（時刻部分）がその到着より前なら、前日に発車した便とみなして
    始発の発車を1日前にずらしてから比較する。
    """
    future = is_future_day(selected_date, now, converter)

    if not rows:
        return DepartureStatus(future, False, None, False)

    first_departure = rows[0].effective_departure
    last_arrival = rows[-1].effective_arrival

    crosses_midnight = False
    effective = first_departure

    if first_departure is not None and last_arrival is not None:
        crosses_midnight = converter.time_of_day(last_arrival) < converter.time_of_day(first_departure)
        if crosses_midnight and converter.time_of_day(now) < converter.time_of_day(last_arrival):
            effective = first_departure - timedelta(days=1)

    has_departed = (
        not future
        and effective is not None
        and now >= effective
    )
    return DepartureStatus(future, crosses_midnight, effective, has_departed)


def calculate_progress(
    departure: Optional[datetime],
    arrival: Optional[datetime],
    now: datetime,
    converter: RecurringTimeConverter,
) -> float:
    """
    2駅間の進捗（0.0〜1.0）。

    - 発車日が未来、または発車前なら 0.0
    - 到着以降なら 1.0
    - それ以外は経過時間 / 所要時間
    """
    if departure is None or arrival is None:
        return 0.0
    if converter.start_of_day(departure) > converter.start_of_day(now):
        return 0.0
    if now < departure:
        return 0.0
    if now >= arrival:
        return 1.0

    total = (arrival - departure).total_seconds()
    if total <= 0:
        return 1.0
    elapsed = (now - departure).total_seconds()
    return max(0.0, min(1.0, elapsed / total))


def _has_arrived_at(
    rows: Sequence[ScheduleRow],
    station_id: Optional[str],
    now: datetime,
) -> bool:
    if not station_id:
        return False
    for row in rows:
        if row.station_id == station_id:
            arrival = row.effective_arrival
            return arrival is not None and now >= arrival
    logger.debug("Destination station %s not in schedule rows", station_id)
    return False


# ============================================================================
# メイン関数
# ============================================================================

def build_timeline(
    rows: Sequence[ScheduleRow],
    now: datetime,
    selected_date: DateLike,
    current_active_station_id: Optional[str] = None,
    user_destination_station_id: Optional[str] = None,
    *,
    converter: RecurringTimeConverter,
    stations: Optional[StationDirectory] = None,
) -> List[TimelineStop]:
    """
    停車駅タイムラインを構築する。

    前提: rows は selected_date に解決済みで、発車順に並んでいる。

    状態の優先順位:
      1. 選択日が未来 → upcoming
      2. 始発未発車 → upcoming
      3. 目的駅に到着済み かつ 走行中区間なし → completed
      4. current の駅より後ろ → upcoming、current の駅 → current、それより前 → completed
    """
    status = evaluate_departure(rows, now, selected_date, converter)
    arrived = _has_arrived_at(rows, user_destination_station_id, now)

    items: List[TimelineStop] = []
    found_current = False

    for index, row in enumerate(rows):
        is_current = (
            not status.is_future_day
            and status.has_departed
            and current_active_station_id is not None
            and row.station_id == current_active_station_id
            and not found_current
        )

        state: StopState
        if status.is_future_day:
            state = "upcoming"
        elif not status.has_departed:
            state = "upcoming"
        elif arrived and current_active_station_id is None:
            state = "completed"
        elif found_current and not is_current:
            state = "upcoming"
        elif is_current:
            state = "current"
        else:
            state = "completed"

        if is_current:
            found_current = True

        progress = 0.0
        if index < len(rows) - 1:
            progress = calculate_progress(
                row.effective_departure,
                rows[index + 1].effective_arrival,
                now,
                converter,
            )

        station = stations.get(row.station_id) if stations is not None else None
        items.append(
            TimelineStop(
                station=station or Station.placeholder(row.station_id),
                arrival_time=row.arrival_time,
                departure_time=row.departure_time,
                state=state,
                is_actual_stop=True,
                progress_to_next=progress,
            )
        )

    return items


def current_station_hint(from_station: Optional[Station]) -> Optional[str]:
    """
    ライブ位置の出発駅を、タイムラインの current 判定に使うキーに変換する。
    """
    if from_station is None:
        return None
    return from_station.id or from_station.code


def summarize(stops: Sequence[TimelineStop]) -> Tuple[int, int, int]:
    """(completed, current, upcoming) の件数"""
    completed = sum(1 for s in stops if s.state == "completed")
    current = sum(1 for s in stops if s.state == "current")
    upcoming = sum(1 for s in stops if s.state == "upcoming")
    return completed, current, upcoming
