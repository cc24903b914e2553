# backend/timetable_models.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from route_geometry import Coordinate


@dataclass(frozen=True)
class Station:
    """駅（参照データ）。同一性は code で判定する。"""

    # 例: "GMR"
    code: str
    # 例: "Gambir"
    name: str
    # 座標不明の駅（タイムライン表示用のプレースホルダ）は None
    coordinate: Optional[Coordinate]
    # サーバー側の独自ID。code と同じことが多いが一致は保証されない
    id: Optional[str] = None
    city: Optional[str] = None

    @classmethod
    def placeholder(cls, station_id: str) -> "Station":
        """駅マスタで解決できなかった駅の代替表示用"""
        return cls(code=station_id, name=station_id, coordinate=None, id=station_id)


@dataclass(frozen=True)
class ScheduleStep:
    """
    列車の1区間（出発駅を出てから到着駅を出るまで）。

    *_ms はすべて「繰り返し時刻」: 1日で割った余りだけに意味がある。
    UTC エポック基準のミリ秒（0 = 00:00 UTC）。
    start_ms <= arrival_ms は保証されない（日跨ぎは計算時に解決する）。
    """

    start_ms: float      # 出発駅の発車
    arrival_ms: float    # 到着駅の到着
    departure_ms: float  # 到着駅の発車（停車時間の終わり）
    origin_station_code: str
    destination_station_code: str
    route_id: Optional[str] = None
    # True なら線路形状を終点→起点の向きに走る
    reversed: bool = False


@dataclass(frozen=True)
class Train:
    """1本の列車（ライブ位置計算用）。steps は走行順。"""

    id: str
    code: str
    name: str
    steps: List[ScheduleStep]

    @property
    def overall_departure_ms(self) -> Optional[float]:
        return self.steps[0].start_ms if self.steps else None

    @property
    def overall_arrival_ms(self) -> Optional[float]:
        return self.steps[-1].arrival_ms if self.steps else None


@dataclass(frozen=True)
class JourneyRow:
    """
    サーバーの trainJourneys 1行分（日付未解決）。

    arrival_ms / departure_ms は繰り返し時刻。
    route_id は「この駅に到着する」区間の線路。
    """

    train_id: str
    station_id: str
    arrival_ms: Optional[float]
    departure_ms: Optional[float]
    train_code: str
    train_name: str
    route_id: Optional[str] = None


@dataclass(frozen=True)
class ScheduleRow:
    """停車駅ごとの時刻（選択日に解決済み, tz-aware datetime）"""

    station_id: str
    arrival_time: Optional[datetime]
    departure_time: Optional[datetime]
    train_code: str
    train_name: str
    route_id: Optional[str] = None

    @property
    def effective_departure(self) -> Optional[datetime]:
        return self.departure_time or self.arrival_time

    @property
    def effective_arrival(self) -> Optional[datetime]:
        return self.arrival_time or self.departure_time
