# backend/recurring_time.py
"""
繰り返し時刻（日付部分に意味がないミリ秒）→ 指定日の絶対時刻 への変換

基準タイムゾーンはコンストラクタで明示的に受け取る。
プロセス内では config.Settings から1つだけ作り、
区間データの正規化とタイムライン構築の両方で同じインスタンスを使うこと。
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Tuple, Union
from zoneinfo import ZoneInfo

from config import DEFAULT_REFERENCE_TIMEZONE

DateLike = Union[date, datetime]

ROLLOVER = timedelta(hours=24)


class RecurringTimeConverter:
    def __init__(self, tz: tzinfo | str = DEFAULT_REFERENCE_TIMEZONE) -> None:
        self.tz: tzinfo = ZoneInfo(tz) if isinstance(tz, str) else tz

    def __repr__(self) -> str:
        return f"RecurringTimeConverter(tz={self.tz!r})"

    # ------------------------------------------------------------------
    # 日付・時刻の取り出し
    # ------------------------------------------------------------------

    def local_date(self, value: DateLike) -> date:
        """
        datetime なら基準タイムゾーンでの日付を返す。

        naive な datetime は基準タイムゾーンの時刻とみなす。
        """
        if isinstance(value, datetime):
            return self.localize(value).date()
        return value

    def localize(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=self.tz)
        return value.astimezone(self.tz)

    def extract_hour_minute(self, recurring_ms: float) -> Tuple[int, int]:
        """繰り返し時刻から基準タイムゾーンでの (時, 分) を取り出す"""
        instant = datetime.fromtimestamp(recurring_ms / 1000, tz=timezone.utc).astimezone(self.tz)
        return instant.hour, instant.minute

    def time_of_day(self, value: datetime) -> time:
        """基準タイムゾーンでの時刻部分（tz なし）"""
        return self.localize(value).time()

    def start_of_day(self, value: DateLike) -> datetime:
        return datetime.combine(self.local_date(value), time(0, 0), tzinfo=self.tz)

    # ------------------------------------------------------------------
    # 変換
    # ------------------------------------------------------------------

    def to_instant(self, recurring_ms: float, target_date: DateLike) -> datetime:
        """
        recurring_ms の時:分を target_date に当てはめた絶対時刻を返す。

        秒以下は 0 に切り捨てる。
        """
        hour, minute = self.extract_hour_minute(recurring_ms)
        return datetime.combine(
            self.local_date(target_date), time(hour, minute, 0), tzinfo=self.tz
        )

    def normalize_arrival(
        self,
        departure: datetime,
        raw_arrival_ms: float,
        target_date: DateLike,
    ) -> datetime:
        """
        到着時刻を target_date に当てはめ、発車より前なら翌日扱いにする（+24時間）。

        NOTE:
          - 繰り上げは1回だけ。2回以上日付を跨ぐダイヤには対応しない。
        """
        arrival = self.to_instant(raw_arrival_ms, target_date)
        if arrival < departure:
            arrival = (arrival.astimezone(timezone.utc) + ROLLOVER).astimezone(self.tz)
        return arrival
