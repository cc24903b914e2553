# backend/time_window.py
"""
繰り返し（毎日）ダイヤの時間窓の正規化

時刻表の時刻は「日付に意味のないミリ秒」で保存されている。
[start, end] の窓と任意のタイムスタンプを同じ周期（1日の倍数）に載せてから比較する。
"""
from __future__ import annotations

import math
from dataclasses import dataclass

from config import DAY_MS


@dataclass(frozen=True)
class NormalizedWindow:
    """正規化後の時刻と窓（すべてミリ秒）"""
    time_ms: float
    start_ms: float
    end_ms: float
    cycle: float  # 1日の倍数


def positive_modulo(value: float, modulus: float) -> float:
    """
    常に 0 以上 modulus 未満を返す剰余。

    modulus が 0 の場合は value をそのまま返す。
    """
    if modulus == 0:
        return value
    remainder = math.fmod(value, modulus)
    if remainder < 0:
        remainder += modulus
    # -1e-20 + modulus のような丸めで modulus ちょうどになるのを防ぐ
    if remainder >= abs(modulus):
        remainder = 0.0
    return remainder


def normalize_time_window(
    timestamp: float,
    start_ms: float,
    end_ms: float,
    day_length: float = DAY_MS,
) -> NormalizedWindow:
    """
    timestamp, start, end を比較可能な共通の周期に載せる。

    ルール:
      - end < start（保存値の時点で日を跨いでいる）なら
        start' = start mod 1日、end' = (end mod 1日) + 1日
      - それ以外はそのまま
      - cycle = max(1, ceil(end' / 1日)) * 1日
      - time' = timestamp を cycle で正の剰余
    """
    start = start_ms
    end = end_ms

    if end < start:
        start = positive_modulo(start, day_length)
        end = positive_modulo(end, day_length) + day_length

    cycles = max(1, math.ceil(end / day_length))
    cycle = cycles * day_length
    time_ms = positive_modulo(timestamp, cycle)

    return NormalizedWindow(time_ms=time_ms, start_ms=start, end_ms=end, cycle=cycle)


def is_within(
    timestamp: float,
    start_ms: float,
    end_ms: float,
    day_length: float = DAY_MS,
) -> bool:
    """timestamp が [start, end]（両端含む）の窓の中にあるか"""
    window = normalize_time_window(timestamp, start_ms, end_ms, day_length)
    return window.start_ms <= window.time_ms <= window.end_ms
