# backend/config.py
"""
アプリ設定モジュール

環境変数（.env 含む）から設定を読み込み、Settings にまとめる。
基準タイムゾーンはここで一度だけ決め、ライブ位置計算と時刻表タイムラインの
両方で同じ RecurringTimeConverter を共有する。
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# 1日のミリ秒数
DAY_MS = 86_400_000

# WIB (UTC+7)。サーバー側の時刻正規化が前提としているタイムゾーン
DEFAULT_REFERENCE_TIMEZONE = "Asia/Jakarta"

# 進行方向推定のため、現在位置から少し先をサンプリングする距離（メートル）
DEFAULT_BEARING_SAMPLE_M = 20.0

DEFAULT_HTTP_TIMEOUT = 10.0

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseModel):
    """プロセス全体の設定"""
    data_dir: Path
    reference_timezone: str = DEFAULT_REFERENCE_TIMEZONE
    snapshot_base_url: Optional[str] = None  # 例: "https://example.workers.dev/api/train"
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    frontend_urls: List[str] = []
    bearing_sample_m: float = DEFAULT_BEARING_SAMPLE_M


def _split_origins(raw: str) -> List[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def load_settings() -> Settings:
    """
    環境変数から Settings を構築する。

    .env があれば先に読み込む。未設定の値はデフォルトを使う。
    """
    load_dotenv()

    data_dir = os.getenv("DATA_DIR")
    return Settings(
        data_dir=Path(data_dir) if data_dir else BASE_DIR / "data",
        reference_timezone=os.getenv("REFERENCE_TIMEZONE", DEFAULT_REFERENCE_TIMEZONE),
        snapshot_base_url=os.getenv("SNAPSHOT_BASE_URL") or None,
        http_timeout=float(os.getenv("HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT)),
        frontend_urls=_split_origins(
            os.getenv("FRONTEND_URL", "http://localhost:5173,http://localhost:5174")
        ),
        bearing_sample_m=float(os.getenv("BEARING_SAMPLE_M", DEFAULT_BEARING_SAMPLE_M)),
    )
