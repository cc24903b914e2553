# backend/snapshot_client.py
"""
参照データ（駅・線路・ダイヤ）をリモートから取得する。

取得・デコードに失敗した場合はログを出して None を返す（リトライはしない）。
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from config import DEFAULT_HTTP_TIMEOUT

logger = logging.getLogger(__name__)

STATIONS_PATH = "stations"
ROUTES_PATH = "routes"
GAPEKA_PATH = "gapeka"


@dataclass
class SnapshotPayload:
    """デコード済み JSON（DataCache.load_payload にそのまま渡す）"""
    stations: Any
    routes: Any
    gapeka: Any


async def fetch_json(
    client: httpx.AsyncClient,
    url: str,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
) -> Optional[Any]:
    try:
        response = await client.get(url, timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error("Failed to fetch %s: %s", url, e)
        return None

    try:
        return response.json()
    except ValueError as e:
        logger.error("Failed to decode JSON from %s: %s", url, e)
        return None


async def fetch_snapshot(
    client: httpx.AsyncClient,
    base_url: str,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
) -> Optional[SnapshotPayload]:
    """
    stations / routes / gapeka を並行して取得する。
    どれか1つでも取れなければ None（部分的なスナップショットは作らない）。
    """
    base = base_url.rstrip("/")
    stations, routes, gapeka = await asyncio.gather(
        fetch_json(client, f"{base}/{STATIONS_PATH}", timeout),
        fetch_json(client, f"{base}/{ROUTES_PATH}", timeout),
        fetch_json(client, f"{base}/{GAPEKA_PATH}", timeout),
    )

    if stations is None or routes is None or gapeka is None:
        logger.warning("Remote snapshot incomplete, keeping current data")
        return None

    logger.info("Fetched remote snapshot from %s", base)
    return SnapshotPayload(stations=stations, routes=routes, gapeka=gapeka)
