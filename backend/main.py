# backend/main.py
from __future__ import annotations

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx
from datetime import date, datetime

from config import load_settings
from data_cache import DataCache, SnapshotError
from journey_builder import (
    JourneyListItemResponse,
    ScheduleRowResponse,
    find_leg,
    normalize_schedule_rows,
    projected_for_route,
    validate_journey_rows,
)
from recurring_time import RecurringTimeConverter
from route_geometry import Route
from snapshot_client import fetch_snapshot
from timetable_models import ScheduleRow, Station
from station_timeline import (
    TimelineResponse,
    TimelineStopResponse,
    build_timeline,
    current_station_hint,
    summarize,
)
from train_position import (
    PositionModel,
    ProjectedTrainState,
    StationModel,
    TrainPositionResponse,
    TrainPositionsResponse,
    project_all,
    project_train,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = load_settings()
converter = RecurringTimeConverter(settings.reference_timezone)

app = FastAPI()

data_cache = DataCache(settings.data_dir)


@app.on_event("startup")
async def startup_event():
    global data_cache

    app.state.http_client = httpx.AsyncClient()
    logger.info("httpx.AsyncClient initialized")

    if settings.snapshot_base_url:
        payload = await fetch_snapshot(
            app.state.http_client, settings.snapshot_base_url, settings.http_timeout
        )
        if payload is not None:
            cache = DataCache(settings.data_dir)
            try:
                cache.load_payload(payload.stations, payload.routes, payload.gapeka)
            except SnapshotError as e:
                logger.error("Remote snapshot rejected: %s", e)
            else:
                data_cache = cache
                logger.info("Using remote snapshot (%d trains)", len(data_cache.trains))
                return

    data_cache.load_all()
    logger.info(
        "Data loaded: %d stations, %d routes, %d trains",
        len(data_cache.stations),
        len(data_cache.routes),
        len(data_cache.trains),
    )


@app.on_event("shutdown")
async def shutdown_event():
    if hasattr(app.state, "http_client"):
        await app.state.http_client.aclose()
        logger.info("httpx.AsyncClient closed")


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.frontend_urls,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# パラメータのヘルパー
# ============================================================================

def _parse_at(raw: Optional[str]) -> datetime:
    """
    ?at= を評価時刻に変換する。省略時は現在時刻。
    タイムゾーンなしの値は基準タイムゾーンの時刻とみなす。
    """
    if raw is None:
        return datetime.now(converter.tz)
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid 'at' parameter: {raw}")
    return converter.localize(parsed)


def _parse_date(raw: Optional[str], now: datetime) -> date:
    """?date=YYYY-MM-DD。省略時は now の日付（基準タイムゾーン）"""
    if raw is None:
        return converter.local_date(now)
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid 'date' parameter: {raw}")


def _belongs_to_rows(state: ProjectedTrainState, rows: Sequence[ScheduleRow]) -> bool:
    """
    ライブ位置の区間が、選択日に解決した行程（始発の発車〜終着の到着）に収まるか。
    日跨ぎの列車も翌日分まで含めて判定できる。
    """
    departures = [r.effective_departure for r in rows if r.effective_departure is not None]
    arrivals = [r.effective_arrival for r in rows if r.effective_arrival is not None]
    if not departures or not arrivals:
        return False
    return departures[0] <= state.segment_departure and state.segment_arrival <= arrivals[-1]


def _route_summary(route: Route) -> Dict[str, Any]:
    return {
        "id": route.id,
        "name": route.name,
        "total_length_m": route.total_length_m,
        "path": [PositionModel(latitude=c.latitude, longitude=c.longitude) for c in route.path],
    }


# ============================================================================
# 参照データ
# ============================================================================

@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.get("/api/stations")
async def get_stations():
    stations = [StationModel.from_station(s) for s in data_cache.stations]
    logger.info("GET /api/stations: %d stations", len(stations))
    return {"count": len(stations), "stations": stations}


@app.get("/api/routes")
async def get_routes():
    routes = [_route_summary(r) for r in data_cache.routes.values()]
    return {"count": len(routes), "routes": routes}


@app.get("/api/gapeka/last-updated")
async def get_gapeka_last_updated():
    updated = data_cache.last_updated_at
    return {
        "last_updated_at": updated,
        "last_updated_at_ms": int(updated.timestamp() * 1000) if updated else None,
    }


# ============================================================================
# ライブ位置
# ============================================================================

@app.get("/api/trains/positions", response_model=TrainPositionsResponse)
async def get_train_positions(at: Optional[str] = None):
    now = _parse_at(at)
    states = project_all(
        now,
        data_cache.trains.values(),
        data_cache.stations,
        data_cache.routes,
        settings.bearing_sample_m,
    )
    logger.info("GET /api/trains/positions: %d active of %d trains", len(states), len(data_cache.trains))

    return TrainPositionsResponse(
        positions=[TrainPositionResponse.from_state(s) for s in states],
        count=len(states),
        timestamp=now.isoformat(),
    )


@app.get("/api/trains/{train_id}/position", response_model=TrainPositionResponse)
async def get_train_position(train_id: str, at: Optional[str] = None):
    train = data_cache.get_train(train_id)
    if train is None:
        raise HTTPException(status_code=404, detail=f"Train not found: {train_id}")

    now = _parse_at(at)
    state = project_train(now, train, data_cache.stations, data_cache.routes, settings.bearing_sample_m)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Train {train_id} is not running at {now.isoformat()}")

    return TrainPositionResponse.from_state(state)


# ============================================================================
# 時刻表・タイムライン
# ============================================================================

@app.get("/api/journeys/projected")
async def get_projected_journeys(
    departure_station_id: Optional[str] = None,
    arrival_station_id: Optional[str] = None,
    service_date: Optional[str] = Query(None, alias="date"),
):
    if not departure_station_id or not arrival_station_id:
        raise HTTPException(
            status_code=400,
            detail="departure_station_id and arrival_station_id query parameters are required",
        )

    selected = _parse_date(service_date, datetime.now(converter.tz))
    items = projected_for_route(
        data_cache.journeys,
        departure_station_id,
        arrival_station_id,
        selected,
        converter,
        data_cache.stations,
    )
    logger.info(
        "GET /api/journeys/projected %s -> %s on %s: %d trains",
        departure_station_id,
        arrival_station_id,
        selected,
        len(items),
    )
    return {
        "date": selected,
        "count": len(items),
        "journeys": [JourneyListItemResponse.from_item(i) for i in items],
    }


@app.get("/api/journeys/{train_id}/segments")
async def get_journey_segments(
    train_id: str,
    service_date: Optional[str] = Query(None, alias="date"),
    departure_station_id: Optional[str] = None,
    arrival_station_id: Optional[str] = None,
):
    """
    選択日に解決した停車駅ごとの時刻。
    departure_station_id / arrival_station_id を両方指定するとその区間だけを返す。
    """
    raw_rows = data_cache.get_journey(train_id)
    if raw_rows is None:
        raise HTTPException(status_code=404, detail=f"Journey not found: {train_id}")

    selected = _parse_date(service_date, datetime.now(converter.tz))
    rows = normalize_schedule_rows(raw_rows, selected, converter)

    warnings: List[str] = []
    if departure_station_id and arrival_station_id:
        leg = find_leg(rows, departure_station_id, arrival_station_id)
        if leg is None:
            raise HTTPException(
                status_code=404,
                detail=f"Train {train_id} does not run {departure_station_id} -> {arrival_station_id}",
            )
        rows = rows[leg[0]:leg[1] + 1]
        warnings = validate_journey_rows(
            rows,
            data_cache.stations.get(departure_station_id) or Station.placeholder(departure_station_id),
            data_cache.stations.get(arrival_station_id) or Station.placeholder(arrival_station_id),
        )
        if warnings:
            logger.warning("Train %s segment warnings: %s", train_id, "; ".join(warnings))

    stations = data_cache.stations.collect_journey_stations([r.station_id for r in rows])
    return {
        "train_id": train_id,
        "date": selected,
        "rows": [ScheduleRowResponse.from_row(r) for r in rows],
        "stations": [StationModel.from_station(s) for s in stations],
        "warnings": warnings,
    }


@app.get("/api/journeys/{train_id}/timeline", response_model=TimelineResponse)
async def get_journey_timeline(
    train_id: str,
    service_date: Optional[str] = Query(None, alias="date"),
    at: Optional[str] = None,
    destination_station_id: Optional[str] = None,
):
    raw_rows = data_cache.get_journey(train_id)
    if raw_rows is None:
        raise HTTPException(status_code=404, detail=f"Journey not found: {train_id}")

    now = _parse_at(at)
    selected = _parse_date(service_date, now)
    rows = normalize_schedule_rows(raw_rows, selected, converter)

    # ライブ位置の出発駅を current の手がかりにする（選択日の運行のときだけ）
    hint = None
    train = data_cache.get_train(train_id)
    if train is not None:
        state = project_train(now, train, data_cache.stations, data_cache.routes, settings.bearing_sample_m)
        if state is not None and _belongs_to_rows(state, rows):
            hint = current_station_hint(state.from_station)

    stops = build_timeline(
        rows,
        now,
        selected,
        current_active_station_id=hint,
        user_destination_station_id=destination_station_id,
        converter=converter,
        stations=data_cache.stations,
    )
    completed, current, upcoming = summarize(stops)
    logger.info(
        "Timeline %s on %s: completed=%d current=%d upcoming=%d (hint=%s)",
        train_id,
        selected,
        completed,
        current,
        upcoming,
        hint,
    )

    return TimelineResponse(
        train_id=train_id,
        service_date=selected,
        current_station_id=hint,
        stops=[TimelineStopResponse.from_stop(s) for s in stops],
    )
