import sys
from pathlib import Path

import pytest


BACKEND_DIR = Path(__file__).resolve().parents[1] / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))


def wib_ms(hour: int, minute: int) -> int:
    """WIB (UTC+7) の時:分を UTC エポック基準の繰り返し時刻に変換する"""
    return (((hour - 7) % 24) * 60 + minute) * 60_000


@pytest.fixture
def snapshot_payload():
    """3駅・2線路・1列車の最小スナップショット（デコード済み JSON）"""
    stations = [
        {"id": 1, "code": "AAA", "name": "Alpha", "position": {"latitude": 0.0, "longitude": 0.0}, "city": "X"},
        {"id": 2, "code": "BBB", "name": "Bravo", "position": {"latitude": 0.0, "longitude": 1.0}},
        {"id": 3, "code": "CCC", "name": "Charlie", "position": {"latitude": 0.0, "longitude": 2.0}},
    ]
    routes = {
        "data": [
            {
                "route_id": 10,
                "paths": [
                    {"pos": [[0.0, 0.0], [0.0, 0.5]]},
                    {"pos": [[0.0, 0.5], [0.0, 1.0]]},
                ],
            },
            {
                "id": "11",
                "name": "Bravo - Charlie",
                "path": [
                    {"latitude": 0.0, "longitude": 1.0},
                    {"latitude": 0.0, "longitude": 2.0},
                ],
            },
        ]
    }
    gapeka = {
        "last_updated_at": 1714521600000,
        "data": [
            {
                "tr_id": 100,
                "tr_cd": "KA1",
                "tr_name": "Argo",
                "paths": [
                    {"st_id": 1, "arriv_ms": None, "depart_ms": wib_ms(8, 0), "route_id": None},
                    {"st_id": 2, "arriv_ms": wib_ms(9, 0), "depart_ms": wib_ms(9, 5), "route_id": 10},
                    {"st_id": 3, "arriv_ms": wib_ms(10, 0), "depart_ms": None, "route_id": 11},
                ],
            }
        ],
    }
    return {"stations": stations, "routes": routes, "gapeka": gapeka}
