# timetable_cache/timetable_models.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class TimetableEntry:
    """1本の列車の1区間（出発駅 → 到着駅）"""

    departure_station_id: str
    departure_station_name: str
    departure_time: datetime

    arrival_station_id: str
    arrival_station_name: str
    arrival_time: datetime

    # 例: "020У"
    train_route_id: str
    # 例: "Сапсан"。愛称の無い列車は None
    # NOTE:
    #   - スキーマ V1 では常に None（カラム自体が無い）
    train_name: str | None

    # 列車の始発駅・終着駅の名前（区間の駅とは別）
    route_start_station_name: str
    route_end_station_name: str
