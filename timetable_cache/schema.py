# timetable_cache/schema.py
"""
スキーマバージョンごとの行レイアウト

バージョンを増やすときは DataSchemeVersion に追加し、
CODECS に RowCodec を1つ登録する。
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Any, Callable, Dict, Mapping, Tuple

from .config import NULL_SENTINEL
from .exceptions import DecodeFailure
from .timestamps import format_timestamp, parse_timestamp
from .timetable_models import TimetableEntry


class DataSchemeVersion(IntEnum):
    """キャッシュが扱うデータモデルのバージョン"""
    V1 = 1  # trainName なし
    V2 = 2  # trainName 追加


# ============================================================================
# カラム名（DB 上の名前。既存のキャッシュファイルと互換）
# ============================================================================
DEPARTURE_STATION_ID = "departureStationId"
DEPARTURE_STATION_NAME = "departureStationName"
DEPARTURE_TIME = "departureTime"
ARRIVAL_STATION_ID = "arrivalStationId"
ARRIVAL_STATION_NAME = "arrivalStationName"
ARRIVAL_TIME = "arrivalTime"
TRAIN_ROUTE_ID = "trainRouteId"
ROUTE_START_STATION_NAME = "routeStartStationName"
ROUTE_END_STATION_NAME = "routeEndStationName"
TRAIN_NAME = "trainName"

BASE_COLUMNS: Tuple[str, ...] = (
    DEPARTURE_STATION_ID,
    DEPARTURE_STATION_NAME,
    DEPARTURE_TIME,
    ARRIVAL_STATION_ID,
    ARRIVAL_STATION_NAME,
    ARRIVAL_TIME,
    TRAIN_ROUTE_ID,
    ROUTE_START_STATION_NAME,
    ROUTE_END_STATION_NAME,
)

Row = Mapping[str, Any]


def _required(row: Row, column: str) -> str:
    value = row[column]
    if value is None:
        raise DecodeFailure(f"Column {column} is NULL")
    return value


def _encode_v1(entry: TimetableEntry) -> Dict[str, Any]:
    return {
        DEPARTURE_STATION_ID: entry.departure_station_id,
        DEPARTURE_STATION_NAME: entry.departure_station_name,
        DEPARTURE_TIME: format_timestamp(entry.departure_time),
        ARRIVAL_STATION_ID: entry.arrival_station_id,
        ARRIVAL_STATION_NAME: entry.arrival_station_name,
        ARRIVAL_TIME: format_timestamp(entry.arrival_time),
        TRAIN_ROUTE_ID: entry.train_route_id,
        ROUTE_START_STATION_NAME: entry.route_start_station_name,
        ROUTE_END_STATION_NAME: entry.route_end_station_name,
    }


def _decode_v1(row: Row) -> TimetableEntry:
    return TimetableEntry(
        departure_station_id=_required(row, DEPARTURE_STATION_ID),
        departure_station_name=_required(row, DEPARTURE_STATION_NAME),
        departure_time=parse_timestamp(row[DEPARTURE_TIME]),
        arrival_station_id=_required(row, ARRIVAL_STATION_ID),
        arrival_station_name=_required(row, ARRIVAL_STATION_NAME),
        arrival_time=parse_timestamp(row[ARRIVAL_TIME]),
        train_route_id=_required(row, TRAIN_ROUTE_ID),
        train_name=None,
        route_start_station_name=_required(row, ROUTE_START_STATION_NAME),
        route_end_station_name=_required(row, ROUTE_END_STATION_NAME),
    )


def _encode_v2(entry: TimetableEntry) -> Dict[str, Any]:
    values = _encode_v1(entry)
    # 空文字と「無し」を区別するため、None は "NULL" という文字列で保存する
    values[TRAIN_NAME] = NULL_SENTINEL if entry.train_name is None else entry.train_name
    return values


def _decode_v2(row: Row) -> TimetableEntry:
    entry = _decode_v1(row)
    train_name = row[TRAIN_NAME]
    if train_name is None or train_name == NULL_SENTINEL:
        return entry
    return replace(entry, train_name=train_name)


@dataclass(frozen=True)
class RowCodec:
    """1バージョン分のカラム構成と変換関数"""
    version: DataSchemeVersion
    columns: Tuple[str, ...]
    encode: Callable[[TimetableEntry], Dict[str, Any]]
    decode: Callable[[Row], TimetableEntry]


CODECS: Dict[DataSchemeVersion, RowCodec] = {
    DataSchemeVersion.V1: RowCodec(
        version=DataSchemeVersion.V1,
        columns=BASE_COLUMNS,
        encode=_encode_v1,
        decode=_decode_v1,
    ),
    DataSchemeVersion.V2: RowCodec(
        version=DataSchemeVersion.V2,
        columns=BASE_COLUMNS + (TRAIN_NAME,),
        encode=_encode_v2,
        decode=_decode_v2,
    ),
}


def get_codec(version: DataSchemeVersion | int) -> RowCodec:
    """
    バージョンから RowCodec を取得する。

    Raises:
        ValueError: 未知のバージョン
    """
    return CODECS[DataSchemeVersion(version)]
