# timetable_cache/exceptions.py
from __future__ import annotations

from datetime import date, datetime

from .config import LOG_DATE_FORMAT


class TimetableCacheError(Exception):
    """キャッシュ層の例外の基底クラス"""


class CacheMiss(TimetableCacheError, LookupError):
    """
    指定キーのデータがキャッシュに無い。

    呼び出し側はリモートから取り直す想定の、回復可能なエラー。
    """

    def __init__(self, from_station_id: str, to_station_id: str, date_msk: date | datetime) -> None:
        self.from_station_id = from_station_id
        self.to_station_id = to_station_id
        self.date_msk = date_msk
        super().__init__(
            "No data in timetable cache for: fromStationId=%s, toStationId=%s, dateMsk=%s"
            % (from_station_id, to_station_id, date_msk.strftime(LOG_DATE_FORMAT))
        )


class DecodeFailure(TimetableCacheError, ValueError):
    """保存済みの行を TimetableEntry に戻せない（時刻文字列の破損など）"""


class WriteFailure(TimetableCacheError):
    """書き込みトランザクションが失敗した。put 全体がロールバック済み。"""


class StorageUnavailable(TimetableCacheError):
    """DB ファイルを開けない / 接続できない"""
