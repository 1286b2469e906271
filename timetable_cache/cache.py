# timetable_cache/cache.py
"""
列車時刻表のキャッシュ

キーは次の3つの組み合わせ:
  ID 出発駅, ID 到着駅, モスクワ時間での日付

保存単位は列車のリスト（TimetableEntry のリスト）。

NOTE:
  - get / put は DB I/O でブロックする。レイテンシに敏感なスレッド
    （イベントループなど）からは呼ばないこと。
  - インスタンスの生成は I/O を伴わないので、どのスレッドからでもよい。
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import List, Sequence

from sqlalchemy import insert, select
from sqlalchemy.exc import SQLAlchemyError

from .config import CacheSettings
from .database import StorageGateway
from .exceptions import CacheMiss, DecodeFailure, WriteFailure
from .schema import (
    ARRIVAL_STATION_ID,
    DEPARTURE_STATION_ID,
    DEPARTURE_TIME,
    DataSchemeVersion,
    get_codec,
)
from .timestamps import day_mask, msk_day
from .timetable_models import TimetableEntry

logger = logging.getLogger(__name__)


def _check_entry_times(idx: int, entry: TimetableEntry) -> None:
    """
    保存前に時刻を検査する。tzinfo 無し（naive）の datetime は受け付けない。

    NOTE:
      - get は常に MSK 付きの datetime を返すので、naive を受け入れると
        put した値と get した値が一致しなくなる
    """
    for field in ("departure_time", "arrival_time"):
        value = getattr(entry, field)
        if not isinstance(value, datetime):
            raise WriteFailure(
                f"Entry {idx}: {field} must be a datetime, got {type(value).__name__}"
            )
        if value.tzinfo is None or value.utcoffset() is None:
            raise WriteFailure(f"Entry {idx}: {field} must be timezone-aware, got {value}")


class TimetableCache:
    def __init__(
        self,
        context: CacheSettings | StorageGateway,
        version: DataSchemeVersion | int,
    ) -> None:
        """
        指定したデータモデルのバージョンでキャッシュを作る。

        Args:
            context: DB の場所（CacheSettings）か、共有済みの StorageGateway
            version: このインスタンスが読み書きする行レイアウト

        NOTE:
          - 同じ DB ファイルに対するインスタンスはいくつ作ってもよい。
            全て1つの StorageGateway（Engine）を共有する。
        """
        if isinstance(context, StorageGateway):
            self._gateway = context
        else:
            self._gateway = StorageGateway.from_settings(context)
        self.version = DataSchemeVersion(version)
        self._codec = get_codec(self.version)

    @property
    def gateway(self) -> StorageGateway:
        return self._gateway

    def get(
        self,
        from_station_id: str,
        to_station_id: str,
        date_msk: date | datetime,
    ) -> List[TimetableEntry]:
        """
        キャッシュから時刻表を取り出す。
        指定ルートで、指定日（モスクワ時間）に出発する全列車のリストを返す。

        デコードできない行は読み飛ばし、件数を WARNING でログに出す。

        Returns:
            TimetableEntry のリスト（空にはならない。順序は DB の格納順）

        Raises:
            CacheMiss: キャッシュにデータが無い
            StorageUnavailable: DB を開けない
        """
        table = self._gateway.open(self.version)

        # 曜日・月・日・年を固定し、時刻部分だけをワイルドカードにしたパターンで日単位に絞る
        stmt = select(*(table.c[name] for name in self._codec.columns)).where(
            table.c[DEPARTURE_STATION_ID] == from_station_id,
            table.c[ARRIVAL_STATION_ID] == to_station_id,
            table.c[DEPARTURE_TIME].like(day_mask(date_msk)),
        )

        with self._gateway.readable_handle() as conn:
            rows = conn.execute(stmt).mappings().all()

        result: List[TimetableEntry] = []
        skipped_count = 0
        for idx, row in enumerate(rows):
            try:
                entry = self._codec.decode(row)
            except DecodeFailure as e:
                logger.warning(
                    "Skipping unreadable cached row %d for %s -> %s: %s",
                    idx,
                    from_station_id,
                    to_station_id,
                    e,
                )
                skipped_count += 1
                continue

            result.append(entry)

        if skipped_count > 0:
            logger.warning(
                "Skipped %d unreadable rows in timetable cache for %s -> %s on %s",
                skipped_count,
                from_station_id,
                to_station_id,
                msk_day(date_msk),
            )

        if not result:
            raise CacheMiss(from_station_id, to_station_id, msk_day(date_msk))

        logger.debug(
            "Cache hit: %d entries for %s -> %s on %s",
            len(result),
            from_station_id,
            to_station_id,
            msk_day(date_msk),
        )
        return result

    def put(
        self,
        from_station_id: str,
        to_station_id: str,
        date_msk: date | datetime,
        timetable: Sequence[TimetableEntry],
    ) -> None:
        """
        時刻表をキャッシュに保存する。全行を1トランザクションで書き込む。

        NOTE:
          - 空のリストは何も書き込まない（その後の get は CacheMiss になる）
          - 同じキーの既存行は消さない。put を繰り返すと行が増える
          - 時刻は tzinfo 付きであること（naive は WriteFailure。行は1つも書かれない）

        Raises:
            WriteFailure: 書き込みに失敗した（この put の行は1つも残らない）
            StorageUnavailable: DB を開けない
        """
        if not timetable:
            logger.debug(
                "Empty timetable for %s -> %s on %s, nothing to store",
                from_station_id,
                to_station_id,
                msk_day(date_msk),
            )
            return

        for idx, entry in enumerate(timetable):
            _check_entry_times(idx, entry)

        table = self._gateway.open(self.version)
        self._warn_on_key_mismatch(from_station_id, to_station_id, timetable)

        try:
            with self._gateway.writable_handle() as conn:
                for entry in timetable:
                    conn.execute(insert(table).values(self._codec.encode(entry)))
        except SQLAlchemyError as e:
            raise WriteFailure(
                "Failed to store %d entries for %s -> %s on %s: %s"
                % (len(timetable), from_station_id, to_station_id, msk_day(date_msk), e)
            ) from e

        logger.debug(
            "Stored %d entries for %s -> %s on %s (schema %s)",
            len(timetable),
            from_station_id,
            to_station_id,
            msk_day(date_msk),
            self.version.name,
        )

    def _warn_on_key_mismatch(
        self,
        from_station_id: str,
        to_station_id: str,
        timetable: Sequence[TimetableEntry],
    ) -> None:
        # 行はエントリ自身の駅IDで保存されるので、キーと違うと get で見つからない
        mismatched = sum(
            1
            for entry in timetable
            if entry.departure_station_id != from_station_id
            or entry.arrival_station_id != to_station_id
        )
        if mismatched:
            logger.warning(
                "%d of %d entries do not match key %s -> %s",
                mismatched,
                len(timetable),
                from_station_id,
                to_station_id,
            )
