# timetable_cache/loader.py
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, List, Sequence

from .cache import TimetableCache
from .exceptions import CacheMiss
from .timetable_models import TimetableEntry

logger = logging.getLogger(__name__)

# (from_station_id, to_station_id, date_msk) -> 取得した時刻表
TimetableFetcher = Callable[[str, str, date | datetime], Sequence[TimetableEntry]]


def load_timetable(
    cache: TimetableCache,
    fetch: TimetableFetcher,
    from_station_id: str,
    to_station_id: str,
    date_msk: date | datetime,
) -> List[TimetableEntry]:
    """
    キャッシュにあればそれを返し、無ければ fetch で取得してキャッシュに保存する。

    NOTE:
      - 空の結果はキャッシュしない（put 後の get が CacheMiss になるのを避ける）
      - fetch の例外や put の WriteFailure はそのまま呼び出し側に投げる
    """
    try:
        return cache.get(from_station_id, to_station_id, date_msk)
    except CacheMiss:
        logger.info(
            "Timetable cache miss for %s -> %s on %s, fetching",
            from_station_id,
            to_station_id,
            date_msk,
        )

    timetable = list(fetch(from_station_id, to_station_id, date_msk))
    if timetable:
        cache.put(from_station_id, to_station_id, date_msk, timetable)
    else:
        logger.info(
            "Fetched empty timetable for %s -> %s on %s, not caching",
            from_station_id,
            to_station_id,
            date_msk,
        )
    return timetable
