# timetable_cache/timestamps.py
"""
時刻 <-> テキストの変換

DB には時刻を固定幅の英語表記で保存する:

    "Wed May 01 13:00:00 MSK 2024"
     ^^^ ^^^ ^^ ^^^^^^^^ ^^^ ^^^^
     曜日 月  日  時刻      TZ  年

ロケールに依存しないよう、曜日名・月名は自前のテーブルで変換する。
"""
from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone

from .config import MSK_OFFSET_HOURS
from .exceptions import DecodeFailure

# 夏時間なしの固定オフセット。タイムゾーンDBは使わない
MSK = timezone(timedelta(hours=MSK_OFFSET_HOURS), "MSK")
TZ_LABEL = "MSK"

_DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTH_NAMES = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

# 時刻部分（HH:MM:SS）を LIKE のワイルドカードに置き換えたもの
TIME_OF_DAY_WILDCARD = "__:__:__"

_TIMESTAMP_RE = re.compile(
    r"^([A-Z][a-z]{2}) ([A-Z][a-z]{2}) (\d{2}) (\d{2}):(\d{2}):(\d{2}) ([A-Z]+) (\d{4})$"
)


def to_msk(dt: datetime) -> datetime:
    """
    任意の datetime をモスクワ時間（UTC+3 固定）に揃える。

    ルール:
      - tzinfo 付き: UTC に直してから +3 時間ずらす
      - naive: すでにモスクワ時間の壁時計とみなしてそのまま MSK を付ける
        （キーの日付用。保存するエントリの時刻は aware であること）
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=MSK)

    utc_wall = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return (utc_wall + timedelta(hours=MSK_OFFSET_HOURS)).replace(tzinfo=MSK)


def msk_day(value: date | datetime) -> date:
    """キーとして使う「モスクワ時間での日付」を返す"""
    # datetime は date のサブクラスなので先に判定する
    if isinstance(value, datetime):
        return to_msk(value).date()
    return value


def format_timestamp(dt: datetime) -> str:
    msk = to_msk(dt)
    return "%s %s %02d %02d:%02d:%02d %s %04d" % (
        _DAY_NAMES[msk.weekday()],
        _MONTH_NAMES[msk.month - 1],
        msk.day,
        msk.hour,
        msk.minute,
        msk.second,
        TZ_LABEL,
        msk.year,
    )


def parse_timestamp(text: str | None) -> datetime:
    """
    format_timestamp の逆変換。MSK 付きの aware datetime を返す。
    不正な文字列の場合は DecodeFailure を発生させる。
    """
    if not text:
        raise DecodeFailure("Empty timestamp string")

    m = _TIMESTAMP_RE.match(text)
    if not m:
        raise DecodeFailure(f"Invalid timestamp format: {text!r}")

    day_name, month_name, day, hour, minute, second, tz_label, year = m.groups()

    if month_name not in _MONTH_NAMES:
        raise DecodeFailure(f"Unknown month name {month_name!r} in {text!r}")
    if tz_label != TZ_LABEL:
        raise DecodeFailure(f"Unsupported time zone {tz_label!r} in {text!r}")

    try:
        parsed = datetime(
            int(year),
            _MONTH_NAMES.index(month_name) + 1,
            int(day),
            int(hour),
            int(minute),
            int(second),
            tzinfo=MSK,
        )
    except ValueError as e:
        raise DecodeFailure(f"Invalid timestamp components in {text!r}: {e}") from e

    if _DAY_NAMES[parsed.weekday()] != day_name:
        raise DecodeFailure(
            f"Day name {day_name!r} does not match date {parsed.date()} in {text!r}"
        )

    return parsed


def day_mask(value: date | datetime) -> str:
    """
    指定日の全時刻にマッチする LIKE パターンを返す。

    例: 2024-05-01 → "Wed May 01 __:__:__ MSK 2024"
    """
    day = msk_day(value)
    return "%s %s %02d %s %s %04d" % (
        _DAY_NAMES[day.weekday()],
        _MONTH_NAMES[day.month - 1],
        day.day,
        TIME_OF_DAY_WILDCARD,
        TZ_LABEL,
        day.year,
    )

