# timetable_cache/config.py
"""
キャッシュ設定モジュール

DB ファイルの場所などを管理する。
環境変数（.env も可）で上書きできる:
  - TIMETABLE_CACHE_DB: SQLite ファイルのパス
  - TIMETABLE_CACHE_ECHO: "1" / "true" で SQL をログに出す
  - TIMETABLE_CACHE_BUSY_TIMEOUT: SQLite のロック待ち秒数
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv
from pydantic import BaseModel

# プロジェクトルートの timetable_cache.db をデフォルトにする
BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DB_PATH = BASE_DIR / "timetable_cache.db"

TABLE_NAME = "timetable"

# モスクワ時間（UTC+3, 夏時間なし）
MSK_OFFSET_HOURS = 3

# V2 以降で trainName が無いことを表す文字列
NULL_SENTINEL = "NULL"

# CacheMiss のメッセージ用
LOG_DATE_FORMAT = "%Y-%m-%d"


class CacheSettings(BaseModel):
    """キャッシュの設置場所と接続設定"""
    db_path: Path = DEFAULT_DB_PATH
    echo_sql: bool = False
    busy_timeout_sec: float = 30.0


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> CacheSettings:
    """
    .env と環境変数から CacheSettings を組み立てる。

    Returns:
        未設定の項目はデフォルト値の CacheSettings
    """
    load_dotenv()

    db_path = os.getenv("TIMETABLE_CACHE_DB", "").strip()
    echo = os.getenv("TIMETABLE_CACHE_ECHO", "")
    busy_timeout = os.getenv("TIMETABLE_CACHE_BUSY_TIMEOUT", "").strip()

    overrides: Dict[str, Any] = {}
    if db_path:
        overrides["db_path"] = Path(db_path)
    if echo:
        overrides["echo_sql"] = _env_flag(echo)
    if busy_timeout:
        # 数値でなければ pydantic の ValidationError になる
        overrides["busy_timeout_sec"] = busy_timeout
    return CacheSettings(**overrides)
