# timetable_cache/database.py
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List

from sqlalchemy import Column, MetaData, String, Table, create_engine, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError

from .config import NULL_SENTINEL, TABLE_NAME, CacheSettings
from .exceptions import StorageUnavailable
from .schema import TRAIN_NAME, DataSchemeVersion, get_codec

logger = logging.getLogger(__name__)


def column_list(version: DataSchemeVersion | int) -> List[str]:
    """バージョンに対応するカラム名（順序付き）。trainName は V1 以外のみ。"""
    return list(get_codec(version).columns)


def build_table(version: DataSchemeVersion | int, metadata: MetaData) -> Table:
    """バージョンの形をした timetable テーブル定義を作る（全カラム TEXT）"""
    columns = []
    for name in get_codec(version).columns:
        if name == TRAIN_NAME:
            # V1 で書かれた行にも値が入るよう、デフォルトは "NULL" 文字列
            columns.append(
                Column(name, String, nullable=True, server_default=text(f"'{NULL_SENTINEL}'"))
            )
        else:
            columns.append(Column(name, String, nullable=False))
    return Table(TABLE_NAME, metadata, *columns)


class StorageGateway:
    """
    1つの SQLite ファイルに対する共有ハンドル。

    同じファイルに対しては get_instance() が常に同じインスタンスを返すので、
    複数の TimetableCache が1つの Engine を共有する。
    """

    _instances: Dict[Path, "StorageGateway"] = {}
    _instances_lock = threading.Lock()

    def __init__(self, db_path: Path, echo: bool = False, busy_timeout_sec: float = 30.0) -> None:
        self.db_path = Path(db_path)
        # SQLite はデフォルトでマルチスレッド通信を許可しないため check_same_thread=False が必要
        self.engine: Engine = create_engine(
            f"sqlite:///{self.db_path}",
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": busy_timeout_sec},
        )
        # version -> Table（open 済みのもの）
        self._tables: Dict[DataSchemeVersion, Table] = {}
        self._schema_lock = threading.Lock()

    # ------------------------------------------------------------------
    # 共有インスタンス
    # ------------------------------------------------------------------
    @classmethod
    def get_instance(
        cls, db_path: Path | str, echo: bool = False, busy_timeout_sec: float = 30.0
    ) -> "StorageGateway":
        """
        db_path に対応する共有インスタンスを返す。何度呼んでもよい。

        NOTE:
          - echo / busy_timeout_sec は最初の呼び出しの値が使われる
        """
        key = Path(db_path).resolve()
        with cls._instances_lock:
            gateway = cls._instances.get(key)
            if gateway is None:
                gateway = cls(key, echo=echo, busy_timeout_sec=busy_timeout_sec)
                cls._instances[key] = gateway
                logger.debug("Storage gateway created for %s", key)
            return gateway

    @classmethod
    def from_settings(cls, settings: CacheSettings) -> "StorageGateway":
        return cls.get_instance(
            settings.db_path,
            echo=settings.echo_sql,
            busy_timeout_sec=settings.busy_timeout_sec,
        )

    @classmethod
    def reset_instances(cls) -> None:
        """共有インスタンスを全て破棄する（テスト用）"""
        with cls._instances_lock:
            for gateway in cls._instances.values():
                gateway.dispose()
            cls._instances.clear()

    def dispose(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # スキーマ
    # ------------------------------------------------------------------
    def open(self, version: DataSchemeVersion | int) -> Table:
        """
        version の形のテーブルを用意して返す。2回目以降はキャッシュ済みの Table を返す。

        - テーブルが無ければ作成する
        - V2 以降で既存テーブルに trainName が無ければ ALTER TABLE で追加する
          （V1 で書かれた行は trainName = "NULL" になる）
        - V1 で V2 のテーブルを開いた場合は何もしない（trainName には触れない）
        """
        version = DataSchemeVersion(version)
        with self._schema_lock:
            table = self._tables.get(version)
            if table is not None:
                return table

            table = build_table(version, MetaData())
            try:
                with self.engine.begin() as conn:
                    self._ensure_table(conn, table, version)
            except OperationalError as e:
                raise StorageUnavailable(
                    f"Cannot open timetable cache at {self.db_path}: {e}"
                ) from e

            self._tables[version] = table
            return table

    def _ensure_table(self, conn: Connection, table: Table, version: DataSchemeVersion) -> None:
        inspector = inspect(conn)
        if not inspector.has_table(TABLE_NAME):
            table.create(conn)
            logger.info("Created table %s (schema %s) in %s", TABLE_NAME, version.name, self.db_path)
            return

        existing = {col["name"] for col in inspector.get_columns(TABLE_NAME)}
        missing = [name for name in column_list(version) if name not in existing]
        if not missing:
            return

        for name in missing:
            if name != TRAIN_NAME:
                # 基本カラムが欠けているテーブルは移行できない
                raise StorageUnavailable(
                    f"Table {TABLE_NAME} in {self.db_path} has no column {name}"
                )
            conn.execute(
                text(
                    f"ALTER TABLE {TABLE_NAME} ADD COLUMN {TRAIN_NAME} TEXT "
                    f"DEFAULT '{NULL_SENTINEL}'"
                )
            )
        logger.info(
            "Migrated table %s to schema %s (added %s)",
            TABLE_NAME,
            version.name,
            ", ".join(missing),
        )

    def column_list(self, version: DataSchemeVersion | int) -> List[str]:
        return column_list(version)

    # ------------------------------------------------------------------
    # 読み書き
    # ------------------------------------------------------------------
    def _connect(self) -> Connection:
        try:
            return self.engine.connect()
        except OperationalError as e:
            raise StorageUnavailable(
                f"Cannot connect to timetable cache at {self.db_path}: {e}"
            ) from e

    @contextmanager
    def readable_handle(self) -> Iterator[Connection]:
        """読み取り用の接続。読み取り同士は並行してよい。"""
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def writable_handle(self) -> Iterator[Connection]:
        """
        書き込み用の接続（1トランザクション）。

        ブロックを抜けたら commit、例外ならロールバックして例外をそのまま投げ直す。
        """
        conn = self._connect()
        try:
            with conn.begin():
                yield conn
        finally:
            conn.close()
