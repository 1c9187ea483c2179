"""键值持久化后端

存储层只需要 "键 -> JSON 字符串" 的简单映射，写入是同步的：调用返回时数据已经落盘。
- SqliteKeyValueBackend: 生产环境使用，数据库版本记录在 PRAGMA user_version 中;
- MemoryKeyValueBackend: 测试及无需落盘的场景使用。
"""

from __future__ import annotations

import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager

from hydropush.logger import logger

STORAGE_SCHEMA_VERSION = 1


class KeyValueBackend(ABC):
    @abstractmethod
    def get_item(self, key: str) -> str | None:
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        pass

    def close(self) -> None:
        pass


class MemoryKeyValueBackend(KeyValueBackend):
    def __init__(self, initial: dict[str, str] | None = None):
        self.items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


class SqliteKeyValueBackend(KeyValueBackend):
    """基于 sqlite 的键值存储，同一时刻只允许一个线程访问连接"""

    def __init__(self, db_path: str):
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = sqlite3.connect(db_path, check_same_thread=False)
        self._migrate()

    @contextmanager
    def transaction(self):
        """提供一个事务上下文管理器，自动处理提交和回滚"""
        if self._conn is None:
            raise RuntimeError("数据库连接已关闭")
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                logger.error(f"数据库事务失败: {e}")
                raise

    def _migrate(self) -> None:
        with self.transaction() as conn:
            user_version = conn.execute("PRAGMA user_version").fetchone()[0]

            if user_version == 0:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS kv_store (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at_utc TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                    )
                    """
                )
                conn.execute(f"PRAGMA user_version = {STORAGE_SCHEMA_VERSION}")
                logger.info(f"初始化存储: db_path={self.db_path}, schema_version={STORAGE_SCHEMA_VERSION}")

            elif user_version > STORAGE_SCHEMA_VERSION:
                logger.warning(
                    f"存储版本 {user_version} 高于当前支持的 {STORAGE_SCHEMA_VERSION}, 将尝试兼容读取"
                )

            # 存储升级逻辑可以在这里继续添加

    def get_item(self, key: str) -> str | None:
        with self.transaction() as conn:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at_utc) VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at_utc = CURRENT_TIMESTAMP
                """,
                (key, value),
            )

    def remove_item(self, key: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))

    def schema_version(self) -> int:
        with self.transaction() as conn:
            return conn.execute("PRAGMA user_version").fetchone()[0]

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
        logger.info("存储连接已关闭")


__all__ = [
    "KeyValueBackend", "MemoryKeyValueBackend", "SqliteKeyValueBackend", "STORAGE_SCHEMA_VERSION",
]
