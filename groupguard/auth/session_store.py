"""持久化会话存储：跨进程重启保存 Cookie 等会话状态。

底层是数据目录下的一个 SQLite 文件（key/value 表），上层按命名空间隔离键，
避免与其他持久化数据冲突。读写故障只记录日志并降级为"无可恢复会话"，不会抛出。
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable

import aiosqlite

from groupguard.config import StorageLocation

logger = logging.getLogger(__name__)

SESSION_FILE_NAME = "vrchat-session.db"
DEFAULT_NAMESPACE = "vrchat"
# 未显式配置时使用的占位地址，消费方会无条件检查该字段
DEFAULT_STORE_URL = "file://"

KV_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""

ErrorListener = Callable[[Exception], None]


class SqliteKeyValueStore:
    """原始 key/value 存储，每次操作单独打开连接"""

    def __init__(self, db_path: str | Path, url: str | None = None):
        self.db_path = Path(db_path)
        self.url = url or DEFAULT_STORE_URL

    async def _connect(self) -> aiosqlite.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(self.db_path)
        try:
            await db.execute(KV_SCHEMA)
        except Exception:
            await db.close()
            raise
        return db

    async def get(self, key: str) -> str | None:
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = await cursor.fetchone()
            return row[0] if row else None
        finally:
            await db.close()

    async def set(self, key: str, value: str) -> None:
        db = await self._connect()
        try:
            await db.execute("INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", (key, value))
            await db.commit()
        finally:
            await db.close()

    async def delete(self, key: str) -> None:
        db = await self._connect()
        try:
            await db.execute("DELETE FROM kv WHERE key = ?", (key,))
            await db.commit()
        finally:
            await db.close()

    async def clear(self, prefix: str) -> None:
        db = await self._connect()
        try:
            # 按字面前缀匹配，命名空间中的 _ 和 % 不作通配符
            await db.execute("DELETE FROM kv WHERE substr(key, 1, length(?)) = ?", (prefix, prefix))
            await db.commit()
        finally:
            await db.close()


class SessionStore:
    """命名空间包装层，对外提供 JSON 值的读写。

    可以被再次包装（例如客户端拿到 store 后自行包一层），构造时要求底层存储带有
    非空的 url，缺失时补上占位值。
    """

    def __init__(self, backend: SqliteKeyValueStore | SessionStore, namespace: str = DEFAULT_NAMESPACE):
        if isinstance(backend, SessionStore):
            self._listeners: list[ErrorListener] = list(backend._listeners)
            backend = backend.backend
        else:
            self._listeners = []

        if not getattr(backend, "url", None):
            backend.url = DEFAULT_STORE_URL
        self.backend = backend
        self.namespace = namespace
        self.url = backend.url

    def on_error(self, listener: ErrorListener) -> None:
        """注册读写故障监听"""
        self._listeners.append(listener)

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _emit_error(self, error: Exception) -> None:
        for listener in self._listeners:
            try:
                listener(error)
            except Exception as e:
                logger.warning(f"[SessionStore] 错误监听器异常: {e}")

    async def get(self, key: str) -> Any | None:
        """读取并反序列化；读失败或内容损坏时返回 None"""
        try:
            raw = await self.backend.get(self._key(key))
            return json.loads(raw) if raw is not None else None
        except Exception as e:
            self._emit_error(e)
            return None

    async def set(self, key: str, value: Any) -> bool:
        """序列化写入；失败返回 False"""
        try:
            await self.backend.set(self._key(key), json.dumps(value, ensure_ascii=False))
            return True
        except Exception as e:
            self._emit_error(e)
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self.backend.delete(self._key(key))
            return True
        except Exception as e:
            self._emit_error(e)
            return False

    async def clear(self) -> bool:
        """删除本命名空间下的全部键"""
        try:
            await self.backend.clear(f"{self.namespace}:")
            return True
        except Exception as e:
            self._emit_error(e)
            return False


class SessionStoreProvider:
    """按命名空间懒创建并缓存会话存储，进程生命周期内复用同一实例"""

    def __init__(self, location: StorageLocation):
        self.location = location
        self._stores: dict[str, SessionStore] = {}

    def get(self, namespace: str = DEFAULT_NAMESPACE) -> SessionStore:
        store = self._stores.get(namespace)
        if store is None:
            file_path = self.location.get_data_dir() / SESSION_FILE_NAME
            logger.info(f"[SessionStore] 会话存储路径: {file_path}")

            store = SessionStore(SqliteKeyValueStore(file_path), namespace=namespace)
            store.on_error(_log_store_error)
            self._stores[namespace] = store
        return store

    def reset(self) -> None:
        """数据目录变更后丢弃缓存，下次 get 时按新目录重建"""
        self._stores.clear()


def _log_store_error(error: Exception) -> None:
    logger.error(f"[SessionStore] 会话存储读写失败: {error}")
