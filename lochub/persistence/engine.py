# lochub/persistence/engine.py
"""SQLite 异步引擎的创建与连接级 PRAGMA 设置。"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from lochub.config import MEMORY

logger = structlog.get_logger(__name__)


def create_sqlite_engine(db_path: str) -> AsyncEngine:
    """
    为给定路径创建 `sqlite+aiosqlite` 引擎。

    `:memory:` 使用 StaticPool，使整个引擎共享同一个内存数据库连接。
    """
    if db_path == MEMORY:
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        if db_path != MEMORY:
            cursor.execute("PRAGMA journal_mode = WAL")
        cursor.close()

    logger.debug("SQLite 引擎已创建。", db_path=db_path)
    return engine


def uses_single_connection(engine: AsyncEngine) -> bool:
    """
    引擎是否只有一个共享连接（内存库）。

    共享连接上的读取在归还时会回滚该连接，从而回滚同一连接上进行中的写事务，
    所以这类引擎上的所有操作都必须串行化。
    """
    return isinstance(engine.sync_engine.pool, StaticPool)
