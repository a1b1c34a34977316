# lochub/ops/store.py
"""`OpsStore` 协议的 SQLite 实现。"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from lochub.core.exceptions import DatabaseError
from lochub.persistence.engine import uses_single_connection
from lochub.persistence.schema import OpRecord, OpsBase

logger = structlog.get_logger(__name__)

_COLUMNS = (
    "op_id",
    "op_name",
    "args",
    "input_op_ids",
    "state",
    "output",
    "last_ran_at",
    "root",
)


class SqliteOpsStore:
    """以任务名为键保存操作列表。每次保存都整体替换该任务的所有行。"""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self._lock = asyncio.Lock()
        self._serialize_reads = uses_single_connection(engine)

    async def connect(self) -> None:
        try:
            async with self._lock, self.engine.begin() as conn:
                await conn.run_sync(OpsBase.metadata.create_all)
        except SQLAlchemyError as e:
            raise DatabaseError(f"初始化任务存储失败: {e}") from e

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def _reading(self) -> AsyncGenerator[AsyncConnection, None]:
        if self._serialize_reads:
            async with self._lock, self.engine.connect() as conn:
                yield conn
        else:
            async with self.engine.connect() as conn:
                yield conn

    async def save_ops(self, task_name: str, serialized_ops: list[dict[str, Any]]) -> None:
        rows = [
            {"task_name": task_name, **{col: op.get(col) for col in _COLUMNS}}
            for op in serialized_ops
        ]
        try:
            async with self._lock, self.engine.begin() as conn:
                await conn.execute(delete(OpRecord).where(OpRecord.task_name == task_name))
                if rows:
                    await conn.execute(OpRecord.__table__.insert(), rows)
        except SQLAlchemyError as e:
            raise DatabaseError(f"保存任务 '{task_name}' 失败: {e}") from e
        logger.debug("任务状态已保存。", task_name=task_name, ops=len(rows))

    async def get_task(self, task_name: str) -> list[dict[str, Any]]:
        stmt = (
            select(OpRecord.__table__)
            .where(OpRecord.__table__.c.task_name == task_name)
            .order_by(OpRecord.__table__.c.op_id)
        )
        async with self._reading() as conn:
            result = await conn.execute(stmt)
            return [{col: getattr(row, col) for col in _COLUMNS} for row in result.all()]

    async def list_tasks(self) -> list[str]:
        async with self._reading() as conn:
            result = await conn.execute(
                select(OpRecord.task_name).distinct().order_by(OpRecord.task_name)
            )
            return list(result.scalars())
