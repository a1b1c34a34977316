# lochub/persistence/schema.py
"""
ORM 模型。

每个语言对一个 SQLite 数据库，包含 `tus`、`jobs` 与 `job_payloads` 三张表；
持久化任务图另用一个数据库，只有 `ops` 表。
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class TmBase(DeclarativeBase):
    """翻译记忆库（每个语言对一个）的声明式基类。"""


class TmUnit(TmBase):
    """翻译单元事实表：同一 guid 每个作业一行，权威行在读取时裁决。"""

    __tablename__ = "tus"

    guid: Mapped[str] = mapped_column(String, primary_key=True)
    job_guid: Mapped[str] = mapped_column(String, primary_key=True)
    # 规范化 JSON，逻辑相同的 TU 字节相同
    entry: Mapped[str] = mapped_column(Text, nullable=False)
    # 序数源；其索引在第一次精确匹配查询时才创建
    ordinal_src: Mapped[str | None] = mapped_column(Text)
    q: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # 每次实际写入都取本库内递增的序号，(q, ts) 完全相同时后写入者获胜
    write_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)


class TmJob(TmBase):
    """作业注册表，只在与其 TU 行相同的事务中写入。"""

    __tablename__ = "jobs"

    job_guid: Mapped[str] = mapped_column(String, primary_key=True)
    status: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[str | None] = mapped_column(String)
    translation_provider: Mapped[str | None] = mapped_column(String)


class TmJobPayload(TmBase):
    """作业的完整请求与最近一次响应，供重启后重建抓取任务。"""

    __tablename__ = "job_payloads"

    job_guid: Mapped[str] = mapped_column(String, primary_key=True)
    request: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    response: Mapped[dict[str, Any] | None] = mapped_column(JSON)


class OpsBase(DeclarativeBase):
    """任务图存储的声明式基类。"""


class OpRecord(OpsBase):
    __tablename__ = "ops"

    task_name: Mapped[str] = mapped_column(String, primary_key=True)
    op_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    op_name: Mapped[str] = mapped_column(String, nullable=False)
    args: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    input_op_ids: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    state: Mapped[str] = mapped_column(String, nullable=False)
    output: Mapped[Any] = mapped_column(JSON)
    last_ran_at: Mapped[str | None] = mapped_column(String)
    root: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
