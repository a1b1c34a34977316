# lochub/_tm/authority.py
"""
权威行裁决规则：质量降序，时间戳降序，写入序号降序。

同一个 guid 可能有多行（每个作业一行）。本模块是唯一定义“哪一行获胜”的地方，
持久化层的 SQL 排序与内存中的选择都从这里取规则。

回归模式下 ts 恒为 1，同一毫秒内的两次写入 ts 也相同；写入序号保证
(q, ts) 完全相同时总是后写入的行获胜。
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from lochub.core.types import TranslationUnit

# (行, 写入序号)
RankedRow = tuple[TranslationUnit, int]


def authority_key(tu: TranslationUnit, write_seq: int = 0) -> tuple[int, int, int]:
    """排序键：越大越权威。缺失的 q/ts 视为 0。"""
    return (tu.q or 0, tu.ts or 0, write_seq)


def rank_by_authority(rows: Iterable[RankedRow]) -> list[TranslationUnit]:
    """按权威度从高到低排列带写入序号的行。"""
    ordered = sorted(rows, key=lambda row: authority_key(*row), reverse=True)
    return [tu for tu, _ in ordered]


def sort_by_authority(rows: Iterable[TranslationUnit]) -> list[TranslationUnit]:
    """没有写入序号时以迭代顺序代替：完全平局时后出现的行获胜。"""
    return rank_by_authority((tu, n) for n, tu in enumerate(rows))


def pick_authoritative(rows: Iterable[TranslationUnit]) -> TranslationUnit | None:
    """从候选行中选出权威行；没有候选时返回 None。"""
    ranked = sort_by_authority(rows)
    return ranked[0] if ranked else None


def authority_order_by(q_col: Any, ts_col: Any, write_seq_col: Any) -> tuple[Any, Any, Any]:
    """返回与 `authority_key` 等价的 SQL ORDER BY 子句。"""
    return (q_col.desc(), ts_col.desc(), write_seq_col.desc())
