# lochub/ops/operation.py
"""任务图中的单个操作调用及其注册信息。"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

# 回调签名: (args, inputs, context) -> 可 JSON 序列化的结果
OpCallback = Callable[[dict[str, Any], list[Any], Any], Awaitable[Any]]


class OpState(str, Enum):
    PENDING = "pending"
    # 非幂等操作在调用前先落盘为 running，重启后据此识别中途崩溃
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class RegisteredOp:
    name: str
    callback: OpCallback
    idempotent: bool = False


class Op(BaseModel):
    """一次操作调用。args 与 output 必须可 JSON 序列化，以便持久化。"""

    op_id: int
    op_name: str
    args: dict[str, Any] = Field(default_factory=dict)
    input_op_ids: list[int] = Field(default_factory=list)
    state: OpState = OpState.PENDING
    output: Any = None
    last_ran_at: str | None = None
    root: bool = False

    @property
    def is_done(self) -> bool:
        return self.state == OpState.DONE
