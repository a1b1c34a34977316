# lochub/ops/manager.py
"""操作注册表与任务工厂。"""

from __future__ import annotations

import random
import string
from typing import Any

from lochub.config import RetryPolicyConfig
from lochub.context import ProcessingContext
from lochub.core.exceptions import OpNotFoundError, OpRegistrationError, TaskExecutionError
from lochub.core.interfaces import OpsStore
from lochub.ops.operation import Op, OpCallback, OpState, RegisteredOp
from lochub.ops.task import Task


class OpsManager:
    """
    持有按名称注册的异步操作，并负责创建与恢复任务。

    每个注册项声明自身是否幂等：只有幂等操作会在失败后重试，
    或在进程重启后被重放。
    """

    def __init__(
        self,
        context: ProcessingContext,
        store: OpsStore | None = None,
        retry_policy: RetryPolicyConfig | None = None,
        default_parallelism: int = 1,
    ) -> None:
        self.context = context
        self.store = store
        self.retry_policy = retry_policy or RetryPolicyConfig()
        self.default_parallelism = default_parallelism
        self._registry: dict[str, RegisteredOp] = {}
        self.logger = context.get_logger("ops")

    def register_op(
        self, name: str, func: OpCallback, *, idempotent: bool = False
    ) -> None:
        existing = self._registry.get(name)
        if existing is not None:
            # 同一回调重复注册（例如同一提供方被初始化两次）是无害的
            if existing.callback == func and existing.idempotent == idempotent:
                return
            raise OpRegistrationError(f"操作 '{name}' 已被注册。")
        self._registry[name] = RegisteredOp(name=name, callback=func, idempotent=idempotent)
        self.logger.debug("操作已注册。", op_name=name, idempotent=idempotent)

    def get_op(self, name: str) -> RegisteredOp:
        try:
            return self._registry[name]
        except KeyError:
            raise OpNotFoundError(f"操作 '{name}' 未在注册表中登记。") from None

    def is_registered(self, name: str) -> bool:
        return name in self._registry

    def create_task(self, group: str = "task", *, task_name: str | None = None) -> Task:
        """创建任务。给出 task_name 时沿用该名字，保存时覆盖同名任务的记录。"""
        return Task(self, task_name or self._next_task_name(group))

    async def hydrate_task(self, task_name: str) -> Task:
        """
        从 OpsStore 恢复一个任务。

        幂等操作中处于 error/running 的被重置为 pending，可以安全重放；
        非幂等操作保持原状态，`execute()` 会因此拒绝继续。
        """
        if self.store is None:
            raise TaskExecutionError("未配置 OpsStore，无法恢复任务。", task_name=task_name)
        serialized = await self.store.get_task(task_name)
        if not serialized:
            raise TaskExecutionError(f"找不到任务 '{task_name}'。", task_name=task_name)

        task = Task(self, task_name)
        for raw in serialized:
            op = Op.model_validate(raw)
            registered = self.get_op(op.op_name)
            if registered.idempotent and op.state in (OpState.ERROR, OpState.RUNNING):
                op.state = OpState.PENDING
                op.output = None
            task.ops.append(op)
        self.logger.info("任务已恢复。", task_name=task_name, ops=len(task.ops))
        return task

    def _next_task_name(self, group: Any) -> str:
        if self.context.regression:
            return f"Task-{group}-{self.context.next_sequence():04d}"
        suffix = "".join(random.choices(string.ascii_lowercase, k=3))
        return f"Task-{self.context.now_ms()}-{group}-{suffix}"
