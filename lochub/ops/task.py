# lochub/ops/task.py
"""
任务：一个由叶子操作与唯一提交操作组成的小型有向无环图。

叶子在 `execute()` 中按并发上限同时运行，提交操作按叶子声明顺序接收
它们的结果。每批操作完成后都会把操作列表交给 OpsStore 持久化，
因此只凭任务名即可在进程重启后恢复。
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from lochub.core.exceptions import ProviderContractError, TaskExecutionError
from lochub.ops.operation import Op, OpState

if TYPE_CHECKING:
    from lochub.ops.manager import OpsManager


class Task:
    def __init__(self, manager: OpsManager, task_name: str) -> None:
        self.manager = manager
        self.task_name = task_name
        self.ops: list[Op] = []
        self._context: Any = None
        self.logger = manager.context.get_logger("ops").bind(task_name=task_name)

    @property
    def context(self) -> Any:
        return self._context

    @property
    def root_op(self) -> Op | None:
        return next((op for op in self.ops if op.root), None)

    def set_context(self, ctx: Any) -> None:
        """附加在任务内所有操作间共享的数据（不持久化）。"""
        self._context = ctx

    def enqueue(
        self,
        op_name: str,
        args: dict[str, Any] | None = None,
        inputs: Sequence[Op] | None = None,
    ) -> Op:
        """调度一次叶子调用，返回可用作提交输入的句柄。"""
        if self.root_op is not None:
            raise TaskExecutionError(
                "任务已提交，不能再追加操作。", task_name=self.task_name
            )
        self.manager.get_op(op_name)
        op = Op(
            op_id=len(self.ops),
            op_name=op_name,
            args=dict(args or {}),
            input_op_ids=[handle.op_id for handle in inputs or []],
        )
        self.ops.append(op)
        return op

    def commit(
        self,
        op_name: str,
        args: dict[str, Any] | None = None,
        handles: Sequence[Op] | None = None,
    ) -> Op:
        """声明终结节点：它接收 args 以及按 handles 顺序排列的叶子结果。"""
        op = self.enqueue(op_name, args, handles)
        op.root = True
        self.logger.debug("任务已提交。", root_op=op_name, leaves=len(op.input_op_ids))
        return op

    async def execute(self, parallelism: int | None = None) -> Any:
        """
        运行所有尚未完成的操作并返回提交操作的结果。

        已完成的操作不会被再次调用。非幂等操作失败会中止任务；幂等操作
        按重试策略透明重试（契约违规除外）。

        Raises:
            TaskExecutionError: 任务无法完成，原始异常通过 __cause__ 链接。
        """
        root = self.root_op
        if root is None:
            raise TaskExecutionError("任务尚未提交。", task_name=self.task_name)
        self._check_resumable()

        limit = parallelism or self.manager.default_parallelism
        semaphore = asyncio.Semaphore(max(1, limit))

        while not root.is_done:
            ready = [
                op
                for op in self.ops
                if op.state == OpState.PENDING
                and all(self.ops[i].is_done for i in op.input_op_ids)
            ]
            if not ready:
                raise TaskExecutionError(
                    "任务中没有可运行的操作，依赖无法满足。", task_name=self.task_name
                )

            results = await asyncio.gather(
                *(self._run_op(op, semaphore) for op in ready), return_exceptions=True
            )
            await self.save()

            # 已发出的调用不会被中途取消：整批结束后再上报第一个错误
            for op, result in zip(ready, results):
                if isinstance(result, BaseException):
                    raise TaskExecutionError(
                        f"操作 '{op.op_name}' 执行失败: {result}",
                        task_name=self.task_name,
                        op_id=op.op_id,
                        op_name=op.op_name,
                    ) from result

        self.logger.info("任务执行完成。", ops=len(self.ops))
        return root.output

    def serialize(self) -> list[dict[str, Any]]:
        return [op.model_dump(mode="json") for op in self.ops]

    async def save(self) -> None:
        if self.manager.store is not None:
            await self.manager.store.save_ops(self.task_name, self.serialize())

    def _check_resumable(self) -> None:
        for op in self.ops:
            if op.state in (OpState.RUNNING, OpState.ERROR):
                # 非幂等操作不会被重放：整个任务视为失败，需要根据作业元数据重建
                raise TaskExecutionError(
                    f"非幂等操作 '{op.op_name}' 在之前的运行中未完成，任务无法恢复。",
                    task_name=self.task_name,
                    op_id=op.op_id,
                    op_name=op.op_name,
                )

    async def _run_op(self, op: Op, semaphore: asyncio.Semaphore) -> None:
        registered = self.manager.get_op(op.op_name)
        inputs = [self.ops[i].output for i in op.input_op_ids]
        async with semaphore:
            op.last_ran_at = self.manager.context.now_iso()
            try:
                if registered.idempotent:
                    output = await self._call_with_retry(op, inputs)
                else:
                    op.state = OpState.RUNNING
                    await self.save()
                    self.logger.debug("执行操作...", op_id=op.op_id, op_name=op.op_name)
                    output = await registered.callback(op.args, inputs, self._context)
            except Exception as e:
                op.state = OpState.ERROR
                op.output = str(e)
                self.logger.warning(
                    "操作执行失败。", op_id=op.op_id, op_name=op.op_name, error=str(e)
                )
                raise
        op.output = output
        op.state = OpState.DONE

    async def _call_with_retry(self, op: Op, inputs: list[Any]) -> Any:
        registered = self.manager.get_op(op.op_name)
        policy = self.manager.retry_policy
        attempt = 0
        while True:
            try:
                self.logger.debug(
                    "执行幂等操作...", op_id=op.op_id, op_name=op.op_name, attempt=attempt + 1
                )
                return await registered.callback(op.args, inputs, self._context)
            except ProviderContractError:
                raise
            except Exception as e:
                if attempt + 1 >= policy.max_attempts:
                    raise
                backoff_time = policy.backoff_for(attempt)
                self.logger.warning(
                    f"幂等操作失败，将在 {backoff_time:.2f}s 后重试。",
                    op_name=op.op_name,
                    error=str(e),
                )
                await asyncio.sleep(backoff_time)
                attempt += 1
