# tests/unit/ops/test_task.py
"""测试任务图的构建与执行：叶子并发、按声明顺序合并、错误与重试策略。"""

import asyncio
from typing import Any
from unittest.mock import AsyncMock

import pytest
from pytest_mock import MockerFixture

from lochub.config import RetryPolicyConfig
from lochub.context import ProcessingContext
from lochub.core.exceptions import ProviderContractError, ProviderError, TaskExecutionError
from lochub.ops import OpsManager, OpState


async def _echo_after(args: dict[str, Any], inputs: list[Any], ctx: Any) -> Any:
    await asyncio.sleep(args.get("delay", 0))
    return args["value"]


async def _collect(args: dict[str, Any], inputs: list[Any], ctx: Any) -> Any:
    return {"inputs": inputs, "ctx": ctx, "label": args.get("label")}


@pytest.fixture
def manager(context: ProcessingContext) -> OpsManager:
    ops = OpsManager(context, retry_policy=RetryPolicyConfig(max_attempts=3), default_parallelism=4)
    ops.register_op("echo", _echo_after)
    ops.register_op("collect", _collect, idempotent=True)
    return ops


@pytest.mark.asyncio
async def test_merge_receives_leaf_results_in_declaration_order(manager: OpsManager) -> None:
    """先声明的叶子最后完成，合并结果仍按声明顺序排列。"""
    task = manager.create_task()
    task.set_context({"instructions": "be brief"})
    handles = [
        task.enqueue("echo", {"value": "first", "delay": 0.03}),
        task.enqueue("echo", {"value": "second", "delay": 0.01}),
        task.enqueue("echo", {"value": "third", "delay": 0}),
    ]
    task.commit("collect", {"label": "merged"}, handles)

    result = await task.execute()

    assert result == {
        "inputs": ["first", "second", "third"],
        "ctx": {"instructions": "be brief"},
        "label": "merged",
    }
    assert all(op.state == OpState.DONE for op in task.ops)


@pytest.mark.asyncio
async def test_parallelism_bounds_concurrent_leaves(context: ProcessingContext) -> None:
    running = 0
    peak = 0

    async def leaf(args: dict[str, Any], inputs: list[Any], ctx: Any) -> int:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return args["n"]

    ops = OpsManager(context)
    ops.register_op("leaf", leaf)
    ops.register_op("collect", _collect, idempotent=True)
    task = ops.create_task()
    handles = [task.enqueue("leaf", {"n": n}) for n in range(6)]
    task.commit("collect", {}, handles)

    result = await task.execute(parallelism=2)

    assert result["inputs"] == list(range(6))
    assert peak == 2


@pytest.mark.asyncio
async def test_execute_requires_commit_and_commit_is_final(manager: OpsManager) -> None:
    task = manager.create_task()
    handle = task.enqueue("echo", {"value": 1})
    with pytest.raises(TaskExecutionError, match="尚未提交"):
        await task.execute()

    task.commit("collect", {}, [handle])
    with pytest.raises(TaskExecutionError, match="不能再追加"):
        task.enqueue("echo", {"value": 2})


@pytest.mark.asyncio
async def test_non_idempotent_failure_aborts_without_retry(manager: OpsManager) -> None:
    calls = 0

    async def flaky(args: dict[str, Any], inputs: list[Any], ctx: Any) -> Any:
        nonlocal calls
        calls += 1
        raise ProviderError("网络错误")

    manager.register_op("flaky", flaky)
    task = manager.create_task()
    task.commit("collect", {}, [task.enqueue("flaky", {})])

    with pytest.raises(TaskExecutionError) as excinfo:
        await task.execute()

    assert isinstance(excinfo.value.__cause__, ProviderError)
    assert excinfo.value.op_name == "flaky"
    assert calls == 1
    assert task.ops[0].state == OpState.ERROR
    assert task.root_op is not None and task.root_op.state == OpState.PENDING


@pytest.mark.asyncio
async def test_idempotent_ops_are_retried_with_backoff(
    manager: OpsManager, mocker: MockerFixture
) -> None:
    mock_sleep = mocker.patch("lochub.ops.task.asyncio.sleep", new_callable=AsyncMock)
    attempts = 0

    async def eventually(args: dict[str, Any], inputs: list[Any], ctx: Any) -> str:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise ProviderError("暂时不可用")
        return "ok"

    manager.register_op("eventually", eventually, idempotent=True)
    task = manager.create_task()
    task.commit("collect", {}, [task.enqueue("eventually", {})])

    result = await task.execute()

    assert result["inputs"] == ["ok"]
    assert attempts == 3
    assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_contract_violations_are_never_retried(
    manager: OpsManager, mocker: MockerFixture
) -> None:
    mocker.patch("lochub.ops.task.asyncio.sleep", new_callable=AsyncMock)
    attempts = 0

    async def bad(args: dict[str, Any], inputs: list[Any], ctx: Any) -> Any:
        nonlocal attempts
        attempts += 1
        raise ProviderContractError("数量不一致")

    manager.register_op("bad", bad, idempotent=True)
    task = manager.create_task()
    task.commit("collect", {}, [task.enqueue("bad", {})])

    with pytest.raises(TaskExecutionError) as excinfo:
        await task.execute()

    assert isinstance(excinfo.value.__cause__, ProviderContractError)
    assert attempts == 1


@pytest.mark.asyncio
async def test_completed_ops_are_not_run_again(manager: OpsManager) -> None:
    task = manager.create_task()
    task.commit("collect", {}, [task.enqueue("echo", {"value": 7})])
    await task.execute()

    manager._registry.pop("echo")
    # 叶子已完成；再次执行只返回已有结果，不会查找已注销的回调
    assert (await task.execute())["inputs"] == [7]


def test_serialized_ops_are_json_friendly(manager: OpsManager) -> None:
    task = manager.create_task()
    handle = task.enqueue("echo", {"value": "a"})
    task.commit("collect", {"label": "x"}, [handle])

    serialized = task.serialize()

    assert serialized[0]["op_name"] == "echo"
    assert serialized[0]["state"] == "pending"
    assert serialized[1]["input_op_ids"] == [0]
    assert serialized[1]["root"] is True
