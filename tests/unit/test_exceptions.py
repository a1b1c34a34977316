# tests/unit/test_exceptions.py
"""测试哪些错误可以按作业吸收。"""

import pytest

from lochub.core.exceptions import (
    DatabaseError,
    ProviderContractError,
    ProviderError,
    TaskExecutionError,
    is_transient_provider_failure,
)


def _wrapped(cause: BaseException) -> TaskExecutionError:
    """模拟执行器对叶子异常的包装。"""
    wrapped = TaskExecutionError("操作 'translate' 执行失败", task_name="Task-mt-0001")
    wrapped.__cause__ = cause
    return wrapped


def test_provider_errors_are_transient_directly_or_wrapped() -> None:
    assert is_transient_provider_failure(ProviderError("限流"))
    assert is_transient_provider_failure(_wrapped(ProviderError("超时")))


@pytest.mark.parametrize(
    "error",
    [
        ProviderContractError("分块数量不一致"),
        DatabaseError("写入失败"),
        TaskExecutionError("任务尚未提交。", task_name="Task-mt-0002"),
    ],
)
def test_contract_and_database_errors_are_not_transient(error: Exception) -> None:
    assert not is_transient_provider_failure(error)
    assert not is_transient_provider_failure(_wrapped(error))
