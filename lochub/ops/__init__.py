# lochub/ops/__init__.py
"""任务图执行器：操作注册、任务构建、执行与恢复。"""

from .manager import OpsManager
from .operation import Op, OpState, RegisteredOp
from .store import SqliteOpsStore
from .task import Task

__all__ = ["OpsManager", "Op", "OpState", "RegisteredOp", "SqliteOpsStore", "Task"]
