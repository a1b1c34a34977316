# lochub/persistence/__init__.py
"""本模块作为持久化层的公共入口，导出核心组件。"""

from .engine import create_sqlite_engine
from .job_registry import JobRegistry
from .tm_manager import TmManager
from .tm_store import TmStore

__all__ = ["create_sqlite_engine", "JobRegistry", "TmManager", "TmStore"]
