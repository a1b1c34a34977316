# lochub/__init__.py
"""LocHub: 面向持续本地化的翻译记忆库引擎与作业编排层。

该模块提供了核心的协调器和配置管理功能，用于驱动从复用估算到
提供方派发、结果合并的完整翻译流程。
"""

__version__ = "1.0.0"

from .config import LocHubConfig
from .context import ProcessingContext
from .coordinator import Coordinator
from .core.types import Job, JobStatus, LeverageSummary, SourceSegment, TranslationUnit

__all__ = [
    "__version__",
    "Coordinator",
    "LocHubConfig",
    "ProcessingContext",
    "Job",
    "JobStatus",
    "LeverageSummary",
    "SourceSegment",
    "TranslationUnit",
]
