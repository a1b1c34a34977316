# lochub/core/__init__.py
"""
本核心包定义了 LocHub 系统中最基础、最稳定的构建块。

这里包含了系统的核心数据类型、接口协议和自定义异常，它们共同构成了
整个引擎的“契约”。本包不依赖于项目中的任何其他子系统。
"""

from .exceptions import (
    ChunkSizeError,
    ConfigurationError,
    DatabaseError,
    InvalidJobStateError,
    LocHubError,
    OpNotFoundError,
    OpRegistrationError,
    ProviderContractError,
    ProviderError,
    ProviderNotFoundError,
    TaskExecutionError,
    is_transient_provider_failure,
)
from .interfaces import OpsStore, TranslationMemory, TranslationProvider
from .types import (
    Job,
    JobMeta,
    JobStatus,
    JobSummary,
    LeverageDetails,
    LeverageSummary,
    NormalizedString,
    Placeholder,
    SourceSegment,
    TmStatsRow,
    TranslationUnit,
)

__all__ = [
    # from exceptions.py
    "LocHubError",
    "ConfigurationError",
    "ProviderNotFoundError",
    "DatabaseError",
    "ProviderError",
    "ProviderContractError",
    "ChunkSizeError",
    "OpRegistrationError",
    "OpNotFoundError",
    "TaskExecutionError",
    "InvalidJobStateError",
    "is_transient_provider_failure",
    # from interfaces.py
    "TranslationProvider",
    "OpsStore",
    "TranslationMemory",
    # from types.py
    "JobStatus",
    "Placeholder",
    "NormalizedString",
    "TranslationUnit",
    "SourceSegment",
    "Job",
    "JobMeta",
    "JobSummary",
    "TmStatsRow",
    "LeverageDetails",
    "LeverageSummary",
]
