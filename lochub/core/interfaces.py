# lochub/core/interfaces.py
"""使用 typing.Protocol 定义核心组件之间的接口协议。"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from lochub.core.types import (
        Job,
        JobMeta,
        JobStatus,
        NormalizedString,
        TmStatsRow,
        TranslationUnit,
    )


@runtime_checkable
class TranslationProvider(Protocol):
    """
    翻译提供方契约。具体 SDK 适配器实现这三个方法即可接入派发器。

    - request_translations: 返回 status 为 pending/done/blocked 的作业响应；
      pending 时携带 inflight，done 时携带 tus。
    - fetch_translations: 返回 None 表示仍在等待。
    - refresh_translations: 总是同步完成，状态总是 done。
    """

    id: str
    quality: int | None
    supported_pairs: dict[str, list[str]] | None
    save_identical_entries: bool

    async def create_job(self, job: Job) -> Job:
        """按提供方自身的约束筛选可接受的 TU，并给出成本估算。"""
        ...

    def exceeds_quota(self, job: Job) -> bool:
        """作业规模是否超过提供方配额（超过则作业进入 blocked）。"""
        ...

    def estimate_cost(self, words: int, chars: int) -> float:
        ...

    async def request_translations(self, job_request: Job) -> Job:
        ...

    async def fetch_translations(
        self, pending_job: Job, job_request: Job
    ) -> Job | None:
        ...

    async def refresh_translations(self, job_request: Job) -> Job:
        ...

    async def info(self) -> dict[str, Any]:
        ...


class OpsStore(Protocol):
    """任务图的持久化存储，以任务名为键保存序列化后的操作列表。"""

    async def save_ops(self, task_name: str, serialized_ops: list[dict[str, Any]]) -> None:
        ...

    async def get_task(self, task_name: str) -> list[dict[str, Any]]:
        """返回按 op_id 排序的操作列表；未知任务返回空列表。"""
        ...


class TranslationMemory(Protocol):
    """非核心层（CLI、服务端、编辑器）可以调用的 TM 读写入口。"""

    source_lang: str
    target_lang: str

    async def get_entry_by_guid(self, guid: str) -> TranslationUnit | None:
        ...

    async def get_entries(self, guids: list[str]) -> dict[str, TranslationUnit]:
        ...

    async def set_entry(self, job_guid: str, tu: TranslationUnit) -> bool:
        ...

    async def get_exact_matches(self, nsrc: NormalizedString) -> list[TranslationUnit]:
        ...

    async def process_job(self, job_response: Job | None, job_request: Job | None) -> None:
        ...

    async def get_job_status(self, job_guid: str) -> tuple[JobStatus | None, str | None]:
        ...

    async def get_jobs_meta(self) -> list[JobMeta]:
        ...

    async def get_stats(self) -> list[TmStatsRow]:
        ...
