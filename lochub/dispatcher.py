# lochub/dispatcher.py
"""
作业派发器：把候选 TU 分配给提供方，驱动 created → req → pending → done
的生命周期，并把结果合并进 TM。

状态机：
    created → req → {pending → done | blocked} | done | blocked
空响应的作业被取消（cancelled），不会写入存储。
"""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import ValidationError

from lochub._tm.normalizers import normalized_strings_are_equal
from lochub.context import ProcessingContext
from lochub.core.exceptions import (
    InvalidJobStateError,
    ProviderContractError,
    ProviderError,
    ProviderNotFoundError,
    TaskExecutionError,
    is_transient_provider_failure,
)
from lochub.core.interfaces import TranslationProvider
from lochub.core.types import Job, JobStatus, JobSummary, TranslationUnit
from lochub.persistence.tm_manager import TmManager
from lochub.persistence.tm_store import TmStore


def summarize(job: Job) -> JobSummary:
    return JobSummary(
        source_lang=job.source_lang,
        target_lang=job.target_lang,
        job_guid=job.job_guid,
        translation_provider=job.translation_provider,
        status=job.status or JobStatus.CREATED,
        num=job.unit_count,
    )


class JobDispatcher:
    """按优先级顺序持有提供方，并把作业的每一步持久化到对应语言对的 TM。"""

    def __init__(
        self,
        tm_manager: TmManager,
        providers: Iterable[TranslationProvider],
        context: ProcessingContext,
    ) -> None:
        self.tmm = tm_manager
        self.context = context
        self.providers: dict[str, TranslationProvider] = {p.id: p for p in providers}
        self.logger = context.get_logger("dispatcher")

    def get_provider(self, provider_id: str | None) -> TranslationProvider:
        provider = self.providers.get(provider_id or "")
        if provider is None:
            raise ProviderNotFoundError(f"未找到提供方 '{provider_id}'。")
        return provider

    async def create_jobs(self, job: Job) -> list[Job]:
        """
        按优先级把 TU 依次提供给各个提供方，直到被接受或没有提供方可用。

        没有任何提供方接受的 TU 组成一个 `translation_provider` 为 None 的作业，
        附在返回列表末尾。
        """
        remaining = list(job.tus or [])
        jobs: list[Job] = []
        for provider in self.providers.values():
            if not remaining:
                break
            created = await provider.create_job(job.model_copy(update={"tus": remaining}))
            if created.status == JobStatus.CREATED and created.tus:
                jobs.append(created)
                accepted = {tu.guid for tu in created.tus}
                remaining = [tu for tu in remaining if tu.guid not in accepted]
        if remaining:
            jobs.append(
                job.model_copy(update={"tus": remaining, "translation_provider": None})
            )
        return jobs

    async def start_jobs(self, jobs: Iterable[Job]) -> list[JobSummary]:
        """
        为每个已分配的作业生成 guid、持久化请求、调用提供方并合并响应。

        某个提供方的瞬时失败只影响它自己的作业：该作业的摘要带上 `error`，
        状态保持 req。契约违规与持久化失败照常传播。
        """
        started: list[JobSummary] = []
        for job in jobs:
            if job.translation_provider is None:
                self.logger.warning("作业没有被任何提供方接受，跳过。", units=job.unit_count)
                continue
            provider = self.get_provider(job.translation_provider)
            tm = await self.tmm.get_tm(job.source_lang, job.target_lang)
            request = job.model_copy(
                update={
                    "job_guid": self.tmm.generate_job_guid(),
                    "updated_at": self.context.now_iso(),
                }
            )

            if provider.exceeds_quota(request):
                blocked = request.model_copy(update={"status": JobStatus.BLOCKED})
                await self.process_job(tm, None, blocked)
                self.logger.info(
                    "作业超出提供方配额，已阻塞。", job_guid=blocked.job_guid, units=blocked.unit_count
                )
                started.append(summarize(blocked))
                continue

            request = request.model_copy(update={"status": JobStatus.REQ})
            await self.process_job(tm, None, request)
            self.logger.info(
                "作业请求已持久化。", job_guid=request.job_guid, provider=provider.id
            )

            try:
                response = await provider.request_translations(request)
            except (ProviderError, TaskExecutionError) as e:
                if not is_transient_provider_failure(e):
                    raise
                # 请求已以 req 持久化；其余作业照常启动
                self.logger.warning(
                    "提供方暂时失败，作业保持 req。",
                    job_guid=request.job_guid,
                    provider=provider.id,
                    error=str(e),
                )
                started.append(summarize(request).model_copy(update={"error": str(e)}))
                continue
            if not provider.save_identical_entries:
                response = await self._drop_identical(tm, response)
            response = await self.process_job(tm, response, request)
            started.append(summarize(response))
        return started

    async def update_job(self, source_lang: str, target_lang: str, job_guid: str) -> JobSummary:
        """
        为 pending 作业抓取结果。

        提供方返回 None 表示“尚未就绪”：作业保持 pending，不视为错误。
        """
        tm = await self.tmm.get_tm(source_lang, target_lang)
        status, _ = await tm.get_job_status(job_guid)
        if status != JobStatus.PENDING:
            raise InvalidJobStateError(
                f"只能更新 pending 状态的作业，作业 '{job_guid}' 当前为 {status}。"
            )
        request, pending = await tm.get_job_payloads(job_guid)
        if request is None or pending is None:
            raise InvalidJobStateError(f"作业 '{job_guid}' 缺少请求或响应载荷，无法更新。")

        provider = self.get_provider(pending.translation_provider)
        response = await provider.fetch_translations(pending, request)
        if response is None or not (response.tus or response.inflight):
            self.logger.debug("作业结果尚未就绪。", job_guid=job_guid)
            return summarize(pending)

        response = await self.process_job(tm, response, request)
        self.logger.info("作业已更新。", job_guid=job_guid, status=response.status)
        return summarize(response)

    async def refresh_jobs(self, jobs: Iterable[Job]) -> list[JobSummary]:
        """
        对已有译文的 TU 重新请求翻译，只保留 ntgt 真正发生变化的结果。
        没有任何变化的作业被取消，不写入存储。
        """
        refreshed: list[JobSummary] = []
        for job in jobs:
            if job.translation_provider is None:
                continue
            provider = self.get_provider(job.translation_provider)
            tm = await self.tmm.get_tm(job.source_lang, job.target_lang)
            request = job.model_copy(
                update={
                    "job_guid": self.tmm.generate_job_guid(),
                    "status": JobStatus.REQ,
                    "updated_at": self.context.now_iso(),
                }
            )
            response = await provider.refresh_translations(request)
            existing = await tm.get_entries([tu.guid for tu in response.tus or []])
            changed = [
                tu
                for tu in response.tus or []
                if tu.guid not in existing
                or not normalized_strings_are_equal(existing[tu.guid].ntgt, tu.ntgt)
            ]
            self.logger.info(
                "刷新完成。",
                job_guid=request.job_guid,
                requested=request.unit_count,
                changed=len(changed),
            )
            response = response.model_copy(update={"tus": changed, "inflight": None})
            response = await self.process_job(tm, response, request)
            refreshed.append(summarize(response))
        return refreshed

    async def process_job(
        self, tm: TmStore, job_response: Job | None, job_request: Job | None
    ) -> Job:
        """
        规范化一对请求/响应并交给 TM 在单个事务中合并。

        - 同时有请求与响应、但响应既无 tus 也无 inflight：取消，不写入。
        - 只有请求且状态为 created：取消，不写入。
        - 请求中的 TU 被过滤为响应接受了的 guid，并只保留源侧字段。
        """
        if job_request is None and job_response is None:
            raise ValueError("process_job 至少需要作业请求或作业响应之一。")
        if job_request is not None and job_response is not None:
            if not (job_response.tus or job_response.inflight):
                self.logger.info("作业响应为空，作业已取消。", job_guid=job_request.job_guid)
                return job_response.model_copy(
                    update={"status": JobStatus.CANCELLED, "tus": [], "inflight": None}
                )
        if job_request is not None and job_response is None and job_request.status == JobStatus.CREATED:
            return job_request.model_copy(update={"status": JobStatus.CANCELLED})

        updated_at = self.context.now_iso()
        if job_request is not None:
            request_tus = job_request.tus or []
            if job_response is not None:
                accepted = set(job_response.inflight or [])
                accepted.update(tu.guid for tu in job_response.tus or [])
                request_tus = [tu for tu in request_tus if tu.guid in accepted]
            job_request = job_request.model_copy(
                update={
                    "updated_at": updated_at,
                    "tus": [tu.as_source() for tu in request_tus],
                }
            )
        if job_response is not None:
            try:
                targets = [tu.as_target() for tu in job_response.tus or []] or None
            except (ValueError, ValidationError) as e:
                raise ProviderContractError(
                    f"作业 '{job_response.job_guid}' 的响应格式无效: {e}"
                ) from e
            job_response = job_response.model_copy(
                update={"updated_at": updated_at, "tus": targets}
            )

        await tm.process_job(job_response, job_request)
        return job_response if job_response is not None else job_request  # type: ignore[return-value]

    async def _drop_identical(self, tm: TmStore, response: Job) -> Job:
        """丢弃与当前权威（非在途）译文完全相同的 TU。"""
        if not response.tus:
            return response
        existing = await tm.get_entries([tu.guid for tu in response.tus])
        kept: list[TranslationUnit] = []
        for tu in response.tus:
            current = existing.get(tu.guid)
            if current is None or current.is_inflight or not normalized_strings_are_equal(current.ntgt, tu.ntgt):
                kept.append(tu)
        if len(kept) != len(response.tus):
            self.logger.debug(
                "丢弃了与 TM 相同的译文。", job_guid=response.job_guid, dropped=len(response.tus) - len(kept)
            )
        return response.model_copy(update={"tus": kept})
