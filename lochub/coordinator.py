# lochub/coordinator.py
"""本模块包含 LocHub 引擎的主协调器：把配置、TM、任务执行器、提供方与派发器装配在一起。"""

import asyncio
from collections.abc import AsyncIterable, Iterable, Sequence
from typing import Any, Optional, Union

import structlog

from lochub.config import LocHubConfig
from lochub.context import ProcessingContext
from lochub.core import (
    ConfigurationError,
    Job,
    JobStatus,
    JobSummary,
    LeverageSummary,
    ProviderError,
    SourceSegment,
    TaskExecutionError,
    TranslationUnit,
    is_transient_provider_failure,
)
from lochub.dispatcher import JobDispatcher
from lochub.leverage import LeverageEstimator, Segment
from lochub.ops import OpsManager, SqliteOpsStore
from lochub.persistence import TmManager, create_sqlite_engine
from lochub.providers.base import BaseTranslationProvider
from lochub.providers.registry import create_provider
from lochub.utils import format_lang_pair

logger = structlog.get_logger(__name__)


class Coordinator:
    """异步主协调器，是 LocHub 功能的中心枢纽。"""

    def __init__(self, config: LocHubConfig, context: Optional[ProcessingContext] = None):
        self.config = config
        self.context = context or ProcessingContext(regression=config.regression)
        self.initialized = False
        self.tm_manager = TmManager(config.tm_dir, self.context)
        self.ops_store = SqliteOpsStore(create_sqlite_engine(config.ops_db))
        self.ops = OpsManager(
            self.context,
            store=self.ops_store,
            retry_policy=config.retry_policy,
            default_parallelism=config.default_parallelism,
        )
        self.providers: list[BaseTranslationProvider[Any]] = []
        self.dispatcher: Optional[JobDispatcher] = None
        self._estimators: dict[tuple[str, str], LeverageEstimator] = {}

    async def initialize(self) -> None:
        """连接任务存储，按优先级创建并初始化所有提供方。"""
        if self.initialized:
            return
        logger.info("协调器初始化开始...")
        await self.ops_store.connect()
        for provider_id in self.config.ordered_provider_ids():
            provider = create_provider(
                provider_id, self.config.provider_configs[provider_id], self.context, self.ops
            )
            await provider.initialize()
            self.providers.append(provider)
        self.dispatcher = JobDispatcher(self.tm_manager, self.providers, self.context)
        self.initialized = True
        logger.info("协调器初始化完成。", providers=[p.id for p in self.providers])

    async def close(self) -> None:
        """优雅地关闭协调器和所有相关资源。"""
        if not self.initialized:
            return
        logger.info("开始优雅停机...")
        await asyncio.gather(*[p.close() for p in self.providers], return_exceptions=True)
        self.providers.clear()
        await self.tm_manager.close()
        await self.ops_store.close()
        self._estimators.clear()
        self.dispatcher = None
        self.initialized = False
        logger.info("优雅停机完成。")

    def _require_dispatcher(self) -> JobDispatcher:
        if self.dispatcher is None:
            raise ConfigurationError("协调器尚未初始化，请先调用 initialize()。")
        return self.dispatcher

    def _target_langs(self, target_langs: Optional[Sequence[str]]) -> list[str]:
        langs = list(target_langs) if target_langs is not None else list(self.config.target_langs)
        if not langs:
            raise ConfigurationError("没有指定目标语言。")
        return langs

    async def _estimator(self, source_lang: str, target_lang: str) -> LeverageEstimator:
        key = (source_lang, target_lang)
        estimator = self._estimators.get(key)
        if estimator is None:
            tm = await self.tm_manager.get_tm(source_lang, target_lang)
            estimator = LeverageEstimator(
                tm,
                self.context,
                min_quality=self.config.min_quality,
                exact_match_cache_size=self.config.exact_match_cache_size,
            )
            self._estimators[key] = estimator
        return estimator

    async def estimate(
        self,
        segments: Union[Iterable[Segment], AsyncIterable[Segment]],
        target_lang: str,
        *,
        leverage: bool = True,
    ) -> tuple[Job, LeverageSummary]:
        """对一个目标语言估算复用情况与各提供方的成本，不触发任何翻译。"""
        self._require_dispatcher()
        estimator = await self._estimator(self.config.source_lang, target_lang)
        return await estimator.estimate(segments, leverage=leverage, providers=self.providers)

    async def push(
        self,
        segments: Sequence[Segment],
        target_langs: Optional[Sequence[str]] = None,
        *,
        leverage: bool = True,
    ) -> list[JobSummary]:
        """
        为每个目标语言找出需要翻译的 TU，分配给提供方并启动作业。

        某个提供方的瞬时失败只体现在对应作业摘要的 `error` 上，其余作业与
        语言对照常处理；契约违规与持久化失败向上传播。
        """
        dispatcher = self._require_dispatcher()
        summaries: list[JobSummary] = []
        for target_lang in self._target_langs(target_langs):
            job, summary = await self.estimate(segments, target_lang, leverage=leverage)
            if not job.tus:
                logger.info("没有需要翻译的内容。", target_lang=target_lang, translated=summary.translated)
                continue
            jobs = await dispatcher.create_jobs(job)
            summaries.extend(await dispatcher.start_jobs(jobs))
        return summaries

    async def update_pending_jobs(
        self, target_langs: Optional[Sequence[str]] = None
    ) -> list[JobSummary]:
        """
        为所有 pending 作业抓取结果。尚未就绪的作业保持 pending；
        抓取时提供方暂时失败的作业同样保持 pending，摘要带上 `error`。
        """
        dispatcher = self._require_dispatcher()
        source_lang = self.config.source_lang
        summaries: list[JobSummary] = []
        for target_lang in self._target_langs(target_langs):
            tm = await self.tm_manager.get_tm(source_lang, target_lang)
            for meta in await tm.get_jobs_meta():
                if meta.status != JobStatus.PENDING:
                    continue
                try:
                    summaries.append(
                        await dispatcher.update_job(source_lang, target_lang, meta.job_guid)
                    )
                except (ProviderError, TaskExecutionError) as e:
                    if not is_transient_provider_failure(e):
                        raise
                    logger.warning(
                        "抓取作业结果时提供方暂时失败。", job_guid=meta.job_guid, error=str(e)
                    )
                    summaries.append(
                        JobSummary(
                            source_lang=source_lang,
                            target_lang=target_lang,
                            job_guid=meta.job_guid,
                            translation_provider=meta.translation_provider,
                            status=JobStatus.PENDING,
                            error=str(e),
                        )
                    )
        return summaries

    async def refresh(
        self,
        segments: Iterable[Segment],
        target_lang: str,
    ) -> list[JobSummary]:
        """
        对已有译文的 TU 重新请求翻译。只有 ntgt 发生变化的结果会被写入；
        没有变化的作业被取消。
        """
        dispatcher = self._require_dispatcher()
        tm = await self.tm_manager.get_tm(self.config.source_lang, target_lang)
        candidates: list[TranslationUnit] = [
            seg.to_tu(min_q=self.config.min_quality) if isinstance(seg, SourceSegment) else seg
            for seg in segments
        ]
        existing = await tm.get_entries([tu.guid for tu in candidates])
        translated = [
            tu for tu in candidates if tu.guid in existing and not existing[tu.guid].is_inflight
        ]
        if not translated:
            logger.info("没有可刷新的译文。", target_lang=target_lang)
            return []
        job = Job(source_lang=self.config.source_lang, target_lang=target_lang, tus=translated)
        jobs = await dispatcher.create_jobs(job)
        return await dispatcher.refresh_jobs(jobs)

    async def get_stats(self) -> dict[str, Any]:
        """按语言对汇总 TM 统计。"""
        stats: dict[str, Any] = {}
        for source_lang, target_lang in self.tm_manager.available_lang_pairs():
            tm = await self.tm_manager.get_tm(source_lang, target_lang)
            stats[format_lang_pair(source_lang, target_lang)] = [
                row.model_dump() for row in await tm.get_stats()
            ]
        return stats
