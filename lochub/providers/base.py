# lochub/providers/base.py
"""
本模块定义了所有翻译提供方必须继承的抽象基类（ABC）。

基类负责接受/拒绝 TU（语言对、质量、批量与字数配额）、估算成本，
并内置速率限制与并发控制。具体适配器只需实现三方法契约。
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator

from lochub.core.types import Job, JobStatus
from lochub.rate_limiter import RateLimiter
from lochub.utils import validate_lang_codes

if TYPE_CHECKING:
    from lochub.context import ProcessingContext
    from lochub.ops.manager import OpsManager

_ConfigType = TypeVar("_ConfigType", bound="BaseProviderConfig")
_T = TypeVar("_T")


class BaseProviderConfig(BaseModel):
    """所有提供方配置模型的基类。"""

    quality: Optional[int] = Field(default=None, ge=0)
    supported_pairs: Optional[dict[str, list[str]]] = Field(
        default=None, description="源语言 → 支持的目标语言；为空表示支持任意语言对"
    )
    min_batch_size: int = Field(default=1, gt=0)
    min_word_quota: Optional[int] = Field(default=None, ge=0)
    max_word_quota: Optional[int] = Field(default=None, gt=0)
    quota: Optional[int] = Field(
        default=None, description="作业 TU 数超过此值时作业进入 blocked", gt=0
    )
    cost_per_word: float = Field(default=0.0, ge=0)
    cost_per_mchar: float = Field(default=0.0, ge=0)
    parallelism: Optional[int] = Field(default=None, gt=0)
    rpm: Optional[int] = Field(
        default=None, description="每分钟最大请求数 (Requests Per Minute)", gt=0
    )
    rps: Optional[int] = Field(
        default=None, description="每秒最大请求数 (Requests Per Second)", gt=0
    )
    max_concurrency: Optional[int] = Field(default=None, description="最大并发请求数", gt=0)
    max_chunk_size: int = Field(default=125, gt=0)
    max_char_length: int = Field(default=9900, gt=0)
    save_identical_entries: bool = False

    @field_validator("supported_pairs")
    @classmethod
    def validate_supported_pairs(
        cls, v: Optional[dict[str, list[str]]]
    ) -> Optional[dict[str, list[str]]]:
        if v is not None:
            for source_lang, target_langs in v.items():
                validate_lang_codes([source_lang, *target_langs])
        return v


class BaseTranslationProvider(ABC, Generic[_ConfigType]):
    """翻译提供方的纯异步抽象基类。"""

    CONFIG_MODEL: type[_ConfigType]
    VERSION: str = "1.0.0"

    def __init__(
        self,
        provider_id: str,
        config: _ConfigType,
        context: "ProcessingContext",
        ops: "OpsManager",
    ):
        self.id = provider_id
        self.config = config
        self.context = context
        self.ops = ops
        self.logger = context.get_logger("provider").bind(provider=provider_id)
        self._rate_limiter = RateLimiter.from_limits(rps=config.rps, rpm=config.rpm)
        self._concurrency_semaphore: Optional[asyncio.Semaphore] = (
            asyncio.Semaphore(config.max_concurrency) if config.max_concurrency else None
        )
        self.initialized: bool = False

    @property
    def quality(self) -> Optional[int]:
        return self.config.quality

    @property
    def supported_pairs(self) -> Optional[dict[str, list[str]]]:
        return self.config.supported_pairs

    @property
    def save_identical_entries(self) -> bool:
        return self.config.save_identical_entries

    async def initialize(self) -> None:
        """提供方的异步初始化钩子，用于设置连接池等。"""
        self.initialized = True

    async def close(self) -> None:
        self.initialized = False

    def supports_pair(self, source_lang: str, target_lang: str) -> bool:
        if self.supported_pairs is None:
            return True
        return target_lang in self.supported_pairs.get(source_lang, [])

    async def create_job(self, job: Job) -> Job:
        """
        按语言对、最低质量、最小批量与字数配额筛选可接受的 TU。

        返回作业的副本：接受了至少一个 TU 时状态为 created，否则为 cancelled。
        """
        if job.status is not None:
            raise ValueError(f"作业已处于 '{job.status.value}' 状态，不能再次创建。")

        tus = list(job.tus or [])
        accepted = []
        if not self.supports_pair(job.source_lang, job.target_lang):
            self.logger.debug(
                "语言对不受支持，拒绝作业。",
                source_lang=job.source_lang,
                target_lang=job.target_lang,
            )
        elif self.quality is None:
            accepted = tus
        else:
            accepted = [tu for tu in tus if (tu.min_q or 0) <= self.quality]
            if len(accepted) != len(tus):
                self.logger.debug(
                    "部分 TU 的最低质量要求高于提供方质量，已拒绝。",
                    rejected=len(tus) - len(accepted),
                    total=len(tus),
                )

        total_words = sum(tu.words or 0 for tu in accepted)
        if accepted and len(accepted) < self.config.min_batch_size:
            self.logger.debug("TU 数量低于最小批量，拒绝作业。", units=len(accepted))
            accepted = []
        if accepted and self.config.min_word_quota is not None and total_words < self.config.min_word_quota:
            self.logger.debug("字数过少，拒绝作业。", words=total_words)
            accepted = []
        if accepted and self.config.max_word_quota is not None and total_words > self.config.max_word_quota:
            self.logger.debug("字数过多，拒绝作业。", words=total_words)
            accepted = []

        estimated_cost = sum(
            self.estimate_cost(tu.words or 0, tu.chars or 0) for tu in accepted
        )
        if accepted:
            self.logger.debug(
                "提供方接受了 TU。", units=len(accepted), words=total_words, cost=estimated_cost
            )
        return job.model_copy(
            update={
                "status": JobStatus.CREATED if accepted else JobStatus.CANCELLED,
                "tus": accepted,
                "translation_provider": self.id,
                "estimated_cost": estimated_cost,
            }
        )

    def exceeds_quota(self, job: Job) -> bool:
        return self.config.quota is not None and job.unit_count > self.config.quota

    def estimate_cost(self, words: int, chars: int) -> float:
        return words * self.config.cost_per_word + chars / 1_000_000 * self.config.cost_per_mchar

    async def _throttled(self, call: Callable[[], Awaitable[_T]]) -> _T:
        """[模板方法] 对一次远程调用应用速率限制与并发控制。"""
        if self._rate_limiter:
            await self._rate_limiter.acquire()
        if self._concurrency_semaphore:
            async with self._concurrency_semaphore:
                return await call()
        return await call()

    async def info(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.__class__.__name__,
            "version": self.VERSION,
            "quality": self.quality,
            "supported_pairs": self.supported_pairs,
            "cost_per_word": self.config.cost_per_word,
            "cost_per_mchar": self.config.cost_per_mchar,
        }

    @abstractmethod
    async def request_translations(self, job_request: Job) -> Job:
        """[子类实现] 发起翻译；返回 pending（带 inflight）或 done（带 tus）。"""
        ...

    @abstractmethod
    async def fetch_translations(self, pending_job: Job, job_request: Job) -> Optional[Job]:
        """[子类实现] 抓取异步结果；返回 None 表示仍未就绪。"""
        ...

    @abstractmethod
    async def refresh_translations(self, job_request: Job) -> Job:
        """[子类实现] 同步地重新翻译，结果状态总是 done。"""
        ...
