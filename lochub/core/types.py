# lochub/core/types.py
"""
本模块定义了 LocHub 系统的核心数据类型。

翻译单元 (TU) 是原子事实：同一个 guid 可以有多行（每个产出过它的作业一行），
权威行由质量与时间戳在读取时裁决，见 `lochub._tm.authority`。
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from lochub._canonical import generate_guid


class JobStatus(str, Enum):
    """作业在其生命周期中的状态。"""

    CREATED = "created"
    REQ = "req"
    PENDING = "pending"
    BLOCKED = "blocked"
    DONE = "done"
    # 空响应的作业被取消，不会写入存储
    CANCELLED = "cancelled"


class Placeholder(BaseModel):
    """规范化字符串中的占位符部分。`t` 为类型，`v` 为原始值。"""

    model_config = ConfigDict(frozen=True)

    t: str = "x"
    v: str
    v1: str | None = None


NormalizedPart = Union[str, Placeholder]
NormalizedString = list[NormalizedPart]

# 只有这些字段来自请求侧（源）
SOURCE_FIELDS = frozenset(
    {"guid", "rid", "sid", "nsrc", "prj", "notes", "tu_props", "min_q", "words", "chars"}
)
# 只有这些字段来自响应侧（译文）
TARGET_FIELDS = frozenset(
    {"guid", "ntgt", "inflight", "q", "ts", "cost", "job_guid", "translation_provider"}
)


class TranslationUnit(BaseModel):
    """一个源片段，加上可选的译文及其来源/质量元数据。"""

    model_config = ConfigDict(extra="forbid")

    guid: str
    job_guid: str | None = None
    rid: str | None = None
    sid: str | None = None
    nsrc: NormalizedString | None = None
    ntgt: NormalizedString | None = None
    q: int | None = None
    ts: int | None = None
    inflight: bool | None = None
    notes: Any = None
    tu_props: dict[str, Any] | None = None
    prj: str | None = None
    translation_provider: str | None = None
    min_q: int | None = None
    words: int | None = None
    chars: int | None = None
    cost: float | None = None

    @property
    def is_inflight(self) -> bool:
        return bool(self.inflight) or self.q == 0

    def as_source(self) -> TranslationUnit:
        """只保留源侧字段。缺少 rid/sid/nsrc 时抛出 ValueError。"""
        if not self.rid or not self.sid or self.nsrc is None:
            raise ValueError(f"源 TU 必须包含 guid、rid、sid、nsrc: guid={self.guid}")
        return TranslationUnit(**self._pick(SOURCE_FIELDS))

    def as_target(self) -> TranslationUnit:
        """只保留译文侧字段。缺少 q/ts 或 ntgt（非在途）时抛出 ValueError。"""
        self._check_target()
        return TranslationUnit(**self._pick(TARGET_FIELDS))

    @classmethod
    def from_request_response(
        cls,
        request: TranslationUnit | None,
        response: TranslationUnit,
        **additional: Any,
    ) -> TranslationUnit:
        """合并请求侧与响应侧字段，响应侧中已定义的值优先。"""
        merged: dict[str, Any] = dict(additional)
        if request is not None:
            merged.update(request.model_dump(exclude_none=True))
        merged.update(response.model_dump(exclude_none=True))
        pair = cls(**merged)
        pair._check_target()
        return pair

    @classmethod
    def inflight_placeholder(
        cls, guid: str, job_guid: str, request: TranslationUnit | None = None
    ) -> TranslationUnit:
        """在途占位行：q=0, ts=0。rid/sid/nsrc 取自原始请求（如有）。"""
        base = request._pick(SOURCE_FIELDS) if request is not None else {}
        base.update(guid=guid, job_guid=job_guid, q=0, ts=0, inflight=True)
        return cls(**base)

    def _pick(self, fields: frozenset[str]) -> dict[str, Any]:
        return {
            key: value
            for key, value in self.model_dump(exclude_none=True).items()
            if key in fields
        }

    def _check_target(self) -> None:
        if not isinstance(self.q, int) or not isinstance(self.ts, int):
            raise ValueError(f"译文 TU 必须包含整数 q 与 ts: guid={self.guid}")
        if self.ntgt is None and not self.inflight:
            raise ValueError(f"译文 TU 必须包含 ntgt 或标记为在途: guid={self.guid}")


class SourceSegment(BaseModel):
    """资源层产出的源片段。guid 缺省时由 (rid, sid, nsrc) 派生。"""

    rid: str
    sid: str
    nsrc: NormalizedString
    guid: str = ""
    notes: Any = None
    prj: str | None = None

    @model_validator(mode="after")
    def fill_guid(self) -> SourceSegment:
        if not self.guid:
            self.guid = generate_guid(self.rid, self.sid, self.nsrc)
        return self

    def to_tu(self, **extra: Any) -> TranslationUnit:
        return TranslationUnit(
            guid=self.guid,
            rid=self.rid,
            sid=self.sid,
            nsrc=self.nsrc,
            notes=self.notes,
            prj=self.prj,
            **extra,
        )


class Job(BaseModel):
    """
    发往某一个提供方的一项工作，覆盖一个 源→目标 语言对。
    作业请求与作业响应使用同一个模型；两者只通过 guid 关联 TU。
    """

    job_guid: str | None = None
    source_lang: str
    target_lang: str
    translation_provider: str | None = None
    status: JobStatus | None = None
    updated_at: str | None = None
    tus: list[TranslationUnit] | None = None
    inflight: list[str] | None = None
    estimated_cost: float | None = None
    task_name: str | None = None
    envelope: dict[str, Any] | None = None
    instructions: str | None = None

    @property
    def unit_count(self) -> int:
        if self.tus:
            return len(self.tus)
        return len(self.inflight or [])

    def tu_map(self) -> dict[str, TranslationUnit]:
        return {tu.guid: tu for tu in self.tus or []}


class JobMeta(BaseModel):
    """作业注册表中的一行，附带其拥有的 TU 行数。"""

    job_guid: str
    status: JobStatus
    updated_at: str | None = None
    translation_provider: str | None = None
    units: int = 0


class JobSummary(BaseModel):
    """派发器返回给调用方的简要作业状态。"""

    source_lang: str
    target_lang: str
    job_guid: str | None
    translation_provider: str | None
    status: JobStatus
    num: int = 0
    # 提供方瞬时失败时的错误信息；作业保持 req，可稍后重新推送
    error: str | None = None


class TmStatsRow(BaseModel):
    """按 (translation_provider, status) 聚合的 TU 计数。"""

    translation_provider: str | None
    status: str | None
    tu_count: int
    distinct_guids: int
    job_count: int


class LeverageDetails(BaseModel):
    """一个分桶集合：已翻译、在途、内部重复、未翻译。"""

    translated: int = 0
    translated_words: int = 0
    translated_by_q: dict[int, int] = Field(default_factory=dict)
    pending: int = 0
    pending_words: int = 0
    internal_repetitions: int = 0
    internal_repetition_words: int = 0
    untranslated: int = 0
    untranslated_chars: int = 0
    untranslated_words: int = 0


class LeverageSummary(LeverageDetails):
    """某个目标语言的复用/成本估算结果。"""

    source_lang: str
    target_lang: str
    min_quality: int
    num_segments: int = 0
    tm_size: int = 0
    projects: dict[str, LeverageDetails] = Field(default_factory=dict)
    estimated_cost: dict[str, float] = Field(default_factory=dict)
