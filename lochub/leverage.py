# lochub/leverage.py
"""
复用与成本估算。

对一个目标语言，按给定顺序流式遍历源片段，把每个单元归入：
已翻译（权威行质量达到下限）、在途、内部重复、未翻译。
“第一次出现算未翻译，之后的重复算内部重复”，因此遍历顺序必须稳定。
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator, Iterable
from typing import Union

from cachetools import LRUCache

from lochub._tm.normalizers import (
    count_words,
    flatten_normalized_source_to_ordinal,
    plain_text,
    source_and_target_are_compatible,
)
from lochub.context import ProcessingContext
from lochub.core.interfaces import TranslationProvider
from lochub.core.types import (
    Job,
    LeverageDetails,
    LeverageSummary,
    SourceSegment,
    TranslationUnit,
)
from lochub.persistence.tm_store import TmStore

Segment = Union[SourceSegment, TranslationUnit]

# 每批向 TM 查询的单元数；遍历仍是流式的，只是批量读取权威行
_LOOKUP_BATCH = 500


async def _batched(
    segments: Union[Iterable[Segment], AsyncIterable[Segment]], size: int
) -> AsyncIterator[list[Segment]]:
    batch: list[Segment] = []
    if isinstance(segments, AsyncIterable):
        async for seg in segments:
            batch.append(seg)
            if len(batch) >= size:
                yield batch
                batch = []
    else:
        for seg in segments:
            batch.append(seg)
            if len(batch) >= size:
                yield batch
                batch = []
    if batch:
        yield batch


class LeverageEstimator:
    def __init__(
        self,
        tm: TmStore,
        context: ProcessingContext,
        min_quality: int,
        exact_match_cache_size: int = 1024,
    ) -> None:
        self.tm = tm
        self.context = context
        self.min_quality = min_quality
        self.logger = context.get_logger("leverage").bind(target_lang=tm.target_lang)
        # 序数源 → TM 中是否已有达到质量下限的兼容译文
        self._exact_match_memo: LRUCache[str, bool] = LRUCache(maxsize=exact_match_cache_size)

    async def estimate(
        self,
        segments: Union[Iterable[Segment], AsyncIterable[Segment]],
        *,
        leverage: bool = True,
        providers: Iterable[TranslationProvider] = (),
    ) -> tuple[Job, LeverageSummary]:
        """
        Args:
            segments: 按稳定顺序给出的源片段（或源 TU）。
            leverage: 为 True 时内部重复不进入候选作业。
            providers: 用于给出按提供方的成本估算。

        Returns:
            (候选作业, 汇总)。候选作业包含需要提供方处理的 TU。
        """
        job = Job(source_lang=self.tm.source_lang, target_lang=self.tm.target_lang, tus=[])
        projects: dict[str, LeverageDetails] = {}
        seen_ordinals: set[str] = set()
        num_segments = 0

        async for batch in _batched(segments, _LOOKUP_BATCH):
            entries = await self.tm.get_entries([seg.guid for seg in batch])
            for seg in batch:
                num_segments += 1
                tu = self._to_candidate(seg)
                details = projects.setdefault(tu.prj or "default", LeverageDetails())
                text = plain_text(tu.nsrc)
                words = tu.words or 0
                entry = entries.get(tu.guid)

                if entry is not None and entry.is_inflight:
                    details.pending += 1
                    details.pending_words += words
                    continue
                if (
                    entry is not None
                    and (entry.q or 0) >= self.min_quality
                    and source_and_target_are_compatible(tu.nsrc, entry.ntgt)
                ):
                    details.translated += 1
                    details.translated_words += words
                    details.translated_by_q[entry.q or 0] = details.translated_by_q.get(entry.q or 0, 0) + 1
                    continue

                ordinal = flatten_normalized_source_to_ordinal(tu.nsrc or [])
                if ordinal in seen_ordinals or await self._has_exact_match(tu):
                    details.internal_repetitions += 1
                    details.internal_repetition_words += words
                    if not leverage:
                        job.tus.append(tu)  # type: ignore[union-attr]
                else:
                    details.untranslated += 1
                    details.untranslated_chars += len(text)
                    details.untranslated_words += words
                    job.tus.append(tu)  # type: ignore[union-attr]
                seen_ordinals.add(ordinal)

        summary = self._summarize(projects, num_segments, await self.tm.count_guids(), providers)
        self.logger.info(
            "复用估算完成。",
            segments=num_segments,
            translated=summary.translated,
            untranslated=summary.untranslated,
            internal_repetitions=summary.internal_repetitions,
            pending=summary.pending,
        )
        return job, summary

    def _to_candidate(self, seg: Segment) -> TranslationUnit:
        text = plain_text(seg.nsrc)
        extra = {"min_q": self.min_quality, "words": count_words(text), "chars": len(text)}
        if isinstance(seg, SourceSegment):
            return seg.to_tu(**extra)
        return seg.model_copy(update=extra)

    async def _has_exact_match(self, tu: TranslationUnit) -> bool:
        ordinal = flatten_normalized_source_to_ordinal(tu.nsrc or [])
        cached = self._exact_match_memo.get(ordinal)
        if cached is not None:
            return cached
        matches = await self.tm.get_exact_matches(tu.nsrc or [])
        found = any(
            (match.q or 0) >= self.min_quality
            and source_and_target_are_compatible(tu.nsrc, match.ntgt)
            for match in matches
        )
        self._exact_match_memo[ordinal] = found
        return found

    def _summarize(
        self,
        projects: dict[str, LeverageDetails],
        num_segments: int,
        tm_size: int,
        providers: Iterable[TranslationProvider],
    ) -> LeverageSummary:
        summary = LeverageSummary(
            source_lang=self.tm.source_lang,
            target_lang=self.tm.target_lang,
            min_quality=self.min_quality,
            num_segments=num_segments,
            tm_size=tm_size,
            projects=projects,
        )
        for details in projects.values():
            for field in (
                "translated",
                "translated_words",
                "pending",
                "pending_words",
                "internal_repetitions",
                "internal_repetition_words",
                "untranslated",
                "untranslated_chars",
                "untranslated_words",
            ):
                setattr(summary, field, getattr(summary, field) + getattr(details, field))
            for q, count in details.translated_by_q.items():
                summary.translated_by_q[q] = summary.translated_by_q.get(q, 0) + count
        summary.estimated_cost = {
            provider.id: provider.estimate_cost(summary.untranslated_words, summary.untranslated_chars)
            for provider in providers
        }
        return summary
