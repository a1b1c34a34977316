# tests/helpers/factories.py
"""
提供用于创建一致、可预测的测试数据的工厂函数。
所有测试都通过这里构造片段、TU 与作业，避免在用例中重复样板代码。
"""

from __future__ import annotations

from typing import Any

from lochub.core.types import Job, Placeholder, SourceSegment, TranslationUnit

# ---- 定义一组全局共享的、可预测的常量 ----
TEST_SOURCE_LANG = "en"
TEST_TARGET_LANG = "de"
TEST_RID = "app/strings.json"


def make_segment(
    text: str,
    *,
    sid: str | None = None,
    rid: str = TEST_RID,
    nsrc: list[Any] | None = None,
    prj: str | None = None,
) -> SourceSegment:
    """创建一个源片段；sid 缺省时由文本派生，保证不同文本的 guid 不同。"""
    return SourceSegment(
        rid=rid,
        sid=sid or f"sid.{text}",
        nsrc=nsrc if nsrc is not None else [text],
        prj=prj,
    )


def make_placeholder_segment(prefix: str, ph_value: str, *, sid: str) -> SourceSegment:
    """形如 "Hello {name}" 的片段：文本 + 一个类型为 x 的占位符。"""
    return make_segment(
        prefix, sid=sid, nsrc=[prefix, Placeholder(t="x", v=ph_value)]
    )


def make_translated_tu(
    segment: SourceSegment,
    *,
    ntgt: list[Any] | None = None,
    q: int = 80,
    ts: int = 1,
    translation_provider: str | None = "human",
) -> TranslationUnit:
    """一个带译文的完整 TU，可直接用于 `TmStore.set_entry`。"""
    return segment.to_tu(
        ntgt=ntgt if ntgt is not None else [f"[de] {''.join(p for p in segment.nsrc if isinstance(p, str))}"],
        q=q,
        ts=ts,
        translation_provider=translation_provider,
    )


def make_job(
    segments: list[SourceSegment],
    *,
    source_lang: str = TEST_SOURCE_LANG,
    target_lang: str = TEST_TARGET_LANG,
    min_q: int = 50,
    words: int = 2,
    **overrides: Any,
) -> Job:
    """由片段构造一个尚未分配提供方的作业请求。"""
    tus = [seg.to_tu(min_q=min_q, words=words, chars=10) for seg in segments]
    return Job(source_lang=source_lang, target_lang=target_lang, tus=tus, **overrides)


def debug_provider_config(**overrides: Any) -> dict[str, Any]:
    """DebugProvider 的原始配置字典，用于 `create_provider`。"""
    config: dict[str, Any] = {"type": "debug", "quality": 70}
    config.update(overrides)
    return config
