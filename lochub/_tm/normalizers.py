# lochub/_tm/normalizers.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import re
from collections import Counter
from collections.abc import Sequence
from typing import Any

from lochub.core.types import Placeholder

# 预编译正则表达式以提高性能
RE_WORD = re.compile(r"\w+(?:['’]\w+)*", re.UNICODE)


def _ph_type(part: Any) -> str:
    if isinstance(part, Placeholder):
        return part.t
    return str(part.get("t", "x"))


def _ph_value(part: Any) -> str:
    if isinstance(part, Placeholder):
        return part.v
    return str(part.get("v", ""))


def flatten_normalized_source_to_ordinal(nsrc: Sequence[Any]) -> str:
    """
    将规范化源压平为“序数”形式，用于精确匹配与内部重复检测。

    占位符只保留其类型标记 `{{t}}`，内容被丢弃，因此 "Hello {name}" 与
    "Hello {other}" 的序数形式相同：只有位置与数量参与比较。

    Args:
        nsrc: 由文本与占位符组成的有序序列。

    Returns:
        序数字符串。
    """
    return "".join(
        part if isinstance(part, str) else f"{{{{{_ph_type(part)}}}}}" for part in nsrc
    )


def flatten_normalized_string_with_values(nstr: Sequence[Any]) -> str:
    return "".join(
        part if isinstance(part, str) else f"{{{{{_ph_type(part)}:{_ph_value(part)}}}}}"
        for part in nstr
    )


def normalized_strings_are_equal(s1: Sequence[Any] | None, s2: Sequence[Any] | None) -> bool:
    """比较两个规范化字符串，占位符按类型与原始值比较。"""
    if s1 is None or s2 is None:
        return s1 is s2
    return flatten_normalized_string_with_values(s1) == flatten_normalized_string_with_values(s2)


def source_and_target_are_compatible(
    nsrc: Sequence[Any] | None, ntgt: Sequence[Any] | None
) -> bool:
    """译文中的占位符（按类型计数）必须与源中的完全一致。"""
    if nsrc is None or ntgt is None:
        return False
    src_phs = Counter(_ph_type(p) for p in nsrc if not isinstance(p, str))
    tgt_phs = Counter(_ph_type(p) for p in ntgt if not isinstance(p, str))
    return src_phs == tgt_phs


def plain_text(nstr: Sequence[Any] | None) -> str:
    """只保留文本部分。"""
    if not nstr:
        return ""
    return "".join(part for part in nstr if isinstance(part, str))


def count_words(text: str) -> int:
    return len(RE_WORD.findall(text))


RE_XML_PH = re.compile(r"<(x\d+)\s*/>")


def flatten_normalized_source_to_xml(nsrc: Sequence[Any]) -> tuple[str, dict[str, Any]]:
    """
    将规范化源编码为发给提供方的文本：占位符变为自闭合标签 `<xN />`。

    Returns:
        (文本, 占位符映射)。映射为空时说明源中没有占位符。
    """
    parts: list[str] = []
    ph_map: dict[str, Any] = {}
    for part in nsrc:
        if isinstance(part, str):
            parts.append(part.replace("&", "&amp;").replace("<", "&lt;"))
        else:
            tag = f"x{len(ph_map) + 1}"
            ph_map[tag] = part.model_dump(exclude_none=True) if isinstance(part, Placeholder) else dict(part)
            parts.append(f"<{tag} />")
    return "".join(parts), ph_map


def extract_normalized_parts_from_xml(text: str, ph_map: dict[str, Any]) -> list[Any]:
    """`flatten_normalized_source_to_xml` 的逆过程。未知的标签抛出 KeyError。"""
    parts: list[Any] = []
    pos = 0
    for match in RE_XML_PH.finditer(text):
        if match.start() > pos:
            parts.append(_unescape(text[pos : match.start()]))
        parts.append(Placeholder.model_validate(ph_map[match.group(1)]))
        pos = match.end()
    if pos < len(text):
        parts.append(_unescape(text[pos:]))
    return parts


def _unescape(text: str) -> str:
    return text.replace("&lt;", "<").replace("&gt;", ">").replace("&amp;", "&")
