# lochub/utils.py
"""本模块包含项目范围内的通用工具函数。"""

import re
from collections.abc import Iterable

from langcodes import Language
from langcodes.tag_parser import LanguageTagError

# 语言子标签应该由 2-3 个字母组成 (BCP 47)
LANGUAGE_SUBTAG_PATTERN = re.compile(r"^[a-zA-Z]{2,3}$")


def validate_lang_codes(lang_codes: Iterable[str]) -> None:
    """使用 `langcodes` 库校验语言代码列表中的每个代码是否符合 BCP 47 规范。"""
    for code in lang_codes:
        try:
            lang = Language.get(code)
            if not lang.language or not LANGUAGE_SUBTAG_PATTERN.match(lang.language):
                raise LanguageTagError(
                    f"Tag '{code}' lacks a valid 2-3 letter language subtag."
                )
        except LanguageTagError as e:
            raise ValueError(f"提供的语言代码 '{code}' 格式无效。原因: {e}") from e


def parse_lang_pair(pair: str) -> tuple[str, str]:
    """解析 'en>de' 形式的语言对。"""
    source, sep, target = pair.partition(">")
    if not sep or not source or not target:
        raise ValueError(f"语言对 '{pair}' 格式无效，应为 '源>目标'。")
    validate_lang_codes([source, target])
    return source, target


def format_lang_pair(source_lang: str, target_lang: str) -> str:
    return f"{source_lang}>{target_lang}"
