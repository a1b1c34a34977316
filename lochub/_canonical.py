# lochub/_canonical.py
"""
规范化 JSON（RFC 8785 / JCS）与内容派生标识。

TU 的存储 blob 与 guid 都基于同一套规范化字节串：逻辑上相同的内容
无论字段顺序如何，都得到完全相同的字节，从而使幂等 upsert 的
“是否有字段变化”判定稳定可靠。
"""

from __future__ import annotations

import base64
import hashlib
import math
from typing import Any

import rfc8785
from pydantic import BaseModel


class CanonicalizationError(RuntimeError):
    """当输入不满足 I-JSON 约束时抛出。"""


def _to_plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    return value


def _assert_i_json_compat(value: Any, path: str = "$") -> None:
    """I-JSON 守卫"""
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str):
                raise CanonicalizationError(
                    f"{path}: object key must be str, got {type(k)}"
                )
            _assert_i_json_compat(v, f"{path}.{k}")
        return
    if isinstance(value, list):
        for i, v in enumerate(value):
            _assert_i_json_compat(v, f"{path}[{i}]")
        return
    if isinstance(value, (str, int, bool)) or value is None:
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise CanonicalizationError(f"{path}: non-finite float is not allowed")
        return
    raise CanonicalizationError(f"{path}: unsupported type {type(value)}")


def canonical_bytes(payload: Any) -> bytes:
    """将对象按 RFC 8785 (JCS) 规范化为 UTF-8 字节串。"""
    plain = _to_plain(payload)
    _assert_i_json_compat(plain)
    try:
        return rfc8785.dumps(plain)
    except Exception as e:
        # rfc8785 对超出 I-JSON 范围的整数等会抛出自己的错误
        raise CanonicalizationError(f"JCS canonicalization failed: {e}") from e


def canonical_json(payload: Any) -> str:
    return canonical_bytes(payload).decode("utf-8")


def generate_guid(rid: str, sid: str, nsrc: Any) -> str:
    """由 (rid, sid, 规范化源) 派生出稳定的 TU guid（43 位 base64url）。"""
    digest = hashlib.sha256(canonical_bytes([rid, sid, nsrc])).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
