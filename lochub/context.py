# lochub/context.py
"""定义在各组件之间显式传递的运行上下文对象。"""

from __future__ import annotations

import itertools
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

# 回归模式下固定的时间值，保证输出可重复
REGRESSION_TS = 1
REGRESSION_UPDATED_AT = "2022-05-29T00:00:00.000Z"


def _default_logger() -> Any:
    return structlog.get_logger("lochub")


@dataclass(frozen=True)
class ProcessingContext:
    """一个“工具箱”对象：日志记录器、时钟与回归模式标志。"""

    logger: Any = field(default_factory=_default_logger)
    clock: Callable[[], float] = time.time
    regression: bool = False

    # 回归模式下用于生成确定性名称的计数器
    _sequence: Iterator[int] = field(
        default_factory=lambda: itertools.count(1), repr=False, compare=False
    )

    def get_logger(self, component: str) -> Any:
        return self.logger.bind(component=component)

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    def tu_timestamp(self) -> int:
        """新写入 TU 的时间戳；回归模式下固定为 1。"""
        return REGRESSION_TS if self.regression else self.now_ms()

    def now_iso(self) -> str:
        if self.regression:
            return REGRESSION_UPDATED_AT
        moment = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def next_sequence(self) -> int:
        return next(self._sequence)
