# tests/conftest.py
"""项目全局共享的测试 Fixtures。"""

import os
from collections.abc import AsyncGenerator, Generator
from typing import Any

import pytest
import pytest_asyncio
from pytest_mock import MockerFixture
from rich.console import Console

from lochub.config import MEMORY
from lochub.context import ProcessingContext
from lochub.logging_config import setup_logging
from lochub.ops import OpsManager
from lochub.persistence import TmManager, TmStore
from tests.helpers.factories import TEST_SOURCE_LANG, TEST_TARGET_LANG

setup_logging(log_level=os.getenv("TEST_LOG_LEVEL", "WARNING"), log_format="console")


@pytest.fixture(scope="session", autouse=True)
def disable_rich_colors_for_tests(
    session_mocker: MockerFixture,
) -> Generator[None, None, None]:
    """全局禁用 rich 库的颜色输出，以确保测试结果的确定性。"""
    original_init = Console.__init__

    def new_init(self: Console, *args: Any, **kwargs: Any) -> None:
        kwargs["force_terminal"] = False
        kwargs["color_system"] = None
        original_init(self, *args, **kwargs)

    session_mocker.patch("rich.console.Console.__init__", new=new_init)
    yield


@pytest.fixture
def context() -> ProcessingContext:
    """回归模式的上下文：时间戳、作业 guid 与任务名都是确定的。"""
    return ProcessingContext(regression=True)


@pytest.fixture
def ops(context: ProcessingContext) -> OpsManager:
    return OpsManager(context, default_parallelism=4)


@pytest_asyncio.fixture
async def tm_manager(context: ProcessingContext) -> AsyncGenerator[TmManager, None]:
    manager = TmManager(MEMORY, context)
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def tm(tm_manager: TmManager) -> TmStore:
    return await tm_manager.get_tm(TEST_SOURCE_LANG, TEST_TARGET_LANG)
