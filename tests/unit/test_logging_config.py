# tests/unit/test_logging_config.py
"""测试日志系统的初始化与面板渲染器。"""

import logging
import os
from collections.abc import Generator

import pytest
import structlog

from lochub.config import LocHubConfig, LoggingConfig
from lochub.logging_config import (
    APP_LOGGER_NAME,
    JobPanelRenderer,
    setup_logging,
    setup_logging_from_config,
)


@pytest.fixture(autouse=True)
def restore_logging() -> Generator[None, None, None]:
    yield
    setup_logging(log_level=os.getenv("TEST_LOG_LEVEL", "WARNING"), log_format="console")


def _final_renderer() -> object:
    [handler] = logging.getLogger().handlers
    formatter = handler.formatter
    assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
    return formatter.processors[-1]


def test_console_format_uses_panel_renderer() -> None:
    setup_logging(log_level="debug", log_format="console")

    assert isinstance(_final_renderer(), JobPanelRenderer)
    assert logging.getLogger(APP_LOGGER_NAME).level == logging.DEBUG
    assert logging.getLogger().level == logging.WARNING
    assert logging.getLogger("aiosqlite").level == logging.WARNING


def test_json_format_from_config() -> None:
    config = LocHubConfig(
        _env_file=None,
        logging=LoggingConfig(level="ERROR", format="json", quiet_loggers=["chatty.lib"]),
    )

    setup_logging_from_config(config)

    assert isinstance(_final_renderer(), structlog.processors.JSONRenderer)
    assert logging.getLogger(APP_LOGGER_NAME).level == logging.ERROR
    assert logging.getLogger("chatty.lib").level == logging.WARNING


def test_panel_leads_with_job_correlation_fields() -> None:
    renderer = JobPanelRenderer()

    output = renderer(
        None,
        "info",
        {
            "event": "作业已合并。",
            "level": "info",
            "logger": "lochub.persistence.tm_store",
            "job_guid": "xxx1",
            "target_lang": "de",
            "units": 3,
        },
    )

    lines = output.splitlines()
    assert "INFO persistence.tm_store" in lines[0]
    assert "job_guid=xxx1 target_lang=de" in lines[1]
    assert "作业已合并。" in lines[2]
    assert "units" in output and "units" not in lines[1]


def test_long_values_are_truncated_and_empty_events_skipped() -> None:
    renderer = JobPanelRenderer(max_value_len=10)

    assert renderer.format_value("short") == "short"
    assert renderer.format_value("x" * 30) == "x" * 9 + "…"
    assert renderer.format_value(["a"]) == "['a']"
    assert renderer(None, "info", {"event": "  ", "level": "info"}) == ""
