# lochub/logging_config.py
"""
日志系统的集中配置：structlog 经 ProcessorFormatter 桥接到标准 logging。

- console：开发用的 Rich 面板。作业、任务与语言等关联字段汇总在面板首行，
  其余字段以键值表列出，过长的值截断。
- json   ：生产用的单行 JSON，时间为 ISO-8601 UTC，异常展开为结构化字典。

aiosqlite 与 SQLAlchemy 引擎的日志默认压到 WARNING。
"""

import logging
from collections.abc import Iterable, MutableMapping
from typing import TYPE_CHECKING, Any, Literal

import structlog
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from structlog.typing import Processor

if TYPE_CHECKING:
    from lochub.config import LocHubConfig

APP_LOGGER_NAME = "lochub"

# 汇总到面板首行的关联字段，按显示顺序排列
CORRELATION_KEYS = ("job_guid", "task_name", "target_lang", "provider", "op_name")
QUIET_LOGGERS = ("aiosqlite", "sqlalchemy.engine", "asyncio")

_LEVEL_STYLES = {
    "debug": "blue",
    "info": "green",
    "warning": "yellow",
    "error": "bold red",
    "critical": "bold magenta",
}


class JobPanelRenderer:
    """把一条事件渲染成 Rich 面板，关联字段放在首行，便于按作业追踪。"""

    def __init__(self, max_value_len: int = 120, show_timestamp: bool = True):
        self._console = Console()
        self._max_value_len = max_value_len
        self._show_timestamp = show_timestamp

    def __call__(self, logger: Any, name: str, event_dict: MutableMapping[str, Any]) -> str:
        event = str(event_dict.pop("event", "")).strip()
        if not event:
            return ""

        level = str(event_dict.pop("level", "info")).lower()
        component = _component(str(event_dict.pop("logger", APP_LOGGER_NAME)))
        timestamp = event_dict.pop("timestamp", None)
        correlation = {key: event_dict.pop(key) for key in CORRELATION_KEYS if key in event_dict}
        style = _LEVEL_STYLES.get(level, "default")

        title = Text.assemble((level.upper(), style), " ", (component, "cyan"))
        body: list[Any] = []
        if correlation:
            body.append(
                Text(" ".join(f"{key}={value}" for key, value in correlation.items()), style="cyan dim")
            )
        body.append(Text(event))
        if event_dict:
            body.append(self._fields_table(event_dict))

        with self._console.capture() as capture:
            self._console.print(
                Panel(
                    Group(*body),
                    title=title,
                    title_align="left",
                    subtitle=Text(str(timestamp), style="dim")
                    if self._show_timestamp and timestamp
                    else None,
                    subtitle_align="right",
                    border_style=style,
                    expand=False,
                )
            )
        return capture.get().rstrip()

    def _fields_table(self, fields: MutableMapping[str, Any]) -> Table:
        table = Table.grid(padding=(0, 1))
        table.add_column(style="dim", justify="right")
        table.add_column(overflow="fold")
        for key in sorted(fields):
            table.add_row(key, Text(self.format_value(fields[key])))
        return table

    def format_value(self, value: Any) -> str:
        """字符串原样显示，其余取 repr；超过上限时截断并以省略号结尾。"""
        text = value if isinstance(value, str) else repr(value)
        if len(text) > self._max_value_len:
            return text[: self._max_value_len - 1] + "…"
        return text


def _component(logger_name: str) -> str:
    """'lochub.persistence.tm_store' -> 'persistence.tm_store'。"""
    prefix = f"{APP_LOGGER_NAME}."
    return logger_name[len(prefix) :] if logger_name.startswith(prefix) else logger_name


def setup_logging(
    log_level: str = "INFO",
    log_format: Literal["json", "console"] = "console",
    quiet_loggers: Iterable[str] = QUIET_LOGGERS,
) -> None:
    """
    配置全局的 structlog 日志系统。

    Args:
        log_level: lochub 记录器的最低级别；根记录器固定为 WARNING。
        log_format: 'console' 输出面板，'json' 输出单行 JSON。
        quiet_loggers: 需要压到 WARNING 的第三方记录器。
    """
    timestamper = (
        structlog.processors.TimeStamper(fmt="iso", utc=True)
        if log_format == "json"
        else structlog.processors.TimeStamper(fmt="%H:%M:%S", utc=False)
    )
    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        timestamper,
    ]

    renderer: Processor
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
        exc_processor: Processor = structlog.processors.dict_tracebacks
    else:
        renderer = JobPanelRenderer()
        exc_processor = structlog.processors.format_exc_info

    structlog.configure(
        processors=[
            *shared,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            exc_processor,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=shared,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.WARNING)

    logging.getLogger(APP_LOGGER_NAME).setLevel(log_level.upper())
    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger("lochub.logging_config").debug(
        "日志系统已配置完成。", log_format=log_format, app_log_level=log_level.upper()
    )


def setup_logging_from_config(cfg: "LocHubConfig") -> None:
    """根据 LocHubConfig 一键初始化日志系统。"""
    setup_logging(
        log_level=cfg.logging.level,
        log_format=cfg.logging.format,
        quiet_loggers=cfg.logging.quiet_loggers,
    )
