# lochub/config.py
"""LocHub 的集中配置，基于 pydantic-settings，可通过 LH_ 前缀的环境变量覆盖。"""

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lochub.utils import validate_lang_codes

MEMORY = ":memory:"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: Literal["json", "console"] = "console"
    # 压到 WARNING 的第三方记录器
    quiet_loggers: list[str] = Field(
        default_factory=lambda: ["aiosqlite", "sqlalchemy.engine", "asyncio"]
    )


class RetryPolicyConfig(BaseModel):
    max_attempts: int = Field(default=2, gt=0)
    initial_backoff: float = Field(default=1.0, gt=0)
    max_backoff: float = Field(default=60.0, gt=0)

    @model_validator(mode="after")
    def check_backoff_consistency(self) -> "RetryPolicyConfig":
        if self.max_backoff < self.initial_backoff:
            raise ValueError("max_backoff 必须大于或等于 initial_backoff")
        return self

    def backoff_for(self, attempt: int) -> float:
        """第 attempt 次（从 0 开始）失败后的等待秒数。"""
        return min(self.initial_backoff * (2**attempt), self.max_backoff)


class LocHubConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LH_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    tm_dir: str = Field(default="l10nmonster", description="每个语言对一个 SQLite 文件的目录")
    ops_db: str = Field(default=MEMORY, description="持久化任务图的 SQLite 文件")
    source_lang: str = "en"
    target_langs: list[str] = Field(default_factory=list)
    min_quality: int = Field(default=50, ge=0)
    regression: bool = False
    default_parallelism: int = Field(default=1, gt=0)
    exact_match_cache_size: int = Field(default=1024, gt=0)

    provider_configs: dict[str, Any] = Field(default_factory=dict)
    provider_order: list[str] = Field(default_factory=list)
    retry_policy: RetryPolicyConfig = Field(default_factory=RetryPolicyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("source_lang")
    @classmethod
    def validate_source_lang_code(cls, v: str) -> str:
        validate_lang_codes([v])
        return v

    @field_validator("target_langs")
    @classmethod
    def validate_target_lang_codes(cls, v: list[str]) -> list[str]:
        validate_lang_codes(v)
        return v

    @model_validator(mode="after")
    def check_provider_order(self) -> "LocHubConfig":
        unknown = [name for name in self.provider_order if name not in self.provider_configs]
        if unknown:
            raise ValueError(f"provider_order 中包含未配置的提供方: {unknown}")
        return self

    @property
    def in_memory(self) -> bool:
        return self.tm_dir == MEMORY

    def ordered_provider_ids(self) -> list[str]:
        """按优先级排列的提供方 id；未显式排序的按配置顺序追加在后。"""
        ordered = list(self.provider_order)
        ordered.extend(name for name in self.provider_configs if name not in ordered)
        return ordered
