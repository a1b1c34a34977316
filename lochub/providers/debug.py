# lochub/providers/debug.py
"""提供一个用于开发和测试的调试翻译提供方。"""

import asyncio
from typing import TYPE_CHECKING, Any, Literal, Optional

from pydantic import Field

from lochub.core.exceptions import ProviderError
from lochub.providers.base import BaseProviderConfig
from lochub.providers.chunked import ChunkedTranslationProvider

if TYPE_CHECKING:
    from lochub.context import ProcessingContext
    from lochub.ops.manager import OpsManager


class DebugProviderConfig(BaseProviderConfig):
    """Debug 提供方的配置模型。"""

    quality: Optional[int] = Field(default=50, ge=0)
    mode: Literal["sync", "async"] = "sync"
    fail_mode: Literal["none", "wrong_cardinality", "error"] = Field(
        default="none", description="none, wrong_cardinality 或 error"
    )
    translation_map: dict[str, str] = Field(default_factory=dict)
    chunk_delays: list[float] = Field(
        default_factory=list, description="按分块序号的人为延迟（秒），用于模拟乱序完成"
    )
    results_ready: bool = True


class DebugProvider(ChunkedTranslationProvider[DebugProviderConfig]):
    """一个简单的调试提供方：把源文本加上目标语言前缀作为译文。"""

    CONFIG_MODEL = DebugProviderConfig
    VERSION = "1.0.0"

    def __init__(
        self,
        provider_id: str,
        config: DebugProviderConfig,
        context: "ProcessingContext",
        ops: "OpsManager",
    ):
        super().__init__(provider_id, config, context, ops)
        self.results_ready = config.results_ready
        self.calls: list[dict[str, Any]] = []
        self._submissions: dict[tuple[str, int], list[str]] = {}

    @property
    def synchronous(self) -> bool:
        return self.config.mode == "sync"

    def _translate_strings(self, target_lang: str, src: list[str]) -> list[str]:
        translations = [
            self.config.translation_map.get(text, f"[{target_lang}] {text}") for text in src
        ]
        if self.config.fail_mode == "wrong_cardinality" and translations:
            translations = translations[:-1]
        return translations

    async def _delay(self, chunk: int) -> None:
        if chunk < len(self.config.chunk_delays):
            await asyncio.sleep(self.config.chunk_delays[chunk])

    async def translate_chunk(
        self,
        chunk: int,
        source_lang: str,
        target_lang: str,
        src: list[str],
        instructions: Optional[str],
    ) -> list[Any]:
        self.calls.append({"op": "translate", "chunk": chunk, "src": list(src)})
        if self.config.fail_mode == "error":
            raise ProviderError("DebugProvider 处于 error 模式。")
        await self._delay(chunk)
        return self._translate_strings(target_lang, src)

    async def submit_chunk(
        self,
        job_guid: str,
        chunk: int,
        source_lang: str,
        target_lang: str,
        src: list[str],
        instructions: Optional[str],
    ) -> Any:
        self.calls.append({"op": "submit", "chunk": chunk, "job_guid": job_guid})
        if self.config.fail_mode == "error":
            raise ProviderError("DebugProvider 处于 error 模式。")
        self._submissions[(job_guid, chunk)] = self._translate_strings(target_lang, src)
        return f"{job_guid}:{chunk}"

    async def fetch_chunk(self, job_guid: str, chunk: int, chunk_size: int) -> Optional[list[Any]]:
        self.calls.append({"op": "fetch", "chunk": chunk, "job_guid": job_guid})
        if not self.results_ready:
            return None
        await self._delay(chunk)
        return self._submissions.get((job_guid, chunk))
