# lochub/persistence/tm_manager.py
"""按语言对懒加载 TmStore，并负责生成作业 guid。"""

from __future__ import annotations

import asyncio
import os
import uuid

from lochub.config import MEMORY
from lochub.context import ProcessingContext
from lochub.persistence.engine import create_sqlite_engine
from lochub.persistence.tm_store import TmStore
from lochub.utils import validate_lang_codes


class TmManager:
    """
    每个 源→目标 语言对一个 SQLite 数据库（`tm_dir/tm_<源>_<目标>.db`）。
    `tm_dir` 为 `:memory:` 时，每个语言对使用独立的内存数据库。
    """

    def __init__(self, tm_dir: str, context: ProcessingContext) -> None:
        self.tm_dir = tm_dir
        self.context = context
        self.logger = context.get_logger("tm_manager")
        self._stores: dict[tuple[str, str], TmStore] = {}
        self._lock = asyncio.Lock()

    def db_path_for(self, source_lang: str, target_lang: str) -> str:
        if self.tm_dir == MEMORY:
            return MEMORY
        return os.path.join(self.tm_dir, f"tm_{source_lang}_{target_lang}.db")

    async def get_tm(self, source_lang: str, target_lang: str) -> TmStore:
        key = (source_lang, target_lang)
        store = self._stores.get(key)
        if store is not None:
            return store
        async with self._lock:
            store = self._stores.get(key)
            if store is None:
                validate_lang_codes([source_lang, target_lang])
                if self.tm_dir != MEMORY:
                    os.makedirs(self.tm_dir, exist_ok=True)
                engine = create_sqlite_engine(self.db_path_for(source_lang, target_lang))
                store = TmStore(engine, source_lang, target_lang, self.context)
                await store.connect()
                self._stores[key] = store
                self.logger.info("已打开 TM。", source_lang=source_lang, target_lang=target_lang)
        return store

    def available_lang_pairs(self) -> list[tuple[str, str]]:
        """已打开或已存在于磁盘上的语言对。"""
        pairs = set(self._stores)
        if self.tm_dir != MEMORY and os.path.isdir(self.tm_dir):
            for name in os.listdir(self.tm_dir):
                if name.startswith("tm_") and name.endswith(".db"):
                    source_lang, _, target_lang = name[3:-3].partition("_")
                    if source_lang and target_lang:
                        pairs.add((source_lang, target_lang))
        return sorted(pairs)

    def generate_job_guid(self) -> str:
        if self.context.regression:
            return f"xxx{self.context.next_sequence()}"
        return uuid.uuid4().hex

    async def close(self) -> None:
        for store in self._stores.values():
            await store.close()
        self._stores.clear()
