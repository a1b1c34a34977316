# lochub/persistence/tm_store.py
"""
单个语言对的翻译记忆库存储。

TU 行以 (guid, job_guid) 为主键；同一 guid 可以有多行，权威行由
`lochub._tm.authority` 中的规则在读取时裁决，写入时从不做裁决。
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from typing import Any

from pydantic import ValidationError
from sqlalchemy import delete, distinct, func, or_, select, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from lochub._canonical import canonical_json
from lochub._tm.authority import authority_order_by, rank_by_authority
from lochub._tm.normalizers import flatten_normalized_source_to_ordinal
from lochub.context import ProcessingContext
from lochub.core.exceptions import DatabaseError, ProviderContractError
from lochub.core.types import (
    Job,
    JobMeta,
    JobStatus,
    NormalizedString,
    TmStatsRow,
    TranslationUnit,
)
from lochub.persistence.engine import uses_single_connection
from lochub.persistence.job_registry import JobRegistry
from lochub.persistence.schema import TmBase, TmJob, TmUnit

# SQLite 默认的绑定参数上限是 999
_IN_CLAUSE_BATCH = 500

_CREATE_ORDINAL_INDEX = text(
    "CREATE INDEX IF NOT EXISTS idx_tus_ordinal_src ON tus (ordinal_src)"
)


class TmStore:
    """`TranslationMemory` 协议的 SQLite 实现。"""

    def __init__(
        self,
        engine: AsyncEngine,
        source_lang: str,
        target_lang: str,
        context: ProcessingContext,
    ) -> None:
        self.engine = engine
        self.source_lang = source_lang
        self.target_lang = target_lang
        self.context = context
        self.jobs = JobRegistry()
        self.logger = context.get_logger("tm_store").bind(
            source_lang=source_lang, target_lang=target_lang
        )
        self._ordinal_index_ready = False
        # 写事务之间总是串行；内存库只有一个共享连接，读取也必须串行
        self._lock = asyncio.Lock()
        self._serialize_reads = uses_single_connection(engine)

    async def connect(self) -> None:
        try:
            async with self.transaction() as conn:
                await conn.run_sync(TmBase.metadata.create_all)
        except SQLAlchemyError as e:
            raise DatabaseError(f"初始化 TM 数据库失败: {e}") from e
        self.logger.debug("TM 存储已就绪。")

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncConnection, None]:
        """写事务：持锁执行，正常退出时提交，异常时回滚。"""
        async with self._lock, self.engine.begin() as conn:
            yield conn

    @asynccontextmanager
    async def reading(self) -> AsyncGenerator[AsyncConnection, None]:
        """只读连接。共享连接的引擎上与写事务互斥，避免归还连接时回滚进行中的事务。"""
        if self._serialize_reads:
            async with self._lock, self.engine.connect() as conn:
                yield conn
        else:
            async with self.engine.connect() as conn:
                yield conn

    # ------------------------------------------------------------------ 读取

    async def get_entry_by_guid(self, guid: str) -> TranslationUnit | None:
        """返回该 guid 的权威行（质量最高，其次时间戳最新，再次最后写入）。"""
        try:
            async with self.reading() as conn:
                return await self._authoritative(conn, guid)
        except SQLAlchemyError as e:
            raise DatabaseError(f"按 guid 读取 TU 失败: {e}") from e

    async def get_entries(self, guids: Sequence[str]) -> dict[str, TranslationUnit]:
        """批量读取权威行。找不到的 guid 不出现在结果中。"""
        rows_by_guid: dict[str, list[tuple[TranslationUnit, int]]] = {}
        try:
            async with self.reading() as conn:
                for i in range(0, len(guids), _IN_CLAUSE_BATCH):
                    batch = list(guids[i : i + _IN_CLAUSE_BATCH])
                    result = await conn.execute(
                        select(TmUnit.entry, TmUnit.write_seq).where(TmUnit.guid.in_(batch))
                    )
                    for entry, write_seq in result.all():
                        tu = TranslationUnit.model_validate_json(entry)
                        rows_by_guid.setdefault(tu.guid, []).append((tu, write_seq))
        except SQLAlchemyError as e:
            raise DatabaseError(f"批量读取 TU 失败: {e}") from e
        return {guid: rank_by_authority(rows)[0] for guid, rows in rows_by_guid.items()}

    async def get_entries_by_job_guid(self, job_guid: str) -> dict[str, TranslationUnit]:
        async with self.reading() as conn:
            result = await conn.execute(
                select(TmUnit.entry).where(TmUnit.job_guid == job_guid)
            )
            tus = [TranslationUnit.model_validate_json(e) for e in result.scalars()]
        return {tu.guid: tu for tu in tus}

    async def guids(self) -> list[str]:
        async with self.reading() as conn:
            result = await conn.execute(
                select(distinct(TmUnit.guid)).order_by(TmUnit.guid)
            )
            return list(result.scalars())

    async def count_guids(self) -> int:
        async with self.reading() as conn:
            result = await conn.execute(select(func.count(distinct(TmUnit.guid))))
            return int(result.scalar_one())

    async def get_exact_matches(self, nsrc: NormalizedString) -> list[TranslationUnit]:
        """
        返回序数源与 `nsrc` 相同的所有行，按权威度排序。

        占位符内容不参与比较，只比较位置与数量。
        """
        ordinal = flatten_normalized_source_to_ordinal(nsrc)
        try:
            await self._ensure_ordinal_index()
            async with self.reading() as conn:
                result = await conn.execute(
                    select(TmUnit.entry, TmUnit.write_seq).where(TmUnit.ordinal_src == ordinal)
                )
                rows = [
                    (TranslationUnit.model_validate_json(entry), write_seq)
                    for entry, write_seq in result.all()
                ]
        except SQLAlchemyError as e:
            raise DatabaseError(f"精确匹配查询失败: {e}") from e
        return rank_by_authority(rows)

    async def get_job_status(self, job_guid: str) -> tuple[JobStatus | None, str | None]:
        async with self.reading() as conn:
            return await self.jobs.get_status(conn, job_guid)

    async def get_job_payloads(self, job_guid: str) -> tuple[Job | None, Job | None]:
        async with self.reading() as conn:
            return await self.jobs.get_payloads(conn, job_guid)

    async def get_jobs_meta(self) -> list[JobMeta]:
        async with self.reading() as conn:
            return await self.jobs.list_meta(conn)

    async def get_stats(self) -> list[TmStatsRow]:
        """按 (translation_provider, status) 聚合 TU 行数、去重 guid 数与作业数。"""
        stmt = (
            select(
                TmJob.translation_provider,
                TmJob.status,
                func.count().label("tu_count"),
                func.count(distinct(TmUnit.guid)).label("distinct_guids"),
                func.count(distinct(TmUnit.job_guid)).label("job_count"),
            )
            .select_from(TmUnit)
            .outerjoin(TmJob, TmJob.job_guid == TmUnit.job_guid)
            .group_by(TmJob.translation_provider, TmJob.status)
            .order_by(TmJob.translation_provider, TmJob.status)
        )
        async with self.reading() as conn:
            rows = (await conn.execute(stmt)).all()
        return [
            TmStatsRow(
                translation_provider=row.translation_provider,
                status=row.status,
                tu_count=row.tu_count,
                distinct_guids=row.distinct_guids,
                job_count=row.job_count,
            )
            for row in rows
        ]

    # ------------------------------------------------------------------ 写入

    async def set_entry(self, job_guid: str, tu: TranslationUnit) -> bool:
        """
        以 (job_guid, guid) 为键幂等 upsert。

        Returns:
            是否真的发生了变更；字段完全相同的重复写入返回 False。
        """
        try:
            async with self.transaction() as conn:
                return await self._upsert(conn, job_guid, tu)
        except SQLAlchemyError as e:
            self.logger.error("写入 TU 失败，事务已回滚。", guid=tu.guid, exc_info=True)
            raise DatabaseError(f"写入 TU 失败: {e}") from e

    async def process_job(
        self, job_response: Job | None, job_request: Job | None = None
    ) -> None:
        """
        在单个事务中合并作业：在途占位行、计分行、作业注册表与载荷。

        只有请求（例如 blocked 或刚持久化的 req）时，只写作业注册表与请求载荷。
        """
        job = job_response or job_request
        if job is None or not job.job_guid:
            raise ValueError("process_job 需要带有 job_guid 的作业请求或响应。")
        job_guid = job.job_guid
        status = job.status or JobStatus.REQ
        requested = job_request.tu_map() if job_request is not None else {}

        try:
            async with self.transaction() as conn:
                written = skipped = 0
                if job_response is not None:
                    for guid in job_response.inflight or []:
                        source = requested.get(guid) or await self._authoritative(conn, guid)
                        placeholder = TranslationUnit.inflight_placeholder(guid, job_guid, source)
                        if await self._upsert(conn, job_guid, placeholder):
                            written += 1
                        else:
                            skipped += 1
                    for response_tu in job_response.tus or []:
                        pair = self._merge_pair(
                            requested.get(response_tu.guid),
                            response_tu,
                            job_guid,
                            job_response.translation_provider,
                        )
                        if await self._upsert(conn, job_guid, pair):
                            written += 1
                        else:
                            skipped += 1
                await self.jobs.record(
                    conn, job_guid, status, job.updated_at, job.translation_provider
                )
                await self.jobs.save_payloads(conn, job_guid, job_request, job_response)
        except SQLAlchemyError as e:
            self.logger.error("合并作业失败，事务已回滚。", job_guid=job_guid, exc_info=True)
            raise DatabaseError(f"合并作业 '{job_guid}' 失败: {e}") from e

        self.logger.info(
            "作业已写入 TM。",
            job_guid=job_guid,
            status=JobStatus(status).value,
            written=written,
            skipped=skipped,
        )

    async def delete_job(self, job_guid: str) -> int:
        """删除作业及其全部 TU 行，返回删除的 TU 行数。"""
        try:
            async with self.transaction() as conn:
                result = await conn.execute(delete(TmUnit).where(TmUnit.job_guid == job_guid))
                await self.jobs.delete(conn, job_guid)
        except SQLAlchemyError as e:
            raise DatabaseError(f"删除作业 '{job_guid}' 失败: {e}") from e
        self.logger.info("作业已删除。", job_guid=job_guid, units=result.rowcount)
        return int(result.rowcount or 0)

    # ------------------------------------------------------------------ 内部

    @staticmethod
    def _merge_pair(
        request_tu: TranslationUnit | None,
        response_tu: TranslationUnit,
        job_guid: str,
        translation_provider: str | None,
    ) -> TranslationUnit:
        try:
            pair = TranslationUnit.from_request_response(
                request_tu, response_tu, translation_provider=translation_provider
            )
        except (ValueError, ValidationError) as e:
            raise ProviderContractError(
                f"响应中的 TU '{response_tu.guid}' 格式无效: {e}"
            ) from e
        return pair.model_copy(update={"job_guid": job_guid})

    async def _upsert(
        self, conn: AsyncConnection, job_guid: str, tu: TranslationUnit
    ) -> bool:
        entry_tu = tu if tu.job_guid == job_guid else tu.model_copy(update={"job_guid": job_guid})
        values: dict[str, Any] = dict(
            guid=tu.guid,
            job_guid=job_guid,
            entry=canonical_json(entry_tu),
            ordinal_src=(
                flatten_normalized_source_to_ordinal(tu.nsrc) if tu.nsrc is not None else None
            ),
            q=tu.q or 0,
            ts=tu.ts or 0,
            write_seq=_next_write_seq(),
        )
        stmt = sqlite_insert(TmUnit).values(values)
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[TmUnit.guid, TmUnit.job_guid],
            set_=dict(
                entry=excluded.entry,
                ordinal_src=excluded.ordinal_src,
                q=excluded.q,
                ts=excluded.ts,
                write_seq=excluded.write_seq,
            ),
            # 所有字段都相同时不更新，避免无意义的时间戳与序号变化
            where=or_(
                TmUnit.entry.is_distinct_from(excluded.entry),
                TmUnit.ordinal_src.is_distinct_from(excluded.ordinal_src),
                TmUnit.q.is_distinct_from(excluded.q),
                TmUnit.ts.is_distinct_from(excluded.ts),
            ),
        )
        result = await conn.execute(stmt)
        if result.rowcount == 0:
            self.logger.debug("TU 未变化，跳过写入。", guid=tu.guid, job_guid=job_guid)
            return False
        return True

    @staticmethod
    async def _authoritative(conn: AsyncConnection, guid: str) -> TranslationUnit | None:
        stmt = (
            select(TmUnit.entry)
            .where(TmUnit.guid == guid)
            .order_by(*authority_order_by(TmUnit.q, TmUnit.ts, TmUnit.write_seq))
            .limit(1)
        )
        entry = (await conn.execute(stmt)).scalar_one_or_none()
        return TranslationUnit.model_validate_json(entry) if entry else None

    async def _ensure_ordinal_index(self) -> None:
        """按需创建序数源索引：只读或只看状态的会话不必为此付出代价。"""
        if self._ordinal_index_ready:
            return
        async with self.transaction() as conn:
            await conn.execute(_CREATE_ORDINAL_INDEX)
        self._ordinal_index_ready = True
        self.logger.debug("序数源索引已创建。")


def _next_write_seq() -> Any:
    """本库内下一个写入序号的标量子查询。别名避免与外层 `tus` 关联。"""
    previous = TmUnit.__table__.alias("previous")
    return select(func.coalesce(func.max(previous.c.write_seq), 0) + 1).scalar_subquery()
