# lochub/persistence/job_registry.py
"""
作业注册表：job_guid → {status, updated_at, translation_provider}。

所有写方法都要求调用方传入一个已经开启事务的连接，从而保证作业状态
永远不会先于它所描述的 TU 行变得可见。
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncConnection

from lochub.core.types import Job, JobMeta, JobStatus
from lochub.persistence.schema import TmJob, TmJobPayload, TmUnit


class JobRegistry:
    async def record(
        self,
        conn: AsyncConnection,
        job_guid: str,
        status: JobStatus,
        updated_at: str | None,
        translation_provider: str | None,
    ) -> None:
        values = dict(
            job_guid=job_guid,
            status=JobStatus(status).value,
            updated_at=updated_at,
            translation_provider=translation_provider,
        )
        stmt = sqlite_insert(TmJob).values(values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[TmJob.job_guid],
            set_=dict(
                status=stmt.excluded.status,
                updated_at=stmt.excluded.updated_at,
                translation_provider=stmt.excluded.translation_provider,
            ),
        )
        await conn.execute(stmt)

    async def save_payloads(
        self,
        conn: AsyncConnection,
        job_guid: str,
        job_request: Job | None,
        job_response: Job | None,
    ) -> None:
        """保存请求与最近一次响应。未提供的一侧保持原值。"""
        values: dict[str, Any] = {"job_guid": job_guid}
        if job_request is not None:
            values["request"] = job_request.model_dump(mode="json", exclude_none=True)
        if job_response is not None:
            values["response"] = job_response.model_dump(mode="json", exclude_none=True)
        stmt = sqlite_insert(TmJobPayload).values(values)
        update_cols = {k: getattr(stmt.excluded, k) for k in values if k != "job_guid"}
        if update_cols:
            stmt = stmt.on_conflict_do_update(
                index_elements=[TmJobPayload.job_guid], set_=update_cols
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=[TmJobPayload.job_guid])
        await conn.execute(stmt)

    async def delete(self, conn: AsyncConnection, job_guid: str) -> None:
        await conn.execute(delete(TmJobPayload).where(TmJobPayload.job_guid == job_guid))
        await conn.execute(delete(TmJob).where(TmJob.job_guid == job_guid))

    async def get_status(
        self, conn: AsyncConnection, job_guid: str
    ) -> tuple[JobStatus | None, str | None]:
        row = (
            await conn.execute(
                select(TmJob.status, TmJob.updated_at).where(TmJob.job_guid == job_guid)
            )
        ).first()
        if row is None:
            return None, None
        return JobStatus(row.status), row.updated_at

    async def get_payloads(
        self, conn: AsyncConnection, job_guid: str
    ) -> tuple[Job | None, Job | None]:
        row = (
            await conn.execute(
                select(TmJobPayload.request, TmJobPayload.response).where(
                    TmJobPayload.job_guid == job_guid
                )
            )
        ).first()
        if row is None:
            return None, None
        request = Job.model_validate(row.request) if row.request else None
        response = Job.model_validate(row.response) if row.response else None
        return request, response

    async def list_meta(self, conn: AsyncConnection) -> list[JobMeta]:
        units = (
            select(TmUnit.job_guid, func.count().label("units"))
            .group_by(TmUnit.job_guid)
            .subquery()
        )
        stmt = (
            select(
                TmJob.job_guid,
                TmJob.status,
                TmJob.updated_at,
                TmJob.translation_provider,
                func.coalesce(units.c.units, 0).label("units"),
            )
            .outerjoin(units, units.c.job_guid == TmJob.job_guid)
            .order_by(TmJob.job_guid)
        )
        return [
            JobMeta(
                job_guid=row.job_guid,
                status=JobStatus(row.status),
                updated_at=row.updated_at,
                translation_provider=row.translation_provider,
                units=row.units,
            )
            for row in (await conn.execute(stmt)).all()
        ]
