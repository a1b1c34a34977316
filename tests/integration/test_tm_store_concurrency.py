# tests/integration/test_tm_store_concurrency.py
"""
TmStore 在并发读写与重复投递下的行为，内存库与文件库各跑一遍。

内存库只有一个共享连接：读取不能打断进行中的写事务。
"""

import asyncio
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio

from lochub.config import MEMORY
from lochub.context import ProcessingContext
from lochub.core.types import Job, JobStatus, TranslationUnit
from lochub.persistence import TmManager, TmStore
from tests.helpers.factories import TEST_SOURCE_LANG, TEST_TARGET_LANG, make_segment


@pytest_asyncio.fixture(params=["memory", "file"])
async def store(
    request: pytest.FixtureRequest, tmp_path: Path, context: ProcessingContext
) -> AsyncGenerator[TmStore, None]:
    tm_dir = MEMORY if request.param == "memory" else str(tmp_path)
    manager = TmManager(tm_dir, context)
    yield await manager.get_tm(TEST_SOURCE_LANG, TEST_TARGET_LANG)
    await manager.close()


def _done_job(job_guid: str, texts: list[str]) -> tuple[Job, Job]:
    """返回一对 (完成的响应, 请求)。"""
    segments = [make_segment(text) for text in texts]
    request = Job(
        job_guid=job_guid,
        source_lang=TEST_SOURCE_LANG,
        target_lang=TEST_TARGET_LANG,
        translation_provider="mt",
        status=JobStatus.REQ,
        tus=[s.to_tu() for s in segments],
    )
    response = request.model_copy(
        update={
            "status": JobStatus.DONE,
            "tus": [
                TranslationUnit(guid=s.guid, ntgt=[f"[de] {s.nsrc[0]}"], q=70, ts=1)
                for s in segments
            ],
        }
    )
    return response, request


@pytest.mark.asyncio
async def test_reads_during_a_merge_do_not_undo_it(store: TmStore) -> None:
    response, request = _done_job("job-big", [f"Text {n}" for n in range(200)])
    probe_guid = (request.tus or [])[0].guid
    finished = asyncio.Event()

    async def merge() -> None:
        try:
            await store.process_job(response, request)
        finally:
            finished.set()

    async def read_until_finished() -> int:
        reads = 0
        while not finished.is_set():
            await store.get_entry_by_guid(probe_guid)
            await store.get_job_status("job-big")
            reads += 1
        return reads

    _, reads = await asyncio.gather(merge(), read_until_finished())

    assert reads >= 1
    assert len(await store.get_entries_by_job_guid("job-big")) == 200
    assert await store.get_job_status("job-big") == (JobStatus.DONE, None)


@pytest.mark.asyncio
async def test_concurrent_jobs_on_different_guids_are_all_kept(store: TmStore) -> None:
    first = _done_job("job-a", [f"A {n}" for n in range(50)])
    second = _done_job("job-b", [f"B {n}" for n in range(50)])

    await asyncio.gather(store.process_job(*first), store.process_job(*second))

    meta = {m.job_guid: m for m in await store.get_jobs_meta()}
    assert {guid: (m.status, m.units) for guid, m in meta.items()} == {
        "job-a": (JobStatus.DONE, 50),
        "job-b": (JobStatus.DONE, 50),
    }
    assert await store.count_guids() == 100


@pytest.mark.asyncio
async def test_duplicate_delivery_of_the_same_job_is_idempotent(store: TmStore) -> None:
    response, request = _done_job("job-dup", ["One", "Two", "Three"])

    await asyncio.gather(
        store.process_job(response, request), store.process_job(response, request)
    )

    assert len(await store.get_entries_by_job_guid("job-dup")) == 3
    assert await store.count_guids() == 3
    [meta] = await store.get_jobs_meta()
    assert (meta.status, meta.units) == (JobStatus.DONE, 3)
