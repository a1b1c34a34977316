# tests/unit/providers/test_chunked_provider.py
"""
测试分块提供方：分块边界、乱序完成后的顺序重组、数量校验，
以及异步提供方的“提交 → 抓取”两段式流程。
"""

from typing import Any

import pytest

from lochub.context import ProcessingContext
from lochub.core.exceptions import ChunkSizeError, ProviderContractError, TaskExecutionError
from lochub.core.types import Job, JobStatus, Placeholder
from lochub.ops import OpsManager
from lochub.providers.debug import DebugProvider
from lochub.providers.registry import create_provider
from tests.helpers.factories import debug_provider_config, make_job, make_placeholder_segment, make_segment


def _provider(context: ProcessingContext, ops: OpsManager, **overrides: Any) -> DebugProvider:
    provider = create_provider("debug", debug_provider_config(**overrides), context, ops)
    assert isinstance(provider, DebugProvider)
    return provider


def _request(texts: list[str], job_guid: str = "job-1") -> Job:
    return make_job([make_segment(t) for t in texts], job_guid=job_guid, status=JobStatus.REQ)


def test_chunk_payload_respects_item_and_char_limits(
    context: ProcessingContext, ops: OpsManager
) -> None:
    provider = _provider(context, ops, max_chunk_size=3, max_char_length=12)
    assert provider.chunk_payload(["a"] * 7) == [["a"] * 3, ["a"] * 3, ["a"]]
    # 累计长度必须严格小于上限
    assert provider.chunk_payload(["12345", "123456", "1"]) == [["12345", "123456"], ["1"]]


def test_oversized_unit_raises_chunk_size_error(context: ProcessingContext, ops: OpsManager) -> None:
    provider = _provider(context, ops, max_char_length=10)
    with pytest.raises(ChunkSizeError, match="索引 1"):
        provider.chunk_payload(["ok", "x" * 10])
    assert issubclass(ChunkSizeError, ProviderContractError)


@pytest.mark.asyncio
async def test_chunks_are_reassembled_in_request_order(
    context: ProcessingContext, ops: OpsManager
) -> None:
    """7 个单元切成 3,3,1；最后一块最先完成，结果仍保持原始顺序。"""
    provider = _provider(context, ops, max_chunk_size=3, chunk_delays=[0.05, 0.03, 0.0])
    texts = [f"string {n}" for n in range(7)]
    request = _request(texts)

    response = await provider.request_translations(request)

    translate_calls = [c for c in provider.calls if c["op"] == "translate"]
    assert sorted(len(c["src"]) for c in translate_calls) == [1, 3, 3]
    assert response.status == JobStatus.DONE
    assert [tu.guid for tu in response.tus or []] == [tu.guid for tu in request.tus or []]
    assert [tu.ntgt for tu in response.tus or []] == [[f"[de] {t}"] for t in texts]
    assert all(tu.q == 70 and tu.ts == 1 for tu in response.tus or [])


@pytest.mark.asyncio
async def test_wrong_chunk_cardinality_fails_the_task(
    context: ProcessingContext, ops: OpsManager
) -> None:
    provider = _provider(context, ops, fail_mode="wrong_cardinality")

    with pytest.raises(TaskExecutionError) as excinfo:
        await provider.request_translations(_request(["one", "two", "three"]))

    assert isinstance(excinfo.value.__cause__, ProviderContractError)
    assert "应返回 3 条译文，实际返回 2 条" in str(excinfo.value.__cause__)


@pytest.mark.asyncio
async def test_placeholders_survive_the_round_trip(
    context: ProcessingContext, ops: OpsManager
) -> None:
    provider = _provider(context, ops, translation_map={"Hello <x1 />": "Hallo <x1 />!"})
    segment = make_placeholder_segment("Hello ", "{name}", sid="greeting")
    request = make_job([segment], job_guid="job-ph", status=JobStatus.REQ)

    response = await provider.request_translations(request)

    assert response.tus is not None
    assert response.tus[0].ntgt == ["Hallo ", Placeholder(t="x", v="{name}"), "!"]


@pytest.mark.asyncio
async def test_unknown_placeholder_in_translation_is_a_contract_violation(
    context: ProcessingContext, ops: OpsManager
) -> None:
    provider = _provider(context, ops, translation_map={"Hello <x1 />": "Hallo <x2 />"})
    segment = make_placeholder_segment("Hello ", "{name}", sid="greeting")

    with pytest.raises(TaskExecutionError) as excinfo:
        await provider.request_translations(make_job([segment], job_guid="j", status=JobStatus.REQ))

    assert isinstance(excinfo.value.__cause__, ProviderContractError)


@pytest.mark.asyncio
async def test_asynchronous_provider_submits_then_fetches(
    context: ProcessingContext, ops: OpsManager
) -> None:
    provider = _provider(context, ops, mode="async", max_chunk_size=2, results_ready=False)
    request = _request(["a", "b", "c"], job_guid="job-async")

    pending = await provider.request_translations(request)

    assert pending.status == JobStatus.PENDING
    assert pending.tus is None
    assert pending.inflight == [tu.guid for tu in request.tus or []]
    assert pending.envelope is not None and pending.envelope["chunk_sizes"] == [2, 1]

    assert await provider.fetch_translations(pending, request) is None

    provider.results_ready = True
    done = await provider.fetch_translations(pending, request)

    assert done is not None
    assert done.status == JobStatus.DONE
    assert done.inflight is None
    assert [tu.ntgt for tu in done.tus or []] == [["[de] a"], ["[de] b"], ["[de] c"]]


@pytest.mark.asyncio
async def test_fetch_without_envelope_is_a_contract_violation(
    context: ProcessingContext, ops: OpsManager
) -> None:
    provider = _provider(context, ops, mode="async")
    request = _request(["a"])
    with pytest.raises(ProviderContractError, match="分块信封"):
        await provider.fetch_translations(request.model_copy(update={"status": JobStatus.PENDING}), request)


@pytest.mark.asyncio
async def test_refresh_is_always_synchronous(context: ProcessingContext, ops: OpsManager) -> None:
    provider = _provider(context, ops, mode="async")
    response = await provider.refresh_translations(_request(["a"]))
    assert response.status == JobStatus.DONE
    assert [c["op"] for c in provider.calls] == ["translate"]
