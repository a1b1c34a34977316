# tests/unit/providers/test_provider_acceptance.py
"""测试提供方的作业接受规则、配额与成本估算，以及提供方注册表。"""

import pytest

from lochub.context import ProcessingContext
from lochub.core.exceptions import ConfigurationError, ProviderNotFoundError
from lochub.core.types import JobStatus
from lochub.ops import OpsManager
from lochub.providers.registry import PROVIDER_REGISTRY, create_provider, discover_providers
from tests.helpers.factories import debug_provider_config, make_job, make_segment


def _segments(n: int) -> list:
    return [make_segment(f"text {i}") for i in range(n)]


def test_discovery_registers_the_debug_provider() -> None:
    discover_providers()
    assert "debug" in PROVIDER_REGISTRY
    assert "chunked" not in PROVIDER_REGISTRY


def test_unknown_provider_type_raises(context: ProcessingContext, ops: OpsManager) -> None:
    with pytest.raises(ProviderNotFoundError, match="未知的提供方类型"):
        create_provider("mt", {"type": "nope"}, context, ops)


def test_invalid_provider_config_raises(context: ProcessingContext, ops: OpsManager) -> None:
    with pytest.raises(ConfigurationError, match="配置无效"):
        create_provider("mt", debug_provider_config(quality=-1), context, ops)


@pytest.mark.asyncio
async def test_accepts_units_whose_min_quality_is_met(
    context: ProcessingContext, ops: OpsManager
) -> None:
    provider = create_provider("mt", debug_provider_config(quality=60), context, ops)
    job = make_job(_segments(2), min_q=50)
    job.tus[1].min_q = 80  # type: ignore[index]

    created = await provider.create_job(job)

    assert created.status == JobStatus.CREATED
    assert created.translation_provider == "mt"
    assert [tu.guid for tu in created.tus or []] == [job.tus[0].guid]  # type: ignore[index]


@pytest.mark.asyncio
async def test_rejects_unsupported_language_pairs(
    context: ProcessingContext, ops: OpsManager
) -> None:
    provider = create_provider(
        "mt", debug_provider_config(supported_pairs={"en": ["fr"]}), context, ops
    )
    created = await provider.create_job(make_job(_segments(2)))
    assert created.status == JobStatus.CANCELLED
    assert created.tus == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "settings, units",
    [
        ({"min_batch_size": 3}, 2),
        ({"min_word_quota": 10}, 2),
        ({"max_word_quota": 3}, 2),
    ],
)
async def test_batch_and_word_quotas(
    context: ProcessingContext, ops: OpsManager, settings: dict, units: int
) -> None:
    provider = create_provider("mt", debug_provider_config(**settings), context, ops)
    created = await provider.create_job(make_job(_segments(units), words=2))
    assert created.status == JobStatus.CANCELLED


@pytest.mark.asyncio
async def test_cost_is_estimated_from_words_and_chars(
    context: ProcessingContext, ops: OpsManager
) -> None:
    provider = create_provider(
        "mt", debug_provider_config(cost_per_word=0.1, cost_per_mchar=20.0), context, ops
    )
    created = await provider.create_job(make_job(_segments(3), words=2))
    # 每个 TU: 2 词 * 0.1 + 10 字符 / 1e6 * 20
    assert created.estimated_cost == pytest.approx(3 * (0.2 + 0.0002))
    assert provider.estimate_cost(100, 1_000_000) == pytest.approx(30.0)


@pytest.mark.asyncio
async def test_create_job_refuses_jobs_with_a_status(
    context: ProcessingContext, ops: OpsManager
) -> None:
    provider = create_provider("mt", debug_provider_config(), context, ops)
    with pytest.raises(ValueError, match="不能再次创建"):
        await provider.create_job(make_job(_segments(1), status=JobStatus.REQ))


def test_quota_blocks_large_jobs(context: ProcessingContext, ops: OpsManager) -> None:
    provider = create_provider("mt", debug_provider_config(quota=2), context, ops)
    assert not provider.exceeds_quota(make_job(_segments(2)))
    assert provider.exceeds_quota(make_job(_segments(3)))


@pytest.mark.asyncio
async def test_info_describes_the_provider(context: ProcessingContext, ops: OpsManager) -> None:
    provider = create_provider("mt", debug_provider_config(), context, ops)
    info = await provider.info()
    assert info["id"] == "mt"
    assert info["type"] == "DebugProvider"
    assert info["quality"] == 70
