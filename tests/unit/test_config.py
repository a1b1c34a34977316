# tests/unit/test_config.py
"""测试 LocHubConfig 的默认值、环境变量覆盖与校验。"""

import pytest
from pydantic import ValidationError

from lochub.config import MEMORY, LocHubConfig, RetryPolicyConfig


def test_defaults() -> None:
    config = LocHubConfig(_env_file=None)
    assert config.min_quality == 50
    assert config.ops_db == MEMORY
    assert config.retry_policy.max_attempts == 2
    assert config.logging.format == "console"
    assert not config.in_memory


def test_environment_overrides_with_nested_delimiter(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LH_MIN_QUALITY", "70")
    monkeypatch.setenv("LH_TM_DIR", MEMORY)
    monkeypatch.setenv("LH_RETRY_POLICY__MAX_ATTEMPTS", "5")
    monkeypatch.setenv("LH_TARGET_LANGS", '["de", "fr"]')

    config = LocHubConfig(_env_file=None)

    assert config.min_quality == 70
    assert config.in_memory
    assert config.retry_policy.max_attempts == 5
    assert config.target_langs == ["de", "fr"]


def test_invalid_language_codes_are_rejected() -> None:
    with pytest.raises(ValidationError, match="格式无效"):
        LocHubConfig(_env_file=None, target_langs=["de", "german"])


def test_provider_order_must_reference_configured_providers() -> None:
    with pytest.raises(ValidationError, match="未配置的提供方"):
        LocHubConfig(_env_file=None, provider_configs={"a": {}}, provider_order=["b"])


def test_ordered_provider_ids_appends_unordered_providers() -> None:
    config = LocHubConfig(
        _env_file=None,
        provider_configs={"a": {}, "b": {}, "c": {}},
        provider_order=["c"],
    )
    assert config.ordered_provider_ids() == ["c", "a", "b"]


def test_retry_policy_backoff_is_capped() -> None:
    policy = RetryPolicyConfig(initial_backoff=1.0, max_backoff=5.0)
    assert [policy.backoff_for(n) for n in range(4)] == [1.0, 2.0, 4.0, 5.0]
    with pytest.raises(ValidationError, match="max_backoff"):
        RetryPolicyConfig(initial_backoff=10.0, max_backoff=1.0)
