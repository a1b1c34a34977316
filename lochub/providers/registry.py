# lochub/providers/registry.py
"""本模块负责动态发现和加载 `lochub.providers` 包下所有可用的翻译提供方。"""

import importlib
import inspect
import pkgutil
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from lochub.core.exceptions import ConfigurationError, ProviderNotFoundError
from lochub.providers.base import BaseTranslationProvider

if TYPE_CHECKING:
    from lochub.context import ProcessingContext
    from lochub.ops.manager import OpsManager

log = structlog.get_logger(__name__)
PROVIDER_REGISTRY: dict[str, type[BaseTranslationProvider[Any]]] = {}

# 这些模块只包含基类或工具，不包含可直接实例化的提供方
_SKIPPED_MODULES = {"base", "chunked", "registry"}


def discover_providers() -> None:
    """
    动态发现 `lochub.providers` 包下的所有提供方并注册。

    此函数是幂等的，只在首次调用时执行发现操作。
    """
    if PROVIDER_REGISTRY:
        return

    import lochub.providers

    successful: list[str] = []
    skipped: list[dict[str, str]] = []

    for module_info in pkgutil.iter_modules(lochub.providers.__path__):
        module_name = module_info.name
        if module_name in _SKIPPED_MODULES or module_name.startswith("_"):
            continue
        try:
            module = importlib.import_module(f"lochub.providers.{module_name}")
        except ImportError as e:
            skipped.append({"provider": module_name, "missing_dependency": str(e.name)})
            continue
        for _, attr in inspect.getmembers(module, inspect.isclass):
            if (
                issubclass(attr, BaseTranslationProvider)
                and not inspect.isabstract(attr)
                and attr.__module__ == module.__name__
            ):
                provider_type = attr.__name__.replace("Provider", "").lower()
                PROVIDER_REGISTRY[provider_type] = attr
                successful.append(provider_type)

    log_payload: dict[str, Any] = {}
    if successful:
        log_payload["registered"] = sorted(successful)
    if skipped:
        log_payload["skipped"] = skipped
    log.info("提供方发现完成。", **log_payload)


def create_provider(
    provider_id: str,
    raw_config: dict[str, Any],
    context: "ProcessingContext",
    ops: "OpsManager",
) -> BaseTranslationProvider[Any]:
    """
    根据配置字典实例化一个提供方。

    配置中的 `type` 键选择提供方类型，缺省时使用 provider_id 本身。
    """
    discover_providers()
    settings = dict(raw_config)
    provider_type = str(settings.pop("type", provider_id)).lower()
    provider_class = PROVIDER_REGISTRY.get(provider_type)
    if provider_class is None:
        raise ProviderNotFoundError(
            f"未知的提供方类型 '{provider_type}'。可用类型: {sorted(PROVIDER_REGISTRY)}"
        )
    try:
        config = provider_class.CONFIG_MODEL.model_validate(settings)
    except ValidationError as e:
        raise ConfigurationError(f"提供方 '{provider_id}' 的配置无效: {e}") from e
    return provider_class(provider_id, config, context, ops)
