# lochub/core/exceptions.py
"""
本模块定义了 LocHub 项目中所有自定义的、语义化的异常类型。

异常分为两类：数据完整性类（契约违规、事务失败）总是向上传播到顶层的
派发调用；“尚未就绪”与“无需变更”两种情况不使用异常，而是在本地吸收。
"""

from __future__ import annotations


class LocHubError(Exception):
    """所有 LocHub 自定义异常的通用基类。"""


class ConfigurationError(LocHubError):
    """加载、解析或验证配置时发生的错误。"""


class ProviderNotFoundError(LocHubError, KeyError):
    """
    尝试访问一个未注册或未配置的翻译提供方时引发的错误。
    继承自 KeyError 是为了保持与字典查找行为的一致性。
    """


class DatabaseError(LocHubError):
    """持久化层操作失败。事务在此异常传播之前已经回滚。"""


class ProviderError(LocHubError):
    """
    提供方的瞬时失败（网络错误、限流等）。

    执行器不会自动重试此类错误；是否重发由适配器自己决定，
    因为只有适配器知道重发是否安全。
    """


class ProviderContractError(LocHubError):
    """
    提供方违反了契约，例如某个分块返回的译文数量与请求数量不一致。
    这是致命错误：任务中止，且永不自动重试。
    """


class ChunkSizeError(ProviderContractError):
    """单个翻译单元本身就超过了分块的最大尺寸。"""


class OpRegistrationError(LocHubError):
    """同名操作已被注册为另一个回调。"""


class OpNotFoundError(LocHubError, KeyError):
    """引用了一个未在注册表中登记的操作。"""


class TaskExecutionError(LocHubError):
    """任务未能完成。原始异常通过 __cause__ 链接。"""

    def __init__(
        self,
        message: str,
        *,
        task_name: str,
        op_id: int | None = None,
        op_name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.task_name = task_name
        self.op_id = op_id
        self.op_name = op_name


class InvalidJobStateError(LocHubError):
    """对一个当前状态不允许该动作的作业执行了操作。"""


def is_transient_provider_failure(error: BaseException) -> bool:
    """
    判断一个错误是否是可以按作业吸收的提供方瞬时失败。

    执行器把叶子操作的异常包装为 TaskExecutionError，因此也检查 __cause__。
    契约违规与事务失败不属于此类，必须传播。
    """
    if isinstance(error, ProviderError):
        return True
    return isinstance(error, TaskExecutionError) and isinstance(error.__cause__, ProviderError)
