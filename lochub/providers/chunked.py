# lochub/providers/chunked.py
"""
分块远程提供方：把作业切成若干分块，每块一个叶子操作，最后由一个
幂等的合并操作按请求顺序重组结果。

同步提供方在一次任务中完成“翻译→合并”。异步（webhook/轮询）提供方
的第一个任务只提交分块并记录 pending；之后由一个单独的抓取任务，
依据作业信封中保存的分块元数据完成“抓取→合并”。
"""

from typing import TYPE_CHECKING, Any, Optional, TypeVar

from lochub._tm.normalizers import (
    extract_normalized_parts_from_xml,
    flatten_normalized_source_to_xml,
)
from lochub.core.exceptions import ChunkSizeError, ConfigurationError, ProviderContractError
from lochub.core.types import Job, JobStatus, TranslationUnit
from lochub.ops.task import Task
from lochub.providers.base import BaseProviderConfig, BaseTranslationProvider

if TYPE_CHECKING:
    from lochub.context import ProcessingContext
    from lochub.ops.manager import OpsManager

_ConfigType = TypeVar("_ConfigType", bound=BaseProviderConfig)
# 适配器可以随译文一起返回的附加字段
_PASSTHROUGH_FIELDS = frozenset({"cost", "notes", "tu_props"})


class ChunkedTranslationProvider(BaseTranslationProvider[_ConfigType]):
    """
    子类按自身的交互方式实现以下钩子之一：

    - 同步: `translate_chunk`
    - 异步: `submit_chunk` 与 `fetch_chunk`
    """

    SYNCHRONOUS: bool = True

    def __init__(
        self,
        provider_id: str,
        config: _ConfigType,
        context: "ProcessingContext",
        ops: "OpsManager",
    ):
        super().__init__(provider_id, config, context, ops)
        if config.quality is None:
            raise ConfigurationError(f"分块提供方 '{provider_id}' 必须配置 quality。")
        self.op_names = {
            "translate_chunk": f"{self.id}.translate_chunk",
            "merge_translated_chunks": f"{self.id}.merge_translated_chunks",
            "submit_chunk": f"{self.id}.submit_chunk",
            "wait_submissions": f"{self.id}.wait_submissions",
            "fetch_chunk": f"{self.id}.fetch_chunk",
        }
        ops.register_op(self.op_names["translate_chunk"], self._op_translate_chunk, idempotent=False)
        ops.register_op(
            self.op_names["merge_translated_chunks"], self._op_merge_translated_chunks, idempotent=True
        )
        ops.register_op(self.op_names["submit_chunk"], self._op_submit_chunk, idempotent=False)
        ops.register_op(self.op_names["wait_submissions"], self._op_wait_submissions, idempotent=True)
        ops.register_op(self.op_names["fetch_chunk"], self._op_fetch_chunk, idempotent=True)

    @property
    def synchronous(self) -> bool:
        return self.SYNCHRONOUS

    # ------------------------------------------------------------------ 契约

    async def request_translations(self, job_request: Job) -> Job:
        if self.synchronous:
            return await self._translate(job_request)

        task, guids, chunk_sizes, tu_meta = self._build_translate_task(job_request, synchronous=False)
        await task.execute(parallelism=self.config.parallelism)
        self.logger.info(
            "分块已提交，作业等待结果。", job_guid=job_request.job_guid, chunks=len(chunk_sizes)
        )
        return job_request.model_copy(
            update={
                "status": JobStatus.PENDING,
                "tus": None,
                "inflight": guids,
                "envelope": {"chunk_sizes": chunk_sizes, "tu_meta": tu_meta},
                "task_name": task.task_name,
            }
        )

    async def fetch_translations(self, pending_job: Job, job_request: Job) -> Optional[Job]:
        envelope = pending_job.envelope or {}
        chunk_sizes: list[int] = envelope.get("chunk_sizes") or []
        if not chunk_sizes:
            raise ProviderContractError(f"作业 '{pending_job.job_guid}' 缺少分块信封，无法抓取。")

        # 每个作业只有一个抓取任务：反复轮询覆盖同一条记录
        task = self.ops.create_task(task_name=f"Task-{self.id}-fetch-{pending_job.job_guid}")
        handles = [
            task.enqueue(
                self.op_names["fetch_chunk"],
                {"job_guid": pending_job.job_guid, "chunk": idx, "chunk_size": size},
            )
            for idx, size in enumerate(chunk_sizes)
        ]
        task.commit(
            self.op_names["merge_translated_chunks"],
            self._merge_args(pending_job.inflight or [], envelope.get("tu_meta") or {}, chunk_sizes),
            handles,
        )
        merged = await task.execute(parallelism=self.config.parallelism)
        if merged is None:
            self.logger.debug("结果尚未就绪。", job_guid=pending_job.job_guid)
            return None
        return pending_job.model_copy(
            update={
                "status": JobStatus.DONE,
                "inflight": None,
                "tus": [TranslationUnit.model_validate(tu) for tu in merged],
                "task_name": task.task_name,
            }
        )

    async def refresh_translations(self, job_request: Job) -> Job:
        return await self._translate(job_request)

    # ------------------------------------------------------------------ 钩子

    async def translate_chunk(
        self,
        chunk: int,
        source_lang: str,
        target_lang: str,
        src: list[str],
        instructions: Optional[str],
    ) -> list[Any]:
        """[子类实现] 同步翻译一个分块，返回与 src 等长的译文列表。"""
        raise NotImplementedError(f"{self.__class__.__name__} 未实现 translate_chunk")

    async def submit_chunk(
        self,
        job_guid: str,
        chunk: int,
        source_lang: str,
        target_lang: str,
        src: list[str],
        instructions: Optional[str],
    ) -> Any:
        """[子类实现] 提交一个分块，返回可 JSON 序列化的回执。"""
        raise NotImplementedError(f"{self.__class__.__name__} 未实现 submit_chunk")

    async def fetch_chunk(self, job_guid: str, chunk: int, chunk_size: int) -> Optional[list[Any]]:
        """[子类实现] 抓取一个分块的结果；尚未就绪时返回 None。"""
        raise NotImplementedError(f"{self.__class__.__name__} 未实现 fetch_chunk")

    def convert_translation_response(self, chunk: list[Any]) -> list[dict[str, Any]]:
        """把钩子返回的译文统一为 `{"tgt": ...}` 字典；字典中的其他键（如 cost）原样保留。"""
        return [item if isinstance(item, dict) else {"tgt": item} for item in chunk]

    # ------------------------------------------------------------------ 内部

    async def _translate(self, job_request: Job) -> Job:
        task, _, _, _ = self._build_translate_task(job_request, synchronous=True)
        merged = await task.execute(parallelism=self.config.parallelism)
        return job_request.model_copy(
            update={
                "status": JobStatus.DONE,
                "inflight": None,
                "tus": [TranslationUnit.model_validate(tu) for tu in merged],
                "task_name": task.task_name,
            }
        )

    def _build_translate_task(
        self, job: Job, synchronous: bool
    ) -> tuple[Task, list[str], list[int], dict[str, Any]]:
        tus = job.tus or []
        payload: list[str] = []
        tu_meta: dict[str, Any] = {}
        for idx, tu in enumerate(tus):
            text, ph_map = flatten_normalized_source_to_xml(tu.nsrc or [])
            if ph_map:
                tu_meta[str(idx)] = ph_map
            payload.append(text)

        task = self.ops.create_task(self.id)
        task.set_context({"instructions": job.instructions})
        leaf_op = self.op_names["translate_chunk" if synchronous else "submit_chunk"]
        handles = []
        chunk_sizes = []
        for src in self.chunk_payload(payload):
            chunk_sizes.append(len(src))
            handles.append(
                task.enqueue(
                    leaf_op,
                    {
                        "source_lang": job.source_lang,
                        "target_lang": job.target_lang,
                        "src": src,
                        "job_guid": job.job_guid,
                        "chunk": len(handles),
                    },
                )
            )
        guids = [tu.guid for tu in tus]
        if synchronous:
            task.commit(
                self.op_names["merge_translated_chunks"],
                self._merge_args(guids, tu_meta, chunk_sizes),
                handles,
            )
        else:
            task.commit(self.op_names["wait_submissions"], {"job_guid": job.job_guid}, handles)
        return task, guids, chunk_sizes, tu_meta

    def chunk_payload(self, payload: list[str]) -> list[list[str]]:
        """按最大条数与最大字符数切分；单个超长片段本身就是错误。"""
        chunks: list[list[str]] = []
        idx = 0
        while idx < len(payload):
            src: list[str] = []
            total_length = 0
            while (
                idx < len(payload)
                and len(src) < self.config.max_chunk_size
                and len(payload[idx]) + total_length < self.config.max_char_length
            ):
                total_length += len(payload[idx])
                src.append(payload[idx])
                idx += 1
            if not src:
                raise ChunkSizeError(
                    f"索引 {idx} 处的片段超过了最大字符长度 {self.config.max_char_length}"
                )
            self.logger.debug("准备分块翻译。", strings=len(src), total_length=total_length)
            chunks.append(src)
        return chunks

    def _merge_args(
        self, guids: list[str], tu_meta: dict[str, Any], chunk_sizes: list[int]
    ) -> dict[str, Any]:
        return {
            "guids": guids,
            "tu_meta": tu_meta,
            "quality": self.quality,
            "ts": self.context.tu_timestamp(),
            "chunk_sizes": chunk_sizes,
        }

    async def _op_translate_chunk(self, args: dict[str, Any], inputs: list[Any], ctx: Any) -> list[Any]:
        instructions = (ctx or {}).get("instructions")
        translations = await self._throttled(
            lambda: self.translate_chunk(
                args["chunk"], args["source_lang"], args["target_lang"], args["src"], instructions
            )
        )
        return list(translations)

    async def _op_submit_chunk(self, args: dict[str, Any], inputs: list[Any], ctx: Any) -> Any:
        instructions = (ctx or {}).get("instructions")
        return await self._throttled(
            lambda: self.submit_chunk(
                args["job_guid"],
                args["chunk"],
                args["source_lang"],
                args["target_lang"],
                args["src"],
                instructions,
            )
        )

    async def _op_wait_submissions(self, args: dict[str, Any], chunks: list[Any], ctx: Any) -> int:
        for idx, receipt in enumerate(chunks):
            self.logger.debug("分块已入队。", job_guid=args.get("job_guid"), chunk=idx, receipt=receipt)
        return len(chunks)

    async def _op_fetch_chunk(self, args: dict[str, Any], inputs: list[Any], ctx: Any) -> Optional[list[Any]]:
        result = await self._throttled(
            lambda: self.fetch_chunk(args["job_guid"], args["chunk"], args["chunk_size"])
        )
        return None if result is None else list(result)

    async def _op_merge_translated_chunks(
        self, args: dict[str, Any], chunks: list[Any], ctx: Any
    ) -> Optional[list[dict[str, Any]]]:
        """按请求顺序重组分块结果，并校验每块的译文数量。任一分块未就绪则返回 None。"""
        if any(chunk is None for chunk in chunks):
            return None
        chunk_sizes = args["chunk_sizes"]
        translations: list[dict[str, Any]] = []
        for idx, chunk in enumerate(chunks):
            converted = self.convert_translation_response(chunk)
            if len(converted) != chunk_sizes[idx]:
                raise ProviderContractError(
                    f"分块 {idx} 应返回 {chunk_sizes[idx]} 条译文，实际返回 {len(converted)} 条"
                )
            translations.extend(converted)

        guids = args["guids"]
        if len(translations) != len(guids):
            raise ProviderContractError(
                f"合并后应有 {len(guids)} 条译文，实际为 {len(translations)} 条"
            )
        tu_meta = args.get("tu_meta") or {}
        merged = []
        for idx, (guid, translation) in enumerate(zip(guids, translations)):
            extra = {k: v for k, v in translation.items() if k in _PASSTHROUGH_FIELDS}
            try:
                ntgt = extract_normalized_parts_from_xml(
                    str(translation.get("tgt", "")), tu_meta.get(str(idx), {})
                )
            except KeyError as e:
                raise ProviderContractError(f"译文 {idx} 引用了未知的占位符 {e}") from e
            tu = TranslationUnit(guid=guid, ntgt=ntgt, q=args["quality"], ts=args["ts"], **extra)
            merged.append(tu.model_dump(mode="json", exclude_none=True))
        return merged
