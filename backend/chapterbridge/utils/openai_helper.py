"""OpenAI structured-completion helpers.

Review note:
- 只使用 response_format=json_object，返回值一律经过 pydantic 校验。
- 传输层错误（超时、限流、5xx）按 min(1.5*attempt, 4) 秒退避重试。
- 结构校验失败的纠正重试由 CorrectionLoop 显式建模：INITIAL -> CORRECTIVE -> DONE / GAVE_UP。
"""
from __future__ import annotations

from enum import Enum
from typing import List, Optional, Tuple, Type, TypeVar
import asyncio
import json
import logging

from httpx import Timeout
from openai import AsyncOpenAI, APIConnectionError, APIStatusError
from pydantic import BaseModel, ValidationError

logger = logging.getLogger("uvicorn.error")

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class LLMConfigError(ValueError):
    """LLM 配置缺失（API Key / 模型名）"""


class LLMServiceError(RuntimeError):
    """LLM 请求失败（重试后仍失败）"""


class LLMSchemaError(ValueError):
    """LLM 返回无法通过结构校验"""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


def parse_structured(raw: str, schema: Type[SchemaT]) -> SchemaT:
    """解析 JSON 文本并按 schema 校验"""
    text = (raw or "").strip()
    if not text:
        raise LLMSchemaError("empty response", raw=raw or "")
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise LLMSchemaError(f"invalid JSON: {exc}", raw=text) from exc
    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise LLMSchemaError(f"schema validation failed: {exc}", raw=text) from exc


class CorrectionState(str, Enum):
    INITIAL = "initial"
    CORRECTIVE = "corrective"
    DONE = "done"
    GAVE_UP = "gave_up"


class CorrectionLoop:
    """一次请求 + 至多 max_corrections 次纠正重试的状态机"""

    def __init__(self, system_prompt: str, user_prompt: str, max_corrections: int = 1) -> None:
        self.system_prompt = system_prompt
        self.user_prompt = user_prompt
        self.max_corrections = max(0, int(max_corrections))
        self.state = CorrectionState.INITIAL
        self.corrections = 0
        self.attempts = 0
        self.last_raw = ""
        self.last_error = ""

    @property
    def active(self) -> bool:
        return self.state in (CorrectionState.INITIAL, CorrectionState.CORRECTIVE)

    def messages(self) -> List[dict]:
        """当前状态下应发送的消息列表"""
        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self.user_prompt},
        ]
        if self.state == CorrectionState.CORRECTIVE:
            messages.append({"role": "assistant", "content": self.last_raw})
            messages.append(
                {
                    "role": "user",
                    "content": (
                        "Your previous response failed validation: "
                        f"{self.last_error}\n"
                        "Return ONLY a single JSON object that matches the required schema exactly."
                    ),
                }
            )
        return messages

    def record_success(self) -> None:
        self.attempts += 1
        self.state = CorrectionState.DONE

    def record_failure(self, raw: str, error: str) -> bool:
        """记录一次校验失败；返回是否还要继续重试"""
        self.attempts += 1
        self.last_raw = raw or ""
        self.last_error = error
        if self.corrections < self.max_corrections:
            self.corrections += 1
            self.state = CorrectionState.CORRECTIVE
            return True
        self.state = CorrectionState.GAVE_UP
        return False


class StructuredCompletionClient:
    """基于 AsyncOpenAI 的 JSON 结构化补全客户端"""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        timeout_sec: int = 120,
        transport_retries: int = 2,
    ) -> None:
        if not api_key:
            raise LLMConfigError("OPENAI_API_KEY is not configured.")
        if not model:
            raise LLMConfigError("OPENAI_MODEL is not configured.")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.transport_retries = max(0, int(transport_retries))

        client_kwargs = {
            "api_key": api_key,
            "timeout": Timeout(float(timeout_sec)),
            "max_retries": 0,
        }
        if base_url:
            client_kwargs["base_url"] = base_url
        self._client = AsyncOpenAI(**client_kwargs)

    async def _request(self, messages: List[dict]) -> str:
        """单次补全请求，返回原始文本"""
        resp = await self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
        )
        return (resp.choices[0].message.content or "").strip()

    async def _request_with_retry(self, messages: List[dict]) -> str:
        last_err: Optional[Exception] = None
        total = self.transport_retries + 1
        for attempt in range(1, total + 1):
            try:
                return await self._request(messages)
            except (APIConnectionError, APIStatusError) as exc:
                status = getattr(exc, "status_code", None)
                if status is not None and status < 500 and status not in (408, 409, 429):
                    raise LLMServiceError(f"LLM request rejected: status={status} {exc}") from exc
                last_err = exc
                if attempt >= total:
                    break
                logger.warning("llm-retry attempt=%d/%d error=%s", attempt, total, str(exc)[:180])
                await asyncio.sleep(min(1.5 * attempt, 4))
        raise LLMServiceError(f"LLM request failed: {last_err}") from last_err

    async def complete(self, system_prompt: str, user_prompt: str, schema: Type[SchemaT]) -> SchemaT:
        """单次请求并校验；失败抛出 LLMSchemaError，由调用方决定是否纠正重试"""
        raw = await self._request_with_retry(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ]
        )
        return parse_structured(raw, schema)

    async def complete_with_correction(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: Type[SchemaT],
        max_corrections: int = 1,
    ) -> Tuple[SchemaT, CorrectionLoop]:
        """带纠正重试的结构化补全；仍失败时抛出最后一次的 LLMSchemaError"""
        loop = CorrectionLoop(system_prompt, user_prompt, max_corrections=max_corrections)
        while True:
            raw = await self._request_with_retry(loop.messages())
            try:
                parsed = parse_structured(raw, schema)
            except LLMSchemaError as exc:
                logger.warning(
                    "llm-schema-invalid state=%s attempt=%d error=%s",
                    loop.state.value,
                    loop.attempts + 1,
                    str(exc)[:180],
                )
                if not loop.record_failure(raw, str(exc)[:1000]):
                    raise
                continue
            loop.record_success()
            return parsed, loop

    async def close(self) -> None:
        await self._client.close()
