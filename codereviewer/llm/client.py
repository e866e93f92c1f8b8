"""
模型后端适配层。

目标：
- **尽量薄**：只做协议适配与错误处理，返回原始文本；解析不是这里的职责
- **统一接口**：两个后端都实现 `generate(system_prompt, user_prompt) -> str`
- **不重试**：网络/后端错误统一包成 `ModelBackendError` 抛给调用方，重试策略归 orchestrator

后端选择只发生在 `build_model_backend` 一处，其它代码不按 provider 分支。
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from openai import DEFAULT_TIMEOUT, AsyncOpenAI, OpenAIError
from pydantic import BaseModel

from codereviewer.config import OllamaProviderConfig
from codereviewer.config import OpenAIProviderConfig

logger = logging.getLogger(__name__)

REVIEW_TEMPERATURE = 0.3
OLLAMA_NUM_PREDICT = 2000
OLLAMA_TIMEOUT_SECONDS = 120.0
JSON_ONLY_REMINDER = "Remember to respond with valid JSON only."


class ModelBackendError(RuntimeError):
    """模型后端调用失败（网络、超时、API 错误、非 2xx）。"""


class ChatMessage(BaseModel):
    """OpenAI chat message 的最小结构。"""

    role: str
    content: str


class ModelBackend(Protocol):
    """orchestrator 依赖的唯一接口。"""

    async def generate(self, system_prompt: str, user_prompt: str) -> str: ...


def _normalize_base_url(base_url: str) -> str:
    normalized = base_url.rstrip("/")
    if normalized.endswith("/v1"):
        return normalized
    return f"{normalized}/v1"


class OpenAIBackend:
    """
    托管 API 后端（OpenAI chat completions，JSON mode）。

    - temperature 固定 0.3：偏向确定、保守的发现
    - max_retries=0：SDK 内部不重试
    - timeout 用 SDK 默认值，不继承共享连接池的 30s
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        http_client: httpx.AsyncClient,
        base_url: str | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("OpenAI API key is required")
        self._model = model
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=_normalize_base_url(base_url) if base_url else None,
            http_client=http_client,
            max_retries=0,
            timeout=DEFAULT_TIMEOUT,
        )

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        messages = [
            ChatMessage(role="system", content=system_prompt),
            ChatMessage(role="user", content=user_prompt),
        ]
        try:
            logger.info(f"LLM request: provider=openai, model={self._model}")
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[m.model_dump() for m in messages],
                response_format={"type": "json_object"},
                temperature=REVIEW_TEMPERATURE,
            )
        except OpenAIError as exc:
            logger.error(f"LLM API error: {exc}")
            raise ModelBackendError(f"OpenAI request failed: {exc}") from exc
        except httpx.HTTPError as exc:
            logger.error(f"LLM HTTP error: {exc}")
            raise ModelBackendError(f"OpenAI request failed: {exc}") from exc

        if not response.choices:
            logger.warning("LLM returned no choices")
            return ""
        content = response.choices[0].message.content
        if content is None:
            logger.warning("LLM returned None content")
            return ""

        logger.info(f"LLM response: {len(content)} chars")
        return content


class OllamaBackend:
    """
    本地推理后端（Ollama `/api/generate`，非流式）。

    本地推理没有天然的截止时间，所以每次请求都带 2 分钟硬超时。
    """

    def __init__(self, base_url: str, model: str, http_client: httpx.AsyncClient) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._http_client = http_client

    def _build_prompt(self, system_prompt: str, user_prompt: str) -> str:
        return f"{system_prompt}\n\n{user_prompt}\n\n{JSON_ONLY_REMINDER}"

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        url = f"{self._base_url}/api/generate"
        payload = {
            "model": self._model,
            "prompt": self._build_prompt(system_prompt, user_prompt),
            "stream": False,
            "options": {"temperature": REVIEW_TEMPERATURE, "num_predict": OLLAMA_NUM_PREDICT},
        }
        try:
            logger.info(f"LLM request: provider=ollama, model={self._model}")
            response = await self._http_client.post(
                url,
                json=payload,
                timeout=httpx.Timeout(OLLAMA_TIMEOUT_SECONDS),
            )
        except httpx.TimeoutException as exc:
            logger.error(f"Ollama request timed out after {OLLAMA_TIMEOUT_SECONDS:.0f}s")
            raise ModelBackendError(f"Ollama request timed out: {exc}") from exc
        except httpx.ConnectError as exc:
            logger.error(f"Cannot connect to Ollama at {self._base_url}. Is Ollama running?")
            raise ModelBackendError(f"Cannot connect to Ollama at {self._base_url}") from exc
        except httpx.HTTPError as exc:
            logger.error(f"Error calling Ollama API: {exc}")
            raise ModelBackendError(f"Ollama request failed: {exc}") from exc

        if response.status_code >= 400:
            logger.error(f"Ollama API error {response.status_code}: {response.text}")
            raise ModelBackendError(f"Ollama API error {response.status_code}: {response.text}")

        try:
            data = response.json()
        except ValueError as exc:
            raise ModelBackendError(f"Ollama returned a non-JSON body: {response.text}") from exc

        content = data.get("response") if isinstance(data, dict) else None
        if not isinstance(content, str):
            logger.warning("Ollama returned no response text")
            return ""

        logger.info(f"LLM response: {len(content)} chars")
        return content


def build_model_backend(
    config: OpenAIProviderConfig | OllamaProviderConfig,
    http_client: httpx.AsyncClient,
) -> ModelBackend:
    """启动时按配置选择后端（唯一的 provider 分支点）。"""
    if isinstance(config, OpenAIProviderConfig):
        base_url = str(config.base_url) if config.base_url is not None else None
        logger.info(f"Using OpenAI provider (model={config.model})")
        return OpenAIBackend(api_key=config.api_key, model=config.model, http_client=http_client, base_url=base_url)
    if isinstance(config, OllamaProviderConfig):
        logger.info(f"Using Ollama provider at {config.base_url} (model={config.model})")
        return OllamaBackend(base_url=str(config.base_url), model=config.model, http_client=http_client)
    raise ValueError(f"Unsupported AI provider config: {type(config).__name__}")
