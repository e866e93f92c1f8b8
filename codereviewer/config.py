"""
应用配置加载。

设计目标：
- **严格**：缺少必要环境变量就直接报错（避免“看起来跑了其实没配置好”）
- **类型安全**：使用 Pydantic 校验 URL/字符串等，减少运行时踩坑
- **可测试**：核心加载函数接收 `environ` 显式输入，便于单元测试

模型后端是一个封闭的 tagged union（`provider` 做 discriminator），
只在启动时选择一次，进程生命周期内固定不变。
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, HttpUrl

DEFAULT_GITLAB_HOST = "https://gitlab.com"
DEFAULT_OPENAI_MODEL = "gpt-4-turbo-preview"
DEFAULT_OLLAMA_URL = "http://ollama:11434"
DEFAULT_OLLAMA_MODEL = "codellama:13b"

_PROVIDER_ALIASES: dict[str, str] = {
    "openai": "openai",
    "hosted": "openai",
    "ollama": "ollama",
    "local": "ollama",
}


class GitLabConfig(BaseModel):
    """GitLab 相关配置（token 必填；webhook_secret 为空表示不校验 X-Gitlab-Token）。"""

    base_url: HttpUrl
    token: str = Field(min_length=1)
    webhook_secret: str | None = None


class OpenAIProviderConfig(BaseModel):
    """托管 API 后端（OpenAI / OpenAI-compatible 网关）。"""

    provider: Literal["openai"] = "openai"
    api_key: str = Field(min_length=1)
    model: str = DEFAULT_OPENAI_MODEL
    base_url: HttpUrl | None = None


class OllamaProviderConfig(BaseModel):
    """本地推理后端（Ollama HTTP endpoint）。"""

    provider: Literal["ollama"] = "ollama"
    base_url: HttpUrl = Field(default=DEFAULT_OLLAMA_URL, validate_default=True)
    model: str = DEFAULT_OLLAMA_MODEL


LLMConfig = Annotated[Union[OpenAIProviderConfig, OllamaProviderConfig], Field(discriminator="provider")]


class ReviewSettings(BaseModel):
    """
    Review 流程参数。

    - max_backend_attempts=1 表示不重试（默认行为：上游错误对该文件是终态）
    """

    max_backend_attempts: int = Field(default=1, ge=1)
    retry_delay_seconds: float = Field(default=1.0, ge=0.0)


class AppConfig(BaseModel):
    """应用运行所需的配置集合。"""

    gitlab: GitLabConfig
    llm: LLMConfig
    review: ReviewSettings = Field(default_factory=ReviewSettings)
    port: int = 3000
    log_level: str = "INFO"


def _get(environ: Mapping[str, str], key: str) -> str | None:
    """空字符串视为未设置。"""
    value = environ.get(key)
    if value is None or not value.strip():
        return None
    return value.strip()


def _get_int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = _get(environ, key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Env var {key} must be an integer, got: {raw!r}") from exc


def _get_float(environ: Mapping[str, str], key: str, default: float) -> float:
    raw = _get(environ, key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Env var {key} must be a number, got: {raw!r}") from exc


def _load_llm_config(environ: Mapping[str, str]) -> OpenAIProviderConfig | OllamaProviderConfig:
    """根据 AI_PROVIDER 选择后端配置；这是唯一一处按 provider 分支的配置代码。"""
    raw_provider = (_get(environ, "AI_PROVIDER") or "ollama").lower()
    provider = _PROVIDER_ALIASES.get(raw_provider)
    if provider is None:
        raise ValueError(f"Unsupported AI provider: {raw_provider}. Use 'openai' or 'ollama'")

    if provider == "openai":
        api_key = _get(environ, "OPENAI_API_KEY")
        if api_key is None:
            raise ValueError("OPENAI_API_KEY environment variable is required when using OpenAI provider")
        return OpenAIProviderConfig(
            api_key=api_key,
            model=_get(environ, "OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
            base_url=_get(environ, "OPENAI_BASE_URL"),
        )

    return OllamaProviderConfig(
        base_url=_get(environ, "OLLAMA_URL") or DEFAULT_OLLAMA_URL,
        model=_get(environ, "OLLAMA_MODEL") or DEFAULT_OLLAMA_MODEL,
    )


def load_config_from_env(environ: Mapping[str, str]) -> AppConfig:
    """
    从环境变量加载并校验配置。

    - **输入**：`environ`（例如 `os.environ`）
    - **输出**：`AppConfig`
    - **失败**：缺失必填项 / provider 不支持 / 数值非法则抛 `ValueError`
    """
    gitlab_token = _get(environ, "GITLAB_TOKEN")
    if gitlab_token is None:
        raise ValueError("GITLAB_TOKEN environment variable is required")

    # 交给 Pydantic 做类型校验（例如 URL 合法性）
    return AppConfig(
        gitlab=GitLabConfig(
            base_url=_get(environ, "GITLAB_HOST") or DEFAULT_GITLAB_HOST,
            token=gitlab_token,
            webhook_secret=_get(environ, "GITLAB_WEBHOOK_SECRET"),
        ),
        llm=_load_llm_config(environ),
        review=ReviewSettings(
            max_backend_attempts=_get_int(environ, "LLM_MAX_ATTEMPTS", 1),
            retry_delay_seconds=_get_float(environ, "LLM_RETRY_DELAY_SECONDS", 1.0),
        ),
        port=_get_int(environ, "PORT", 3000),
        log_level=(_get(environ, "LOG_LEVEL") or "INFO").upper(),
    )
