"""
FastAPI 服务入口。

这里做三件事：
- 加载配置（严格校验环境变量，缺失直接启动失败）
- 组装外部依赖（HTTP Client / 模型后端 / GitLab client）
- 装配路由（health + gitlab webhook）

注意：
- 业务流程不写在这里（由 `review/orchestrator.py` 负责）
- `httpx.AsyncClient` 会被复用，并在应用关闭时释放

启动：
  python -m codereviewer.main
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
import uvicorn
from fastapi import FastAPI

from codereviewer.config import load_config_from_env
from codereviewer.gitlab.client import GitLabClient
from codereviewer.gitlab.webhook import build_gitlab_webhook_router
from codereviewer.llm.client import build_model_backend
from codereviewer.review.orchestrator import ReviewOrchestrator
from codereviewer.review.orchestrator import build_webhook_handler

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


def build_app(environ: Mapping[str, str] | None = None) -> FastAPI:
    """创建并返回 FastAPI app（便于测试/复用）。"""

    # 1) 配置：缺失会直接抛错，启动失败（这是期望行为）
    config = load_config_from_env(os.environ if environ is None else environ)
    configure_logging(config.log_level)
    logger.info(f"CodeReviewer configured: provider={config.llm.provider}, gitlab={config.gitlab.base_url}")

    # 2) 可复用的 HTTP client：供 GitLab API 与模型后端使用
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(30.0))

    # 3) 模型后端：启动时按 AI_PROVIDER 选定，之后不再变化
    model_backend = build_model_backend(config=config.llm, http_client=http_client)

    gitlab_client = GitLabClient(
        base_url=str(config.gitlab.base_url),
        private_token=config.gitlab.token,
        http_client=http_client,
    )
    orchestrator = ReviewOrchestrator(
        model_backend=model_backend,
        gitlab=gitlab_client,
        max_backend_attempts=config.review.max_backend_attempts,
        retry_delay_seconds=config.review.retry_delay_seconds,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await http_client.aclose()

    app = FastAPI(title="CodeReviewer", version="0.1.0", lifespan=lifespan)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """健康检查：用于 k8s / LB 探活。"""
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    handler = build_webhook_handler(orchestrator=orchestrator)
    app.include_router(build_gitlab_webhook_router(config=config.gitlab, handler=handler))
    return app


def main() -> None:
    config = load_config_from_env(os.environ)
    # 用 factory 模式：模块导入时不读环境变量
    uvicorn.run("codereviewer.main:build_app", factory=True, host="0.0.0.0", port=config.port)


if __name__ == "__main__":
    main()
