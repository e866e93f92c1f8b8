"""
GitLab Webhook 接入层。

职责：
- （可选）校验 `X-Gitlab-Token`
- 解析 webhook payload -> Pydantic schema
- 过滤掉不关心的事件（非 MR / MR 既不是 opened 也不是 update）
- 把 review 交给后台任务，立刻返回 200（GitLab 不等 review 完成）
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import APIRouter
from fastapi import BackgroundTasks
from fastapi import Header
from fastapi import HTTPException
from fastapi import Request
from fastapi.responses import JSONResponse

from codereviewer.config import GitLabConfig
from codereviewer.gitlab.schemas import GitLabMergeRequestEnvelope
from codereviewer.gitlab.schemas import GitLabMergeRequestStateView
from codereviewer.gitlab.schemas import GitLabMergeRequestWebhookEvent
from codereviewer.gitlab.schemas import GitLabWebhookEnvelope

logger = logging.getLogger(__name__)

WebhookHandler = Callable[[GitLabMergeRequestWebhookEvent], Awaitable[None]]


def should_review(attrs: GitLabMergeRequestStateView) -> bool:
    """只处理 opened 状态或 update 动作的 MR。"""
    return attrs.state == "opened" or attrs.action == "update"


def build_gitlab_webhook_router(config: GitLabConfig, handler: WebhookHandler) -> APIRouter:
    """创建 GitLab webhook 路由。"""
    router = APIRouter()

    @router.post("/webhook/gitlab", response_model=None)
    async def gitlab_webhook(
        request: Request,
        background_tasks: BackgroundTasks,
        x_gitlab_token: str | None = Header(default=None, alias="X-Gitlab-Token"),
    ) -> dict[str, str] | JSONResponse:
        # 1) Webhook secret 校验（只有配置了才校验）
        if config.webhook_secret is not None and x_gitlab_token != config.webhook_secret:
            raise HTTPException(status_code=401, detail="Invalid webhook token")

        # 2) 先宽松解析并过滤；只有真正要 review 的事件才做严格校验
        #    格式错误属于接入层问题，返回 500
        try:
            payload = await request.json()
            envelope = GitLabWebhookEnvelope.model_validate(payload)
            if envelope.object_kind != "merge_request":
                logger.info(f"Ignoring event type: {envelope.object_kind}")
                return {"message": "Event ignored"}

            # 3) 只处理我们关心的 MR 状态/动作
            state_view = GitLabMergeRequestEnvelope.model_validate(payload).object_attributes
            if not should_review(state_view):
                logger.info(f"Ignoring MR !{state_view.iid} with state: {state_view.state}")
                return {"message": "MR state ignored"}

            event = GitLabMergeRequestWebhookEvent.model_validate(payload)
        except ValueError:
            logger.exception("Error handling webhook")
            return JSONResponse(status_code=500, content={"error": "Internal server error"})

        # 4) 后台执行 review；响应先返回给 GitLab
        attrs = event.object_attributes
        logger.info(f"Processing merge request !{attrs.iid}: {attrs.title}")
        background_tasks.add_task(handler, event)
        return {"message": "Webhook received, processing..."}

    return router
