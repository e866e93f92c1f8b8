"""
GitLab API 客户端（外部系统连接器）。

约定：
- 这里只做“HTTP 调用 + 错误处理 + schema 校验”，不做业务决策。
- 发生错误时**直接抛错**，不要吞异常，也不在内部重试。
"""

from __future__ import annotations

import logging

import httpx

from codereviewer.gitlab.schemas import GitLabDiff
from codereviewer.gitlab.schemas import GitLabDiscussion
from codereviewer.gitlab.schemas import GitLabMergeRequest
from codereviewer.gitlab.schemas import GitLabNote
from codereviewer.review.models import CommentPosition

logger = logging.getLogger(__name__)


class GitLabAPIError(RuntimeError):
    """GitLab 返回 >= 400。"""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"GitLab API error {status_code}: {body}")
        self.status_code = status_code


class GitLabClient:
    """最小 GitLab API client：拉 diff、拉 MR 元数据、发评论。"""

    def __init__(self, base_url: str, private_token: str, http_client: httpx.AsyncClient) -> None:
        """
        - base_url: GitLab 实例地址（末尾 / 会被去掉）
        - private_token: PRIVATE-TOKEN（建议用专用机器人账号）
        - http_client: 复用的 httpx.AsyncClient
        """
        self._base_url = base_url.rstrip("/")
        self._private_token = private_token
        self._http_client = http_client

    def _headers(self) -> dict[str, str]:
        """GitLab API 鉴权头。"""
        return {"PRIVATE-TOKEN": self._private_token}

    def _mr_url(self, project_id: int, mr_iid: int) -> str:
        return f"{self._base_url}/api/v4/projects/{project_id}/merge_requests/{mr_iid}"

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code >= 400:
            raise GitLabAPIError(status_code=response.status_code, body=response.text)

    async def list_merge_request_diffs(self, project_id: int, mr_iid: int) -> list[GitLabDiff]:
        """
        获取 MR 的全部文件 diff。

        - GitLab v4 API: GET /projects/:id/merge_requests/:iid/diffs
        - 有分页；这里会拉取全部页
        """
        per_page = 100
        page = 1
        all_items: list[GitLabDiff] = []
        while True:
            response = await self._http_client.get(
                f"{self._mr_url(project_id, mr_iid)}/diffs",
                headers=self._headers(),
                params={"per_page": per_page, "page": page},
            )
            self._raise_for_status(response)
            data = response.json()
            if not isinstance(data, list):
                raise RuntimeError(f"Unexpected GitLab response shape for MR diffs: {data}")
            items = [GitLabDiff.model_validate(x) for x in data]
            all_items.extend(items)
            if len(items) < per_page:
                break
            page += 1
        return all_items

    async def get_merge_request(self, project_id: int, mr_iid: int) -> GitLabMergeRequest:
        """获取 MR 元数据（标题/描述/diff_refs）。"""
        response = await self._http_client.get(self._mr_url(project_id, mr_iid), headers=self._headers())
        self._raise_for_status(response)
        return GitLabMergeRequest.model_validate(response.json())

    async def create_merge_request_discussion(
        self,
        project_id: int,
        mr_iid: int,
        body: str,
        position: CommentPosition,
    ) -> GitLabDiscussion:
        """
        发布一条行内评论（discussion + position）。

        position 序列化时省略空字段：old_path 只在重命名时出现。
        """
        payload = {"body": body, "position": position.to_payload()}
        response = await self._http_client.post(
            f"{self._mr_url(project_id, mr_iid)}/discussions",
            headers=self._headers(),
            json=payload,
        )
        self._raise_for_status(response)
        return GitLabDiscussion.model_validate(response.json())

    async def post_merge_request_note(self, project_id: int, mr_iid: int, body: str) -> GitLabNote:
        """在 MR 下发布一条全局评论（note）。"""
        response = await self._http_client.post(
            f"{self._mr_url(project_id, mr_iid)}/notes",
            headers=self._headers(),
            json={"body": body},
        )
        self._raise_for_status(response)
        return GitLabNote.model_validate(response.json())

    async def post_comment(
        self,
        project_id: int,
        mr_iid: int,
        body: str,
        position: CommentPosition | None = None,
    ) -> None:
        """有 position 发行内评论，否则发全局 note。"""
        if position is not None:
            await self.create_merge_request_discussion(
                project_id=project_id,
                mr_iid=mr_iid,
                body=body,
                position=position,
            )
            return
        await self.post_merge_request_note(project_id=project_id, mr_iid=mr_iid, body=body)
