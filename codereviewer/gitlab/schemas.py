"""
GitLab Webhook / API response schemas（Pydantic）。

为什么要单独放 schema：
- GitLab 的 payload 结构复杂，直接用 dict 容易写错 key
- schema 校验失败会立刻暴露问题（比“默默 None”安全）

说明：
- 这里的字段只覆盖 review 链路所需子集，未声明的字段会被忽略
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class GitLabMergeRequestStateView(BaseModel):
    """过滤用的宽松视图：只看 iid/state/action，缺字段也不报错。"""

    iid: int | None = None
    state: str | None = None
    action: str | None = None


class GitLabWebhookEnvelope(BaseModel):
    """
    任意 webhook 的公共外壳：先只看 object_kind 再决定要不要细解析。

    没有 object_kind 的 payload 视为“非 MR 事件”，直接忽略，不算格式错误。
    """

    object_kind: str | None = None


class GitLabMergeRequestEnvelope(BaseModel):
    """MR 事件的宽松外壳：state/action 过滤在严格校验之前完成。"""

    object_attributes: GitLabMergeRequestStateView


class GitLabProject(BaseModel):
    """Webhook 里的 project 子结构。"""

    id: int
    web_url: str | None = None


class GitLabDiffRefs(BaseModel):
    """
    MR 的 diff refs（行内评论 position 必需）。

    webhook payload 里可能缺失或只给一部分，所以三个字段都允许为空。
    """

    base_sha: str | None = None
    start_sha: str | None = None
    head_sha: str | None = None


class GitLabMergeRequestObjectAttributes(BaseModel):
    """Merge request webhook 的 object_attributes 子结构。"""

    id: int | None = None
    iid: int
    title: str = ""
    description: str | None = None
    state: str
    action: str | None = None
    diff_refs: GitLabDiffRefs | None = None


class GitLabMergeRequestWebhookEvent(BaseModel):
    """Merge request webhook 的最小结构。"""

    object_kind: str
    project: GitLabProject
    object_attributes: GitLabMergeRequestObjectAttributes


class GitLabDiff(BaseModel):
    """单个文件变更（包含 unified diff 字符串）。"""

    old_path: str
    new_path: str
    diff: str = ""
    new_file: bool = False
    renamed_file: bool = False
    deleted_file: bool = False


class GitLabMergeRequest(BaseModel):
    """GET /merge_requests/:iid 返回结构的子集。"""

    iid: int
    title: str = ""
    description: str | None = None
    diff_refs: GitLabDiffRefs | None = None


class GitLabNote(BaseModel):
    """MR note 返回结构。"""

    id: int
    body: str


class GitLabDiscussion(BaseModel):
    """MR discussion 返回结构（id 是字符串 hash）。"""

    id: str
    notes: list[GitLabNote] = Field(default_factory=list)
