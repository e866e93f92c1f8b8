"""
Review 领域模型（Pydantic）。

用途：
- 明确各阶段输入/输出的数据结构（diff -> finding -> positioned comment）
- 与 GitLab 的 API schema 解耦：orchestrator 只在边界处做转换
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class FileDiff(BaseModel):
    """单个文件的变更（一次 review 内不可变）。"""

    model_config = ConfigDict(frozen=True)

    old_path: str
    new_path: str
    diff: str
    new_file: bool = False
    renamed_file: bool = False
    deleted_file: bool = False

    @property
    def path_changed(self) -> bool:
        return self.old_path != self.new_path


class DiffRefs(BaseModel):
    """MR 快照的三个 SHA（base/start/head），同一次 review 的所有评论共用。"""

    model_config = ConfigDict(frozen=True)

    base_sha: str = Field(min_length=1)
    start_sha: str = Field(min_length=1)
    head_sha: str = Field(min_length=1)


class ReviewContext(BaseModel):
    """一次 MR review 的上下文：标题/描述 + diff refs。"""

    model_config = ConfigDict(frozen=True)

    project_id: int
    mr_iid: int
    title: str
    description: str
    diff_refs: DiffRefs


class ModelFinding(BaseModel):
    """模型产出的单条发现（尚未定位）。"""

    line: int = Field(gt=0)
    comment: str = Field(min_length=1)


class CommentPosition(BaseModel):
    """
    GitLab discussion 的 position 结构。

    注意：old_path 只在路径变化时才填，序列化时用 `exclude_none` 省略该字段。
    """

    base_sha: str
    start_sha: str
    head_sha: str
    old_path: str | None = None
    new_path: str
    position_type: Literal["text", "file"] = "text"
    new_line: int

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(exclude_none=True)


class PositionedComment(BaseModel):
    """最终写回 GitLab 的单条行内评论。"""

    body: str
    position: CommentPosition


class ReviewState(str, Enum):
    """单次 MR review 的状态机。"""

    RESOLVING = "resolving"
    FETCHING = "fetching"
    ANALYZING = "analyzing"
    POSTING = "posting"
    DONE = "done"
    FAILED = "failed"


class FileFailure(BaseModel):
    """文件级 / 评论级失败记录（不会升级为整次 review 失败）。"""

    path: str
    stage: Literal["analyze", "parse", "post"]
    reason: str


class ReviewReport(BaseModel):
    """一次 review 的结果汇总（只用于日志与测试观察，不回传给 webhook 调用方）。"""

    project_id: int
    mr_iid: int
    state: ReviewState = ReviewState.RESOLVING
    files_total: int = 0
    files_skipped: int = 0
    files_analyzed: int = 0
    comments_produced: int = 0
    comments_posted: int = 0
    failures: list[FileFailure] = Field(default_factory=list)
