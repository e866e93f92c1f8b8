"""把 finding 映射成 GitLab 可以行内展示的 position（纯映射，无 I/O）。"""

from __future__ import annotations

from codereviewer.review.models import CommentPosition
from codereviewer.review.models import FileDiff
from codereviewer.review.models import ModelFinding
from codereviewer.review.models import PositionedComment
from codereviewer.review.models import ReviewContext


def position_finding(finding: ModelFinding, diff: FileDiff, context: ReviewContext) -> PositionedComment:
    """
    - SHA 原样来自 ReviewContext（描述的是 MR 快照，不是单文件）
    - old_path 只在重命名时填写，否则省略
    - position_type 固定为 "text"（只做行级评论）
    """
    refs = context.diff_refs
    return PositionedComment(
        body=finding.comment,
        position=CommentPosition(
            base_sha=refs.base_sha,
            start_sha=refs.start_sha,
            head_sha=refs.head_sha,
            old_path=diff.old_path if diff.path_changed else None,
            new_path=diff.new_path,
            position_type="text",
            new_line=finding.line,
        ),
    )
