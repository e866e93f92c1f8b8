"""
Review Orchestrator（核心流程编排）。

关键思想：
- **流程由工程代码控制**：Resolving -> Fetching -> (Analyzing -> Posting)* -> Done
- **模型只负责生成文本**：解析、定位、发评论都是确定性代码

失败策略：
- 拿不到 diff refs / 拉不到 diff 列表：整次 review 失败（`ReviewFailedError`）
- 单个文件分析失败、单条评论发布失败：记日志 + 记入报告，继续处理下一个
- 文件严格串行：第 i 个文件的评论全部发完（或失败）后才开始分析第 i+1 个
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from codereviewer.gitlab.schemas import GitLabDiff
from codereviewer.gitlab.schemas import GitLabDiffRefs
from codereviewer.gitlab.schemas import GitLabMergeRequest
from codereviewer.gitlab.schemas import GitLabMergeRequestWebhookEvent
from codereviewer.llm.client import ModelBackend
from codereviewer.llm.client import ModelBackendError
from codereviewer.review.models import CommentPosition
from codereviewer.review.models import DiffRefs
from codereviewer.review.models import FileDiff
from codereviewer.review.models import FileFailure
from codereviewer.review.models import PositionedComment
from codereviewer.review.models import ReviewContext
from codereviewer.review.models import ReviewReport
from codereviewer.review.models import ReviewState
from codereviewer.review.parser import ParseFailure
from codereviewer.review.parser import parse_model_response
from codereviewer.review.positioner import position_finding
from codereviewer.review.prompt import SYSTEM_PROMPT
from codereviewer.review.prompt import build_review_prompt

logger = logging.getLogger(__name__)

_SHA_FIELDS: tuple[str, ...] = ("base_sha", "start_sha", "head_sha")


class ReviewFailedError(RuntimeError):
    """结构性失败：进入逐文件分析之前就无法继续。`report` 是失败时的结果汇总（state=failed）。"""

    def __init__(self, message: str, report: ReviewReport | None = None) -> None:
        super().__init__(message)
        self.report = report


class MergeRequestApi(Protocol):
    """orchestrator 需要的 GitLab 能力（`GitLabClient` 满足该协议）。"""

    async def list_merge_request_diffs(self, project_id: int, mr_iid: int) -> list[GitLabDiff]: ...

    async def get_merge_request(self, project_id: int, mr_iid: int) -> GitLabMergeRequest: ...

    async def post_comment(
        self,
        project_id: int,
        mr_iid: int,
        body: str,
        position: CommentPosition | None = None,
    ) -> None: ...


def _missing_shas(refs: GitLabDiffRefs | None) -> list[str]:
    if refs is None:
        return list(_SHA_FIELDS)
    return [name for name in _SHA_FIELDS if not getattr(refs, name)]


def _to_file_diff(diff: GitLabDiff) -> FileDiff:
    return FileDiff(
        old_path=diff.old_path,
        new_path=diff.new_path,
        diff=diff.diff,
        new_file=diff.new_file,
        renamed_file=diff.renamed_file,
        deleted_file=diff.deleted_file,
    )


@dataclass(frozen=True)
class ReviewOrchestrator:
    """
    Orchestrator 运行时依赖集合。

    - max_backend_attempts=1 表示不重试；>1 时只对 `ModelBackendError` 重试
    """

    model_backend: ModelBackend
    gitlab: MergeRequestApi
    max_backend_attempts: int = 1
    retry_delay_seconds: float = 0.0

    async def resolve_review_context(self, event: GitLabMergeRequestWebhookEvent) -> ReviewContext:
        """
        Resolving：优先用 webhook 自带的 diff_refs；缺哪个 SHA 才去拉一次 MR 元数据补哪个。
        """
        mr = event.object_attributes
        project_id = event.project.id
        payload_refs = mr.diff_refs
        resolved: dict[str, str | None] = {
            name: getattr(payload_refs, name) if payload_refs is not None else None for name in _SHA_FIELDS
        }

        missing = _missing_shas(payload_refs)
        if missing:
            logger.info(f"Webhook payload missing {', '.join(missing)} for MR !{mr.iid}; fetching MR metadata")
            try:
                info = await self.gitlab.get_merge_request(project_id=project_id, mr_iid=mr.iid)
            except Exception as exc:
                raise ReviewFailedError(f"Cannot fetch metadata for MR !{mr.iid}: {exc}") from exc
            for name in missing:
                resolved[name] = getattr(info.diff_refs, name) if info.diff_refs is not None else None

        still_missing = [name for name in _SHA_FIELDS if not resolved[name]]
        if still_missing:
            raise ReviewFailedError(f"Cannot resolve {', '.join(still_missing)} for MR !{mr.iid}")

        return ReviewContext(
            project_id=project_id,
            mr_iid=mr.iid,
            title=mr.title,
            description=mr.description or "",
            diff_refs=DiffRefs(
                base_sha=resolved["base_sha"],
                start_sha=resolved["start_sha"],
                head_sha=resolved["head_sha"],
            ),
        )

    async def _generate(self, user_prompt: str) -> str:
        attempt = 1
        while True:
            try:
                return await self.model_backend.generate(SYSTEM_PROMPT, user_prompt)
            except ModelBackendError as exc:
                if attempt >= self.max_backend_attempts:
                    raise
                logger.warning(f"Model backend attempt {attempt}/{self.max_backend_attempts} failed: {exc}")
                attempt += 1
                if self.retry_delay_seconds > 0:
                    await asyncio.sleep(self.retry_delay_seconds)

    async def analyze_file(
        self,
        diff: FileDiff,
        context: ReviewContext,
        parse_failures: list[ParseFailure] | None = None,
    ) -> list[PositionedComment]:
        """
        单文件：prompt -> 模型 -> 解析 -> 定位。

        - 后端错误直接抛给调用方
        - 解析失败不抛错，传入 `parse_failures` 时追加诊断记录
        """
        prompt = build_review_prompt(diff=diff, title=context.title, description=context.description)
        raw = await self._generate(prompt)
        findings = parse_model_response(raw, failures=parse_failures)
        return [position_finding(finding=f, diff=diff, context=context) for f in findings]

    async def _post_comments(
        self,
        diff: FileDiff,
        comments: list[PositionedComment],
        context: ReviewContext,
        report: ReviewReport,
    ) -> None:
        for comment in comments:
            try:
                await self.gitlab.post_comment(
                    project_id=context.project_id,
                    mr_iid=context.mr_iid,
                    body=comment.body,
                    position=comment.position,
                )
            except Exception as exc:
                logger.exception(f"Failed to post comment on {diff.new_path}:{comment.position.new_line}")
                report.failures.append(FileFailure(path=diff.new_path, stage="post", reason=str(exc)))
                continue
            report.comments_posted += 1
            logger.info(f"Posted comment on {diff.new_path} at line {comment.position.new_line}")

    async def run_review(self, event: GitLabMergeRequestWebhookEvent) -> ReviewReport:
        """
        跑一次完整 review，返回结果汇总。

        - 结构性失败抛 `ReviewFailedError`
        - 文件级/解析/评论级失败只体现在 report.failures 里
        - `ReviewFailedError.report` 带着 state=failed 的汇总
        """
        project_id = event.project.id
        mr_iid = event.object_attributes.iid
        report = ReviewReport(project_id=project_id, mr_iid=mr_iid)
        logger.info(f"Starting review for MR !{mr_iid} in project {project_id}")

        # 1) Resolving
        try:
            context = await self.resolve_review_context(event)
        except ReviewFailedError as exc:
            report.state = ReviewState.FAILED
            exc.report = report
            raise

        # 2) Fetching
        report.state = ReviewState.FETCHING
        try:
            raw_diffs = await self.gitlab.list_merge_request_diffs(project_id=project_id, mr_iid=mr_iid)
        except Exception as exc:
            report.state = ReviewState.FAILED
            raise ReviewFailedError(f"Cannot fetch diffs for MR !{mr_iid}: {exc}", report=report) from exc

        report.files_total = len(raw_diffs)
        if not raw_diffs:
            logger.info(f"No diffs found for MR !{mr_iid}")
            report.state = ReviewState.DONE
            return report
        logger.info(f"Found {len(raw_diffs)} file(s) changed in MR !{mr_iid}")

        # 3) 逐文件：分析完立刻发布，再进入下一个文件
        for raw_diff in raw_diffs:
            diff = _to_file_diff(raw_diff)
            if diff.deleted_file:
                report.files_skipped += 1
                logger.debug(f"Skipping deleted file {diff.old_path}")
                continue

            report.state = ReviewState.ANALYZING
            parse_failures: list[ParseFailure] = []
            try:
                comments = await self.analyze_file(diff=diff, context=context, parse_failures=parse_failures)
            except Exception as exc:
                logger.exception(f"Failed to analyze {diff.new_path} in MR !{mr_iid}")
                report.failures.append(FileFailure(path=diff.new_path, stage="analyze", reason=str(exc)))
                continue
            report.files_analyzed += 1
            for failure in parse_failures:
                report.failures.append(FileFailure(path=diff.new_path, stage="parse", reason=failure.reason))
            report.comments_produced += len(comments)

            report.state = ReviewState.POSTING
            await self._post_comments(diff=diff, comments=comments, context=context, report=report)

        report.state = ReviewState.DONE
        logger.info(
            f"Completed review for MR !{mr_iid}: "
            f"{report.files_analyzed} analyzed, {report.files_skipped} skipped, "
            f"{report.comments_posted}/{report.comments_produced} comment(s) posted, "
            f"{len(report.failures)} failure(s)"
        )
        return report


def build_webhook_handler(
    orchestrator: ReviewOrchestrator,
) -> Callable[[GitLabMergeRequestWebhookEvent], Awaitable[None]]:
    """
    装配后台任务体：webhook 响应已经发出，这里的任何错误都只能记日志，不能外抛。
    """

    async def handle(event: GitLabMergeRequestWebhookEvent) -> None:
        mr_iid = event.object_attributes.iid
        try:
            await orchestrator.run_review(event)
        except Exception:
            logger.exception(f"Error processing MR !{mr_iid}")

    return handle
