"""
Review prompt（纯函数，无 I/O）。

- system prompt 是带版本号的常量：内容可以调整，但不影响 pipeline 的输入输出契约
- user prompt 必须确定性：同样的 diff/标题/描述 永远渲染出同样的文本
"""

from __future__ import annotations

from codereviewer.review.models import FileDiff

SYSTEM_PROMPT_VERSION = "2024-01"

RESPONSE_SHAPE = """{
  "comments": [
    {
      "line": <line_number>,
      "comment": "<your review comment>"
    }
  ]
}"""

SYSTEM_PROMPT = f"""You are an expert code reviewer. Analyze the provided code diff and identify:
1. Potential bugs or errors
2. Code quality improvements
3. Security vulnerabilities
4. Performance issues
5. Missing tests
6. Best practices violations
7. Code style inconsistencies

For each issue found, provide:
- The line number where the issue occurs
- A clear, constructive comment explaining the issue
- A suggestion for improvement if applicable

Return your analysis as a JSON object with this structure:
{RESPONSE_SHAPE}

Only comment on significant issues. Don't comment on every minor style preference."""


def build_review_prompt(diff: FileDiff, title: str, description: str) -> str:
    """
    渲染单个文件的 review prompt。

    结尾再次声明 JSON 结构：即使 prompt 被截断或被后端二次包装，输出约定依然在。
    """
    lines: list[str] = [
        "Review this code change:",
        "",
        f"Merge Request Title: {title}",
        f"Merge Request Description: {description}",
        "",
        f"File: {diff.new_path}",
    ]
    if diff.path_changed:
        lines.append(f"(renamed from {diff.old_path})")
    lines.extend(
        [
            "",
            "Diff:",
            "```",
            diff.diff,
            "```",
            "",
            "Please analyze this code change and provide your review comments as a JSON object with this structure:",
            RESPONSE_SHAPE,
        ]
    )
    return "\n".join(lines)
