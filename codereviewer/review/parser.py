"""
模型输出解析（永不抛异常）。

模型经常不按约定输出纯 JSON：
- 包一层 markdown 代码块（```json ... ```）
- JSON 前后夹带解释性文字
- 干脆不是 JSON

所以这里按顺序尝试三个相互独立的 stage，每个 stage 都是纯函数、返回 `None` 表示失败：
1. `extract_fenced_json`：第一个内容像 JSON 的代码块
2. `extract_brace_span`：文本中第一个能完整解析的 `{...}`
3. `parse_whole_text`：整段文本当 JSON

全部失败 / 没有 `comments` 数组 -> 返回空列表（等同于“没发现问题”），宁可漏报也不编造。
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass

from codereviewer.review.models import ModelFinding

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```[ \t]*([A-Za-z0-9_-]*)[ \t]*\r?\n?(.*?)```", re.DOTALL)
_DIGITS = re.compile(r"[+-]?\d+")

ParseStage = Callable[[str], object | None]


@dataclass(frozen=True)
class ParseFailure:
    """一次解析失败的诊断记录：原因 + 原始文本。"""

    reason: str
    raw_text: str


def _loads(text: str) -> object | None:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, RecursionError):
        return None


def extract_fenced_json(text: str) -> object | None:
    """解析第一个内容以 `{` 开头的代码块（语言标记可以是 json 或为空）。"""
    for match in _FENCED_BLOCK.finditer(text):
        language = match.group(1).lower()
        body = match.group(2).strip()
        if language not in ("", "json") or not body.startswith("{"):
            continue
        return _loads(body)
    return None


def extract_brace_span(text: str) -> object | None:
    """从每个 `{` 起尝试 raw_decode，返回第一个完整的 JSON 对象（忽略前后文字）。"""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except (json.JSONDecodeError, RecursionError):
            start = text.find("{", start + 1)
            continue
        return value
    return None


def parse_whole_text(text: str) -> object | None:
    return _loads(text.strip())


PARSE_STAGES: tuple[ParseStage, ...] = (extract_fenced_json, extract_brace_span, parse_whole_text)


def coerce_line(value: object) -> int | None:
    """把 line 规整为正整数；无法规整 / 非正数返回 None。"""
    if isinstance(value, bool):
        return None
    line: int | None = None
    if isinstance(value, int):
        line = value
    elif isinstance(value, float) and value.is_integer():
        line = int(value)
    elif isinstance(value, str) and _DIGITS.fullmatch(value.strip()):
        line = int(value.strip())
    if line is None or line <= 0:
        return None
    return line


def _findings_from_items(items: list[object]) -> list[ModelFinding]:
    """逐条校验：坏条目单独丢弃，不影响同批其它条目。"""
    findings: list[ModelFinding] = []
    for item in items:
        if not isinstance(item, dict):
            logger.debug(f"Dropping non-object finding: {item!r}")
            continue
        comment = item.get("comment")
        if not isinstance(comment, str) or not comment.strip():
            logger.debug(f"Dropping finding without comment: {item!r}")
            continue
        line = coerce_line(item.get("line"))
        if line is None:
            logger.debug(f"Dropping finding with unusable line: {item!r}")
            continue
        findings.append(ModelFinding(line=line, comment=comment))
    return findings


def _record_failure(reason: str, raw: str, failures: list[ParseFailure] | None) -> list[ModelFinding]:
    logger.warning(f"Could not parse model response: {reason}")
    logger.debug(f"Model response content: {raw}")
    if failures is not None:
        failures.append(ParseFailure(reason=reason, raw_text=raw))
    return []


def parse_model_response(raw: str | None, failures: list[ParseFailure] | None = None) -> list[ModelFinding]:
    """
    模型原始文本 -> 有序的 `ModelFinding` 列表。

    - 不抛异常：任何失败都降级为空列表
    - `failures` 传入时会追加诊断记录，便于测试/排查
    """
    if not raw or not raw.strip():
        return _record_failure("empty response", raw or "", failures)

    parsed: object | None = None
    for stage in PARSE_STAGES:
        parsed = stage(raw)
        if parsed is not None:
            break

    if parsed is None:
        return _record_failure("no JSON object found", raw, failures)
    if not isinstance(parsed, dict):
        return _record_failure(f"expected a JSON object, got {type(parsed).__name__}", raw, failures)

    items = parsed.get("comments")
    if not isinstance(items, list):
        return _record_failure("missing 'comments' array", raw, failures)

    return _findings_from_items(items)
