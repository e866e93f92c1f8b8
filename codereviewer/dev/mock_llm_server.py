"""
本地 Mock 模型后端（同时模拟 OpenAI-compatible 与 Ollama 两种接口）。

用途：
- 在没有真实模型的情况下，本地跑通 review 闭环
- 故意把 JSON 包在 markdown 代码块里并夹带解释文字，覆盖解析器的容错路径

启动：
  python -m codereviewer.dev.mock_llm_server
"""

from __future__ import annotations

import json
from collections.abc import Sequence

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel, Field

from codereviewer.llm.client import ChatMessage


class ChatCompletionRequest(BaseModel):
    model: str
    messages: list[ChatMessage] = Field(default_factory=list)


class GenerateRequest(BaseModel):
    model: str
    prompt: str
    stream: bool = False


def _extract_path_from_review_prompt(prompt: str) -> str | None:
    for line in prompt.splitlines():
        stripped = line.strip()
        if stripped.startswith("File: "):
            return stripped.removeprefix("File: ").strip()
    return None


def build_mock_review_text(prompt: str) -> str:
    """对 prompt 里的文件在第 1 行给一条 [MOCK] 建议；找不到文件名就返回空评论。"""
    path = _extract_path_from_review_prompt(prompt=prompt)
    if path is None:
        return json.dumps({"comments": []})
    review = {
        "comments": [
            {"line": 1, "comment": f"[MOCK] Consider adding input validation and unit tests for `{path}`."},
        ]
    }
    return f"Here is my review:\n```json\n{json.dumps(review)}\n```\n"


def _user_prompt(messages: Sequence[ChatMessage]) -> str:
    user_texts = [m.content for m in messages if m.role == "user"]
    if not user_texts:
        raise ValueError("Mock server expects at least one user message")
    return "\n".join(user_texts)


app = FastAPI(title="Mock LLM backend", version="0.1.0")


@app.post("/v1/chat/completions")
async def chat_completions(req: ChatCompletionRequest) -> dict[str, object]:
    content = build_mock_review_text(prompt=_user_prompt(req.messages))
    return {
        "id": "chatcmpl-mock",
        "object": "chat.completion",
        "created": 0,
        "model": req.model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
    }


@app.post("/api/generate")
async def generate(req: GenerateRequest) -> dict[str, object]:
    return {"model": req.model, "response": build_mock_review_text(prompt=req.prompt), "done": True}


def main() -> None:
    uvicorn.run(app, host="127.0.0.1", port=9001)


if __name__ == "__main__":
    main()
