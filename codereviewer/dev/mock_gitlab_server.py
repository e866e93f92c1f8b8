"""
本地 Mock GitLab API server（只覆盖 review 链路用到的接口）。

用途：
- 在没有真实 GitLab 的情况下，本地跑通：
  Webhook -> get MR diffs -> post discussions

启动：
  python -m codereviewer.dev.mock_gitlab_server
"""

from __future__ import annotations

import time
import uuid

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel


class NoteCreateRequest(BaseModel):
    body: str


class DiscussionCreateRequest(BaseModel):
    body: str
    position: dict[str, object] | None = None


MOCK_DIFF_REFS: dict[str, str] = {
    "base_sha": "0000000000000000000000000000000000000000",
    "start_sha": "0000000000000000000000000000000000000000",
    "head_sha": "1111111111111111111111111111111111111111",
}


def _default_diffs_response() -> list[dict[str, object]]:
    return [
        {
            "old_path": "src/example.py",
            "new_path": "src/example.py",
            "a_mode": "100644",
            "b_mode": "100644",
            "new_file": False,
            "renamed_file": False,
            "deleted_file": False,
            "diff": (
                "@@ -1,3 +1,6 @@\n"
                " def add(a: int, b: int) -> int:\n"
                "-    return a + b\n"
                "+    # TODO: handle None inputs\n"
                "+    return a + b\n"
                "+\n"
                "+def sub(a: int, b: int) -> int:\n"
                "+    return a - b\n"
            ),
        },
        {
            "old_path": "src/legacy.py",
            "new_path": "src/legacy.py",
            "a_mode": "100644",
            "b_mode": "0",
            "new_file": False,
            "renamed_file": False,
            "deleted_file": True,
            "diff": "@@ -1 +0,0 @@\n-print('bye')\n",
        },
    ]


app = FastAPI(title="Mock GitLab API", version="0.1.0")

_posted: list[dict[str, object]] = []


@app.get("/api/v4/projects/{project_id}/merge_requests/{mr_iid}")
async def get_merge_request(project_id: int, mr_iid: int) -> dict[str, object]:
    _ = project_id
    return {
        "iid": mr_iid,
        "title": "Mock merge request",
        "description": "Local mock for end-to-end runs",
        "diff_refs": MOCK_DIFF_REFS,
    }


@app.get("/api/v4/projects/{project_id}/merge_requests/{mr_iid}/diffs")
async def list_merge_request_diffs(project_id: int, mr_iid: int, page: int = 1) -> list[dict[str, object]]:
    _ = project_id
    _ = mr_iid
    return _default_diffs_response() if page == 1 else []


@app.post("/api/v4/projects/{project_id}/merge_requests/{mr_iid}/discussions")
async def create_discussion(project_id: int, mr_iid: int, req: DiscussionCreateRequest) -> dict[str, object]:
    note_id = len(_posted) + 1
    _posted.append(
        {
            "id": note_id,
            "kind": "discussion",
            "body": req.body,
            "position": req.position,
            "project_id": project_id,
            "mr_iid": mr_iid,
            "created_at": int(time.time()),
        }
    )
    return {"id": uuid.uuid4().hex, "notes": [{"id": note_id, "body": req.body}]}


@app.post("/api/v4/projects/{project_id}/merge_requests/{mr_iid}/notes")
async def post_merge_request_note(project_id: int, mr_iid: int, req: NoteCreateRequest) -> dict[str, object]:
    note_id = len(_posted) + 1
    _posted.append(
        {
            "id": note_id,
            "kind": "note",
            "body": req.body,
            "project_id": project_id,
            "mr_iid": mr_iid,
            "created_at": int(time.time()),
        }
    )
    return {"id": note_id, "body": req.body}


@app.get("/__debug__/comments")
async def debug_comments() -> dict[str, object]:
    return {"count": len(_posted), "comments": _posted}


def main() -> None:
    uvicorn.run(app, host="127.0.0.1", port=9002)


if __name__ == "__main__":
    main()
