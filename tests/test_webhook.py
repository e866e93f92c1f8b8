from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from codereviewer.config import GitLabConfig
from codereviewer.gitlab.schemas import GitLabMergeRequestWebhookEvent
from codereviewer.gitlab.webhook import build_gitlab_webhook_router


def _mr_payload(state: str = "opened", action: str = "open") -> dict[str, object]:
    return {
        "object_kind": "merge_request",
        "project": {"id": 42, "web_url": "https://gitlab.example.com/group/repo"},
        "object_attributes": {
            "id": 1000,
            "iid": 7,
            "title": "Add feature",
            "description": "desc",
            "state": state,
            "action": action,
            "diff_refs": {"base_sha": "b", "start_sha": "s", "head_sha": "h"},
        },
    }


def _client(webhook_secret: str | None = None) -> tuple[TestClient, list[GitLabMergeRequestWebhookEvent]]:
    received: list[GitLabMergeRequestWebhookEvent] = []

    async def handler(event: GitLabMergeRequestWebhookEvent) -> None:
        received.append(event)

    config = GitLabConfig(base_url="https://gitlab.example.com", token="t", webhook_secret=webhook_secret)
    app = FastAPI()
    app.include_router(build_gitlab_webhook_router(config=config, handler=handler))
    return TestClient(app), received


def test_non_merge_request_event_is_ignored() -> None:
    client, received = _client()
    response = client.post("/webhook/gitlab", json={"object_kind": "code_review"})
    assert response.status_code == 200
    assert response.json() == {"message": "Event ignored"}
    assert received == []


def test_closed_merge_request_is_ignored() -> None:
    client, received = _client()
    response = client.post("/webhook/gitlab", json=_mr_payload(state="closed", action="close"))
    assert response.status_code == 200
    assert response.json() == {"message": "MR state ignored"}
    assert received == []


@pytest.mark.parametrize(("state", "action"), [("opened", "open"), ("opened", "reopen"), ("merged", "update")])
def test_reviewable_merge_request_schedules_review(state: str, action: str) -> None:
    client, received = _client()
    response = client.post("/webhook/gitlab", json=_mr_payload(state=state, action=action))
    assert response.status_code == 200
    assert response.json() == {"message": "Webhook received, processing..."}
    assert [e.object_attributes.iid for e in received] == [7]


def test_payload_without_object_kind_is_ignored() -> None:
    client, received = _client()
    response = client.post("/webhook/gitlab", json={"event_type": "note"})
    assert response.status_code == 200
    assert response.json() == {"message": "Event ignored"}
    assert received == []


def test_closed_merge_request_with_sparse_payload_is_ignored() -> None:
    client, received = _client()
    payload = {"object_kind": "merge_request", "object_attributes": {"iid": 1, "state": "closed", "action": "close"}}
    response = client.post("/webhook/gitlab", json=payload)
    assert response.status_code == 200
    assert response.json() == {"message": "MR state ignored"}
    assert received == []


def test_reviewable_merge_request_without_attribute_id_is_scheduled() -> None:
    client, received = _client()
    payload = _mr_payload()
    attributes = payload["object_attributes"]
    assert isinstance(attributes, dict)
    del attributes["id"]
    response = client.post("/webhook/gitlab", json=payload)
    assert response.json() == {"message": "Webhook received, processing..."}
    assert len(received) == 1


def test_malformed_merge_request_payload_is_500() -> None:
    client, received = _client()
    response = client.post("/webhook/gitlab", json={"object_kind": "merge_request", "project": {}})
    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
    assert received == []


def test_non_json_body_is_500() -> None:
    client, _ = _client()
    response = client.post("/webhook/gitlab", content=b"not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 500


def test_webhook_secret_is_checked_when_configured() -> None:
    client, received = _client(webhook_secret="s3cret")
    response = client.post("/webhook/gitlab", json=_mr_payload(), headers={"X-Gitlab-Token": "wrong"})
    assert response.status_code == 401

    response = client.post("/webhook/gitlab", json=_mr_payload(), headers={"X-Gitlab-Token": "s3cret"})
    assert response.status_code == 200
    assert len(received) == 1
