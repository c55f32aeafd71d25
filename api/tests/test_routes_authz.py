from __future__ import annotations

import os
from typing import Any

import pytest
from fastapi.testclient import TestClient

import newsroom.core.security as security
from newsroom.core.config import Settings, get_settings
from newsroom.main import app
from newsroom.services.moderation import ModerationService, get_moderation_service
from newsroom.services.store import InMemoryStore

USERS: dict[str, dict[str, Any]] = {
    "alice-token": {
        "id": "user-alice",
        "email": "alice@example.com",
        "app_metadata": {"role": "journalist", "username": "alice"},
    },
    "bob-token": {
        "id": "user-bob",
        "email": "bob@example.com",
        "app_metadata": {"roles": ["journalist"]},
    },
    "carol-token": {
        "id": "user-carol",
        "email": "carol@example.com",
        "app_metadata": {"roles": ["journalist", "curator"], "username": "carol"},
    },
    "mallory-token": {
        "id": "user-mallory",
        "email": "mallory@example.com",
        "app_metadata": {},
        "user_metadata": {"role": "curator"},
    },
}

ALICE = {"Authorization": "Bearer alice-token"}
BOB = {"Authorization": "Bearer bob-token"}
CAROL = {"Authorization": "Bearer carol-token"}
MALLORY = {"Authorization": "Bearer mallory-token"}


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    os.environ["NR_SUPABASE_URL"] = "https://example.supabase.co"
    os.environ["NR_SUPABASE_ANON_KEY"] = "anon-key"
    get_settings.cache_clear()

    async def _fake_fetch(*, token: str, **_: Any) -> dict[str, Any]:
        return USERS[token]

    monkeypatch.setattr(security, "_fetch_supabase_user", _fake_fetch)
    service = ModerationService(InMemoryStore(), Settings(otel_enabled=False, database_url=None))
    app.dependency_overrides[get_moderation_service] = lambda: service

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    os.environ.pop("NR_SUPABASE_URL", None)
    os.environ.pop("NR_SUPABASE_ANON_KEY", None)
    get_settings.cache_clear()


def _published_story(client: TestClient, name: str = "Finals", topic_ids: list[int] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"name": name, "content": "Match report"}
    if topic_ids is not None:
        payload["topic_ids"] = topic_ids
    created = client.post("/stories", json=payload, headers=ALICE)
    assert created.status_code == 201
    story_id = created.json()["id"]
    assert client.patch(f"/stories/{story_id}", json={"command": "submit"}, headers=ALICE).status_code == 200
    assert client.patch(f"/stories/{story_id}", json={"command": "approve"}, headers=CAROL).status_code == 200
    published = client.patch(f"/stories/{story_id}", json={"command": "publish"}, headers=CAROL)
    assert published.status_code == 200
    return published.json()


def test_anonymous_listing_is_allowed(client: TestClient) -> None:
    response = client.get("/stories")
    assert response.status_code == 200
    assert response.json() == []


def test_anonymous_cannot_create_story(client: TestClient) -> None:
    response = client.post("/stories", json={"name": "Finals", "content": "Match report"})
    assert response.status_code == 403


def test_user_metadata_role_is_not_trusted(client: TestClient) -> None:
    response = client.get("/stories", headers=MALLORY)
    assert response.status_code == 403


def test_malformed_authorization_header_is_rejected(client: TestClient) -> None:
    response = client.get("/stories", headers={"Authorization": "Basic abc"})
    assert response.status_code == 401


def test_created_story_is_visible_only_to_owner(client: TestClient) -> None:
    created = client.post("/stories", json={"name": "Scoop", "content": "Exclusive"}, headers=ALICE)
    assert created.status_code == 201
    story_id = created.json()["id"]

    assert client.get(f"/stories/{story_id}").status_code == 404
    assert client.get(f"/stories/{story_id}", headers=BOB).status_code == 404
    owner_view = client.get(f"/stories/{story_id}", headers=ALICE)
    assert owner_view.status_code == 200
    assert owner_view.json()["owner"] == "alice"
    assert owner_view.json()["state"] == "CREATED"


def test_publication_flow_with_topics_and_comments(client: TestClient) -> None:
    topic = client.post("/topics", json={"name": "Sports"}, headers=ALICE)
    assert topic.status_code == 201
    topic_id = topic.json()["id"]
    approved = client.patch(f"/topics/{topic_id}", json={"command": "approve"}, headers=CAROL)
    assert approved.status_code == 200
    assert approved.json()["state"] == "APPROVED"

    story = _published_story(client, topic_ids=[topic_id])
    assert story["topic_ids"] == [topic_id]
    assert client.get(f"/stories/{story['id']}").json()["state"] == "PUBLISHED"

    comment = client.post("/comments", json={"story_id": story["id"], "content": "Great read"})
    assert comment.status_code == 201
    assert comment.json()["owner"] is None
    assert client.get("/comments", params={"story_id": story["id"]}).json() == []
    assert client.patch(f"/comments/{comment.json()['id']}", json={"command": "approve"}, headers=CAROL).status_code == 200
    listed = client.get("/comments", params={"story_id": story["id"]})
    assert [row["content"] for row in listed.json()] == ["Great read"]

    events = client.get(f"/stories/{story['id']}/events", headers=CAROL)
    assert events.status_code == 200
    assert "topic_attached" in [event["event_type"] for event in events.json()]
    assert client.get(f"/stories/{story['id']}/events", headers=ALICE).status_code == 403


def test_published_story_rejects_transitions(client: TestClient) -> None:
    story = _published_story(client)
    response = client.patch(f"/stories/{story['id']}", json={"command": "approve"}, headers=CAROL)
    assert response.status_code == 409
    response = client.put(f"/stories/{story['id']}", json={"content": "Quiet rewrite"}, headers=ALICE)
    assert response.status_code == 409


def test_journalist_cannot_approve(client: TestClient) -> None:
    created = client.post("/stories", json={"name": "Finals", "content": "Match report"}, headers=ALICE)
    story_id = created.json()["id"]
    client.patch(f"/stories/{story_id}", json={"command": "submit"}, headers=ALICE)

    response = client.patch(f"/stories/{story_id}", json={"command": "approve"}, headers=ALICE)
    assert response.status_code == 403


def test_story_reject_requires_reason(client: TestClient) -> None:
    created = client.post("/stories", json={"name": "Finals", "content": "Match report"}, headers=ALICE)
    story_id = created.json()["id"]
    client.patch(f"/stories/{story_id}", json={"command": "submit"}, headers=ALICE)

    assert client.patch(f"/stories/{story_id}", json={"command": "reject"}, headers=CAROL).status_code == 422
    rejected = client.patch(
        f"/stories/{story_id}",
        json={"command": "reject", "reason": "Needs sources"},
        headers=CAROL,
    )
    assert rejected.status_code == 200
    assert rejected.json()["state"] == "CREATED"
    assert rejected.json()["rejection_reason"] == "Needs sources"


def test_attach_unapproved_topic_conflicts(client: TestClient) -> None:
    topic_id = client.post("/topics", json={"name": "Drafts"}, headers=ALICE).json()["id"]
    story_id = client.post("/stories", json={"name": "Finals", "content": "Match report"}, headers=ALICE).json()["id"]

    response = client.post(f"/stories/{story_id}/topics", json={"topic_id": topic_id}, headers=ALICE)
    assert response.status_code == 409

    client.patch(f"/topics/{topic_id}", json={"command": "approve"}, headers=CAROL)
    attached = client.post(f"/stories/{story_id}/topics", json={"topic_id": topic_id}, headers=ALICE)
    assert attached.status_code == 200
    assert attached.json()["topic_ids"] == [topic_id]

    detached = client.delete(f"/stories/{story_id}/topics/{topic_id}", headers=ALICE)
    assert detached.status_code == 200
    assert detached.json()["topic_ids"] == []


def test_topic_reject_deletes_and_parent_errors(client: TestClient) -> None:
    parent_id = client.post("/topics", json={"name": "News"}, headers=ALICE).json()["id"]
    child = client.post("/topics", json={"name": "Local", "parent_id": parent_id}, headers=ALICE)
    assert child.status_code == 201

    assert client.post("/topics", json={"name": "Ghost", "parent_id": 404}, headers=ALICE).status_code == 422
    cycle = client.put(f"/topics/{parent_id}", json={"parent_id": child.json()["id"]}, headers=ALICE)
    assert cycle.status_code == 409

    orphaned = client.put(f"/topics/{child.json()['id']}", json={"parent_id": None}, headers=CAROL)
    assert orphaned.status_code == 200
    assert orphaned.json()["parent_id"] is None

    rejected = client.patch(f"/topics/{parent_id}", json={"command": "reject"}, headers=CAROL)
    assert rejected.status_code == 204
    assert client.get(f"/topics/{parent_id}", headers=CAROL).status_code == 404


def test_topic_delete_requires_curator(client: TestClient) -> None:
    topic_id = client.post("/topics", json={"name": "Sports"}, headers=ALICE).json()["id"]
    assert client.delete(f"/topics/{topic_id}", headers=ALICE).status_code == 403
    assert client.delete(f"/topics/{topic_id}", headers=CAROL).status_code == 204


def test_story_delete_by_owner(client: TestClient) -> None:
    story_id = client.post("/stories", json={"name": "Finals", "content": "Match report"}, headers=ALICE).json()["id"]
    assert client.delete(f"/stories/{story_id}", headers=BOB).status_code == 404
    assert client.delete(f"/stories/{story_id}", headers=ALICE).status_code == 204
    assert client.get(f"/stories/{story_id}", headers=ALICE).status_code == 404


def test_story_search_filters(client: TestClient) -> None:
    _published_story(client, "Cup finals")
    _published_story(client, "Budget vote")

    response = client.get("/stories", params={"name": "FINALS"})
    assert [row["name"] for row in response.json()] == ["Cup finals"]
    response = client.get("/stories", params={"state": "PUBLISHED", "limit": 1, "offset": 1})
    assert [row["name"] for row in response.json()] == ["Budget vote"]

    newest_first = client.get("/stories", params={"sort": "desc"})
    assert [row["name"] for row in newest_first.json()] == ["Budget vote", "Cup finals"]
    assert client.get("/stories", params={"sort": "sideways"}).status_code == 422
    assert client.get("/topics", params={"sort": "desc"}).status_code == 200
    assert client.get("/comments", params={"sort": "desc"}).status_code == 200

    bad_range = client.get(
        "/stories",
        params={"min_date": "2024-02-01T00:00:00Z", "max_date": "2024-01-01T00:00:00Z"},
    )
    assert bad_range.status_code == 422


def test_role_resolution_uses_only_app_metadata() -> None:
    role = security._resolve_caller_role(
        {
            "id": "user-1",
            "app_metadata": {},
            "user_metadata": {"role": "curator"},
        }
    )
    assert role is None


def test_role_resolution_prefers_curator_in_roles_array() -> None:
    role = security._resolve_caller_role({"id": "user-1", "app_metadata": {"roles": ["journalist", "Curator"]}})
    assert role is security.Role.CURATOR


def test_role_resolution_rejects_unknown_roles() -> None:
    assert security._resolve_caller_role({"id": "user-1", "app_metadata": {"role": "admin"}}) is None
    assert security._resolve_caller_role({"id": "user-1", "app_metadata": {"role": "anonymous"}}) is None


def test_username_falls_back_to_email_then_id() -> None:
    assert security._resolve_username({"id": "user-1", "app_metadata": {"username": " alice "}}) == "alice"
    assert security._resolve_username({"id": "user-1", "email": "a@example.com", "app_metadata": {}}) == "a@example.com"
    assert security._resolve_username({"id": "user-1"}) == "user-1"
