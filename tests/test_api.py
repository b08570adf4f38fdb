"""Integration tests for API endpoints."""

import json
from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from crit.server import create_app
from crit.session import ReviewSession


@pytest.fixture
def session(doc_file: Path, make_session) -> ReviewSession:
    return make_session(doc_file)


@pytest.fixture
def api_client(session: ReviewSession) -> Iterator[TestClient]:
    """Create a test client for the API."""
    app = create_app(session, port=4242, watch=False)
    with TestClient(app) as client:
        yield client


class TestSessionEndpoints:
    """Test session and file endpoints."""

    def test_get_session(self, api_client: TestClient) -> None:
        response = api_client.get("/api/session")
        assert response.status_code == 200

        data = response.json()
        assert data["mode"] == "files"
        assert data["review_round"] == 1
        assert [f["path"] for f in data["files"]] == ["plan.md"]
        assert data["files"][0]["file_type"] == "markdown"

    def test_get_file(self, api_client: TestClient) -> None:
        response = api_client.get("/api/file", params={"path": "plan.md"})
        assert response.status_code == 200
        assert response.json()["content"].startswith("# Plan")

    def test_get_unknown_file(self, api_client: TestClient) -> None:
        response = api_client.get("/api/file", params={"path": "missing.md"})
        assert response.status_code == 404
        assert "missing.md" in response.json()["detail"]

    def test_get_file_diff_before_any_round(self, api_client: TestClient) -> None:
        response = api_client.get("/api/file/diff", params={"path": "plan.md"})
        assert response.status_code == 200
        assert response.json() == []

    def test_get_config(self, api_client: TestClient, session: ReviewSession) -> None:
        data = api_client.get("/api/config").json()
        assert data["mode"] == "files"
        assert data["state_file"] == str(session.state_path)
        assert data["share_url"] == ""


class TestCommentEndpoints:
    """Test comment CRUD over HTTP."""

    def test_create_and_list(self, api_client: TestClient) -> None:
        response = api_client.post(
            "/api/comments",
            params={"path": "plan.md"},
            json={"start_line": 3, "end_line": 4, "body": "Merge these steps"},
        )
        assert response.status_code == 201
        assert response.json()["id"] == "c1"

        comments = api_client.get("/api/comments", params={"path": "plan.md"}).json()
        assert [c["body"] for c in comments] == ["Merge these steps"]

    def test_create_rejects_invalid_range(self, api_client: TestClient) -> None:
        response = api_client.post(
            "/api/comments",
            params={"path": "plan.md"},
            json={"start_line": 4, "end_line": 2, "body": "backwards"},
        )
        assert response.status_code == 400

    def test_create_rejects_empty_body(self, api_client: TestClient) -> None:
        response = api_client.post(
            "/api/comments",
            params={"path": "plan.md"},
            json={"start_line": 1, "end_line": 1, "body": ""},
        )
        assert response.status_code == 400

    def test_create_on_unknown_file(self, api_client: TestClient) -> None:
        response = api_client.post(
            "/api/comments",
            params={"path": "nope.md"},
            json={"start_line": 1, "end_line": 1, "body": "x"},
        )
        assert response.status_code == 404

    def test_update_and_delete(self, api_client: TestClient) -> None:
        api_client.post(
            "/api/comments",
            params={"path": "plan.md"},
            json={"start_line": 1, "end_line": 1, "body": "first"},
        )

        response = api_client.put("/api/comments/c1", params={"path": "plan.md"}, json={"body": "edited"})
        assert response.status_code == 200
        assert response.json()["body"] == "edited"

        response = api_client.delete("/api/comments/c1", params={"path": "plan.md"})
        assert response.status_code == 200
        assert response.json()["status"] == "success"

        assert api_client.delete("/api/comments/c1", params={"path": "plan.md"}).status_code == 404


class TestReviewLifecycle:
    """Test finish, await-review and round completion."""

    def test_finish_writes_state_and_returns_prompt(self, api_client: TestClient, session: ReviewSession) -> None:
        api_client.post(
            "/api/comments",
            params={"path": "plan.md"},
            json={"start_line": 3, "end_line": 3, "body": "why?"},
        )

        response = api_client.post("/api/finish")
        assert response.status_code == 200
        data = response.json()
        assert data["comment_count"] == 1
        assert "crit go --wait 4242" in data["prompt"]

        state = json.loads(session.state_path.read_text())
        assert state["files"]["plan.md"]["comments"][0]["body"] == "why?"

    def test_await_review_returns_finished_review(self, api_client: TestClient) -> None:
        api_client.post("/api/finish")
        response = api_client.get("/api/await-review", params={"timeout": 1})
        assert response.status_code == 200
        assert response.json()["comment_count"] == 0

    def test_await_review_times_out(self, api_client: TestClient) -> None:
        response = api_client.get("/api/await-review", params={"timeout": 0.05})
        assert response.status_code == 408

    def test_round_complete_discards_earlier_finish(self, api_client: TestClient, session: ReviewSession) -> None:
        api_client.post("/api/finish")
        response = api_client.post("/api/round-complete")
        assert response.status_code == 200
        assert response.json()["data"]["review_round"] == 1
        assert session.take_round_request()

        assert api_client.get("/api/await-review", params={"timeout": 0.05}).status_code == 408

    def test_previous_round_after_transition(
        self, api_client: TestClient, session: ReviewSession, doc_file: Path
    ) -> None:
        api_client.post(
            "/api/comments",
            params={"path": "plan.md"},
            json={"start_line": 4, "end_line": 4, "body": "Step two"},
        )
        api_client.post("/api/finish")
        doc_file.write_text("# Plan\n\nIntro\nStep one\nStep two\nStep three\n")
        session.poll_changes()
        session.complete_round()

        previous = api_client.get("/api/previous-round", params={"path": "plan.md"}).json()
        assert previous["review_round"] == 2
        assert "Intro" not in previous["content"]
        assert [c["body"] for c in previous["comments"]] == ["Step two"]

        comments = api_client.get("/api/comments", params={"path": "plan.md"}).json()
        assert comments[0]["start_line"] == 5
        assert comments[0]["carried_forward"] is True

        hunks = api_client.get("/api/file/diff", params={"path": "plan.md"}).json()
        assert len(hunks) == 1


class TestShareAndEvents:
    def test_share_url_round_trip(self, api_client: TestClient) -> None:
        response = api_client.post("/api/share-url", json={"url": "https://example.com/r/1", "delete_token": "t"})
        assert response.status_code == 200
        assert api_client.get("/api/config").json()["share_url"] == "https://example.com/r/1"

        assert api_client.delete("/api/share-url").status_code == 200
        assert api_client.get("/api/config").json()["share_url"] == ""

    def test_share_url_requires_url(self, api_client: TestClient) -> None:
        assert api_client.post("/api/share-url", json={"url": ""}).status_code == 400

    def test_poll_events_times_out_empty(self, api_client: TestClient) -> None:
        response = api_client.get("/api/events/poll", params={"timeout": 0.05})
        assert response.status_code == 200
        assert response.json()["events"] == []
