"""Tests for the MCP tools (agent client mocked)."""

from unittest.mock import patch

import pytest

from crit import mcp_server
from crit.agent_client import AgentClient, AgentClientError
from crit.models import ReviewResult


def review(count: int, prompt: str = "") -> ReviewResult:
    return ReviewResult(prompt=prompt, review_file="/x/.crit.json", comment_count=count, review_round=2)


def test_round_complete_reports_round() -> None:
    with patch.object(AgentClient, "round_complete", return_value=2) as round_complete:
        message = mcp_server.round_complete(4242)
    round_complete.assert_called_once()
    assert message.startswith("Round 2 complete")
    assert "await_review" in message


def test_await_review_returns_prompt() -> None:
    prompt = "Address review comments in /x/plan.review.md"
    with patch.object(AgentClient, "await_review", return_value=review(3, prompt)):
        assert mcp_server.await_review(4242) == prompt


def test_await_review_without_comments_is_approval() -> None:
    with patch.object(AgentClient, "await_review", return_value=review(0)):
        assert mcp_server.await_review() == "REVIEW APPROVED"


def test_default_port_used() -> None:
    client = mcp_server._client(None)
    assert client.base_url.endswith(":3000")


def test_client_errors_propagate() -> None:
    with patch.object(AgentClient, "await_review", side_effect=AgentClientError("unreachable")):
        with pytest.raises(AgentClientError):
            mcp_server.await_review(4242)
