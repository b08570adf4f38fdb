from typing import Optional

from mcp.server.fastmcp import FastMCP

from crit.agent_client import DEFAULT_PORT, AgentClient

mcp = FastMCP("crit-mcp")


def _client(port: Optional[int]) -> AgentClient:
    return AgentClient(port or DEFAULT_PORT)


@mcp.tool()
def round_complete(port: Optional[int] = None) -> str:
    """Signal that you have addressed the review comments in .crit.json.

    Call this after editing the files and marking comments resolved. The
    reviewer then sees the diff of your changes. Follow up with await_review.
    """
    review_round = _client(port).round_complete()
    return f"Round {review_round} complete. Call await_review to wait for the next review."


@mcp.tool()
def await_review(port: Optional[int] = None) -> str:
    """Wait for the reviewer to click Finish.

    Returns the instructions for addressing the new comments, or
    "REVIEW APPROVED" when the reviewer finished without comments.
    """
    result = _client(port).await_review()
    if result.comment_count == 0:
        return "REVIEW APPROVED"
    return result.prompt


def main() -> None:
    """Entry point for the crit-mcp command."""
    mcp.run()


if __name__ == "__main__":
    main()
