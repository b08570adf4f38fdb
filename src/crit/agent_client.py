"""HTTP client used by the agent side (`crit go`, `crit wait`, MCP tools)."""

from typing import Optional

import requests

from crit.config import settings
from crit.models import ReviewResult

DEFAULT_PORT = 3000


class AgentClientError(RuntimeError):
    """Raised when the review server cannot be reached or answers with an error."""


class AgentClient:
    """Talks to a running crit server."""

    def __init__(self, port: int = DEFAULT_PORT, host: str = "127.0.0.1", timeout: Optional[float] = None) -> None:
        self.base_url = f"http://{host}:{port}"
        self.timeout = settings.agent_timeout if timeout is None else timeout
        self._session = requests.Session()
        self._session.headers["Accept"] = "application/json"

    @property
    def display_url(self) -> str:
        return self.base_url.replace("127.0.0.1", "localhost", 1)

    def _request(self, method: str, path: str, timeout: float = 30, **kwargs: object) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.request(method, url, timeout=timeout, **kwargs)
        except requests.RequestException as e:
            raise AgentClientError(f"could not reach crit at {self.display_url}: {e}") from e
        if resp.status_code >= 400:
            msg = resp.text
            try:
                msg = resp.json().get("detail", msg)
            except ValueError:
                pass
            raise AgentClientError(f"{method} {path} returned status {resp.status_code}: {msg}")
        return resp

    def round_complete(self) -> int:
        """Tell the reviewer the agent is done; returns the round being closed."""
        data = self._request("POST", "/api/round-complete").json()
        return int((data.get("data") or {}).get("review_round", 0))

    def await_review(self) -> ReviewResult:
        """Block until the reviewer clicks Finish."""
        # Leave the server a moment to answer its own timeout first.
        resp = self._request(
            "GET", "/api/await-review",
            timeout=self.timeout + 5,
            params={"timeout": self.timeout},
        )
        return ReviewResult.model_validate(resp.json())
