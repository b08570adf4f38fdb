"""Shared fixtures: throwaway git repositories and review documents."""

import subprocess
from pathlib import Path
from typing import Callable, Iterator

import pytest

from crit.session import ReviewSession

PLAN = "# Plan\n\nStep one\nStep two\nStep three\n"


def run_git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=repo, capture_output=True, text=True, check=True
    )
    return result.stdout


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A repository on `main` with one commit."""
    repo = tmp_path / "repo"
    repo.mkdir()
    run_git(repo, "init", "-q")
    run_git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    run_git(repo, "config", "user.email", "test@example.com")
    run_git(repo, "config", "user.name", "Test User")
    run_git(repo, "config", "commit.gpgsign", "false")

    (repo / "README.md").write_text(PLAN)
    (repo / "main.py").write_text("def main():\n    print('hello')\n")
    run_git(repo, "add", ".")
    run_git(repo, "commit", "-q", "-m", "Initial commit")
    return repo


@pytest.fixture
def git_repo_with_changes(git_repo: Path) -> Path:
    """The repository above with a modified file and an untracked one."""
    (git_repo / "main.py").write_text("def main():\n    print('hello, world')\n")
    (git_repo / "new.py").write_text("x = 1\ny = 2\n")
    return git_repo


@pytest.fixture
def doc_file(tmp_path: Path) -> Path:
    """A markdown document outside any repository."""
    docs = tmp_path / "docs"
    docs.mkdir()
    path = docs / "plan.md"
    path.write_text(PLAN)
    return path


@pytest.fixture
def make_session() -> Iterator[Callable[..., ReviewSession]]:
    """Build a files-mode session; writes only happen on flush unless a debounce is given."""
    sessions = []

    def factory(*paths: Path, **kwargs) -> ReviewSession:
        kwargs.setdefault("write_debounce", 60.0)
        session = ReviewSession.from_files(list(paths), **kwargs)
        sessions.append(session)
        return session

    yield factory

    for session in sessions:
        with session._lock.write():
            session._cancel_write_locked()


@pytest.fixture
def git_cmd() -> Callable[..., str]:
    """Run a git command in a repository: git_cmd(repo, "add", ".")."""
    return run_git
