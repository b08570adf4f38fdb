import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from crit.diff import parse_unified_diff
from crit.models import DiffHunk, FileChange, FileStatus

logger = logging.getLogger(__name__)


class GitError(RuntimeError):
    """Raised when a git command fails."""


class GitService:
    """Service for interacting with git repositories."""

    def __init__(self, repo_path: Optional[str | Path] = None) -> None:
        """Initialize with optional repository path."""
        self.repo_path = Path(repo_path) if repo_path else Path.cwd()
        self._default_branch: Optional[str] = None

    def _run_git_command(self, args: List[str], ok_codes: tuple[int, ...] = (0,)) -> str:
        """Run a git command and return its stdout."""
        cmd = ["git"] + args
        try:
            result = subprocess.run(
                cmd,
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                timeout=60,
            )
        except FileNotFoundError as e:
            raise GitError("git not found") from e
        except subprocess.TimeoutExpired as e:
            raise GitError(f"Git command timed out: {' '.join(cmd)}") from e
        if result.returncode not in ok_codes:
            raise GitError(f"Git command failed: {' '.join(cmd)}: {result.stderr.strip()}")
        return result.stdout

    def is_git_repo(self) -> bool:
        """True if repo_path is inside a git work tree."""
        try:
            return self._run_git_command(["rev-parse", "--is-inside-work-tree"]).strip() == "true"
        except GitError:
            return False

    def repo_root(self) -> Path:
        """Absolute path of the repository root."""
        try:
            return Path(self._run_git_command(["rev-parse", "--show-toplevel"]).strip())
        except GitError as e:
            raise GitError(f"not a git repository: {self.repo_path}") from e

    def current_branch(self) -> str:
        """Name of the checked out branch, or "" if unknown."""
        try:
            return self._run_git_command(["rev-parse", "--abbrev-ref", "HEAD"]).strip()
        except GitError:
            return ""

    def default_branch(self) -> str:
        """Name of the default branch; cached since it does not change during a session."""
        if self._default_branch is None:
            self._default_branch = self._detect_default_branch()
        return self._default_branch

    def _detect_default_branch(self) -> str:
        try:
            ref = self._run_git_command(["symbolic-ref", "refs/remotes/origin/HEAD"]).strip()
            if ref:
                # refs/remotes/origin/main -> main
                return ref.rsplit("/", 1)[-1]
        except GitError:
            pass

        for candidate in ("main", "master"):
            try:
                self._run_git_command(["rev-parse", "--verify", "--quiet", candidate])
                return candidate
            except GitError:
                continue
        return "main"

    def is_on_default_branch(self) -> bool:
        """True if HEAD is on the default branch."""
        return self.current_branch() == self.default_branch()

    def merge_base(self, ref: str) -> str:
        """Merge base commit between HEAD and ref."""
        return self._run_git_command(["merge-base", "HEAD", ref]).strip()

    def base_ref(self) -> str:
        """Comparison point for a review: the merge base off the default branch, "" on it."""
        if self.is_on_default_branch():
            return ""
        try:
            return self.merge_base(self.default_branch())
        except GitError as e:
            logger.debug("No merge base with %s: %s", self.default_branch(), e)
            return ""

    def changed_files(self) -> List[FileChange]:
        """Files changed in the working state, including untracked files.

        On the default branch: staged + unstaged changes against HEAD.
        On a feature branch: everything since the merge base with the default branch.
        """
        base = self.base_ref()
        if base:
            output = self._run_git_command(["diff", base, "--name-status"])
        else:
            try:
                output = self._run_git_command(["diff", "HEAD", "--name-status"])
            except GitError:
                # No HEAD yet (empty repository)
                output = self._run_git_command(["diff", "--name-status"])

        changes = parse_name_status(output)
        changes.extend(self.untracked_files())
        return dedup_changes(changes)

    def untracked_files(self) -> List[FileChange]:
        """Untracked files that are not ignored."""
        output = self._run_git_command(["ls-files", "--others", "--exclude-standard"])
        return [
            FileChange(path=line, status=FileStatus.ADDED)
            for line in output.strip().split("\n")
            if line
        ]

    def diff_unified(self, file_path: str, base_ref: str = "") -> str:
        """Raw unified diff of one file against base_ref (HEAD when empty)."""
        # git diff exits 1 when there are differences in some configurations
        return self._run_git_command(["diff", base_ref or "HEAD", "--", file_path], ok_codes=(0, 1))

    def file_diff_hunks(self, file_path: str, base_ref: str = "") -> List[DiffHunk]:
        """Parsed diff hunks of one file against base_ref."""
        return parse_unified_diff(self.diff_unified(file_path, base_ref))

    def working_tree_fingerprint(self) -> str:
        """Summary of working tree state; compare consecutive calls to detect changes."""
        try:
            return self._run_git_command(["status", "--porcelain"])
        except GitError:
            return ""


def parse_name_status(output: str) -> List[FileChange]:
    """Parse `git diff --name-status` output."""
    changes = []
    for line in output.strip().split("\n"):
        if not line:
            continue
        parts = line.split("\t", 2)
        if len(parts) < 2:
            continue
        status, path = parts[0], parts[1]
        # Renames (R100\told\tnew) report the new path
        if status.startswith("R") and len(parts) == 3:
            changes.append(FileChange(path=parts[2], status=FileStatus.RENAMED))
        elif status == "A":
            changes.append(FileChange(path=path, status=FileStatus.ADDED))
        elif status == "D":
            changes.append(FileChange(path=path, status=FileStatus.DELETED))
        else:
            changes.append(FileChange(path=path, status=FileStatus.MODIFIED))
    return changes


def dedup_changes(changes: List[FileChange]) -> List[FileChange]:
    """Remove duplicate paths, keeping the first occurrence."""
    seen = set()
    result = []
    for change in changes:
        if change.path not in seen:
            seen.add(change.path)
            result.append(change)
    return result
