"""Where a review session gets its files from.

A session picks one strategy when it is created and keeps it:

* :class:`FilesChangeSource` reviews exactly the paths it was given.
* :class:`GitChangeSource` reviews whatever git reports as changed and picks
  up files the agent creates or deletes between rounds.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from crit.diff import new_file_hunks
from crit.errors import NoFilesToReview
from crit.git_service import GitError, GitService
from crit.models import DiffHunk, FileChange, FileStatus, FileType
from crit.output import is_review_file

logger = logging.getLogger(__name__)

SKIPPED_DIRECTORIES = frozenset({"node_modules", "vendor", "__pycache__", "dist", "build"})

BINARY_EXTENSIONS = frozenset({
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".svg",
    ".mp3", ".mp4", ".wav", ".avi", ".mov", ".mkv",
    ".zip", ".tar", ".gz", ".bz2", ".xz", ".7z", ".rar",
    ".exe", ".dll", ".so", ".dylib", ".bin",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".woff", ".woff2", ".ttf", ".otf", ".eot",
    ".pyc", ".class", ".o", ".a",
})

MARKDOWN_EXTENSIONS = frozenset({".md", ".markdown", ".mdown"})


def detect_file_type(path: str | Path) -> FileType:
    """Markdown for .md-like files, code for everything else."""
    if Path(path).suffix.lower() in MARKDOWN_EXTENSIONS:
        return FileType.MARKDOWN
    return FileType.CODE


def is_binary_extension(ext: str) -> bool:
    """True for extensions of files that are not reviewable text."""
    return ext.lower() in BINARY_EXTENSIONS


def walk_directory(directory: Path) -> List[Path]:
    """Recursively list reviewable files under directory.

    Hidden entries, dependency/build directories, minified assets and binary
    files are skipped.
    """
    files = []
    for dirpath, dirnames, filenames in os.walk(directory, onerror=lambda e: None):
        dirnames[:] = sorted(
            d for d in dirnames if not d.startswith(".") and d not in SKIPPED_DIRECTORIES
        )
        for name in sorted(filenames):
            lower = name.lower()
            if name.startswith("."):
                continue
            if lower.endswith(".min.js") or lower.endswith(".min.css"):
                continue
            if is_binary_extension(os.path.splitext(lower)[1]):
                continue
            files.append(Path(dirpath) / name)
    return files


class ChangeSource(ABC):
    """Feeds file lists, content and diffs into a review session."""

    #: Whether a round transition should re-run file discovery.
    rediscovers_files: bool = False

    def __init__(self, root: Path, git: Optional[GitService], base_ref: str, state_file_name: str) -> None:
        self.root = root
        self.git = git
        self.base_ref = base_ref
        self.state_file_name = state_file_name

    @abstractmethod
    def list_files(self) -> List[FileChange]:
        """Current files with their status."""

    @abstractmethod
    def fingerprint(self) -> str:
        """Cheap summary of on-disk state; a change means "look closer"."""

    @abstractmethod
    def watch_paths(self) -> List[Tuple[Path, bool]]:
        """Directories worth watching for filesystem events, with a recursive flag."""

    def abs_path(self, path: str) -> Path:
        """Absolute on-disk location of a session path."""
        return self.root / path

    def read_content(self, abs_path: Path) -> Optional[bytes]:
        """Current bytes of a file, or None if it vanished or cannot be read."""
        try:
            return abs_path.read_bytes()
        except OSError as e:
            logger.debug("Could not read %s: %s", abs_path, e)
            return None

    def diff_hunks(self, path: str, status: FileStatus, content: str) -> List[DiffHunk]:
        """Diff of a file relative to its baseline."""
        if status == FileStatus.DELETED:
            return []
        if status in (FileStatus.ADDED, FileStatus.UNTRACKED):
            return new_file_hunks(content)
        if self.git is None:
            return []
        try:
            return self.git.file_diff_hunks(path, self.base_ref)
        except GitError as e:
            logger.warning("Could not diff %s: %s", path, e)
            return []

    def _is_session_output(self, path: str) -> bool:
        """The session's own state and review files, including in-progress writes."""
        name = Path(path).name
        return name in (self.state_file_name, self.state_file_name + ".tmp") or is_review_file(name)


class FilesChangeSource(ChangeSource):
    """An explicit set of files, fixed for the lifetime of the session."""

    rediscovers_files = False

    def __init__(
        self,
        paths: Iterable[str | Path],
        git: Optional[GitService] = None,
        base_ref: str = "",
        state_file_name: str = ".crit.json",
    ) -> None:
        expanded: List[Path] = []
        for p in paths:
            abs_path = Path(p).resolve()
            if not abs_path.exists():
                raise FileNotFoundError(f"file not found: {p}")
            if abs_path.is_dir():
                expanded.extend(walk_directory(abs_path))
            else:
                expanded.append(abs_path)

        seen = set()
        self.files: List[Path] = []
        for p in expanded:
            if p not in seen and p.name != state_file_name and not is_review_file(p.name):
                seen.add(p)
                self.files.append(p)
        if not self.files:
            raise NoFilesToReview("no files found")

        root = self.files[0].parent
        if git is not None:
            try:
                root = git.repo_root().resolve()
            except GitError:
                git = None
        super().__init__(root, git, base_ref, state_file_name)

    def _relative(self, abs_path: Path) -> str:
        try:
            return abs_path.relative_to(self.root).as_posix()
        except ValueError:
            return str(abs_path)

    def list_files(self) -> List[FileChange]:
        return [FileChange(path=self._relative(p), status=FileStatus.MODIFIED) for p in self.files]

    def abs_path(self, path: str) -> Path:
        candidate = Path(path)
        if candidate.is_absolute():
            return candidate
        return self.root / candidate

    def diff_hunks(self, path: str, status: FileStatus, content: str) -> List[DiffHunk]:
        # Outside a repository there is no baseline to diff against.
        if self.git is None:
            return []
        return super().diff_hunks(path, status, content)

    def fingerprint(self) -> str:
        parts = []
        for p in self.files:
            try:
                st = p.stat()
            except OSError:
                parts.append(f"{p}:missing")
                continue
            parts.append(f"{p}:{st.st_mtime_ns}:{st.st_size}")
        return "\n".join(parts)

    def watch_paths(self) -> List[Tuple[Path, bool]]:
        return [(d, False) for d in sorted({p.parent for p in self.files})]


class GitChangeSource(ChangeSource):
    """Files git reports as changed, re-discovered every round."""

    rediscovers_files = True

    def __init__(self, git: GitService, base_ref: str = "", state_file_name: str = ".crit.json") -> None:
        super().__init__(git.repo_root().resolve(), git, base_ref, state_file_name)
        self.git_service = git

    def list_files(self) -> List[FileChange]:
        return [c for c in self.git_service.changed_files() if not self._is_session_output(c.path)]

    def fingerprint(self) -> str:
        parts = []
        for line in self.git_service.working_tree_fingerprint().split("\n"):
            if not line:
                continue
            # "XY path" or "XY old -> new"; a dirty file saved twice keeps its status line.
            path = line[3:].split(" -> ")[-1].strip('"')
            if self._is_session_output(path):
                continue
            try:
                st = (self.root / path).stat()
                parts.append(f"{line}:{st.st_mtime_ns}:{st.st_size}")
            except OSError:
                parts.append(line)
        return "\n".join(parts)

    def watch_paths(self) -> List[Tuple[Path, bool]]:
        return [(self.root, True)]
