"""Review session: files, comments, rounds and persistence.

A session moves through rounds. While a round is collecting, the reviewer
adds comments and the change watcher reports agent edits. An explicit
round-complete signal then snapshots the round, relocates unresolved comments
onto the edited content and starts the next round. The session never goes
back to an earlier round.

All mutable state is guarded by one reader/writer lock. Readers get copies.
Disk reads, hashing and git calls happen before the write lock is taken, and
the lock is held only to assign their results.

Review state is mirrored to a JSON file (``.crit.json``) that the agent reads
and writes. The contract is deliberately loose: whole-file reads and writes,
matched to file versions by content hash.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from crit.change_source import (
    ChangeSource,
    FilesChangeSource,
    GitChangeSource,
    detect_file_type,
)
from crit.config import settings
from crit.diff import (
    compute_line_diff,
    count_changes,
    diff_entries_to_hunks,
    map_old_line_to_new,
)
from crit.errors import (
    CommentNotFound,
    FileNotFoundInSession,
    InvalidCommentRequest,
    NoFilesToReview,
    SessionError,
)
from crit.event_manager import EventManager, EventType
from crit.file_entry import FileEntry
from crit.git_service import GitError, GitService
from crit.models import (
    Comment,
    CritState,
    DiffEntry,
    DiffHunk,
    FileChange,
    FileSnapshot,
    FileStatus,
    FileType,
    PreviousRound,
    ReviewResult,
    SessionFileInfo,
    SessionInfo,
    SessionMode,
)
from crit.output import generate_review_md, review_file_name
from crit.status import Status
from crit.utils.common import content_hash, utc_now
from crit.utils.locks import RWLock

logger = logging.getLogger(__name__)

STALE_NOTICE = (
    "The file has changed since the last review session. "
    "Previous comments may not align with the current content."
)


class ReviewSession:
    """Owns every file under review and the round lifecycle."""

    def __init__(
        self,
        source: ChangeSource,
        mode: SessionMode,
        branch: str = "",
        base_ref: str = "",
        output_dir: Optional[Path] = None,
        events: Optional[EventManager] = None,
        status: Optional[Status] = None,
        write_debounce: Optional[float] = None,
        state_file_name: Optional[str] = None,
        context_lines: Optional[int] = None,
    ) -> None:
        self.source = source
        self.mode = mode
        self.branch = branch
        self.base_ref = base_ref
        self.repo_root = source.root
        self.output_dir = Path(output_dir) if output_dir else source.root
        self.events = events if events is not None else EventManager(settings.subscriber_buffer)
        self.status = status
        self.write_debounce = settings.write_debounce if write_debounce is None else write_debounce
        self.state_file_name = state_file_name or settings.state_file_name
        self.context_lines = settings.context_lines if context_lines is None else context_lines

        self.review_round = 1
        self.files: List[FileEntry] = []
        self.share_url = ""
        self.delete_token = ""
        self.pending_edits = 0
        self.last_round_edits = 0

        self._lock = RWLock()
        self._write_timer: Optional[threading.Timer] = None
        self._write_gen = 0
        # Serializes polling passes and round transitions.
        self._pass_lock = threading.Lock()
        # Single-slot mailbox: repeated signals coalesce into one transition.
        self._round_requested = threading.Event()
        self._wakeups: List[Callable[[], None]] = []
        self._last_fingerprint = ""

        entries = self._build_entries(source.list_files())
        self._assign_hunks(entries, self._compute_hunks(entries))
        self.files = entries
        self.load_state()
        self._last_fingerprint = source.fingerprint()

    # ------------------------------------------------------------------
    # Construction

    @classmethod
    def from_files(
        cls,
        paths: Iterable[str | Path],
        output_dir: Optional[Path] = None,
        git: Optional[GitService] = None,
        **kwargs,
    ) -> "ReviewSession":
        """Review an explicit list of files and directories."""
        paths = list(paths)
        if not paths:
            raise NoFilesToReview("no files provided")

        if git is None:
            first = Path(paths[0]).resolve()
            git = GitService(first if first.is_dir() else first.parent)
        branch = base_ref = ""
        if git.is_git_repo():
            branch = git.current_branch()
            base_ref = git.base_ref()
        else:
            git = None

        source = FilesChangeSource(
            paths, git=git, base_ref=base_ref,
            state_file_name=kwargs.get("state_file_name") or settings.state_file_name,
        )
        return cls(source, SessionMode.FILES, branch=branch, base_ref=base_ref,
                   output_dir=output_dir, **kwargs)

    @classmethod
    def from_git(
        cls,
        repo_path: Optional[str | Path] = None,
        output_dir: Optional[Path] = None,
        **kwargs,
    ) -> "ReviewSession":
        """Review whatever git reports as changed."""
        git = GitService(repo_path)
        if not git.is_git_repo():
            raise SessionError(f"not a git repository: {git.repo_path}")

        base_ref = git.base_ref()
        source = GitChangeSource(
            git, base_ref=base_ref,
            state_file_name=kwargs.get("state_file_name") or settings.state_file_name,
        )
        if not source.list_files():
            raise NoFilesToReview("no changed files detected")
        return cls(source, SessionMode.GIT, branch=git.current_branch(), base_ref=base_ref,
                   output_dir=output_dir, **kwargs)

    def _build_entries(self, changes: List[FileChange]) -> List[FileEntry]:
        entries = []
        for change in changes:
            entry = self._build_entry(change)
            if entry is not None:
                entries.append(entry)
        return entries

    def _build_entry(self, change: FileChange) -> Optional[FileEntry]:
        entry = FileEntry(
            path=change.path,
            abs_path=self.source.abs_path(change.path),
            status=change.status,
            file_type=detect_file_type(change.path),
        )
        if change.status != FileStatus.DELETED:
            data = self.source.read_content(entry.abs_path)
            if data is None:
                # Vanished between listing and reading; the next listing will say so.
                return None
            entry.set_content(data)
        return entry

    def _compute_hunks(self, entries: List[FileEntry]) -> List[List[DiffHunk]]:
        return [self.source.diff_hunks(e.path, e.status, e.content) for e in entries]

    @staticmethod
    def _assign_hunks(entries: List[FileEntry], hunks: List[List[DiffHunk]]) -> None:
        for entry, file_hunks in zip(entries, hunks):
            entry.diff_hunks = file_hunks

    def _file_locked(self, path: str) -> FileEntry:
        for entry in self.files:
            if entry.path == path:
                return entry
        raise FileNotFoundInSession(path)

    # ------------------------------------------------------------------
    # Comments

    def add_comment(
        self, path: str, start_line: int, end_line: int, body: str, side: Optional[str] = None
    ) -> Comment:
        if not body.strip():
            raise InvalidCommentRequest("Comment body is required")
        if start_line < 1 or end_line < start_line:
            raise InvalidCommentRequest("Invalid line range")

        with self._lock.write():
            entry = self._file_locked(path)
            if side is None and end_line > max(entry.line_count(), 1):
                raise InvalidCommentRequest("Line range is outside the file")
            comment = entry.add_comment(start_line, end_line, body, side=side)
            self.schedule_write()
            comment = comment.model_copy(deep=True)
        self._comments_changed(path)
        return comment

    def update_comment(self, path: str, comment_id: str, body: str) -> Comment:
        if not body.strip():
            raise InvalidCommentRequest("Comment body is required")
        with self._lock.write():
            comment = self._file_locked(path).update_comment(comment_id, body)
            if comment is None:
                raise CommentNotFound(path, comment_id)
            self.schedule_write()
            comment = comment.model_copy(deep=True)
        self._comments_changed(path)
        return comment

    def delete_comment(self, path: str, comment_id: str) -> None:
        with self._lock.write():
            if not self._file_locked(path).delete_comment(comment_id):
                raise CommentNotFound(path, comment_id)
            self.schedule_write()
        self._comments_changed(path)

    def _comments_changed(self, path: str) -> None:
        self.events.publish(EventType.COMMENTS_CHANGED, {"path": path})

    def get_comments(self, path: str) -> List[Comment]:
        with self._lock.read():
            return [c.model_copy(deep=True) for c in self._file_locked(path).comments]

    def get_all_comments(self) -> Dict[str, List[Comment]]:
        with self._lock.read():
            return {
                f.path: [c.model_copy(deep=True) for c in f.comments]
                for f in self.files
                if f.comments
            }

    def total_comment_count(self) -> int:
        with self._lock.read():
            return sum(len(f.comments) for f in self.files)

    # ------------------------------------------------------------------
    # Queries

    def file_paths(self) -> List[str]:
        with self._lock.read():
            return [f.path for f in self.files]

    def get_file_snapshot(self, path: str) -> FileSnapshot:
        with self._lock.read():
            f = self._file_locked(path)
            return FileSnapshot(
                path=f.path,
                status=f.status,
                file_type=f.file_type,
                content=f.content,
                file_hash=f.content_hash,
                stale_notice=f.stale_notice,
            )

    def get_file_diff(self, path: str) -> List[DiffHunk]:
        """Hunks to render for a file.

        Code files and git mode use the baseline diff from the change source.
        Markdown in files mode shows what changed since the round began.
        """
        with self._lock.read():
            f = self._file_locked(path)
            if f.file_type == FileType.CODE or self.mode == SessionMode.GIT:
                return [h.model_copy(deep=True) for h in f.diff_hunks]
            previous, current = f.previous_content, f.content
        if previous is None:
            return []
        return diff_entries_to_hunks(compute_line_diff(previous, current), self.context_lines)

    def get_line_diff(self, path: str) -> List[DiffEntry]:
        """Line diff between the start of the round and the current content."""
        with self._lock.read():
            f = self._file_locked(path)
            previous, current = f.previous_content, f.content
        if previous is None:
            return []
        return compute_line_diff(previous, current)

    def get_previous_round(self, path: str) -> PreviousRound:
        with self._lock.read():
            f = self._file_locked(path)
            return PreviousRound(
                path=f.path,
                content=f.previous_content or "",
                comments=[c.model_copy(deep=True) for c in f.previous_comments],
                review_round=self.review_round,
            )

    def clear_stale_notice(self, path: str) -> None:
        with self._lock.write():
            self._file_locked(path).stale_notice = ""

    def get_session_info(self) -> SessionInfo:
        with self._lock.read():
            files = []
            for f in self.files:
                additions, deletions = count_changes(f.diff_hunks)
                files.append(
                    SessionFileInfo(
                        path=f.path,
                        status=f.status,
                        file_type=f.file_type,
                        comment_count=len(f.comments),
                        additions=additions,
                        deletions=deletions,
                    )
                )
            return SessionInfo(
                mode=self.mode,
                branch=self.branch,
                base_ref=self.base_ref,
                review_round=self.review_round,
                pending_edits=self.pending_edits,
                files=files,
            )

    def get_review_round(self) -> int:
        with self._lock.read():
            return self.review_round

    def get_pending_edits(self) -> int:
        with self._lock.read():
            return self.pending_edits

    def get_last_round_edits(self) -> int:
        with self._lock.read():
            return self.last_round_edits

    def round_summary(self) -> Tuple[int, int]:
        """(resolved, open) counts over the previous round's comments."""
        with self._lock.read():
            return self._round_summary_locked()

    def _round_summary_locked(self) -> Tuple[int, int]:
        resolved = open_count = 0
        for f in self.files:
            for c in f.previous_comments:
                if c.resolved:
                    resolved += 1
                else:
                    open_count += 1
        return resolved, open_count

    # ------------------------------------------------------------------
    # Sharing

    def get_share(self) -> Tuple[str, str]:
        with self._lock.read():
            return self.share_url, self.delete_token

    def set_share(self, url: str, delete_token: str = "") -> None:
        with self._lock.write():
            self.share_url = url
            self.delete_token = delete_token
            self.schedule_write()

    def clear_share(self) -> None:
        self.set_share("", "")

    # ------------------------------------------------------------------
    # Persistence

    @property
    def state_path(self) -> Path:
        return self.output_dir / self.state_file_name

    def schedule_write(self) -> None:
        """Debounce a state write. The caller must hold the write lock."""
        if self._write_timer is not None:
            self._write_timer.cancel()
        gen = self._write_gen
        timer = threading.Timer(self.write_debounce, self._fire_write, args=(gen,))
        timer.daemon = True
        self._write_timer = timer
        timer.start()

    def _cancel_write_locked(self) -> None:
        if self._write_timer is not None:
            self._write_timer.cancel()
            self._write_timer = None
        self._write_gen += 1

    def _fire_write(self, gen: int) -> None:
        self.write_state(gen)

    def flush(self) -> None:
        """Cancel any pending write and write now."""
        with self._lock.write():
            if self._write_timer is not None:
                self._write_timer.cancel()
                self._write_timer = None
        self.write_state()

    def review_file_path(self, path: str) -> Path:
        """Where the review markdown for a session file is written."""
        return self.output_dir / review_file_name(path)

    def _state_document_locked(self) -> dict:
        files = {}
        for f in self.files:
            if not f.comments:
                continue
            files[f.path] = {
                "status": f.status.value,
                "file_hash": f.content_hash,
                "comments": [c.model_dump(mode="json", exclude_defaults=True) for c in f.comments],
            }
        document = {
            "branch": self.branch,
            "base_ref": self.base_ref,
            "updated_at": utc_now(),
            "review_round": self.review_round,
            "files": files,
        }
        if self.share_url:
            document["share_url"] = self.share_url
        if self.delete_token:
            document["delete_token"] = self.delete_token
        return document

    def _review_docs_locked(self) -> List[Tuple[Path, Optional[str]]]:
        """Review markdown per markdown file; None means the file should not exist."""
        docs = []
        for f in self.files:
            if f.file_type != FileType.MARKDOWN:
                continue
            text = generate_review_md(f.content, f.comments) if f.comments else None
            docs.append((self.review_file_path(f.path), text))
        return docs

    def write_state(self, gen: Optional[int] = None) -> None:
        """Write the review state file, or remove it when there is nothing to keep.

        With ``gen`` set, the write is skipped if a newer generation has
        superseded it. Review markdown files are written alongside. Failures
        are logged; the next scheduled write tries again.
        """
        with self._lock.read():
            if gen is not None and gen != self._write_gen:
                return
            document = self._state_document_locked()
            review_docs = self._review_docs_locked()

        path = self.state_path
        try:
            if not document["files"] and "share_url" not in document and "delete_token" not in document:
                path.unlink(missing_ok=True)
            else:
                _write_atomic(path, json.dumps(document, indent=2))
        except OSError as e:
            logger.error("Error writing %s: %s", path, e)

        for review_path, text in review_docs:
            try:
                if text is None:
                    review_path.unlink(missing_ok=True)
                else:
                    review_path.parent.mkdir(parents=True, exist_ok=True)
                    _write_atomic(review_path, text)
            except OSError as e:
                logger.error("Error writing %s: %s", review_path, e)

    def _read_state(self) -> Optional[CritState]:
        """Parse the state file; None if it is missing or unusable."""
        try:
            raw = self.state_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Could not read %s: %s", self.state_path, e)
            return None
        try:
            return CritState.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Ignoring malformed %s: %s", self.state_path, e)
            return None

    def load_state(self) -> None:
        """Restore share metadata and comments whose file content is unchanged."""
        state = self._read_state()
        if state is None:
            return
        with self._lock.write():
            self.share_url = state.share_url or ""
            self.delete_token = state.delete_token or ""
            for f in self.files:
                saved = state.files.get(f.path)
                if saved is None:
                    continue
                if saved.file_hash == f.content_hash:
                    f.restore_comments(saved.comments)
                elif saved.comments:
                    f.stale_notice = STALE_NOTICE

    # ------------------------------------------------------------------
    # Edit detection

    def add_wakeup(self, callback: Callable[[], None]) -> None:
        """Register a callback run whenever a round-complete signal arrives."""
        self._wakeups.append(callback)

    def remove_wakeup(self, callback: Callable[[], None]) -> None:
        if callback in self._wakeups:
            self._wakeups.remove(callback)

    def poll_changes(self) -> bool:
        """Run one change-detection pass. Returns True if an edit was detected."""
        with self._pass_lock:
            fingerprint = self.source.fingerprint()
            if fingerprint == self._last_fingerprint:
                return False
            self._last_fingerprint = fingerprint

            with self._lock.read():
                known = [(f, f.abs_path, f.content_hash) for f in self.files if f.status != FileStatus.DELETED]

            changed = []
            for entry, abs_path, old_hash in known:
                data = self.source.read_content(abs_path)
                if data is None:
                    continue
                if content_hash(data) != old_hash:
                    changed.append((entry, data))

            # In git mode any working tree change counts, including new files.
            if not changed and self.mode != SessionMode.GIT:
                return False

            with self._lock.write():
                for entry, data in changed:
                    entry.apply_edit(data, self.review_round)
                self.pending_edits += 1
                pending = self.pending_edits

        logger.debug("Edit detected (%d this round)", pending)
        self.events.publish(EventType.EDIT_DETECTED, {"pending_edits": pending})
        return True

    # ------------------------------------------------------------------
    # Round transition

    def signal_round_complete(self) -> None:
        """Request a round transition; handled by the watcher thread."""
        with self._lock.write():
            # Keep a queued write from clobbering what the agent put in the state file.
            self._cancel_write_locked()
        self._round_requested.set()
        for callback in list(self._wakeups):
            callback()

    def take_round_request(self) -> bool:
        """Consume a pending round-complete signal, if any."""
        if self._round_requested.is_set():
            self._round_requested.clear()
            return True
        return False

    def _load_resolutions(self) -> Optional[Dict[str, List[Comment]]]:
        state = self._read_state()
        if state is None:
            # Unresolved comments are dropped rather than carried forward
            # unresolved when the agent left no state file.
            logger.warning(
                "No usable %s at round completion; previous comments will not be carried forward",
                self.state_file_name,
            )
            return None
        return {path: saved.comments for path, saved in state.files.items()}

    def complete_round(self) -> int:
        """Move to the next round. Returns the new round number."""
        with self._pass_lock:
            with self._lock.write():
                self._cancel_write_locked()
                self.last_round_edits = self.pending_edits
                self.pending_edits = 0
                edits = self.last_round_edits
                ending_round = self.review_round
                known = [(f, f.abs_path) for f in self.files if f.status != FileStatus.DELETED]

            resolutions = self._load_resolutions()
            reads = {id(entry): self.source.read_content(abs_path) for entry, abs_path in known}

            with self._lock.write():
                now = utc_now()
                for f in self.files:
                    if f.previous_content is not None and f.snapshot_round != ending_round:
                        # Not edited this round: the baseline is the content the round started with.
                        f.take_snapshot(ending_round)
                    data = reads.get(id(f))
                    if data is not None and content_hash(data) != f.content_hash:
                        f.set_content(data)
                    f.previous_comments = list(resolutions.get(f.path, [])) if resolutions else []
                    f.reset_comments()
                    f.stale_notice = ""
                    self._carry_forward_locked(f, now)
                self.review_round += 1
                new_round = self.review_round

            self._refresh_files()
            self._last_fingerprint = self.source.fingerprint()

            with self._lock.read():
                resolved, open_count = self._round_summary_locked()

        logger.info("Round %d started (%d resolved, %d open)", new_round, resolved, open_count)
        if self.status is not None:
            self.status.file_updated(edits)
            self.status.round_ready(new_round, resolved, open_count)
        self.events.publish(EventType.STATE_CHANGED, {"review_round": new_round})
        return new_round

    def _carry_forward_locked(self, f: FileEntry, now: str) -> None:
        """Re-attach unresolved previous comments at their remapped lines."""
        if f.previous_content is None or not f.previous_comments:
            return
        line_map = map_old_line_to_new(compute_line_diff(f.previous_content, f.content))
        line_count = max(f.line_count(), 1)
        for c in f.previous_comments:
            if c.resolved:
                continue
            start = line_map.get(c.start_line, c.start_line)
            end = line_map.get(c.end_line, c.end_line)
            start = max(1, min(start, line_count))
            end = max(start, min(end, line_count))
            f.reissue(c, start, end, now)

    def _refresh_files(self) -> None:
        """Re-run discovery (when the source supports it) and recompute diffs."""
        if self.source.rediscovers_files:
            try:
                changes = self.source.list_files()
            except GitError as e:
                logger.warning("Could not refresh file list: %s", e)
                changes = None
        else:
            changes = None

        with self._lock.read():
            existing = {f.path: f for f in self.files}

        if changes is not None:
            fresh = {
                c.path: self._build_entry(c)
                for c in changes
                if c.path not in existing
            }
            with self._lock.write():
                files = []
                for change in changes:
                    entry = existing.get(change.path) or fresh.get(change.path)
                    if entry is None:
                        continue
                    entry.status = change.status
                    files.append(entry)
                self.files = files

        with self._lock.read():
            entries = list(self.files)
            work = [(f.path, f.status, f.content) for f in entries]
        hunks = [self.source.diff_hunks(path, status, content) for path, status, content in work]
        with self._lock.write():
            self._assign_hunks(entries, hunks)

    # ------------------------------------------------------------------
    # Finish and shutdown

    def finish(self, port: Optional[int] = None) -> ReviewResult:
        """Write review state now and build the hand-off for the agent."""
        self.flush()
        with self._lock.read():
            count = sum(len(f.comments) for f in self.files)
            review_round = self.review_round
            review_files = [
                str(self.review_file_path(f.path))
                for f in self.files
                if f.file_type == FileType.MARKDOWN and f.comments
            ]

        prompt = ""
        if count:
            state_file = str(self.state_path)
            targets = ", ".join(review_files + [state_file]) if review_files else state_file
            go_cmd = f"crit go --wait {port}" if port else "crit go --wait"
            prompt = (
                f"Address review comments in {targets}. "
                f'Mark resolved in {state_file} (set "resolved": true, optionally '
                f'"resolution_note" and "resolution_lines"). '
                f"When done run: `{go_cmd}`"
            )

        result = ReviewResult(
            prompt=prompt,
            review_file=str(self.state_path),
            comment_count=count,
            review_round=review_round,
        )
        self.events.publish(EventType.REVIEW_FINISHED, {"comment_count": count, "review_round": review_round})
        return result

    def shutdown(self) -> None:
        """Tell subscribers the server is going away."""
        self.events.publish(EventType.SERVER_SHUTDOWN, {})


def _write_atomic(path: Path, text: str) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(text, encoding="utf-8")
    os.replace(tmp_path, path)
