from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from crit.diff import split_lines
from crit.models import Comment, DiffHunk, FileStatus, FileType
from crit.utils.common import content_hash, utc_now


@dataclass
class FileEntry:
    """Review state for one file.

    Owned by a ReviewSession, which holds its lock around every call that
    mutates an entry.
    """

    path: str
    abs_path: Path
    status: FileStatus
    file_type: FileType
    content: str = ""
    content_hash: str = ""
    comments: List[Comment] = field(default_factory=list)
    next_id: int = 1
    diff_hunks: List[DiffHunk] = field(default_factory=list)

    # State at the start of the current round, for inter-round diffs and
    # comment carry-forward. None means there is no previous version.
    previous_content: Optional[str] = None
    previous_comments: List[Comment] = field(default_factory=list)
    snapshot_round: int = 0

    stale_notice: str = ""

    def set_content(self, data: bytes) -> None:
        self.content = data.decode("utf-8", errors="replace")
        self.content_hash = content_hash(data)

    def line_count(self) -> int:
        return len(split_lines(self.content))

    def find_comment(self, comment_id: str) -> Optional[Comment]:
        for comment in self.comments:
            if comment.id == comment_id:
                return comment
        return None

    def add_comment(self, start_line: int, end_line: int, body: str, side: Optional[str] = None) -> Comment:
        now = utc_now()
        comment = Comment(
            id=f"c{self.next_id}",
            start_line=start_line,
            end_line=end_line,
            side=side,
            body=body,
            created_at=now,
            updated_at=now,
        )
        self.next_id += 1
        self.comments.append(comment)
        return comment

    def update_comment(self, comment_id: str, body: str) -> Optional[Comment]:
        comment = self.find_comment(comment_id)
        if comment is not None:
            comment.body = body
            comment.updated_at = utc_now()
        return comment

    def delete_comment(self, comment_id: str) -> bool:
        for i, comment in enumerate(self.comments):
            if comment.id == comment_id:
                del self.comments[i]
                return True
        return False

    def reset_comments(self) -> None:
        self.comments = []
        self.next_id = 1

    def restore_comments(self, comments: List[Comment]) -> None:
        """Adopt comments loaded from the state file and continue numbering after them."""
        self.comments = [c.model_copy(deep=True) for c in comments]
        self.next_id = 1
        for comment in self.comments:
            if comment.id.startswith("c") and comment.id[1:].isdigit():
                self.next_id = max(self.next_id, int(comment.id[1:]) + 1)

    def take_snapshot(self, review_round: int) -> None:
        """Remember content and comments as they were at the start of this round."""
        self.previous_content = self.content
        self.previous_comments = [c.model_copy(deep=True) for c in self.comments]
        self.snapshot_round = review_round

    def apply_edit(self, data: bytes, review_round: int) -> None:
        """Replace content with an on-disk edit.

        Only the first edit of a round snapshots, so the inter-round diff always
        spans the whole round however many times the file was saved. Existing
        comments refer to the old content and are dropped.
        """
        if self.snapshot_round != review_round:
            self.take_snapshot(review_round)
        self.set_content(data)
        self.reset_comments()
        self.stale_notice = ""

    def reissue(self, comment: Comment, start_line: int, end_line: int, now: str) -> Comment:
        """Re-attach a previous-round comment under a fresh ID."""
        carried = comment.model_copy(
            update={
                "id": f"c{self.next_id}",
                "start_line": start_line,
                "end_line": end_line,
                "updated_at": now,
                "resolution_lines": list(comment.resolution_lines),
                "carried_forward": True,
            }
        )
        self.next_id += 1
        self.comments.append(carried)
        return carried
