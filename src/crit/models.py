from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class FileStatus(str, Enum):
    """Change status of a file under review."""
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    UNTRACKED = "untracked"
    RENAMED = "renamed"


class FileType(str, Enum):
    """Markdown files are annotated on their content, code files on their diff."""
    MARKDOWN = "markdown"
    CODE = "code"


class SessionMode(str, Enum):
    """How the session found its files."""
    FILES = "files"
    GIT = "git"


class DiffEntryType(str, Enum):
    """Classification of a line in a line-level diff."""
    UNCHANGED = "unchanged"
    ADDED = "added"
    REMOVED = "removed"


class DiffEntry(BaseModel):
    """A single line of a line-level diff. Line numbers are 1-based, 0 if not applicable."""
    type: DiffEntryType
    old_line: int = 0
    new_line: int = 0
    text: str


class LineType(str, Enum):
    """Type of line in a diff hunk."""
    CONTEXT = "context"
    ADD = "add"
    DEL = "del"


class DiffLine(BaseModel):
    """A single line in a diff hunk."""
    type: LineType
    content: str
    old_num: int = 0
    new_num: int = 0


class DiffHunk(BaseModel):
    """A contiguous block of a diff with its surrounding context."""
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    header: str
    lines: List[DiffLine] = Field(default_factory=list)


class FileChange(BaseModel):
    """A file reported by a change source."""
    path: str
    status: FileStatus


class Comment(BaseModel):
    """An inline review comment anchored to a line range."""
    id: str
    start_line: int
    end_line: int
    side: Optional[str] = None
    body: str
    created_at: str
    updated_at: str
    resolved: bool = False
    resolution_note: str = ""
    resolution_lines: List[int] = Field(default_factory=list)
    carried_forward: bool = False


class CritStateFile(BaseModel):
    """Per-file section of the review state file."""
    status: FileStatus = FileStatus.MODIFIED
    file_hash: str = ""
    comments: List[Comment] = Field(default_factory=list)


class CritState(BaseModel):
    """On-disk review state shared with the agent."""
    branch: str = ""
    base_ref: str = ""
    updated_at: str = ""
    review_round: int = 1
    share_url: Optional[str] = None
    delete_token: Optional[str] = None
    files: Dict[str, CritStateFile] = Field(default_factory=dict)


class CommentRequest(BaseModel):
    """Request to create a comment."""
    start_line: int
    end_line: int
    side: Optional[str] = None
    body: str


class CommentUpdateRequest(BaseModel):
    """Request to change a comment's body."""
    body: str


class ShareRequest(BaseModel):
    """Share metadata reported by the front end after publishing a review."""
    url: str
    delete_token: str = ""


class SessionFileInfo(BaseModel):
    """Summary of a file for the session overview."""
    path: str
    status: FileStatus
    file_type: FileType
    comment_count: int
    additions: int
    deletions: int


class SessionInfo(BaseModel):
    """Snapshot of session metadata."""
    mode: SessionMode
    branch: str
    base_ref: str
    review_round: int
    pending_edits: int
    files: List[SessionFileInfo] = Field(default_factory=list)


class FileSnapshot(BaseModel):
    """Current content of one file."""
    path: str
    status: FileStatus
    file_type: FileType
    content: str
    file_hash: str
    stale_notice: str = ""


class PreviousRound(BaseModel):
    """State of one file at the start of the round that just ended."""
    path: str
    content: str
    comments: List[Comment]
    review_round: int


class ReviewResult(BaseModel):
    """Outcome of finishing a review, handed to a waiting agent."""
    prompt: str
    review_file: str
    comment_count: int
    review_round: int
