"""Exceptions raised by the review session."""


class SessionError(Exception):
    """Base class for review session errors."""


class NoFilesToReview(SessionError):
    """Raised when a session would start with nothing to review."""


class FileNotFoundInSession(SessionError):
    """Raised when a path is not part of the session."""

    def __init__(self, path: str) -> None:
        super().__init__(f"File not found: {path}")
        self.path = path


class CommentNotFound(SessionError):
    """Raised when a comment ID does not exist in a file."""

    def __init__(self, path: str, comment_id: str) -> None:
        super().__init__(f"Comment not found: {comment_id} in {path}")
        self.path = path
        self.comment_id = comment_id


class InvalidCommentRequest(SessionError):
    """Raised for an empty body or an invalid line range."""
