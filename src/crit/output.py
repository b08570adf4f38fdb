"""Review markdown: a document with its open comments inlined as blockquotes.

For each markdown file that has comments, the session writes a copy named
``<stem>.review<ext>`` next to the state file so an agent can read the
comments in place.
"""

from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List

from crit.models import Comment

REVIEW_SUFFIX = ".review"


def review_file_name(path: str) -> str:
    """``docs/plan.md`` -> ``docs/plan.review.md``."""
    p = Path(path)
    return p.with_name(f"{p.stem}{REVIEW_SUFFIX}{p.suffix}").as_posix()


def is_review_file(path: str) -> bool:
    """True for review markdown files, including their in-progress .tmp copies."""
    name = Path(path).name
    if name.endswith(".tmp"):
        name = name[: -len(".tmp")]
    return Path(name).stem.endswith(REVIEW_SUFFIX)


def format_comment(comment: Comment) -> str:
    if comment.start_line == comment.end_line:
        header = f"Line {comment.start_line}"
    else:
        header = f"Lines {comment.start_line}-{comment.end_line}"
    body = "\n> ".join(comment.body.split("\n"))
    return f"> **[REVIEW COMMENT — {header}]**: {body}"


def generate_review_md(content: str, comments: Iterable[Comment]) -> str:
    """Insert every unresolved comment after its end line.

    Comments ending on the same line are ordered by start line. With no open
    comments the content is returned unchanged.
    """
    active = sorted(
        (c for c in comments if not c.resolved),
        key=lambda c: (c.end_line, c.start_line),
    )
    if not active:
        return content

    insert_after: Dict[int, List[Comment]] = defaultdict(list)
    for comment in active:
        insert_after[comment.end_line].append(comment)

    lines = content.split("\n")
    out: List[str] = []
    for number, line in enumerate(lines, start=1):
        out.append(line)
        if number < len(lines):
            out.append("\n")
        for comment in insert_after.get(number, []):
            out.append("\n")
            out.append(format_comment(comment))
            out.append("\n")
    return "".join(out)
