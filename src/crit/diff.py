"""Line-level diffing, line remapping and hunk construction.

Two producers feed the same :class:`DiffHunk` shape: the LCS engine in this
module (used between review rounds) and unified diff text produced by git.

The LCS table is O(m*n) in both time and memory. That is fine for documents up
to a few tens of thousands of lines, which covers anything a human reviews by
hand; larger inputs will be slow.
"""

import re
from typing import Dict, List, Optional, Sequence, Tuple

from crit.models import DiffEntry, DiffEntryType, DiffHunk, DiffLine, LineType

DEFAULT_CONTEXT_LINES = 3

HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@(.*)$")
NO_NEWLINE_MARKER = "\\ No newline at end of file"


def split_lines(content: str) -> List[str]:
    """Split content into lines; empty content has no lines."""
    if content == "":
        return []
    return content.split("\n")


def compute_line_diff(old_content: str, new_content: str) -> List[DiffEntry]:
    """Compute a line-level diff between two documents."""
    return diff_lines(split_lines(old_content), split_lines(new_content))


def diff_lines(old_lines: Sequence[str], new_lines: Sequence[str]) -> List[DiffEntry]:
    """Classify every line of both sequences as unchanged, added or removed.

    Lines are compared verbatim. On ties the backtrack consumes the new line
    first, so within a replaced block removals come out before additions.
    """
    m, n = len(old_lines), len(new_lines)

    table = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(1, m + 1):
        row, prev = table[i], table[i - 1]
        old = old_lines[i - 1]
        for j in range(1, n + 1):
            if old == new_lines[j - 1]:
                row[j] = prev[j - 1] + 1
            elif prev[j] >= row[j - 1]:
                row[j] = prev[j]
            else:
                row[j] = row[j - 1]

    result: List[DiffEntry] = []
    i, j = m, n
    while i > 0 or j > 0:
        if i > 0 and j > 0 and old_lines[i - 1] == new_lines[j - 1]:
            result.append(
                DiffEntry(type=DiffEntryType.UNCHANGED, old_line=i, new_line=j, text=new_lines[j - 1])
            )
            i -= 1
            j -= 1
        elif j > 0 and (i == 0 or table[i][j - 1] >= table[i - 1][j]):
            result.append(DiffEntry(type=DiffEntryType.ADDED, new_line=j, text=new_lines[j - 1]))
            j -= 1
        else:
            result.append(DiffEntry(type=DiffEntryType.REMOVED, old_line=i, text=old_lines[i - 1]))
            i -= 1

    result.reverse()
    return result


def map_old_line_to_new(entries: Sequence[DiffEntry]) -> Dict[int, int]:
    """Map old line numbers to new line numbers.

    Unchanged lines map directly. A removed line maps to the new line that
    follows it, or to the last new line when nothing follows. When the new
    document is empty, removed lines stay unmapped and callers must clamp.
    """
    mapping: Dict[int, int] = {}
    for entry in entries:
        if entry.type == DiffEntryType.UNCHANGED:
            mapping[entry.old_line] = entry.new_line

    next_new_line = 0
    unmapped: List[int] = []
    for entry in reversed(entries):
        if entry.new_line > 0:
            next_new_line = entry.new_line
        if entry.type == DiffEntryType.REMOVED and entry.old_line not in mapping:
            if next_new_line > 0:
                mapping[entry.old_line] = next_new_line
            else:
                unmapped.append(entry.old_line)

    if unmapped:
        last_new_line = max((e.new_line for e in entries), default=0)
        if last_new_line > 0:
            for old_line in unmapped:
                mapping[old_line] = last_new_line

    return mapping


def _hunk_header(old_start: int, old_count: int, new_start: int, new_count: int) -> str:
    return f"@@ -{old_start},{old_count} +{new_start},{new_count} @@"


def diff_entries_to_hunks(
    entries: Sequence[DiffEntry], context_lines: int = DEFAULT_CONTEXT_LINES
) -> List[DiffHunk]:
    """Group a line diff into unified-diff style hunks.

    Changes separated by at most ``2 * context_lines`` unchanged lines share a
    hunk; each hunk is padded with ``context_lines`` of context on both sides.
    """
    changed = [k for k, e in enumerate(entries) if e.type != DiffEntryType.UNCHANGED]
    if not changed:
        return []

    clusters: List[Tuple[int, int]] = []
    first = last = changed[0]
    for k in changed[1:]:
        if k - last - 1 > 2 * context_lines:
            clusters.append((first, last))
            first = k
        last = k
    clusters.append((first, last))

    # Lines of each side consumed before index k.
    old_before = [0] * (len(entries) + 1)
    new_before = [0] * (len(entries) + 1)
    for k, entry in enumerate(entries):
        old_before[k + 1] = old_before[k] + (1 if entry.old_line > 0 else 0)
        new_before[k + 1] = new_before[k] + (1 if entry.new_line > 0 else 0)

    hunks: List[DiffHunk] = []
    for first, last in clusters:
        start = max(0, first - context_lines)
        end = min(len(entries) - 1, last + context_lines)

        lines: List[DiffLine] = []
        for entry in entries[start:end + 1]:
            if entry.type == DiffEntryType.UNCHANGED:
                lines.append(
                    DiffLine(type=LineType.CONTEXT, content=entry.text,
                             old_num=entry.old_line, new_num=entry.new_line)
                )
            elif entry.type == DiffEntryType.REMOVED:
                lines.append(DiffLine(type=LineType.DEL, content=entry.text, old_num=entry.old_line))
            else:
                lines.append(DiffLine(type=LineType.ADD, content=entry.text, new_num=entry.new_line))

        old_count = old_before[end + 1] - old_before[start]
        new_count = new_before[end + 1] - new_before[start]
        old_start = old_before[start] + 1 if old_count else old_before[start]
        new_start = new_before[start] + 1 if new_count else new_before[start]

        hunks.append(
            DiffHunk(
                old_start=old_start,
                old_count=old_count,
                new_start=new_start,
                new_count=new_count,
                header=_hunk_header(old_start, old_count, new_start, new_count),
                lines=lines,
            )
        )
    return hunks


def parse_unified_diff(diff_output: str) -> List[DiffHunk]:
    """Parse unified diff text into hunks.

    File headers and anything outside a hunk's declared line counts are
    skipped, so multi-file output does not bleed into the previous hunk.
    """
    hunks: List[DiffHunk] = []
    current: Optional[DiffHunk] = None
    old_line = new_line = 0
    old_left = new_left = 0

    for line in diff_output.split("\n"):
        match = HUNK_HEADER_RE.match(line)
        if match:
            if current is not None:
                hunks.append(current)
            old_start = int(match.group(1))
            old_count = int(match.group(2)) if match.group(2) is not None else 1
            new_start = int(match.group(3))
            new_count = int(match.group(4)) if match.group(4) is not None else 1
            current = DiffHunk(
                old_start=old_start,
                old_count=old_count,
                new_start=new_start,
                new_count=new_count,
                header=line,
            )
            old_line, new_line = old_start, new_start
            old_left, new_left = old_count, new_count
            continue

        if current is None or line == NO_NEWLINE_MARKER:
            continue

        if line.startswith("+") and new_left > 0:
            current.lines.append(DiffLine(type=LineType.ADD, content=line[1:], new_num=new_line))
            new_line += 1
            new_left -= 1
        elif line.startswith("-") and old_left > 0:
            current.lines.append(DiffLine(type=LineType.DEL, content=line[1:], old_num=old_line))
            old_line += 1
            old_left -= 1
        elif line.startswith(" ") and old_left > 0 and new_left > 0:
            current.lines.append(
                DiffLine(type=LineType.CONTEXT, content=line[1:], old_num=old_line, new_num=new_line)
            )
            old_line += 1
            new_line += 1
            old_left -= 1
            new_left -= 1

    if current is not None:
        hunks.append(current)
    return hunks


def new_file_hunks(content: str) -> List[DiffHunk]:
    """Represent a file with no prior version as one all-added hunk."""
    lines = content.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    if not lines:
        return []
    return [
        DiffHunk(
            old_start=0,
            old_count=0,
            new_start=1,
            new_count=len(lines),
            header=_hunk_header(0, 0, 1, len(lines)),
            lines=[
                DiffLine(type=LineType.ADD, content=text, new_num=number)
                for number, text in enumerate(lines, start=1)
            ],
        )
    ]


def count_changes(hunks: Sequence[DiffHunk]) -> Tuple[int, int]:
    """Return (additions, deletions) across hunks."""
    additions = deletions = 0
    for hunk in hunks:
        for line in hunk.lines:
            if line.type == LineType.ADD:
                additions += 1
            elif line.type == LineType.DEL:
                deletions += 1
    return additions, deletions
