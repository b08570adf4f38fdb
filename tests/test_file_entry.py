from pathlib import Path

from crit.file_entry import FileEntry
from crit.models import Comment, FileStatus, FileType


def make_entry(content: bytes = b"one\ntwo\nthree") -> FileEntry:
    entry = FileEntry(
        path="plan.md",
        abs_path=Path("/tmp/plan.md"),
        status=FileStatus.MODIFIED,
        file_type=FileType.MARKDOWN,
    )
    entry.set_content(content)
    return entry


class TestComments:
    def test_ids_are_sequential(self) -> None:
        entry = make_entry()
        first = entry.add_comment(1, 1, "first")
        second = entry.add_comment(2, 3, "second")
        assert (first.id, second.id) == ("c1", "c2")

    def test_ids_not_reused_after_delete(self) -> None:
        entry = make_entry()
        entry.add_comment(1, 1, "first")
        assert entry.delete_comment("c1")
        assert entry.add_comment(1, 1, "again").id == "c2"

    def test_update_and_missing(self) -> None:
        entry = make_entry()
        entry.add_comment(1, 1, "first")
        assert entry.update_comment("c1", "edited").body == "edited"
        assert entry.update_comment("c9", "nope") is None
        assert not entry.delete_comment("c9")

    def test_restore_continues_numbering(self) -> None:
        entry = make_entry()
        restored = [
            Comment(id="c4", start_line=1, end_line=1, body="x", created_at="t", updated_at="t"),
            Comment(id="c2", start_line=2, end_line=2, body="y", created_at="t", updated_at="t"),
        ]
        entry.restore_comments(restored)
        assert entry.add_comment(3, 3, "z").id == "c5"


class TestSnapshots:
    """Test snapshot-on-first-edit."""

    def test_first_edit_of_round_snapshots(self) -> None:
        entry = make_entry(b"v1")
        entry.add_comment(1, 1, "note")

        entry.apply_edit(b"v2", review_round=1)

        assert entry.previous_content == "v1"
        assert [c.body for c in entry.previous_comments] == ["note"]
        assert entry.content == "v2"
        assert entry.comments == []

    def test_later_edits_in_same_round_keep_snapshot(self) -> None:
        entry = make_entry(b"v1")
        entry.apply_edit(b"v2", review_round=1)
        entry.apply_edit(b"v3", review_round=1)
        assert entry.previous_content == "v1"
        assert entry.content == "v3"

    def test_edit_in_next_round_takes_new_snapshot(self) -> None:
        entry = make_entry(b"v1")
        entry.apply_edit(b"v2", review_round=1)
        entry.apply_edit(b"v3", review_round=2)
        assert entry.previous_content == "v2"

    def test_content_hash_follows_content(self) -> None:
        entry = make_entry(b"v1")
        old_hash = entry.content_hash
        entry.apply_edit(b"v2", review_round=1)
        assert entry.content_hash.startswith("sha256:")
        assert entry.content_hash != old_hash

    def test_reissue_marks_carried_forward(self) -> None:
        entry = make_entry()
        original = Comment(
            id="c7", start_line=5, end_line=6, body="keep", created_at="t0", updated_at="t0",
            resolution_note="partly", resolution_lines=[5],
        )
        carried = entry.reissue(original, 2, 3, "t1")

        assert carried.id == "c1"
        assert (carried.start_line, carried.end_line) == (2, 3)
        assert carried.carried_forward
        assert carried.created_at == "t0"
        assert carried.updated_at == "t1"
        assert original.id == "c7"
