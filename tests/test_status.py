import io

from crit.status import Status


def lines(stream: io.StringIO) -> list:
    return stream.getvalue().splitlines()


class TestStatus:
    def test_no_color_off_tty(self) -> None:
        stream = io.StringIO()
        status = Status(stream)
        status.listening("http://localhost:3000")
        assert not status.color
        assert "\033[" not in stream.getvalue()
        assert lines(stream) == ["  Listening on http://localhost:3000"]

    def test_round_finished(self) -> None:
        stream = io.StringIO()
        Status(stream).round_finished(2, 3)
        assert lines(stream) == ["→ Round 2: 3 comments added", "→ Finish review"]

    def test_round_finished_without_comments(self) -> None:
        stream = io.StringIO()
        Status(stream).round_finished(1, 0)
        assert lines(stream) == ["→ Finish review"]

    def test_file_updated_silent_for_zero(self) -> None:
        stream = io.StringIO()
        status = Status(stream)
        status.file_updated(0)
        status.file_updated(1)
        assert lines(stream) == ["→ File updated (1 edit detected)"]

    def test_round_ready_counts(self) -> None:
        stream = io.StringIO()
        status = Status(stream)
        status.round_ready(2, 2, 1)
        status.round_ready(3, 0, 0)
        assert lines(stream) == [
            "→ Round 2: diff ready — 2 resolved, 1 open",
            "→ Round 3: diff ready",
        ]

    def test_waiting_for_agent(self) -> None:
        stream = io.StringIO()
        Status(stream).waiting_for_agent()
        assert lines(stream) == ["→ Waiting for agent…"]
