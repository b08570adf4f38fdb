"""Tests for the change watcher thread."""

import json
import threading
import time
from pathlib import Path
from typing import Callable

from watchdog.events import FileModifiedEvent

from crit.watcher import ChangeWatcher, WakeOnChangeHandler


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class TestChangeWatcher:
    def test_run_once_polls(self, doc_file: Path, make_session) -> None:
        session = make_session(doc_file)
        watcher = ChangeWatcher(session, interval=60, use_fs_events=False)

        doc_file.write_text("# Plan\n\nChanged\n")
        watcher.run_once()

        assert session.get_pending_edits() == 1

    def test_run_once_prefers_round_transition(self, doc_file: Path, make_session) -> None:
        session = make_session(doc_file)
        watcher = ChangeWatcher(session, interval=60, use_fs_events=False)

        session.signal_round_complete()
        watcher.run_once()

        assert session.get_review_round() == 2

    def test_thread_detects_edits_and_rounds(self, doc_file: Path, make_session) -> None:
        session = make_session(doc_file)
        watcher = ChangeWatcher(session, interval=0.05, use_fs_events=True)
        watcher.start()
        try:
            doc_file.write_text("# Plan\n\nRewritten\n")
            assert wait_for(lambda: session.get_pending_edits() >= 1)

            session.signal_round_complete()
            assert wait_for(lambda: session.get_review_round() == 2)
            assert session.get_last_round_edits() >= 1
        finally:
            watcher.stop()
        assert not watcher.is_running

    def test_stop_flushes_pending_state(self, doc_file: Path, make_session) -> None:
        session = make_session(doc_file)
        watcher = ChangeWatcher(session, interval=0.05, use_fs_events=False)
        watcher.start()
        session.add_comment("plan.md", 1, 1, "flushed on stop")

        watcher.stop()

        state = json.loads(session.state_path.read_text())
        assert state["files"]["plan.md"]["comments"][0]["body"] == "flushed on stop"

    def test_stop_unregisters_wakeup(self, doc_file: Path, make_session) -> None:
        session = make_session(doc_file)
        for _ in range(3):
            watcher = ChangeWatcher(session, interval=60, use_fs_events=False)
            watcher.start()
            watcher.stop()
        assert session._wakeups == []

    def test_handler_ignores_session_outputs(self, tmp_path: Path) -> None:
        wake = threading.Event()
        handler = WakeOnChangeHandler(wake, ".crit.json")
        for name in (".crit.json", ".crit.json.tmp", "plan.review.md", "plan.review.md.tmp"):
            handler.on_any_event(FileModifiedEvent(str(tmp_path / name)))
        assert not wake.is_set()

        handler.on_any_event(FileModifiedEvent(str(tmp_path / "plan.md")))
        assert wake.is_set()
