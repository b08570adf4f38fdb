import logging
import threading
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from crit.config import settings
from crit.output import is_review_file
from crit.session import ReviewSession

logger = logging.getLogger(__name__)


class WakeOnChangeHandler(FileSystemEventHandler):
    """Wakes the watcher thread early when something under a watched path changes."""

    def __init__(self, wake: threading.Event, ignore_name: str) -> None:
        self.wake = wake
        self.ignore_name = ignore_name

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        # Our own state and review writes must not look like agent edits.
        name = Path(str(event.src_path)).name
        if name in (self.ignore_name, self.ignore_name + ".tmp") or is_review_file(name):
            return
        self.wake.set()


class ChangeWatcher:
    """Drives edit detection and round transitions for one session.

    Everything runs on a single daemon thread, so a polling pass and a round
    transition never overlap. The thread wakes every ``interval`` seconds, on
    a filesystem event, or when a round-complete signal arrives.
    """

    def __init__(
        self,
        session: ReviewSession,
        interval: Optional[float] = None,
        use_fs_events: Optional[bool] = None,
    ) -> None:
        self.session = session
        self.interval = settings.poll_interval if interval is None else interval
        self.use_fs_events = settings.use_fs_events if use_fs_events is None else use_fs_events
        self.observer: Optional[BaseObserver] = None
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self.session.add_wakeup(self._wake.set)
        if self.use_fs_events:
            self._start_observer()
        self._thread = threading.Thread(target=self._run, name="crit-watcher", daemon=True)
        self._thread.start()

    def _start_observer(self) -> None:
        self.observer = Observer()
        handler = WakeOnChangeHandler(self._wake, self.session.state_file_name)
        for directory, recursive in self.session.source.watch_paths():
            try:
                self.observer.schedule(handler, str(directory), recursive=recursive)
            except OSError as e:
                logger.warning("Could not watch directory %s: %s", directory, e)
        self.observer.start()

    def _run(self) -> None:
        while not self._stop.is_set():
            self._wake.wait(self.interval)
            self._wake.clear()
            if self._stop.is_set():
                break
            self.run_once()

    def run_once(self) -> None:
        """One watcher step: a pending round transition, otherwise a polling pass."""
        try:
            if self.session.take_round_request():
                self.session.complete_round()
            else:
                self.session.poll_changes()
        except Exception:
            logger.exception("Change watcher pass failed")

    def stop(self) -> None:
        """Stop watching, wait for the thread to exit and flush pending state."""
        self._stop.set()
        self._wake.set()
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()
            self.observer = None
        self.session.remove_wakeup(self._wake.set)
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self.session.flush()
