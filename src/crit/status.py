"""Terminal status lines for the review lifecycle."""

import os
import sys
import threading
from typing import Optional, TextIO

ANSI_DIM = "\033[2m"
ANSI_GREEN = "\033[32m"
ANSI_RESET = "\033[0m"


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


class Status:
    """Prints what the reviewer needs to know to the terminal.

    Colour is used only when writing to a TTY and NO_COLOR is unset.
    """

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream if stream is not None else sys.stderr
        self.color = not os.environ.get("NO_COLOR") and self._is_tty(self.stream)
        self._lock = threading.Lock()

    @staticmethod
    def _is_tty(stream: TextIO) -> bool:
        try:
            return stream.isatty()
        except (AttributeError, ValueError):
            return False

    def _dim(self, text: str) -> str:
        return f"{ANSI_DIM}{text}{ANSI_RESET}" if self.color else text

    def _green(self, text: str) -> str:
        return f"{ANSI_GREEN}{text}{ANSI_RESET}" if self.color else text

    def _write(self, line: str) -> None:
        with self._lock:
            self.stream.write(line + "\n")
            self.stream.flush()

    def _arrow(self) -> str:
        return self._dim("→")

    def listening(self, url: str) -> None:
        self._write(f"  {self._dim('Listening on ' + url)}")

    def round_finished(self, review_round: int, comment_count: int) -> None:
        if comment_count > 0:
            self._write(f"{self._arrow()} Round {review_round}: {_plural(comment_count, 'comment')} added")
        self._write(f"{self._arrow()} Finish review")

    def waiting_for_agent(self) -> None:
        self._write(f"{self._arrow()} {self._dim('Waiting for agent…')}")

    def file_updated(self, edit_count: int) -> None:
        """Summarise edits detected during a round. Silent for zero edits."""
        if edit_count == 0:
            return
        summary = "File updated ({} detected)".format(_plural(edit_count, "edit"))
        self._write(f"{self._arrow()} {self._dim(summary)}")

    def round_ready(self, review_round: int, resolved: int, open_count: int) -> None:
        line = f"Round {review_round}: diff ready"
        if resolved and open_count:
            line += " — " + self._green(f"{resolved} resolved") + f", {open_count} open"
        elif resolved:
            line += " — " + self._green(f"{resolved} resolved")
        elif open_count:
            line += f" — {open_count} open"
        self._write(f"{self._arrow()} {line}")
