import asyncio
import logging
import shutil
import subprocess
import sys
import time
from datetime import datetime
from typing import Callable, Optional, TextIO

from fetching_codes import CODES, EMPTY, ERROR, UNAUTHENTICATED, BoardState, Code


COPY_FEEDBACK_SECONDS = 2.0
# asyncio may run a timer up to one clock tick early
REDRAW_MARGIN = 0.05

MESSAGES = {
    UNAUTHENTICATED: "Authorization on wildberries.ru is required",
    ERROR: "Failed to fetch data. Try again later",
    EMPTY: "No active codes",
}
COPY_LABEL = "Copy"
COPIED_LABEL = "Copied!"


def format_time(nano_timestamp: int) -> str:
    """Local 24-hour HH:MM for a nanosecond timestamp."""
    milliseconds = nano_timestamp // 1_000_000
    return datetime.fromtimestamp(milliseconds / 1000).strftime("%H:%M")


def _clipboard_commands() -> list[list[str]]:
    if sys.platform == "darwin":
        return [["pbcopy"]]
    if sys.platform == "win32":
        return [["clip"]]
    return [
        ["wl-copy"],
        ["xclip", "-selection", "clipboard"],
        ["xsel", "--clipboard", "--input"],
    ]


def copy_to_clipboard(text: str) -> bool:
    logger = logging.getLogger(__name__)
    for cmd in _clipboard_commands():
        if shutil.which(cmd[0]) is None:
            continue
        try:
            subprocess.run(cmd, input=text, text=True, check=True, timeout=5)
            return True
        except (subprocess.SubprocessError, OSError) as e:
            logger.error(f"Failed to copy text with {cmd[0]}: {e}")
    logger.error("No working clipboard command found")
    return False


class CopyState:
    """Remembers which code values were copied in the last couple of seconds."""

    def __init__(self, window: float = COPY_FEEDBACK_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self.clock = clock
        self._expires: dict[str, float] = {}

    def mark(self, value: str) -> None:
        self._expires[value] = self.clock() + self.window

    def is_copied(self, value: str) -> bool:
        expires = self._expires.get(value)
        if expires is None:
            return False
        if self.clock() >= expires:
            del self._expires[value]
            return False
        return True


class CodeBoard:
    """
    The single content region: a message or a numbered list of code cards.

    Output is only written when it differs from what is already on screen.
    """

    def __init__(
        self,
        out: Optional[TextIO] = None,
        copy: Callable[[str], bool] = copy_to_clipboard,
        copy_state: Optional[CopyState] = None,
    ):
        self.out = out if out is not None else sys.stdout
        self.copy = copy
        self.copy_state = copy_state if copy_state is not None else CopyState()
        self.state: Optional[BoardState] = None
        self._last_output: Optional[str] = None

    def render(self, state: BoardState) -> None:
        self.state = state
        self.refresh()

    def refresh(self) -> None:
        if self.state is None:
            return
        text = self.format(self.state)
        if text == self._last_output:
            return
        self._last_output = text
        print(text, file=self.out, flush=True)

    def format(self, state: BoardState) -> str:
        if state.kind != CODES:
            return MESSAGES[state.kind]
        return "\n".join(self._format_card(i, code) for i, code in enumerate(state.codes, start=1))

    def _format_card(self, number: int, code: Code) -> str:
        label = COPIED_LABEL if self.copy_state.is_copied(code.value) else COPY_LABEL
        return f"{number:>2}. {code.value}  {format_time(code.timestamp)}  [{label}]"

    def copy_card(self, number: int) -> bool:
        """Copy the code on card ``number`` (1-based, as displayed)."""
        if self.state is None or self.state.kind != CODES:
            return False
        if not 1 <= number <= len(self.state.codes):
            return False
        return self.on_copy_requested(self.state.codes[number - 1])

    def on_copy_requested(self, code: Code) -> bool:
        if not self.copy(code.value):
            return False
        self.copy_state.mark(code.value)
        self.refresh()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return True
        # redraw once the "Copied!" label has expired
        loop.call_later(self.copy_state.window + REDRAW_MARGIN, self.refresh)
        return True
