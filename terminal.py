"""terminal.py — Raw keystroke input and VT100 screen helpers."""

import codecs
import logging
import os
import shutil
import sys

try:
    import termios
    import tty
except ImportError:  # Windows: no raw mode, InputController refuses to start
    termios = None
    tty = None

logger = logging.getLogger(__name__)

CLEAR_SCREEN = "\x1b[2J\x1b[3J\x1b[H"
CURSOR_HOME = "\x1b[H"

ESCAPE_SEQUENCES = {
    "\x1b[A": "up",
    "\x1b[B": "down",
    "\x1b[C": "right",
    "\x1b[D": "left",
    "\x1bOA": "up",
    "\x1bOB": "down",
    "\x1bOC": "right",
    "\x1bOD": "left",
    "\x1b[H": "home",
    "\x1b[F": "end",
    "\x1bOH": "home",
    "\x1bOF": "end",
    "\x1b[1~": "home",
    "\x1b[4~": "end",
    "\x1b[7~": "home",
    "\x1b[8~": "end",
    "\x1b[5~": "pageup",
    "\x1b[6~": "pagedown",
    "\x1b[3~": "delete",
}

CONTROL_KEYS = {
    "\r": "enter",
    "\n": "enter",
    "\t": "tab",
    "\x7f": "backspace",
    "\x08": "backspace",
    "\x1b": "escape",
}


class TerminalError(RuntimeError):
    """The terminal cannot be put into raw keystroke mode."""


def _control_name(char: str) -> str:
    code = ord(char)
    if 1 <= code <= 26:
        return f"ctrl+{chr(code + 96)}"
    return char


def decode_keys(data: bytes) -> list[str]:
    """Split one raw read into key tokens (named keys or single characters)."""
    return split_keys(data.decode("utf-8", errors="ignore"))


def split_keys(text: str) -> list[str]:
    tokens = []
    i = 0
    while i < len(text):
        if text[i] == "\x1b":
            for length in (4, 3):
                seq = text[i:i + length]
                if seq in ESCAPE_SEQUENCES:
                    tokens.append(ESCAPE_SEQUENCES[seq])
                    i += length
                    break
            else:
                tokens.append("escape")
                i += 1
            continue
        char = text[i]
        if char in CONTROL_KEYS:
            tokens.append(CONTROL_KEYS[char])
        elif ord(char) < 32:
            tokens.append(_control_name(char))
        else:
            tokens.append(char)
        i += 1
    return tokens


class InputController:
    """
    Exclusive owner of the keystroke stream for one reading session.

    Use as a context manager: entering switches the terminal to raw mode and
    leaving restores the saved attributes, whatever ended the block.
    """

    def __init__(self, stream=None):
        self._stream = stream if stream is not None else sys.stdin
        self._fd: int | None = None
        self._saved_attrs = None
        self._pending: list[str] = []
        # Holds back a multibyte character split across two reads
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")

    def __enter__(self) -> "InputController":
        if termios is None:
            raise TerminalError("Raw keyboard input is not supported on this platform")
        try:
            fd = self._stream.fileno()
        except (AttributeError, OSError, ValueError) as e:
            raise TerminalError(f"Input stream has no file descriptor: {e}") from e
        if not os.isatty(fd):
            raise TerminalError("Input is not a terminal; txread needs an interactive tty")
        try:
            self._saved_attrs = termios.tcgetattr(fd)
            tty.setraw(fd)
        except termios.error as e:
            raise TerminalError(f"Could not enter raw mode: {e}") from e
        self._fd = fd
        logger.debug("Terminal switched to raw mode (fd=%d)", fd)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._fd is not None and self._saved_attrs is not None:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved_attrs)
            logger.debug("Terminal mode restored")
        self._fd = None
        self._saved_attrs = None
        self._pending.clear()
        self._decoder.reset()

    def read_token(self) -> str | None:
        """Block for the next key token. Returns None at end of input."""
        while not self._pending:
            data = os.read(self._fd, 64)
            if not data:
                return None
            self._pending.extend(split_keys(self._decoder.decode(data)))
        return self._pending.pop(0)


class Screen:
    """Line-oriented output with ANSI clear/cursor control."""

    def __init__(self, stream=None, width: int | None = None, height: int | None = None):
        self._stream = stream if stream is not None else sys.stdout
        self._width = width
        self._height = height

    @property
    def size(self) -> tuple[int, int]:
        fallback = shutil.get_terminal_size((80, 24))
        return (self._width or fallback.columns, self._height or fallback.lines)

    def write(self, text: str) -> None:
        # Raw mode disables output post-processing, so newlines need a CR
        self._stream.write(text.replace("\r\n", "\n").replace("\n", "\r\n"))
        self._stream.flush()

    def scroll_to_end(self) -> None:
        """Park the cursor on the bottom row; terminals without support ignore it."""
        _, height = self.size
        self._stream.write(f"\x1b[{height};1H")
        self._stream.flush()
