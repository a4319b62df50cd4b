"""reading_session.py — Interactive terminal reader for one segmented document."""

import logging
import math
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from decoys import choose_decoy, render_decoy
from keybindings import ACTION_LABELS, ACTION_PRIORITY, Action, KeyBindings, normalize_key
from models import Chapter, DisplayMode, ReadingPosition, utc_now
from progress import SaveWorker
from terminal import CLEAR_SCREEN, InputController, Screen

logger = logging.getLogger(__name__)

JUMP_PREFIX = "j"
NEXT_PAGE_KEYS = {"n", "right", "pagedown"}
PREVIOUS_PAGE_KEYS = {"p", "left", "pageup"}
CONFIRM_KEYS = {"y", "enter"}
# Number entry in the chapter list always owns these; paging keys yield to bound actions
LIST_ENTRY_KEYS = {JUMP_PREFIX, "enter", "backspace", "escape"}
DIGITS = "0123456789"
LIST_TITLE_WIDTH = 40
SAVE_WORKER_TIMEOUT = 5.0


@dataclass
class RenderOptions:
    clear_on_navigate: bool = True
    chapters_per_page: int = 20
    width: int | None = None
    height: int | None = None


def _truncate(title: str, width: int = LIST_TITLE_WIDTH) -> str:
    return title if len(title) <= width else title[:width - 3] + "..."


class ReadingSession:
    """
    Owns the terminal while a document is being read.

    Exactly one DisplayMode is active at a time. Every key token is resolved
    to a logical Action through the KeyBindings priority order and dispatched
    through a mode x action handler table. Chapter changes are persisted in
    the background through a SaveWorker; the final position is saved
    synchronously on exit and handed to `on_exit`.
    """

    def __init__(
        self,
        document_id: str,
        chapters: list[Chapter],
        start_chapter_index: int = 0,
        persist_position: Callable[[ReadingPosition], bool] | None = None,
        key_bindings: KeyBindings | None = None,
        render_options: RenderOptions | None = None,
        on_exit: Callable[[ReadingPosition], None] | None = None,
        input_controller: InputController | None = None,
        output=None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        if not chapters:
            raise ValueError("A reading session needs at least one chapter")
        self.document_id = document_id
        self.chapters = tuple(chapters)
        self.current_chapter_index = max(0, min(start_chapter_index, len(self.chapters) - 1))
        self.mode = DisplayMode.READING
        self.key_bindings = key_bindings or KeyBindings.defaults()
        self.options = render_options or RenderOptions()
        self.on_exit = on_exit

        self._persist = persist_position
        self._saver = SaveWorker(persist_position) if persist_position else None
        self._input = input_controller or InputController()
        self._screen = Screen(output, self.options.width, self.options.height)
        self._rng = rng or random.Random()
        self._clock = clock or utc_now

        self._running = False
        self._finished = False
        self._final_position: ReadingPosition | None = None
        self._last_frame = ""
        self._last_body = ""
        self._privacy_return: tuple[DisplayMode, str] | None = None

        self._list_page = 0
        self._list_input = ""
        self._list_message = ""
        self._pending_jump: int | None = None

        self._handlers = self._build_dispatch()

    def _build_dispatch(self) -> dict[DisplayMode, dict[Action | None, Callable[[], None]]]:
        # Help returns to reading on any key, bound or not
        help_handlers: dict[Action | None, Callable[[], None]] = {
            action: self._return_to_reading for action in ACTION_PRIORITY
        }
        help_handlers[None] = self._return_to_reading
        return {
            DisplayMode.READING: {
                Action.EXIT: self._exit,
                Action.PREVIOUS_CHAPTER: self._previous_chapter,
                Action.NEXT_CHAPTER: self._next_chapter,
                Action.HELP: self._show_help,
                Action.RESET_POSITION: self._reset_position,
                Action.CHAPTER_LIST: self._show_chapter_list,
                Action.PRIVACY_TOGGLE: self._enter_privacy,
                Action.SCROLL_TO_END: self._scroll_to_end,
            },
            DisplayMode.HELP: help_handlers,
            DisplayMode.CHAPTER_LIST: {
                Action.EXIT: self._exit,
                Action.HELP: self._return_to_reading,
                Action.RESET_POSITION: self._list_current_page,
                Action.PRIVACY_TOGGLE: self._enter_privacy,
            },
            DisplayMode.PRIVACY: {
                Action.PRIVACY_TOGGLE: self._leave_privacy,
            },
        }

    @property
    def current_chapter(self) -> Chapter:
        return self.chapters[self.current_chapter_index]

    @property
    def last_frame(self) -> str:
        return self._last_frame

    def current_position(self) -> ReadingPosition:
        return ReadingPosition(
            file_name=self.document_id,
            chapter_title=self.current_chapter.title,
            chapter_index=self.current_chapter_index,
            timestamp=self._clock(),
        )

    # ---- lifecycle ----

    def start(self) -> ReadingPosition:
        """Run the session until the user exits. Returns the final position."""
        if self._finished:
            raise RuntimeError("This reading session has already finished")
        entered = False
        try:
            with self._input as keys:
                entered = True
                self._running = True
                self._safely(self._render_reading)
                while self._running:
                    token = keys.read_token()
                    if token is None:
                        break
                    self.handle_token(token)
        finally:
            self._running = False
            if entered:
                self._finish()
        return self._final_position

    def _finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        self._screen.write(CLEAR_SCREEN)

        # Let queued background saves land before the final one
        saver_idle = self._saver.close(SAVE_WORKER_TIMEOUT) if self._saver else True
        position = self.current_position()
        if self._persist and not saver_idle:
            # A write still in flight would race this one on the same file
            logger.warning("Save worker still busy; skipping final save for %s", self.document_id)
        elif self._persist:
            try:
                if self._persist(position) is False:
                    logger.warning("Final position for %s was not saved", self.document_id)
            except Exception as e:
                logger.warning("Final position save for %s failed: %s", self.document_id, e)
        self._final_position = position
        if self.on_exit:
            self.on_exit(position)

    # ---- key handling ----

    def handle_token(self, token: str) -> None:
        """Process one key token. Never raises."""
        self._safely(self._dispatch, token)

    def _dispatch(self, token: str) -> None:
        action = self.key_bindings.resolve(token)
        handler = self._handlers[self.mode].get(action)
        if self.mode is DisplayMode.CHAPTER_LIST:
            if handler is None or self._is_list_entry(token):
                if self._handle_list_input(token):
                    return
        if handler is not None:
            handler()

    def _safely(self, fn: Callable, *args) -> None:
        try:
            fn(*args)
        except Exception as e:
            logger.exception("Error in %s mode", self.mode.value)
            if self.mode is DisplayMode.PRIVACY:
                return
            try:
                self._screen.write(self._last_frame + f"\n[error] {e}\n")
            except Exception:
                logger.exception("Could not display error message")

    # ---- rendering ----

    def _write_frame(self, body: str, clear: bool = True) -> None:
        frame = (CLEAR_SCREEN if clear else "\n") + body + "\n"
        self._screen.write(frame)
        self._last_frame = frame
        self._last_body = body

    def _footer(self) -> str:
        return " | ".join(
            f"{self.key_bindings.describe(action)} {ACTION_LABELS[action]}"
            for action in ACTION_PRIORITY
        )

    def _reading_body(self) -> str:
        chapter = self.current_chapter
        number = self.current_chapter_index + 1
        total = len(self.chapters)
        return "\n".join([
            f"===== {self.document_id} =====",
            "",
            f"Chapter {number}/{total}: {chapter.title}",
            "",
            chapter.content,
            "",
            f"----- {number}/{total} -----",
            self._footer(),
        ])

    def _render_reading(self, clear: bool | None = None) -> None:
        if clear is None:
            clear = self.options.clear_on_navigate
        self._write_frame(self._reading_body(), clear=clear)

    def _help_body(self) -> str:
        lines = ["===== Reader Help =====", ""]
        for action in ACTION_PRIORITY:
            lines.append(f"  {self.key_bindings.describe(action):<20} {ACTION_LABELS[action]}")
        lines += [
            "",
            "Chapter list:",
            f"  {'number + enter':<20} show the page holding that chapter",
            f"  {JUMP_PREFIX + ' + number + enter':<20} open that chapter",
            f"  {'/'.join(sorted(NEXT_PAGE_KEYS)):<20} next page",
            f"  {'/'.join(sorted(PREVIOUS_PAGE_KEYS)):<20} previous page",
            "",
            "Reading progress is saved automatically and synced to WebDAV on exit.",
            "",
            "Press any key to return to reading...",
        ]
        return "\n".join(lines)

    def _list_page_count(self) -> int:
        return max(1, math.ceil(len(self.chapters) / self.options.chapters_per_page))

    def _page_of(self, index: int) -> int:
        return index // self.options.chapters_per_page

    def _chapter_list_body(self) -> str:
        per_page = self.options.chapters_per_page
        start = self._list_page * per_page
        end = min(start + per_page, len(self.chapters))
        lines = [
            f"===== {self.document_id} - Chapters =====",
            f"Page {self._list_page + 1}/{self._list_page_count()} ({len(self.chapters)} chapters)",
            "",
        ]
        for index in range(start, end):
            marker = "►" if index == self.current_chapter_index else " "
            lines.append(f"{marker} {index + 1:>4}. {_truncate(self.chapters[index].title)}")
        kb = self.key_bindings
        lines += [
            "",
            f"{'/'.join(sorted(NEXT_PAGE_KEYS))} next page | "
            f"{'/'.join(sorted(PREVIOUS_PAGE_KEYS))} previous page | "
            f"number+enter find page | {JUMP_PREFIX}+number+enter open chapter",
            f"{kb.describe(Action.EXIT)} exit | {kb.describe(Action.HELP)} back to reading | "
            f"{kb.describe(Action.RESET_POSITION)} current chapter | "
            f"{kb.describe(Action.PRIVACY_TOGGLE)} privacy screen",
        ]
        if self._list_message:
            lines.append(self._list_message)
        lines.append(f"> {self._list_input}")
        return "\n".join(lines)

    def _render_chapter_list(self) -> None:
        self._write_frame(self._chapter_list_body())
        self._list_message = ""

    # ---- reading mode actions ----

    def _open_chapter(self, index: int) -> None:
        """Show a chapter from its top; persist in the background if it changed."""
        changed = index != self.current_chapter_index
        self.current_chapter_index = index
        self.mode = DisplayMode.READING
        self._reset_list_input()
        self._render_reading()
        if changed and self._saver:
            self._saver.submit(self.current_position())

    def _previous_chapter(self) -> None:
        if self.current_chapter_index > 0:
            self._open_chapter(self.current_chapter_index - 1)

    def _next_chapter(self) -> None:
        if self.current_chapter_index < len(self.chapters) - 1:
            self._open_chapter(self.current_chapter_index + 1)

    def _exit(self) -> None:
        self._running = False

    def _show_help(self) -> None:
        self.mode = DisplayMode.HELP
        self._write_frame(self._help_body())

    def _return_to_reading(self) -> None:
        self.mode = DisplayMode.READING
        self._reset_list_input()
        self._render_reading()

    def _reset_position(self) -> None:
        self._render_reading(clear=True)

    def _scroll_to_end(self) -> None:
        self._screen.scroll_to_end()

    # ---- chapter list ----

    def _reset_list_input(self) -> None:
        self._list_input = ""
        self._list_message = ""
        self._pending_jump = None

    def _show_chapter_list(self) -> None:
        self.mode = DisplayMode.CHAPTER_LIST
        self._list_page = self._page_of(self.current_chapter_index)
        self._reset_list_input()
        self._render_chapter_list()

    def _list_current_page(self) -> None:
        self._list_page = self._page_of(self.current_chapter_index)
        self._reset_list_input()
        self._render_chapter_list()

    def _is_list_entry(self, token: str) -> bool:
        key = normalize_key(token)
        return self._pending_jump is not None or key in LIST_ENTRY_KEYS or (len(key) == 1 and key in DIGITS)

    def _handle_list_input(self, token: str) -> bool:
        """Number entry, confirmation and paging. Returns True if the token was used."""
        key = normalize_key(token)

        if self._pending_jump is not None:
            index = self._pending_jump
            self._pending_jump = None
            if key in CONFIRM_KEYS:
                self._open_chapter(index)
            else:
                self._list_message = "Cancelled."
                self._render_chapter_list()
            return True

        if len(key) == 1 and key in DIGITS:
            self._list_input += key
        elif key == JUMP_PREFIX and not self._list_input:
            self._list_input = JUMP_PREFIX
        elif key == "backspace" and self._list_input:
            self._list_input = self._list_input[:-1]
        elif key == "escape" and self._list_input:
            self._list_input = ""
        elif key == "enter":
            if self._list_input:
                self._submit_list_input()
            return True
        elif key in NEXT_PAGE_KEYS:
            self._list_page = min(self._list_page + 1, self._list_page_count() - 1)
        elif key in PREVIOUS_PAGE_KEYS:
            self._list_page = max(self._list_page - 1, 0)
        else:
            return False
        self._render_chapter_list()
        return True

    def _submit_list_input(self) -> None:
        raw = self._list_input
        self._list_input = ""
        direct = raw.startswith(JUMP_PREFIX)
        digits = raw[len(JUMP_PREFIX):] if direct else raw
        total = len(self.chapters)

        if not digits.isdigit() or not 1 <= int(digits) <= total:
            self._list_message = f"Invalid chapter number '{raw}', enter 1-{total}."
            self._render_chapter_list()
            return

        index = int(digits) - 1
        if direct:
            self._open_chapter(index)
            return

        page = self._page_of(index)
        if page == self._list_page:
            self._pending_jump = index
            self._list_message = f"Open chapter {index + 1}: {_truncate(self.chapters[index].title)}? (y/n)"
        else:
            self._list_page = page
            self._list_message = f"Chapter {index + 1} is on this page."
        self._render_chapter_list()

    # ---- privacy ----

    def _enter_privacy(self) -> None:
        self._privacy_return = (self.mode, self._last_body)
        self.mode = DisplayMode.PRIVACY
        kind = choose_decoy(self._rng)
        width, height = self._screen.size
        decoy = render_decoy(kind, self._rng, width, max(height - 1, 1), now=self._clock())
        # Not stored as _last_frame so leaving restores the real screen
        self._screen.write(CLEAR_SCREEN + decoy + "\n")

    def _leave_privacy(self) -> None:
        mode, body = self._privacy_return
        self._privacy_return = None
        self.mode = mode
        # The decoy is still on screen, so always redraw from a cleared screen
        self._write_frame(body)
