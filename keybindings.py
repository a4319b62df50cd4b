"""keybindings.py — Logical reader actions and the keys bound to them."""

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class Action(Enum):
    # Values double as the camelCase keys used in config.json
    EXIT = "exit"
    PREVIOUS_CHAPTER = "previousChapter"
    NEXT_CHAPTER = "nextChapter"
    HELP = "help"
    RESET_POSITION = "resetPosition"
    CHAPTER_LIST = "chapterList"
    PRIVACY_TOGGLE = "privacyToggle"
    SCROLL_TO_END = "scrollToEnd"


# A key bound to several actions resolves to the earliest one here.
ACTION_PRIORITY = (
    Action.EXIT,
    Action.PREVIOUS_CHAPTER,
    Action.NEXT_CHAPTER,
    Action.HELP,
    Action.RESET_POSITION,
    Action.CHAPTER_LIST,
    Action.PRIVACY_TOGGLE,
    Action.SCROLL_TO_END,
)

ACTION_LABELS = {
    Action.EXIT: "exit",
    Action.PREVIOUS_CHAPTER: "previous chapter",
    Action.NEXT_CHAPTER: "next chapter",
    Action.HELP: "help",
    Action.RESET_POSITION: "back to top",
    Action.CHAPTER_LIST: "chapter list",
    Action.PRIVACY_TOGGLE: "privacy screen",
    Action.SCROLL_TO_END: "scroll to end",
}

DEFAULT_KEY_BINDINGS: dict[Action, tuple[str, ...]] = {
    Action.EXIT: ("q", "ctrl+c"),
    Action.PREVIOUS_CHAPTER: ("1", "up", "["),
    Action.NEXT_CHAPTER: ("2", "down", "]"),
    Action.HELP: ("h", "?"),
    Action.RESET_POSITION: ("r", "home"),
    Action.CHAPTER_LIST: ("g",),
    Action.PRIVACY_TOGGLE: ("b", "`"),
    Action.SCROLL_TO_END: ("e", "end"),
}


def normalize_key(token: str) -> str:
    """Single characters match case-insensitively; named keys match exactly."""
    return token.lower() if len(token) == 1 else token


class KeyBindings:
    """Immutable action -> key-token table with every action bound."""

    def __init__(self, bindings: dict[Action, tuple[str, ...]]):
        self._keys = {action: tuple(bindings[action]) for action in ACTION_PRIORITY}
        self._lookup = {
            action: frozenset(normalize_key(key) for key in keys)
            for action, keys in self._keys.items()
        }

    @classmethod
    def defaults(cls) -> "KeyBindings":
        return cls(DEFAULT_KEY_BINDINGS)

    @classmethod
    def from_overrides(cls, overrides: dict[str, list[str]] | None = None) -> "KeyBindings":
        """
        Merge user overrides onto the defaults.
        An override replaces the whole default set for its action; actions
        without an override, or with an empty one, keep the defaults.
        In the chapter list, digits, j, enter, backspace and escape stay
        reserved for number entry whatever they are bound to.
        """
        merged = dict(DEFAULT_KEY_BINDINGS)
        for name, keys in (overrides or {}).items():
            try:
                action = Action(name)
            except ValueError:
                logger.warning("Ignoring key bindings for unknown action %r", name)
                continue
            cleaned = tuple(k.strip() for k in keys if k and k.strip())
            if cleaned:
                merged[action] = cleaned
        return cls(merged)

    def keys_for(self, action: Action) -> tuple[str, ...]:
        return self._keys[action]

    def resolve(self, token: str) -> Action | None:
        key = normalize_key(token)
        for action in ACTION_PRIORITY:
            if key in self._lookup[action]:
                return action
        return None

    def describe(self, action: Action) -> str:
        return "/".join(self._keys[action])

    def to_dict(self) -> dict[str, list[str]]:
        return {action.value: list(keys) for action, keys in self._keys.items()}
