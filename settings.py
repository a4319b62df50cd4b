"""settings.py — Config directory, reading settings and WebDAV credentials."""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from dotenv import dotenv_values, load_dotenv, set_key

from keybindings import KeyBindings
from progress import PROGRESS_FILE_NAME

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.json"
REMOTE_CONFIG_FILE_NAME = ".txread_config.json"
ENV_FILE_NAME = ".env"

URL_KEY = "TXREAD_WEBDAV_URL"
USERNAME_KEY = "TXREAD_WEBDAV_USERNAME"
PASSWORD_KEY = "TXREAD_WEBDAV_PASSWORD"

SETTING_RANGES = {
    "chapters_per_page": (5, 100),
    "lines_per_page": (10, 100),
    "font_size": (8, 32),
}


def config_dir() -> Path:
    """~/.txread unless TXREAD_HOME is set (environment or a local .env)."""
    load_dotenv()
    override = os.getenv("TXREAD_HOME", "").strip()
    return Path(override).expanduser() if override else Path.home() / ".txread"


def cache_dir() -> Path:
    return config_dir() / "cache"


def progress_file() -> Path:
    return config_dir() / PROGRESS_FILE_NAME


def log_file() -> Path:
    return config_dir() / "txread.log"


@dataclass
class WebDAVConfig:
    url: str
    username: str
    password: str


def load_webdav_config(env_path: Path | None = None) -> WebDAVConfig | None:
    """Read WebDAV credentials. Returns None if any value is missing."""
    env_path = env_path or config_dir() / ENV_FILE_NAME
    values = dotenv_values(env_path) if env_path.exists() else {}
    url = (values.get(URL_KEY) or os.getenv(URL_KEY, "")).strip()
    username = (values.get(USERNAME_KEY) or os.getenv(USERNAME_KEY, "")).strip()
    password = values.get(PASSWORD_KEY) or os.getenv(PASSWORD_KEY, "")
    if not url or not username or not password:
        return None
    return WebDAVConfig(url=url, username=username, password=password)


def save_webdav_config(config: WebDAVConfig, env_path: Path | None = None) -> Path:
    """Persist WebDAV credentials to the config directory's .env."""
    env_path = env_path or config_dir() / ENV_FILE_NAME
    env_path.parent.mkdir(parents=True, exist_ok=True)
    env_path.touch(exist_ok=True)
    set_key(str(env_path), URL_KEY, config.url)
    set_key(str(env_path), USERNAME_KEY, config.username)
    set_key(str(env_path), PASSWORD_KEY, config.password)
    try:
        env_path.chmod(0o600)
    except OSError as e:
        logger.debug("Could not restrict permissions on %s: %s", env_path, e)
    return env_path


@dataclass
class ReadingSettings:
    lines_per_page: int = 20
    font_size: int = 14
    chapters_per_page: int = 20
    clear_terminal_on_page_change: bool = True
    key_bindings: dict[str, list[str]] = field(default_factory=dict)

    def bindings(self) -> KeyBindings:
        return KeyBindings.from_overrides(self.key_bindings)

    def to_dict(self) -> dict:
        return {
            "linesPerPage": self.lines_per_page,
            "fontSize": self.font_size,
            "chaptersPerPage": self.chapters_per_page,
            "clearTerminalOnPageChange": self.clear_terminal_on_page_change,
            "keyBindings": self.key_bindings,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReadingSettings":
        defaults = cls()
        return cls(
            lines_per_page=int(data.get("linesPerPage", defaults.lines_per_page)),
            font_size=int(data.get("fontSize", defaults.font_size)),
            chapters_per_page=int(data.get("chaptersPerPage", defaults.chapters_per_page)),
            clear_terminal_on_page_change=bool(
                data.get("clearTerminalOnPageChange", defaults.clear_terminal_on_page_change)
            ),
            key_bindings={
                name: list(keys)
                for name, keys in (data.get("keyBindings") or {}).items()
                if isinstance(keys, list)
            },
        )


@dataclass
class AppConfig:
    reading: ReadingSettings = field(default_factory=ReadingSettings)
    last_sync_time: datetime | None = None

    def to_dict(self) -> dict:
        data = {"reading": self.reading.to_dict()}
        if self.last_sync_time:
            data["lastSyncTime"] = self.last_sync_time.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "AppConfig":
        sync = data.get("lastSyncTime")
        return cls(
            reading=ReadingSettings.from_dict(data.get("reading") or {}),
            last_sync_time=datetime.fromisoformat(sync.replace("Z", "+00:00")) if sync else None,
        )


def validate_setting(name: str, value: int) -> int:
    low, high = SETTING_RANGES[name]
    if not low <= value <= high:
        raise ValueError(f"{name.replace('_', ' ')} must be an integer between {low} and {high}")
    return value


def load_app_config(path: Path | None = None) -> AppConfig:
    path = path or config_dir() / CONFIG_FILE_NAME
    if not path.exists():
        return AppConfig()
    try:
        return AppConfig.from_dict(json.loads(path.read_text(encoding="utf-8")))
    except (ValueError, TypeError, AttributeError) as e:
        logger.warning("Config file %s is unreadable, using defaults: %s", path, e)
        return AppConfig()


def save_app_config(config: AppConfig, path: Path | None = None) -> None:
    path = path or config_dir() / CONFIG_FILE_NAME
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
