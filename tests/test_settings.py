"""
Tests for reading settings, config.json and WebDAV credentials.
"""

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from keybindings import Action
from settings import (
    PASSWORD_KEY,
    URL_KEY,
    USERNAME_KEY,
    AppConfig,
    ReadingSettings,
    WebDAVConfig,
    config_dir,
    load_app_config,
    load_webdav_config,
    save_app_config,
    save_webdav_config,
    validate_setting,
)


class TestReadingSettings(unittest.TestCase):

    def test_defaults(self):
        settings = ReadingSettings()
        self.assertEqual(settings.chapters_per_page, 20)
        self.assertTrue(settings.clear_terminal_on_page_change)
        self.assertEqual(settings.bindings().resolve("q"), Action.EXIT)

    def test_from_dict_camel_case(self):
        settings = ReadingSettings.from_dict({
            "linesPerPage": 30,
            "chaptersPerPage": 10,
            "clearTerminalOnPageChange": False,
            "keyBindings": {"exit": ["x"], "broken": "notalist"},
        })
        self.assertEqual(settings.lines_per_page, 30)
        self.assertEqual(settings.chapters_per_page, 10)
        self.assertEqual(settings.font_size, 14)
        self.assertFalse(settings.clear_terminal_on_page_change)
        self.assertEqual(settings.key_bindings, {"exit": ["x"]})
        self.assertEqual(settings.bindings().resolve("x"), Action.EXIT)
        self.assertEqual(ReadingSettings.from_dict(settings.to_dict()), settings)

    def test_validate_setting(self):
        self.assertEqual(validate_setting("chapters_per_page", 5), 5)
        self.assertEqual(validate_setting("font_size", 32), 32)
        with self.assertRaises(ValueError):
            validate_setting("lines_per_page", 9)
        with self.assertRaises(ValueError):
            validate_setting("chapters_per_page", 101)


class TestConfigFiles(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_config_dir_override(self):
        with patch.dict(os.environ, {"TXREAD_HOME": str(self.root / "home")}):
            self.assertEqual(config_dir(), self.root / "home")

    def test_app_config_round_trip(self):
        path = self.root / "config.json"
        config = AppConfig(reading=ReadingSettings(lines_per_page=40, key_bindings={"help": ["?"]}))
        save_app_config(config, path)

        data = json.loads(path.read_text(encoding="utf-8"))
        self.assertEqual(data["reading"]["linesPerPage"], 40)
        self.assertEqual(load_app_config(path), config)

    def test_missing_or_broken_config_uses_defaults(self):
        path = self.root / "config.json"
        self.assertEqual(load_app_config(path), AppConfig())
        path.write_text("[1, 2", encoding="utf-8")
        with self.assertLogs("settings", level="WARNING"):
            self.assertEqual(load_app_config(path), AppConfig())

    def test_webdav_credentials_round_trip(self):
        env_path = self.root / "sub" / ".env"
        save_webdav_config(WebDAVConfig("https://dav.example.com/books", "reader", "s3cret"), env_path)

        loaded = load_webdav_config(env_path)
        self.assertEqual(loaded, WebDAVConfig("https://dav.example.com/books", "reader", "s3cret"))

    def test_incomplete_credentials(self):
        env_path = self.root / ".env"
        env_path.write_text(f"{URL_KEY}=https://dav.example.com\n", encoding="utf-8")
        clean = {k: v for k, v in os.environ.items() if k not in (URL_KEY, USERNAME_KEY, PASSWORD_KEY)}
        with patch.dict(os.environ, clean, clear=True):
            self.assertIsNone(load_webdav_config(env_path))


if __name__ == "__main__":
    unittest.main()
