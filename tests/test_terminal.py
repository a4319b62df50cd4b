"""
Tests for key decoding and the raw-mode input controller.
"""

import io
import unittest
from unittest.mock import patch

import terminal
from terminal import InputController, Screen, TerminalError, decode_keys


class TestDecodeKeys(unittest.TestCase):

    def test_arrow_and_named_keys(self):
        self.assertEqual(decode_keys(b"\x1b[A\x1b[B\x1b[C\x1b[D"), ["up", "down", "right", "left"])
        self.assertEqual(decode_keys(b"\x1b[5~\x1b[6~"), ["pageup", "pagedown"])
        self.assertEqual(decode_keys(b"\x1b[H\x1b[4~"), ["home", "end"])

    def test_control_keys(self):
        self.assertEqual(decode_keys(b"\x03"), ["ctrl+c"])
        self.assertEqual(decode_keys(b"\r"), ["enter"])
        self.assertEqual(decode_keys(b"\x7f"), ["backspace"])
        self.assertEqual(decode_keys(b"\x1b"), ["escape"])

    def test_printable_and_multibyte(self):
        self.assertEqual(decode_keys("q章".encode("utf-8")), ["q", "章"])
        self.assertEqual(decode_keys(b"12\r"), ["1", "2", "enter"])


class TestInputController(unittest.TestCase):

    def test_non_tty_input_is_fatal(self):
        with self.assertRaises(TerminalError):
            with InputController(io.StringIO("q")):
                pass

    def test_missing_termios_is_fatal(self):
        with patch.object(terminal, "termios", None):
            with self.assertRaises(TerminalError):
                with InputController(io.StringIO()):
                    pass

    def test_raw_mode_restored_after_error(self):
        class FakeStream:
            def fileno(self):
                return 99

        saved = ["saved-attrs"]
        with patch.object(terminal.os, "isatty", return_value=True), \
                patch.object(terminal, "termios") as fake_termios, \
                patch.object(terminal, "tty") as fake_tty:
            fake_termios.error = OSError
            fake_termios.tcgetattr.return_value = saved
            with self.assertRaises(RuntimeError):
                with InputController(FakeStream()):
                    raise RuntimeError("boom")

        fake_tty.setraw.assert_called_once_with(99)
        fake_termios.tcsetattr.assert_called_once_with(99, fake_termios.TCSADRAIN, saved)

    def test_read_token_splits_reads(self):
        class FakeStream:
            def fileno(self):
                return 7

        reads = [b"ab", b""]
        with patch.object(terminal.os, "isatty", return_value=True), \
                patch.object(terminal, "termios") as fake_termios, \
                patch.object(terminal, "tty"), \
                patch.object(terminal.os, "read", side_effect=lambda fd, n: reads.pop(0)):
            fake_termios.error = OSError
            with InputController(FakeStream()) as keys:
                self.assertEqual(keys.read_token(), "a")
                self.assertEqual(keys.read_token(), "b")
                self.assertIsNone(keys.read_token())

    def test_character_split_across_reads(self):
        class FakeStream:
            def fileno(self):
                return 7

        # "章" is e7 ab a0 in UTF-8
        reads = [b"a\xe7\xab", b"\xa0q", b""]
        with patch.object(terminal.os, "isatty", return_value=True), \
                patch.object(terminal, "termios") as fake_termios, \
                patch.object(terminal, "tty"), \
                patch.object(terminal.os, "read", side_effect=lambda fd, n: reads.pop(0)):
            fake_termios.error = OSError
            with InputController(FakeStream()) as keys:
                tokens = [keys.read_token() for _ in range(4)]

        self.assertEqual(tokens, ["a", "章", "q", None])


class TestScreen(unittest.TestCase):

    def test_write_uses_crlf(self):
        out = io.StringIO()
        Screen(out).write("a\nb")
        self.assertEqual(out.getvalue(), "a\r\nb")

    def test_size_override(self):
        self.assertEqual(Screen(io.StringIO(), width=100, height=30).size, (100, 30))


if __name__ == "__main__":
    unittest.main()
