#!/usr/bin/env python3
import io
import unittest
from pathlib import Path
from unittest import mock
import sys

from rich.console import Console


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import enhance_menu as menu


def _session(runners, extra_args=None) -> menu.MenuSession:
    console = Console(file=io.StringIO(), force_terminal=False, width=120)
    return menu.MenuSession(console=console, runners=runners, extra_args=extra_args)


def _answers(*values):
    return mock.patch.object(menu.Prompt, "ask", side_effect=list(values))


class ParseLimitTests(unittest.TestCase):
    def test_parse_limit(self) -> None:
        self.assertEqual(menu.parse_limit(""), 0)
        self.assertEqual(menu.parse_limit("  "), 0)
        self.assertEqual(menu.parse_limit("25"), 25)
        self.assertEqual(menu.parse_limit("999999"), 999999)
        self.assertIsNone(menu.parse_limit("1000000"))
        self.assertIsNone(menu.parse_limit("-3"))
        self.assertIsNone(menu.parse_limit("ten"))


class MenuSessionTests(unittest.TestCase):
    def test_runs_openrouter_with_limit_then_quits(self) -> None:
        calls = []
        runners = {"openrouter": lambda argv: calls.append(("openrouter", argv)) or 0, "google": mock.Mock()}
        session = _session(runners)

        with _answers("1", "5", "3"):
            code = session.run()

        self.assertEqual(code, 0)
        self.assertEqual(calls, [("openrouter", ["--limit", "5"])])
        runners["google"].assert_not_called()
        self.assertEqual(session.status, "Done. See ./final for outputs.")

    def test_empty_limit_runs_everything(self) -> None:
        google = mock.Mock(return_value=0)
        session = _session({"openrouter": mock.Mock(), "google": google}, extra_args=["--verbose"])

        with _answers("2", "", "3"):
            session.run()

        google.assert_called_once_with(["--verbose"])

    def test_invalid_limit_is_asked_again(self) -> None:
        google = mock.Mock(return_value=0)
        session = _session({"openrouter": mock.Mock(), "google": google})

        with _answers("2", "abc", "1234567", "12", "3"):
            session.run()

        google.assert_called_once_with(["--limit", "12"])

    def test_cancel_returns_to_menu_without_running(self) -> None:
        openrouter = mock.Mock(return_value=0)
        session = _session({"openrouter": openrouter, "google": mock.Mock()})

        with _answers("1", "b", "3"):
            session.run()

        openrouter.assert_not_called()
        self.assertEqual(session.status, "Choose backend and press Enter")

    def test_nonzero_exit_code_sets_error_status(self) -> None:
        session = _session({"openrouter": mock.Mock(return_value=2), "google": mock.Mock()})
        with _answers("1", "", "3"):
            session.run()
        self.assertEqual(session.status, "Error: OpenRouter run exited with code 2")

    def test_exception_sets_error_status_and_menu_continues(self) -> None:
        google = mock.Mock(side_effect=[RuntimeError("network down"), 0])
        session = _session({"openrouter": mock.Mock(), "google": google})

        with _answers("2", "", "2", "", "3"):
            session.run()

        self.assertEqual(google.call_count, 2)
        self.assertEqual(session.status, "Done. See ./final for outputs.")

    def test_argparse_exit_is_reported(self) -> None:
        session = _session({"openrouter": mock.Mock(side_effect=SystemExit(2)), "google": mock.Mock()})
        with _answers("1", "", "3"):
            session.run()
        self.assertEqual(session.status, "Error: OpenRouter run exited with code 2")


class MainTests(unittest.TestCase):
    def test_main_creates_directories_and_quits(self) -> None:
        with mock.patch.object(menu, "ensure_dirs") as ensure_dirs, \
                mock.patch.object(menu, "Console", return_value=Console(file=io.StringIO())), \
                _answers("3"):
            code = menu.main([])

        self.assertEqual(code, 0)
        ensure_dirs.assert_called_once_with(menu.DEFAULT_WORKING_DIR, menu.DEFAULT_FINAL_DIR)


if __name__ == "__main__":
    unittest.main()
