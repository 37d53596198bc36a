#!/usr/bin/env python3
"""Terminal menu: pick an enhancement backend and an optional batch size.

Usage:
    python scripts/product_enhance/enhance_menu.py [--verbose]
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from rich.console import Console
from rich.prompt import Prompt

import enhance_gemini
import enhance_openrouter
from enhance_common import DEFAULT_FINAL_DIR, DEFAULT_WORKING_DIR, configure_logging, ensure_dirs

MAX_LIMIT_DIGITS = 6
CANCEL_INPUT = "b"

Runner = Callable[[List[str]], int]


@dataclass
class MenuOption:
    key: str
    label: str
    backend: Optional[str] = None


OPTIONS: List[MenuOption] = [
    MenuOption("openrouter", "Use OpenRouter (process:images:openrouter)", "OpenRouter"),
    MenuOption("google", "Use Google GenAI SDK (process:images)", "Google GenAI SDK"),
    MenuOption("quit", "Quit"),
]

RUNNERS: Dict[str, Runner] = {
    "openrouter": enhance_openrouter.main,
    "google": enhance_gemini.main,
}


def parse_limit(raw: str) -> Optional[int]:
    """Return the batch size for a digits-only answer, 0 for an empty one, None if invalid."""
    text = raw.strip()
    if not text:
        return 0
    if not text.isdigit() or len(text) > MAX_LIMIT_DIGITS:
        return None
    return int(text)


class MenuSession:
    def __init__(
        self,
        console: Console,
        runners: Dict[str, Runner],
        extra_args: Optional[List[str]] = None,
    ) -> None:
        self.console = console
        self.runners = runners
        self.extra_args = list(extra_args or [])
        self.status = "Choose backend and press Enter"

    def show_menu(self) -> None:
        self.console.print(f"\n[bold]{self.status}[/bold]")
        for number, option in enumerate(OPTIONS, start=1):
            self.console.print(f"  [green]{number}[/green]  {option.label}")

    def choose_option(self) -> MenuOption:
        choices = [str(number) for number in range(1, len(OPTIONS) + 1)]
        answer = Prompt.ask("Select", choices=choices, default="1", console=self.console)
        return OPTIONS[int(answer) - 1]

    def ask_limit(self) -> Optional[int]:
        """Prompt for a batch size; returns None when the operator cancels."""
        while True:
            raw = Prompt.ask(
                f"Batch size (press Enter for all, '{CANCEL_INPUT}' to go back)",
                default="",
                show_default=False,
                console=self.console,
            )
            if raw.strip().lower() == CANCEL_INPUT:
                return None
            limit = parse_limit(raw)
            if limit is not None:
                return limit
            self.console.print(f"[red]Type up to {MAX_LIMIT_DIGITS} digits, or press Enter for all.[/red]")

    def run_backend(self, option: MenuOption, limit: int) -> None:
        argv = list(self.extra_args)
        if limit:
            argv += ["--limit", str(limit)]

        self.status = f"Running {option.backend} image processing..."
        self.console.print(f"[cyan]{self.status}[/cyan]")
        try:
            code = self.runners[option.key](argv)
            if code == 0:
                self.status = "Done. See ./final for outputs."
            else:
                self.status = f"Error: {option.backend} run exited with code {code}"
        except SystemExit as exc:
            self.status = f"Error: {option.backend} run exited with code {exc.code}"
        except Exception as exc:  # noqa: BLE001
            logging.debug("Backend %s raised", option.key, exc_info=True)
            self.status = f"Error: {exc}"

    def run(self) -> int:
        while True:
            self.show_menu()
            option = self.choose_option()
            if option.key == "quit":
                return 0
            limit = self.ask_limit()
            if limit is None:
                self.status = "Choose backend and press Enter"
                continue
            self.run_backend(option, limit)


def parse_args(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Interactive front-end for the product image enhancers.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging (also forwarded to the chosen backend).",
    )
    return parser.parse_args(list(argv))


def main(argv: Iterable[str]) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)
    ensure_dirs(DEFAULT_WORKING_DIR, DEFAULT_FINAL_DIR)

    session = MenuSession(
        console=Console(),
        runners=RUNNERS,
        extra_args=["--verbose"] if args.verbose else [],
    )
    try:
        return session.run()
    except (KeyboardInterrupt, EOFError):
        return 0


def cli() -> None:
    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
    cli()
