"""Terminal output and prompts."""

import sys

from rich import print
from rich.markup import escape
from rich.prompt import Confirm, IntPrompt, Prompt


def log(msg: str):
    print(f"[green][INFO][/green] {msg}")


def warn(msg: str):
    print(f"[yellow][WARN][/yellow] {msg}")


def error(msg: str):
    print(f"[red][ERROR][/red] {msg}")
    sys.exit(1)


def header(title: str):
    print(f"[magenta]{'=' * 40}[/magenta]")
    print(f"[magenta]{escape(title)}[/magenta]")
    print(f"[magenta]{'=' * 40}[/magenta]")


def show(text: str):
    """Prints command output verbatim, brackets included."""
    print(escape(text.rstrip("\n")))


def ask(prompt: str, default: str | None = None) -> str:
    if default:
        return Prompt.ask(prompt, default=default).strip()
    return Prompt.ask(prompt, default="", show_default=False).strip()


def ask_required(prompt: str, default: str | None = None) -> str:
    while True:
        value = ask(prompt, default)
        if value:
            return value
        warn("A value is required")


def ask_int(prompt: str, default: int) -> int:
    return IntPrompt.ask(prompt, default=default)


def choose(prompt: str, choices: list[str]) -> str:
    return Prompt.ask(prompt, choices=choices, show_choices=False)


def confirm(prompt: str, default: bool = True) -> bool:
    return Confirm.ask(prompt, default=default)


def pause():
    input("\nPress Enter to continue...")
