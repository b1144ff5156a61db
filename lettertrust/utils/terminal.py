"""Terminal helpers for interactive password entry and line input."""

from __future__ import annotations

import sys
from typing import TextIO

import typer

KEY_PASSWORD_PROMPT = "Enter password for private key"


def read_line(stream: TextIO | None = None) -> str | None:
    """Read one newline-terminated line, without the newline.

    Returns:
        The line, or None at end of input
    """
    stream = stream if stream is not None else sys.stdin
    line = stream.readline()
    if line == "":
        return None
    return line[:-1] if line.endswith("\n") else line


def prompt_key_password() -> str:
    """Ask for the private key password without echoing it.

    The prompt goes to stderr so stdout carries only the letter.

    Raises:
        click.exceptions.Abort: If input ends or the user interrupts
    """
    return typer.prompt(KEY_PASSWORD_PROMPT, hide_input=True, err=True)
