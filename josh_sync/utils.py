"""
Helpers for running external (non-git) commands and asking the user questions.
"""

import os
import subprocess
from pathlib import Path
from typing import Sequence

import click

from .errors import CommandError
from .logging_config import get_logger

logger = get_logger(__name__)


def run_command(args: Sequence[str], cwd: Path | None = None) -> str:
    """Run a command and return its trimmed stdout."""
    logger.debug("+ %s", " ".join(args))
    try:
        out = subprocess.run(
            list(args), cwd=cwd, capture_output=True, text=True, errors="replace"
        )
    except FileNotFoundError as e:
        raise CommandError(args, None, stderr=str(e)) from e
    stdout = out.stdout.strip()
    if out.returncode != 0:
        raise CommandError(args, out.returncode, stdout, out.stderr.strip())
    return stdout


def stream_command(args: Sequence[str], cwd: Path | None = None) -> None:
    """Run a command while letting its stdout and stderr through to the terminal."""
    logger.debug("+ %s", " ".join(args))
    try:
        status = subprocess.run(list(args), cwd=cwd).returncode
    except FileNotFoundError as e:
        raise CommandError(args, None, stderr=str(e)) from e
    if status != 0:
        raise CommandError(args, status)


def is_ci() -> bool:
    return os.environ.get("GITHUB_ACTIONS", "").lower() in ("true", "1")


def prompt(question: str, default_response: bool) -> bool:
    """Ask a yes/no question. Returns `default_response` on CI."""
    if is_ci():
        return default_response
    return click.confirm(question, default=False)
