"""Helpers for locating and running external programs.

The pipeline shells out to a handful of tools (``coffee``, ``postcss``,
``jekyll``, ``git`` and the linters). They may be installed globally or into
the project's ``node_modules``; both places are searched.

Functions:
    find_executable: Locate an executable in PATH or node_modules.
    run_command: Run a program and raise a CommandError subclass on failure.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from .errors import CommandError

logger = logging.getLogger(__name__)


def find_executable(name: str, project_root: Path | None = None) -> str | None:
    """Find an executable in PATH or local node_modules.

    Args:
        name: Name of the executable (e.g. 'coffee', 'postcss').
        project_root: Optional project root whose node_modules/.bin is
            searched when the system PATH has no match.

    Returns:
        Full path to the executable if found, None otherwise.

    Examples:
        >>> find_executable('git')
        '/usr/bin/git'

        >>> find_executable('coffee', Path('/my/blog'))
        '/my/blog/node_modules/.bin/coffee'
    """
    found = shutil.which(name)
    if found:
        return found

    if project_root is not None:
        local = project_root / "node_modules" / ".bin" / name
        if local.exists():
            return str(local)

    return None


def run_command(
    cmd: Sequence[str],
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    input_text: str | None = None,
    error_cls: type[CommandError] = CommandError,
) -> subprocess.CompletedProcess:
    """Run an external command, capturing its output.

    Args:
        cmd: Program and arguments.
        cwd: Working directory for the process.
        env: Full environment for the process (inherits when None).
        input_text: Text fed to the process on stdin.
        error_cls: CommandError subclass raised on failure.

    Returns:
        The completed process (exit status 0).

    Raises:
        CommandError: The program is missing or exited non-zero.
    """
    logger.debug("Running %s", " ".join(cmd))
    try:
        result = subprocess.run(
            list(cmd),
            cwd=cwd,
            env=dict(env) if env is not None else None,
            input=input_text,
            capture_output=True,
            text=True,
        )
    except OSError as exc:
        raise error_cls(f"Could not run {cmd[0]}: {exc}", original_error=exc) from exc
    if result.returncode != 0:
        detail = (result.stderr or result.stdout or "").strip()
        message = f"{Path(cmd[0]).name} exited with status {result.returncode}"
        if detail:
            message = f"{message}: {_tail(detail)}"
        raise error_cls(message, returncode=result.returncode)
    return result


def _tail(text: str, lines: int = 20) -> str:
    """Keep the last few lines of a long tool output."""
    return "\n".join(text.splitlines()[-lines:])
