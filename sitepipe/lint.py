"""Source linting for Sitepipe.

The ``check`` task runs external linters (stylelint and jshint by default)
over the style and script sources. A linter that is not installed is
skipped with a warning; a linter reporting problems fails its task.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from .errors import LintError
from .executable_utils import find_executable, run_command

logger = logging.getLogger(__name__)


def collect_files(root: Path, patterns: Iterable[str]) -> list[Path]:
    """Expand glob patterns below ``root`` into a sorted, unique file list."""
    found: set[Path] = set()
    for pattern in patterns:
        found.update(path for path in root.glob(pattern) if path.is_file())
    return sorted(found)


class Linter:
    """Runs one external linter over a set of files.

    Attributes:
        name: Label used in log messages.
        command: Linter program and fixed arguments.
        project_root: Working directory; its node_modules/.bin is searched.
    """

    def __init__(self, name: str, command: Iterable[str], project_root: Path):
        self.name = name
        self.command = list(command)
        self.project_root = project_root

    def run(self, files: Iterable[Path]) -> bool:
        """Lint ``files``.

        Returns:
            True if the linter ran and passed, False if it was skipped.

        Raises:
            LintError: The linter reported problems.
        """
        files = list(files)
        if not files:
            logger.info("%s: nothing to lint", self.name)
            return False
        program = find_executable(self.command[0], self.project_root)
        if not program:
            logger.warning("%s: '%s' not found; skipping", self.name, self.command[0])
            return False
        cmd = [program, *self.command[1:], *(str(path) for path in files)]
        run_command(cmd, cwd=self.project_root, error_cls=LintError)
        logger.info("%s: %d files clean", self.name, len(files))
        return True
