"""Static site generator invocation for Sitepipe.

The generator (Jekyll by default) is an external program; Sitepipe only
knows its command line, the configuration files to layer and the source and
destination directories.

Modes:
- dev: default configuration files only.
- prod: default files followed by the production overrides (later files win).
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from .errors import BuildError
from .executable_utils import find_executable, run_command

logger = logging.getLogger(__name__)

MODES = ("dev", "prod")

_ENVIRONMENTS = {"dev": "development", "prod": "production"}


@dataclass
class SiteBuildResult:
    """Result of one generator run.

    Attributes:
        mode: 'dev' or 'prod'.
        configs: Configuration files passed, in layering order.
        output_dir: Directory the site was generated into.
        duration: Wall-clock seconds the generator took.
    """

    mode: str
    configs: list[Path]
    output_dir: Path
    duration: float


class SiteBuilder:
    """Runs the external static site generator.

    Attributes:
        command: Generator command, e.g. ``["jekyll", "build"]``.
        source_dir: Site source directory.
        output_dir: Destination directory.
        configs: Default configuration files.
        prod_configs: Files layered on top for production builds.
        project_root: Working directory; its node_modules/.bin is searched.
    """

    def __init__(
        self,
        command: Iterable[str],
        source_dir: Path,
        output_dir: Path,
        configs: Iterable[Path] = (),
        prod_configs: Iterable[Path] = (),
        project_root: Path | None = None,
    ):
        self.command = list(command)
        self.source_dir = source_dir
        self.output_dir = output_dir
        self.configs = list(configs)
        self.prod_configs = list(prod_configs)
        self.project_root = project_root
        if not self.command:
            raise ValueError("Site generator command must not be empty")

    def configs_for(self, mode: str) -> list[Path]:
        """Return the configuration files for ``mode`` in layering order."""
        if mode == "dev":
            return list(self.configs)
        if mode == "prod":
            return self.configs + self.prod_configs
        raise ValueError(f"Unknown build mode: {mode!r} (expected one of {MODES})")

    def command_for(self, mode: str) -> list[str]:
        """Build the full generator command line for ``mode``.

        Raises:
            BuildError: The generator executable cannot be found.
        """
        configs = self.configs_for(mode)
        program = find_executable(self.command[0], self.project_root)
        if not program:
            raise BuildError(f"Site generator '{self.command[0]}' not found")
        cmd = [program, *self.command[1:]]
        if configs:
            cmd += ["--config", ",".join(str(path) for path in configs)]
        cmd += ["--source", str(self.source_dir), "--destination", str(self.output_dir)]
        return cmd

    def build(self, mode: str) -> SiteBuildResult:
        """Generate the site.

        Args:
            mode: 'dev' or 'prod'.

        Returns:
            SiteBuildResult describing the run.

        Raises:
            BuildError: The generator is missing or exited non-zero.
        """
        cmd = self.command_for(mode)
        env = dict(os.environ, JEKYLL_ENV=_ENVIRONMENTS[mode])
        logger.info("Building site (%s)", mode)
        started = time.perf_counter()
        run_command(cmd, cwd=self.project_root, env=env, error_cls=BuildError)
        duration = time.perf_counter() - started
        return SiteBuildResult(
            mode=mode,
            configs=self.configs_for(mode),
            output_dir=self.output_dir,
            duration=duration,
        )
