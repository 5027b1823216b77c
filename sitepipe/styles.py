"""Stylesheet compilation for Sitepipe.

Compiles the Sass entry stylesheet into a single minified CSS file:

1. libsass resolves imports against the include paths and renders CSS;
2. the postcss CLI with autoprefixer adds vendor prefixes for the target
   browsers (skipped with a warning when postcss is not installed);
3. csscompressor minifies the result.

The output is written only after every step succeeded, so a failed compile
never leaves a partial file behind.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

import csscompressor
import sass

from .errors import CommandError, CompileError
from .executable_utils import find_executable, run_command
from .utils import write_atomic

logger = logging.getLogger(__name__)


class StyleCompiler:
    """Compiles one Sass entry file to minified CSS.

    Attributes:
        entry_file: Sass/SCSS file to compile.
        include_paths: Directories searched by ``@import``.
        output_dir: Directory the CSS file is written to.
        browsers: Browserslist queries used for vendor prefixing.
        compatibility: Oldest browser the minified CSS must still suit.
        project_root: Project directory, searched for node_modules tools.
    """

    def __init__(
        self,
        entry_file: Path,
        include_paths: Iterable[Path],
        output_dir: Path,
        browsers: Iterable[str] = (),
        compatibility: str = "ie8",
        project_root: Path | None = None,
    ):
        self.entry_file = entry_file
        self.include_paths = list(include_paths)
        self.output_dir = output_dir
        self.browsers = list(browsers)
        self.compatibility = compatibility
        self.project_root = project_root

    @property
    def output_path(self) -> Path:
        return self.output_dir / f"{self.entry_file.stem.lstrip('_')}.css"

    def compile(self) -> Path:
        """Compile, prefix, minify and write the stylesheet.

        Returns:
            Path of the written CSS file.

        Raises:
            CompileError: Any step failed; no output was written.
        """
        css = self.render()
        css = self.prefix(css)
        css = self.minify(css)
        write_atomic(self.output_path, css)
        logger.info(
            "Compiled %s -> %s (%s baseline)",
            self.entry_file.name,
            self.output_path,
            self.compatibility,
        )
        return self.output_path

    def render(self) -> str:
        """Render the entry stylesheet to plain CSS with libsass."""
        if not self.entry_file.is_file():
            raise CompileError("Stylesheet entry not found", self.entry_file)
        try:
            return sass.compile(
                filename=str(self.entry_file),
                include_paths=[str(path) for path in self.include_paths],
                output_style="expanded",
            )
        except sass.CompileError as exc:
            raise CompileError(str(exc).strip(), self.entry_file, exc) from exc

    def prefix(self, css: str) -> str:
        """Add vendor prefixes with postcss + autoprefixer."""
        postcss = find_executable("postcss", self.project_root)
        if not postcss:
            logger.warning(
                "postcss not found; skipping vendor prefixes. Install with "
                "`npm install -D postcss postcss-cli autoprefixer`."
            )
            return css
        env = dict(os.environ)
        if self.browsers:
            env["BROWSERSLIST"] = ", ".join(self.browsers)
        try:
            result = run_command(
                [postcss, "--use", "autoprefixer", "--no-map"],
                cwd=self.project_root,
                env=env,
                input_text=css,
            )
        except CommandError as exc:
            raise CompileError(
                f"Vendor prefixing failed: {exc.message}", self.entry_file, exc
            ) from exc
        return result.stdout

    def minify(self, css: str) -> str:
        """Minify CSS with csscompressor."""
        return csscompressor.compress(css)
