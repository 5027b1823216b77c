"""Configuration loading for Sitepipe.

Settings live in ``sitepipe.yaml`` at the project root. Any key left out
falls back to DEFAULT_CONFIG, which describes a conventional Jekyll blog
layout (``_sass``, ``_scripts``, ``_site``).
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

import yaml

from .errors import PipelineError

CONFIG_FILENAME = "sitepipe.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "output_dir": "_site",
    "staging_dir": ".publish",
    "site_source": ".",
    "site_command": ["jekyll", "build"],
    "site_configs": ["_config.yml"],
    "site_prod_configs": ["_config.prod.yml"],
    "styles_entry": "_sass/main.scss",
    "styles_include_paths": ["_sass"],
    "styles_output": "assets/css",
    "styles_watch": ["_sass/**/*.scss", "_sass/**/*.sass"],
    "browsers": ["last 2 versions", "ie >= 8"],
    "css_compatibility": "ie8",
    "scripts_root": "_scripts",
    "scripts_manifest": "_scripts/manifest.yml",
    "scripts_output": "assets/js",
    "content_watch": [
        "*.html",
        "*.md",
        "_config*.yml",
        "_data/**",
        "_drafts/**",
        "_includes/**",
        "_layouts/**",
        "_posts/**",
        "images/**",
    ],
    "port": 4000,
    "ws_port": None,
    "remote": "origin",
    "branch": "gh-pages",
    "marker_file": ".nojekyll",
    "commit_message": "Publish site",
    "lint_styles_command": ["stylelint"],
    "lint_styles_files": ["_sass/**/*.scss"],
    "lint_scripts_command": ["jshint"],
    "lint_scripts_files": ["_scripts/**/*.js"],
    "watch": [],
}


class Config(Mapping):
    """Resolved project configuration.

    Behaves like a read-only mapping over the merged settings and adds
    helpers to resolve path-valued keys against the project root.

    Attributes:
        project_root: Directory the configuration belongs to.
    """

    def __init__(self, project_root: Path, values: Mapping[str, Any]):
        self.project_root = project_root
        self._values = dict(values)

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def path(self, key: str) -> Path:
        """Resolve a path-valued setting against the project root."""
        return self.project_root / str(self._values[key])

    def paths(self, key: str) -> list[Path]:
        """Resolve a list-of-paths setting against the project root."""
        return [self.project_root / str(item) for item in self.as_list(key)]

    def as_list(self, key: str) -> list[Any]:
        """Return a setting as a list, wrapping scalars."""
        value = self._values.get(key)
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        return [value]

    @property
    def output_dir(self) -> Path:
        return self.path("output_dir")

    @property
    def http_port(self) -> int:
        return int(self._values.get("port") or DEFAULT_CONFIG["port"])

    @property
    def ws_port(self) -> int:
        explicit = self._values.get("ws_port")
        return int(explicit) if explicit else self.http_port + 1


def load_config(project_root: Path, config_path: Path | None = None) -> Config:
    """Load configuration from sitepipe.yaml.

    Args:
        project_root: Root directory of the blog project.
        config_path: Explicit configuration file; defaults to
            ``<project_root>/sitepipe.yaml``.

    Returns:
        Config with defaults applied for every missing key.

    Raises:
        PipelineError: If the file is not valid YAML.
    """
    config_path = config_path or project_root / CONFIG_FILENAME
    values = dict(DEFAULT_CONFIG)
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            try:
                loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise PipelineError(
                    f"Invalid configuration: {exc}", config_path, exc
                ) from exc
        if isinstance(loaded, dict):
            values.update(loaded)
    return Config(project_root, values)
