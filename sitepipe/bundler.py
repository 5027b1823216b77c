"""Manifest-driven script bundling for Sitepipe.

A manifest maps each output bundle name to the ordered list of sources that
make it up, relative to the scripts root::

    app.js:
      - vendor/jquery.js
      - main.coffee
    admin.js:
      - admin.js

Every source is passed through the first transpiler that accepts it
(CoffeeScript is compiled to JavaScript, everything else passes through),
then each bundle is concatenated in manifest order, minified with rjsmin and
written to the output directory.

The bundler favours partial success: a source that fails to transpile is
logged and left out, and a bundle that fails (missing source, unwritable
output) does not stop the other bundles.

Key classes:
- BaseTranspiler: Interface for source transpilers.
- CoffeeScriptTranspiler: Compiles .coffee files with the coffee CLI.
- PassthroughTranspiler: Reads native sources unchanged.
- TranspilerRegistry: Picks the transpiler for a source.
- ScriptBundler: Builds every bundle of a manifest.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from rjsmin import jsmin

from .errors import CommandError, ManifestError, PipelineError, TranspileError
from .executable_utils import find_executable, run_command
from .utils import write_atomic

logger = logging.getLogger(__name__)


def load_manifest(path: Path) -> dict[str, list[str]]:
    """Load a bundle manifest.

    The file is YAML; JSON manifests load as well since JSON is valid YAML.
    Declaration order is kept for both bundles and sources.

    Args:
        path: Manifest file.

    Returns:
        Mapping of bundle output name to ordered source fragments.

    Raises:
        ManifestError: The file is unreadable or not a name -> list mapping.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ManifestError(f"Cannot read manifest: {exc.strerror}", path, exc) from exc
    except yaml.YAMLError as exc:
        raise ManifestError(f"Invalid manifest: {exc}", path, exc) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ManifestError("Manifest must map bundle names to source lists", path)

    manifest: dict[str, list[str]] = {}
    for name, sources in data.items():
        if not isinstance(name, str) or not name:
            raise ManifestError(f"Bundle name must be a string, got {name!r}", path)
        if not isinstance(sources, list) or not all(
            isinstance(item, str) for item in sources
        ):
            raise ManifestError(f"Sources of '{name}' must be a list of paths", path)
        manifest[name] = list(sources)
    return manifest


class BaseTranspiler(ABC):
    """Turns one script source into native JavaScript."""

    @property
    @abstractmethod
    def priority(self) -> int:
        """Return transpiler priority (higher = checked first)."""
        ...

    @abstractmethod
    def can_transpile(self, path: Path) -> bool:
        """Check if this transpiler handles the given source."""
        ...

    @abstractmethod
    def transpile(self, path: Path) -> str:
        """Return the JavaScript for ``path``.

        Raises:
            TranspileError: The source could not be converted.
        """
        ...


class PassthroughTranspiler(BaseTranspiler):
    """Reads sources that are already JavaScript."""

    @property
    def priority(self) -> int:
        return 0

    def can_transpile(self, path: Path) -> bool:
        return True

    def transpile(self, path: Path) -> str:
        return path.read_text(encoding="utf-8")


class CoffeeScriptTranspiler(BaseTranspiler):
    """Compiles CoffeeScript with the ``coffee`` CLI.

    The compiler is looked up on PATH and in the project's node_modules.
    Output is bare (no top-level function wrapper) so declarations are
    visible to later sources of the same bundle.
    """

    SUPPORTED_EXTENSIONS = {".coffee", ".litcoffee"}

    def __init__(self, project_root: Path | None = None):
        self.project_root = project_root

    @property
    def priority(self) -> int:
        return 50

    def can_transpile(self, path: Path) -> bool:
        return path.suffix.lower() in self.SUPPORTED_EXTENSIONS

    def transpile(self, path: Path) -> str:
        coffee = find_executable("coffee", self.project_root)
        if not coffee:
            raise TranspileError(
                "CoffeeScript compiler not found; install it with "
                "`npm install -D coffeescript`",
                path,
            )
        try:
            result = run_command([coffee, "--compile", "--print", "--bare", str(path)])
        except CommandError as exc:
            raise TranspileError(exc.message, path, exc) from exc
        return result.stdout


class TranspilerRegistry:
    """Priority-ordered set of transpilers."""

    def __init__(self):
        self._transpilers: list[BaseTranspiler] = []

    def register(self, transpiler: BaseTranspiler) -> None:
        self._transpilers.append(transpiler)
        self._transpilers.sort(key=lambda t: t.priority, reverse=True)

    def get_transpiler(self, path: Path) -> BaseTranspiler | None:
        for transpiler in self._transpilers:
            if transpiler.can_transpile(path):
                return transpiler
        return None

    def transpile(self, path: Path) -> str:
        """Transpile ``path`` with the first matching transpiler.

        Raises:
            TranspileError: No transpiler accepts the file, or it failed.
        """
        transpiler = self.get_transpiler(path)
        if transpiler is None:
            raise TranspileError("No transpiler for this file type", path)
        return transpiler.transpile(path)


def create_default_registry(project_root: Path | None = None) -> TranspilerRegistry:
    registry = TranspilerRegistry()
    registry.register(CoffeeScriptTranspiler(project_root))
    registry.register(PassthroughTranspiler())
    return registry


@dataclass
class BundleResult:
    """Outcome of building one bundle.

    Attributes:
        name: Bundle output name from the manifest.
        output_path: Written file, None if the bundle failed.
        sources: Sources included, in concatenation order.
        skipped: Sources left out because they failed to transpile.
        error: Why the bundle failed, None on success.
    """

    name: str
    output_path: Path | None = None
    sources: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BundleReport:
    """Outcome of a whole bundling run."""

    results: list[BundleResult] = field(default_factory=list)

    @property
    def built(self) -> list[BundleResult]:
        return [result for result in self.results if result.ok]

    @property
    def failed(self) -> list[BundleResult]:
        return [result for result in self.results if not result.ok]


class ScriptBundler:
    """Builds every bundle declared in a manifest.

    Attributes:
        manifest_path: Manifest file, re-read on every run.
        source_root: Directory manifest sources are relative to.
        output_dir: Directory bundles are written to.
        registry: Transpilers applied to each source.
    """

    def __init__(
        self,
        manifest_path: Path,
        source_root: Path,
        output_dir: Path,
        registry: TranspilerRegistry | None = None,
        project_root: Path | None = None,
    ):
        self.manifest_path = manifest_path
        self.source_root = source_root
        self.output_dir = output_dir
        self.registry = registry or create_default_registry(project_root)

    def bundle(self) -> BundleReport:
        """Build all bundles and return the collected results."""
        report = BundleReport(list(self.iter_bundles()))
        if report.failed:
            logger.warning(
                "%d of %d bundles failed", len(report.failed), len(report.results)
            )
        return report

    def iter_bundles(self) -> Iterator[BundleResult]:
        """Build bundles one at a time, in manifest order.

        Raises:
            ManifestError: The manifest could not be loaded.
        """
        manifest = load_manifest(self.manifest_path)
        for name, sources in manifest.items():
            yield self.build_bundle(name, sources)

    def build_bundle(self, name: str, sources: list[str]) -> BundleResult:
        """Concatenate, minify and write a single bundle."""
        result = BundleResult(name)
        chunks: list[str] = []
        try:
            for fragment in sources:
                path = self.source_root / fragment
                if not path.is_file():
                    raise PipelineError("Source file not found", path)
                try:
                    chunks.append(self.registry.transpile(path))
                except TranspileError as exc:
                    logger.error("Skipping %s: %s", fragment, exc.message)
                    result.skipped.append(path)
                    continue
                result.sources.append(path)
            dest = self.output_dir / name
            write_atomic(dest, jsmin("\n".join(chunks)))
        except (PipelineError, OSError, UnicodeDecodeError) as exc:
            logger.error("Bundle '%s' failed: %s", name, exc)
            result.error = exc
            return result
        result.output_path = dest
        logger.info("Bundled %s (%d sources)", name, len(result.sources))
        return result
