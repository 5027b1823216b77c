"""Task wiring for Sitepipe.

Pipeline turns a project configuration into the task graph the CLI runs and
the watch rules the ``watch`` task installs.

Tasks:
    clean         delete the output directory
    styles        compile Sass to minified CSS
    scripts       build every bundle of the script manifest
    site:dev      run the site generator in dev mode, then live reload
    site:prod     clean, then run the site generator in prod mode
    html          minify generated HTML (after site:prod)
    site:rebuild  site:dev, then styles and scripts again
    lint:styles   lint style sources
    lint:scripts  lint script sources
    check         all lint tasks
    serve         start the dev server
    watch         watch sources until interrupted
    default       site:dev, styles + scripts, serve, watch
    build         clean, site:prod, html, scripts + styles
    deploy        build, then publish the output

The site generator recreates its destination directory, so asset tasks are
sequenced after it rather than run alongside.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator, Sequence
from pathlib import Path

from .bundler import BundleResult, ScriptBundler
from .config import Config, load_config
from .deploy import Deployer
from .errors import PipelineError
from .html_utils import minify_html_tree
from .lint import Linter, collect_files
from .server import DevServer
from .site import SiteBuilder
from .styles import StyleCompiler
from .tasks import TaskGraph
from .utils import remove_dir
from .watcher import WatchSession

logger = logging.getLogger(__name__)


class Pipeline:
    """The blog's build tasks, dev server and watch session.

    Attributes:
        config: Resolved project configuration.
        project_root: Directory everything is relative to.
        output_dir: Build output directory.
        graph: Task graph holding every task.
        server: Dev server used by ``serve`` and live reload.
        session: Watch session used by ``watch``.
    """

    def __init__(self, config: Config):
        self.config = config
        self.project_root = config.project_root
        self.output_dir = config.output_dir
        self.graph = TaskGraph()
        self.server = DevServer(self.output_dir, config.http_port, config.ws_port)
        self.session = WatchSession(self.project_root, self.run_watched)
        self._define_tasks()
        self._define_watch_rules()

    def run(self, *names: str) -> None:
        """Run tasks by name, blocking until they finish."""
        self.graph.run_sync(*names)

    def run_watched(self, names: Sequence[str]) -> None:
        self.graph.run_sync(*names)

    # Components

    def style_compiler(self) -> StyleCompiler:
        return StyleCompiler(
            self.config.path("styles_entry"),
            self.config.paths("styles_include_paths"),
            self.output_dir / self.config["styles_output"],
            browsers=self.config.as_list("browsers"),
            compatibility=str(self.config["css_compatibility"]),
            project_root=self.project_root,
        )

    def script_bundler(self) -> ScriptBundler:
        return ScriptBundler(
            self.config.path("scripts_manifest"),
            self.config.path("scripts_root"),
            self.output_dir / self.config["scripts_output"],
            project_root=self.project_root,
        )

    def site_builder(self) -> SiteBuilder:
        return SiteBuilder(
            self.config.as_list("site_command"),
            self.config.path("site_source"),
            self.output_dir,
            configs=self.config.paths("site_configs"),
            prod_configs=self.config.paths("site_prod_configs"),
            project_root=self.project_root,
        )

    def deployer(self) -> Deployer:
        return Deployer(
            self.output_dir,
            self.config.path("staging_dir"),
            remote=str(self.config["remote"]),
            branch=str(self.config["branch"]),
            marker=str(self.config["marker_file"]),
            message=str(self.config["commit_message"]),
            project_root=self.project_root,
        )

    # Task actions

    def clean(self) -> None:
        if remove_dir(self.output_dir):
            logger.info("Removed %s", self.output_dir)

    def styles(self) -> None:
        self.style_compiler().compile()

    def scripts(self) -> Iterator[BundleResult]:
        failed = 0
        for result in self.script_bundler().iter_bundles():
            if not result.ok:
                failed += 1
            yield result
        if failed:
            logger.warning("%d bundle(s) failed; see errors above", failed)

    def site_dev(self) -> None:
        self.site_builder().build("dev")
        self.server.reload()

    def site_prod(self) -> None:
        self.site_builder().build("prod")

    def html(self) -> Iterator[Path]:
        return minify_html_tree(self.output_dir)

    def lint_styles(self) -> None:
        linter = Linter(
            "lint:styles", self.config.as_list("lint_styles_command"), self.project_root
        )
        linter.run(
            collect_files(self.project_root, self.config.as_list("lint_styles_files"))
        )

    def lint_scripts(self) -> None:
        linter = Linter(
            "lint:scripts", self.config.as_list("lint_scripts_command"), self.project_root
        )
        linter.run(
            collect_files(self.project_root, self.config.as_list("lint_scripts_files"))
        )

    def serve(self) -> None:
        self.server.start()
        logger.info("Dev server running at %s", self.server.url)

    def watch(self) -> None:
        self.session.start()
        self.session.wait()

    def deploy(self) -> None:
        self.deployer().deploy()

    # Wiring

    def _define_tasks(self) -> None:
        graph = self.graph
        graph.define("clean", action=self.clean, description="Delete the output directory")
        graph.define("styles", action=self.styles, description="Compile Sass to minified CSS")
        graph.define("scripts", action=self.scripts, description="Build the script bundles")
        graph.define(
            "site:dev", action=self.site_dev, description="Build the site (development)"
        )
        graph.define(
            "site:prod",
            ["clean"],
            action=self.site_prod,
            description="Build the site (production)",
        )
        graph.define(
            "html", ["site:prod"], action=self.html, description="Minify generated HTML"
        )
        graph.define(
            "site:rebuild",
            action=graph.sequence("site:dev", ["styles", "scripts"]),
            description="Rebuild the site and its assets",
        )
        graph.define("lint:styles", action=self.lint_styles, description="Lint style sources")
        graph.define(
            "lint:scripts", action=self.lint_scripts, description="Lint script sources"
        )
        graph.define("check", ["lint:styles", "lint:scripts"], description="Run all linters")
        graph.define("serve", action=self.serve, description="Serve the output with live reload")
        graph.define("watch", action=self.watch, description="Rebuild on source changes")
        graph.define(
            "default",
            action=graph.sequence("site:dev", ["styles", "scripts"], "serve", "watch"),
            description="Build, serve and watch for development",
        )
        graph.define(
            "build",
            action=graph.sequence("clean", "site:prod", "html", ["scripts", "styles"]),
            description="Production build",
        )
        graph.define(
            "deploy", ["build"], action=self.deploy, description="Build and publish the site"
        )

    def _define_watch_rules(self) -> None:
        config = self.config
        session = self.session
        output = self._relative(self.output_dir)
        ignore = (
            f"{output}/**",
            f"{self._relative(config.path('staging_dir'))}/**",
            "node_modules/**",
            ".git/**",
        )
        session.watch(config.as_list("styles_watch"), "styles", ignore=ignore)

        scripts_root = self._relative(config.path("scripts_root"))
        # Editing the manifest rebuilds every bundle, not just one.
        session.watch(
            [
                f"{scripts_root}/**/*.js",
                f"{scripts_root}/**/*.coffee",
                self._relative(config.path("scripts_manifest")),
            ],
            "scripts",
            ignore=ignore,
        )
        session.watch(config.as_list("content_watch"), "site:rebuild", ignore=ignore)
        session.watch(
            [
                f"{output}/{config['styles_output']}/*.css",
                f"{output}/{config['scripts_output']}/**/*.js",
            ],
            self.server.reload,
        )
        for extra in config.as_list("watch"):
            if not isinstance(extra, dict) or not extra.get("globs") or not extra.get("tasks"):
                raise PipelineError(f"Invalid watch rule in configuration: {extra!r}")
            for name in self._as_tuple(extra["tasks"]):
                if name not in self.graph:
                    raise PipelineError(f"Watch rule refers to unknown task '{name}'")
            session.watch(
                self._as_tuple(extra["globs"]),
                self._as_tuple(extra["tasks"]),
                ignore=self._as_tuple(extra.get("ignore", ())),
            )

    def _relative(self, path: Path) -> str:
        return Path(os.path.relpath(path, self.project_root)).as_posix()

    @staticmethod
    def _as_tuple(value) -> tuple[str, ...]:
        if isinstance(value, str):
            return (value,)
        return tuple(value)


def create_pipeline(project_root: Path, config_path: Path | None = None) -> Pipeline:
    """Load the project configuration and build its pipeline."""
    return Pipeline(load_config(project_root, config_path))
