"""Command-line interface for Sitepipe.

Commands:
- run: Run one or more tasks by name (``default`` when none are given).
- tasks: List the available tasks.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from . import __version__

_LEVEL_COLORS = {
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "red",
}


class _ClickHandler(logging.Handler):
    """Logging handler writing through click, coloured by level."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
        except Exception:
            self.handleError(record)
            return
        color = _LEVEL_COLORS.get(record.levelno)
        if color:
            message = click.style(message, fg=color)
        click.echo(message, err=record.levelno >= logging.WARNING)


def _configure_logging(verbose: bool) -> None:
    logger = logging.getLogger("sitepipe")
    for handler in list(logger.handlers):
        if isinstance(handler, _ClickHandler):
            logger.removeHandler(handler)
    handler = _ClickHandler()
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(message)s", "%H:%M:%S"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


@click.group()
@click.version_option(version=__version__, prog_name="sitepipe")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (defaults to ./sitepipe.yaml)",
)
@click.option("-v", "--verbose", is_flag=True, help="Log debug output")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool):
    """Sitepipe blog build pipeline."""
    _configure_logging(verbose)
    ctx.obj = {"config_path": config_path}


@cli.command()
@click.argument("tasks", nargs=-1)
@click.pass_context
def run(ctx: click.Context, tasks: tuple[str, ...]):
    """Run TASKS (and their dependencies)."""
    from .errors import PipelineError
    from .pipeline import create_pipeline

    project_root = Path.cwd()
    try:
        pipeline = create_pipeline(project_root, ctx.obj["config_path"])
        pipeline.run(*(tasks or ("default",)))
    except PipelineError as exc:
        _report_failure(exc, project_root)
        raise SystemExit(1) from None
    except KeyboardInterrupt:
        click.echo("Interrupted", err=True)
        raise SystemExit(130) from None


@cli.command("tasks")
@click.pass_context
def list_tasks(ctx: click.Context):
    """List the available tasks."""
    from .errors import PipelineError
    from .pipeline import create_pipeline

    try:
        pipeline = create_pipeline(Path.cwd(), ctx.obj["config_path"])
    except PipelineError as exc:
        raise click.ClickException(exc.message) from None
    for task in pipeline.graph.describe():
        deps = f"  [{', '.join(task.dependencies)}]" if task.dependencies else ""
        click.echo(f"{task.name:<14}{task.description}{deps}")


def _report_failure(exc, project_root: Path) -> None:
    """Print a task failure in a readable form."""
    task = getattr(exc, "task", None)
    cause = exc.original_error if task and exc.original_error is not None else exc
    click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
    if task:
        click.echo(click.style(f"  Task: {task}", fg="yellow"), err=True)
    source_path = getattr(cause, "source_path", None)
    if source_path is not None:
        try:
            source_path = source_path.relative_to(project_root)
        except ValueError:
            pass
        click.echo(click.style(f"  File: {source_path}", fg="yellow"), err=True)
    message = getattr(cause, "message", None) or str(cause)
    click.echo(click.style(f"  Error: {message}", fg="white"), err=True)


def main():
    """Entry point for the CLI application."""
    cli()
