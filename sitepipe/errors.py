"""Error types for Sitepipe.

Every failure a task can report derives from PipelineError so the CLI can
print one friendly message and exit non-zero. The task runner wraps these
(and anything else an action raises) in its own TaskFailedError.
"""

from __future__ import annotations

from pathlib import Path


class PipelineError(Exception):
    """Error raised by a pipeline step, with optional file context.

    Attributes:
        message: Human-readable error message.
        source_path: File the error relates to, when there is one.
        original_error: The underlying exception, if one was caught.
    """

    def __init__(
        self,
        message: str,
        source_path: Path | None = None,
        original_error: Exception | None = None,
    ):
        self.message = message
        self.source_path = source_path
        self.original_error = original_error
        if source_path is not None:
            super().__init__(f"{source_path}: {message}")
        else:
            super().__init__(message)


class CompileError(PipelineError):
    """A stylesheet or script could not be compiled."""


class TranspileError(CompileError):
    """A non-native script source failed to transpile."""


class ManifestError(PipelineError):
    """The bundle manifest is missing or malformed."""


class CommandError(PipelineError):
    """An external program exited non-zero or could not be started.

    Attributes:
        returncode: Exit status of the process, None if it never ran.
    """

    def __init__(
        self,
        message: str,
        returncode: int | None = None,
        source_path: Path | None = None,
        original_error: Exception | None = None,
    ):
        self.returncode = returncode
        super().__init__(message, source_path, original_error)


class BuildError(CommandError):
    """The external static-site generator failed."""


class DeployError(CommandError):
    """Publishing the output directory failed."""


class LintError(CommandError):
    """A linter reported problems."""
