"""Publishing for Sitepipe.

The built output is copied into a local staging directory that is its own
git repository, a marker file (``.nojekyll`` by default) is added so the
host serves the files as-is, and the result is force-pushed to the hosting
branch, replacing whatever the branch held before.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from .errors import CommandError, DeployError
from .executable_utils import find_executable, run_command
from .utils import ensure_clean_dir

logger = logging.getLogger(__name__)


@dataclass
class DeployResult:
    """Summary of a publish.

    Attributes:
        remote: Remote the branch was pushed to.
        branch: Hosting branch.
        staging_dir: Directory the commit was made in.
        files: Number of files published (marker included).
    """

    remote: str
    branch: str
    staging_dir: Path
    files: int


class Deployer:
    """Publishes an output directory to a remote branch.

    Attributes:
        output_dir: Built site to publish.
        staging_dir: Local git working copy used for the publish commit.
        remote: Remote name (resolved in the project repository) or URL.
        branch: Branch overwritten on the remote.
        marker: File name created in the staging root.
        message: Commit message.
        project_root: Repository the remote name is resolved in.
    """

    def __init__(
        self,
        output_dir: Path,
        staging_dir: Path,
        remote: str,
        branch: str,
        marker: str = ".nojekyll",
        message: str = "Publish site",
        project_root: Path | None = None,
    ):
        self.output_dir = output_dir
        self.staging_dir = staging_dir
        self.remote = remote
        self.branch = branch
        self.marker = marker
        self.message = message
        self.project_root = project_root

    @property
    def marker_path(self) -> Path:
        return self.staging_dir / self.marker

    def deploy(self) -> DeployResult:
        """Stage the output, add the marker and push it.

        Raises:
            DeployError: There is nothing to publish or git failed.
        """
        if not self.output_dir.is_dir():
            raise DeployError(
                "Nothing to publish; run the build first", source_path=self.output_dir
            )
        self.prepare_staging()
        self.copy_output()
        self.ensure_marker()
        files = self.count_files()
        self.publish()
        logger.info("Published %d files to %s %s", files, self.remote, self.branch)
        return DeployResult(self.remote, self.branch, self.staging_dir, files)

    def prepare_staging(self) -> None:
        """Create the staging directory and empty it, keeping its git data."""
        ensure_clean_dir(self.staging_dir, keep=(".git",))

    def copy_output(self) -> None:
        shutil.copytree(
            self.output_dir,
            self.staging_dir,
            ignore=shutil.ignore_patterns(".git"),
            dirs_exist_ok=True,
        )

    def count_files(self) -> int:
        """Count staged files, ignoring git metadata."""
        return sum(
            1
            for path in self.staging_dir.rglob("*")
            if path.is_file()
            and ".git" not in path.relative_to(self.staging_dir).parts
        )

    def ensure_marker(self) -> Path:
        self.marker_path.touch(exist_ok=True)
        return self.marker_path

    def publish(self) -> None:
        """Commit the staging directory and force-push it to the branch."""
        git = find_executable("git")
        if not git:
            raise DeployError("git not found; cannot publish")
        target = self.resolve_remote(git)
        if not (self.staging_dir / ".git").exists():
            self._git(git, "init")
        self._git(git, "add", "--all")
        self._git(git, "commit", "--allow-empty", "--quiet", "-m", self.message)
        self._git(git, "push", "--force", target, f"HEAD:refs/heads/{self.branch}")

    def resolve_remote(self, git: str) -> str:
        """Turn a remote name into a URL; URLs and paths pass through."""
        if any(sep in self.remote for sep in (":", "/", "\\")):
            return self.remote
        try:
            result = run_command(
                [git, "remote", "get-url", self.remote],
                cwd=self.project_root,
                error_cls=DeployError,
            )
        except CommandError as exc:
            raise DeployError(
                f"Unknown remote '{self.remote}': {exc.message}",
                returncode=exc.returncode,
            ) from exc
        return result.stdout.strip()

    def _git(self, git: str, *args: str) -> None:
        run_command([git, *args], cwd=self.staging_dir, error_cls=DeployError)
