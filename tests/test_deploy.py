import subprocess

import pytest

from sitepipe.deploy import Deployer
from sitepipe.errors import DeployError


@pytest.fixture
def site(tmp_path):
    output = tmp_path / "_site"
    (output / "posts").mkdir(parents=True)
    (output / "index.html").write_text("<p>home</p>", encoding="utf-8")
    (output / "posts" / "hello.html").write_text("<p>hello</p>", encoding="utf-8")
    return output


@pytest.fixture
def git(monkeypatch):
    """Record git invocations instead of running them."""
    commands = []

    def fake_run(cmd, **kwargs):
        commands.append((cmd[1:], kwargs.get("cwd")))
        if cmd[1:3] == ["remote", "get-url"]:
            return subprocess.CompletedProcess(
                cmd, 0, stdout="git@example.com:me/blog.git\n", stderr=""
            )
        if cmd[1] == "init":
            (kwargs["cwd"] / ".git").mkdir()
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr("sitepipe.deploy.find_executable", lambda name, root=None: "git")
    monkeypatch.setattr(subprocess, "run", fake_run)
    return commands


def make_deployer(tmp_path, site, remote="origin"):
    return Deployer(
        site,
        tmp_path / ".publish",
        remote=remote,
        branch="gh-pages",
        project_root=tmp_path,
    )


def test_deploy_stages_marks_and_pushes(tmp_path, site, git):
    result = make_deployer(tmp_path, site).deploy()

    staging = tmp_path / ".publish"
    assert (staging / ".nojekyll").exists()
    assert (staging / "posts" / "hello.html").read_text(encoding="utf-8") == "<p>hello</p>"
    assert result.files == 3
    assert [args for args, _ in git] == [
        ["remote", "get-url", "origin"],
        ["init"],
        ["add", "--all"],
        ["commit", "--allow-empty", "--quiet", "-m", "Publish site"],
        ["push", "--force", "git@example.com:me/blog.git", "HEAD:refs/heads/gh-pages"],
    ]
    assert git[0][1] == tmp_path
    assert all(cwd == staging for _, cwd in git[1:])


def test_redeploy_replaces_stale_files_and_keeps_git(tmp_path, site, git):
    deployer = make_deployer(tmp_path, site)
    deployer.deploy()
    (site / "posts" / "hello.html").unlink()
    git.clear()

    deployer.deploy()

    staging = tmp_path / ".publish"
    assert not (staging / "posts" / "hello.html").exists()
    assert (staging / ".git").is_dir()
    assert (staging / ".nojekyll").exists()
    assert ["init"] not in [args for args, _ in git]


def test_existing_marker_is_kept(tmp_path, site, git):
    (site / ".nojekyll").write_text("", encoding="utf-8")
    result = make_deployer(tmp_path, site).deploy()
    assert result.files == 3


def test_missing_output_fails_before_git(tmp_path, git):
    deployer = make_deployer(tmp_path, tmp_path / "_site")
    with pytest.raises(DeployError) as excinfo:
        deployer.deploy()
    assert "run the build first" in excinfo.value.message
    assert git == []
    assert not (tmp_path / ".publish").exists()


def test_staging_path_taken_by_a_file(tmp_path, site, git):
    (tmp_path / ".publish").write_text("not a directory", encoding="utf-8")
    with pytest.raises(OSError):
        make_deployer(tmp_path, site).deploy()
    assert git == []


def test_push_failure_carries_exit_status(monkeypatch, tmp_path, site):
    def fake_run(cmd, **kwargs):
        if cmd[1] == "push":
            return subprocess.CompletedProcess(
                cmd, 128, stdout="", stderr="fatal: Authentication failed"
            )
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr("sitepipe.deploy.find_executable", lambda name, root=None: "git")
    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(DeployError) as excinfo:
        make_deployer(tmp_path, site, remote="https://example.com/blog.git").deploy()
    assert excinfo.value.returncode == 128
    assert "Authentication failed" in excinfo.value.message


def test_unknown_remote_name(monkeypatch, tmp_path, site):
    monkeypatch.setattr("sitepipe.deploy.find_executable", lambda name, root=None: "git")
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda cmd, **kwargs: subprocess.CompletedProcess(
            cmd, 2, stdout="", stderr="error: No such remote 'upstream'"
        ),
    )
    with pytest.raises(DeployError) as excinfo:
        make_deployer(tmp_path, site, remote="upstream").publish()
    assert "Unknown remote 'upstream'" in excinfo.value.message
    assert excinfo.value.returncode == 2


def test_remote_urls_pass_through(tmp_path, site):
    deployer = make_deployer(tmp_path, site, remote="../mirror.git")
    assert deployer.resolve_remote("git") == "../mirror.git"


def test_missing_git(monkeypatch, tmp_path, site):
    monkeypatch.setattr("sitepipe.deploy.find_executable", lambda name, root=None: None)
    with pytest.raises(DeployError):
        make_deployer(tmp_path, site).publish()
