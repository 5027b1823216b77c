import subprocess
from pathlib import Path

import pytest

from sitepipe.errors import BuildError
from sitepipe.site import SiteBuilder


def make_builder(tmp_path: Path, command=("jekyll", "build")) -> SiteBuilder:
    return SiteBuilder(
        list(command),
        tmp_path,
        tmp_path / "_site",
        configs=[tmp_path / "_config.yml"],
        prod_configs=[tmp_path / "_config.prod.yml"],
        project_root=tmp_path,
    )


@pytest.fixture
def fake_jekyll(monkeypatch):
    monkeypatch.setattr(
        "sitepipe.site.find_executable", lambda name, root=None: f"/usr/bin/{name}"
    )


def test_dev_uses_default_configs_only(tmp_path, fake_jekyll):
    cmd = make_builder(tmp_path).command_for("dev")
    assert cmd[:2] == ["/usr/bin/jekyll", "build"]
    assert cmd[cmd.index("--config") + 1] == str(tmp_path / "_config.yml")
    assert cmd[cmd.index("--destination") + 1] == str(tmp_path / "_site")
    assert cmd[cmd.index("--source") + 1] == str(tmp_path)


def test_prod_layers_production_configs_last(tmp_path, fake_jekyll):
    cmd = make_builder(tmp_path).command_for("prod")
    configs = cmd[cmd.index("--config") + 1].split(",")
    assert configs == [str(tmp_path / "_config.yml"), str(tmp_path / "_config.prod.yml")]


def test_unknown_mode_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        make_builder(tmp_path).configs_for("staging")


def test_empty_command_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        SiteBuilder([], tmp_path, tmp_path / "_site")


def test_build_runs_generator(monkeypatch, tmp_path, fake_jekyll):
    seen = {}

    def fake_run(cmd, **kwargs):
        seen["cmd"] = cmd
        seen["env"] = kwargs["env"]
        seen["cwd"] = kwargs["cwd"]
        return subprocess.CompletedProcess(cmd, 0, stdout="done", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)
    result = make_builder(tmp_path).build("prod")

    assert result.mode == "prod"
    assert result.configs[-1] == tmp_path / "_config.prod.yml"
    assert result.output_dir == tmp_path / "_site"
    assert result.duration >= 0
    assert seen["env"]["JEKYLL_ENV"] == "production"
    assert seen["cwd"] == tmp_path


def test_generator_failure_is_fatal(monkeypatch, tmp_path, fake_jekyll):
    def fake_run(cmd, **kwargs):
        return subprocess.CompletedProcess(
            cmd, 1, stdout="", stderr="Liquid Exception: Unknown tag 'foo' in index.html"
        )

    monkeypatch.setattr(subprocess, "run", fake_run)
    with pytest.raises(BuildError) as excinfo:
        make_builder(tmp_path).build("dev")
    assert excinfo.value.returncode == 1
    assert "Unknown tag" in excinfo.value.message


def test_missing_generator(monkeypatch, tmp_path):
    monkeypatch.setattr("sitepipe.site.find_executable", lambda name, root=None: None)
    with pytest.raises(BuildError) as excinfo:
        make_builder(tmp_path, ("bundle", "exec", "jekyll", "build")).build("dev")
    assert "'bundle' not found" in excinfo.value.message
