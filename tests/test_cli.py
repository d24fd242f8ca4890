import logging
import shutil

import pytest

from homestack import __version__
from homestack.__main__ import build_parser, main
from homestack.schedule import MARKER

from conftest import FakeRuntime, write


class FakeCrontab:
    table = ""

    def read(self):
        return FakeCrontab.table

    def write(self, table):
        FakeCrontab.table = table

    def clear(self):
        FakeCrontab.table = ""


@pytest.fixture
def crontab(monkeypatch):
    FakeCrontab.table = "0 4 * * * /usr/local/bin/backup.sh\n"
    monkeypatch.setattr("homestack.schedule.CrontabBackend", FakeCrontab)
    return FakeCrontab


def test_version(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--version"])
    assert excinfo.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_no_command_prints_help():
    assert main([]) == 1


def test_maintenance_requires_a_mode():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["maintenance"])


def test_deploy_unknown_stack(project):
    assert main(["--root", str(project), "deploy", "nope", "-y"]) == 1
    assert not (project / ".deployment-state").exists()


def test_envs_generates_files(project):
    assert main(["--root", str(project), "envs", "alpha"]) == 0
    assert (project / "docker" / "alpha" / ".env").exists()
    assert not (project / "docker" / "beta" / ".env").exists()


def test_envs_unknown_stack(project):
    assert main(["--root", str(project), "envs", "ghost"]) == 1


def test_envs_list(project, capsys):
    assert main(["--root", str(project), "envs", "--list"]) == 0
    assert "cloudflare" in capsys.readouterr().out


def test_bad_settings_file(project):
    write(project / "homestack.yaml", "nonsense_setting: 1\n")
    assert main(["--root", str(project), "envs", "--list"]) == 1


def test_maintenance_install_and_uninstall(project, crontab):
    assert main(["--root", str(project), "maintenance", "--install"]) == 0
    assert "--dns-only" in crontab.table
    assert crontab.table.startswith("0 4 * * * /usr/local/bin/backup.sh\n")

    assert main(["--root", str(project), "maintenance", "--status"]) == 0

    assert main(["--root", str(project), "maintenance", "--uninstall"]) == 0
    assert MARKER not in crontab.table
    assert "backup.sh" in crontab.table


@pytest.fixture
def runtime(project, monkeypatch):
    write(project / "homestack.yaml", "convergence_delay: 0\nhealth_settle_delay: 0\n")
    runtime = FakeRuntime()
    monkeypatch.setattr("homestack.core.ComposeRuntime", lambda: runtime)
    monkeypatch.setattr(
        "homestack.__main__.git_revision",
        lambda root: {"branch": "main", "commit": "abc123"},
    )
    return runtime


@pytest.fixture
def root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    root.setLevel(logging.INFO)
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def no_prompt(prompt=""):
    raise AssertionError(f"unexpected prompt: {prompt}")


def test_auto_deploy_writes_deployment_log(project, runtime, root_logging, monkeypatch):
    monkeypatch.setattr("builtins.input", no_prompt)

    assert main(["--root", str(project), "deploy", "--auto", "--recreate"]) == 0

    log = (project / "deployment.log").read_text()
    assert "Starting automatic deployment" in log
    assert "Git branch: main" in log
    assert "Git commit: abc123" in log
    assert "Notification: success" in log
    assert " - INFO - " in log
    assert runtime.applied == [("alpha", True), ("beta", True), ("gamma", True)]


def test_auto_deploy_failure_is_logged(project, runtime, root_logging):
    runtime.unhealthy.add("beta")
    shutil.rmtree(project / "config" / "private")

    assert main(["--root", str(project), "deploy", "--auto"]) == 1

    log = (project / "deployment.log").read_text()
    assert "Private config not linked" in log
    assert "Notification: error - Home server deployment failed: beta" in log


def test_auto_deploy_unknown_stack_is_logged(project, runtime, root_logging):
    assert main(["--root", str(project), "deploy", "--auto", "ghost"]) == 1
    assert "Notification: error" in (project / "deployment.log").read_text()
    assert runtime.applied == []


def test_deploy_log_file_option(project, runtime, root_logging, tmp_path):
    log_file = tmp_path / "logs" / "deploy.log"

    assert main(["--root", str(project), "deploy", "--log-file", str(log_file)]) == 0

    assert "Deployed 3/3 stacks" in log_file.read_text()
    assert not (project / "deployment.log").exists()


@pytest.mark.parametrize("argv", [
    ["deploy", "-v", "alpha"],
    ["-v", "deploy", "alpha"],
    ["envs", "--verbose"],
    ["maintenance", "--status", "-v"],
])
def test_verbose_accepted_before_or_after_subcommand(argv):
    assert build_parser().parse_args(argv).verbose


def test_verbose_defaults_off():
    assert not build_parser().parse_args(["deploy"]).verbose
