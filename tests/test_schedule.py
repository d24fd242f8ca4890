import subprocess
from pathlib import Path

import pytest

from homestack.errors import ScheduleError
from homestack.schedule import (
    MARKER,
    CrontabBackend,
    ScheduleEntry,
    ScheduleInstaller,
    default_entries,
    maintenance_command,
    merge_table,
)

FOREIGN = "# my jobs\n0 4 * * * /usr/local/bin/backup.sh\n"


class FakeCrontab:
    def __init__(self, table=""):
        self.table = table
        self.writes = 0
        self.cleared = False

    def read(self):
        return self.table

    def write(self, table):
        self.writes += 1
        self.table = table

    def clear(self):
        self.cleared = True
        self.table = ""


@pytest.fixture
def entries():
    return default_entries(Path("/srv/home server"))


def test_default_entries(entries):
    cadences = [e.cadence for e in entries]
    assert cadences == ["@reboot", "*/30 * * * *", "*/5 * * * *", "0 3 * * 0", "0 2 * * *"]
    assert entries[0].command.startswith("sleep 60 && ")
    assert "--startup" in entries[0].command
    assert "'/srv/home server'" in entries[1].command


def test_maintenance_command_silences_output():
    command = maintenance_command(Path("/srv/home"), "--daily")
    assert command.endswith(" >/dev/null 2>&1")
    assert "-m homestack --root /srv/home maintenance --daily" in command


def test_every_line_is_tagged(entries):
    table = merge_table("", entries)
    assert all(MARKER in line for line in table.splitlines())


def test_install_is_idempotent(entries):
    crontab = FakeCrontab(FOREIGN)
    installer = ScheduleInstaller(entries, backend=crontab)

    first = installer.install()
    second = installer.install()

    assert first == second
    assert crontab.table.count("--dns-only") == 1
    assert crontab.table.startswith(FOREIGN)
    assert len(installer.installed_entries()) == len(entries) + 1


def test_install_replaces_previous_block(entries):
    crontab = FakeCrontab(FOREIGN)
    ScheduleInstaller(entries, backend=crontab).install()
    ScheduleInstaller([ScheduleEntry("0 * * * *", "echo hi")], backend=crontab).install()

    assert "--dns-only" not in crontab.table
    assert f"0 * * * * echo hi {MARKER}" in crontab.table.splitlines()
    assert "/usr/local/bin/backup.sh" in crontab.table


def test_uninstall_preserves_foreign_lines(entries):
    crontab = FakeCrontab(FOREIGN)
    installer = ScheduleInstaller(entries, backend=crontab)
    installer.install()

    remaining = installer.uninstall()

    assert remaining == FOREIGN
    assert crontab.table == FOREIGN
    assert not crontab.cleared
    assert not installer.is_installed()


def test_uninstall_clears_table_when_only_homestack(entries):
    crontab = FakeCrontab()
    installer = ScheduleInstaller(entries, backend=crontab)
    installer.install()

    assert installer.uninstall() == ""
    assert crontab.cleared


def test_install_backs_up_existing_table(entries, tmp_path):
    crontab = FakeCrontab(FOREIGN)
    ScheduleInstaller(entries, backend=crontab, backup_dir=tmp_path).install()

    backups = list(tmp_path.glob("crontab_backup_*"))
    assert len(backups) == 1
    assert backups[0].read_text() == FOREIGN


def test_backend_treats_missing_table_as_empty():
    def runner(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 1, "", "no crontab for root\n")

    assert CrontabBackend(runner).read() == ""


def test_backend_write_failure_raises():
    def runner(cmd, **kwargs):
        assert kwargs["input"] == "table\n"
        return subprocess.CompletedProcess(cmd, 1, "", "bad minute\n")

    with pytest.raises(ScheduleError, match="bad minute"):
        CrontabBackend(runner).write("table\n")


def test_backend_without_crontab_binary():
    def runner(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    with pytest.raises(ScheduleError):
        CrontabBackend(runner).read()


@pytest.mark.parametrize("foreign", [
    "0 4 * * * /bin/backup\n\n\n",
    "# header\n\n0 4 * * * /bin/backup\n",
    "0 4 * * * /bin/backup\n",
])
def test_install_then_uninstall_restores_table(entries, foreign):
    crontab = FakeCrontab(foreign)
    installer = ScheduleInstaller(entries, backend=crontab)

    installer.install()
    installer.install()
    installer.uninstall()

    assert crontab.table == foreign
