import builtins
import logging
import os

from homestack.hashing import compute_fingerprint, fingerprint

from conftest import write


def make_stack(root, files):
    for rel, text in files.items():
        write(root / rel, text)
    return root


def test_fingerprint_is_deterministic(tmp_path):
    stack = make_stack(tmp_path / "web", {"docker-compose.yml": "a", "conf/app.ini": "b"})
    assert fingerprint([stack]) == fingerprint([stack])
    assert len(fingerprint([stack])) == 64


def test_fingerprint_does_not_depend_on_location(tmp_path):
    files = {"docker-compose.yml": "services: {}\n", "conf/app.ini": "x=1\n"}
    first = make_stack(tmp_path / "one" / "web", files)
    second = make_stack(tmp_path / "two" / "web", files)
    assert fingerprint([first]) == fingerprint([second])


def test_content_change_changes_fingerprint(tmp_path):
    stack = make_stack(tmp_path / "web", {"docker-compose.yml": "a"})
    before = fingerprint([stack])
    (stack / "docker-compose.yml").write_text("b")
    assert fingerprint([stack]) != before


def test_adding_empty_file_changes_fingerprint(tmp_path):
    stack = make_stack(tmp_path / "web", {"docker-compose.yml": "a"})
    before = fingerprint([stack])
    (stack / "empty.conf").touch()
    assert fingerprint([stack]) != before


def test_renaming_file_changes_fingerprint(tmp_path):
    stack = make_stack(tmp_path / "web", {"a.conf": "same"})
    before = fingerprint([stack])
    (stack / "a.conf").rename(stack / "b.conf")
    assert fingerprint([stack]) != before


def test_missing_paths_contribute_nothing(tmp_path):
    stack = make_stack(tmp_path / "web", {"docker-compose.yml": "a"})
    assert fingerprint([stack, tmp_path / "missing"]) == fingerprint([stack])
    assert fingerprint([tmp_path / "missing"]) == fingerprint([])


def test_single_file_path(tmp_path):
    conf = write(tmp_path / "stack-envs.conf", "web = cloudflare\n")
    result = compute_fingerprint([conf])
    assert result.files == ["stack-envs.conf"]


def test_unreadable_file_is_skipped(tmp_path, monkeypatch):
    stack = make_stack(tmp_path / "web", {"docker-compose.yml": "a", "secret.key": "k"})

    def guarded_open(path, *args, **kwargs):
        if str(path).endswith("secret.key"):
            raise PermissionError(13, "Permission denied")
        return builtins.open(path, *args, **kwargs)

    monkeypatch.setattr("homestack.hashing.open", guarded_open, raising=False)
    result = compute_fingerprint([stack])

    assert result.skipped == ["web/secret.key"]
    assert result.files == ["web/docker-compose.yml"]


def test_unreadable_directory_is_skipped_with_warning(tmp_path, monkeypatch, caplog):
    stack = make_stack(tmp_path / "stack", {"b.txt": "b", "secret/key.pem": "k"})
    real_scandir = os.scandir

    def guarded_scandir(path="."):
        if os.fspath(path).endswith("secret"):
            raise PermissionError(13, "Permission denied", os.fspath(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", guarded_scandir)
    with caplog.at_level(logging.WARNING, logger="homestack.hashing"):
        result = compute_fingerprint([stack])

    assert result.files == ["stack/b.txt"]
    assert result.skipped == ["stack/secret"]
    assert any("secret" in record.getMessage() for record in caplog.records)
