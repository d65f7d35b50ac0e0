"""Tests for the zvencrypt / zvdecrypt front-ends (default KDF cost, so kept few)."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

import zipvault_cli


def test_encrypt_then_decrypt_file(tmp_path: Path):
    src = tmp_path / "input.txt"
    src.write_bytes(b"hello world")
    cipher = tmp_path / "encrypted.bin"

    assert zipvault_cli.encrypt_main(["-password", "hello", str(src), str(cipher)]) == 0
    assert zipvault_cli.decrypt_main(["-password", "hello", str(cipher), str(tmp_path / "out")]) == 0
    assert (tmp_path / "out" / "input.txt").read_bytes() == b"hello world"


def test_encrypt_directory_compressed_with_custom_salt(sample_tree: Path, tmp_path: Path, tree_snapshot):
    cipher = tmp_path / "vault" / "dir.enc"
    salt = "ab" * 16

    rc = zipvault_cli.encrypt_main(["-c", "--salt", salt, "--password", "pw", str(sample_tree), str(cipher)])
    assert rc == 0
    assert cipher.read_bytes()[8:24] == bytes.fromhex(salt)

    assert zipvault_cli.main(["decrypt", "--password", "pw", str(cipher), str(tmp_path / "out")]) == 0
    assert tree_snapshot(tmp_path / "out") == tree_snapshot(sample_tree)


def test_prompts_for_password_when_omitted(tmp_path: Path, monkeypatch):
    prompts = []

    def fake_getpass(prompt: str) -> str:
        prompts.append(prompt)
        return "hello"

    monkeypatch.setattr(zipvault_cli, "getpass", fake_getpass)
    src = tmp_path / "input.txt"
    src.write_bytes(b"prompted")
    cipher = tmp_path / "encrypted.bin"

    assert zipvault_cli.encrypt_main([str(src), str(cipher)]) == 0
    assert zipvault_cli.decrypt_main([str(cipher), str(tmp_path / "out")]) == 0
    assert prompts == ["Enter Password: ", "Enter Password: "]
    assert (tmp_path / "out" / "input.txt").read_bytes() == b"prompted"


def test_verbose_reports_progress(tmp_path: Path, capsys):
    src = tmp_path / "input.txt"
    src.write_bytes(b"x")
    assert zipvault_cli.encrypt_main(["-v", "-password", "hello", str(src), str(tmp_path / "e.bin")]) == 0
    out = capsys.readouterr().out
    assert "Encrypting file" in out
    assert "Done" in out


def test_quiet_by_default(tmp_path: Path, capsys):
    src = tmp_path / "input.txt"
    src.write_bytes(b"x")
    assert zipvault_cli.encrypt_main(["-password", "hello", str(src), str(tmp_path / "e.bin")]) == 0
    assert capsys.readouterr().out == ""


@pytest.mark.parametrize("entry", [zipvault_cli.encrypt_main, zipvault_cli.decrypt_main])
def test_missing_positionals_print_usage(entry, capsys):
    with pytest.raises(SystemExit) as excinfo:
        entry(["only-one-arg"])
    assert excinfo.value.code != 0
    assert "usage" in capsys.readouterr().err


def test_missing_input_is_fatal(tmp_path: Path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        zipvault_cli.encrypt_main(["-password", "hello", str(tmp_path / "nope"), str(tmp_path / "e.bin")])
    assert excinfo.value.code == 1
    assert "nope" in capsys.readouterr().out


def test_bad_salt_is_fatal(tmp_path: Path):
    src = tmp_path / "input.txt"
    src.write_bytes(b"x")
    with pytest.raises(SystemExit) as excinfo:
        zipvault_cli.encrypt_main(["-salt", "nothex", "-password", "hello", str(src), str(tmp_path / "e.bin")])
    assert excinfo.value.code == 1
    assert not (tmp_path / "e.bin").exists()


def test_decrypt_rejects_directory_input(tmp_path: Path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        zipvault_cli.decrypt_main(["-password", "hello", str(tmp_path), str(tmp_path / "out")])
    assert excinfo.value.code == 1
    assert "Can't decrypt folders" in capsys.readouterr().out


def test_decrypt_wrong_password_is_fatal(tmp_path: Path):
    src = tmp_path / "input.txt"
    src.write_bytes(b"secret")
    cipher = tmp_path / "encrypted.bin"
    assert zipvault_cli.encrypt_main(["-password", "right", str(src), str(cipher)]) == 0

    with pytest.raises(SystemExit) as excinfo:
        zipvault_cli.decrypt_main(["-password", "wrong", str(cipher), str(tmp_path / "out")])
    assert excinfo.value.code == 1
    assert not (tmp_path / "out").exists()


def test_closed_stdin_is_fatal(tmp_path: Path, monkeypatch, capsys):
    def no_input(prompt: str) -> str:
        raise EOFError

    monkeypatch.setattr(zipvault_cli, "getpass", no_input)
    src = tmp_path / "input.txt"
    src.write_bytes(b"x")
    with pytest.raises(SystemExit) as excinfo:
        zipvault_cli.encrypt_main([str(src), str(tmp_path / "e.bin")])
    assert excinfo.value.code == 1
    assert "No password provided" in capsys.readouterr().out
    assert not (tmp_path / "e.bin").exists()


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="needs byte-oriented file names")
def test_unarchivable_file_name_is_fatal(tmp_path: Path, capsys):
    if sys.getfilesystemencoding().lower() != "utf-8":
        pytest.skip("file names are not decoded as UTF-8")
    src = tmp_path / "src"
    src.mkdir()
    try:
        fd = os.open(os.fsencode(str(src)) + b"/caf\xe9.txt", os.O_WRONLY | os.O_CREAT, 0o600)
    except OSError:
        pytest.skip("filesystem refuses non-UTF-8 file names")
    os.close(fd)

    with pytest.raises(SystemExit) as excinfo:
        zipvault_cli.encrypt_main(["-password", "pw", str(src), str(tmp_path / "e.bin")])
    assert excinfo.value.code == 1
    assert "UTF-8" in capsys.readouterr().out
    assert not (tmp_path / "e.bin").exists()


def test_main_requires_subcommand(capsys):
    assert zipvault_cli.main([]) == 2
    assert "usage" in capsys.readouterr().err
