from __future__ import annotations

from pathlib import Path
from typing import Dict

import pytest

import zipvault

PASSWORD = "hello"

# Cheap KDF cost so the suite stays fast; the header carries the parameters to the decrypter.
FAST_SCRYPT = zipvault.ScryptParams(n=1 << 4, r=8, p=1)


@pytest.fixture(scope="session")
def salt() -> bytes:
    return zipvault.generate_salt()


@pytest.fixture(scope="session")
def encrypter(salt: bytes) -> zipvault.Encrypter:
    return zipvault.Encrypter(PASSWORD, salt, scrypt_params=FAST_SCRYPT)


@pytest.fixture(scope="session")
def decrypter() -> zipvault.Decrypter:
    return zipvault.Decrypter(PASSWORD)


@pytest.fixture
def sample_tree(tmp_path: Path) -> Path:
    root = tmp_path / "inputs" / "multifiles"
    (root / "sub" / "deeper").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"alpha file\n")
    (root / "sub" / "b.txt").write_bytes(b"bravo " * 500)
    (root / "sub" / "deeper" / "c.bin").write_bytes(bytes(range(256)) * 8)
    (root / "empty.dat").write_bytes(b"")
    return root


def snapshot(root: Path) -> Dict[str, bytes]:
    """Map of relative posix path -> content for every file under root."""
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


@pytest.fixture
def tree_snapshot():
    return snapshot
