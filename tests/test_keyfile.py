from __future__ import annotations

import os
import string
from pathlib import Path

import pytest

from camvault.keyfile import generate_keyfile


def test_generate_keyfile(tmp_path: Path):
    path = generate_keyfile(tmp_path / "keys" / "keyfile.txt")

    content = path.read_text(encoding="utf-8")
    assert len(content) == 160
    assert set(content) <= set(string.ascii_letters + string.digits)
    assert path.stat().st_mode & 0o777 == 0o600


def test_generate_keyfile_backs_up_existing(tmp_path: Path):
    path = tmp_path / "keyfile.txt"
    path.write_text("old key", encoding="utf-8")

    generate_keyfile(path, length=32)

    assert (tmp_path / "keyfile.txt_bak").read_text(encoding="utf-8") == "old key"
    assert len(path.read_text(encoding="utf-8")) == 32


def test_generate_keyfile_is_random(tmp_path: Path):
    a = generate_keyfile(tmp_path / "a.txt").read_text(encoding="utf-8")
    b = generate_keyfile(tmp_path / "b.txt").read_text(encoding="utf-8")
    assert a != b


def test_generate_keyfile_invalid_length(tmp_path: Path):
    with pytest.raises(ValueError):
        generate_keyfile(tmp_path / "k.txt", length=0)


def test_generate_keyfile_is_private_from_creation(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    modes: list[int] = []
    real_fdopen = os.fdopen

    def fdopen(fd, *args, **kwargs):
        modes.append(os.fstat(fd).st_mode & 0o777)
        return real_fdopen(fd, *args, **kwargs)

    monkeypatch.setattr("camvault.keyfile.os.fdopen", fdopen)
    old_umask = os.umask(0)
    try:
        path = generate_keyfile(tmp_path / "keyfile.txt")
    finally:
        os.umask(old_umask)

    assert modes == [0o600]
    assert path.stat().st_mode & 0o777 == 0o600
