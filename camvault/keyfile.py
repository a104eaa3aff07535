from __future__ import annotations

import os
import secrets
import string
from pathlib import Path

ALPHABET = string.ascii_letters + string.digits
DEFAULT_LENGTH = 160


def generate_keyfile(path: Path, *, length: int = DEFAULT_LENGTH) -> Path:
    """
    Write a random alphanumeric VeraCrypt keyfile to `path`.

    An existing file is moved to `<path>_bak` first, so an old key is never
    silently lost. The new file is created with mode 0600 and is never
    readable by other users, not even briefly.
    """
    if length <= 0:
        raise ValueError(f"Invalid keyfile length {length}")
    path = path.expanduser().resolve()
    if path.exists():
        path.replace(path.with_name(path.name + "_bak"))
    path.parent.mkdir(parents=True, exist_ok=True)
    key = "".join(secrets.choice(ALPHABET) for _ in range(length))
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(key)
    return path
