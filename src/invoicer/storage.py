"""Private on-disk storage for identity key material."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, 0o700)


def read_secret(path: Path) -> Optional[str]:
    """Return the stripped file contents, or None when missing or empty."""
    if not path.exists() or path.stat().st_size == 0:
        return None
    return path.read_text(encoding="utf-8").strip()


def write_secret(path: Path, value: str) -> None:
    """Write ``value`` to a 0600 file inside a 0700 directory."""
    ensure_private_dir(path.parent)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(value)
        f.flush()
        os.fsync(f.fileno())
    os.chmod(path, 0o600)
