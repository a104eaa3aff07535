from __future__ import annotations

from pathlib import Path


JPEG_EXTS = {".jpg", ".jpeg"}


def is_jpeg(path: Path) -> bool:
    return path.suffix.lower() in JPEG_EXTS


def source_pattern(root: Path, extensions: tuple[str, ...]) -> str:
    """
    Recursive glob for files ending in any of `extensions` below `root`:
    ("NEF", "MOV") -> "<root>/**/*{NEF,MOV}".
    """
    exts = [e.strip().lstrip(".") for e in extensions if e.strip(". ")]
    if not exts:
        raise ValueError("At least one extension is required")
    suffix = exts[0] if len(exts) == 1 else "{" + ",".join(exts) + "}"
    return str(root / "**" / f"*{suffix}")
